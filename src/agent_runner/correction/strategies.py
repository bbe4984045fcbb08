"""Failure categorization and the category-to-strategy table."""

from __future__ import annotations

from agent_runner.schemas import CorrectionStrategy, FailureCategory, VerificationResult

# Checked in order; the first category whose hints appear in the reason wins.
FAILURE_HINTS: tuple[tuple[FailureCategory, tuple[str, ...]], ...] = (
    (
        "selector_not_found",
        ("not found", "no element", "could not find", "unable to locate", "no such element"),
    ),
    (
        "navigation_failure",
        ("navigation failed", "did not navigate", "failed to navigate", "url did not change"),
    ),
    (
        "tool_error",
        ("not clickable", "not interactable", "intercepted", "detached", "action failed"),
    ),
    (
        "ambiguous_state",
        ("ambiguous", "unclear", "multiple elements", "insufficient information", "cannot determine"),
    ),
    (
        "plan_invalid",
        ("plan invalid", "plan is invalid", "no longer valid", "prerequisite", "wrong page"),
    ),
    ("timeout", ("timed out", "timeout")),
    (
        "transient",
        ("network", "temporarily", "try again", "rate limit", "econnreset", "still loading"),
    ),
)

STRATEGY_BY_CATEGORY: dict[FailureCategory, CorrectionStrategy] = {
    "selector_not_found": "ALTERNATIVE_SELECTOR",
    "tool_error": "ALTERNATIVE_TOOL",
    "navigation_failure": "ALTERNATIVE_TOOL",
    "ambiguous_state": "GATHER_INFORMATION",
    "plan_invalid": "UPDATE_PLAN",
    "transient": "RETRY_WITH_DELAY",
    "timeout": "RETRY_WITH_DELAY",
    "unknown": "ALTERNATIVE_SELECTOR",
}


def infer_failure_category(reason: str) -> FailureCategory:
    lowered = reason.lower()
    for category, hints in FAILURE_HINTS:
        if any(hint in lowered for hint in hints):
            return category
    return "unknown"


def categorize_failure(result: VerificationResult) -> FailureCategory:
    """Category attached by the verifier wins; otherwise read it off the reason."""
    if result.failure_category is not None:
        return result.failure_category

    category = infer_failure_category(result.reason)
    if category != "unknown":
        return category

    # The judge rejected the outcome with no structural signal to act on.
    if result.comparison.dom_checks is None and result.comparison.semantic_match is False:
        return "ambiguous_state"
    return "unknown"


def select_strategy(category: FailureCategory) -> CorrectionStrategy:
    return STRATEGY_BY_CATEGORY.get(category, "ALTERNATIVE_SELECTOR")
