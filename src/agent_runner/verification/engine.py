"""Expected-vs-actual verification with confidence scoring.

Structural DOM checks are the cheap path and are tried first. The semantic
judge is consulted only when no structural check applies or one of them failed.
"""

from __future__ import annotations

from typing import Protocol

from agent_runner.schemas import (
    ActualState,
    CollaboratorFailure,
    Comparison,
    DomCheckResults,
    ExecutionError,
    ExpectedOutcome,
    FailureCategory,
    JudgeVerdict,
    VerificationResult,
)
from agent_runner.verification.dom_checks import perform_dom_checks

STRUCTURAL_MATCH_CONFIDENCE = 1.0
SEMANTIC_MATCH_CONFIDENCE = 0.7
NO_MATCH_CONFIDENCE = 0.0

# Structural check -> failure category, in strategy-table priority order.
CHECK_CATEGORIES: tuple[tuple[str, FailureCategory], ...] = (
    ("element_exists", "selector_not_found"),
    ("url_changed", "navigation_failure"),
    ("element_not_exists", "ambiguous_state"),
    ("element_text_matches", "ambiguous_state"),
)


class JudgeCallable(Protocol):
    def judge(
        self, expected_description: str, actual: ActualState
    ) -> JudgeVerdict | CollaboratorFailure: ...


class VerificationEngine:
    def __init__(
        self,
        judge: JudgeCallable,
        *,
        semantic_match_confidence: float = SEMANTIC_MATCH_CONFIDENCE,
    ) -> None:
        self.judge = judge
        self.semantic_match_confidence = semantic_match_confidence

    def verify(
        self,
        expected: ExpectedOutcome,
        actual: ActualState,
        *,
        previous_url: str | None = None,
    ) -> VerificationResult | CollaboratorFailure:
        dom_checks = perform_dom_checks(expected.dom_changes, actual, previous_url=previous_url)
        check_reasons = _describe_checks(expected, dom_checks)

        if dom_checks is not None and all(dom_checks.evaluated().values()):
            return VerificationResult(
                success=True,
                confidence=STRUCTURAL_MATCH_CONFIDENCE,
                expected_state=expected,
                actual_state=actual,
                comparison=Comparison(dom_checks=dom_checks, overall_match=True),
                reason=f"All {len(dom_checks.evaluated())} DOM checks passed: {check_reasons}",
            )

        verdict = self.judge.judge(describe_expected(expected), actual)
        if isinstance(verdict, CollaboratorFailure):
            return verdict

        prefix = (
            f"DOM checks failed: {check_reasons}; "
            if dom_checks is not None
            else "No structural checks specified; "
        )
        if verdict.match:
            return VerificationResult(
                success=True,
                confidence=self.semantic_match_confidence,
                expected_state=expected,
                actual_state=actual,
                comparison=Comparison(
                    dom_checks=dom_checks, semantic_match=True, overall_match=True
                ),
                reason=f"{prefix}semantic judge confirmed outcome: {verdict.explanation}",
            )

        return VerificationResult(
            success=False,
            confidence=NO_MATCH_CONFIDENCE,
            expected_state=expected,
            actual_state=actual,
            comparison=Comparison(dom_checks=dom_checks, semantic_match=False, overall_match=False),
            reason=f"{prefix}semantic judge found no match: {verdict.explanation}",
            failure_category=_failure_category(dom_checks, verdict),
        )

    @staticmethod
    def from_execution_error(
        expected: ExpectedOutcome,
        error: ExecutionError,
        actual: ActualState | None = None,
    ) -> VerificationResult:
        """Failed verdict for an attempt the executor could not complete."""
        return VerificationResult(
            success=False,
            confidence=NO_MATCH_CONFIDENCE,
            expected_state=expected,
            actual_state=actual or ActualState(),
            comparison=Comparison(overall_match=False),
            reason=f"Step executor reported {error.category.replace('_', ' ')}: {error.message}",
            failure_category=error.category,
        )


def describe_expected(expected: ExpectedOutcome) -> str:
    if expected.description.strip():
        return expected.description.strip()

    changes = expected.dom_changes
    if changes is None:
        return ""
    parts: list[str] = []
    if changes.element_should_exist:
        parts.append(f"element '{changes.element_should_exist}' is present")
    if changes.element_should_not_exist:
        parts.append(f"element '{changes.element_should_not_exist}' is gone")
    if changes.element_should_have_text:
        parts.append(
            f"element '{changes.element_should_have_text.selector}' shows "
            f"'{changes.element_should_have_text.text}'"
        )
    if changes.url_should_change is True:
        parts.append("the page navigated to a new URL")
    elif changes.url_should_change is False:
        parts.append("the page stayed on the same URL")
    return "; ".join(parts)


def _describe_checks(expected: ExpectedOutcome, dom_checks: DomCheckResults | None) -> str:
    if dom_checks is None:
        return ""
    changes = expected.dom_changes
    described: list[str] = []
    for name, passed in dom_checks.evaluated().items():
        detail = ""
        if changes is not None:
            if name == "element_exists":
                detail = f" (selector '{changes.element_should_exist}' " + (
                    "found)" if passed else "not found)"
                )
            elif name == "element_not_exists":
                detail = f" (selector '{changes.element_should_not_exist}' " + (
                    "absent)" if passed else "still present)"
                )
            elif name == "element_text_matches" and changes.element_should_have_text:
                detail = f" (expected text '{changes.element_should_have_text.text}')"
        described.append(f"{name}={'pass' if passed else 'fail'}{detail}")
    return ", ".join(described)


def _failure_category(
    dom_checks: DomCheckResults | None, verdict: JudgeVerdict
) -> FailureCategory | None:
    if dom_checks is not None:
        evaluated = dom_checks.evaluated()
        for check_name, category in CHECK_CATEGORIES:
            if evaluated.get(check_name) is False:
                return category
    if verdict.timed_out:
        return "timeout"
    return None
