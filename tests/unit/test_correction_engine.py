import pytest

from agent_runner.correction.deterministic import (
    DeterministicStepRewriter,
    parse_action,
    selector_candidates,
)
from agent_runner.correction.engine import SelfCorrectionEngine
from agent_runner.correction.strategies import (
    categorize_failure,
    infer_failure_category,
    select_strategy,
)
from agent_runner.schemas import (
    ActualState,
    Comparison,
    CorrectedStep,
    CorrectedTail,
    DomCheckResults,
    ExpectedOutcome,
    GiveUp,
    Step,
    TaskPlan,
    VerificationResult,
)
from fakes import make_step


def _failure(
    reason: str,
    *,
    category: str | None = None,
    dom_checks: DomCheckResults | None = None,
    semantic_match: bool | None = False,
) -> VerificationResult:
    return VerificationResult(
        success=False,
        confidence=0.0,
        expected_state=ExpectedOutcome(description="expected"),
        actual_state=ActualState(),
        comparison=Comparison(
            dom_checks=dom_checks, semantic_match=semantic_match, overall_match=False
        ),
        reason=reason,
        failure_category=category,
    )


class CountingRewriter(DeterministicStepRewriter):
    def __init__(self, tail: list[Step] | None = None) -> None:
        self.calls = 0
        self.tail = tail

    def alternative_selector(self, step: Step, attempt_number: int, reason: str) -> Step | None:
        self.calls += 1
        return super().alternative_selector(step, attempt_number, reason)

    def replan_tail(self, plan: TaskPlan, step_index: int, reason: str) -> list[Step] | None:
        self.calls += 1
        return self.tail


STEP = make_step(1, "click(#submit)", should_exist="#confirmation")
PLAN = TaskPlan(steps=[make_step(0, "click(#start)"), STEP, make_step(2, "click(#next)")])


@pytest.mark.parametrize(
    ("category", "strategy"),
    [
        ("selector_not_found", "ALTERNATIVE_SELECTOR"),
        ("tool_error", "ALTERNATIVE_TOOL"),
        ("navigation_failure", "ALTERNATIVE_TOOL"),
        ("ambiguous_state", "GATHER_INFORMATION"),
        ("transient", "RETRY_WITH_DELAY"),
        ("timeout", "RETRY_WITH_DELAY"),
    ],
)
def test_strategy_follows_failure_category(category: str, strategy: str) -> None:
    engine = SelfCorrectionEngine(retry_delay_s=1.5)

    decision = engine.correct(1, STEP, _failure("failed", category=category), 1, PLAN)

    assert isinstance(decision, CorrectedStep)
    assert decision.strategy == strategy


def test_attempt_beyond_bound_gives_up_without_consulting_rewriter() -> None:
    rewriter = CountingRewriter()
    engine = SelfCorrectionEngine(rewriter, max_attempts=3)

    decision = engine.correct(1, STEP, _failure("x", category="selector_not_found"), 4, PLAN)

    assert isinstance(decision, GiveUp)
    assert decision.kind == "CorrectionExhausted"
    assert rewriter.calls == 0


def test_gather_information_and_retry_return_step_verbatim() -> None:
    engine = SelfCorrectionEngine(retry_delay_s=2.5)

    gather = engine.correct(1, STEP, _failure("x", category="ambiguous_state"), 1, PLAN)
    retry = engine.correct(1, STEP, _failure("x", category="transient"), 1, PLAN)

    assert gather.step == STEP
    assert gather.delay_s == 0.0
    assert retry.step == STEP
    assert retry.delay_s == 2.5


def test_alternative_selector_varies_with_attempt_number() -> None:
    engine = SelfCorrectionEngine()
    failure = _failure("x", category="selector_not_found")

    first = engine.correct(1, STEP, failure, 1, PLAN)
    second = engine.correct(1, STEP, failure, 2, PLAN)

    assert first.step.action == 'click([data-testid="submit"])'
    assert second.step.action == 'click([name="submit"])'
    assert first.step.index == 1


def test_no_alternative_still_returns_the_step() -> None:
    engine = SelfCorrectionEngine()
    step = make_step(1, "scroll down")

    decision = engine.correct(1, step, _failure("x", category="tool_error"), 1, PLAN)

    assert isinstance(decision, CorrectedStep)
    assert decision.strategy == "ALTERNATIVE_TOOL"
    assert decision.step == step


def test_update_plan_without_valid_tail_is_plan_invalid() -> None:
    engine = SelfCorrectionEngine()

    decision = engine.correct(1, STEP, _failure("x", category="plan_invalid"), 1, PLAN)

    assert isinstance(decision, GiveUp)
    assert decision.kind == "PlanInvalid"
    assert decision.strategy == "UPDATE_PLAN"


def test_update_plan_returns_renumbered_tail() -> None:
    tail = [make_step(7, "click(#guest)"), make_step(9, "click(#pay)")]
    engine = SelfCorrectionEngine(CountingRewriter(tail=tail))

    decision = engine.correct(1, STEP, _failure("x", category="plan_invalid"), 1, PLAN)

    assert isinstance(decision, CorrectedTail)
    assert [step.index for step in decision.steps] == [1, 2]
    assert [step.action for step in decision.steps] == ["click(#guest)", "click(#pay)"]


def test_update_plan_rejects_tail_with_blank_action() -> None:
    tail = [make_step(1, "   ")]
    engine = SelfCorrectionEngine(CountingRewriter(tail=tail))

    decision = engine.correct(1, STEP, _failure("x", category="plan_invalid"), 1, PLAN)

    assert isinstance(decision, GiveUp)
    assert decision.kind == "PlanInvalid"


def test_category_inferred_from_reason_text() -> None:
    assert infer_failure_category("Request timed out after 30s") == "timeout"
    assert infer_failure_category("Element not found: #buy") == "selector_not_found"
    assert infer_failure_category("Element is not clickable at point") == "tool_error"
    assert infer_failure_category("Plan is invalid for this page") == "plan_invalid"
    assert infer_failure_category("something odd happened") == "unknown"


@pytest.mark.parametrize(
    "reason",
    [
        "Element not found; request timed out",
        "Could not find #pay on the wrong page",
        "Element not found after network hiccup",
    ],
)
def test_selector_cue_outranks_later_categories(reason: str) -> None:
    assert infer_failure_category(reason) == "selector_not_found"
    assert select_strategy(categorize_failure(_failure(reason))) == "ALTERNATIVE_SELECTOR"


def test_ambiguity_outranks_plan_and_transient_cues() -> None:
    assert infer_failure_category("Multiple elements match; wrong page?") == "ambiguous_state"
    assert infer_failure_category("Plan is invalid, try again later") == "plan_invalid"


def test_attached_category_wins_over_reason_text() -> None:
    failure = _failure("Element not found while network was down", category="transient")

    assert select_strategy(categorize_failure(failure)) == "RETRY_WITH_DELAY"


def test_unrecognized_failure_defaults_to_alternative_selector() -> None:
    engine = SelfCorrectionEngine()
    failure = _failure(
        "something odd happened",
        dom_checks=DomCheckResults(element_exists=True, url_changed=False),
        semantic_match=False,
    )

    decision = engine.correct(1, STEP, failure, 1, PLAN)

    assert decision.strategy == "ALTERNATIVE_SELECTOR"


def test_semantic_only_rejection_gathers_information() -> None:
    failure = _failure("judge: page shows a different product", semantic_match=False)

    assert categorize_failure(failure) == "ambiguous_state"


def test_deterministic_rewriter_swaps_tools() -> None:
    rewriter = DeterministicStepRewriter()

    pressed = rewriter.alternative_tool(make_step(0, "click(#submit)"), 1, "")
    clicked = rewriter.alternative_tool(make_step(0, "press(#submit, Enter)"), 1, "")
    typed = rewriter.alternative_tool(make_step(0, 'setValue(#email, "a@b.test")'), 1, "")

    assert pressed.action == "press(#submit, Enter)"
    assert clicked.action == "click(#submit)"
    assert typed.action == "type(#email, a@b.test)"


def test_action_parsing_and_selector_candidates() -> None:
    assert parse_action('setValue(#email, "x, y")') == ("setValue", ["#email", "x, y"])
    assert parse_action("no parens here") is None
    assert selector_candidates('[data-testid="buy"]')[0] == '[name="buy"]'
    assert "text=sign in" in selector_candidates("#sign-in")
