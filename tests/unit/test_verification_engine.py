import time

from agent_runner.errors import CollaboratorUnavailable
from agent_runner.schemas import (
    ActualState,
    CollaboratorFailure,
    DomExpectations,
    ExecutionError,
    ExpectedOutcome,
    JudgeVerdict,
)
from agent_runner.verification.engine import VerificationEngine
from agent_runner.verification.semantic import KeywordSemanticJudge, SemanticJudgeGateway
from fakes import ScriptedJudge

PAGE = ActualState(
    dom_snapshot='<div id="cart-count">3 items</div><p>Added to cart</p>',
    url="https://shop.test/cart",
)


def _engine(judge, *, timeout_s: float = 2.0, **kwargs) -> VerificationEngine:
    return VerificationEngine(SemanticJudgeGateway(judge, timeout_s=timeout_s), **kwargs)


def test_all_structural_checks_passing_skips_the_judge() -> None:
    judge = ScriptedJudge(match=False)
    expected = ExpectedOutcome(
        description="cart shows the item",
        dom_changes=DomExpectations(element_should_exist="#cart-count"),
    )

    result = _engine(judge).verify(expected, PAGE)

    assert result.success is True
    assert result.confidence == 1.0
    assert result.comparison.overall_match is True
    assert result.comparison.semantic_match is None
    assert judge.calls == []
    assert "element_exists=pass" in result.reason


def test_semantic_only_match_scores_policy_confidence() -> None:
    judge = ScriptedJudge(match=True, explanation="cart updated")
    expected = ExpectedOutcome(description="item is in the cart")

    result = _engine(judge).verify(expected, PAGE)

    assert result.success is True
    assert result.confidence == 0.7
    assert result.comparison.dom_checks is None
    assert result.comparison.semantic_match is True
    assert judge.calls == ["item is in the cart"]


def test_failed_structural_check_falls_back_to_judge() -> None:
    expected = ExpectedOutcome(
        description="checkout opens",
        dom_changes=DomExpectations(element_should_exist="#checkout-form"),
    )

    rescued = _engine(ScriptedJudge(match=True)).verify(expected, PAGE)
    rejected = _engine(ScriptedJudge(match=False)).verify(expected, PAGE)

    assert rescued.success is True
    assert rescued.confidence == 0.7
    assert rescued.comparison.dom_checks.element_exists is False
    assert rejected.success is False
    assert rejected.confidence == 0.0
    assert rejected.comparison.overall_match is False
    assert rejected.failure_category == "selector_not_found"
    assert "not found" in rejected.reason


def test_semantic_confidence_is_configurable() -> None:
    result = _engine(ScriptedJudge(match=True), semantic_match_confidence=0.55).verify(
        ExpectedOutcome(description="anything"), PAGE
    )

    assert result.confidence == 0.55


def test_judge_timeout_is_a_failed_verdict_with_timeout_category() -> None:
    class SlowJudge:
        def judge(self, expected_description: str, actual: ActualState) -> JudgeVerdict:
            time.sleep(0.3)
            return JudgeVerdict(match=True)

    result = _engine(SlowJudge(), timeout_s=0.01).verify(
        ExpectedOutcome(description="cart updated"), PAGE
    )

    assert result.success is False
    assert result.confidence == 0.0
    assert result.failure_category == "timeout"
    assert "timed out" in result.reason


def test_unreachable_judge_surfaces_collaborator_failure() -> None:
    judge = ScriptedJudge(error=CollaboratorUnavailable("judge is down"))

    result = _engine(judge).verify(ExpectedOutcome(description="cart updated"), PAGE)

    assert isinstance(result, CollaboratorFailure)
    assert result.collaborator == "semantic_judge"


def test_judge_error_is_treated_as_inconclusive_mismatch() -> None:
    judge = ScriptedJudge(error=ValueError("bad payload"))

    result = _engine(judge).verify(ExpectedOutcome(description="cart updated"), PAGE)

    assert result.success is False
    assert "bad payload" in result.reason


def test_execution_error_becomes_failed_result_without_judging() -> None:
    expected = ExpectedOutcome(description="button clicked")

    result = VerificationEngine.from_execution_error(
        expected, ExecutionError(category="selector_not_found", message="no element #buy")
    )

    assert result.success is False
    assert result.confidence == 0.0
    assert result.failure_category == "selector_not_found"
    assert "no element #buy" in result.reason


def test_keyword_judge_requires_term_overlap() -> None:
    judge = KeywordSemanticJudge()

    assert judge.judge("Item added to cart", PAGE).match is True
    assert judge.judge("Payment receipt downloaded", PAGE).match is False
    assert judge.judge("", PAGE).match is False
