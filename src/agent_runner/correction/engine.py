"""Self-correction: pick a strategy for a failed step and produce the retry."""

from __future__ import annotations

import logging

from agent_runner.correction.deterministic import DeterministicStepRewriter
from agent_runner.correction.rewriter import StepRewriter
from agent_runner.correction.strategies import categorize_failure, select_strategy
from agent_runner.schemas import (
    CorrectedStep,
    CorrectedTail,
    GiveUp,
    Step,
    TaskPlan,
    VerificationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class SelfCorrectionEngine:
    def __init__(
        self,
        rewriter: StepRewriter | None = None,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay_s: float = 2.0,
    ) -> None:
        self.rewriter = rewriter or DeterministicStepRewriter()
        self.max_attempts = max_attempts
        self.retry_delay_s = retry_delay_s

    def correct(
        self,
        step_index: int,
        original_step: Step,
        result: VerificationResult,
        attempt_number: int,
        plan: TaskPlan,
    ) -> CorrectedStep | CorrectedTail | GiveUp:
        """Return the next attempt for ``original_step``, or give up.

        ``attempt_number`` is 1-based and counts corrections already made for
        this step index plus one. Anything beyond ``max_attempts`` gives up
        without consulting the rewriter.
        """
        if attempt_number > self.max_attempts:
            return GiveUp(
                kind="CorrectionExhausted",
                reason=(
                    f"Step {step_index} still failing after {self.max_attempts} "
                    f"correction attempts: {result.reason}"
                ),
            )

        category = categorize_failure(result)
        strategy = select_strategy(category)
        logger.info(
            "self_correction event=strategy_selected step_index=%s attempt=%s category=%s strategy=%s",
            step_index,
            attempt_number,
            category,
            strategy,
        )
        reason = f"{category.replace('_', ' ')}: {result.reason}"

        if strategy == "ALTERNATIVE_SELECTOR":
            step = self.rewriter.alternative_selector(original_step, attempt_number, result.reason)
            return CorrectedStep(strategy=strategy, reason=reason, step=step or original_step)

        if strategy == "ALTERNATIVE_TOOL":
            step = self.rewriter.alternative_tool(original_step, attempt_number, result.reason)
            return CorrectedStep(strategy=strategy, reason=reason, step=step or original_step)

        if strategy == "RETRY_WITH_DELAY":
            return CorrectedStep(
                strategy=strategy,
                reason=reason,
                step=original_step,
                delay_s=self.retry_delay_s,
            )

        if strategy == "GATHER_INFORMATION":
            return CorrectedStep(strategy=strategy, reason=reason, step=original_step)

        tail = self.rewriter.replan_tail(plan, step_index, result.reason)
        if not is_valid_tail(tail):
            return GiveUp(
                kind="PlanInvalid",
                reason=f"No valid replacement for the remaining plan: {result.reason}",
                strategy=strategy,
            )
        renumbered = [
            step.model_copy(update={"index": step_index + offset, "status": "pending"})
            for offset, step in enumerate(tail or [])
        ]
        return CorrectedTail(reason=reason, steps=renumbered)


def is_valid_tail(tail: list[Step] | None) -> bool:
    if not tail:
        return False
    return all(step.description.strip() and step.action.strip() for step in tail)
