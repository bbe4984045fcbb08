"""Correct node: ask the self-correction engine for the next attempt."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from agent_runner.events.models import PlanUpdate
from agent_runner.graph.context import RunContext
from agent_runner.graph.state import RunState
from agent_runner.schemas import CorrectedTail, GiveUp
from agent_runner.storage.models import CorrectionRecord

logger = logging.getLogger(__name__)


def run(state: RunState, ctx: RunContext) -> RunState:
    plan = state["plan"]
    step = plan.current_step()
    result = state["last_result"]
    if result is None:
        raise RuntimeError("correct node reached without a verification result")

    counts = ctx.store.get_counts(ctx.tenant_id, ctx.task_id, step.index, run_id=ctx.run_id)
    attempt_number = counts.corrections + 1
    decision = ctx.corrector.correct(step.index, step, result, attempt_number, plan)

    if isinstance(decision, GiveUp):
        logger.warning(
            "task_run event=gave_up task_id=%s step_index=%s kind=%s",
            ctx.task_id,
            step.index,
            decision.kind,
        )
        failed = step.model_copy(update={"status": "failed"})
        return {
            "plan": plan.with_step(failed),
            "status": "failed",
            "failure_kind": decision.kind,
            "reason": f"{decision.kind}: {decision.reason}",
        }

    replacement_tail = None
    delay_s = 0.0
    if isinstance(decision, CorrectedTail):
        spliced = plan.with_tail(step.index, decision.steps)
        corrected = spliced.steps[step.index].model_copy(update={"status": "corrected"})
        plan = spliced.with_step(corrected)
        replacement_tail = list(plan.steps[step.index :])
    else:
        corrected = decision.step.model_copy(update={"index": step.index, "status": "corrected"})
        plan = plan.with_step(corrected)
        delay_s = decision.delay_s

    ctx.store.put_correction(
        CorrectionRecord(
            tenant_id=ctx.tenant_id,
            task_id=ctx.task_id,
            run_id=ctx.run_id,
            step_index=step.index,
            original_step=step,
            corrected_step=corrected,
            strategy=decision.strategy,
            reason=decision.reason,
            attempt_number=attempt_number,
            replacement_tail=replacement_tail,
            timestamp=datetime.now(UTC),
        )
    )
    logger.info(
        "task_run event=step_corrected task_id=%s step_index=%s attempt=%s strategy=%s",
        ctx.task_id,
        step.index,
        attempt_number,
        decision.strategy,
    )

    if replacement_tail is not None:
        ctx.emit(PlanUpdate, plan=plan, reason=decision.reason)

    return {"plan": plan, "status": "executing", "pending_delay_s": delay_s}
