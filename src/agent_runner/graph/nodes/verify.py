"""Verify node: judge the attempt, persist the verdict, and publish it."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from agent_runner.events.models import StepResult
from agent_runner.graph.context import RunContext
from agent_runner.graph.state import RunState, aborted
from agent_runner.schemas import ActualState, CollaboratorFailure, ExecutionError
from agent_runner.storage.models import VerificationRecord
from agent_runner.verification.engine import VerificationEngine

logger = logging.getLogger(__name__)


def run(state: RunState, ctx: RunContext) -> RunState:
    plan = state["plan"]
    step = plan.current_step()
    outcome = state.get("outcome")
    previous_url = state.get("previous_url")

    if isinstance(outcome, ExecutionError):
        result = VerificationEngine.from_execution_error(step.expected_outcome, outcome)
    else:
        result = ctx.verifier.verify(
            step.expected_outcome,
            outcome if isinstance(outcome, ActualState) else ActualState(),
            previous_url=previous_url,
        )
        if isinstance(result, CollaboratorFailure):
            return aborted(f"{result.collaborator}: {result.message}", plan)

    ctx.store.put_verification(
        VerificationRecord(
            tenant_id=ctx.tenant_id,
            task_id=ctx.task_id,
            run_id=ctx.run_id,
            step_index=step.index,
            success=result.success,
            confidence=result.confidence,
            expected_state=result.expected_state,
            actual_state=result.actual_state,
            comparison=result.comparison,
            reason=result.reason,
            failure_category=result.failure_category,
            timestamp=datetime.now(UTC),
        )
    )
    ctx.emit(
        StepResult,
        step_index=step.index,
        success=result.success,
        confidence=result.confidence,
    )
    logger.info(
        "task_run event=step_verified task_id=%s step_index=%s success=%s confidence=%.2f",
        ctx.task_id,
        step.index,
        result.success,
        result.confidence,
    )

    if result.success:
        succeeded = step.model_copy(update={"status": "succeeded"})
        return {
            "plan": plan.with_step(succeeded),
            "last_result": result,
            "status": "advancing",
            "previous_url": result.actual_state.url or previous_url,
        }

    return {"plan": plan, "last_result": result, "status": "correcting"}
