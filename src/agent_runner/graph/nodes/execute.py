"""Execute node: hand the current step's action to the step executor."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from agent_runner.graph.context import RunContext
from agent_runner.graph.state import RunState, aborted
from agent_runner.schemas import ExecutionError
from agent_runner.storage.models import TaskAction

logger = logging.getLogger(__name__)


def run(state: RunState, ctx: RunContext) -> RunState:
    plan = state["plan"]
    step = plan.current_step()

    delay_s = float(state.get("pending_delay_s", 0.0))
    if delay_s > 0:
        # Wake early on cancel; the flag itself is honored after this attempt.
        ctx.cancel_event.wait(delay_s)

    if not ctx.store.acquire_run_lease(ctx.task_id, owner=ctx.run_id, ttl_s=ctx.lease_ttl_s):
        return {
            "plan": plan,
            "status": "failed",
            "reason": f"Run lease for task {ctx.task_id} is held by another controller",
        }

    if step.status == "pending":
        step = step.model_copy(update={"status": "running"})
        plan = plan.with_step(step)

    ctx.store.append_action(_action(ctx, step.index, step.action, "pending", step.description))
    outcome = ctx.executor.execute(step.action)
    failed = isinstance(outcome, ExecutionError)
    ctx.store.append_action(
        _action(
            ctx,
            step.index,
            step.action,
            "failure" if failed else "success",
            outcome.message if failed else None,
        )
    )

    logger.info(
        "task_run event=step_executed task_id=%s step_index=%s action=%r ok=%s",
        ctx.task_id,
        step.index,
        step.action,
        not failed,
    )

    if failed and outcome.category == "unavailable":
        return {**aborted(f"step executor: {outcome.message}", plan), "outcome": outcome}

    return {"plan": plan, "outcome": outcome, "status": "verifying", "pending_delay_s": 0.0}


def _action(
    ctx: RunContext, step_index: int, action: str, status: str, thought: str | None
) -> TaskAction:
    return TaskAction(
        tenant_id=ctx.tenant_id,
        task_id=ctx.task_id,
        step_index=step_index,
        action=action,
        status=status,
        thought=thought,
        timestamp=datetime.now(UTC),
    )
