"""Finalize node: persist the terminal run record and announce it."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from agent_runner.events.models import RunStatusEvent
from agent_runner.graph.context import RunContext
from agent_runner.graph.state import RunState
from agent_runner.schemas import TERMINAL_RUN_STATUSES
from agent_runner.storage.models import RunRecord

logger = logging.getLogger(__name__)


def run(state: RunState, ctx: RunContext) -> RunState:
    status = state.get("status", "failed")
    if status not in TERMINAL_RUN_STATUSES:
        status = "failed"
    reason = state.get("reason")
    plan = state["plan"]

    ctx.store.put_run(
        RunRecord(
            tenant_id=ctx.tenant_id,
            task_id=ctx.task_id,
            run_id=ctx.run_id,
            status=status,
            reason=reason,
            plan=plan,
            current_step_index=plan.current_step_index,
            started_at=ctx.started_at,
            finished_at=datetime.now(UTC),
        )
    )
    announce(ctx, status, reason)
    return {"status": status}


def cancel(state: RunState) -> RunState:
    return {"status": "cancelled", "reason": "Run cancelled"}


def announce(ctx: RunContext, status: str, reason: str | None) -> None:
    ctx.emit(RunStatusEvent, status=status, reason=reason)
    logger.info(
        "task_run event=finished task_id=%s run_id=%s status=%s reason=%s",
        ctx.task_id,
        ctx.run_id,
        status,
        reason,
    )
