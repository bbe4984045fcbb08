"""Typed state contract for the run workflow."""

from typing import TypedDict

from agent_runner.schemas import (
    ActualState,
    ExecutionError,
    FailureKind,
    RunStatus,
    TaskPlan,
    VerificationResult,
)


class RunState(TypedDict, total=False):
    plan: TaskPlan
    status: RunStatus
    reason: str | None
    failure_kind: FailureKind | None
    outcome: ActualState | ExecutionError | None
    last_result: VerificationResult | None
    previous_url: str | None
    pending_delay_s: float


def initial_state(plan: TaskPlan, *, previous_url: str | None = None) -> RunState:
    steps = [step.model_copy(update={"status": "pending"}) for step in plan.steps]
    return {
        "plan": plan.model_copy(update={"steps": steps, "current_step_index": 0}),
        "status": "idle",
        "reason": None,
        "failure_kind": None,
        "outcome": None,
        "last_result": None,
        "previous_url": previous_url,
        "pending_delay_s": 0.0,
    }


def aborted(reason: str, plan: TaskPlan) -> RunState:
    """Partial state for a collaborator outage; no correction attempt is consumed."""
    return {
        "plan": plan,
        "status": "failed",
        "failure_kind": "CollaboratorUnavailable",
        "reason": f"CollaboratorUnavailable: {reason}",
    }
