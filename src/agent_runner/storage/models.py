"""Audit-trail records shared by the controller and persistence backends."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from agent_runner.schemas import (
    ActualState,
    Comparison,
    CorrectionStrategy,
    ExpectedOutcome,
    FailureCategory,
    RunStatus,
    Step,
    TaskPlan,
)

ActionStatus = Literal["pending", "success", "failure"]


class RecordModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class VerificationRecord(RecordModel):
    """One verification attempt for one step; written once."""

    tenant_id: str
    task_id: str
    run_id: str
    step_index: int = Field(ge=0)
    success: bool
    confidence: float = Field(ge=0.0, le=1.0)
    expected_state: ExpectedOutcome
    actual_state: ActualState
    comparison: Comparison
    reason: str
    failure_category: FailureCategory | None = None
    timestamp: datetime


class CorrectionRecord(RecordModel):
    """One self-correction attempt for one step; written once."""

    tenant_id: str
    task_id: str
    run_id: str
    step_index: int = Field(ge=0)
    original_step: Step
    corrected_step: Step
    strategy: CorrectionStrategy
    reason: str
    attempt_number: int = Field(ge=1)
    replacement_tail: list[Step] | None = None
    timestamp: datetime


class TaskAction(RecordModel):
    """Append-only log entry for an action handed to the step executor."""

    tenant_id: str
    task_id: str
    step_index: int = Field(ge=0)
    action: str
    status: ActionStatus
    thought: str | None = None
    sequence: int = Field(default=0, ge=0)
    timestamp: datetime


class RecordCounts(RecordModel):
    verifications: int = 0
    corrections: int = 0


class RunRecord(RecordModel):
    """Terminal outcome of one controller run."""

    tenant_id: str
    task_id: str
    run_id: str
    status: RunStatus
    reason: str | None = None
    plan: TaskPlan
    current_step_index: int = Field(ge=0)
    started_at: datetime
    finished_at: datetime | None = None
