"""Real-time progress events published per session."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from agent_runner.schemas import RunStatus, TaskPlan


class RunEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    session_id: str
    task_id: str
    sequence_number: int = Field(ge=1)
    timestamp: datetime


class PlanPreview(RunEvent):
    type: Literal["plan_preview"] = "plan_preview"
    plan: TaskPlan


class PlanUpdate(RunEvent):
    type: Literal["plan_update"] = "plan_update"
    plan: TaskPlan
    reason: str | None = None


class StepResult(RunEvent):
    type: Literal["step_result"] = "step_result"
    step_index: int = Field(ge=0)
    success: bool
    confidence: float = Field(ge=0.0, le=1.0)


class RunStatusEvent(RunEvent):
    type: Literal["run_status"] = "run_status"
    status: RunStatus
    reason: str | None = None


Event = PlanPreview | PlanUpdate | StepResult | RunStatusEvent
