"""Strict Pydantic contracts shared by the controller, verifier, and corrector."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

StepStatus = Literal["pending", "running", "succeeded", "failed", "corrected"]
RunStatus = Literal[
    "idle",
    "executing",
    "verifying",
    "advancing",
    "correcting",
    "completed",
    "failed",
    "cancelled",
]
TERMINAL_RUN_STATUSES = ("completed", "failed", "cancelled")

FailureCategory = Literal[
    "selector_not_found",
    "tool_error",
    "navigation_failure",
    "ambiguous_state",
    "plan_invalid",
    "timeout",
    "transient",
    "unavailable",
    "unknown",
]
CorrectionStrategy = Literal[
    "ALTERNATIVE_SELECTOR",
    "ALTERNATIVE_TOOL",
    "GATHER_INFORMATION",
    "UPDATE_PLAN",
    "RETRY_WITH_DELAY",
]
Collaborator = Literal["step_executor", "semantic_judge", "record_store"]
FailureKind = Literal[
    "CorrectionExhausted",
    "PlanInvalid",
    "CollaboratorUnavailable",
]


class StrictModel(BaseModel):
    """Base model for strict schema validation."""

    model_config = ConfigDict(extra="forbid")


class FrozenModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class ElementTextExpectation(StrictModel):
    selector: str
    text: str


class DomExpectations(StrictModel):
    element_should_exist: str | None = None
    element_should_not_exist: str | None = None
    element_should_have_text: ElementTextExpectation | None = None
    url_should_change: bool | None = None


class ExpectedOutcome(StrictModel):
    description: str = ""
    dom_changes: DomExpectations | None = None


class Step(StrictModel):
    index: int = Field(ge=0)
    description: str
    action: str
    expected_outcome: ExpectedOutcome = Field(default_factory=ExpectedOutcome)
    status: StepStatus = "pending"


class TaskPlan(StrictModel):
    """Ordered steps plus the cursor of the step currently being driven."""

    steps: list[Step] = Field(default_factory=list)
    current_step_index: int = Field(default=0, ge=0)

    @property
    def finished(self) -> bool:
        return self.current_step_index >= len(self.steps)

    def current_step(self) -> Step:
        return self.steps[self.current_step_index]

    def with_step(self, step: Step) -> TaskPlan:
        steps = list(self.steps)
        steps[step.index] = step
        return self.model_copy(update={"steps": steps})

    def with_tail(self, start: int, tail: list[Step]) -> TaskPlan:
        """Replace steps from ``start`` onward, renumbering the new tail contiguously."""
        head = list(self.steps[:start])
        renumbered = [
            step.model_copy(update={"index": start + offset, "status": "pending"})
            for offset, step in enumerate(tail)
        ]
        return self.model_copy(update={"steps": head + renumbered})


class ElementState(StrictModel):
    selector: str
    exists: bool
    text: str | None = None


class ActualState(StrictModel):
    dom_snapshot: str = ""
    url: str = ""
    extracted_text: str | None = None
    element_states: list[ElementState] | None = None


class ExecutionError(StrictModel):
    category: FailureCategory
    message: str


class CollaboratorFailure(StrictModel):
    collaborator: Collaborator
    message: str


class JudgeVerdict(StrictModel):
    match: bool
    explanation: str = ""
    timed_out: bool = False


class DomCheckResults(FrozenModel):
    element_exists: bool | None = None
    element_not_exists: bool | None = None
    element_text_matches: bool | None = None
    url_changed: bool | None = None

    def evaluated(self) -> dict[str, bool]:
        return self.model_dump(exclude_none=True)


class Comparison(FrozenModel):
    dom_checks: DomCheckResults | None = None
    semantic_match: bool | None = None
    overall_match: bool


class VerificationResult(FrozenModel):
    success: bool
    confidence: float = Field(ge=0.0, le=1.0)
    expected_state: ExpectedOutcome
    actual_state: ActualState
    comparison: Comparison
    reason: str
    failure_category: FailureCategory | None = None


class CorrectedStep(StrictModel):
    strategy: CorrectionStrategy
    reason: str
    step: Step
    delay_s: float = Field(default=0.0, ge=0.0)


class CorrectedTail(StrictModel):
    strategy: Literal["UPDATE_PLAN"] = "UPDATE_PLAN"
    reason: str
    steps: list[Step]


class GiveUp(StrictModel):
    kind: FailureKind
    reason: str
    strategy: CorrectionStrategy | None = None
