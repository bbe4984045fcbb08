"""Run progress events and the session broadcaster."""

from agent_runner.events.hub import BroadcasterClosed, EventBroadcaster, SessionEventHub
from agent_runner.events.models import (
    Event,
    PlanPreview,
    PlanUpdate,
    RunEvent,
    RunStatusEvent,
    StepResult,
)

__all__ = [
    "BroadcasterClosed",
    "Event",
    "EventBroadcaster",
    "PlanPreview",
    "PlanUpdate",
    "RunEvent",
    "RunStatusEvent",
    "SessionEventHub",
    "StepResult",
]
