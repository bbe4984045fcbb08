"""Per-run collaborators and identity shared by the workflow nodes."""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from agent_runner.correction.engine import SelfCorrectionEngine
from agent_runner.events.hub import EventBroadcaster
from agent_runner.events.models import RunEvent
from agent_runner.execution.gateway import ExecutorGateway
from agent_runner.storage.base import RecordStore
from agent_runner.verification.engine import VerificationEngine

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    tenant_id: str
    task_id: str
    session_id: str
    run_id: str
    store: RecordStore
    broadcaster: EventBroadcaster
    executor: ExecutorGateway
    verifier: VerificationEngine
    corrector: SelfCorrectionEngine
    lease_ttl_s: float = 120.0
    cancel_event: threading.Event = field(default_factory=threading.Event)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    sequence_start: int = 0
    _sequence: Iterator[int] = field(init=False, repr=False)
    _sequence_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        self._sequence = itertools.count(self.sequence_start + 1)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def emit(self, event_type: type[RunEvent], **fields: Any) -> RunEvent | None:
        """Build the next event in this task's sequence and publish it.

        Broadcaster failures are logged and do not affect the run.
        """
        with self._sequence_lock:
            event = event_type(
                session_id=self.session_id,
                task_id=self.task_id,
                sequence_number=next(self._sequence),
                timestamp=datetime.now(UTC),
                **fields,
            )
            try:
                self.broadcaster.publish(self.session_id, event)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "task_run event=publish_failed task_id=%s type=%s error=%s",
                    self.task_id,
                    event_type.__name__,
                    exc,
                )
                return None
        return event
