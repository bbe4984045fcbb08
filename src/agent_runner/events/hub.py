"""In-process event broadcaster keyed by session."""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Callable
from threading import Lock
from typing import Protocol

from agent_runner.events.models import Event
from agent_runner.schemas import TERMINAL_RUN_STATUSES

logger = logging.getLogger(__name__)


class EventBroadcaster(Protocol):
    def publish(self, session_id: str, event: Event) -> None: ...

    def last_sequence(self, session_id: str, task_id: str) -> int: ...


class BroadcasterClosed(RuntimeError):
    pass


class SessionEventHub:
    """Ordered, replayable per-session event log.

    Runs publish from worker threads; readers (HTTP polling, websocket
    bridges) pull with a cursor, so delivery order per session is the publish
    order.

    Once a session's latest event is a terminal run status and a reader has
    drained the log, the buffered events are dropped after
    ``finished_retention_s``; the cursor offset survives so readers keep
    their place. Sessions with no activity for ``idle_session_ttl_s`` are
    forgotten entirely.
    """

    def __init__(
        self,
        *,
        max_events_per_session: int = 1000,
        finished_retention_s: float = 60.0,
        idle_session_ttl_s: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_events_per_session = max_events_per_session
        self.finished_retention_s = finished_retention_s
        self.idle_session_ttl_s = idle_session_ttl_s
        self._clock = clock
        self._lock = Lock()
        self._events: dict[str, list[Event]] = defaultdict(list)
        self._dropped: dict[str, int] = defaultdict(int)
        self._read_cursor: dict[str, int] = {}
        self._finished_at: dict[str, float] = {}
        self._touched: dict[str, float] = {}
        self._sequences: dict[tuple[str, str], int] = {}
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._touched)

    def start(self) -> None:
        with self._lock:
            self._open = True

    def close(self) -> None:
        with self._lock:
            self._open = False
            self._events.clear()
            self._dropped.clear()
            self._read_cursor.clear()
            self._finished_at.clear()
            self._touched.clear()
            self._sequences.clear()

    def publish(self, session_id: str, event: Event) -> None:
        with self._lock:
            if not self._open:
                raise BroadcasterClosed("Event hub is not running")
            now = self._clock()
            log = self._events[session_id]
            log.append(event)
            overflow = len(log) - self.max_events_per_session
            if overflow > 0:
                del log[:overflow]
                self._dropped[session_id] += overflow
            self._touched[session_id] = now
            key = (session_id, event.task_id)
            self._sequences[key] = max(self._sequences.get(key, 0), event.sequence_number)
            if event.type == "run_status" and event.status in TERMINAL_RUN_STATUSES:
                self._finished_at[session_id] = now
            else:
                self._finished_at.pop(session_id, None)
            self._sweep(now)
        logger.debug(
            "event_hub event=published session_id=%s type=%s sequence=%s",
            session_id,
            event.type,
            event.sequence_number,
        )

    def events_since(self, session_id: str, after: int = 0) -> tuple[list[Event], int]:
        """Events published after cursor ``after``, plus the new cursor.

        The cursor counts every event ever published to the session, including
        ones trimmed from the front of the log.
        """
        with self._lock:
            log = list(self._events.get(session_id, ()))
            dropped = self._dropped.get(session_id, 0)
            cursor = dropped + len(log)
            if session_id in self._touched:
                now = self._clock()
                self._touched[session_id] = now
                self._read_cursor[session_id] = max(self._read_cursor.get(session_id, 0), cursor)
                self._sweep(now)
        start = max(0, after - dropped)
        return log[start:], cursor

    def last_sequence(self, session_id: str, task_id: str) -> int:
        """Highest sequence number published for ``task_id`` in this session, or 0."""
        with self._lock:
            return self._sequences.get((session_id, task_id), 0)

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._forget(session_id)

    def _sweep(self, now: float) -> None:
        for session_id in list(self._touched):
            if now - self._touched[session_id] > self.idle_session_ttl_s:
                self._forget(session_id)
                continue
            finished_at = self._finished_at.get(session_id)
            if finished_at is None or now - finished_at < self.finished_retention_s:
                continue
            log = self._events.get(session_id)
            if not log:
                continue
            if self._read_cursor.get(session_id, 0) >= self._dropped[session_id] + len(log):
                self._dropped[session_id] += len(log)
                del self._events[session_id]
                logger.debug("event_hub event=compacted session_id=%s", session_id)

    def _forget(self, session_id: str) -> None:
        self._events.pop(session_id, None)
        self._dropped.pop(session_id, None)
        self._read_cursor.pop(session_id, None)
        self._finished_at.pop(session_id, None)
        self._touched.pop(session_id, None)
        for key in [key for key in self._sequences if key[0] == session_id]:
            del self._sequences[key]
        logger.debug("event_hub event=forgotten session_id=%s", session_id)
