"""In-memory record store for tests and single-process runs."""

from __future__ import annotations

import threading
import time
from collections import defaultdict

from agent_runner.storage.models import (
    CorrectionRecord,
    RecordCounts,
    RunRecord,
    TaskAction,
    VerificationRecord,
)


class InMemoryRecordStore:
    """Simple in-memory implementation; thread-safe so concurrent runs can share it."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._verifications: list[VerificationRecord] = []
        self._corrections: list[CorrectionRecord] = []
        self._actions: list[TaskAction] = []
        self._runs: list[RunRecord] = []
        self._action_sequence: dict[tuple[str, str], int] = defaultdict(int)
        self._leases: dict[str, tuple[str, float]] = {}

    def migrate(self) -> None:
        return None

    def put_verification(self, record: VerificationRecord) -> None:
        with self._lock:
            self._verifications.append(record)

    def put_correction(self, record: CorrectionRecord) -> None:
        with self._lock:
            self._corrections.append(record)

    def append_action(self, entry: TaskAction) -> TaskAction:
        with self._lock:
            key = (entry.tenant_id, entry.task_id)
            self._action_sequence[key] += 1
            stored = entry.model_copy(update={"sequence": self._action_sequence[key]})
            self._actions.append(stored)
            return stored

    def get_counts(
        self, tenant_id: str, task_id: str, step_index: int, *, run_id: str | None = None
    ) -> RecordCounts:
        def matches(item: VerificationRecord | CorrectionRecord) -> bool:
            if (item.tenant_id, item.task_id, item.step_index) != (tenant_id, task_id, step_index):
                return False
            return run_id is None or item.run_id == run_id

        with self._lock:
            verifications = sum(1 for item in self._verifications if matches(item))
            corrections = sum(1 for item in self._corrections if matches(item))
        return RecordCounts(verifications=verifications, corrections=corrections)

    def acquire_run_lease(self, task_id: str, *, owner: str, ttl_s: float) -> bool:
        now = time.monotonic()
        with self._lock:
            current = self._leases.get(task_id)
            if current is not None:
                current_owner, expires_at = current
                if current_owner != owner and expires_at > now:
                    return False
            self._leases[task_id] = (owner, now + ttl_s)
            return True

    def release_run_lease(self, task_id: str, *, owner: str) -> None:
        with self._lock:
            current = self._leases.get(task_id)
            if current is not None and current[0] == owner:
                del self._leases[task_id]

    def list_verifications(self, tenant_id: str, task_id: str) -> list[VerificationRecord]:
        with self._lock:
            items = [
                item
                for item in self._verifications
                if item.tenant_id == tenant_id and item.task_id == task_id
            ]
        return sorted(items, key=lambda item: (item.timestamp, item.step_index))

    def list_corrections(self, tenant_id: str, task_id: str) -> list[CorrectionRecord]:
        with self._lock:
            items = [
                item
                for item in self._corrections
                if item.tenant_id == tenant_id and item.task_id == task_id
            ]
        return sorted(items, key=lambda item: (item.timestamp, item.step_index))

    def list_actions(self, tenant_id: str, task_id: str) -> list[TaskAction]:
        with self._lock:
            items = [
                item
                for item in self._actions
                if item.tenant_id == tenant_id and item.task_id == task_id
            ]
        return sorted(items, key=lambda item: item.sequence)

    def put_run(self, record: RunRecord) -> None:
        with self._lock:
            self._runs.append(record)

    def get_latest_run(self, tenant_id: str, task_id: str) -> RunRecord | None:
        with self._lock:
            for item in reversed(self._runs):
                if item.tenant_id == tenant_id and item.task_id == task_id:
                    return item
        return None
