"""Storage interfaces for the task run audit trail."""

from __future__ import annotations

from typing import Protocol

from agent_runner.storage.models import (
    CorrectionRecord,
    RecordCounts,
    RunRecord,
    TaskAction,
    VerificationRecord,
)


class RecordStoreUnavailable(RuntimeError):
    """Raised by a backend when the underlying store cannot be reached."""


class RecordStore(Protocol):
    def migrate(self) -> None: ...

    def put_verification(self, record: VerificationRecord) -> None: ...

    def put_correction(self, record: CorrectionRecord) -> None: ...

    def append_action(self, entry: TaskAction) -> TaskAction: ...

    def get_counts(
        self, tenant_id: str, task_id: str, step_index: int, *, run_id: str | None = None
    ) -> RecordCounts: ...

    def acquire_run_lease(self, task_id: str, *, owner: str, ttl_s: float) -> bool: ...

    def release_run_lease(self, task_id: str, *, owner: str) -> None: ...

    def list_verifications(self, tenant_id: str, task_id: str) -> list[VerificationRecord]: ...

    def list_corrections(self, tenant_id: str, task_id: str) -> list[CorrectionRecord]: ...

    def list_actions(self, tenant_id: str, task_id: str) -> list[TaskAction]: ...

    def put_run(self, record: RunRecord) -> None: ...

    def get_latest_run(self, tenant_id: str, task_id: str) -> RunRecord | None: ...
