"""Record store backends and audit-trail models."""

from agent_runner.storage.base import RecordStore, RecordStoreUnavailable
from agent_runner.storage.memory import InMemoryRecordStore
from agent_runner.storage.models import (
    CorrectionRecord,
    RecordCounts,
    RunRecord,
    TaskAction,
    VerificationRecord,
)
from agent_runner.storage.postgres import PostgresRecordStore

__all__ = [
    "CorrectionRecord",
    "InMemoryRecordStore",
    "PostgresRecordStore",
    "RecordCounts",
    "RecordStore",
    "RecordStoreUnavailable",
    "RunRecord",
    "TaskAction",
    "VerificationRecord",
]
