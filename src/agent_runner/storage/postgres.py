"""PostgreSQL-backed record store with automatic table migration."""

from __future__ import annotations

import json
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

from agent_runner.storage.base import RecordStoreUnavailable
from agent_runner.storage.models import (
    CorrectionRecord,
    RecordCounts,
    RunRecord,
    TaskAction,
    VerificationRecord,
)


class PostgresRecordStore:
    """Persist verification, correction, action, and run records in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("AGENT_RUNNER_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        with self._session() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS verification_records (
                    record_id BIGSERIAL PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    run_id TEXT NOT NULL,
                    step_index INTEGER NOT NULL,
                    success BOOLEAN NOT NULL,
                    confidence DOUBLE PRECISION NOT NULL,
                    expected_state JSONB NOT NULL,
                    actual_state JSONB NOT NULL,
                    comparison JSONB NOT NULL,
                    reason TEXT NOT NULL,
                    failure_category TEXT,
                    timestamp TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_verification_records_step
                ON verification_records(tenant_id, task_id, step_index)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS correction_records (
                    record_id BIGSERIAL PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    run_id TEXT NOT NULL,
                    step_index INTEGER NOT NULL,
                    original_step JSONB NOT NULL,
                    corrected_step JSONB NOT NULL,
                    strategy TEXT NOT NULL,
                    reason TEXT NOT NULL,
                    attempt_number INTEGER NOT NULL CHECK (attempt_number >= 1),
                    replacement_tail JSONB,
                    timestamp TIMESTAMPTZ NOT NULL,
                    UNIQUE (run_id, step_index, attempt_number)
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_actions (
                    tenant_id TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    sequence INTEGER NOT NULL,
                    step_index INTEGER NOT NULL,
                    action TEXT NOT NULL,
                    status TEXT NOT NULL,
                    thought TEXT,
                    timestamp TIMESTAMPTZ NOT NULL,
                    PRIMARY KEY (tenant_id, task_id, sequence)
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_run_records (
                    run_id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    reason TEXT,
                    plan_json JSONB NOT NULL,
                    current_step_index INTEGER NOT NULL,
                    started_at TIMESTAMPTZ NOT NULL,
                    finished_at TIMESTAMPTZ
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_task_run_records_task
                ON task_run_records(tenant_id, task_id, started_at DESC)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS run_leases (
                    task_id TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    expires_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.commit()

    def put_verification(self, record: VerificationRecord) -> None:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO verification_records (
                    tenant_id,
                    task_id,
                    step_index,
                    success,
                    confidence,
                    expected_state,
                    actual_state,
                    comparison,
                    reason,
                    failure_category,
                    timestamp,
                    run_id
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    record.tenant_id,
                    record.task_id,
                    record.step_index,
                    record.success,
                    record.confidence,
                    self._json_wrapper(record.expected_state.model_dump(mode="json")),
                    self._json_wrapper(record.actual_state.model_dump(mode="json")),
                    self._json_wrapper(record.comparison.model_dump(mode="json")),
                    record.reason,
                    record.failure_category,
                    record.timestamp,
                    record.run_id,
                ),
            )
            conn.commit()

    def put_correction(self, record: CorrectionRecord) -> None:
        tail = record.replacement_tail
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO correction_records (
                    tenant_id,
                    task_id,
                    step_index,
                    original_step,
                    corrected_step,
                    strategy,
                    reason,
                    attempt_number,
                    replacement_tail,
                    timestamp,
                    run_id
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    record.tenant_id,
                    record.task_id,
                    record.step_index,
                    self._json_wrapper(record.original_step.model_dump(mode="json")),
                    self._json_wrapper(record.corrected_step.model_dump(mode="json")),
                    record.strategy,
                    record.reason,
                    record.attempt_number,
                    (
                        self._json_wrapper([step.model_dump(mode="json") for step in tail])
                        if tail is not None
                        else None
                    ),
                    record.timestamp,
                    record.run_id,
                ),
            )
            conn.commit()

    def append_action(self, entry: TaskAction) -> TaskAction:
        with self._session() as conn:
            row = conn.execute(
                """
                INSERT INTO task_actions (
                    tenant_id,
                    task_id,
                    sequence,
                    step_index,
                    action,
                    status,
                    thought,
                    timestamp
                )
                SELECT %s, %s, COALESCE(MAX(sequence), 0) + 1, %s, %s, %s, %s, %s
                FROM task_actions
                WHERE tenant_id = %s AND task_id = %s
                RETURNING sequence
                """,
                (
                    entry.tenant_id,
                    entry.task_id,
                    entry.step_index,
                    entry.action,
                    entry.status,
                    entry.thought,
                    entry.timestamp,
                    entry.tenant_id,
                    entry.task_id,
                ),
            ).fetchone()
            conn.commit()
        if row is None or row.get("sequence") is None:
            raise RuntimeError("Failed to persist task action")
        return entry.model_copy(update={"sequence": int(row["sequence"])})

    def get_counts(
        self, tenant_id: str, task_id: str, step_index: int, *, run_id: str | None = None
    ) -> RecordCounts:
        scope = (tenant_id, task_id, step_index, run_id, run_id)
        with self._session() as conn:
            row = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM verification_records
                     WHERE tenant_id = %s AND task_id = %s AND step_index = %s
                       AND (%s::text IS NULL OR run_id = %s)) AS verifications,
                    (SELECT COUNT(*) FROM correction_records
                     WHERE tenant_id = %s AND task_id = %s AND step_index = %s
                       AND (%s::text IS NULL OR run_id = %s)) AS corrections
                """,
                scope + scope,
            ).fetchone()
        if row is None:
            return RecordCounts()
        return RecordCounts(
            verifications=int(row["verifications"]),
            corrections=int(row["corrections"]),
        )

    def acquire_run_lease(self, task_id: str, *, owner: str, ttl_s: float) -> bool:
        now = datetime.now(tz=UTC)
        expires_at = now + timedelta(seconds=ttl_s)
        with self._session() as conn:
            row = conn.execute(
                """
                INSERT INTO run_leases (task_id, owner, expires_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (task_id) DO UPDATE
                SET owner = EXCLUDED.owner,
                    expires_at = EXCLUDED.expires_at
                WHERE run_leases.owner = EXCLUDED.owner
                   OR run_leases.expires_at < %s
                RETURNING owner
                """,
                (task_id, owner, expires_at, now),
            ).fetchone()
            conn.commit()
        return row is not None and row.get("owner") == owner

    def release_run_lease(self, task_id: str, *, owner: str) -> None:
        with self._session() as conn:
            conn.execute(
                "DELETE FROM run_leases WHERE task_id = %s AND owner = %s",
                (task_id, owner),
            )
            conn.commit()

    def list_verifications(self, tenant_id: str, task_id: str) -> list[VerificationRecord]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM verification_records
                WHERE tenant_id = %s AND task_id = %s
                ORDER BY timestamp, record_id
                """,
                (tenant_id, task_id),
            ).fetchall()
        return [self._row_to_verification(row) for row in rows]

    def list_corrections(self, tenant_id: str, task_id: str) -> list[CorrectionRecord]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM correction_records
                WHERE tenant_id = %s AND task_id = %s
                ORDER BY timestamp, record_id
                """,
                (tenant_id, task_id),
            ).fetchall()
        return [self._row_to_correction(row) for row in rows]

    def list_actions(self, tenant_id: str, task_id: str) -> list[TaskAction]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM task_actions
                WHERE tenant_id = %s AND task_id = %s
                ORDER BY sequence
                """,
                (tenant_id, task_id),
            ).fetchall()
        return [
            TaskAction(
                tenant_id=str(row["tenant_id"]),
                task_id=str(row["task_id"]),
                step_index=int(row["step_index"]),
                action=str(row["action"]),
                status=row["status"],
                thought=row.get("thought"),
                sequence=int(row["sequence"]),
                timestamp=self._parse_datetime(row["timestamp"]),
            )
            for row in rows
        ]

    def put_run(self, record: RunRecord) -> None:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO task_run_records (
                    run_id,
                    tenant_id,
                    task_id,
                    status,
                    reason,
                    plan_json,
                    current_step_index,
                    started_at,
                    finished_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (run_id) DO UPDATE
                SET status = EXCLUDED.status,
                    reason = EXCLUDED.reason,
                    plan_json = EXCLUDED.plan_json,
                    current_step_index = EXCLUDED.current_step_index,
                    finished_at = EXCLUDED.finished_at
                """,
                (
                    record.run_id,
                    record.tenant_id,
                    record.task_id,
                    record.status,
                    record.reason,
                    self._json_wrapper(record.plan.model_dump(mode="json")),
                    record.current_step_index,
                    record.started_at,
                    record.finished_at,
                ),
            )
            conn.commit()

    def get_latest_run(self, tenant_id: str, task_id: str) -> RunRecord | None:
        with self._session() as conn:
            row = conn.execute(
                """
                SELECT *
                FROM task_run_records
                WHERE tenant_id = %s AND task_id = %s
                ORDER BY started_at DESC
                LIMIT 1
                """,
                (tenant_id, task_id),
            ).fetchone()
        if row is None:
            return None
        return RunRecord(
            tenant_id=str(row["tenant_id"]),
            task_id=str(row["task_id"]),
            run_id=str(row["run_id"]),
            status=row["status"],
            reason=row.get("reason"),
            plan=self._parse_json(row["plan_json"]),
            current_step_index=int(row["current_step_index"]),
            started_at=self._parse_datetime(row["started_at"]),
            finished_at=(
                self._parse_datetime(row["finished_at"])
                if row.get("finished_at") is not None
                else None
            ),
        )

    @contextmanager
    def _session(self) -> Iterator[Any]:
        with self._lock:
            try:
                with self._psycopg.connect(
                    self.database_url, row_factory=self._dict_row
                ) as conn:
                    yield conn
            except self._psycopg.OperationalError as exc:
                raise RecordStoreUnavailable(f"Record store unreachable: {exc}") from exc

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json(raw: Any) -> Any:
        if isinstance(raw, str):
            return json.loads(raw)
        return raw

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_verification(cls, row: Any) -> VerificationRecord:
        return VerificationRecord(
            tenant_id=str(row["tenant_id"]),
            task_id=str(row["task_id"]),
            run_id=str(row["run_id"]),
            step_index=int(row["step_index"]),
            success=bool(row["success"]),
            confidence=float(row["confidence"]),
            expected_state=cls._parse_json(row["expected_state"]),
            actual_state=cls._parse_json(row["actual_state"]),
            comparison=cls._parse_json(row["comparison"]),
            reason=str(row["reason"]),
            failure_category=row.get("failure_category"),
            timestamp=cls._parse_datetime(row["timestamp"]),
        )

    @classmethod
    def _row_to_correction(cls, row: Any) -> CorrectionRecord:
        tail = cls._parse_json(row.get("replacement_tail"))
        return CorrectionRecord(
            tenant_id=str(row["tenant_id"]),
            task_id=str(row["task_id"]),
            run_id=str(row["run_id"]),
            step_index=int(row["step_index"]),
            original_step=cls._parse_json(row["original_step"]),
            corrected_step=cls._parse_json(row["corrected_step"]),
            strategy=row["strategy"],
            reason=str(row["reason"]),
            attempt_number=int(row["attempt_number"]),
            replacement_tail=tail if isinstance(tail, list) else None,
            timestamp=cls._parse_datetime(row["timestamp"]),
        )
