"""Task run controller: owns run lifecycle, leases, and worker threads."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from langgraph.errors import GraphRecursionError

from agent_runner.config.settings import Settings
from agent_runner.correction.engine import SelfCorrectionEngine
from agent_runner.correction.rewriter import resolve_step_rewriter
from agent_runner.errors import AlreadyRunning
from agent_runner.events.hub import EventBroadcaster
from agent_runner.events.models import PlanPreview
from agent_runner.execution.gateway import ExecutorGateway, StepExecutor
from agent_runner.graph.context import RunContext
from agent_runner.graph.nodes.finalize import announce
from agent_runner.graph.state import RunState, initial_state
from agent_runner.graph.workflow import build_graph, recursion_limit
from agent_runner.schemas import TERMINAL_RUN_STATUSES, RunStatus, TaskPlan
from agent_runner.storage.base import RecordStore, RecordStoreUnavailable
from agent_runner.storage.models import RunRecord
from agent_runner.verification.engine import VerificationEngine
from agent_runner.verification.semantic import (
    SemanticJudge,
    SemanticJudgeGateway,
    resolve_semantic_judge,
)

logger = logging.getLogger(__name__)

MAX_PLAN_STEPS = 500


class RunHandle:
    """Caller's view of one run: live status, cooperative cancel, and wait."""

    def __init__(self, ctx: RunContext, plan: TaskPlan) -> None:
        self._ctx = ctx
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._status: RunStatus = "idle"
        self._plan = plan
        self._reason: str | None = None
        self.future: Future | None = None

    @property
    def run_id(self) -> str:
        return self._ctx.run_id

    @property
    def tenant_id(self) -> str:
        return self._ctx.tenant_id

    @property
    def task_id(self) -> str:
        return self._ctx.task_id

    @property
    def session_id(self) -> str:
        return self._ctx.session_id

    @property
    def state(self) -> RunStatus:
        with self._lock:
            return self._status

    @property
    def plan(self) -> TaskPlan:
        with self._lock:
            return self._plan

    @property
    def reason(self) -> str | None:
        with self._lock:
            return self._reason

    def done(self) -> bool:
        return self._done.is_set()

    def cancel(self) -> None:
        """Request cancellation; honored at the next step boundary."""
        self._ctx.cancel_event.set()

    def wait(self, timeout: float | None = None) -> RunStatus:
        if not self._done.wait(timeout):
            raise TimeoutError(f"Run {self.run_id} still {self.state} after {timeout}s")
        return self.state

    def _observe(self, values: dict[str, Any]) -> None:
        with self._lock:
            self._status = values.get("status", self._status)
            self._plan = values.get("plan", self._plan)
            self._reason = values.get("reason", self._reason)

    def _finish(self) -> None:
        self._done.set()


class TaskRunController:
    def __init__(
        self,
        *,
        store: RecordStore,
        broadcaster: EventBroadcaster,
        executor: ExecutorGateway,
        verifier: VerificationEngine,
        corrector: SelfCorrectionEngine,
        lease_ttl_s: float = 120.0,
        max_parallel_runs: int = 8,
    ) -> None:
        self.store = store
        self.broadcaster = broadcaster
        self.executor = executor
        self.verifier = verifier
        self.corrector = corrector
        self.lease_ttl_s = lease_ttl_s
        self._pool = ThreadPoolExecutor(
            max_workers=max_parallel_runs, thread_name_prefix="task-run"
        )
        self._active: dict[str, RunHandle] = {}
        self._active_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: RecordStore,
        broadcaster: EventBroadcaster,
        step_executor: StepExecutor,
        semantic_judge: SemanticJudge | None = None,
    ) -> TaskRunController:
        if semantic_judge is None:
            judge_resolution = resolve_semantic_judge(settings)
            semantic_judge = judge_resolution.judge
            logger.info(
                "task_run event=judge_resolved requested=%s effective=%s fallback_reason=%s",
                judge_resolution.requested_mode,
                judge_resolution.effective_mode,
                judge_resolution.fallback_reason,
            )
        rewriter_resolution = resolve_step_rewriter(settings)
        logger.info(
            "task_run event=rewriter_resolved requested=%s effective=%s fallback_reason=%s",
            rewriter_resolution.requested_mode,
            rewriter_resolution.effective_mode,
            rewriter_resolution.fallback_reason,
        )

        return cls(
            store=store,
            broadcaster=broadcaster,
            executor=ExecutorGateway(step_executor, timeout_s=settings.executor_timeout_s),
            verifier=VerificationEngine(
                SemanticJudgeGateway(semantic_judge, timeout_s=settings.judge_timeout_s),
                semantic_match_confidence=settings.semantic_match_confidence,
            ),
            corrector=SelfCorrectionEngine(
                rewriter_resolution.rewriter,
                max_attempts=settings.max_correction_attempts,
                retry_delay_s=settings.retry_delay_s,
            ),
            lease_ttl_s=settings.run_lease_ttl_s,
            max_parallel_runs=settings.max_parallel_runs,
        )

    def start_run(
        self, *, tenant_id: str, task_id: str, session_id: str, plan: TaskPlan
    ) -> RunHandle:
        """Claim the task and drive the plan on a worker thread."""
        handle = self._claim(tenant_id=tenant_id, task_id=task_id, session_id=session_id, plan=plan)
        handle.future = self._pool.submit(self._drive, handle)
        return handle

    def run(self, *, tenant_id: str, task_id: str, session_id: str, plan: TaskPlan) -> RunHandle:
        """Claim the task and drive the plan on the calling thread."""
        handle = self._claim(tenant_id=tenant_id, task_id=task_id, session_id=session_id, plan=plan)
        self._drive(handle)
        return handle

    def get_active(self, task_id: str) -> RunHandle | None:
        with self._active_lock:
            return self._active.get(task_id)

    def cancel(self, task_id: str) -> bool:
        handle = self.get_active(task_id)
        if handle is None:
            return False
        handle.cancel()
        return True

    def shutdown(self, *, wait: bool = True) -> None:
        with self._active_lock:
            handles = list(self._active.values())
        for handle in handles:
            handle.cancel()
        self._pool.shutdown(wait=wait)

    def _claim(
        self, *, tenant_id: str, task_id: str, session_id: str, plan: TaskPlan
    ) -> RunHandle:
        run_id = str(uuid4())
        if not self.store.acquire_run_lease(task_id, owner=run_id, ttl_s=self.lease_ttl_s):
            raise AlreadyRunning(task_id)

        ctx = RunContext(
            tenant_id=tenant_id,
            task_id=task_id,
            session_id=session_id,
            run_id=run_id,
            store=self.store,
            broadcaster=self.broadcaster,
            executor=self.executor,
            verifier=self.verifier,
            corrector=self.corrector,
            lease_ttl_s=self.lease_ttl_s,
            sequence_start=self._last_sequence(session_id, task_id),
        )
        start_plan = initial_state(plan)["plan"]
        handle = RunHandle(ctx, start_plan)
        with self._active_lock:
            self._active[task_id] = handle

        ctx.emit(PlanPreview, plan=start_plan)
        logger.info(
            "task_run event=started task_id=%s run_id=%s session_id=%s steps=%s",
            task_id,
            run_id,
            session_id,
            len(start_plan.steps),
        )
        return handle

    def _last_sequence(self, session_id: str, task_id: str) -> int:
        # Continue the task's numbering from earlier runs in this session.
        try:
            return self.broadcaster.last_sequence(session_id, task_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "task_run event=sequence_lookup_failed task_id=%s error=%s", task_id, exc
            )
            return 0

    def _drive(self, handle: RunHandle) -> None:
        ctx = handle._ctx
        graph = build_graph(ctx)
        try:
            state: RunState | None = initial_state(handle.plan)
            while state is not None:
                if len(state["plan"].steps) > MAX_PLAN_STEPS:
                    self._fail(
                        handle, f"Run exceeded its step budget: plan grew past {MAX_PLAN_STEPS} steps"
                    )
                    break
                state = self._stream(graph, handle, state)
            if handle.state not in TERMINAL_RUN_STATUSES:
                self._fail(handle, f"Run ended in non-terminal state {handle.state}")
        except RecordStoreUnavailable as exc:
            logger.warning("task_run event=store_unavailable task_id=%s error=%s", ctx.task_id, exc)
            self._fail(handle, f"CollaboratorUnavailable: record store: {exc}")
        except GraphRecursionError:
            self._fail(handle, "Run exceeded its step budget")
        except Exception as exc:  # noqa: BLE001
            logger.exception("task_run event=crashed task_id=%s", ctx.task_id)
            self._fail(handle, f"Run crashed: {exc}")
        finally:
            with self._active_lock:
                if self._active.get(ctx.task_id) is handle:
                    del self._active[ctx.task_id]
            try:
                self.store.release_run_lease(ctx.task_id, owner=ctx.run_id)
            except RecordStoreUnavailable as exc:
                logger.warning(
                    "task_run event=lease_release_failed task_id=%s error=%s", ctx.task_id, exc
                )
            handle._finish()

    def _stream(self, graph: Any, handle: RunHandle, state: RunState) -> RunState | None:
        """Stream the graph with a node budget sized for the plan it starts with.

        When a replacement tail grows the plan past that size, stop at the next
        step boundary and return the state to resume from with a fresh budget.
        """
        budgeted_steps = len(state["plan"].steps)
        config = {"recursion_limit": recursion_limit(budgeted_steps, self.corrector.max_attempts)}
        for values in graph.stream(state, config, stream_mode="values"):
            handle._observe(values)
            if values.get("status") == "executing" and len(values["plan"].steps) > budgeted_steps:
                return values
        return None

    def _fail(self, handle: RunHandle, reason: str) -> None:
        ctx = handle._ctx
        plan = handle.plan
        handle._observe({"status": "failed", "reason": reason})
        try:
            self.store.put_run(
                RunRecord(
                    tenant_id=ctx.tenant_id,
                    task_id=ctx.task_id,
                    run_id=ctx.run_id,
                    status="failed",
                    reason=reason,
                    plan=plan,
                    current_step_index=plan.current_step_index,
                    started_at=ctx.started_at,
                    finished_at=datetime.now(UTC),
                )
            )
        except RecordStoreUnavailable as exc:
            logger.warning("task_run event=run_record_lost task_id=%s error=%s", ctx.task_id, exc)
        announce(ctx, "failed", reason)
