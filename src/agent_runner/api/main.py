"""FastAPI app entrypoint for agent-runner."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from agent_runner.config.settings import Settings, get_settings
from agent_runner.errors import AlreadyRunning
from agent_runner.events.hub import SessionEventHub
from agent_runner.execution.gateway import StepExecutor
from agent_runner.execution.http import HttpStepExecutor
from agent_runner.reports.report import ReportFormatError, generate_task_report
from agent_runner.runs.controller import TaskRunController
from agent_runner.schemas import RunStatus, TaskPlan
from agent_runner.storage.base import RecordStore, RecordStoreUnavailable
from agent_runner.storage.models import CorrectionRecord, TaskAction, VerificationRecord
from agent_runner.storage.postgres import PostgresRecordStore
from agent_runner.verification.semantic import SemanticJudge

logger = logging.getLogger(__name__)

DEFAULT_TENANT = "default"
WEBSOCKET_POLL_S = 0.25


class StartRunRequest(BaseModel):
    session_id: str = Field(min_length=1)
    tenant_id: str = DEFAULT_TENANT
    plan: TaskPlan
    wait: bool = False


class RunView(BaseModel):
    run_id: str
    task_id: str
    status: RunStatus
    reason: str | None = None
    plan: TaskPlan
    active: bool


class CancelResponse(BaseModel):
    task_id: str
    cancelled: bool


class EventPage(BaseModel):
    events: list[dict[str, Any]]
    cursor: int


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    store_override: RecordStore | None,
    broadcaster_override: SessionEventHub | None,
    step_executor_override: StepExecutor | None,
    semantic_judge_override: SemanticJudge | None,
) -> None:
    if not hasattr(app.state, "store"):
        database_url = settings.resolved_database_url()
        if store_override is None and not database_url:
            raise RuntimeError(
                "Missing database URL. Set AGENT_RUNNER_DATABASE_URL "
                "or RUNNER_DATABASE_URL before starting the app."
            )
        app.state.store = store_override or PostgresRecordStore(database_url)
        app.state.store.migrate()

    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "broadcaster"):
        hub = broadcaster_override or SessionEventHub(
            max_events_per_session=settings.max_events_per_session,
            finished_retention_s=settings.event_retention_s,
            idle_session_ttl_s=settings.event_session_ttl_s,
        )
        if not hub.is_open:
            hub.start()
        app.state.broadcaster = hub

    if not hasattr(app.state, "controller"):
        step_executor = step_executor_override or HttpStepExecutor(
            settings.executor_url, timeout_s=settings.executor_timeout_s
        )
        app.state.controller = TaskRunController.from_settings(
            settings,
            store=app.state.store,
            broadcaster=app.state.broadcaster,
            step_executor=step_executor,
            semantic_judge=semantic_judge_override,
        )


def create_app(
    *,
    store: RecordStore | None = None,
    broadcaster: SessionEventHub | None = None,
    step_executor: StepExecutor | None = None,
    semantic_judge: SemanticJudge | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()

    def _init(app: FastAPI) -> None:
        _ensure_runtime_state(
            app,
            settings=settings,
            store_override=store,
            broadcaster_override=broadcaster,
            step_executor_override=step_executor,
            semantic_judge_override=semantic_judge,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _init(app)
        yield
        app.state.controller.shutdown(wait=False)
        app.state.broadcaster.close()

    app_lifespan = lifespan if store is None else None
    app = FastAPI(title=settings.app_name, lifespan=app_lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if store is not None:
        _init(app)

    def _runtime(request: Request) -> tuple[RecordStore, TaskRunController]:
        if not hasattr(request.app.state, "controller"):
            _init(request.app)
        return request.app.state.store, request.app.state.controller

    @app.exception_handler(RecordStoreUnavailable)
    async def store_unavailable(request: Request, exc: RecordStoreUnavailable) -> JSONResponse:
        logger.warning("api event=store_unavailable path=%s error=%s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "Record store unavailable"})

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.post("/tasks/{task_id}/runs", response_model=RunView, status_code=202)
    def start_run(task_id: str, payload: StartRunRequest, request: Request) -> RunView:
        _, controller = _runtime(request)
        launch = controller.run if payload.wait else controller.start_run
        try:
            handle = launch(
                tenant_id=payload.tenant_id,
                task_id=task_id,
                session_id=payload.session_id,
                plan=payload.plan,
            )
        except AlreadyRunning as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

        return RunView(
            run_id=handle.run_id,
            task_id=task_id,
            status=handle.state,
            reason=handle.reason,
            plan=handle.plan,
            active=not handle.done(),
        )

    @app.post("/tasks/{task_id}/runs/cancel", response_model=CancelResponse)
    def cancel_run(
        task_id: str, request: Request, tenant_id: str = DEFAULT_TENANT
    ) -> CancelResponse:
        _, controller = _runtime(request)
        handle = controller.get_active(task_id)
        if handle is None or handle.tenant_id != tenant_id:
            raise HTTPException(status_code=404, detail="No active run for task")
        handle.cancel()
        return CancelResponse(task_id=task_id, cancelled=True)

    @app.get("/tasks/{task_id}/runs/latest", response_model=RunView)
    def get_latest_run(
        task_id: str, request: Request, tenant_id: str = DEFAULT_TENANT
    ) -> RunView:
        store_, controller = _runtime(request)
        handle = controller.get_active(task_id)
        if handle is not None and handle.tenant_id == tenant_id:
            return RunView(
                run_id=handle.run_id,
                task_id=task_id,
                status=handle.state,
                reason=handle.reason,
                plan=handle.plan,
                active=True,
            )

        record = store_.get_latest_run(tenant_id, task_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Task run not found")
        return RunView(
            run_id=record.run_id,
            task_id=task_id,
            status=record.status,
            reason=record.reason,
            plan=record.plan,
            active=False,
        )

    @app.get("/tasks/{task_id}/verifications", response_model=list[VerificationRecord])
    def list_verifications(
        task_id: str, request: Request, tenant_id: str = DEFAULT_TENANT
    ) -> list[VerificationRecord]:
        store_, _ = _runtime(request)
        return store_.list_verifications(tenant_id, task_id)

    @app.get("/tasks/{task_id}/corrections", response_model=list[CorrectionRecord])
    def list_corrections(
        task_id: str, request: Request, tenant_id: str = DEFAULT_TENANT
    ) -> list[CorrectionRecord]:
        store_, _ = _runtime(request)
        return store_.list_corrections(tenant_id, task_id)

    @app.get("/tasks/{task_id}/actions", response_model=list[TaskAction])
    def list_actions(
        task_id: str, request: Request, tenant_id: str = DEFAULT_TENANT
    ) -> list[TaskAction]:
        store_, _ = _runtime(request)
        return store_.list_actions(tenant_id, task_id)

    @app.get("/tasks/{task_id}/report")
    def get_report(
        task_id: str,
        request: Request,
        report_format: str = Query(default="json", alias="format"),
        tenant_id: str = DEFAULT_TENANT,
    ) -> Response:
        store_, _ = _runtime(request)
        try:
            report = generate_task_report(
                task_id,
                store_.list_actions(tenant_id, task_id),
                report_format,
                run=store_.get_latest_run(tenant_id, task_id),
            )
        except ReportFormatError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return Response(
            content=report.content,
            media_type=report.mime_type,
            headers={"Content-Disposition": f'attachment; filename="{report.filename}"'},
        )

    @app.get("/sessions/{session_id}/events", response_model=EventPage)
    def list_events(session_id: str, request: Request, after: int = Query(default=0, ge=0)) -> EventPage:
        _runtime(request)
        events, cursor = request.app.state.broadcaster.events_since(session_id, after)
        return EventPage(events=[event.model_dump(mode="json") for event in events], cursor=cursor)

    @app.websocket("/sessions/{session_id}/ws")
    async def session_events(websocket: WebSocket, session_id: str, after: int = 0) -> None:
        hub: SessionEventHub = websocket.app.state.broadcaster
        await websocket.accept()
        cursor = after
        try:
            while True:
                events, cursor = hub.events_since(session_id, cursor)
                for event in events:
                    await websocket.send_json(event.model_dump(mode="json"))
                try:
                    data = await asyncio.wait_for(websocket.receive_text(), timeout=WEBSOCKET_POLL_S)
                except asyncio.TimeoutError:
                    continue
                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    await websocket.send_json({"type": "error", "error": "Invalid JSON"})
                    continue
                if isinstance(message, dict) and message.get("type") == "ping":
                    await websocket.send_json({"type": "pong"})
        except WebSocketDisconnect:
            logger.debug("api event=ws_disconnected session_id=%s", session_id)

    return app


# Module-level app for `uvicorn agent_runner.api.main:app`.
app = create_app()
