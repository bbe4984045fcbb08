from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from agent_runner.correction.deterministic import DeterministicStepRewriter
from agent_runner.correction.engine import SelfCorrectionEngine
from agent_runner.events.hub import SessionEventHub
from agent_runner.execution.gateway import ExecutorGateway
from agent_runner.runs.controller import TaskRunController
from agent_runner.storage.memory import InMemoryRecordStore
from agent_runner.verification.engine import VerificationEngine
from agent_runner.verification.semantic import SemanticJudgeGateway
from fakes import ScriptedJudge


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def hub() -> SessionEventHub:
    event_hub = SessionEventHub()
    event_hub.start()
    yield event_hub
    event_hub.close()


@pytest.fixture
def make_controller(
    store: InMemoryRecordStore, hub: SessionEventHub
) -> Callable[..., TaskRunController]:
    controllers: list[TaskRunController] = []

    def _make(
        executor: Any,
        *,
        judge: Any | None = None,
        rewriter: Any | None = None,
        max_attempts: int = 3,
        executor_timeout_s: float = 5.0,
        retry_delay_s: float = 0.0,
        record_store: Any | None = None,
    ) -> TaskRunController:
        controller = TaskRunController(
            store=record_store if record_store is not None else store,
            broadcaster=hub,
            executor=ExecutorGateway(executor, timeout_s=executor_timeout_s),
            verifier=VerificationEngine(
                SemanticJudgeGateway(judge or ScriptedJudge(match=False), timeout_s=5.0)
            ),
            corrector=SelfCorrectionEngine(
                rewriter or DeterministicStepRewriter(),
                max_attempts=max_attempts,
                retry_delay_s=retry_delay_s,
            ),
            lease_ttl_s=30.0,
            max_parallel_runs=2,
        )
        controllers.append(controller)
        return controller

    yield _make
    for controller in controllers:
        controller.shutdown(wait=True)
