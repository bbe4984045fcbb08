from __future__ import annotations

from uuid import uuid4

from agent_runner.correction.engine import SelfCorrectionEngine
from agent_runner.events.hub import SessionEventHub
from agent_runner.execution.gateway import ExecutorGateway
from agent_runner.runs.controller import TaskRunController
from agent_runner.storage.postgres import PostgresRecordStore
from agent_runner.verification.engine import VerificationEngine
from agent_runner.verification.semantic import SemanticJudgeGateway
from fakes import ScriptedJudge, ScriptedStepExecutor, make_step, page_with, plan_of


def test_lease_lifecycle_in_postgres(postgres_store: PostgresRecordStore) -> None:
    task_id = f"lease-{uuid4()}"

    assert postgres_store.acquire_run_lease(task_id, owner="run-a", ttl_s=60) is True
    assert postgres_store.acquire_run_lease(task_id, owner="run-b", ttl_s=60) is False
    assert postgres_store.acquire_run_lease(task_id, owner="run-a", ttl_s=60) is True

    postgres_store.release_run_lease(task_id, owner="run-a")
    assert postgres_store.acquire_run_lease(task_id, owner="run-b", ttl_s=60) is True
    postgres_store.release_run_lease(task_id, owner="run-b")


def test_corrected_run_is_persisted_in_postgres(
    postgres_store: PostgresRecordStore,
    hub: SessionEventHub,
) -> None:
    task_id = f"task-{uuid4()}"
    executor = ScriptedStepExecutor(
        {"click(#load)": [page_with("spinner")]},
        default=page_with("ready", "https://shop.test/ready"),
    )
    controller = TaskRunController(
        store=postgres_store,
        broadcaster=hub,
        executor=ExecutorGateway(executor, timeout_s=5.0),
        verifier=VerificationEngine(SemanticJudgeGateway(ScriptedJudge(), timeout_s=5.0)),
        corrector=SelfCorrectionEngine(max_attempts=3, retry_delay_s=0.0),
    )
    plan = plan_of(make_step(0, "click(#load)", should_exist="#ready"))

    try:
        handle = controller.run(
            tenant_id="acme", task_id=task_id, session_id="sess-pg", plan=plan
        )
    finally:
        controller.shutdown(wait=True)

    assert handle.state == "completed"
    verifications = postgres_store.list_verifications("acme", task_id)
    corrections = postgres_store.list_corrections("acme", task_id)
    actions = postgres_store.list_actions("acme", task_id)
    assert [record.success for record in verifications] == [False, True]
    assert [record.strategy for record in corrections] == ["ALTERNATIVE_SELECTOR"]
    assert [entry.sequence for entry in actions] == [1, 2, 3, 4]
    assert postgres_store.get_counts("acme", task_id, 0).corrections == 1
    assert postgres_store.get_latest_run("acme", task_id).status == "completed"
