from datetime import UTC, datetime

from agent_runner.schemas import ActualState, Comparison, ExpectedOutcome
from agent_runner.storage.memory import InMemoryRecordStore
from agent_runner.storage.models import (
    CorrectionRecord,
    RecordCounts,
    TaskAction,
    VerificationRecord,
)
from fakes import make_step


def _verification(
    task_id: str, step_index: int, success: bool, run_id: str = "run-1"
) -> VerificationRecord:
    return VerificationRecord(
        tenant_id="acme",
        task_id=task_id,
        run_id=run_id,
        step_index=step_index,
        success=success,
        confidence=1.0 if success else 0.0,
        expected_state=ExpectedOutcome(description="done"),
        actual_state=ActualState(),
        comparison=Comparison(overall_match=success),
        reason="ok" if success else "failed",
        timestamp=datetime.now(UTC),
    )


def test_run_lease_is_exclusive_until_released() -> None:
    store = InMemoryRecordStore()

    assert store.acquire_run_lease("t1", owner="run-a", ttl_s=60) is True
    assert store.acquire_run_lease("t1", owner="run-b", ttl_s=60) is False
    # Same owner renews.
    assert store.acquire_run_lease("t1", owner="run-a", ttl_s=60) is True

    store.release_run_lease("t1", owner="run-b")
    assert store.acquire_run_lease("t1", owner="run-b", ttl_s=60) is False

    store.release_run_lease("t1", owner="run-a")
    assert store.acquire_run_lease("t1", owner="run-b", ttl_s=60) is True


def test_expired_lease_can_be_taken_over() -> None:
    store = InMemoryRecordStore()

    assert store.acquire_run_lease("t1", owner="crashed", ttl_s=0.0) is True
    assert store.acquire_run_lease("t1", owner="recovery", ttl_s=60) is True


def test_counts_are_scoped_to_tenant_task_and_step() -> None:
    store = InMemoryRecordStore()
    step = make_step(0, "click(#a)")
    store.put_verification(_verification("t1", 0, False))
    store.put_verification(_verification("t1", 0, True))
    store.put_verification(_verification("t1", 1, True))
    store.put_verification(_verification("t2", 0, True))
    store.put_correction(
        CorrectionRecord(
            tenant_id="acme",
            task_id="t1",
            run_id="run-1",
            step_index=0,
            original_step=step,
            corrected_step=step,
            strategy="RETRY_WITH_DELAY",
            reason="slow page",
            attempt_number=1,
            timestamp=datetime.now(UTC),
        )
    )

    counts = store.get_counts("acme", "t1", 0)

    assert counts.verifications == 2
    assert counts.corrections == 1
    assert store.get_counts("other", "t1", 0).verifications == 0
    assert len(store.list_verifications("acme", "t1")) == 3
    assert len(store.list_corrections("acme", "t1")) == 1


def test_append_action_assigns_increasing_sequence_per_task() -> None:
    store = InMemoryRecordStore()

    def entry(task_id: str, status: str) -> TaskAction:
        return TaskAction(
            tenant_id="acme",
            task_id=task_id,
            step_index=0,
            action="click(#a)",
            status=status,
            timestamp=datetime.now(UTC),
        )

    first = store.append_action(entry("t1", "pending"))
    store.append_action(entry("t2", "pending"))
    second = store.append_action(entry("t1", "success"))

    assert (first.sequence, second.sequence) == (1, 2)
    assert [item.status for item in store.list_actions("acme", "t1")] == ["pending", "success"]
    assert store.list_actions("acme", "t2")[0].sequence == 1


def test_counts_can_be_scoped_to_one_run() -> None:
    store = InMemoryRecordStore()
    store.put_verification(_verification("t1", 0, False, run_id="run-1"))
    store.put_verification(_verification("t1", 0, False, run_id="run-1"))
    store.put_verification(_verification("t1", 0, True, run_id="run-2"))

    assert store.get_counts("acme", "t1", 0).verifications == 3
    assert store.get_counts("acme", "t1", 0, run_id="run-1").verifications == 2
    assert store.get_counts("acme", "t1", 0, run_id="run-2").verifications == 1
    assert store.get_counts("acme", "t1", 0, run_id="run-3") == RecordCounts()
