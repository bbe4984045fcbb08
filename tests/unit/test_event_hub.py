from datetime import UTC, datetime

import pytest

from agent_runner.events.hub import BroadcasterClosed, SessionEventHub
from agent_runner.events.models import RunStatusEvent, StepResult


def _event(sequence: int, session_id: str = "s1") -> StepResult:
    return StepResult(
        session_id=session_id,
        task_id="t1",
        sequence_number=sequence,
        timestamp=datetime.now(UTC),
        step_index=0,
        success=True,
        confidence=1.0,
    )


def test_events_are_replayed_in_publish_order_from_cursor() -> None:
    hub = SessionEventHub()
    hub.start()
    for sequence in (1, 2, 3):
        hub.publish("s1", _event(sequence))
    hub.publish("s2", _event(1, "s2"))

    everything, cursor = hub.events_since("s1")
    tail, tail_cursor = hub.events_since("s1", after=2)

    assert [event.sequence_number for event in everything] == [1, 2, 3]
    assert cursor == 3
    assert [event.sequence_number for event in tail] == [3]
    assert tail_cursor == 3
    assert hub.events_since("unknown") == ([], 0)


def test_trimmed_log_keeps_cursor_stable() -> None:
    hub = SessionEventHub(max_events_per_session=2)
    hub.start()
    for sequence in (1, 2, 3, 4):
        hub.publish("s1", _event(sequence))

    events, cursor = hub.events_since("s1", after=1)

    assert [event.sequence_number for event in events] == [3, 4]
    assert cursor == 4


def test_publish_requires_started_hub() -> None:
    hub = SessionEventHub()

    with pytest.raises(BroadcasterClosed):
        hub.publish("s1", _event(1))

    hub.start()
    hub.publish("s1", _event(1))
    hub.close()

    with pytest.raises(BroadcasterClosed):
        hub.publish("s1", _event(2))


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _finished(sequence: int, session_id: str = "s1") -> RunStatusEvent:
    return RunStatusEvent(
        session_id=session_id,
        task_id="t1",
        sequence_number=sequence,
        timestamp=datetime.now(UTC),
        status="completed",
    )


def test_drained_finished_session_is_compacted_after_retention() -> None:
    clock = FakeClock()
    hub = SessionEventHub(finished_retention_s=30.0, clock=clock)
    hub.start()
    hub.publish("s1", _event(1))
    hub.publish("s1", _finished(2))

    _, cursor = hub.events_since("s1")
    clock.now += 10
    assert len(hub.events_since("s1")[0]) == 2

    clock.now += 30
    hub.events_since("s1", after=cursor)

    assert hub.events_since("s1") == ([], 2)
    hub.publish("s1", _event(3))
    events, next_cursor = hub.events_since("s1", after=cursor)
    assert [event.sequence_number for event in events] == [3]
    assert next_cursor == 3


def test_finished_session_is_kept_until_a_reader_drains_it() -> None:
    clock = FakeClock()
    hub = SessionEventHub(finished_retention_s=0.0, clock=clock)
    hub.start()
    hub.publish("s1", _event(1))
    hub.publish("s1", _finished(2))
    clock.now += 5
    hub.publish("s2", _event(1, "s2"))

    events, cursor = hub.events_since("s1", after=0)

    assert len(events) == 2
    assert cursor == 2
    assert hub.events_since("s1", after=0) == ([], 2)


def test_idle_sessions_are_forgotten_after_ttl() -> None:
    clock = FakeClock()
    hub = SessionEventHub(idle_session_ttl_s=60.0, clock=clock)
    hub.start()
    for index in range(5):
        hub.publish(f"old-{index}", _event(1, f"old-{index}"))

    clock.now += 61
    hub.publish("fresh", _event(1, "fresh"))

    assert hub.session_count == 1
    assert hub.events_since("old-0") == ([], 0)
    assert hub.last_sequence("old-0", "t1") == 0


def test_last_sequence_tracks_highest_per_task() -> None:
    hub = SessionEventHub()
    hub.start()
    hub.publish("s1", _event(1))
    hub.publish("s1", _event(2))

    assert hub.last_sequence("s1", "t1") == 2
    assert hub.last_sequence("s1", "other-task") == 0

    hub.discard("s1")

    assert hub.last_sequence("s1", "t1") == 0
    assert hub.session_count == 0
