from __future__ import annotations

import pytest

from backend.src.buffer.writer import StreamWriter
from backend.src.core.errors import ConflictError, InvalidStateError, NotFoundError
from backend.src.schemas.events import StreamEvent


def test_hello_world_lifecycle_and_event_order(store, recorder) -> None:
    store.create_task("c1", "s1", "script", "")
    rec = recorder()
    store.subscribe("c1", rec)

    store.write_chunk("c1", "Hello")
    store.write_chunk("c1", " world")
    store.mark_message_finished("c1")
    store.mark_agent_finished("c1")

    task = store.get_task("c1")
    assert task.buffer == "Hello world"
    assert task.last_message_boundary == 11
    assert task.status == "completed"
    assert rec.events == [
        {"type": "chunk", "content": "Hello"},
        {"type": "chunk", "content": " world"},
        {"type": "message_finished"},
        {"type": "agent_finished"},
    ]


def test_create_task_initial_state(store) -> None:
    task = store.create_task("c1", "s1", "game", "[USER]hi[/USER]")
    assert task.status == "running"
    assert task.buffer == "[USER]hi[/USER]"
    assert task.last_message_boundary == -1
    assert task.last_delivered_offset == -1
    assert task.script_id == "s1"
    assert task.agent_mode == "game"


def test_second_admission_while_running_conflicts(store) -> None:
    first = store.create_task("c1", "s1", "script", "")
    store.write_chunk("c1", "Hello")

    with pytest.raises(ConflictError):
        store.create_task("c1", "s1", "script", "other")

    task = store.get_task("c1")
    assert task.id == first.id
    assert task.buffer == "Hello"


@pytest.mark.parametrize("finish", ["finished", "error", "stopped"])
def test_new_task_admitted_after_terminal_state(store, finish) -> None:
    first = store.create_task("c1", "s1", "script", "")
    if finish == "finished":
        store.mark_agent_finished("c1")
    elif finish == "error":
        store.mark_agent_error("c1", "boom")
    else:
        store.stop_task("c1")

    second = store.create_task("c1", "s1", "script", "next")
    assert second.id != first.id
    assert store.get_task("c1").buffer == "next"


def test_buffer_is_concatenation_and_prefix_stable(store) -> None:
    store.create_task("c1", "s1", "script", "")
    parts = ["a", "bc", "", "def", "ghij"]
    seen = []
    for part in parts:
        store.write_chunk("c1", part)
        seen.append(store.get_task("c1").buffer)

    final = store.get_task("c1").buffer
    assert final == "".join(parts)
    for earlier in seen:
        assert final.startswith(earlier)


def test_every_subscriber_sees_identical_order(store, recorder) -> None:
    store.create_task("c1", "s1", "script", "")
    s1, s2 = recorder(), recorder()
    store.subscribe("c1", s1)
    store.subscribe("c1", s2)

    for i in range(20):
        store.write_chunk("c1", str(i))
    store.mark_message_finished("c1")
    store.mark_agent_error("c1", "bad")

    assert s1.events == s2.events
    assert [e.get("content") for e in s1.events[:20]] == [str(i) for i in range(20)]
    assert s1.types[-2:] == ["message_finished", "agent_error"]
    assert s1.events[-1]["error"] == "bad"


def test_fanout_is_per_conversation(store, recorder) -> None:
    store.create_task("c1", "s1", "script", "")
    store.create_task("c2", "s1", "script", "")
    rec = recorder()
    store.subscribe("c2", rec)

    store.write_chunk("c1", "not for you")
    store.write_chunk("c2", "yours")

    assert rec.events == [{"type": "chunk", "content": "yours"}]


def test_failing_subscriber_does_not_break_fanout(store, recorder) -> None:
    store.create_task("c1", "s1", "script", "")

    def broken(_ev: StreamEvent) -> None:
        raise RuntimeError("transport gone")

    rec = recorder()
    store.subscribe("c1", broken)
    store.subscribe("c1", rec)

    assert store.write_chunk("c1", "x") is True
    assert rec.events == [{"type": "chunk", "content": "x"}]


def test_unsubscribe_is_idempotent_and_safe_after_delete(store, recorder) -> None:
    store.create_task("c1", "s1", "script", "")
    rec = recorder()
    sub = store.subscribe("c1", rec)
    assert store.subscriber_count("c1") == 1

    sub()
    sub.close()
    assert sub.closed
    assert store.subscriber_count("c1") == 0

    store.write_chunk("c1", "late")
    assert rec.events == []

    other = store.subscribe("c1", recorder())
    store.delete_task("c1")
    other.close()


def test_terminal_task_ignores_further_writes(store, recorder) -> None:
    store.create_task("c1", "s1", "script", "")
    rec = recorder()
    store.subscribe("c1", rec)
    store.write_chunk("c1", "done")
    store.mark_agent_finished("c1")

    assert store.write_chunk("c1", "more") is False
    assert store.mark_message_finished("c1") is False
    assert store.mark_agent_error("c1", "late") is False
    assert store.mark_agent_finished("c1") is False

    task = store.get_task("c1")
    assert task.status == "completed"
    assert task.buffer == "done"
    assert task.error_message is None
    assert rec.types == ["chunk", "agent_finished"]


def test_error_records_message(store) -> None:
    store.create_task("c1", "s1", "script", "")
    store.mark_agent_error("c1", "model timeout")
    task = store.get_task("c1")
    assert task.status == "error"
    assert task.error_message == "model timeout"


def test_writer_calls_on_missing_task_are_noops(store) -> None:
    assert store.write_chunk("ghost", "x") is False
    assert store.mark_message_finished("ghost") is False
    assert store.mark_agent_finished("ghost") is False
    assert store.mark_agent_error("ghost", "x") is False
    assert store.stop_task("ghost") is False
    assert store.get_task("ghost") is None


def test_stop_publishes_nothing_and_sets_cancel_signal(store, recorder) -> None:
    task = store.create_task("c1", "s1", "script", "")
    rec = recorder()
    store.subscribe("c1", rec)

    assert store.stop_task("c1") is True
    assert store.get_status("c1") == "stopped"
    assert task.cancel_event.is_set()
    assert rec.events == []

    # driver noticed the stop and closes out consumers; status stays stopped
    assert store.write_chunk("c1", "ignored") is False
    assert store.mark_agent_finished("c1") is True
    assert store.get_status("c1") == "stopped"
    assert rec.types == ["agent_finished"]
    assert store.subscriber_count("c1") == 0


def test_cancel_task_checks_existence_and_state(store) -> None:
    with pytest.raises(NotFoundError):
        store.cancel_task("missing")

    store.create_task("c1", "s1", "script", "")
    assert store.cancel_task("c1").status == "stopped"

    with pytest.raises(InvalidStateError):
        store.cancel_task("c1")


def test_stats_counts_statuses(store) -> None:
    for cid in ("a", "b", "c", "d", "e"):
        store.create_task(cid, "s", "script", "")
    store.mark_agent_finished("b")
    store.mark_agent_finished("c")
    store.mark_agent_error("d", "x")
    store.stop_task("e")

    stats = store.stats()
    assert stats.total == 5
    assert stats.running == 1
    assert stats.completed == 2
    assert stats.error == 1
    assert stats.stopped == 1


def test_delete_task_removes_task_and_subscribers(store, recorder) -> None:
    store.create_task("c1", "s1", "script", "")
    store.subscribe("c1", recorder())

    assert store.delete_task("c1") is True
    assert store.delete_task("c1") is False
    assert store.get_task("c1") is None
    assert store.subscriber_count("c1") == 0


def test_stream_output_index_is_monotonic_and_clamped(store) -> None:
    store.create_task("c1", "s1", "script", "")
    store.write_chunk("c1", "abcdef")

    store.update_stream_output_index("c1", 3)
    store.update_stream_output_index("c1", 1)
    assert store.get_task("c1").last_delivered_offset == 3

    store.update_stream_output_index("c1", 99)
    assert store.get_task("c1").last_delivered_offset == 5


def test_full_state_and_stream_data(store) -> None:
    store.create_task("c1", "s1", "script", "")
    store.write_chunk("c1", "Hello")
    store.mark_message_finished("c1")
    store.write_chunk("c1", " again")

    state = store.get_full_state("c1")
    assert state.stream_messages == "Hello again"
    assert state.last_message_index == 5
    assert state.model_dump(by_alias=True)["lastStreamOutputIndex"] == -1

    data = store.get_stream_data("c1", 5)
    assert data.data == " again"
    assert store.get_stream_data("missing", 0) is None


def test_returned_task_is_a_snapshot(store) -> None:
    store.create_task("c1", "s1", "script", "")
    snap = store.get_task("c1")
    snap.buffer = "tampered"
    snap.status = "completed"

    task = store.get_task("c1")
    assert task.buffer == ""
    assert task.status == "running"


def test_writer_bound_to_replaced_task_is_ignored(store, recorder) -> None:
    old = store.create_task("c1", "s1", "script", "")
    old_writer = StreamWriter(store, "c1", old.cancel_event, task_id=old.id)
    store.stop_task("c1")
    new = store.create_task("c1", "s1", "script", "fresh")
    rec = recorder()
    store.subscribe("c1", rec)

    assert old_writer.cancelled
    assert old_writer.write("stale") is False
    assert old_writer.finished() is False
    assert old_writer.error("stale") is False

    task = store.get_task("c1")
    assert task.id == new.id
    assert task.status == "running"
    assert task.buffer == "fresh"
    assert rec.events == []


def test_replacing_stopped_task_closes_out_its_consumers(store, recorder) -> None:
    store.create_task("c1", "s1", "script", "")
    old_consumer = recorder()
    store.subscribe("c1", old_consumer)
    store.write_chunk("c1", "partial")
    store.stop_task("c1")

    store.create_task("c1", "s1", "script", "new")

    assert old_consumer.types == ["chunk", "agent_finished"]
    assert store.subscriber_count("c1") == 0
    store.write_chunk("c1", "for the new task")
    assert old_consumer.types == ["chunk", "agent_finished"]


def test_publish_fans_out_to_current_subscribers(store, recorder) -> None:
    store.create_task("c1", "s1", "script", "")
    s1, s2 = recorder(), recorder()
    store.subscribe("c1", s1)
    sub2 = store.subscribe("c1", s2)

    store.publish("c1", StreamEvent.chunk("note"))
    sub2.close()
    store.publish("c1", StreamEvent.message_finished())
    store.publish("nobody", StreamEvent.chunk("lost"))

    assert s1.events == [{"type": "chunk", "content": "note"}, {"type": "message_finished"}]
    assert s2.events == [{"type": "chunk", "content": "note"}]
    # publish is pure fan-out; the buffer only changes through the writer
    assert store.get_task("c1").buffer == ""
