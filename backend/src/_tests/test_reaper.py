from __future__ import annotations
import asyncio

import pytest

from backend.src.buffer.reaper import IdleReaper
from backend.src.buffer.store import TaskStore


def test_sweep_evicts_only_idle_tasks(store, clock) -> None:
    store.create_task("idle", "s", "script", "")
    store.create_task("busy", "s", "script", "")
    store.mark_agent_finished("idle")

    clock.advance(45)
    store.get_task("busy")
    clock.advance(30)

    assert store.sweep() == ["idle"]
    assert store.get_task("idle") is None
    assert store.get_task("busy") is not None


def test_sweep_keeps_task_exactly_at_ttl(store, clock) -> None:
    store.create_task("c1", "s", "script", "")
    clock.advance(60)
    assert store.sweep() == []
    clock.advance(0.5)
    assert store.sweep() == ["c1"]


def test_sweep_evicts_running_tasks_too(store, clock, recorder) -> None:
    store.create_task("c1", "s", "script", "")
    store.subscribe("c1", recorder())
    clock.advance(61)

    assert store.sweep() == ["c1"]
    assert store.has_task("c1") is False
    assert store.subscriber_count("c1") == 0
    # late producer writes are dropped
    assert store.write_chunk("c1", "x") is False


def test_writes_and_reads_refresh_last_access(store, clock) -> None:
    store.create_task("c1", "s", "script", "")
    for _ in range(3):
        clock.advance(50)
        store.write_chunk("c1", "tick")
    clock.advance(50)
    store.get_full_state("c1")
    clock.advance(50)
    assert store.sweep() == []


def test_status_probes_do_not_refresh_last_access(store, clock) -> None:
    store.create_task("c1", "s", "script", "")
    clock.advance(40)
    store.has_task("c1")
    store.get_status("c1")
    clock.advance(40)
    assert store.sweep() == ["c1"]


def test_sweep_accepts_explicit_now(store, clock) -> None:
    store.create_task("c1", "s", "script", "")
    assert store.sweep(now=clock.now + 10) == []
    assert store.sweep(now=clock.now + 120) == ["c1"]


@pytest.mark.asyncio
async def test_idle_reaper_sweeps_periodically() -> None:
    store = TaskStore(ttl_secs=0.01)
    reaper = IdleReaper(store, interval_secs=0.02)
    store.create_task("c1", "s", "script", "")

    reaper.start()
    assert reaper.running
    for _ in range(100):
        if not store.has_task("c1"):
            break
        await asyncio.sleep(0.01)
    await reaper.stop()

    assert store.has_task("c1") is False
    assert reaper.running is False


@pytest.mark.asyncio
async def test_idle_reaper_start_is_idempotent_and_stop_is_safe() -> None:
    reaper = IdleReaper(TaskStore(), interval_secs=10)
    await reaper.stop()

    reaper.start()
    first = reaper._task
    reaper.start()
    assert reaper._task is first

    await reaper.stop()
    assert first.cancelled()


@pytest.mark.asyncio
async def test_idle_reaper_survives_sweep_failure(monkeypatch) -> None:
    store = TaskStore(ttl_secs=60)
    calls = []

    def flaky_sweep(now=None):
        calls.append(now)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return []

    monkeypatch.setattr(store, "sweep", flaky_sweep)
    reaper = IdleReaper(store, interval_secs=0.01)
    reaper.start()
    for _ in range(100):
        if len(calls) >= 2:
            break
        await asyncio.sleep(0.01)
    await reaper.stop()

    assert len(calls) >= 2
