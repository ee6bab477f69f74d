from __future__ import annotations
import json
from typing import Any, Dict, List

import pytest

from backend.src.buffer.store import TaskStore
from backend.src.persistence.memory import InMemoryMessageStore


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


def parse_sse_frames(body: str) -> List[Dict[str, Any]]:
    events: List[Dict[str, Any]] = []
    for frame in body.split("\n\n"):
        for line in frame.splitlines():
            if line.startswith("data: "):
                events.append(json.loads(line[len("data: "):]))
    return events


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> TaskStore:
    return TaskStore(ttl_secs=60, clock=clock)


@pytest.fixture
def messages() -> InMemoryMessageStore:
    return InMemoryMessageStore()


@pytest.fixture
def parse_sse():
    return parse_sse_frames


@pytest.fixture
def recorder():
    """Subscriber callback that records events as wire dicts."""

    class Recorder:
        def __init__(self) -> None:
            self.events: List[Dict[str, Any]] = []

        def __call__(self, ev) -> None:
            self.events.append(ev.to_wire())

        @property
        def types(self) -> List[str]:
            return [e["type"] for e in self.events]

    return Recorder
