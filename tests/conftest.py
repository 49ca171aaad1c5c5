"""Shared pytest fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest

from threadweaver.chat.events import EventBus
from threadweaver.chat.stream_state import StreamStateTracker
from threadweaver.chat.thread_store import ThreadStore
from threadweaver.services.storage import MemoryStorage


class StepClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        self.calls = 0

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + timedelta(seconds=1)
        self.calls += 1
        return current


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def make_store(storage: MemoryStorage, bus: EventBus, clock: StepClock) -> Callable[[], ThreadStore]:
    def factory() -> ThreadStore:
        return ThreadStore(storage, bus, clock=clock)

    return factory


@pytest.fixture
def store(make_store: Callable[[], ThreadStore]) -> ThreadStore:
    return make_store()


@pytest.fixture
def streams(bus: EventBus) -> StreamStateTracker:
    return StreamStateTracker(bus)
