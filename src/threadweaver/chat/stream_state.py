"""Transient per-thread state of in-flight model responses."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Mapping

from .events import EventBus, StreamStateChanged

__all__ = ["StreamError", "ThreadStreamState", "StreamStateTracker"]

LOGGER = logging.getLogger(__name__)

_STREAM_FIELDS = frozenset({"error", "message_so_far", "streaming_token"})


@dataclass(slots=True, frozen=True)
class StreamError:
    """A recoverable failure surfaced to the user until dismissed.

    Attributes:
        message: Human readable summary.
        full_error: The underlying exception, when one exists.
    """

    message: str
    full_error: BaseException | None = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> StreamError:
        return cls(message=str(exc) or type(exc).__name__, full_error=exc)


@dataclass(slots=True, frozen=True)
class ThreadStreamState:
    error: StreamError | None = None
    message_so_far: str | None = None
    streaming_token: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.error is None and self.message_so_far is None and self.streaming_token is None


class StreamStateTracker:
    """Owns the ``thread_id -> ThreadStreamState`` map; never persisted.

    A thread has an entry only while a response is in flight or an error or
    partial result is waiting to be dismissed. Updates that leave every field
    unset drop the entry.
    """

    def __init__(self, event_bus: EventBus) -> None:
        self._bus = event_bus
        self._states: Mapping[str, ThreadStreamState] = MappingProxyType({})

    @property
    def states(self) -> Mapping[str, ThreadStreamState]:
        """Snapshot of every tracked thread."""
        return self._states

    def get(self, thread_id: str) -> ThreadStreamState | None:
        return self._states.get(thread_id)

    def update(self, thread_id: str, **changes: Any) -> ThreadStreamState | None:
        """Merge ``changes`` into the thread's entry and notify subscribers.

        Passing ``None`` for a field clears it.
        """
        unknown = set(changes) - _STREAM_FIELDS
        if unknown:
            raise TypeError(f"Unknown stream state fields: {sorted(unknown)}")

        current = self._states.get(thread_id) or ThreadStreamState()
        updated = replace(current, **changes)
        states = dict(self._states)
        if updated.is_empty:
            states.pop(thread_id, None)
        else:
            states[thread_id] = updated
        self._states = MappingProxyType(states)
        self._bus.publish(StreamStateChanged(thread_id=thread_id))
        return None if updated.is_empty else updated

    def clear(self, thread_id: str) -> None:
        self.update(thread_id, error=None, message_so_far=None, streaming_token=None)
