"""Chat thread models, persistence, and change notifications."""

from .events import CurrentThreadChanged, EventBus, StreamStateChanged
from .stream_state import StreamError, StreamStateTracker, ThreadStreamState
from .thread_store import ThreadStore, migrate_threads

__all__ = [
    "CurrentThreadChanged",
    "EventBus",
    "StreamStateChanged",
    "StreamError",
    "StreamStateTracker",
    "ThreadStreamState",
    "ThreadStore",
    "migrate_threads",
]
