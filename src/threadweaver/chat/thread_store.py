"""Durable collection of chat threads.

The store holds one immutable :class:`ThreadsState`. Every mutation builds a
replacement value, writes the thread map to storage and only then publishes
:class:`CurrentThreadChanged`, so subscribers always see persisted state.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Mapping

from ..services.storage import StorageScope, StorageService, StorageTarget
from .events import CurrentThreadChanged, EventBus
from .message_model import (
    DEFAULT_MESSAGE_STATE,
    ChatMessage,
    ChatThread,
    StagingSelectionItem,
    ThreadsState,
    ThreadState,
    UserMessage,
    UserMessageState,
    new_thread,
)

__all__ = [
    "THREAD_STORAGE_KEY",
    "THREAD_VERSION_KEY",
    "LATEST_THREAD_VERSION",
    "ThreadStore",
    "migrate_threads",
]

LOGGER = logging.getLogger(__name__)

THREAD_STORAGE_KEY = "threadweaver.chatThreadStorage"
THREAD_VERSION_KEY = "threadweaver.chatThreadVersion"
LATEST_THREAD_VERSION = "v2"

_DEFAULT_THREAD_STATE_PAYLOAD = ThreadState().to_dict()
_DEFAULT_MESSAGE_STATE_PAYLOAD = DEFAULT_MESSAGE_STATE.to_dict()


def migrate_threads(threads: Mapping[str, Any], from_version: str | None) -> dict[str, Any] | None:
    """Bring a raw persisted thread map up to :data:`LATEST_THREAD_VERSION`.

    Returns ``None`` when the data is already current. An absent or unknown
    version resets to an empty map. ``threads`` is never modified.

    v1 -> v2:
        + thread.state
        + user message.state
    """
    if from_version == LATEST_THREAD_VERSION:
        return None

    if from_version == "v1":
        migrated = copy.deepcopy(dict(threads))
        for thread in migrated.values():
            if not isinstance(thread, dict):
                continue
            if not thread.get("state"):
                thread["state"] = copy.deepcopy(_DEFAULT_THREAD_STATE_PAYLOAD)
            for message in thread.get("messages") or []:
                if isinstance(message, dict) and message.get("role") == "user" and not message.get("state"):
                    message["state"] = copy.deepcopy(_DEFAULT_MESSAGE_STATE_PAYLOAD)
        return migrated

    if threads:
        LOGGER.warning("Resetting chat threads: unrecognized storage version %r", from_version)
    return {}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ThreadStore:
    """Owns ``ThreadsState`` and keeps storage in step with it.

    Construction loads and migrates persisted threads exactly once, writes the
    current version tag, and opens an empty thread so that
    :attr:`current_thread_id` always names a stored thread.
    """

    def __init__(
        self,
        storage: StorageService,
        event_bus: EventBus,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._storage = storage
        self._bus = event_bus
        self._clock = clock or _utc_now

        version = storage.get(THREAD_VERSION_KEY, StorageScope.APPLICATION)
        raw = self._read_raw()
        migrated = migrate_threads(raw, version)
        if migrated is not None:
            raw = migrated
        threads = self._deserialize(raw)
        if migrated is not None:
            self.persist(threads)

        storage.store(THREAD_VERSION_KEY, LATEST_THREAD_VERSION, StorageScope.APPLICATION, StorageTarget.USER)
        self._state = ThreadsState(all_threads=MappingProxyType(threads), current_thread_id=None)
        self.open_new_thread()

    # ------------------------------------------------------------------
    # Loading and persistence
    # ------------------------------------------------------------------
    def _read_raw(self) -> dict[str, Any]:
        text = self._storage.get(THREAD_STORAGE_KEY, StorageScope.APPLICATION)
        if not text:
            return {}
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Stored chat threads are not valid JSON; starting empty: %s", exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Stored chat threads are not a JSON object; starting empty")
            return {}
        return payload

    @staticmethod
    def _deserialize(raw: Mapping[str, Any]) -> dict[str, ChatThread]:
        threads: dict[str, ChatThread] = {}
        for key, payload in raw.items():
            if not isinstance(payload, Mapping):
                LOGGER.warning("Dropping malformed chat thread %s", key)
                continue
            try:
                thread = ChatThread.from_dict(payload)
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Dropping malformed chat thread %s: %s", key, exc)
                continue
            threads[thread.id] = thread
        return threads

    def load(self) -> dict[str, ChatThread]:
        """Read the thread map as currently stored. Never raises on bad data."""
        return self._deserialize(self._read_raw())

    def persist(self, threads: Mapping[str, ChatThread]) -> None:
        payload = {thread_id: thread.to_dict() for thread_id, thread in threads.items()}
        self._storage.store(
            THREAD_STORAGE_KEY,
            json.dumps(payload),
            StorageScope.APPLICATION,
            StorageTarget.USER,
        )

    def _set_threads(self, threads: dict[str, ChatThread], **changes: Any) -> None:
        self.persist(threads)
        self._set_state(all_threads=MappingProxyType(threads), **changes)

    def _set_state(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)
        self._bus.publish(CurrentThreadChanged())

    def _replace_thread(self, thread: ChatThread) -> None:
        threads = dict(self._state.all_threads)
        threads[thread.id] = thread
        self._set_threads(threads)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def state(self) -> ThreadsState:
        return self._state

    @property
    def current_thread_id(self) -> str:
        assert self._state.current_thread_id is not None
        return self._state.current_thread_id

    @property
    def current_thread(self) -> ChatThread:
        return self._state.all_threads[self.current_thread_id]

    def get_thread(self, thread_id: str) -> ChatThread | None:
        return self._state.all_threads.get(thread_id)

    def get_focused_message_idx(self) -> int | None:
        """Focused message index, or ``None`` unless it names a user message."""
        thread = self.current_thread
        idx = thread.state.focused_message_idx
        if idx is None or not 0 <= idx < len(thread.messages):
            return None
        if not isinstance(thread.messages[idx], UserMessage):
            return None
        return idx

    def is_focusing_message(self) -> bool:
        return self.get_focused_message_idx() is not None

    def get_current_message_state(self, message_idx: int) -> UserMessageState:
        messages = self.current_thread.messages
        if 0 <= message_idx < len(messages):
            message = messages[message_idx]
            if isinstance(message, UserMessage):
                return message.state
        return DEFAULT_MESSAGE_STATE

    def all_selections(self) -> list[StagingSelectionItem]:
        """Selections attached to every user message of the current thread."""
        return self.selections_up_to(len(self.current_thread.messages))

    def selections_up_to(self, message_idx: int) -> list[StagingSelectionItem]:
        selections: list[StagingSelectionItem] = []
        for message in self.current_thread.messages[:message_idx]:
            if isinstance(message, UserMessage) and message.selections:
                selections.extend(message.selections)
        return selections

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def open_new_thread(self) -> ChatThread:
        """Switch to an empty thread, creating one only if none exists."""
        for thread_id, thread in self._state.all_threads.items():
            if not thread.messages:
                self.switch_to_thread(thread_id)
                return thread

        thread = new_thread(self._clock(), taken=self._state.all_threads)
        threads = dict(self._state.all_threads)
        threads[thread.id] = thread
        self._set_threads(threads, current_thread_id=thread.id)
        LOGGER.debug("Opened new chat thread %s", thread.id)
        return thread

    def switch_to_thread(self, thread_id: str) -> None:
        """Make ``thread_id`` current.

        The id must name a stored thread; this is not checked.
        """
        self._set_state(current_thread_id=thread_id)

    def append_message(self, thread_id: str, message: ChatMessage) -> ChatThread:
        thread = self._state.all_threads[thread_id]
        updated = replace(
            thread,
            messages=(*thread.messages, message),
            last_modified=self._clock().isoformat(),
        )
        self._replace_thread(updated)
        return updated

    def truncate_messages(self, thread_id: str, length: int) -> ChatThread:
        """Keep only the first ``length`` messages of the thread."""
        thread = self._state.all_threads[thread_id]
        updated = replace(thread, messages=thread.messages[:length])
        self._replace_thread(updated)
        return updated

    def set_focused_message_idx(self, message_idx: int | None) -> None:
        self.set_thread_state(focused_message_idx=message_idx)

    def set_thread_state(self, **changes: Any) -> None:
        """Partially update the current thread's ``state``."""
        thread = self._state.all_threads.get(self.current_thread_id)
        if thread is None:
            return
        if "is_checked_of_selection_id" in changes:
            changes["is_checked_of_selection_id"] = MappingProxyType(dict(changes["is_checked_of_selection_id"]))
        if "staging_selections" in changes:
            changes["staging_selections"] = tuple(changes["staging_selections"])
        self._replace_thread(replace(thread, state=replace(thread.state, **changes)))

    def set_message_state(self, message_idx: int, **changes: Any) -> None:
        """Partially update a user message's ``state``; other roles are left alone."""
        thread = self._state.all_threads.get(self.current_thread_id)
        if thread is None or not 0 <= message_idx < len(thread.messages):
            return
        message = thread.messages[message_idx]
        if not isinstance(message, UserMessage):
            return
        if "staging_selections" in changes:
            changes["staging_selections"] = tuple(changes["staging_selections"])
        updated = replace(message, state=replace(message.state, **changes))
        messages = (*thread.messages[:message_idx], updated, *thread.messages[message_idx + 1 :])
        self._replace_thread(replace(thread, messages=messages))
