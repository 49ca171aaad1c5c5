"""Chat thread, message and selection data models.

Every type here is a frozen dataclass. Updates are expressed by building new
values (``dataclasses.replace``) and swapping the whole aggregate, so a reader
holding a reference never observes a half-applied change.

The ``to_dict``/``from_dict`` helpers define the persisted JSON shape. Keys are
camelCase to keep stored threads readable by older builds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, ClassVar, Literal, Mapping, Union

__all__ = [
    "ChatRole",
    "SelectionRange",
    "CodeSelection",
    "FileSelection",
    "StagingSelectionItem",
    "UserMessageState",
    "DEFAULT_MESSAGE_STATE",
    "SystemMessage",
    "UserMessage",
    "AssistantMessage",
    "ToolMessage",
    "ChatMessage",
    "ThreadState",
    "ChatThread",
    "ThreadsState",
    "new_thread",
    "selection_to_dict",
    "selection_from_dict",
    "message_to_dict",
    "message_from_dict",
]

ChatRole = Literal["system", "user", "assistant", "tool"]

_EMPTY_MAPPING: Mapping[str, bool] = MappingProxyType({})


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Selections
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class SelectionRange:
    """Editor range, 1-based lines and columns, end inclusive of its line."""

    start_line_number: int
    start_column: int
    end_line_number: int
    end_column: int

    def to_dict(self) -> dict[str, int]:
        return {
            "startLineNumber": self.start_line_number,
            "startColumn": self.start_column,
            "endLineNumber": self.end_line_number,
            "endColumn": self.end_column,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> SelectionRange:
        return cls(
            start_line_number=int(payload.get("startLineNumber", 1)),
            start_column=int(payload.get("startColumn", 1)),
            end_line_number=int(payload.get("endLineNumber", 1)),
            end_column=int(payload.get("endColumn", 1)),
        )


@dataclass(slots=True, frozen=True)
class CodeSelection:
    """A quoted span of text inside a file."""

    type: ClassVar[str] = "Selection"

    file_uri: str
    selection_str: str
    range: SelectionRange


@dataclass(slots=True, frozen=True)
class FileSelection:
    """A whole file attached as context."""

    type: ClassVar[str] = "File"

    file_uri: str


StagingSelectionItem = Union[CodeSelection, FileSelection]


def selection_to_dict(selection: StagingSelectionItem) -> dict[str, Any]:
    if isinstance(selection, CodeSelection):
        return {
            "type": CodeSelection.type,
            "fileURI": selection.file_uri,
            "selectionStr": selection.selection_str,
            "range": selection.range.to_dict(),
        }
    return {"type": FileSelection.type, "fileURI": selection.file_uri, "selectionStr": None, "range": None}


def selection_from_dict(payload: Mapping[str, Any]) -> StagingSelectionItem:
    file_uri = str(payload.get("fileURI") or "")
    if payload.get("type") == CodeSelection.type and isinstance(payload.get("range"), Mapping):
        return CodeSelection(
            file_uri=file_uri,
            selection_str=str(payload.get("selectionStr") or ""),
            range=SelectionRange.from_dict(payload["range"]),
        )
    return FileSelection(file_uri=file_uri)


def _selections_from(value: Any) -> tuple[StagingSelectionItem, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(selection_from_dict(item) for item in value if isinstance(item, Mapping))


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class UserMessageState:
    """Compose/edit state carried by a user message."""

    staging_selections: tuple[StagingSelectionItem, ...] = ()
    is_being_edited: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "stagingSelections": [selection_to_dict(s) for s in self.staging_selections],
            "isBeingEdited": self.is_being_edited,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> UserMessageState:
        return cls(
            staging_selections=_selections_from(payload.get("stagingSelections")),
            is_being_edited=bool(payload.get("isBeingEdited", False)),
        )


DEFAULT_MESSAGE_STATE = UserMessageState()


@dataclass(slots=True, frozen=True)
class SystemMessage:
    role: ClassVar[ChatRole] = "system"

    content: str


@dataclass(slots=True, frozen=True)
class UserMessage:
    """A user turn.

    ``content`` is what the model sees on later calls, ``display_content`` is
    what the user typed. Either may be ``None``, which reads as empty.
    """

    role: ClassVar[ChatRole] = "user"

    content: str | None
    display_content: str | None
    selections: tuple[StagingSelectionItem, ...] | None = None
    state: UserMessageState = DEFAULT_MESSAGE_STATE


@dataclass(slots=True, frozen=True)
class AssistantMessage:
    role: ClassVar[ChatRole] = "assistant"

    content: str | None
    display_content: str | None


@dataclass(slots=True, frozen=True)
class ToolMessage:
    """Record of one executed tool call.

    Attributes:
        name: Tool name.
        params: Serialized input parameters as sent by the model.
        id: Transport-assigned call identifier.
        content: Result rendered for the model and the user.
        result: Raw typed result value (must be JSON-serializable).
    """

    role: ClassVar[ChatRole] = "tool"

    name: str
    params: str
    id: str
    content: str
    result: Any = None


ChatMessage = Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage]


def message_to_dict(message: ChatMessage) -> dict[str, Any]:
    """Serialize a message for persistence."""

    if isinstance(message, UserMessage):
        return {
            "role": "user",
            "content": message.content,
            "displayContent": message.display_content,
            "selections": (
                None if message.selections is None else [selection_to_dict(s) for s in message.selections]
            ),
            "state": message.state.to_dict(),
        }
    if isinstance(message, AssistantMessage):
        return {"role": "assistant", "content": message.content, "displayContent": message.display_content}
    if isinstance(message, ToolMessage):
        return {
            "role": "tool",
            "name": message.name,
            "params": message.params,
            "id": message.id,
            "content": message.content,
            "result": message.result,
        }
    return {"role": "system", "content": message.content}


def message_from_dict(payload: Mapping[str, Any]) -> ChatMessage:
    """Inverse of :func:`message_to_dict`; raises ``ValueError`` on malformed input."""

    if not isinstance(payload, Mapping):
        raise ValueError(f"Message must be an object, got {type(payload).__name__}")
    role = payload.get("role")
    if role == "user":
        state_payload = payload.get("state")
        selections = payload.get("selections")
        return UserMessage(
            content=payload.get("content"),
            display_content=payload.get("displayContent"),
            selections=None if selections is None else _selections_from(selections),
            state=(
                UserMessageState.from_dict(state_payload)
                if isinstance(state_payload, Mapping)
                else DEFAULT_MESSAGE_STATE
            ),
        )
    if role == "assistant":
        return AssistantMessage(content=payload.get("content"), display_content=payload.get("displayContent"))
    if role == "tool":
        return ToolMessage(
            name=str(payload.get("name", "")),
            params=str(payload.get("params", "")),
            id=str(payload.get("id", "")),
            content=str(payload.get("content") or ""),
            result=payload.get("result"),
        )
    if role == "system":
        return SystemMessage(content=str(payload.get("content") or ""))
    raise ValueError(f"Unknown message role: {role!r}")


# ---------------------------------------------------------------------------
# Threads
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ThreadState:
    """UI-adjacent mutable state of a thread."""

    staging_selections: tuple[StagingSelectionItem, ...] = ()
    focused_message_idx: int | None = None
    is_checked_of_selection_id: Mapping[str, bool] = field(default_factory=lambda: _EMPTY_MAPPING)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "stagingSelections": [selection_to_dict(s) for s in self.staging_selections],
            "isCheckedOfSelectionId": dict(self.is_checked_of_selection_id),
        }
        if self.focused_message_idx is not None:
            payload["focusedMessageIdx"] = self.focused_message_idx
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ThreadState:
        checked = payload.get("isCheckedOfSelectionId")
        focused = payload.get("focusedMessageIdx")
        return cls(
            staging_selections=_selections_from(payload.get("stagingSelections")),
            focused_message_idx=focused if isinstance(focused, int) else None,
            is_checked_of_selection_id=(
                MappingProxyType({str(k): bool(v) for k, v in checked.items()})
                if isinstance(checked, Mapping)
                else _EMPTY_MAPPING
            ),
        )


@dataclass(slots=True, frozen=True)
class ChatThread:
    """One chat session: an ordered message log plus thread state."""

    id: str
    created_at: str
    last_modified: str
    messages: tuple[ChatMessage, ...] = ()
    state: ThreadState = ThreadState()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": self.created_at,
            "lastModified": self.last_modified,
            "messages": [message_to_dict(m) for m in self.messages],
            "state": self.state.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ChatThread:
        state_payload = payload.get("state")
        messages = payload.get("messages") or []
        if not isinstance(messages, list):
            raise ValueError(f"Thread messages must be a list, got {type(messages).__name__}")
        return cls(
            id=str(payload["id"]),
            created_at=str(payload.get("createdAt", "")),
            last_modified=str(payload.get("lastModified", "")),
            messages=tuple(message_from_dict(m) for m in messages),
            state=ThreadState.from_dict(state_payload) if isinstance(state_payload, Mapping) else ThreadState(),
        )


@dataclass(slots=True, frozen=True)
class ThreadsState:
    """Root state. Only ``all_threads`` is persisted."""

    all_threads: Mapping[str, ChatThread] = field(default_factory=lambda: MappingProxyType({}))
    current_thread_id: str | None = None


def new_thread(now: datetime | None = None, *, taken: Mapping[str, Any] | None = None) -> ChatThread:
    """Create an empty thread whose id is the creation time in epoch milliseconds.

    ``taken`` holds ids already in use; the millisecond value is bumped until
    it no longer collides.
    """

    moment = now or _utcnow()
    millis = int(moment.timestamp() * 1000)
    if taken:
        while str(millis) in taken:
            millis += 1
    iso = moment.isoformat()
    return ChatThread(id=str(millis), created_at=iso, last_modified=iso)
