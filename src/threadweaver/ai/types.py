"""Transport-facing types shared by the agent loop and model transports."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Literal, Protocol, Sequence, runtime_checkable

from ..chat.message_model import AssistantMessage, ChatMessage, SystemMessage, ToolMessage, UserMessage
from ..chat.stream_state import StreamError
from .tools.registry import ToolSpec

__all__ = [
    "LLMChatMessage",
    "ToolCall",
    "FinalMessage",
    "StreamError",
    "SendRequest",
    "ModelTransport",
    "OnText",
    "OnFinalMessage",
    "OnError",
    "to_llm_message",
    "EMPTY_MESSAGE",
    "EMPTY_OUTPUT",
]

LLMRole = Literal["system", "user", "assistant", "tool"]

EMPTY_MESSAGE = "(empty message)"
EMPTY_OUTPUT = "(empty output)"


@dataclass(slots=True, frozen=True)
class LLMChatMessage:
    """Message as handed to a transport.

    Tool messages carry ``name``, ``params`` and ``id`` so the transport can
    rebuild the provider's tool-call pairing.
    """

    role: LLMRole
    content: str
    name: str | None = None
    params: str | None = None
    id: str | None = None


@dataclass(slots=True, frozen=True)
class ToolCall:
    """A tool invocation requested by the model."""

    name: str
    params: str
    id: str


@dataclass(slots=True, frozen=True)
class FinalMessage:
    text: str
    tool_calls: tuple[ToolCall, ...] = ()


OnText = Callable[[str, str], None]
OnFinalMessage = Callable[[FinalMessage], None]
OnError = Callable[[StreamError], None]


@dataclass(slots=True, frozen=True)
class SendRequest:
    """One model round-trip.

    Attributes:
        messages: Full outbound conversation, system message first.
        on_text: Called with ``(new_text, full_text)`` for each streamed delta.
        on_final_message: Called once with the complete response.
        on_error: Called once if the round fails.
        tools: Tool catalog to advertise, or ``None`` to advertise none.
    """

    messages: Sequence[LLMChatMessage]
    on_text: OnText
    on_final_message: OnFinalMessage
    on_error: OnError
    tools: Sequence[ToolSpec] | None = None


@runtime_checkable
class ModelTransport(Protocol):
    """Opaque model invocation capability."""

    def send(self, request: SendRequest) -> str | None:
        """Start a round and return its cancellation handle.

        ``None`` signals an immediate rejection (e.g. misconfiguration). The
        transport may have already called ``on_error`` in that case.
        """
        ...

    def abort(self, handle: str) -> None:
        ...


def to_llm_message(message: ChatMessage) -> LLMChatMessage:
    """Convert a stored message into its outbound form.

    Empty or ``None`` content is replaced with a placeholder since providers
    reject empty turns.
    """

    if isinstance(message, (SystemMessage, UserMessage, AssistantMessage)):
        return LLMChatMessage(role=message.role, content=message.content or EMPTY_MESSAGE)
    if isinstance(message, ToolMessage):
        return LLMChatMessage(
            role="tool",
            content=message.content or EMPTY_OUTPUT,
            name=message.name,
            params=message.params,
            id=message.id,
        )
    raise TypeError(f"Unsupported message type: {type(message).__name__}")
