"""Model transports.

:class:`OpenAITransport` adapts :class:`~threadweaver.ai.client.AIClient` to
the callback-style :class:`~threadweaver.ai.types.ModelTransport` protocol the
agent loop drives. Each ``send`` starts one task on the running event loop and
hands back a string handle that ``abort`` can cancel.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Sequence

from ..services.settings import Settings
from .client import AIClient, AIStreamEvent, ClientSettings
from .types import FinalMessage, LLMChatMessage, ModelTransport, SendRequest, StreamError, ToolCall

__all__ = ["ModelTransport", "OpenAITransport", "ToolCallAccumulator", "to_openai_messages"]

LOGGER = logging.getLogger(__name__)


def to_openai_messages(messages: Sequence[LLMChatMessage]) -> list[dict[str, Any]]:
    """Convert outbound messages to OpenAI chat format.

    A run of tool messages becomes ``tool_calls`` on the assistant message in
    front of it (a content-less one is inserted if there is none), followed by
    one ``tool`` message per call.
    """
    converted: list[dict[str, Any]] = []
    for message in messages:
        if message.role != "tool":
            converted.append({"role": message.role, "content": message.content})
            continue

        call_id = message.id or f"call_{uuid.uuid4().hex[:8]}"
        tool_call = {
            "id": call_id,
            "type": "function",
            "function": {"name": message.name or "", "arguments": message.params or "{}"},
        }
        previous = _last_assistant_before_tools(converted)
        if previous is None:
            previous = {"role": "assistant", "content": None, "tool_calls": []}
            converted.append(previous)
        previous.setdefault("tool_calls", []).append(tool_call)
        converted.append({"role": "tool", "tool_call_id": call_id, "content": message.content})
    return converted


def _last_assistant_before_tools(converted: list[dict[str, Any]]) -> dict[str, Any] | None:
    for entry in reversed(converted):
        if entry["role"] == "tool":
            continue
        return entry if entry["role"] == "assistant" else None
    return None


class ToolCallAccumulator:
    """Rebuild complete tool calls from streamed fragments, keyed by index."""

    def __init__(self) -> None:
        self._calls: dict[int, dict[str, Any]] = {}

    def add(self, event: AIStreamEvent) -> None:
        index = event.tool_index if event.tool_index is not None else 0
        entry = self._calls.setdefault(index, {"id": "", "name": "", "arguments_parts": []})
        if event.tool_name:
            entry["name"] = event.tool_name
        if event.tool_call_id:
            entry["id"] = event.tool_call_id
        if event.type == "tool_calls.function.arguments.delta" and event.arguments_delta:
            entry["arguments_parts"].append(event.arguments_delta)
        elif event.type == "tool_calls.function.arguments.done" and event.tool_arguments is not None:
            # Prefer complete arguments from the done event
            entry["arguments"] = event.tool_arguments

    def calls(self) -> tuple[ToolCall, ...]:
        result: list[ToolCall] = []
        for index in sorted(self._calls):
            entry = self._calls[index]
            arguments = entry.get("arguments")
            if arguments is None:
                arguments = "".join(entry["arguments_parts"])
            call_id = entry["id"] or f"call_{index}_{uuid.uuid4().hex[:8]}"
            result.append(ToolCall(name=entry["name"], params=arguments or "{}", id=call_id))
        return tuple(result)


class OpenAITransport:
    """``ModelTransport`` over an OpenAI-compatible streaming endpoint."""

    def __init__(self, client: AIClient | None) -> None:
        self._client = client
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> OpenAITransport:
        """Build a transport; without an API key every ``send`` is rejected."""
        if not settings.api_key:
            LOGGER.warning("No API key configured; chat requests will be rejected")
            return cls(None)
        return cls(AIClient(ClientSettings.from_settings(settings)))

    @property
    def client(self) -> AIClient | None:
        return self._client

    @property
    def active_handles(self) -> list[str]:
        return list(self._tasks)

    def send(self, request: SendRequest) -> str | None:
        if self._client is None:
            request.on_error(StreamError("No API key configured. Set THREADWEAVER_API_KEY or update settings."))
            return None

        handle = uuid.uuid4().hex
        task = asyncio.get_running_loop().create_task(self._run(request), name=f"threadweaver-stream-{handle[:8]}")
        self._tasks[handle] = task
        task.add_done_callback(lambda _task: self._tasks.pop(handle, None))
        return handle

    def abort(self, handle: str) -> None:
        task = self._tasks.pop(handle, None)
        if task is not None and not task.done():
            LOGGER.debug("Aborting stream %s", handle)
            task.cancel()

    async def _run(self, request: SendRequest) -> None:
        assert self._client is not None
        parts: list[str] = []
        accumulator = ToolCallAccumulator()
        tools = [spec.to_openai_tool() for spec in request.tools] if request.tools else None

        try:
            async for event in self._client.stream_chat(
                to_openai_messages(request.messages),
                tools=tools,
            ):
                if event.type == "content.delta" and event.content:
                    parts.append(event.content)
                    request.on_text(event.content, "".join(parts))
                elif event.type.startswith("tool_calls."):
                    accumulator.add(event)
        except asyncio.CancelledError:
            LOGGER.debug("Stream cancelled after %d chars", sum(len(p) for p in parts))
            raise
        except Exception as exc:
            LOGGER.warning("Chat stream failed: %s", exc)
            request.on_error(StreamError.from_exception(exc))
            return

        request.on_final_message(FinalMessage(text="".join(parts), tool_calls=accumulator.calls()))

    async def aclose(self) -> None:
        for handle in list(self._tasks):
            self.abort(handle)
        if self._client is not None:
            await self._client.aclose()
