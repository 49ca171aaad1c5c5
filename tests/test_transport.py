"""Tests for the OpenAI transport and its message conversion."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, cast

import pytest

from threadweaver.ai.client import AIClient, AIStreamEvent
from threadweaver.ai.tools.registry import ToolSpec
from threadweaver.ai.transport import OpenAITransport, ToolCallAccumulator, to_openai_messages
from threadweaver.ai.types import FinalMessage, LLMChatMessage, SendRequest, StreamError
from threadweaver.services.settings import Settings


class _ScriptedClient:
    """Stands in for :class:`AIClient`, yielding a fixed list of events."""

    def __init__(self, events: list[AIStreamEvent], *, error: Exception | None = None, hang: bool = False):
        self._events = events
        self._error = error
        self._hang = hang
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def stream_chat(self, messages: Any, **kwargs: Any) -> AsyncIterator[AIStreamEvent]:
        self.calls.append({"messages": messages, **kwargs})
        for event in self._events:
            yield event
        if self._error is not None:
            raise self._error
        if self._hang:
            await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.closed = True


class _Recorder:
    def __init__(self) -> None:
        self.texts: list[tuple[str, str]] = []
        self.errors: list[StreamError] = []
        self.done: asyncio.Future[FinalMessage | StreamError] | None = None

    def request(self, messages: list[LLMChatMessage] | None = None, **kwargs: Any) -> SendRequest:
        self.done = asyncio.get_running_loop().create_future()
        return SendRequest(
            messages=messages or [LLMChatMessage(role="user", content="hi")],
            on_text=lambda new, full: self.texts.append((new, full)),
            on_final_message=self._finish,
            on_error=self._fail,
            **kwargs,
        )

    def _finish(self, message: FinalMessage) -> None:
        assert self.done is not None
        self.done.set_result(message)

    def _fail(self, error: StreamError) -> None:
        self.errors.append(error)
        if self.done is not None and not self.done.done():
            self.done.set_result(error)


class TestToOpenAIMessages:
    def test_plain_roles_pass_through(self) -> None:
        converted = to_openai_messages(
            [LLMChatMessage(role="system", content="rules"), LLMChatMessage(role="user", content="hi")]
        )
        assert converted == [{"role": "system", "content": "rules"}, {"role": "user", "content": "hi"}]

    def test_tool_messages_attach_to_preceding_assistant(self) -> None:
        converted = to_openai_messages(
            [
                LLMChatMessage(role="user", content="look"),
                LLMChatMessage(role="assistant", content="checking"),
                LLMChatMessage(role="tool", content="A", name="read_file", params='{"path": "a"}', id="c1"),
                LLMChatMessage(role="tool", content="B", name="read_file", params='{"path": "b"}', id="c2"),
                LLMChatMessage(role="assistant", content="done"),
            ]
        )

        assistant = converted[1]
        assert assistant["content"] == "checking"
        assert [call["id"] for call in assistant["tool_calls"]] == ["c1", "c2"]
        assert assistant["tool_calls"][0]["function"] == {"name": "read_file", "arguments": '{"path": "a"}'}
        assert converted[2] == {"role": "tool", "tool_call_id": "c1", "content": "A"}
        assert converted[3] == {"role": "tool", "tool_call_id": "c2", "content": "B"}
        assert converted[4] == {"role": "assistant", "content": "done"}

    def test_orphan_tool_message_gets_an_assistant_turn(self) -> None:
        converted = to_openai_messages(
            [
                LLMChatMessage(role="user", content="look"),
                LLMChatMessage(role="tool", content="A", name="list_dir", params="", id="c1"),
            ]
        )

        assert converted[1]["role"] == "assistant"
        assert converted[1]["content"] is None
        assert converted[1]["tool_calls"][0]["function"]["arguments"] == "{}"
        assert converted[2]["tool_call_id"] == "c1"


class TestToolCallAccumulator:
    def test_rebuilds_calls_in_index_order(self) -> None:
        accumulator = ToolCallAccumulator()
        accumulator.add(AIStreamEvent(type="tool_calls.id", tool_index=1, tool_call_id="c2", tool_name="search"))
        accumulator.add(AIStreamEvent(type="tool_calls.id", tool_index=0, tool_call_id="c1", tool_name="read_file"))
        accumulator.add(
            AIStreamEvent(type="tool_calls.function.arguments.delta", tool_index=0, arguments_delta='{"path": ')
        )
        accumulator.add(
            AIStreamEvent(type="tool_calls.function.arguments.delta", tool_index=0, arguments_delta='"a"}')
        )
        accumulator.add(
            AIStreamEvent(
                type="tool_calls.function.arguments.done",
                tool_index=1,
                tool_name="search",
                tool_arguments='{"query": "x"}',
            )
        )

        calls = accumulator.calls()

        assert [(c.id, c.name, c.params) for c in calls] == [
            ("c1", "read_file", '{"path": "a"}'),
            ("c2", "search", '{"query": "x"}'),
        ]

    def test_missing_id_and_arguments_get_defaults(self) -> None:
        accumulator = ToolCallAccumulator()
        accumulator.add(AIStreamEvent(type="tool_calls.function.arguments.delta", tool_index=0, tool_name="list_dir"))

        (call,) = accumulator.calls()

        assert call.name == "list_dir"
        assert call.params == "{}"
        assert call.id.startswith("call_0_")


class TestOpenAITransport:
    @pytest.mark.asyncio
    async def test_streams_text_then_final_message(self) -> None:
        client = _ScriptedClient(
            [
                AIStreamEvent(type="content.delta", content="Hel"),
                AIStreamEvent(type="content.delta", content="lo"),
                AIStreamEvent(type="tool_calls.id", tool_index=0, tool_call_id="c1", tool_name="search"),
                AIStreamEvent(
                    type="tool_calls.function.arguments.done",
                    tool_index=0,
                    tool_name="search",
                    tool_arguments='{"query": "x"}',
                ),
                AIStreamEvent(type="content.done", content="Hello"),
            ]
        )
        transport = OpenAITransport(cast(AIClient, client))
        recorder = _Recorder()
        spec = ToolSpec(name="search", description="Search.")

        handle = transport.send(recorder.request(tools=[spec]))
        assert handle is not None
        assert recorder.done is not None
        final = await recorder.done

        assert recorder.texts == [("Hel", "Hel"), ("lo", "Hello")]
        assert isinstance(final, FinalMessage)
        assert final.text == "Hello"
        assert [(c.name, c.params, c.id) for c in final.tool_calls] == [("search", '{"query": "x"}', "c1")]
        assert client.calls[0]["tools"] == [spec.to_openai_tool()]
        assert client.calls[0]["messages"] == [{"role": "user", "content": "hi"}]
        # request metadata comes from client settings, not from the transport
        assert set(client.calls[0]) == {"messages", "tools"}

    @pytest.mark.asyncio
    async def test_failure_is_reported_once(self) -> None:
        client = _ScriptedClient([AIStreamEvent(type="content.delta", content="Par")], error=RuntimeError("boom"))
        transport = OpenAITransport(cast(AIClient, client))
        recorder = _Recorder()

        transport.send(recorder.request())
        assert recorder.done is not None
        outcome = await recorder.done

        assert outcome == recorder.errors[0]
        assert len(recorder.errors) == 1
        assert recorder.errors[0].message == "boom"
        assert recorder.texts == [("Par", "Par")]

    @pytest.mark.asyncio
    async def test_abort_cancels_without_callbacks(self) -> None:
        client = _ScriptedClient([AIStreamEvent(type="content.delta", content="Par")], hang=True)
        transport = OpenAITransport(cast(AIClient, client))
        recorder = _Recorder()

        handle = transport.send(recorder.request())
        assert handle is not None
        for _ in range(5):
            await asyncio.sleep(0)
        assert recorder.texts == [("Par", "Par")]

        transport.abort(handle)
        for _ in range(5):
            await asyncio.sleep(0)

        assert transport.active_handles == []
        assert recorder.done is not None and not recorder.done.done()
        assert recorder.errors == []
        transport.abort(handle)

    @pytest.mark.asyncio
    async def test_aclose_aborts_and_closes_client(self) -> None:
        client = _ScriptedClient([], hang=True)
        transport = OpenAITransport(cast(AIClient, client))
        recorder = _Recorder()
        transport.send(recorder.request())

        await transport.aclose()

        assert transport.active_handles == []
        assert client.closed is True

    def test_missing_api_key_rejects_requests(self) -> None:
        transport = OpenAITransport.from_settings(Settings(api_key=""))
        errors: list[StreamError] = []
        request = SendRequest(
            messages=[LLMChatMessage(role="user", content="hi")],
            on_text=lambda new, full: None,
            on_final_message=lambda message: None,
            on_error=errors.append,
        )

        assert transport.client is None
        assert transport.send(request) is None
        assert len(errors) == 1
        assert "API key" in errors[0].message
