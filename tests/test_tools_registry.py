"""Tests for the tool registry."""

from __future__ import annotations

from typing import Any

import pytest

from threadweaver.ai.tools.errors import ErrorCode, ToolError, error_from_dict
from threadweaver.ai.tools.registry import DuplicateToolError, ToolNotFoundError, ToolRegistry, ToolSpec


async def _echo(params: str) -> tuple[str]:
    return (params,)


async def _bare(params: str) -> dict[str, Any]:
    return {"raw": params}


ECHO = ToolSpec(name="echo", description="Echo the input", parameters={"type": "object", "properties": {}})


class TestRegistration:
    def test_register_and_list(self) -> None:
        registry = ToolRegistry()
        registry.register(ECHO, _echo)

        assert "echo" in registry
        assert len(registry) == 1
        assert registry.has("echo")
        assert registry.list_tools() == [ECHO]

    def test_duplicate_name_is_rejected(self) -> None:
        registry = ToolRegistry()
        registry.register(ECHO, _echo)

        with pytest.raises(DuplicateToolError):
            registry.register(ECHO, _echo)
        registry.register(ECHO, _bare, allow_override=True)
        assert registry.get_registration("echo").fn is _bare

    def test_disabled_tools_are_hidden(self) -> None:
        registry = ToolRegistry()
        registry.register(ECHO, _echo)
        registry.disable("echo")

        assert registry.has("echo") is False
        assert registry.list_tools() == []
        assert registry.list_names(include_disabled=True) == ["echo"]
        assert registry.enable("echo") is True
        assert registry.list_names() == ["echo"]

    def test_unregister(self) -> None:
        registry = ToolRegistry()
        registry.register(ECHO, _echo)

        assert registry.unregister("echo") is True
        assert registry.unregister("echo") is False


class TestCalling:
    @pytest.mark.asyncio
    async def test_call_returns_tuple(self) -> None:
        registry = ToolRegistry()
        registry.register(ECHO, _echo)

        assert await registry.call("echo", '{"a": 1}') == ('{"a": 1}',)

    @pytest.mark.asyncio
    async def test_bare_result_is_wrapped(self) -> None:
        registry = ToolRegistry()
        registry.register(ToolSpec(name="bare", description="Bare"), _bare)

        assert await registry.call("bare", "x") == ({"raw": "x"},)

    @pytest.mark.asyncio
    async def test_unknown_tool(self) -> None:
        with pytest.raises(ToolNotFoundError):
            await ToolRegistry().call("missing", "{}")

    def test_result_to_string_uses_formatter(self) -> None:
        registry = ToolRegistry()
        registry.register(ECHO, _echo, lambda result: f"<{result}>")

        assert registry.result_to_string("echo", "hi") == "<hi>"

    def test_result_to_string_rejects_non_string(self) -> None:
        registry = ToolRegistry()
        registry.register(ECHO, _echo, lambda result: len(result))

        with pytest.raises(TypeError):
            registry.result_to_string("echo", "hi")


def test_openai_tool_format() -> None:
    registry = ToolRegistry()
    registry.register(ECHO, _echo)
    registry.register(ToolSpec(name="noargs", description="No arguments"), _echo)

    tools = registry.get_openai_tools()

    assert tools[0] == {
        "type": "function",
        "function": {
            "name": "echo",
            "description": "Echo the input",
            "parameters": {"type": "object", "properties": {}},
        },
    }
    assert tools[1]["function"]["parameters"] == {"type": "object", "properties": {}}
    assert [t["function"]["name"] for t in registry.get_openai_tools(filter_names=["noargs"])] == ["noargs"]


def test_tool_error_round_trip() -> None:
    error = ToolError(error_code=ErrorCode.INTERNAL_ERROR, message="broke", details={"step": 2}, suggestion="retry")

    restored = error_from_dict(error.to_dict())

    assert restored.to_dict() == error.to_dict()
    assert str(restored) == "[internal_error] broke"
