"""Tool registry for the agent loop.

Each registered tool pairs an async function, which takes the raw parameter
string emitted by the model, with a formatter that renders the tool's typed
result for the model and the user.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Sequence

__all__ = [
    "ToolSpec",
    "ToolFn",
    "ResultToString",
    "ToolRegistry",
    "ToolRegistration",
    "DuplicateToolError",
    "ToolNotFoundError",
]

LOGGER = logging.getLogger(__name__)

# Returns a tuple whose first element is the typed result
ToolFn = Callable[[str], Awaitable[tuple[Any, ...]]]
ResultToString = Callable[[Any], str]


class DuplicateToolError(Exception):
    """Raised when attempting to register a tool with a name that already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class ToolNotFoundError(Exception):
    """Raised when a requested tool is not found in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Describes a tool's interface to the model.

    Attributes:
        name: Unique identifier for the tool.
        description: Human-readable description of what the tool does.
        parameters: JSON Schema for the tool's parameters.
    """

    name: str
    description: str
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to OpenAI tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": dict(self.parameters) if self.parameters else {
                    "type": "object",
                    "properties": {},
                },
            },
        }


@dataclass(slots=True)
class ToolRegistration:
    """Record of a registered tool."""

    name: str
    spec: ToolSpec
    fn: ToolFn
    result_to_string: ResultToString
    enabled: bool = True


class ToolRegistry:
    """Registry mapping tool names to their functions and formatters.

    Example:
        registry = ToolRegistry()
        registry.register(
            ToolSpec(name="echo", description="Echo the input"),
            fn=echo,
            result_to_string=str,
        )
        result = (await registry.call("echo", '{"text": "hi"}'))[0]
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolRegistration] = {}

    def register(
        self,
        spec: ToolSpec,
        fn: ToolFn,
        result_to_string: ResultToString = str,
        *,
        enabled: bool = True,
        allow_override: bool = False,
    ) -> ToolRegistration:
        """Register a tool.

        Raises:
            DuplicateToolError: If the name is taken and ``allow_override`` is False.
        """
        if spec.name in self._tools and not allow_override:
            raise DuplicateToolError(spec.name)
        registration = ToolRegistration(
            name=spec.name,
            spec=spec,
            fn=fn,
            result_to_string=result_to_string,
            enabled=enabled,
        )
        self._tools[spec.name] = registration
        LOGGER.debug("Registered tool: %s", spec.name)
        return registration

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            LOGGER.debug("Unregistered tool: %s", name)
            return True
        return False

    def get_registration(self, name: str) -> ToolRegistration | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        """Check if a tool is registered and enabled."""
        registration = self._tools.get(name)
        return registration is not None and registration.enabled

    def _require(self, name: str) -> ToolRegistration:
        registration = self._tools.get(name)
        if registration is None or not registration.enabled:
            raise ToolNotFoundError(name)
        return registration

    async def call(self, name: str, params: str) -> tuple[Any, ...]:
        """Run tool ``name`` with the model-provided parameter string.

        Raises:
            ToolNotFoundError: If the tool is unknown or disabled.
        """
        result = await self._require(name).fn(params)
        if not isinstance(result, tuple):
            result = (result,)
        return result

    def result_to_string(self, name: str, result: Any) -> str:
        """Render a tool's typed result for the model and the user."""
        text = self._require(name).result_to_string(result)
        if not isinstance(text, str):
            raise TypeError(f"Tool '{name}' formatter returned {type(text).__name__}, expected str")
        return text

    def list_tools(self, *, include_disabled: bool = False) -> list[ToolSpec]:
        return [r.spec for r in self._tools.values() if r.enabled or include_disabled]

    def list_names(self, *, include_disabled: bool = False) -> list[str]:
        return [r.name for r in self._tools.values() if r.enabled or include_disabled]

    def get_openai_tools(self, *, filter_names: Sequence[str] | None = None) -> list[dict[str, Any]]:
        """Get tool definitions in OpenAI format."""
        tools: list[dict[str, Any]] = []
        for registration in self._tools.values():
            if not registration.enabled:
                continue
            if filter_names is not None and registration.name not in filter_names:
                continue
            tools.append(registration.spec.to_openai_tool())
        return tools

    def enable(self, name: str) -> bool:
        registration = self._tools.get(name)
        if registration is None:
            return False
        registration.enabled = True
        return True

    def disable(self, name: str) -> bool:
        registration = self._tools.get(name)
        if registration is None:
            return False
        registration.enabled = False
        return True

    def clear(self) -> None:
        self._tools.clear()

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
