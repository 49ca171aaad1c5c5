"""Agent loop orchestration."""

from .agent_loop import ChatSelections, ChatThreadService

__all__ = ["ChatSelections", "ChatThreadService"]
