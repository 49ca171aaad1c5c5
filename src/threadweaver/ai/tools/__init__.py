"""Agent tools and their registry."""

from .errors import ToolError
from .registry import DuplicateToolError, ToolNotFoundError, ToolRegistry, ToolSpec
from .workspace import WorkspaceTools, register_workspace_tools

__all__ = [
    "ToolError",
    "ToolRegistry",
    "ToolSpec",
    "DuplicateToolError",
    "ToolNotFoundError",
    "WorkspaceTools",
    "register_workspace_tools",
]
