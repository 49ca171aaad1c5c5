"""Built-in read-only workspace tools.

Every tool takes the raw JSON parameter string the model produced and returns
a one-element tuple holding a JSON-serializable dict, which is stored verbatim
in the tool message. Paths are resolved against the workspace folders and may
not escape them.
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Iterator, Mapping, Sequence

from ..prompts import uri_to_path
from .errors import (
    BinaryFileError,
    FileNotFoundToolError,
    InvalidParameterError,
    MissingParameterError,
    NotADirectoryToolError,
    OutsideWorkspaceError,
    PatternInvalidError,
)
from .registry import ToolRegistry, ToolSpec

__all__ = ["WorkspaceTools", "register_workspace_tools", "WORKSPACE_TOOL_SPECS"]

LOGGER = logging.getLogger(__name__)

MAX_READ_CHARS = 50_000
MAX_DIR_ENTRIES = 200
MAX_RESULTS = 50
_SKIPPED_DIRS = {".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv", ".mypy_cache", ".pytest_cache"}


WORKSPACE_TOOL_SPECS: dict[str, ToolSpec] = {
    "read_file": ToolSpec(
        name="read_file",
        description="Return the text contents of a file in the workspace.",
        parameters={
            "type": "object",
            "properties": {"path": {"type": "string", "description": "File path, relative to the workspace root."}},
            "required": ["path"],
        },
    ),
    "list_dir": ToolSpec(
        name="list_dir",
        description="List the files and folders inside a workspace directory.",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory path. Defaults to the workspace root."},
            },
        },
    ),
    "pathname_search": ToolSpec(
        name="pathname_search",
        description="Find files whose path contains the query, or matches it as a glob pattern.",
        parameters={
            "type": "object",
            "properties": {"query": {"type": "string", "description": "Substring or glob pattern such as '*.py'."}},
            "required": ["query"],
        },
    ),
    "search": ToolSpec(
        name="search",
        description="Search file contents in the workspace and return matching lines.",
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Text to search for."},
                "is_regex": {"type": "boolean", "description": "Treat the query as a regular expression."},
            },
            "required": ["query"],
        },
    ),
}


def _parse_params(params: str) -> dict[str, Any]:
    if not params or not params.strip():
        return {}
    try:
        parsed = json.loads(params)
    except json.JSONDecodeError as exc:
        raise InvalidParameterError(
            message=f"Tool parameters are not valid JSON: {exc.msg}",
            expected="a JSON object",
        ) from exc
    if not isinstance(parsed, dict):
        raise InvalidParameterError(message="Tool parameters must be a JSON object", expected="a JSON object")
    return parsed


def _require_str(params: Mapping[str, Any], name: str) -> str:
    value = params.get(name)
    if value is None or value == "":
        raise MissingParameterError(message=f"'{name}' is required", parameter=name)
    if not isinstance(value, str):
        raise InvalidParameterError(message=f"'{name}' must be a string", parameter=name, expected="string")
    return value


class WorkspaceTools:
    """Read-only file access confined to a set of workspace folders."""

    def __init__(self, roots: Sequence[str | Path]) -> None:
        self._roots = [Path(root).expanduser().resolve() for root in roots]

    @property
    def roots(self) -> list[Path]:
        return list(self._roots)

    def resolve(self, raw: str | None) -> Path:
        """Resolve a model-supplied path, rejecting anything outside the workspace."""
        if not self._roots:
            raise OutsideWorkspaceError(message="No workspace folder is open")
        if not raw:
            return self._roots[0]
        candidate = uri_to_path(raw).expanduser()
        if not candidate.is_absolute():
            candidate = self._roots[0] / candidate
        candidate = candidate.resolve()
        if not any(candidate == root or candidate.is_relative_to(root) for root in self._roots):
            raise OutsideWorkspaceError(details={"path": raw})
        return candidate

    def _display(self, path: Path) -> str:
        for root in self._roots:
            if path == root or path.is_relative_to(root):
                relative = path.relative_to(root).as_posix()
                return relative or "."
        return str(path)

    def _walk_files(self) -> Iterator[Path]:
        for root in self._roots:
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = sorted(d for d in dirnames if d not in _SKIPPED_DIRS)
                for filename in sorted(filenames):
                    yield Path(dirpath) / filename

    # ------------------------------------------------------------------
    # Tool functions
    # ------------------------------------------------------------------
    async def read_file(self, params: str) -> tuple[dict[str, Any]]:
        args = _parse_params(params)
        path = self.resolve(_require_str(args, "path"))
        return (await asyncio.to_thread(self._read_file_sync, path),)

    def _read_file_sync(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            raise FileNotFoundToolError(message=f"File not found: {self._display(path)}", path=self._display(path))
        if path.is_dir():
            raise InvalidParameterError(
                message=f"{self._display(path)} is a directory",
                parameter="path",
                suggestion="Use list_dir for directories",
            )
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise BinaryFileError(details={"path": self._display(path)}) from exc
        truncated = len(text) > MAX_READ_CHARS
        return {
            "path": self._display(path),
            "content": text[:MAX_READ_CHARS] if truncated else text,
            "truncated": truncated,
        }

    async def list_dir(self, params: str) -> tuple[dict[str, Any]]:
        args = _parse_params(params)
        raw = args.get("path")
        if raw is not None and not isinstance(raw, str):
            raise InvalidParameterError(message="'path' must be a string", parameter="path", expected="string")
        path = self.resolve(raw)
        return (await asyncio.to_thread(self._list_dir_sync, path),)

    def _list_dir_sync(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            raise FileNotFoundToolError(message=f"Directory not found: {self._display(path)}", path=self._display(path))
        if not path.is_dir():
            raise NotADirectoryToolError(details={"path": self._display(path)})
        children = sorted(path.iterdir(), key=lambda child: (not child.is_dir(), child.name.lower()))
        entries = [{"name": child.name, "is_dir": child.is_dir()} for child in children[:MAX_DIR_ENTRIES]]
        return {
            "path": self._display(path),
            "entries": entries,
            "has_more": len(children) > MAX_DIR_ENTRIES,
        }

    async def pathname_search(self, params: str) -> tuple[dict[str, Any]]:
        args = _parse_params(params)
        query = _require_str(args, "query")
        return (await asyncio.to_thread(self._pathname_search_sync, query),)

    def _pathname_search_sync(self, query: str) -> dict[str, Any]:
        is_glob = any(ch in query for ch in "*?[")
        needle = query.lower()
        paths: list[str] = []
        has_more = False
        for file_path in self._walk_files():
            display = self._display(file_path)
            if is_glob:
                matched = fnmatch.fnmatch(display, query) or fnmatch.fnmatch(file_path.name, query)
            else:
                matched = needle in display.lower()
            if not matched:
                continue
            if len(paths) >= MAX_RESULTS:
                has_more = True
                break
            paths.append(display)
        return {"query": query, "paths": paths, "has_more": has_more}

    async def search(self, params: str) -> tuple[dict[str, Any]]:
        args = _parse_params(params)
        query = _require_str(args, "query")
        is_regex = bool(args.get("is_regex", False))
        try:
            pattern = re.compile(query if is_regex else re.escape(query), re.IGNORECASE)
        except re.error as exc:
            raise PatternInvalidError(details={"query": query, "reason": str(exc)}) from exc
        return (await asyncio.to_thread(self._search_sync, query, pattern),)

    def _search_sync(self, query: str, pattern: re.Pattern[str]) -> dict[str, Any]:
        matches: list[dict[str, Any]] = []
        has_more = False
        for file_path in self._walk_files():
            try:
                text = file_path.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                continue
            for line_number, line in enumerate(text.splitlines(), start=1):
                if not pattern.search(line):
                    continue
                if len(matches) >= MAX_RESULTS:
                    has_more = True
                    break
                matches.append({"path": self._display(file_path), "line": line_number, "text": line.strip()})
            if has_more:
                break
        return {"query": query, "matches": matches, "has_more": has_more}


# ----------------------------------------------------------------------
# Result formatters
# ----------------------------------------------------------------------
def read_file_result_to_string(result: Mapping[str, Any]) -> str:
    text = f"{result['path']}\n```\n{result['content']}\n```"
    if result.get("truncated"):
        text += f"\n(truncated to the first {MAX_READ_CHARS} characters)"
    return text


def list_dir_result_to_string(result: Mapping[str, Any]) -> str:
    lines = [f"{entry['name']}/" if entry["is_dir"] else entry["name"] for entry in result["entries"]]
    if not lines:
        return f"{result['path']} is empty"
    if result.get("has_more"):
        lines.append("...")
    return f"{result['path']}:\n" + "\n".join(lines)


def pathname_search_result_to_string(result: Mapping[str, Any]) -> str:
    if not result["paths"]:
        return f"No files match '{result['query']}'"
    lines = list(result["paths"])
    if result.get("has_more"):
        lines.append("... (more results omitted)")
    return "\n".join(lines)


def search_result_to_string(result: Mapping[str, Any]) -> str:
    if not result["matches"]:
        return f"No matches for '{result['query']}'"
    lines = [f"{match['path']}:{match['line']}: {match['text']}" for match in result["matches"]]
    if result.get("has_more"):
        lines.append("... (more results omitted)")
    return "\n".join(lines)


def register_workspace_tools(registry: ToolRegistry, tools: WorkspaceTools) -> ToolRegistry:
    """Register the built-in workspace tools on ``registry``."""
    registry.register(WORKSPACE_TOOL_SPECS["read_file"], tools.read_file, read_file_result_to_string)
    registry.register(WORKSPACE_TOOL_SPECS["list_dir"], tools.list_dir, list_dir_result_to_string)
    registry.register(
        WORKSPACE_TOOL_SPECS["pathname_search"], tools.pathname_search, pathname_search_result_to_string
    )
    registry.register(WORKSPACE_TOOL_SPECS["search"], tools.search, search_result_to_string)
    LOGGER.debug("Registered workspace tools for %s", ", ".join(str(root) for root in tools.roots))
    return registry
