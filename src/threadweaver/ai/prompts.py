"""Prompt templates for chat turns.

The persisted user message keeps only the short instruction text; the fully
expanded form with every referenced file and selection is built again on each
model round by :func:`chat_user_message_content_with_all_files`.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol, Sequence
from urllib.parse import unquote, urlparse

from ..chat.message_model import CodeSelection, FileSelection, StagingSelectionItem

__all__ = [
    "ORIGINAL",
    "DIVIDER",
    "FINAL",
    "FileReader",
    "LocalFileReader",
    "chat_system_message",
    "chat_user_message_content",
    "chat_selections_string",
    "chat_user_message_content_with_all_files",
    "selection_key",
]

LOGGER = logging.getLogger(__name__)

# Search/replace edit block markers
ORIGINAL = "<<<<<<< ORIGINAL"
DIVIDER = "======="
FINAL = ">>>>>>> UPDATED"

MAX_FILE_CHARS = 100_000


class FileReader(Protocol):
    """Reads file contents for a selection's URI."""

    async def read_file(self, file_uri: str) -> str:
        ...


def uri_to_path(file_uri: str) -> Path:
    """Convert a ``file://`` URI (or a bare path) to a local path."""
    parsed = urlparse(file_uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(file_uri)


class LocalFileReader:
    """Reads files from the local filesystem off the event loop."""

    def __init__(self, *, max_chars: int = MAX_FILE_CHARS) -> None:
        self._max_chars = max_chars

    async def read_file(self, file_uri: str) -> str:
        path = uri_to_path(file_uri)
        text = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
        if len(text) > self._max_chars:
            LOGGER.debug("Truncating %s from %d to %d chars", path, len(text), self._max_chars)
            text = text[: self._max_chars] + "\n... (truncated)"
        return text


def chat_system_message(workspace_folders: Sequence[str]) -> str:
    """System instruction sent first on every round."""
    if workspace_folders:
        folders = "\n".join(f"- {folder}" for folder in workspace_folders)
        workspace = f"The user's workspace contains these folders:\n{folders}"
    else:
        workspace = "The user has no workspace folders open."

    return f"""You are a coding assistant. Your job is to answer the user's questions and to carry out the edits they ask for.

{workspace}

Guidelines:
- Reference files by their full path.
- Use the tools you are given to look at the workspace before answering questions about it. Do not guess file contents.
- When you change existing code, describe each change as a search/replace block:

{ORIGINAL}
// exact lines from the original file
{DIVIDER}
// the lines that replace them
{FINAL}

- The ORIGINAL section must match the file exactly, including whitespace.
- Keep answers short. Write code in fenced blocks tagged with the language."""


def _selection_label(selection: StagingSelectionItem) -> str:
    path = uri_to_path(selection.file_uri)
    if isinstance(selection, CodeSelection):
        rng = selection.range
        return f"{path} (lines {rng.start_line_number}-{rng.end_line_number})"
    return str(path)


def selection_key(selection: StagingSelectionItem) -> tuple[object, ...]:
    """Identity used to de-duplicate selections across turns."""
    if isinstance(selection, CodeSelection):
        rng = selection.range
        return (
            selection.type,
            selection.file_uri,
            rng.start_line_number,
            rng.start_column,
            rng.end_line_number,
            rng.end_column,
        )
    return (FileSelection.type, selection.file_uri)


def chat_user_message_content(instructions: str, selections: Sequence[StagingSelectionItem] | None) -> str:
    """Short, persisted form of the user turn."""
    parts: list[str] = []
    if selections:
        names = ", ".join(_selection_label(s) for s in selections)
        parts.append(f"{names} (in SELECTIONS section)")
    parts.append(f"INSTRUCTIONS\n{instructions}")
    return "\n\n".join(parts)


async def chat_selections_string(
    prev_selections: Sequence[StagingSelectionItem] | None,
    curr_selections: Sequence[StagingSelectionItem] | None,
    reader: FileReader,
) -> str:
    """Render every referenced selection as a fenced block.

    Current selections come first. A selection already listed is skipped, and
    whole files are read once each. Unreadable files are noted inline rather
    than failing the turn.
    """
    seen: set[tuple[object, ...]] = set()
    blocks: list[str] = []
    for selection in [*(curr_selections or ()), *(prev_selections or ())]:
        key = selection_key(selection)
        if key in seen:
            continue
        seen.add(key)
        label = _selection_label(selection)
        if isinstance(selection, CodeSelection):
            body = selection.selection_str
        else:
            try:
                body = await reader.read_file(selection.file_uri)
            except OSError as exc:
                LOGGER.warning("Could not read %s for chat context: %s", label, exc)
                body = f"(could not read file: {exc})"
        blocks.append(f"{label}\n```\n{body}\n```")
    return "\n\n".join(blocks)


def chat_user_message_content_with_all_files(content: str, selections_str: str) -> str:
    """Expanded form of the user turn sent to the model."""
    if not selections_str:
        return content
    return f"{content}\n\nSELECTIONS\n{selections_str}"
