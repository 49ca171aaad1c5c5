"""Command line entry point: a line-oriented terminal chat."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.tools.registry import ToolRegistry
from .ai.tools.workspace import WorkspaceTools, register_workspace_tools
from .ai.transport import OpenAITransport
from .chat.events import CurrentThreadChanged, EventBus, StreamStateChanged
from .chat.message_model import AssistantMessage, ToolMessage
from .chat.stream_state import StreamStateTracker
from .chat.thread_store import ThreadStore
from .editor.block_parser import BlockState, extract_search_replace_blocks
from .orchestration.agent_loop import ChatThreadService
from .services.settings import CHAT_MODE_CHOICES, Settings, SettingsStore, redact_secret
from .services.storage import JsonFileStorage
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)

_HELP_TEXT = """Commands:
  /new      start (or reuse) an empty thread
  /threads  list stored threads
  /mode M   switch between agent and chat mode
  /edits    show edit blocks from the last reply
  /quit     exit
Press Ctrl+C while a reply is streaming to cancel it."""


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


class TerminalChat:
    """Prints streamed replies and tool activity for the current thread."""

    def __init__(self, service: ChatThreadService, *, chat_mode: str, output: TextIO | None = None) -> None:
        self._service = service
        self._chat_mode = chat_mode
        self._out = output or sys.stdout
        self._printed = 0
        self._seen_messages = len(service.store.current_thread.messages)
        bus = service.store.event_bus
        bus.subscribe(StreamStateChanged, self._on_stream_state_changed)
        bus.subscribe(CurrentThreadChanged, self._on_current_thread_changed)

    def _on_stream_state_changed(self, event: StreamStateChanged) -> None:
        if event.thread_id != self._service.store.current_thread_id:
            return
        state = self._service.streams.get(event.thread_id)
        text = (state.message_so_far if state else None) or ""
        if len(text) > self._printed:
            self._out.write(text[self._printed :])
            self._out.flush()
        self._printed = len(text)
        if state is not None and state.error is not None:
            self._out.write(f"\n[error] {state.error.message}\n")

    def _on_current_thread_changed(self, event: CurrentThreadChanged) -> None:
        messages = self._service.store.current_thread.messages
        for message in messages[self._seen_messages :]:
            if isinstance(message, ToolMessage):
                self._out.write(f"\n[tool {message.name}] {message.params}\n")
        self._seen_messages = len(messages)

    async def run(self) -> None:
        self._out.write(f"threadweaver ({self._chat_mode} mode). Type /help for commands.\n")
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                return
            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                if not self._handle_command(line):
                    return
                continue
            await self._send(line)

    async def _send(self, line: str) -> None:
        self._printed = 0
        thread_id = self._service.store.current_thread_id
        task = await self._service.add_user_message_and_stream_response(line, self._chat_mode)
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            # Ctrl+C cancels the main task; keep the session and stop only this reply
            current = asyncio.current_task()
            if current is not None:
                current.uncancel()
            self._service.cancel_streaming(thread_id)
            await task
            self._out.write("\n[cancelled]")
        self._out.write("\n")
        state = self._service.streams.get(thread_id)
        if state is not None and state.error is not None:
            self._service.dismiss_stream_error(thread_id)

    def _handle_command(self, line: str) -> bool:
        command, _, argument = line.partition(" ")
        store = self._service.store
        if command in ("/quit", "/exit"):
            return False
        if command == "/new":
            thread = store.open_new_thread()
            self._seen_messages = len(thread.messages)
            self._out.write(f"Thread {thread.id}\n")
        elif command == "/threads":
            for thread in sorted(store.state.all_threads.values(), key=lambda t: t.last_modified):
                marker = "*" if thread.id == store.current_thread_id else " "
                self._out.write(f"{marker} {thread.id}  {len(thread.messages)} message(s)  {thread.last_modified}\n")
        elif command == "/mode" and argument.strip() in CHAT_MODE_CHOICES:
            self._chat_mode = argument.strip()
            self._out.write(f"Mode: {self._chat_mode}\n")
        elif command == "/edits":
            self._show_edits()
        else:
            self._out.write(_HELP_TEXT + "\n")
        return True

    def _show_edits(self) -> None:
        reply = next(
            (m for m in reversed(self._service.store.current_thread.messages) if isinstance(m, AssistantMessage)),
            None,
        )
        blocks = extract_search_replace_blocks(reply.content or "") if reply is not None else []
        if not blocks:
            self._out.write("No edit blocks in the last reply.\n")
            return
        for number, block in enumerate(blocks, start=1):
            status = "" if block.state is BlockState.DONE else f" ({block.state.value})"
            self._out.write(f"--- edit {number}{status}\n- {block.orig}\n+ {block.final}\n")


def build_service(settings: Settings, *, storage_path: Path | None = None) -> ChatThreadService:
    """Wire storage, the thread store, tools and the OpenAI transport."""

    bus: EventBus = EventBus()
    storage = JsonFileStorage(storage_path or (Path(settings.storage_path).expanduser() if settings.storage_path else None))
    store = ThreadStore(storage, bus)
    streams = StreamStateTracker(bus)
    registry = ToolRegistry()
    if settings.workspace_folders:
        register_workspace_tools(registry, WorkspaceTools(settings.workspace_folders))
    return ChatThreadService(
        store,
        streams,
        OpenAITransport.from_settings(settings),
        registry,
        workspace_folders=settings.workspace_folders,
        max_tool_iterations=_resolve_max_tool_iterations(settings),
    )


async def _run_chat(settings: Settings, chat_mode: str) -> None:
    service = build_service(settings)
    chat = TerminalChat(service, chat_mode=chat_mode)
    try:
        await chat.run()
    finally:
        await service.shutdown()
        transport = service.transport
        if isinstance(transport, OpenAITransport):
            await transport.aclose()


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `threadweaver` console script."""

    args = _parse_cli_args(argv)

    logging_utils.setup_logging()

    settings_path = args.settings_path or os.environ.get("THREADWEAVER_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)
    if args.workspace:
        folders = [str(Path(folder).expanduser().resolve()) for folder in args.workspace]
        settings = replace(settings, workspace_folders=folders)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return

    if settings.debug_logging:
        logging_utils.set_debug_logging(True)

    chat_mode = args.mode or settings.chat_mode
    try:
        asyncio.run(_run_chat(settings, chat_mode))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")


def _resolve_max_tool_iterations(settings: Settings | None) -> int:
    """Clamp the configured iteration limit into a safe operating range."""

    raw_value = getattr(settings, "max_tool_iterations", 8) if settings else 8
    try:
        value = int(raw_value)
    except (TypeError, ValueError):
        value = 8
    return max(1, min(value, 50))


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="threadweaver",
        description="Chat with a coding assistant from the terminal or inspect its configuration.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.threadweaver/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings before launch (repeatable).",
    )
    parser.add_argument(
        "--mode",
        choices=CHAT_MODE_CHOICES,
        help="Chat mode: 'agent' lets the model call workspace tools, 'chat' does not.",
    )
    parser.add_argument(
        "--workspace",
        metavar="DIR",
        action="append",
        default=[],
        help="Workspace folder the tools may read (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is type(None) or normalized.lower() in {"none", "null"}:
        return None
    if target in (list, dict):
        try:
            value = json.loads(normalized)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Expected a JSON {target.__name__}") from exc
        if not isinstance(value, target):
            raise ValueError(f"Expected a JSON {target.__name__}")
        return value
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return _resolve_annotation(args[0])


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(payload.get("api_key") or "")
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("THREADWEAVER_"))


if __name__ == "__main__":  # pragma: no cover
    main()
