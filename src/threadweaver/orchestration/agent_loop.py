"""Agent loop orchestration for chat threads.

``ChatThreadService`` turns one user message into a full turn: it stores the
message, then runs model rounds on a background task, executing any tool calls
the model asks for between rounds. Callers get control back as soon as the
user message is stored; progress and completion are observed through the
event bus (``CurrentThreadChanged`` and ``StreamStateChanged``).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Literal, Sequence, cast

from ..ai.prompts import (
    FileReader,
    LocalFileReader,
    chat_selections_string,
    chat_system_message,
    chat_user_message_content,
    chat_user_message_content_with_all_files,
)
from ..ai.tools.registry import ToolRegistry, ToolSpec
from ..ai.types import EMPTY_MESSAGE, FinalMessage, LLMChatMessage, ModelTransport, SendRequest, ToolCall, to_llm_message
from ..chat.message_model import (
    DEFAULT_MESSAGE_STATE,
    AssistantMessage,
    StagingSelectionItem,
    ToolMessage,
    UserMessage,
)
from ..chat.stream_state import StreamError, StreamStateTracker
from ..chat.thread_store import ThreadStore

__all__ = ["ChatMode", "ChatSelections", "ChatThreadService", "DEFAULT_MAX_TOOL_ITERATIONS"]

LOGGER = logging.getLogger(__name__)

ChatMode = Literal["agent", "chat"]
DEFAULT_MAX_TOOL_ITERATIONS = 8


@dataclass(slots=True, frozen=True)
class ChatSelections:
    """Explicit selection sets, used instead of the thread's own on edit-and-resend."""

    prev: Sequence[StagingSelectionItem] | None = None
    curr: Sequence[StagingSelectionItem] | None = None


@dataclass(slots=True)
class _Turn:
    """Bookkeeping for the turn currently running on one thread."""

    thread_id: str
    task: asyncio.Task[None] | None = None
    cancelled: bool = False
    sent: bool = False
    handle: str | None = None
    outcome: asyncio.Future[FinalMessage | None] | None = None


class ChatThreadService:
    """Drives the send / stream / tool-call loop for chat threads.

    Within a turn, tool calls run one at a time in the order the model listed
    them, and the next model round is sent only after every tool message of
    the previous round has been stored.
    """

    def __init__(
        self,
        store: ThreadStore,
        streams: StreamStateTracker,
        transport: ModelTransport,
        tools: ToolRegistry,
        *,
        file_reader: FileReader | None = None,
        workspace_folders: Sequence[str] = (),
        max_tool_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS,
    ) -> None:
        self._store = store
        self._streams = streams
        self._transport = transport
        self._tools = tools
        self._reader = file_reader or LocalFileReader()
        self._workspace_folders = list(workspace_folders)
        self._max_tool_iterations = max(1, int(max_tool_iterations))
        self._turns: dict[str, _Turn] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def store(self) -> ThreadStore:
        return self._store

    @property
    def streams(self) -> StreamStateTracker:
        return self._streams

    @property
    def transport(self) -> ModelTransport:
        return self._transport

    def is_running(self, thread_id: str) -> bool:
        return thread_id in self._turns

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    async def add_user_message_and_stream_response(
        self,
        user_message: str,
        chat_mode: ChatMode = "agent",
        chat_selections: ChatSelections | None = None,
    ) -> asyncio.Task[None]:
        """Store ``user_message`` on the current thread and start the turn.

        Returns the spawned turn task once the message is stored; the turn
        itself has not finished. A turn already running on the thread is
        cancelled first and awaited, so its tool messages land before the new
        user message.
        """
        if chat_mode not in ("agent", "chat"):
            raise ValueError(f"Unknown chat mode: {chat_mode!r}")

        thread_id = self._store.current_thread_id
        await self._stop_turn(thread_id)
        thread = self._store.state.all_threads[thread_id]

        # selections from every earlier message, then the ones staged now (duplicates are fine)
        if chat_selections is not None and chat_selections.prev is not None:
            prev_selections = list(chat_selections.prev)
        else:
            prev_selections = self._store.all_selections()
        if chat_selections is not None and chat_selections.curr is not None:
            curr_selections = list(chat_selections.curr)
        else:
            curr_selections = list(thread.state.staging_selections)

        content = chat_user_message_content(user_message, curr_selections)
        selections_str = await chat_selections_string(prev_selections, curr_selections, self._reader)
        full_content = chat_user_message_content_with_all_files(content, selections_str)

        self._store.append_message(
            thread_id,
            UserMessage(
                content=content,
                display_content=user_message,
                selections=tuple(curr_selections),
                state=DEFAULT_MESSAGE_STATE,
            ),
        )
        self._streams.update(thread_id, error=None)

        tools = self._tools.list_tools() if chat_mode == "agent" else None
        turn = _Turn(thread_id=thread_id)
        self._turns[thread_id] = turn
        task = turn.task = asyncio.create_task(
            self._run_turn(turn, full_content, tools), name=f"threadweaver-turn-{thread_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        LOGGER.debug("Started %s turn on thread %s", chat_mode, thread_id)
        return task

    async def edit_user_message_and_stream_response(
        self,
        user_message: str,
        chat_mode: ChatMode,
        message_idx: int,
    ) -> asyncio.Task[None]:
        """Replace the user message at ``message_idx`` and everything after it.

        Raises:
            ValueError: If ``message_idx`` does not name a user message.
        """
        thread = self._store.current_thread
        messages = thread.messages
        if not 0 <= message_idx < len(messages) or not isinstance(messages[message_idx], UserMessage):
            raise ValueError(f"Message {message_idx} of thread {thread.id} is not a user message")

        edited = cast(UserMessage, messages[message_idx])
        await self._stop_turn(thread.id)
        selections = ChatSelections(
            prev=self._store.selections_up_to(message_idx),
            curr=list(edited.selections or ()),
        )
        self._store.truncate_messages(thread.id, message_idx)
        return await self.add_user_message_and_stream_response(user_message, chat_mode, selections)

    def cancel_streaming(self, thread_id: str) -> None:
        """Stop the running turn on ``thread_id``.

        A model round in flight is aborted and its partial text is stored as
        the assistant message; a turn that has not sent its first round yet is
        closed with an empty one. A running tool is left to finish and no
        further round is sent. Without a running turn this does nothing.
        """
        turn = self._turns.get(thread_id)
        if turn is None or turn.cancelled:
            return
        turn.cancelled = True

        outcome = turn.outcome
        if outcome is None or outcome.done():
            if not turn.sent:
                self._finish_streaming_text_message(thread_id, self._message_so_far(thread_id))
            LOGGER.debug("Cancelled turn on thread %s between model rounds", thread_id)
            return

        if turn.handle is not None:
            self._transport.abort(turn.handle)
        self._finish_streaming_text_message(thread_id, self._message_so_far(thread_id))
        outcome.set_result(None)
        LOGGER.debug("Cancelled streaming on thread %s", thread_id)

    async def _stop_turn(self, thread_id: str) -> None:
        """Cancel the turn on ``thread_id`` and wait until its task has exited."""
        turn = self._turns.get(thread_id)
        self.cancel_streaming(thread_id)
        if turn is not None and turn.task is not None and turn.task is not asyncio.current_task():
            await asyncio.wait({turn.task})

    def dismiss_stream_error(self, thread_id: str) -> None:
        self._streams.update(thread_id, error=None)

    async def shutdown(self) -> None:
        """Cancel every running turn and wait for the turn tasks to exit."""
        for thread_id in list(self._turns):
            self.cancel_streaming(thread_id)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Turn internals
    # ------------------------------------------------------------------
    async def _run_turn(self, turn: _Turn, full_content: str, tools: Sequence[ToolSpec] | None) -> None:
        try:
            await self._agent_loop(turn, full_content, tools)
        except Exception as exc:
            LOGGER.exception("Agent loop failed on thread %s", turn.thread_id)
            self._streams.update(
                turn.thread_id,
                error=StreamError.from_exception(exc),
                message_so_far=None,
                streaming_token=None,
            )
        finally:
            if self._turns.get(turn.thread_id) is turn:
                del self._turns[turn.thread_id]

    async def _agent_loop(self, turn: _Turn, full_content: str, tools: Sequence[ToolSpec] | None) -> None:
        thread_id = turn.thread_id
        rounds = 0
        while not turn.cancelled:
            if rounds >= self._max_tool_iterations:
                LOGGER.warning(
                    "Thread %s reached the limit of %d model rounds; ending turn",
                    thread_id,
                    self._max_tool_iterations,
                )
                return
            rounds += 1

            final = await self._send_round(turn, full_content, tools)
            if final is None:
                return

            if not final.tool_calls:
                self._finish_streaming_text_message(thread_id, final.text)
                return

            self._store.append_message(thread_id, AssistantMessage(content=final.text, display_content=final.text))
            self._streams.update(thread_id, message_so_far=None, streaming_token=None)

            if not await self._run_tool_calls(turn, final.tool_calls):
                return

    async def _send_round(
        self,
        turn: _Turn,
        full_content: str,
        tools: Sequence[ToolSpec] | None,
    ) -> FinalMessage | None:
        """Run one model round; ``None`` means the turn must stop."""
        thread_id = turn.thread_id
        outcome: asyncio.Future[FinalMessage | None] = asyncio.get_running_loop().create_future()

        def on_text(new_text: str, full_text: str) -> None:
            if outcome.done():
                return
            self._streams.update(thread_id, message_so_far=full_text)

        def on_final_message(message: FinalMessage) -> None:
            if not outcome.done():
                outcome.set_result(message)

        def on_error(error: StreamError) -> None:
            if outcome.done():
                return
            LOGGER.warning("Model request failed on thread %s: %s", thread_id, error.message)
            self._finish_streaming_text_message(thread_id, self._message_so_far(thread_id), error)
            outcome.set_result(None)

        request = SendRequest(
            messages=self._build_messages(thread_id, full_content),
            on_text=on_text,
            on_final_message=on_final_message,
            on_error=on_error,
            tools=tools,
        )
        turn.sent = True
        handle = self._transport.send(request)
        if handle is None:
            if not outcome.done():
                self._streams.update(thread_id, error=StreamError("request was rejected"))
                outcome.set_result(None)
            return None

        turn.handle = handle
        turn.outcome = outcome
        if not outcome.done():
            self._streams.update(thread_id, streaming_token=handle)
        try:
            return await outcome
        finally:
            turn.handle = None
            turn.outcome = None

    async def _run_tool_calls(self, turn: _Turn, tool_calls: Sequence[ToolCall]) -> bool:
        """Execute tool calls in order; return whether another round should follow."""
        thread_id = turn.thread_id
        ran_any = False
        for call in tool_calls:
            if turn.cancelled:
                break
            LOGGER.debug("Running tool %s (%s) on thread %s", call.name, call.id, thread_id)
            try:
                returned = await self._tools.call(call.name, call.params)
                result = returned[0] if returned else None
            except Exception as exc:
                LOGGER.warning("Tool %s failed: %s", call.name, exc)
                self._streams.update(thread_id, error=StreamError.from_exception(exc))
                return False

            try:
                content = self._tools.result_to_string(call.name, result)
            except Exception as exc:
                LOGGER.warning("Could not format result of tool %s: %s", call.name, exc)
                self._streams.update(thread_id, error=StreamError.from_exception(exc))
                return False

            self._store.append_message(
                thread_id,
                ToolMessage(name=call.name, params=call.params, id=call.id, content=content, result=result),
            )
            ran_any = True
        return ran_any and not turn.cancelled

    def _build_messages(self, thread_id: str, full_content: str) -> list[LLMChatMessage]:
        """System message, then history with the last user turn fully expanded."""
        thread = self._store.get_thread(thread_id)
        history = [to_llm_message(message) for message in thread.messages] if thread else []
        for idx in range(len(history) - 1, -1, -1):
            if history[idx].role == "user":
                history[idx] = LLMChatMessage(role="user", content=full_content or EMPTY_MESSAGE)
                break
        system = LLMChatMessage(role="system", content=chat_system_message(self._workspace_folders))
        return [system, *history]

    def _message_so_far(self, thread_id: str) -> str:
        state = self._streams.get(thread_id)
        return (state.message_so_far if state else None) or ""

    def _finish_streaming_text_message(self, thread_id: str, content: str, error: StreamError | None = None) -> None:
        self._store.append_message(
            thread_id,
            AssistantMessage(content=content, display_content=content or None),
        )
        self._streams.update(thread_id, message_so_far=None, streaming_token=None, error=error)
