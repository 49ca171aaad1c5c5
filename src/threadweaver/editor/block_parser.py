"""Incremental extraction of code from partially streamed model output.

Every function here takes the full text received so far and can be called
again on each new delta. Nothing is cached between calls; the guarantees come
from the scanning rules alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..ai.prompts import DIVIDER, FINAL, ORIGINAL

__all__ = [
    "SurroundingsRemover",
    "BlockState",
    "SearchReplaceBlock",
    "extract_code_from_regular",
    "extract_code_from_fim",
    "extract_search_replace_blocks",
]

CODE_FENCE = "```"


class SurroundingsRemover:
    """Trim wrappers off ``text`` by moving two inclusive cursors inward.

    The live value is ``text[i : j + 1]``. The source string is never copied
    or modified, so :meth:`delta_info` can relate the live window back to the
    most recently received characters.
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self.i = 0
        self.j = len(text) - 1

    def value(self) -> str:
        return self.text[self.i : self.j + 1]

    def remove_prefix(self, prefix: str) -> bool:
        """Consume ``prefix`` character by character.

        A partial match still advances ``i``. Returns ``True`` only when the
        whole prefix matched.
        """
        offset = 0
        while self.i <= self.j and offset < len(prefix):
            if self.text[self.i] != prefix[offset]:
                break
            offset += 1
            self.i += 1
        return offset == len(prefix)

    def remove_suffix(self, suffix: str) -> bool:
        """Retract ``j`` past the longest prefix of ``suffix`` the value ends with.

        ``"<PRE>hi<P"`` with suffix ``"<PRE/>"`` drops ``"<P"`` and returns
        ``False``; the suffix is presumably still arriving.
        """
        live = self.value()
        for length in range(min(len(live), len(suffix)), 0, -1):
            if live.endswith(suffix[:length]):
                self.j -= length
                return length == len(suffix)
        return False

    def remove_from_start_until(self, marker: str, consume_marker: bool) -> bool:
        """Advance ``i`` to the next ``marker``; consume everything if absent."""
        index = self.text.find(marker, self.i)
        if index == -1:
            self.i = self.j + 1
            return False
        self.i = index + len(marker) if consume_marker else index
        return True

    def remove_code_block(self) -> bool:
        """Strip one fenced block: ```` ```lang\\n<code>\\n``` ```` with optional trailing newline."""
        if not self.remove_prefix(CODE_FENCE):
            return False

        # language tag
        self.remove_from_start_until("\n", True)

        j = self.j
        found_end = self.remove_suffix(CODE_FENCE)
        if self.j == j:
            found_end = self.remove_suffix(CODE_FENCE + "\n")
        if not found_end:
            return False

        # newline before the closing fence
        self.remove_suffix("\n")
        return True

    def delta_info(self, recently_added_len: int) -> tuple[str, str]:
        """Split the newest ``recently_added_len`` characters.

        Returns ``(visible_delta, withheld_suffix)``: the part of the live value
        that arrived in this update, and the newly arrived text past the live
        window (e.g. a closing fence) that should not be shown.
        """
        recent_idx = len(self.text) - recently_added_len
        visible = self.text[max(self.i, recent_idx) : self.j + 1]
        withheld = self.text[max(self.j + 1, recent_idx) :]
        return visible, withheld


def extract_code_from_regular(text: str, recently_added_len: int) -> tuple[str, str, str]:
    """Strip one fenced code block, if present.

    Returns ``(live_value, visible_delta, withheld_suffix)``.
    """
    remover = SurroundingsRemover(text)
    remover.remove_code_block()
    delta, withheld = remover.delta_info(recently_added_len)
    return remover.value(), delta, withheld


def extract_code_from_fim(text: str, recently_added_len: int, mid_tag: str) -> tuple[str, str, str]:
    """Like :func:`extract_code_from_regular`, then strip a ``<TAG>...</TAG>`` middle span.

    Meant for providers that write fill-in-middle markers into plain text
    output; providers with native FIM support do not need it.
    """
    remover = SurroundingsRemover(text)
    remover.remove_code_block()
    if remover.remove_prefix(f"<{mid_tag}>"):
        remover.remove_suffix(f"</{mid_tag}>")
    delta, withheld = remover.delta_info(recently_added_len)
    return remover.value(), delta, withheld


class BlockState(str, Enum):
    WRITING_ORIGINAL = "writing_original"
    WRITING_FINAL = "writing_final"
    DONE = "done"

    @property
    def rank(self) -> int:
        return _BLOCK_STATE_RANK[self]


_BLOCK_STATE_RANK = {
    BlockState.WRITING_ORIGINAL: 0,
    BlockState.WRITING_FINAL: 1,
    BlockState.DONE: 2,
}


@dataclass(slots=True, frozen=True)
class SearchReplaceBlock:
    state: BlockState
    orig: str
    final: str = ""


def _partial_marker_len(text: str, marker: str) -> int:
    """Length of the longest prefix of ``marker`` that ``text`` ends with."""
    for length in range(len(marker), 0, -1):
        if text.endswith(marker[:length]):
            return length
    return 0


def extract_search_replace_blocks(text: str) -> list[SearchReplaceBlock]:
    """Parse ORIGINAL / DIVIDER / FINAL edit blocks out of streamed text.

    Scans left to right with one cursor that never moves back. Feeding a
    longer text that extends a previous one yields at least as many blocks,
    each block's state only moves forward, and ``done`` blocks never change.
    A marker still being typed at the end of ``text`` is left out of the
    block's content.
    """
    original_marker = ORIGINAL + "\n"
    divider_marker = "\n" + DIVIDER + "\n"
    final_marker = "\n" + FINAL

    blocks: list[SearchReplaceBlock] = []
    cursor = 0
    while True:
        orig_start = text.find(original_marker, cursor)
        if orig_start == -1:
            return blocks
        orig_start += len(original_marker)
        cursor = orig_start

        divider_start = text.find(divider_marker, cursor)
        if divider_start == -1:
            end = max(orig_start, len(text) - _partial_marker_len(text, divider_marker))
            blocks.append(SearchReplaceBlock(state=BlockState.WRITING_ORIGINAL, orig=text[orig_start:end]))
            return blocks
        orig = text[orig_start:divider_start]
        divider_start += len(divider_marker)
        cursor = divider_start

        final_start = text.find(final_marker, cursor)
        if final_start == -1:
            end = max(divider_start, len(text) - _partial_marker_len(text, final_marker))
            blocks.append(
                SearchReplaceBlock(state=BlockState.WRITING_FINAL, orig=orig, final=text[divider_start:end])
            )
            return blocks
        final = text[divider_start:final_start]
        cursor = final_start + len(final_marker)

        blocks.append(SearchReplaceBlock(state=BlockState.DONE, orig=orig, final=final))
