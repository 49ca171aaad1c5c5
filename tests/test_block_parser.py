"""Tests for incremental code extraction."""

from __future__ import annotations

import pytest

from threadweaver.ai.prompts import DIVIDER, FINAL, ORIGINAL
from threadweaver.editor.block_parser import (
    BlockState,
    SearchReplaceBlock,
    SurroundingsRemover,
    extract_code_from_fim,
    extract_code_from_regular,
    extract_search_replace_blocks,
)


TWO_BLOCKS = (
    "Here are the edits.\n"
    f"{ORIGINAL}\n"
    "a = 1\n"
    f"{DIVIDER}\n"
    "a = 2\n"
    f"{FINAL}\n"
    "and then\n"
    f"{ORIGINAL}\n"
    "def f():\n    pass\n"
    f"{DIVIDER}\n"
    "def f():\n    return 1\n"
    f"{FINAL}\n"
)


class TestSurroundingsRemover:
    def test_remove_prefix_full_match(self) -> None:
        remover = SurroundingsRemover("```python")
        assert remover.remove_prefix("```") is True
        assert remover.value() == "python"

    def test_remove_prefix_partial_match_still_advances(self) -> None:
        remover = SurroundingsRemover("``")
        assert remover.remove_prefix("```") is False
        assert remover.value() == ""

    def test_remove_prefix_mismatch_leaves_value(self) -> None:
        remover = SurroundingsRemover("hello")
        assert remover.remove_prefix("```") is False
        assert remover.value() == "hello"

    def test_remove_suffix_drops_partial_suffix(self) -> None:
        remover = SurroundingsRemover("<PRE>hi<P")
        assert remover.remove_prefix("<PRE>") is True
        assert remover.remove_suffix("<PRE/>") is False
        assert remover.value() == "hi"

    def test_remove_suffix_without_match(self) -> None:
        remover = SurroundingsRemover("hello")
        assert remover.remove_suffix("```") is False
        assert remover.value() == "hello"

    def test_remove_from_start_until_consumes_everything_when_absent(self) -> None:
        remover = SurroundingsRemover("no newline here")
        assert remover.remove_from_start_until("\n", True) is False
        assert remover.value() == ""

    def test_remove_from_start_until_can_keep_marker(self) -> None:
        remover = SurroundingsRemover("lang\nbody")
        assert remover.remove_from_start_until("\n", False) is True
        assert remover.value() == "\nbody"


class TestExtractCodeFromRegular:
    def test_complete_block(self) -> None:
        assert extract_code_from_regular("```js\nhello\n```", 5) == ("hello", "o", "\n```")

    def test_trailing_newline_after_fence(self) -> None:
        value, _, _ = extract_code_from_regular("```py\nx = 1\n```\n", 1)
        assert value == "x = 1"

    def test_plain_text_passes_through(self) -> None:
        value, delta, withheld = extract_code_from_regular("print(1)", 3)
        assert value == "print(1)"
        assert delta == "(1)"
        assert withheld == ""

    def test_opening_fence_still_arriving(self) -> None:
        value, delta, withheld = extract_code_from_regular("``", 2)
        assert value == ""
        assert delta == ""

    def test_language_tag_still_arriving(self) -> None:
        value, _, _ = extract_code_from_regular("```pyth", 4)
        assert value == ""

    def test_closing_fence_still_arriving_is_withheld(self) -> None:
        value, delta, withheld = extract_code_from_regular("```py\nx = 1\n``", 2)
        assert not value.endswith("`")
        assert delta == ""
        assert withheld == "``"

    def test_value_grows_with_each_delta(self) -> None:
        text = "```ts\nconst a = 1;\nconst b = 2;\n```"
        previous = ""
        for end in range(1, len(text) + 1):
            value, _, _ = extract_code_from_regular(text[:end], 1)
            assert "```" not in value
            previous = value
        assert previous == "const a = 1;\nconst b = 2;"


class TestExtractCodeFromFim:
    def test_strips_mid_tags(self) -> None:
        text = "<MID>abc</MID>"
        assert extract_code_from_fim(text, len(text), "MID") == ("abc", "abc", "</MID>")

    def test_partial_closing_tag_is_hidden(self) -> None:
        value, _, _ = extract_code_from_fim("<MID>ab</M", 3, "MID")
        assert value == "ab"

    def test_tags_inside_fence(self) -> None:
        value, _, _ = extract_code_from_fim("```\n<MID>x + y</MID>\n```", 3, "MID")
        assert value == "x + y"

    def test_custom_tag(self) -> None:
        value, _, _ = extract_code_from_fim("<FILL>z</FILL>", 1, "FILL")
        assert value == "z"


class TestExtractSearchReplaceBlocks:
    def test_no_markers(self) -> None:
        assert extract_search_replace_blocks("just prose") == []

    def test_complete_blocks(self) -> None:
        blocks = extract_search_replace_blocks(TWO_BLOCKS)
        assert blocks == [
            SearchReplaceBlock(state=BlockState.DONE, orig="a = 1", final="a = 2"),
            SearchReplaceBlock(
                state=BlockState.DONE,
                orig="def f():\n    pass",
                final="def f():\n    return 1",
            ),
        ]

    def test_partial_divider_is_not_part_of_original(self) -> None:
        blocks = extract_search_replace_blocks(f"{ORIGINAL}\nx = 1\n====")
        assert blocks == [SearchReplaceBlock(state=BlockState.WRITING_ORIGINAL, orig="x = 1")]

    def test_partial_final_marker_is_not_part_of_final(self) -> None:
        blocks = extract_search_replace_blocks(f"{ORIGINAL}\nx = 1\n{DIVIDER}\nx = 2\n>>>")
        assert blocks == [SearchReplaceBlock(state=BlockState.WRITING_FINAL, orig="x = 1", final="x = 2")]

    def test_final_section_just_started(self) -> None:
        blocks = extract_search_replace_blocks(f"{ORIGINAL}\nx = 1\n{DIVIDER}\n")
        assert blocks == [SearchReplaceBlock(state=BlockState.WRITING_FINAL, orig="x = 1", final="")]

    def test_every_prefix_is_monotonic(self) -> None:
        previous: list[SearchReplaceBlock] = []
        for end in range(len(TWO_BLOCKS) + 1):
            blocks = extract_search_replace_blocks(TWO_BLOCKS[:end])
            assert len(blocks) >= len(previous)
            for before, after in zip(previous, blocks):
                assert after.state.rank >= before.state.rank
                if before.state is BlockState.DONE:
                    assert after == before
                if after.state is before.state is BlockState.WRITING_ORIGINAL:
                    assert after.orig.startswith(before.orig)
                if after.state is before.state is BlockState.WRITING_FINAL:
                    assert after.orig == before.orig
                    assert after.final.startswith(before.final)
            previous = blocks
        assert [block.state for block in previous] == [BlockState.DONE, BlockState.DONE]


@pytest.mark.parametrize(
    ("state", "rank"),
    [(BlockState.WRITING_ORIGINAL, 0), (BlockState.WRITING_FINAL, 1), (BlockState.DONE, 2)],
)
def test_block_state_rank(state: BlockState, rank: int) -> None:
    assert state.rank == rank
