"""Streaming code extraction helpers."""

from .block_parser import (
    BlockState,
    SearchReplaceBlock,
    SurroundingsRemover,
    extract_code_from_fim,
    extract_code_from_regular,
    extract_search_replace_blocks,
)

__all__ = [
    "BlockState",
    "SearchReplaceBlock",
    "SurroundingsRemover",
    "extract_code_from_fim",
    "extract_code_from_regular",
    "extract_search_replace_blocks",
]
