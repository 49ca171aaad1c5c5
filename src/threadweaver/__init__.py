"""Conversational agent core: chat threads, streaming model turns, and tools."""

__version__ = "0.3.0"
