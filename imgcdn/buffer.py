"""Chunked text buffering for imgcdn.

A streamed document can deliver one text node (the body of a ``<style>``
element, for instance) in several chunks. A ``url(...)`` reference may be
split across chunks, so the text can only be rewritten once the whole node is
known. TextBuffer collects the chunks and releases the rewritten text exactly
once, on the terminal chunk.

Key classes:
- BufferState: ACCUMULATING or FLUSHED.
- TextBuffer: The two-state accumulate-then-flush machine.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum


class BufferState(Enum):
    ACCUMULATING = "accumulating"
    FLUSHED = "flushed"


class TextBuffer:
    """Accumulates the chunks of a text node and emits them once.

    Attributes:
        buffer: Text collected so far for the current node.
        state: FLUSHED right after a node has been emitted, ACCUMULATING
            while a node is being collected.
    """

    def __init__(self, rewrite: Callable[[str], str] | None = None):
        """Initialize an empty buffer.

        Args:
            rewrite: Applied to the complete node text on the terminal chunk.
                None emits the collected text verbatim.
        """
        self.rewrite = rewrite
        self.buffer = ""
        self.state = BufferState.ACCUMULATING

    @property
    def is_flushed(self) -> bool:
        return self.state is BufferState.FLUSHED

    def feed(self, text: str, last: bool) -> str | None:
        """Add a chunk of the current text node.

        Args:
            text: Chunk text.
            last: True for the terminal chunk of the node.

        Returns:
            None for intermediate chunks; the full (rewritten) node text for
            the terminal chunk.
        """
        if self.state is BufferState.FLUSHED:
            self.state = BufferState.ACCUMULATING
        self.buffer += text
        if not last:
            return None
        content = self.buffer
        if self.rewrite is not None:
            content = self.rewrite(content)
        self.buffer = ""
        self.state = BufferState.FLUSHED
        return content
