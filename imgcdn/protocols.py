"""Protocol definitions for imgcdn.

The rewrite handlers never parse markup themselves. An event source (the
streaming parser in :mod:`imgcdn.html_rewriter`, or any other transport)
reports elements and text chunks through these interfaces and applies the
mutations the handlers request back to the output stream.

Keeping the handlers behind protocols means they can be driven by a test
double or a different parser without changes.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol, runtime_checkable


@runtime_checkable
class Element(Protocol):
    """A start tag seen by the event source.

    Mutations are recorded on the element and written out by the event
    source; sibling attributes are never touched by a mutation.
    """

    @property
    @abstractmethod
    def tag_name(self) -> str:
        """Lower-case tag name."""
        ...

    @abstractmethod
    def has_attribute(self, name: str) -> bool:
        ...

    @abstractmethod
    def get_attribute(self, name: str) -> str | None:
        """Return the attribute value, or None when the attribute is missing.

        Attributes present without a value (``<img hidden>``) return ``""``.
        """
        ...

    @abstractmethod
    def set_attribute(self, name: str, value: str) -> None:
        """Set an attribute, appending it when it does not exist yet."""
        ...

    @abstractmethod
    def remove(self) -> None:
        """Remove the element together with its content."""
        ...

    @property
    @abstractmethod
    def removed(self) -> bool:
        ...


@runtime_checkable
class TextChunk(Protocol):
    """One piece of a text node.

    A text node may arrive as several chunks; ``last_in_text_node`` marks the
    terminal one.
    """

    @property
    @abstractmethod
    def text(self) -> str:
        ...

    @property
    @abstractmethod
    def last_in_text_node(self) -> bool:
        ...

    @abstractmethod
    def replace(self, content: str, html: bool = False) -> None:
        """Replace this chunk.

        Args:
            content: Replacement text.
            html: False writes ``content`` as literal text, True as markup.
        """
        ...

    @abstractmethod
    def remove(self) -> None:
        """Drop this chunk from the output."""
        ...


@runtime_checkable
class ElementHandler(Protocol):
    """Handler for one tag category.

    Implementations are created per document, so any state they keep (such
    as a text buffer) never crosses request boundaries.
    """

    @abstractmethod
    def element(self, element: Element) -> None:
        """Process a start tag."""
        ...

    @abstractmethod
    def text(self, chunk: TextChunk) -> None:
        """Process a text chunk inside the element."""
        ...
