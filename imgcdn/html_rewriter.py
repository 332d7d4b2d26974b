"""Streaming HTML rewriter for imgcdn.

HTMLRewriter drives the tag handlers over an HTML document that arrives in
pieces. It reports start tags and text chunks to the handler registered for
the tag, applies the mutations the handler requests, and writes everything
else through exactly as it was received:

- Start tags nobody touched are copied from the source text.
- A mutated start tag keeps its original text except for the changed
  attribute values and any attribute appended before the closing ``>``.
- A removed element is dropped together with its content.
- Text is held back one chunk at a time so the terminal chunk of each text
  node can be flagged before it is handed out. Character references keep
  their source spelling, with or without the closing semicolon.
- abandon() hands back everything not yet written out, so a caller can pass
  the rest of a document through after a handler failure.

Key classes:
- HTMLRewriter: The event source, built on html.parser.HTMLParser.

Key functions:
- rewrite_html: Rewrite a complete document for a site configuration.
- rewrite_stream: Rewrite an iterable of text chunks lazily.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from html import escape
from html.parser import HTMLParser

from .config import SiteConfig
from .handlers import create_handlers
from .protocols import ElementHandler

logger = logging.getLogger(__name__)

VOID_ELEMENTS = frozenset(
    {
        "area", "base", "br", "col", "embed", "hr", "img", "input",
        "link", "meta", "param", "source", "track", "wbr",
    }
)

RAW_TEXT_ELEMENTS = frozenset({"script", "style"})

_TAG_NAME_RE = re.compile(r"<[^\s/>]+")
_ATTR_RE = re.compile(
    r"(?P<name>[^\s/>\"'=][^\s/>=]*)"
    r"(?:\s*=\s*(?P<value>\"[^\"]*\"|'[^']*'|(?![\"'])[^\s>]*))?"
)


def _quote(value: str, quote: str = '"') -> str:
    escaped = value.replace("&", "&amp;").replace(quote, "&quot;" if quote == '"' else "&#x27;")
    return f"{quote}{escaped}{quote}"


class _Element:
    """Start tag handed to handlers; records mutations for serialization."""

    def __init__(self, tag: str, attrs: list[tuple[str, str | None]], raw: str, self_closing: bool):
        self._tag = tag
        self._attrs = [[name, value] for name, value in attrs]
        self._original_count = len(attrs)
        self._changed: set[int] = set()
        self._removed = False
        self.raw = raw
        self.self_closing = self_closing

    @property
    def tag_name(self) -> str:
        return self._tag

    @property
    def removed(self) -> bool:
        return self._removed

    @property
    def modified(self) -> bool:
        return bool(self._changed)

    def _index(self, name: str) -> int | None:
        name = name.lower()
        for index, (attr_name, _value) in enumerate(self._attrs):
            if attr_name == name:
                return index
        return None

    def has_attribute(self, name: str) -> bool:
        return self._index(name) is not None

    def get_attribute(self, name: str) -> str | None:
        index = self._index(name)
        if index is None:
            return None
        value = self._attrs[index][1]
        return "" if value is None else value

    def set_attribute(self, name: str, value: str) -> None:
        index = self._index(name)
        if index is None:
            self._attrs.append([name.lower(), value])
            index = len(self._attrs) - 1
        else:
            self._attrs[index][1] = value
        self._changed.add(index)

    def remove(self) -> None:
        self._removed = True

    def serialize(self) -> str:
        """Return the start tag text with this element's mutations applied."""
        if not self._changed:
            return self.raw
        spliced = self._splice()
        return spliced if spliced is not None else self._build()

    def _splice(self) -> str | None:
        """Patch changed values into the original tag text.

        Returns None when the tag text cannot be matched up with the parsed
        attributes, in which case the tag is rebuilt from scratch.
        """
        raw = self.raw
        head = _TAG_NAME_RE.match(raw)
        if head is None:
            return None
        end = len(raw) - (2 if raw.endswith("/>") else 1)
        spans = list(_ATTR_RE.finditer(raw, head.end(), end))
        names = [m.group("name").lower() for m in spans]
        if names != [name for name, _value in self._attrs[: self._original_count]]:
            return None
        pieces: list[str] = []
        cursor = 0
        for index in sorted(i for i in self._changed if i < self._original_count):
            match = spans[index]
            value = self._attrs[index][1] or ""
            original = match.group("value")
            quote = original[0] if original and original[0] in "\"'" else '"'
            if original is None:
                start, stop = match.end("name"), match.end("name")
            else:
                start, stop = match.start("value"), match.end("value")
            pieces.append(raw[cursor:start])
            pieces.append(_quote(value, quote) if original is not None else f"={_quote(value)}")
            cursor = stop
        added = "".join(
            f" {name}={_quote(value or '')}" for name, value in self._attrs[self._original_count :]
        )
        tail = raw[cursor:end]
        body = tail.rstrip()
        pieces.append(body)
        pieces.append(added)
        pieces.append(tail[len(body) :])
        pieces.append(raw[end:])
        return "".join(pieces)

    def _build(self) -> str:
        parts = [f"<{self._tag}"]
        for name, value in self._attrs:
            parts.append(f" {name}" if value is None else f" {name}={_quote(value)}")
        parts.append(" />" if self.self_closing else ">")
        return "".join(parts)


class _TextChunk:
    """One text event; ``output`` is what ends up in the document."""

    def __init__(self, text: str, last: bool, raw_text: bool):
        self._text = text
        self._last = last
        self._raw_text = raw_text
        self._replacement: str | None = None

    @property
    def text(self) -> str:
        return self._text

    @property
    def last_in_text_node(self) -> bool:
        return self._last

    def replace(self, content: str, html: bool = False) -> None:
        if html or self._raw_text:
            self._replacement = content
        else:
            self._replacement = escape(content, quote=False)

    def remove(self) -> None:
        self._replacement = ""

    @property
    def output(self) -> str:
        return self._text if self._replacement is None else self._replacement


class HTMLRewriter(HTMLParser):
    """Event source that applies tag handlers to a streamed HTML document.

    Attributes:
        handlers: Mapping of lower-case tag name to handler.

    Example:
        >>> rewriter = HTMLRewriter(create_handlers(SiteConfig()))
        >>> out = rewriter.feed('<a href="/wp-content/uploads/a.jpg">')
        >>> out += rewriter.close()
    """

    def __init__(self, handlers: Mapping[str, ElementHandler] | None = None):
        super().__init__(convert_charrefs=False)
        self.handlers: dict[str, ElementHandler] = dict(handlers or {})
        self._out: list[str] = []
        self._stack: list[str] = []
        self._pending: str | None = None
        # Chunks of the current text node, raw and as handled, until its last chunk
        self._node_raw: list[str] = []
        self._node_out: list[str] = []
        # Offset in rawdata of the construct being parsed
        self._cursor = 0
        self._skip_tag: str | None = None
        self._skip_depth = 0
        self._in_endtag = False
        self._endtag_name: str | None = None

    def on(self, tag: str, handler: ElementHandler) -> HTMLRewriter:
        """Register a handler for a tag name and return self for chaining."""
        self.handlers[tag.lower()] = handler
        return self

    def feed(self, data: str) -> str:
        """Parse a chunk and return the output that is ready so far."""
        super().feed(data)
        return self._drain()

    def close(self) -> str:
        """Finish the document and return the remaining output."""
        super().close()
        self._flush_text()
        return self._drain()

    def transform(self, chunks: Iterable[str]) -> Iterator[str]:
        """Rewrite an iterable of text chunks, yielding output as it is ready."""
        for chunk in chunks:
            out = self.feed(chunk)
            if out:
                yield out
        tail = self.close()
        if tail:
            yield tail

    def abandon(self) -> str:
        """Stop rewriting and return everything not yet written out.

        Output already produced is returned first, followed by the input the
        rewriter still holds (the current text node, held-back text and
        unparsed data) exactly as it was received. Used to pass the rest of a
        document through unchanged after a handler failed.
        """
        remaining = [self._drain(), *self._node_raw]
        if self._pending is not None:
            remaining.append(self._pending)
        remaining.append(self.rawdata[self._cursor :])
        self._node_raw.clear()
        self._node_out.clear()
        self._pending = None
        self.rawdata = ""
        self._cursor = 0
        return "".join(remaining)

    def _drain(self) -> str:
        out = "".join(self._out)
        self._out.clear()
        return out

    # -- parser position ----------------------------------------------------

    def goahead(self, end):
        self._cursor = 0
        super().goahead(end)
        self._cursor = 0

    def updatepos(self, i, j):
        self._cursor = j
        return super().updatepos(i, j)

    def _reference(self, prefix: str) -> str:
        """Source text of the character reference starting at the cursor."""
        if self.rawdata.startswith(prefix, self._cursor):
            if not self.rawdata.startswith(";", self._cursor + len(prefix)):
                return prefix
        return f"{prefix};"

    # -- text -------------------------------------------------------------

    def _text_handler(self) -> ElementHandler | None:
        if not self._stack:
            return None
        return self.handlers.get(self._stack[-1])

    def _dispatch_text(self, text: str, last: bool) -> None:
        handler = self._text_handler()
        chunk = _TextChunk(text, last, raw_text=self._stack[-1] in RAW_TEXT_ELEMENTS)
        handler.text(chunk)
        self._node_raw.append(text)
        self._node_out.append(chunk.output)
        if last:
            self._out.extend(self._node_out)
            self._node_raw.clear()
            self._node_out.clear()

    def _flush_text(self) -> None:
        if self._pending is not None:
            self._dispatch_text(self._pending, last=True)
            self._pending = None

    def _text(self, text: str) -> None:
        if self._skip_tag is not None:
            return
        if self._text_handler() is None:
            self._out.append(text)
            return
        if self._pending is not None:
            self._dispatch_text(self._pending, last=False)
        self._pending = text

    def handle_data(self, data):
        self._text(data)

    def handle_entityref(self, name):
        self._text(self._reference(f"&{name}"))

    def handle_charref(self, name):
        self._text(self._reference(f"&#{name}"))

    # -- markup -----------------------------------------------------------

    def _markup(self, text: str) -> None:
        self._flush_text()
        if self._skip_tag is None:
            self._out.append(text)

    def handle_comment(self, data):
        self._markup(f"<!--{data}-->")

    def handle_decl(self, decl):
        self._markup(f"<!{decl}>")

    def handle_pi(self, data):
        self._markup(f"<?{data}>")

    def unknown_decl(self, data):
        self._markup(f"<![{data}]>")

    def handle_starttag(self, tag, attrs):
        self._start(tag, attrs, self_closing=False)

    def handle_startendtag(self, tag, attrs):
        self._start(tag, attrs, self_closing=True)

    def _start(self, tag: str, attrs: list[tuple[str, str | None]], self_closing: bool) -> None:
        self._flush_text()
        opens = not self_closing and tag not in VOID_ELEMENTS
        if self._skip_tag is not None:
            if tag == self._skip_tag and opens:
                self._skip_depth += 1
            return
        raw = self.get_starttag_text() or ""
        handler = self.handlers.get(tag)
        if handler is not None:
            element = _Element(tag, attrs, raw, self_closing)
            handler.element(element)
            if element.removed:
                if opens:
                    self._skip_tag = tag
                    self._skip_depth = 1
                return
            raw = element.serialize()
        self._out.append(raw)
        if opens:
            self._stack.append(tag)

    def parse_endtag(self, i):
        self._in_endtag = True
        self._endtag_name = None
        try:
            j = super().parse_endtag(i)
        finally:
            self._in_endtag = False
        if self._endtag_name is not None:
            raw = self.rawdata[i:j] if j > i else f"</{self._endtag_name}>"
            self._end(self._endtag_name, raw)
        return j

    def handle_endtag(self, tag):
        if self._in_endtag:
            self._endtag_name = tag
        else:
            self._end(tag, f"</{tag}>")

    def _end(self, tag: str, raw: str) -> None:
        self._flush_text()
        if self._skip_tag is not None:
            if tag == self._skip_tag:
                self._skip_depth -= 1
                if self._skip_depth == 0:
                    self._skip_tag = None
            return
        if tag in self._stack:
            while self._stack and self._stack.pop() != tag:
                pass
        self._out.append(raw)


def rewrite_stream(chunks: Iterable[str], config: SiteConfig) -> Iterator[str]:
    """Rewrite an HTML document delivered as text chunks.

    A fresh handler set is created for the document, so no state is shared
    with other documents.
    """
    rewriter = HTMLRewriter(create_handlers(config))
    yield from rewriter.transform(chunks)


def rewrite_html(html: str, config: SiteConfig) -> str:
    """Rewrite a complete HTML document for a site configuration.

    Examples:
        >>> rewrite_html('<a href="/wp-content/uploads/x.jpg">x</a>', SiteConfig())
        '<a href="/cdn-cgi/image/quality=90,format=auto,onerror=redirect/wp-content/uploads/x.jpg">x</a>'
    """
    return "".join(rewrite_stream([html], config))
