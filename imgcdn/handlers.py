"""Tag handlers for imgcdn.

This module maps each element kind to the rewrite operations that apply to
it. Every handler covers one tag category and names the SiteConfig toggle
that governs it; a disabled handler leaves its elements untouched.

Handlers are created per document by create_handlers(), so the style
handler's text buffer is never shared between requests.

Key classes:
- BaseTagHandler: Common toggle check and attribute helpers.
- ImageHandler, SourceHandler: ``<img>`` and ``<source>`` (img family).
- AnchorHandler: ``<a href>`` (lightbox links).
- LinkIconHandler: icon ``<link>`` tags.
- DivHandler: ``<div>`` backgrounds set inline or by plugins.
- StyleHandler: ``<style>`` text, buffered across chunks.
- SvgHandler: removal of empty decorative ``<svg>`` elements.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import NamedTuple
from urllib.parse import urlsplit

from .buffer import TextBuffer
from .config import SiteConfig
from .directives import Geometry
from .patterns import match_sizes_geometry
from .protocols import Element, TextChunk
from .rewrite import (
    element_geometry,
    rewrite_background,
    rewrite_css,
    rewrite_srcset,
    rewrite_url,
)

logger = logging.getLogger(__name__)

ICON_RELS = frozenset(
    {"shortcut icon", "icon", "apple-touch-icon", "apple-touch-icon-precomposed"}
)

# Inline style WordPress puts on its empty duotone filter <svg>
EMPTY_SVG_STYLE = "visibility: hidden; position: absolute; left: -9999px; overflow: hidden;"


class RewriteTarget(NamedTuple):
    """An attribute (or text content) the engine knows how to rewrite.

    ``kind`` selects the operation: ``url`` (single URL), ``srcset``
    (responsive list), ``background`` (CSS or bare URL) or ``text``.
    """

    tag: str
    attribute: str
    kind: str


REWRITE_TARGETS: tuple[RewriteTarget, ...] = (
    RewriteTarget("img", "src", "url"),
    RewriteTarget("img", "data-src", "url"),
    RewriteTarget("img", "data-lazyload", "url"),
    RewriteTarget("img", "data-lazy-src", "url"),
    RewriteTarget("img", "srcset", "srcset"),
    RewriteTarget("img", "data-srcset", "srcset"),
    RewriteTarget("img", "data-lazy-srcset", "srcset"),
    RewriteTarget("source", "src", "url"),
    RewriteTarget("source", "srcset", "srcset"),
    RewriteTarget("source", "data-srcset", "srcset"),
    RewriteTarget("a", "href", "url"),
    RewriteTarget("link", "href", "url"),
    RewriteTarget("div", "style", "background"),
    RewriteTarget("div", "data-ultimate-bg", "background"),
    RewriteTarget("div", "data-image-id", "background"),
    RewriteTarget("style", "#text", "text"),
)


def targets_for(tag: str, kind: str) -> tuple[str, ...]:
    """Attribute names of ``tag`` rewritten with operation ``kind``."""
    return tuple(t.attribute for t in REWRITE_TARGETS if t.tag == tag and t.kind == kind)


def is_empty_svg(element: Element) -> bool:
    """Check for the empty decorative SVG WordPress injects into every page.

    The element qualifies when ``viewBox`` is ``0 0 0 0``, it has no class
    attribute and its style is exactly EMPTY_SVG_STYLE.
    """
    return (
        element.get_attribute("viewBox") == "0 0 0 0"
        and not element.has_attribute("class")
        and element.get_attribute("style") == EMPTY_SVG_STYLE
    )


class BaseTagHandler(ABC):
    """Base class for tag handlers.

    Subclasses set ``tag`` and ``toggle`` and implement process(). element()
    only calls process() when the toggle is enabled in the site config.
    """

    tag: str = ""
    toggle: str = ""

    def __init__(self, config: SiteConfig):
        self.config = config

    @property
    def enabled(self) -> bool:
        return bool(getattr(self.config, self.toggle))

    def element(self, element: Element) -> None:
        if self.enabled:
            self.process(element)

    def text(self, chunk: TextChunk) -> None:
        """Text chunks pass through unless a handler says otherwise."""

    @abstractmethod
    def process(self, element: Element) -> None:
        """Apply this category's rewrites to an element."""
        ...

    def rewrite_urls(self, element: Element, geometry: Geometry | None = None) -> None:
        """Rewrite this tag's single-URL attributes."""
        for name in targets_for(self.tag, "url"):
            self._update(
                element,
                name,
                lambda value: rewrite_url(value, self.config, geometry, strip_size=True),
            )

    def rewrite_srcsets(self, element: Element) -> None:
        """Rewrite this tag's responsive candidate lists."""
        for name in targets_for(self.tag, "srcset"):
            self._update(element, name, lambda value: rewrite_srcset(value, self.config))

    def _update(self, element: Element, name: str, rewrite) -> None:
        value = element.get_attribute(name)
        if not value:
            return
        result = rewrite(value)
        if result != value:
            element.set_attribute(name, result)
            logger.debug("Rewrote <%s %s>: %s -> %s", self.tag, name, value, result)


class ImageHandler(BaseTagHandler):
    """Rewrites ``<img>`` sources, including lazy-load plugin attributes."""

    tag = "img"
    toggle = "rewrite_image_tags"

    def process(self, element: Element) -> None:
        geometry = element_geometry(
            element.get_attribute("width"), element.get_attribute("height")
        )
        self.rewrite_urls(element, geometry)
        self.rewrite_srcsets(element)
        if self.config.lazy_load and not element.has_attribute("loading"):
            element.set_attribute("loading", "lazy")


class SourceHandler(BaseTagHandler):
    """Rewrites ``<source>`` candidates inside ``<picture>``."""

    tag = "source"
    toggle = "rewrite_image_tags"

    def process(self, element: Element) -> None:
        geometry = element_geometry(
            element.get_attribute("width"), element.get_attribute("height")
        )
        self.rewrite_urls(element, geometry)
        self.rewrite_srcsets(element)


class AnchorHandler(BaseTagHandler):
    """Rewrites ``<a href>`` pointing at images, as used by lightboxes."""

    tag = "a"
    toggle = "rewrite_href_tags"

    def process(self, element: Element) -> None:
        self._update(element, "href", lambda value: rewrite_url(value, self.config))


class LinkIconHandler(BaseTagHandler):
    """Rewrites favicon and touch icon ``<link>`` tags.

    Geometry comes from a literal ``sizes="WxH"``. ``.ico`` files are left
    alone since the CDN cannot transform them.
    """

    tag = "link"
    toggle = "rewrite_link_tags"

    def process(self, element: Element) -> None:
        rel = " ".join((element.get_attribute("rel") or "").lower().split())
        if rel not in ICON_RELS:
            return
        href = element.get_attribute("href")
        if not href or urlsplit(href.strip()).path.lower().endswith(".ico"):
            return
        geometry = match_sizes_geometry(element.get_attribute("sizes"))
        self.rewrite_urls(element, geometry)


class DivHandler(BaseTagHandler):
    """Rewrites inline backgrounds on ``<div>`` elements.

    Covers the ``style`` attribute and the attributes page-builder plugins
    (Ultimate VC Addons) keep their background images in.
    """

    tag = "div"
    toggle = "rewrite_div_tags"

    def process(self, element: Element) -> None:
        for name in targets_for(self.tag, "background"):
            self._update(element, name, lambda value: rewrite_background(value, self.config))


class StyleHandler(BaseTagHandler):
    """Rewrites ``url()`` references in ``<style>`` text.

    Every chunk is held back until the terminal chunk of the text node
    arrives; the complete text is then written once. With the toggle off the
    original text is written unchanged at the same point.
    """

    tag = "style"
    toggle = "rewrite_style_tags"

    def __init__(self, config: SiteConfig):
        super().__init__(config)
        rewrite = partial(rewrite_css, config=config) if self.enabled else None
        self.buffer = TextBuffer(rewrite)

    def process(self, element: Element) -> None:
        """Nothing to do on the start tag itself."""

    def text(self, chunk: TextChunk) -> None:
        content = self.buffer.feed(chunk.text, chunk.last_in_text_node)
        if content is None:
            chunk.remove()
        else:
            chunk.replace(content, html=False)


class SvgHandler(BaseTagHandler):
    """Removes the empty ``<svg>`` WordPress adds for duotone filters."""

    tag = "svg"
    toggle = "rewrite_svg_tags"

    def process(self, element: Element) -> None:
        if is_empty_svg(element):
            logger.debug("Removed empty decorative <svg>")
            element.remove()


TAG_HANDLERS: dict[str, type[BaseTagHandler]] = {
    handler.tag: handler
    for handler in (
        LinkIconHandler,
        StyleHandler,
        ImageHandler,
        SourceHandler,
        AnchorHandler,
        SvgHandler,
        DivHandler,
    )
}


def create_handlers(config: SiteConfig) -> dict[str, BaseTagHandler]:
    """Create a fresh handler set for one document.

    Args:
        config: Site configuration resolved for the request.

    Returns:
        Mapping of tag name to handler instance.
    """
    return {tag: handler_cls(config) for tag, handler_cls in TAG_HANDLERS.items()}
