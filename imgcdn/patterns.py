"""Asset URL patterns for imgcdn.

This module holds the compiled regular expressions that recognize image
references which can be routed through the resizing CDN, and small matcher
functions built on them. Matching is purely syntactic: nothing here resolves
or fetches a URL.

Only assets under the WordPress content roots are recognized:
``/wp-content/uploads/``, ``/wp-content/plugins/`` and ``/wp-content/themes/``,
ending in jpg, jpeg, gif, png, webp or svg (extension case-insensitive).

Key functions:
    match_asset: Match a single URL token.
    match_responsive_list: Split a srcset value into candidates.
    match_css_urls: Find every ``url(...)`` occurrence in CSS text.
    match_filename_geometry: Read ``-WxH`` dimensions from a filename.
    match_descriptor_width: Read the width from a ``NNNw`` descriptor.
    match_sizes_geometry: Read ``WxH`` from an icon ``sizes`` attribute.
    strip_size_suffix: Drop a WordPress intermediate-size suffix.
"""

from __future__ import annotations

import re
from typing import NamedTuple

from .directives import CDN_PREFIX, Geometry

IMAGE_EXTENSIONS = ("jpg", "jpeg", "gif", "png", "webp", "svg")

# Markers that disqualify a value from rewriting
EXCLUDED_MARKERS = ("base64", CDN_PREFIX)

_EXT = r"(?i:jpe?g|gif|png|webp|svg)"

# The prefix may end in the path of a subdirectory install (/blog)
ASSET_RE = re.compile(
    r"(?P<lead>\s*)"
    r"(?P<prefix>(?:(?:https?:)?//[^/\s'\"()?#]+)?(?:/[^\s'\"()?#]*?)?)"
    r"(?P<path>/wp-content/(?:uploads|plugins|themes)/[^\s'\"()?#]*?\." + _EXT + r")"
    r"(?P<suffix>[?#][^\s'\"()]*)?"
    r"(?P<trail>\s*)"
)

# One srcset candidate: the URL runs to whitespace and never ends in a comma,
# the descriptor runs to the next comma.
_SRCSET_CANDIDATE_RE = re.compile(
    r"(?P<url>[^\s,](?:\S*[^\s,])?)(?P<descriptor>\s+[^,]*[^\s,])?"
)

CSS_URL_RE = re.compile(
    r"url\(\s*(?P<quote>[\"']?)(?P<url>[^\"'()\s]+)(?P=quote)\s*\)",
    re.IGNORECASE,
)

_FILENAME_SIZE_RE = re.compile(r"-(?P<width>\d+)x(?P<height>\d+)(?=\." + _EXT + r"$)")

# WordPress intermediate sizes, optionally with a numeric variant (-300x200-1)
_SIZE_SUFFIX_RE = re.compile(r"-\d+x\d+(?:-\d+)?(?=\." + _EXT + r"$)")

_DESCRIPTOR_WIDTH_RE = re.compile(r"(?P<width>\d+)w")

_SIZES_RE = re.compile(r"(?P<width>\d+)[xX](?P<height>\d+)")


class AssetMatch(NamedTuple):
    """A recognized asset reference split around the directive insertion point.

    Attributes:
        prefix: Scheme and host (``https://example.com`` or ``//example.com``),
            empty for a root-relative reference, followed by the install
            path when WordPress lives in a subdirectory (``/blog``).
        path: Asset path starting at ``/wp-content/``.
        suffix: Trailing query string and/or fragment.
        lead: Whitespace before the URL in the original value.
        trail: Whitespace after the URL in the original value.
    """

    prefix: str
    path: str
    suffix: str
    lead: str = ""
    trail: str = ""

    def with_directive(self, directive: str, path: str | None = None) -> str:
        """Reassemble the value with ``directive`` in front of the asset path."""
        asset_path = self.path if path is None else path
        return f"{self.lead}{self.prefix}{directive}{asset_path}{self.suffix}{self.trail}"


class SrcsetCandidate(NamedTuple):
    """One image candidate of a responsive list.

    ``descriptor`` keeps its leading whitespace so the candidate text can be
    rebuilt exactly; ``start`` and ``end`` index into the original value.
    """

    url: str
    descriptor: str
    start: int
    end: int

    @property
    def tokens(self) -> list[str]:
        return self.descriptor.split()


class CssUrl(NamedTuple):
    """A ``url(...)`` occurrence inside CSS text.

    Attributes:
        quote: Quote character used inside the parentheses, or empty.
        url: The URL between the quotes.
        start: Offset of the URL inside the CSS text.
        end: Offset just past the URL.
        asset: The asset match for ``url``, or None.
    """

    quote: str
    url: str
    start: int
    end: int
    asset: AssetMatch | None


def is_excluded(value: str) -> bool:
    """Check if a value must never be rewritten.

    Data URIs (anything containing ``base64``) and values that already route
    through the CDN are excluded.

    Examples:
        >>> is_excluded("data:image/png;base64,iVBOR")
        True

        >>> is_excluded("/cdn-cgi/image/quality=90/wp-content/uploads/a.jpg")
        True
    """
    return any(marker in value for marker in EXCLUDED_MARKERS)


def match_asset(value: str | None) -> AssetMatch | None:
    """Match a single URL token against the asset pattern.

    Args:
        value: Attribute value or URL token. Surrounding whitespace is kept in
            the match so it can be restored.

    Returns:
        AssetMatch, or None when the value is empty, excluded, or not an asset
        under the recognized content roots.

    Examples:
        >>> match_asset("https://ex.com/wp-content/uploads/cat.jpg?v=2")
        AssetMatch(prefix='https://ex.com', path='/wp-content/uploads/cat.jpg', suffix='?v=2', lead='', trail='')

        >>> match_asset("/images/cat.jpg") is None
        True
    """
    if not value or is_excluded(value):
        return None
    match = ASSET_RE.fullmatch(value)
    if not match:
        return None
    return AssetMatch(
        prefix=match.group("prefix") or "",
        path=match.group("path"),
        suffix=match.group("suffix") or "",
        lead=match.group("lead"),
        trail=match.group("trail"),
    )


def match_responsive_list(value: str | None) -> list[SrcsetCandidate]:
    """Split a srcset-style value into its candidates, in document order.

    Args:
        value: Responsive image candidate list.

    Returns:
        List of candidates. Text between candidates (commas and whitespace)
        is not part of any candidate.

    Examples:
        >>> [(c.url, c.tokens) for c in match_responsive_list("a.jpg 300w, b.jpg 2x")]
        [('a.jpg', ['300w']), ('b.jpg', ['2x'])]
    """
    if not value:
        return []
    return [
        SrcsetCandidate(
            url=m.group("url"),
            descriptor=m.group("descriptor") or "",
            start=m.start(),
            end=m.end(),
        )
        for m in _SRCSET_CANDIDATE_RE.finditer(value)
    ]


def match_css_urls(value: str | None) -> list[CssUrl]:
    """Find every ``url(...)`` occurrence in CSS text.

    Args:
        value: Stylesheet text or a style attribute value.

    Returns:
        List of occurrences in document order, each with its asset match
        (None when the URL is not a rewritable asset).
    """
    if not value:
        return []
    return [
        CssUrl(
            quote=m.group("quote"),
            url=m.group("url"),
            start=m.start("url"),
            end=m.end("url"),
            asset=match_asset(m.group("url")),
        )
        for m in CSS_URL_RE.finditer(value)
    ]


def match_filename_geometry(url: str) -> Geometry | None:
    """Read dimensions embedded in a filename as ``-WxH`` before the extension.

    Examples:
        >>> match_filename_geometry("/wp-content/uploads/cat-300x200.jpg")
        Geometry(width=300, height=200)

        >>> match_filename_geometry("/wp-content/uploads/cat.jpg") is None
        True
    """
    match = _FILENAME_SIZE_RE.search(url)
    if not match:
        return None
    return Geometry(int(match.group("width")), int(match.group("height")))


def match_descriptor_width(descriptor: str) -> int | None:
    """Read the width from a ``NNNw`` descriptor token.

    Examples:
        >>> match_descriptor_width("480w")
        480

        >>> match_descriptor_width("2x") is None
        True
    """
    match = _DESCRIPTOR_WIDTH_RE.fullmatch(descriptor.strip())
    if not match:
        return None
    return int(match.group("width"))


def match_sizes_geometry(sizes: str | None) -> Geometry | None:
    """Read a literal ``WxH`` icon size, as used by ``<link sizes="32x32">``."""
    if not sizes:
        return None
    match = _SIZES_RE.fullmatch(sizes.strip())
    if not match:
        return None
    return Geometry(int(match.group("width")), int(match.group("height")))


def strip_size_suffix(path: str) -> str:
    """Remove a WordPress intermediate-size suffix from an asset path.

    Both ``-300x200`` and the numbered ``-300x200-1`` variant are removed so
    the origin serves the unscaled original.

    Examples:
        >>> strip_size_suffix("/wp-content/uploads/cat-300x200.jpg")
        '/wp-content/uploads/cat.jpg'

        >>> strip_size_suffix("/wp-content/uploads/cat-300x200-1.png")
        '/wp-content/uploads/cat.png'
    """
    return _SIZE_SUFFIX_RE.sub("", path, count=1)
