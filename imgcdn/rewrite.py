"""Asset rewrite core for imgcdn.

This module turns attribute values and CSS text that reference image assets
into values that route through the resizing CDN. It combines the matchers in
:mod:`imgcdn.patterns` with :func:`imgcdn.directives.build_directive`.

Every function here is total: it returns either the rewritten value or the
input unchanged. Values that do not match, values that are excluded (data
URIs, already rewritten URLs) and malformed composite values all pass through
untouched, so a bad reference can never break the page.

Key functions:
    rewrite_url: Single-URL attributes (src, href, data-src, ...).
    rewrite_srcset: Responsive candidate lists.
    rewrite_css: ``url(...)`` references inside CSS text.
    rewrite_background: Plugin background attributes (CSS or bare URL).
    rewrite_stylesheet: Whole CSS responses, including relative references.
    element_geometry: Explicit width/height attribute pair.
"""

from __future__ import annotations

from urllib.parse import urljoin, urlsplit

from .config import SiteConfig
from .directives import Geometry, build_directive
from .patterns import (
    is_excluded,
    match_asset,
    match_css_urls,
    match_descriptor_width,
    match_filename_geometry,
    match_responsive_list,
    strip_size_suffix,
)


def element_geometry(width: str | None, height: str | None) -> Geometry | None:
    """Geometry from an element's width and height attributes.

    Both attributes must be present and hold plain positive integers;
    anything else (``100%``, ``auto``, one attribute missing) yields None.

    Examples:
        >>> element_geometry("300", "200")
        Geometry(width=300, height=200)

        >>> element_geometry("100%", "200") is None
        True
    """
    if not width or not height:
        return None
    width, height = width.strip(), height.strip()
    if not (width.isdigit() and height.isdigit()):
        return None
    if int(width) == 0 or int(height) == 0:
        return None
    return Geometry(int(width), int(height))


def rewrite_url(
    value: str | None,
    config: SiteConfig,
    geometry: Geometry | None = None,
    strip_size: bool = False,
) -> str | None:
    """Rewrite a single-URL attribute value.

    Args:
        value: Attribute value.
        config: Resolved site configuration.
        geometry: Dimensions to put in the directive.
        strip_size: Remove a legacy ``-WxH`` suffix from the filename so the
            CDN resizes the original upload.

    Returns:
        The rewritten value, or ``value`` unchanged.

    Examples:
        >>> from imgcdn.config import SiteConfig
        >>> rewrite_url("https://ex.com/wp-content/uploads/a.png", SiteConfig(quality=80))
        'https://ex.com/cdn-cgi/image/quality=80,format=auto,onerror=redirect/wp-content/uploads/a.png'
    """
    asset = match_asset(value)
    if asset is None:
        return value
    path = strip_size_suffix(asset.path) if strip_size and geometry is not None else asset.path
    return asset.with_directive(build_directive(config, geometry), path)


def _rewrite_candidate(url: str, descriptor: str, config: SiteConfig) -> str | None:
    """Rewrite one srcset candidate URL, or return None to keep it as is."""
    asset = match_asset(url)
    if asset is None:
        return None
    path = asset.path
    geometry = match_filename_geometry(path)
    if geometry is not None:
        path = strip_size_suffix(path)
    else:
        width = match_descriptor_width(descriptor)
        geometry = Geometry(width) if width is not None else None
    return asset.with_directive(build_directive(config, geometry), path)


def rewrite_srcset(value: str | None, config: SiteConfig) -> str | None:
    """Rewrite every candidate of a responsive image list.

    Each candidate picks its geometry on its own, from the first source that
    applies:

    1. ``-WxH`` in the filename: width, height and fit; the suffix is removed.
    2. The ``NNNw`` descriptor: width only, no fit.
    3. Nothing: quality and the other options only.

    Candidates that are not exactly a URL plus one descriptor token are kept
    verbatim, as are the separators between candidates.

    Examples:
        >>> from imgcdn.config import SiteConfig
        >>> rewrite_srcset("/wp-content/uploads/b.jpg 480w", SiteConfig(quality=80))
        '/cdn-cgi/image/width=480,quality=80,format=auto,onerror=redirect/wp-content/uploads/b.jpg 480w'
    """
    if not value or is_excluded(value):
        return value
    pieces: list[str] = []
    cursor = 0
    for candidate in match_responsive_list(value):
        pieces.append(value[cursor : candidate.start])
        cursor = candidate.end
        rewritten = None
        if len(candidate.tokens) == 1:
            rewritten = _rewrite_candidate(candidate.url, candidate.tokens[0], config)
        if rewritten is None:
            pieces.append(value[candidate.start : candidate.end])
        else:
            pieces.append(rewritten + candidate.descriptor)
    pieces.append(value[cursor:])
    return "".join(pieces)


def rewrite_css(value: str | None, config: SiteConfig) -> str | None:
    """Rewrite asset references inside ``url(...)`` in CSS text.

    Only the URL between the parentheses changes; the quote style (single,
    double or none) and every other byte are preserved.

    Examples:
        >>> from imgcdn.config import SiteConfig
        >>> rewrite_css(".a{background:url(/wp-content/themes/t/a.png)}", SiteConfig(quality=90))
        '.a{background:url(/cdn-cgi/image/quality=90,format=auto,onerror=redirect/wp-content/themes/t/a.png)}'
    """
    if not value:
        return value
    occurrences = [occ for occ in match_css_urls(value) if occ.asset is not None]
    if not occurrences:
        return value
    directive = build_directive(config)
    pieces: list[str] = []
    cursor = 0
    for occ in occurrences:
        pieces.append(value[cursor : occ.start])
        pieces.append(occ.asset.with_directive(directive))
        cursor = occ.end
    pieces.append(value[cursor:])
    return "".join(pieces)


def rewrite_background(value: str | None, config: SiteConfig) -> str | None:
    """Rewrite a background-carrying attribute.

    Style attributes and most plugin attributes hold CSS (``url(...)``);
    some plugins store a bare URL instead, which is rewritten as a single URL.
    """
    if not value or is_excluded(value):
        return value
    if "url(" in value.lower():
        return rewrite_css(value, config)
    return rewrite_url(value, config)


def _is_relative_reference(url: str) -> bool:
    if url.startswith(("/", "#")):
        return False
    scheme = urlsplit(url).scheme
    return not scheme


def rewrite_stylesheet(
    css: str | None,
    config: SiteConfig,
    stylesheet_path: str = "",
    origin: str = "",
) -> str | None:
    """Rewrite a whole CSS response.

    Absolute and root-relative asset references are handled by
    :func:`rewrite_css`. Themes also reference images relative to the
    stylesheet (``url(images/cat.jpg)`` inside
    ``/wp-content/themes/t/style.css``); those are resolved against the
    stylesheet's directory and rewritten when they land under the asset root.

    Args:
        css: Stylesheet text.
        config: Resolved site configuration.
        stylesheet_path: Request path of the stylesheet.
        origin: Scheme and host put in front of resolved relative references,
            empty to emit root-relative URLs.

    Returns:
        The rewritten stylesheet, or ``css`` unchanged.
    """
    result = rewrite_css(css, config)
    if not result or not stylesheet_path:
        return result
    base = stylesheet_path if stylesheet_path.startswith("/") else f"/{stylesheet_path}"
    directive = build_directive(config)
    pieces: list[str] = []
    cursor = 0
    for occ in match_css_urls(result):
        if occ.asset is not None or not _is_relative_reference(occ.url):
            continue
        resolved = urljoin(base, occ.url)
        asset = match_asset(resolved)
        if asset is None:
            continue
        pieces.append(result[cursor : occ.start])
        pieces.append(f"{origin.rstrip('/')}{directive}{asset.path}{asset.suffix}")
        cursor = occ.end
    if not pieces:
        return result
    pieces.append(result[cursor:])
    return "".join(pieces)
