"""Transformation directive builder for imgcdn.

A directive is the path segment the resizing CDN reads its options from::

    /cdn-cgi/image/width=300,height=200,fit=crop,quality=90,format=auto,onerror=redirect

Tokens always appear in the same order: geometry (width, height, fit),
quality, gravity, sharpen, metadata, then the constant trailer. Options a
site leaves unset contribute nothing.

Key functions:
    build_directive: Build the directive for a site and optional geometry.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:
    from .config import SiteConfig

CDN_PREFIX = "/cdn-cgi/image/"
DIRECTIVE_TRAILER = "format=auto,onerror=redirect"


class Geometry(NamedTuple):
    """Width and optional height associated with an image reference."""

    width: int
    height: int | None = None

    @property
    def complete(self) -> bool:
        """True when both dimensions are known."""
        return self.height is not None


def format_sharpen(value: float) -> str:
    """Render a sharpen amount in its shortest fixed-point form.

    Uses the shortest digits that round-trip the float and never switches
    to exponent notation.

    Examples:
        >>> format_sharpen(2.0)
        '2'

        >>> format_sharpen(1.5)
        '1.5'

        >>> format_sharpen(0.00001)
        '0.00001'
    """
    text = format(Decimal(repr(float(value))), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def build_directive(config: SiteConfig, geometry: Geometry | None = None) -> str:
    """Build the CDN directive for a site configuration.

    Args:
        config: Resolved site configuration.
        geometry: Dimensions for this reference, if any. ``fit`` is only
            emitted when both width and height are known.

    Returns:
        Directive path segment without a trailing slash, ready to be placed
        in front of an asset path.

    Examples:
        >>> from imgcdn.config import SiteConfig
        >>> build_directive(SiteConfig(quality=80, fit="crop"), Geometry(480))
        '/cdn-cgi/image/width=480,quality=80,format=auto,onerror=redirect'
    """
    tokens: list[str] = []
    if geometry is not None:
        tokens.append(f"width={geometry.width}")
        if geometry.height is not None:
            tokens.append(f"height={geometry.height}")
            if config.fit is not None:
                tokens.append(f"fit={config.fit}")
    if config.quality is not None:
        tokens.append(f"quality={config.quality}")
    if config.gravity is not None:
        tokens.append(f"gravity={config.gravity}")
    if config.sharpen is not None:
        tokens.append(f"sharpen={format_sharpen(config.sharpen)}")
    if config.metadata is not None:
        tokens.append(f"metadata={config.metadata}")
    tokens.append(DIRECTIVE_TRAILER)
    return CDN_PREFIX + ",".join(tokens)
