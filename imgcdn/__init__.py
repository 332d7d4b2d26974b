"""imgcdn: route WordPress image references through a resizing CDN.

This package rewrites image URLs inside HTML and CSS as the documents pass
through an intermediary, so that every image is served by the CDN's
``/cdn-cgi/image/`` endpoint with per-site resize, quality and format
options. Every byte that is not an image reference is left untouched.

The rewrite engine is split by concern:
- patterns: Recognizes rewritable asset references.
- directives: Builds the CDN option segment.
- config: Per-site options and the domain lookup table.
- rewrite: Applies patterns and directives to attribute values and CSS.
- buffer: Collects chunked text until a text node is complete.
- handlers: Decides which rewrites apply to which tag.

The html_rewriter, proxy and cli modules wire the engine to a streaming
parser, an HTTP server and the command line.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
