"""HTTP intermediary for imgcdn.

Sits in front of a WordPress origin and rewrites image references in the
responses it relays:

- Forwards every request to the origin with its Host header intact.
- Streams ``text/html`` bodies through HTMLRewriter and rewrites
  ``text/css`` bodies whole.
- Relays everything else unchanged: non-200 responses, admin and login
  pages, responses without a content type, other content types.
- Watches the configuration file and swaps in the new site table when it
  changes.

Key classes:
- ImageProxy: Owns the site registry, the origin session and the server.
- _ProxyHandler: HTTP request handler relaying one request.
- _ConfigChangeHandler: File system event handler reloading the site table.
"""

from __future__ import annotations

import functools
import logging
import threading
from collections.abc import Iterable, Iterator
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import urlsplit

import requests
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .config import ConfigError, ProxyConfig, SiteConfig, SiteRegistry, load_config
from .handlers import create_handlers
from .html_rewriter import HTMLRewriter
from .rewrite import rewrite_stylesheet

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

# Paths never worth rewriting
BYPASS_PREFIXES = ("/wp-admin/", "/wp-login")

PASS_THROUGH = "pass"
REWRITE_HTML = "html"
REWRITE_CSS = "css"

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

# Bodies are relayed decoded and re-chunked, so length and encoding change
_DROPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}


def _header_items(response: requests.Response) -> list[tuple[str, str]]:
    """Response headers with repeated fields (Set-Cookie) kept apart."""
    raw_headers = getattr(response.raw, "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "items"):
        return list(raw_headers.items())
    return list(response.headers.items())


class _ProxyHandler(BaseHTTPRequestHandler):
    """Relays one request to the origin and rewrites the response body.

    Attributes:
        proxy: ImageProxy owning the registry and origin session.
    """

    protocol_version = "HTTP/1.1"
    proxy: ImageProxy

    def do_GET(self):
        self._relay()

    do_HEAD = do_POST = do_PUT = do_PATCH = do_DELETE = do_OPTIONS = do_GET

    def log_message(self, format, *args):  # noqa: A002 - BaseHTTPRequestHandler signature
        logger.info("%s - %s", self.address_string(), format % args)

    def _read_body(self) -> bytes | None:
        length = int(self.headers.get("Content-Length") or 0)
        return self.rfile.read(length) if length else None

    def _relay(self) -> None:
        site = self.proxy.registry.resolve(self.headers.get("Host"))
        headers = {
            key: value
            for key, value in self.headers.items()
            if key.lower() not in HOP_BY_HOP_HEADERS
        }
        try:
            upstream = self.proxy.fetch(self.command, self.path, headers, self._read_body())
        except requests.RequestException as exc:
            logger.error("Origin request failed for %s: %s", self.path, exc)
            self.send_error(502, "Bad Gateway")
            return
        try:
            action = self.proxy.classify(
                upstream.status_code,
                urlsplit(self.path).path,
                upstream.headers.get("Content-Type"),
            )
            self._send(upstream, action, site)
        finally:
            upstream.close()

    def _send(self, upstream: requests.Response, action: str, site: SiteConfig) -> None:
        status = upstream.status_code
        self.send_response(status, upstream.reason)
        has_body = self.command != "HEAD" and status >= 200 and status not in (204, 304)
        for key, value in _header_items(upstream):
            lowered = key.lower()
            if lowered in HOP_BY_HOP_HEADERS:
                continue
            if has_body and lowered in _DROPPED_RESPONSE_HEADERS:
                continue
            self.send_header(key, value)
        if not has_body:
            self.end_headers()
            return
        self.send_header("Transfer-Encoding", "chunked")
        self.end_headers()
        for data in self.proxy.body(upstream, action, site, urlsplit(self.path).path):
            if data:
                self.wfile.write(f"{len(data):X}\r\n".encode("ascii") + data + b"\r\n")
        self.wfile.write(b"0\r\n\r\n")


class ImageProxy:
    """Rewriting intermediary in front of a WordPress origin.

    Attributes:
        config: Server settings loaded at startup.
        registry: Current site table; replaced on configuration reload.
        session: requests session used for origin calls.
    """

    def __init__(self, config: ProxyConfig, session: requests.Session | None = None):
        """Initialize the proxy.

        Args:
            config: Loaded configuration.
            session: Optional session for origin requests.
        """
        self.config = config
        self.registry = SiteRegistry(config.sites)
        self.session = session or requests.Session()
        self._observer: Observer | None = None
        self._httpd: ThreadingHTTPServer | None = None

    def start(self, watch: bool = True) -> None:  # pragma: no cover - integration path
        if watch and self.config.source is not None:
            self._start_watcher()
        handler_cls = type("_BoundProxyHandler", (_ProxyHandler,), {"proxy": self})
        self._httpd = ThreadingHTTPServer((self.config.host, self.config.port), handler_cls)
        logger.info(
            "Proxying %s at http://%s:%d", self.config.origin, self.config.host, self.config.port
        )
        try:
            self._httpd.serve_forever()
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        if self._httpd:
            threading.Thread(target=self._httpd.shutdown, daemon=True).start()
            self._httpd.server_close()
            self._httpd = None

    def _start_watcher(self) -> None:
        handler = _ConfigChangeHandler(self)
        observer = Observer()
        observer.schedule(handler, str(self.config.source.resolve().parent), recursive=False)
        observer.start()
        self._observer = observer

    def reload_config(self) -> bool:
        """Re-read the configuration file and swap in its site table.

        Returns:
            True if the new table is active; False if the file was invalid and
            the previous table was kept.
        """
        try:
            fresh = load_config(self.config.source)
        except ConfigError as exc:
            logger.error("Keeping previous site configuration: %s", exc)
            return False
        if (fresh.origin, fresh.host, fresh.port) != (
            self.config.origin,
            self.config.host,
            self.config.port,
        ):
            logger.warning("Origin and listen address changes take effect after a restart")
        self.registry.reload(fresh.sites)
        return True

    def fetch(
        self, method: str, path: str, headers: dict[str, str], body: bytes | None = None
    ) -> requests.Response:
        """Forward a request to the origin, streaming the response."""
        return self.session.request(
            method,
            f"{self.config.origin}{path}",
            headers=headers,
            data=body,
            stream=True,
            allow_redirects=False,
            timeout=self.config.timeout,
        )

    def classify(self, status: int, path: str, content_type: str | None) -> str:
        """Decide whether a response is relayed as is or rewritten.

        Args:
            status: Origin status code.
            path: Request path.
            content_type: Origin Content-Type header.

        Returns:
            PASS_THROUGH, REWRITE_HTML or REWRITE_CSS.
        """
        if status != 200:
            logger.error("Invalid origin HTTP status: %s", status)
            return PASS_THROUGH
        if any(prefix in path for prefix in BYPASS_PREFIXES):
            logger.info("Bypassing page by path: %s", path)
            return PASS_THROUGH
        if not content_type:
            logger.error("Missing content type for %s", path)
            return PASS_THROUGH
        media_type = content_type.split(";", 1)[0].strip().lower()
        if media_type == "text/html":
            return REWRITE_HTML
        if media_type == "text/css":
            return REWRITE_CSS
        logger.debug("Not rewriting content type %s", content_type)
        return PASS_THROUGH

    def stream_html(self, chunks: Iterable[str], site: SiteConfig) -> Iterator[str]:
        """Rewrite an HTML body chunk by chunk.

        A rewrite failure must not break the page: whatever the rewriter has
        not written out yet, and the rest of the body, are relayed unchanged.
        """
        rewriter = HTMLRewriter(create_handlers(site))
        iterator = iter(chunks)
        for chunk in iterator:
            try:
                out = rewriter.feed(chunk)
            except Exception:
                logger.exception("HTML rewrite failed; relaying the rest unchanged")
                remaining = rewriter.abandon()
                if remaining:
                    yield remaining
                yield from iterator
                return
            if out:
                yield out
        try:
            tail = rewriter.close()
        except Exception:
            logger.exception("HTML rewrite failed at end of document")
            tail = rewriter.abandon()
        if tail:
            yield tail

    def rewrite_css(self, css: str, site: SiteConfig, path: str) -> str:
        """Rewrite a CSS body when the site rewrites style content."""
        if not site.rewrite_style_tags:
            return css
        return rewrite_stylesheet(css, site, stylesheet_path=path)

    def body(
        self, upstream: requests.Response, action: str, site: SiteConfig, path: str
    ) -> Iterator[bytes]:
        """Yield the relayed body for an origin response."""
        if action == PASS_THROUGH:
            yield from upstream.iter_content(CHUNK_SIZE)
            return
        content_type = upstream.headers.get("Content-Type", "")
        if not upstream.encoding or "charset" not in content_type.lower():
            upstream.encoding = "utf-8"
        encode = functools.partial(str.encode, encoding=upstream.encoding, errors="xmlcharrefreplace")
        if action == REWRITE_CSS:
            yield encode(self.rewrite_css(upstream.text, site, path))
            return
        chunks = upstream.iter_content(CHUNK_SIZE, decode_unicode=True)
        for piece in self.stream_html(chunks, site):
            yield encode(piece)


class _ConfigChangeHandler(FileSystemEventHandler):
    def __init__(self, proxy: ImageProxy):
        super().__init__()
        self.proxy = proxy
        self.target = Path(proxy.config.source).resolve()

    def on_any_event(self, event):
        if event.is_directory:
            return
        paths = [event.src_path, getattr(event, "dest_path", "") or ""]
        if not any(path and Path(path).resolve() == self.target for path in paths):
            return
        self.proxy.reload_config()
