"""Site configuration for imgcdn.

This module defines the per-site configuration record, the immutable table
that maps request domains to records, and the YAML loader that builds both at
startup.

A request resolves its record once, from one table snapshot, and uses it for
the whole document. Reloading swaps the registry's snapshot reference, so a
request that is already running keeps seeing the table it started with.

Key classes:
- SiteConfig: Rewrite options for one site.
- SiteTable: Immutable domain -> SiteConfig mapping with a default record.
- SiteRegistry: Holder of the current SiteTable snapshot.
- ProxyConfig: Server settings plus the site table.

Key functions:
- load_config: Load imgcdn.yaml.
- parse_site: Build a SiteConfig from a mapping of options.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "imgcdn.yaml"

FIT_VALUES = ("scale-down", "contain", "cover", "crop", "pad")
METADATA_VALUES = ("keep", "copyright", "none")

TOGGLES = (
    "rewrite_link_tags",
    "rewrite_style_tags",
    "rewrite_image_tags",
    "rewrite_href_tags",
    "rewrite_div_tags",
    "rewrite_svg_tags",
)

DEFAULT_CONFIG = {
    "origin": "http://127.0.0.1:8080",
    "host": "127.0.0.1",
    "port": 4000,
    "timeout": 30,
}


class ConfigError(ValueError):
    """Invalid configuration value.

    Attributes:
        key: The offending option, when known.
        source: Path of the configuration file, when known.
        message: Human-readable error message.
    """

    def __init__(self, message: str, key: str | None = None, source: Path | None = None):
        self.key = key
        self.source = source
        self.message = message
        prefix = f"{source}: " if source else ""
        super().__init__(f"{prefix}{message}")


@dataclass(frozen=True)
class SiteConfig:
    """Rewrite options for one site.

    Toggles enable one tag category each. Options set to None are left out of
    the directive entirely.

    Attributes:
        domain: Host this record applies to; None for the default record.
        rewrite_link_tags: Rewrite icon ``<link>`` hrefs.
        rewrite_style_tags: Rewrite ``<style>`` text and CSS responses.
        rewrite_image_tags: Rewrite ``<img>`` and ``<source>`` attributes.
        rewrite_href_tags: Rewrite ``<a href>``.
        rewrite_div_tags: Rewrite ``<div>`` background attributes.
        rewrite_svg_tags: Remove empty decorative ``<svg>`` elements.
        lazy_load: Add ``loading="lazy"`` to images without a loading attribute.
        quality: 1-100.
        fit: One of FIT_VALUES.
        gravity: Free-form gravity token such as ``auto``.
        sharpen: 0-10.
        metadata: One of METADATA_VALUES.
    """

    domain: str | None = None
    rewrite_link_tags: bool = True
    rewrite_style_tags: bool = True
    rewrite_image_tags: bool = True
    rewrite_href_tags: bool = True
    rewrite_div_tags: bool = True
    rewrite_svg_tags: bool = True
    lazy_load: bool = True
    quality: int | None = 90
    fit: str | None = "crop"
    gravity: str | None = None
    sharpen: float | None = None
    metadata: str | None = None


DEFAULT_SITE = SiteConfig()

_OPTION_NAMES = frozenset(f.name for f in fields(SiteConfig))


def normalize_domain(domain: str | None) -> str:
    """Normalize a host for lookup: lower-case, no port, no trailing dot.

    Examples:
        >>> normalize_domain("WWW.Example.COM:8443")
        'www.example.com'
    """
    if not domain:
        return ""
    host = domain.strip().lower()
    if host.startswith("["):
        # IPv6 literal, keep the brackets and drop the port
        host = host.split("]", 1)[0] + "]"
    elif host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host.rstrip(".")


@dataclass(frozen=True)
class SiteTable:
    """Immutable mapping from domain to SiteConfig with a default record."""

    default: SiteConfig = DEFAULT_SITE
    sites: Mapping[str, SiteConfig] = field(default_factory=dict)

    def __post_init__(self):
        normalized = {normalize_domain(domain): site for domain, site in self.sites.items()}
        object.__setattr__(self, "sites", MappingProxyType(normalized))

    def resolve(self, domain: str | None) -> SiteConfig:
        """Return the record for a request domain, or the default record.

        Args:
            domain: Request host, any case, optionally with a port.

        Returns:
            The matching SiteConfig, or ``self.default``.
        """
        return self.sites.get(normalize_domain(domain), self.default)

    def __len__(self) -> int:
        return len(self.sites)


class SiteRegistry:
    """Holds the current SiteTable snapshot.

    Readers call snapshot() once per request. reload() replaces the reference
    in a single assignment; tables are never mutated in place.
    """

    def __init__(self, table: SiteTable | None = None):
        self._table = table or SiteTable()

    def snapshot(self) -> SiteTable:
        return self._table

    def resolve(self, domain: str | None) -> SiteConfig:
        return self._table.resolve(domain)

    def reload(self, table: SiteTable) -> None:
        self._table = table
        logger.info("Site table reloaded (%d sites)", len(table))


@dataclass(frozen=True)
class ProxyConfig:
    """Server settings plus the site table loaded from imgcdn.yaml."""

    origin: str = DEFAULT_CONFIG["origin"]
    host: str = DEFAULT_CONFIG["host"]
    port: int = DEFAULT_CONFIG["port"]
    timeout: float = DEFAULT_CONFIG["timeout"]
    sites: SiteTable = field(default_factory=SiteTable)
    source: Path | None = None


def _check_bool(key: str, value: Any, source: Path | None) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"'{key}' must be true or false, got {value!r}", key, source)
    return value


def _check_option(key: str, value: Any, source: Path | None) -> Any:
    """Validate one option value and return it in its stored type."""
    if key in TOGGLES or key == "lazy_load":
        return _check_bool(key, value, source)
    if value is None:
        return None
    if key == "quality":
        if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 100:
            raise ConfigError(f"'quality' must be an integer from 1 to 100, got {value!r}", key, source)
        return value
    if key == "sharpen":
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 10:
            raise ConfigError(f"'sharpen' must be a number from 0 to 10, got {value!r}", key, source)
        return float(value)
    if key == "fit":
        if value not in FIT_VALUES:
            raise ConfigError(f"'fit' must be one of {', '.join(FIT_VALUES)}, got {value!r}", key, source)
        return value
    if key == "metadata":
        if value not in METADATA_VALUES:
            raise ConfigError(
                f"'metadata' must be one of {', '.join(METADATA_VALUES)}, got {value!r}", key, source
            )
        return value
    if key == "gravity":
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            raise ConfigError(f"'gravity' must be a string, got {value!r}", key, source)
        token = str(value).strip()
        return token or None
    if key == "domain":
        return normalize_domain(str(value)) or None
    raise ConfigError(f"Unknown site option '{key}'", key, source)


def parse_site(
    data: Mapping[str, Any],
    base: SiteConfig = DEFAULT_SITE,
    source: Path | None = None,
) -> SiteConfig:
    """Build a SiteConfig from a mapping of options.

    Keys are case-insensitive, so ``REWRITE_HREF_TAGS`` and
    ``rewrite_href_tags`` are the same option. Keys missing from ``data`` are
    inherited from ``base``; an explicit None makes an option absent.

    Args:
        data: Option mapping, usually one entry from imgcdn.yaml.
        base: Record supplying the inherited values.
        source: Config file path used in error messages.

    Returns:
        A new SiteConfig.

    Raises:
        ConfigError: If a key is unknown or a value is out of range.
    """
    if not isinstance(data, Mapping):
        raise ConfigError(f"Site entry must be a mapping, got {type(data).__name__}", source=source)
    updates: dict[str, Any] = {}
    for raw_key, value in data.items():
        key = str(raw_key).strip().lower()
        if key not in _OPTION_NAMES:
            raise ConfigError(f"Unknown site option '{raw_key}'", str(raw_key), source)
        updates[key] = _check_option(key, value, source)
    return replace(base, **updates)


def build_site_table(raw: Mapping[str, Any], source: Path | None = None) -> SiteTable:
    """Build a SiteTable from the ``default`` and ``sites`` sections."""
    default = parse_site(raw.get("default") or {}, DEFAULT_SITE, source)
    if default.domain is not None:
        default = replace(default, domain=None)
    entries = raw.get("sites") or []
    if not isinstance(entries, list):
        raise ConfigError("'sites' must be a list of site entries", "sites", source)
    sites: dict[str, SiteConfig] = {}
    for entry in entries:
        site = parse_site(entry, default, source)
        if not site.domain:
            raise ConfigError("Every site entry needs a 'domain'", "domain", source)
        if site.domain in sites:
            raise ConfigError(f"Duplicate site '{site.domain}'", "domain", source)
        sites[site.domain] = site
    return SiteTable(default=default, sites=sites)


def load_config(path: Path | None = None) -> ProxyConfig:
    """Load configuration from imgcdn.yaml.

    Args:
        path: Configuration file. A missing file yields the defaults.

    Returns:
        ProxyConfig with defaults applied.

    Raises:
        ConfigError: If the file is not a mapping or holds invalid options.
    """
    config: dict[str, Any] = DEFAULT_CONFIG.copy()
    loaded: dict[str, Any] = {}
    if path is not None and path.exists():
        with open(path, encoding="utf-8") as f:
            try:
                payload = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Invalid YAML: {exc}", source=path) from exc
        if not isinstance(payload, dict):
            raise ConfigError("Top level must be a mapping", source=path)
        loaded = payload
    for key in DEFAULT_CONFIG:
        if loaded.get(key) is not None:
            config[key] = loaded[key]
    table = build_site_table(loaded, path)
    logger.debug("Loaded %d site(s) from %s", len(table), path or "defaults")
    return ProxyConfig(
        origin=str(config["origin"]).rstrip("/"),
        host=str(config["host"]),
        port=int(config["port"]),
        timeout=float(config["timeout"]),
        sites=table,
        source=path,
    )
