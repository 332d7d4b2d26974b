"""Command-line interface for imgcdn.

This module defines the CLI commands using the Click framework.

Commands:
- rewrite: Rewrite an HTML or CSS file and print the result.
- directive: Print the CDN directive a site would use.
- serve: Run the rewriting HTTP intermediary.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from . import __version__
from .config import CONFIG_FILENAME, ConfigError, ProxyConfig, load_config
from .directives import Geometry, build_directive

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Configuration file (default: ./{CONFIG_FILENAME} when present)",
)


def _load(config_path: Path | None) -> ProxyConfig:
    """Load configuration, turning ConfigError into a CLI error."""
    if config_path is None:
        default = Path.cwd() / CONFIG_FILENAME
        config_path = default if default.exists() else None
    elif not config_path.exists():
        raise click.ClickException(f"Configuration file not found: {config_path}")
    try:
        return load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from None


@click.group()
@click.version_option(version=__version__, prog_name="imgcdn")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output")
def cli(verbose: bool):
    """Route WordPress image references through a resizing CDN."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )


@cli.command()
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@_config_option
@click.option("--domain", default=None, help="Site domain to resolve options for")
@click.option("--css", "as_css", is_flag=True, help="Treat the file as a stylesheet")
@click.option(
    "--path",
    "stylesheet_path",
    default="",
    help="Request path of the stylesheet, for relative url() references",
)
@click.option("--origin", default="", help="Scheme and host for resolved relative references")
def rewrite(
    source: Path,
    config_path: Path | None,
    domain: str | None,
    as_css: bool,
    stylesheet_path: str,
    origin: str,
):
    """Rewrite an HTML or CSS file and print the result."""
    from .html_rewriter import rewrite_html
    from .rewrite import rewrite_stylesheet

    site = _load(config_path).sites.resolve(domain)
    text = source.read_text(encoding="utf-8")
    if as_css or source.suffix.lower() == ".css":
        if site.rewrite_style_tags:
            text = rewrite_stylesheet(text, site, stylesheet_path=stylesheet_path, origin=origin)
        click.echo(text, nl=False)
        return
    click.echo(rewrite_html(text, site), nl=False)


@cli.command()
@_config_option
@click.option("--domain", default=None, help="Site domain to resolve options for")
@click.option("--width", type=click.IntRange(min=1), default=None, help="Image width")
@click.option("--height", type=click.IntRange(min=1), default=None, help="Image height")
def directive(config_path: Path | None, domain: str | None, width: int | None, height: int | None):
    """Print the CDN directive for a site."""
    if height is not None and width is None:
        raise click.UsageError("--height requires --width")
    site = _load(config_path).sites.resolve(domain)
    geometry = Geometry(width, height) if width is not None else None
    click.echo(build_directive(site, geometry))


@cli.command()
@_config_option
@click.option("--port", type=int, required=False, help="Port to listen on (overrides imgcdn.yaml)")
@click.option("--origin", required=False, help="Origin base URL (overrides imgcdn.yaml)")
@click.option("--no-watch", is_flag=True, help="Do not reload the configuration on change")
def serve(config_path: Path | None, port: int | None, origin: str | None, no_watch: bool):
    """Run the rewriting HTTP intermediary."""
    from dataclasses import replace

    from .proxy import ImageProxy

    config = _load(config_path)
    if port is not None:
        config = replace(config, port=port)
    if origin:
        config = replace(config, origin=origin.rstrip("/"))
    server = ImageProxy(config)
    click.echo(f"Proxying {config.origin} at http://{config.host}:{config.port}")
    server.start(watch=not no_watch)


def main():
    """Entry point for the CLI application."""
    cli()
