"""CLI entry point for mcp-proxygen."""

from __future__ import annotations

import asyncio
import functools
import logging
import sys
from pathlib import Path
from typing import Any, Callable

import click

from . import __version__
from .assembler import build_config, convert_catalog_entry
from .codegen import write_server
from .errors import ProxygenError
from .harness import TEST_ALL_DELAY, TEST_TIMEOUT, EndpointTester
from .loader import FETCH_TIMEOUT, load_catalog_entry, load_config, load_source, save_config


def _reports_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Turn pipeline errors into one-line CLI messages instead of tracebacks."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ProxygenError as exc:
            raise click.ClickException(str(exc)) from exc
        except OSError as exc:
            raise click.ClickException(str(exc)) from exc

    return wrapper


def _pairs(items: tuple[str, ...], option: str) -> dict[str, str]:
    """Parse repeated NAME=VALUE options."""
    result: dict[str, str] = {}
    for item in items:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected NAME=VALUE, got {item!r}", param_hint=option)
        result[name] = value
    return result


def _metrics_format(value: str) -> str | None:
    return None if value == "off" else value


@click.group()
@click.version_option(__version__, prog_name="proxygen")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output.")
def main(verbose: bool):
    """Convert OpenAPI documents and catalog entries into MCP proxy servers."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        stream=sys.stderr,
        format="[%(levelname)s] %(message)s",
    )


@main.command()
@click.argument("source")
@click.option("-o", "--output", default="server-config.json", type=click.Path(path_type=Path), help="Where to write the ServerConfig JSON.")
@click.option("--base-url", default=None, help="Fallback base URL when the document declares none.")
@click.option("--provider", default=None, help="Provider key used for environment variable names.")
@click.option("--category", default="", help="Free-text category, used for synthetic endpoints.")
@click.option("--metrics", default="json", type=click.Choice(["json", "prometheus", "off"]), help="Metrics endpoint format.")
@click.option("--timeout", default=FETCH_TIMEOUT, type=float, show_default=True, help="Fetch timeout in seconds.")
@_reports_errors
def convert(
    source: str,
    output: Path,
    base_url: str | None,
    provider: str | None,
    category: str,
    metrics: str,
    timeout: float,
):
    """Convert an OpenAPI document (URL, file or JSON text) into a ServerConfig."""
    document = asyncio.run(load_source(source, timeout=timeout))
    config = build_config(
        document,
        fallback_base_url=base_url,
        provider=provider,
        category=category,
        metrics_format=_metrics_format(metrics),
    )
    save_config(config, output)
    click.echo(f"Wrote {output} ({len(config.endpoints)} endpoints, auth: {config.authentication.type})")


@main.command()
@click.argument("entry_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-o", "--output", default="server-config.json", type=click.Path(path_type=Path), help="Where to write the ServerConfig JSON.")
@click.option("--metrics", default="json", type=click.Choice(["json", "prometheus", "off"]), help="Metrics endpoint format.")
@click.option("--timeout", default=FETCH_TIMEOUT, type=float, show_default=True, help="Fetch timeout in seconds.")
@_reports_errors
def catalog(entry_path: Path, output: Path, metrics: str, timeout: float):
    """Convert a public API catalog entry (JSON file) into a ServerConfig."""
    entry = load_catalog_entry(entry_path)
    config = asyncio.run(
        convert_catalog_entry(entry, timeout=timeout, metrics_format=_metrics_format(metrics))
    )
    save_config(config, output)
    click.echo(f"Wrote {output} ({len(config.endpoints)} endpoints, auth: {config.authentication.type})")


@main.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-o", "--output", default="generated", type=click.Path(file_okay=False, path_type=Path), help="Output directory for server.py.")
@_reports_errors
def generate(config_path: Path, output: Path):
    """Generate server.py from a saved ServerConfig."""
    config = load_config(config_path)
    path = write_server(config, output)
    click.echo(f"Generated {path} ({len(config.enabled_endpoints())} tools)")


@main.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-e", "--endpoint", "endpoint_id", default=None, help="Test only this endpoint id.")
@click.option("-p", "--param", "params", multiple=True, help="Parameter value as NAME=VALUE (with --endpoint).")
@click.option("-c", "--credential", "credentials", multiple=True, help="Credential as KEY=VALUE, e.g. apikey=...")
@click.option("--timeout", default=TEST_TIMEOUT, type=float, show_default=True, help="Request timeout in seconds.")
@click.option("--delay", default=TEST_ALL_DELAY, type=float, show_default=True, help="Pause between endpoints when testing all.")
@click.pass_context
@_reports_errors
def test(
    ctx: click.Context,
    config_path: Path,
    endpoint_id: str | None,
    params: tuple[str, ...],
    credentials: tuple[str, ...],
    timeout: float,
    delay: float,
):
    """Issue live requests against the endpoints of a saved ServerConfig."""
    config = load_config(config_path)
    if credentials:
        auth = config.authentication.model_copy(
            update={"credentials": _pairs(credentials, "--credential")},
        )
        config = config.model_copy(update={"authentication": auth})

    tester = EndpointTester(config, timeout=timeout, delay=delay)
    if endpoint_id:
        if config.endpoint(endpoint_id) is None:
            raise click.BadParameter(f"no endpoint with id {endpoint_id!r}", param_hint="--endpoint")
        results = [asyncio.run(tester.test_one(endpoint_id, _pairs(params, "--param")))]
    else:
        results = asyncio.run(tester.test_all())

    for result in results:
        status = "PASS" if result.success else "FAIL"
        code = result.status_code if result.status_code is not None else "-"
        line = f"{status}  {result.endpoint_id}  {code}  {result.response_time:.0f} ms"
        if result.error:
            line += f"  {result.error}"
        click.echo(line)

    if not all(r.success for r in results):
        ctx.exit(1)
