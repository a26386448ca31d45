"""Typer application behind the ``ratestorm`` command."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from ratestorm import __version__
from ratestorm.cli.run import run_cmd
from ratestorm.transport.selector import resolve_url, supported_schemes

app = typer.Typer(
    name="ratestorm",
    help="Fire HTTP requests at a fixed rate and watch the status codes.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("run", help="Stress a URL and report status codes every second.")(run_cmd)

_PROTOCOL_LABELS = {"http1": "HTTP/1.1", "http2": "HTTP/2", "http3": "HTTP/3 (QUIC)"}


@app.command("schemes")
def schemes_cmd() -> None:
    """List the URL schemes ``run`` accepts and how each is sent."""
    table = Table(title="Supported URL schemes", header_style="bold cyan")
    table.add_column("Scheme", style="bold")
    table.add_column("Transport")
    table.add_column("Sent as")
    for scheme in supported_schemes():
        kind, wire_url = resolve_url(f"{scheme}://host/")
        table.add_row(scheme, _PROTOCOL_LABELS[kind], wire_url.split(":", 1)[0])
    Console().print(table)


def _print_version(value: bool) -> None:
    if not value:
        return
    typer.echo(f"ratestorm {__version__}")
    raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Print the version and exit.",
        callback=_print_version,
        is_eager=True,
    ),
) -> None:
    """RateStorm: rate-limited concurrent HTTP stress testing."""
