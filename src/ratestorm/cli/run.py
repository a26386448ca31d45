"""``ratestorm run`` — stress a URL and print per-second status code summaries."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ratestorm._internal.config import build_run_config, load_settings
from ratestorm._internal.errors import ConfigError, RateStormError
from ratestorm.engine.runner import run_load_test
from ratestorm.metrics.models import ERROR_BUCKET

if TYPE_CHECKING:
    from ratestorm.metrics.models import RunResult, TallySnapshot

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _bucket_style(bucket: int | str) -> str:
    """Pick a colour for a status bucket: 2xx/3xx green, 4xx red, 5xx yellow."""
    if bucket == ERROR_BUCKET:
        return "red"
    code = int(bucket)
    if 400 <= code < 500:
        return "red"
    if code >= 500:
        return "yellow"
    return "green"


def _make_tally_table(snapshot: TallySnapshot, title: str) -> Table:
    """Build a Rich table with one row per status bucket plus the total.

    Args:
        snapshot: Window or final snapshot to render.
        title: Table title.

    Returns:
        Formatted Rich Table.
    """
    table = Table(
        title=title,
        title_style="bold yellow",
        show_header=True,
        header_style="bold cyan",
        min_width=44,
    )
    table.add_column("Status", style="bold")
    table.add_column("Count", justify="right")

    for bucket, count in snapshot.buckets:
        style = _bucket_style(bucket)
        table.add_row(f"[{style}]{bucket}[/{style}]", f"[{style}]{count}[/{style}]")

    table.add_row("[bold yellow]Total Requests[/bold yellow]", f"[bold yellow]{snapshot.total_requests}[/bold yellow]")
    return table


def _print_window(snapshot: TallySnapshot) -> None:
    console.print(_make_tally_table(snapshot, f"--- Status Code Summary ({snapshot.elapsed_seconds:.0f}s) ---"))


def _print_summary(result: RunResult) -> None:
    """Print the cumulative tally and run statistics after the test ends.

    Args:
        result: Completed run result.
    """
    summary = result.final_summary
    if summary is None:
        return

    console.print()
    console.print(_make_tally_table(summary, "--- Final Status Code Summary ---"))

    stats = Table(title="Run Statistics", show_header=True, header_style="bold green")
    stats.add_column("Metric", style="bold")
    stats.add_column("Value", justify="right")
    stats.add_row("Duration", f"{result.duration_seconds:.1f}s")
    stats.add_row("Windows", str(len(result.snapshots)))
    stats.add_row("Permits Issued", str(result.permits_issued))
    stats.add_row("Avg Requests/sec", f"{summary.requests_per_second:.1f}")
    stats.add_row("p50 Latency", f"{summary.latency_p50:.1f}ms")
    stats.add_row("p95 Latency", f"{summary.latency_p95:.1f}ms")
    stats.add_row("p99 Latency", f"{summary.latency_p99:.1f}ms")
    stats.add_row("Errors", str(summary.total_errors))
    stats.add_row("Error Rate", f"{summary.error_rate * 100:.2f}%")
    stats.add_row("Dropped Outcomes", str(result.dropped))
    console.print(stats)

    if summary.errors_by_type:
        errors = Table(title="Errors by Type", show_header=True, header_style="bold red")
        errors.add_column("Error")
        errors.add_column("Count", justify="right")
        for error_type, count in sorted(summary.errors_by_type.items()):
            errors.add_row(error_type, str(count))
        console.print(errors)


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


def run_cmd(
    url: str = typer.Argument(
        ...,
        help="Target URL. Scheme selects the transport: http, https, h2 (HTTP/2 over TLS) or h3 (HTTP/3 over QUIC).",
    ),
    method: str = typer.Option(
        "GET",
        "--method",
        "-m",
        help="HTTP method.",
    ),
    rate: int = typer.Option(
        10,
        "--rate",
        "-r",
        help="Requests per second across all workers.",
    ),
    concurrency: int = typer.Option(
        5,
        "--concurrency",
        "-c",
        help="Number of concurrent workers.",
    ),
    duration: str = typer.Option(
        "30s",
        "--duration",
        "-d",
        help="Test duration, e.g. 30s, 1m30s, 500ms, or plain seconds.",
    ),
    fail_on_error_rate: float | None = typer.Option(
        None,
        "--fail-on-error-rate",
        help="Exit non-zero if the error rate exceeds this threshold (e.g., 0.05).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit structured JSON logs.",
    ),
) -> None:
    """Stress a URL at a fixed rate and report status codes every second."""
    try:
        config = build_run_config(
            url,
            method=method,
            rate=rate,
            concurrency=concurrency,
            duration=duration,
        )
        settings = load_settings()
    except ConfigError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    console.print(
        Panel(
            f"[bold]Target:[/bold]      {config.url}\n"
            f"[bold]Method:[/bold]      {config.method}\n"
            f"[bold]Rate:[/bold]        {config.rate} req/s\n"
            f"[bold]Concurrency:[/bold] {config.concurrency}\n"
            f"[bold]Duration:[/bold]    {config.duration_seconds:g}s",
            title="RateStorm",
            border_style="cyan",
        )
    )

    log_level = logging.DEBUG if verbose else logging.INFO

    try:
        result = run_load_test(
            config,
            settings=settings,
            on_snapshot=_print_window,
            log_level=log_level,
            json_logs=json_logs,
        )
    except RateStormError as exc:
        console.print(f"[red]Load test failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    _print_summary(result)

    if (
        fail_on_error_rate is not None
        and result.final_summary is not None
        and result.final_summary.error_rate > fail_on_error_rate
    ):
        console.print(
            f"[red]FAIL:[/red] Error rate {result.final_summary.error_rate * 100:.2f}% "
            f"exceeds threshold {fail_on_error_rate * 100:.2f}%"
        )
        raise typer.Exit(code=1)

    console.print("\n[green]Stress test completed.[/green]")
