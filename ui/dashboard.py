"""
Rich-based terminal dashboard for speedgauge results.

All formatting helpers live in ``netgauge.stats`` -- this module only does
presentation via the ``rich`` library.
"""
from __future__ import annotations

import statistics
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from netgauge.history import format_history_table, sparkline
from netgauge.models import EventKind, Phase, ProgressEvent, TestResult
from netgauge.stats import format_latency, format_speed

console = Console()
# logs and errors, so stdout carries only results (e.g. --json)
err_console = Console(stderr=True)

_PHASE_LABELS = {
    Phase.IDLE: "Idle",
    Phase.PING: "Measuring latency",
    Phase.DOWNLOAD: "Testing download",
    Phase.UPLOAD: "Testing upload",
}


# ---------------------------------------------------------------------------
# Histogram helper
# ---------------------------------------------------------------------------

_BARS = "▁▂▃▄▅▆▇█"


def create_histogram(values: List[float], height: int = 5) -> str:
    """Return a single-line Unicode bar-chart."""
    if not values:
        return "No data"

    lo, hi = min(values), max(values)
    span = hi - lo if hi > lo else 1.0
    norm = [(v - lo) / span * height for v in values]
    return "".join(_BARS[min(int(n * (len(_BARS) - 1) / height), len(_BARS) - 1)] for n in norm)


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

def print_header() -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]speedgauge[/bold cyan]\n"
            "[dim]Latency, jitter, download and upload from timed HTTP exchanges[/dim]",
            border_style="cyan",
        )
    )
    console.print()


def print_client_info(ip: str, isp: str, server: str = "") -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(style="dim")
    table.add_column(style="bold")
    table.add_row("IP Address:", ip)
    table.add_row("ISP:", isp)
    if server:
        table.add_row("Server:", server)
    console.print(Panel(table, title="[bold]Client Info[/bold]", border_style="blue"))


def print_latency_details(result) -> None:  # noqa: ANN001 (LatencyResult)
    """Print latency statistics and a histogram of the raw probes."""
    pings = result.pings
    if not pings:
        console.print("[yellow]No latency samples collected[/yellow]")
        return

    table = Table(title="Latency Details", box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Ping (trimmed mean)", format_latency(result.ping_ms))
    table.add_row("Jitter", f"{result.jitter_ms:.2f} ms")
    table.add_row("Min", format_latency(min(pings)))
    table.add_row("Max", format_latency(max(pings)))
    table.add_row("Median", format_latency(statistics.median(pings)))
    table.add_row("Samples", f"{len(result.retained)} of {len(pings)} kept")
    console.print(table)

    console.print(
        Panel(
            f"[cyan]{create_histogram(pings)}[/cyan]\n"
            f"[dim]Min: {min(pings):.1f} ms  Max: {max(pings):.1f} ms[/dim]",
            title="Ping Histogram",
        )
    )


def print_speed_result(result, title: str, color: str = "green") -> None:  # noqa: ANN001
    """Print a download or upload result panel."""
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Speed", f"[bold {color}]{format_speed(result.speed_mbps)}[/bold {color}]")
    table.add_row("Data Transferred", f"{result.bytes_total / 1_000_000:.1f} MB")
    table.add_row("Transfer Time", f"{result.duration_ms / 1000:.1f} s")
    table.add_row("Samples", str(len(result.samples)))

    payload_mb = getattr(result, "payload_mb", 0)
    if payload_mb:
        table.add_row("Probe Speed", format_speed(result.probe_mbps))
        table.add_row("Payload Tier", f"{payload_mb} MiB")
    discarded = getattr(result, "discarded", [])
    if discarded:
        table.add_row("Discarded", f"[yellow]{len(discarded)}[/yellow]")
    console.print(table)

    speeds = result.speeds
    if speeds:
        console.print(
            Panel(
                f"[{color}]{create_histogram(speeds)}[/{color}]\n"
                f"[dim]Min: {min(speeds):.1f} Mbps  "
                f"Max: {max(speeds):.1f} Mbps[/dim]",
                title="Speed Per Transfer",
            )
        )


def print_final_results(result: TestResult) -> None:
    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Server:[/bold cyan] {result.server}  [dim]({result.isp}, {result.ip})[/dim]\n\n"
            f"[bold white]   Ping:[/bold white]  [bold yellow]{result.ping:.1f} ms[/bold yellow]  "
            f"[dim](jitter: {result.jitter:.2f} ms)[/dim]\n"
            f"[bold white]   Download:[/bold white]  [bold green]{format_speed(result.download)}[/bold green]\n"
            f"[bold white]   Upload:[/bold white]  [bold blue]{format_speed(result.upload)}[/bold blue]",
            title="[bold]Results[/bold]",
            border_style="cyan",
        )
    )
    console.print()


def print_history(tests: List[TestResult]) -> None:
    """Print past results (newest first) with download/upload trend lines."""
    if not tests:
        console.print("[dim]No test history yet.[/dim]")
        return

    table = Table(title="Test History", box=box.ROUNDED)
    table.add_column("Date", style="dim")
    table.add_column("Server")
    table.add_column("Ping", justify="right")
    table.add_column("Jitter", justify="right")
    table.add_column("Download", justify="right", style="green")
    table.add_column("Upload", justify="right", style="blue")

    rows = format_history_table(tests)
    for row in rows:
        table.add_row(
            row["date"],
            row["server"],
            format_latency(row["ping"]),
            f"{row['jitter']:.2f} ms",
            format_speed(row["download"]),
            format_speed(row["upload"]),
        )
    console.print(table)

    # oldest -> newest reads left to right
    downloads = [r["download"] for r in reversed(rows)]
    uploads = [r["upload"] for r in reversed(rows)]
    console.print(f"  Download trend: [green]{sparkline(downloads)}[/green]")
    console.print(f"  Upload trend:   [blue]{sparkline(uploads)}[/blue]")


# ---------------------------------------------------------------------------
# Progress display
# ---------------------------------------------------------------------------

class ProgressDisplay:
    """Drives a ``rich`` progress bar from the runner's progress events."""

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=40),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("[bold cyan]{task.fields[value]}[/bold cyan]"),
            TimeElapsedColumn(),
            console=console,
        )
        self._task_id = None

    def start(self, description: str = "Starting") -> None:
        self.progress.start()
        self._task_id = self.progress.add_task(description, total=100, value="")

    def handle(self, event: ProgressEvent) -> None:
        if self._task_id is None:
            return

        value: Optional[str] = None
        if event.kind in (EventKind.SAMPLE, EventKind.PHASE_COMPLETED) and event.value is not None:
            value = format_latency(event.value) if event.phase is Phase.PING else format_speed(event.value)
        elif event.kind is EventKind.PHASE_STARTED:
            value = "..."

        fields = {"completed": event.progress, "description": _PHASE_LABELS[event.phase]}
        if event.kind is EventKind.COMPLETED:
            fields["description"] = "Done"
        elif event.kind is EventKind.FAILED:
            fields["description"] = "[red]Failed[/red]"
        if value is not None:
            fields["value"] = value
        self.progress.update(self._task_id, **fields)

    def stop(self) -> None:
        self.progress.stop()
        self._task_id = None
