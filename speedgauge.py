#!/usr/bin/env python3
"""
speedgauge CLI -- latency, jitter, download and upload from the terminal.

Usage::

    python speedgauge.py                          # rich dashboard
    python speedgauge.py --simple                 # plain text
    python speedgauge.py --json                   # JSON to stdout
    python speedgauge.py -o result.json           # save to file
    python speedgauge.py --csv log.csv            # append CSV row
    python speedgauge.py --url http://host:8080   # test against another server
    python speedgauge.py --history                # show past results
    python speedgauge.py --repeat 5 --interval 60 # repeat 5 times
    python speedgauge.py --serve --seed 42        # run the reference server
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import time
from typing import Optional

from netgauge.api import Endpoint
from netgauge.config import load_config, resolve_settings
from netgauge.constants import (
    DEFAULT_DOWNLOAD_COUNT,
    DEFAULT_MAX_PAYLOAD_MB,
    DEFAULT_PING_COUNT,
    DEFAULT_SERVER_PORT,
    DEFAULT_SERVER_URL,
    DEFAULT_UPLOAD_REPEATS,
    MAX_DOWNLOAD_COUNT,
    MAX_PING_COUNT,
    MAX_UPLOAD_REPEATS,
    MIN_DOWNLOAD_COUNT,
    MIN_PING_COUNT,
    MIN_UPLOAD_REPEATS,
    PAYLOAD_SIZES_MB,
    PROBE_PAYLOAD_MB,
)
from netgauge.errors import SpeedgaugeError
from netgauge.history import JsonFileStorage, ResultHistory
from netgauge.models import TestResult
from netgauge.runner import SpeedTestRunner
from netgauge.server import generate_payload_files, run_server
from netgauge.transfer import HttpTransfer
from ui.dashboard import (
    ProgressDisplay,
    console,
    err_console,
    print_client_info,
    print_final_results,
    print_header,
    print_history,
    print_latency_details,
    print_speed_result,
)
from ui.logging_setup import configure_logging
from ui.output import create_result_json, format_csv_header, format_csv_row, save_json

logger = logging.getLogger("speedgauge")


# ---------------------------------------------------------------------------
# Parameter validation
# ---------------------------------------------------------------------------

def _validate(
    ping_count: int,
    download_count: int,
    upload_repeats: int,
    max_payload_mb: int,
    server_url: str = DEFAULT_SERVER_URL,
) -> None:
    """Raise ``ValueError`` if any parameter is out of range."""
    if not MIN_PING_COUNT <= ping_count <= MAX_PING_COUNT:
        raise ValueError(f"Ping count must be between {MIN_PING_COUNT} and {MAX_PING_COUNT}")
    if not MIN_DOWNLOAD_COUNT <= download_count <= MAX_DOWNLOAD_COUNT:
        raise ValueError(f"Download count must be between {MIN_DOWNLOAD_COUNT} and {MAX_DOWNLOAD_COUNT}")
    if not MIN_UPLOAD_REPEATS <= upload_repeats <= MAX_UPLOAD_REPEATS:
        raise ValueError(f"Upload repeats must be between {MIN_UPLOAD_REPEATS} and {MAX_UPLOAD_REPEATS}")
    if max_payload_mb < PROBE_PAYLOAD_MB:
        raise ValueError(f"Max payload must be at least {PROBE_PAYLOAD_MB} MiB")
    Endpoint(server_url)


# ---------------------------------------------------------------------------
# Core test runner
# ---------------------------------------------------------------------------

async def run_speedtest(
    *,
    server_url: str = DEFAULT_SERVER_URL,
    json_output: bool = False,
    output_file: Optional[str] = None,
    csv_file: Optional[str] = None,
    simple: bool = False,
    ping_count: int = DEFAULT_PING_COUNT,
    download_count: int = DEFAULT_DOWNLOAD_COUNT,
    upload_repeats: int = DEFAULT_UPLOAD_REPEATS,
    max_payload_mb: int = DEFAULT_MAX_PAYLOAD_MB,
    history: Optional[ResultHistory] = None,
) -> dict:
    """Execute the full speedgauge sequence and return a JSON-serialisable dict."""

    show_ui = not json_output and not simple
    history = history if history is not None else ResultHistory(JsonFileStorage())

    if show_ui:
        print_header()

    async with HttpTransfer(Endpoint(server_url)) as transfer:

        # -- Identity -------------------------------------------------------
        if show_ui:
            console.print("[dim]Fetching network info...[/dim]")

        identity = await transfer.identity()

        if show_ui:
            print_client_info(ip=identity.ip, isp=identity.isp, server=identity.server)

        # -- Ping / download / upload ---------------------------------------
        runner = SpeedTestRunner(
            transfer,
            history,
            ping_count=ping_count,
            download_count=download_count,
            upload_repeats=upload_repeats,
            max_payload_mb=max_payload_mb,
        )

        progress = None
        if show_ui:
            console.print("\n[bold]Running test...[/bold]")
            progress = ProgressDisplay()
            progress.start()
            runner.add_listener(progress.handle)

        try:
            result = await runner.run(identity)
        finally:
            if progress is not None:
                progress.stop()

    # -- Summary ------------------------------------------------------------
    if show_ui:
        print_latency_details(runner.latency)
        print_speed_result(runner.download, "Download Results", "green")
        print_speed_result(runner.upload, "Upload Results", "blue")
        print_final_results(result)
    elif simple:
        print(f"Ping: {result.ping:.1f} ms")
        print(f"Jitter: {result.jitter:.2f} ms")
        print(f"Download: {result.download:.2f} Mbps")
        print(f"Upload: {result.upload:.2f} Mbps")

    # -- JSON result --------------------------------------------------------
    result_json = create_result_json(
        result,
        latency_results=runner.latency.to_dict(),
        download_results=runner.download.to_dict(),
        upload_results=runner.upload.to_dict(),
    )

    if json_output:
        print(json.dumps(result_json, indent=2))

    if output_file:
        save_json(result_json, output_file)
        if not json_output:
            console.print(f"\n[green]Results saved to:[/green] {output_file}")

    # -- CSV append ---------------------------------------------------------
    if csv_file:
        _append_csv(csv_file, result)
        if not json_output:
            console.print(f"[green]CSV row appended to:[/green] {csv_file}")

    return result_json


def _append_csv(path: str, result: TestResult) -> None:
    """Append a single CSV row, writing the header if the file is new."""
    write_header = not os.path.isfile(path) or os.path.getsize(path) == 0
    with open(path, "a", encoding="utf-8") as fh:
        if write_header:
            fh.write(format_csv_header() + "\n")
        fh.write(format_csv_row(result) + "\n")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="speedgauge -- network latency and throughput measurement",
    )
    # Output modes
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    parser.add_argument("--output", "-o", type=str, metavar="FILE", help="Save results to JSON file")
    parser.add_argument("--csv", type=str, metavar="FILE", help="Append results as CSV row")
    parser.add_argument("--simple", "-s", action="store_true", help="Simple output mode (no dashboard)")

    # Server
    parser.add_argument("--url", type=str, metavar="URL", help=f"Server base URL (default: {DEFAULT_SERVER_URL})")

    # Test parameters (None = use config file value)
    parser.add_argument("--ping-count", type=int, metavar="N", help=f"Number of latency probes (default: {DEFAULT_PING_COUNT})")
    parser.add_argument("--download-count", type=int, metavar="N", help=f"Number of download transfers (default: {DEFAULT_DOWNLOAD_COUNT})")
    parser.add_argument("--upload-repeats", type=int, metavar="N", help=f"Number of same-size uploads (default: {DEFAULT_UPLOAD_REPEATS})")
    parser.add_argument("--max-payload-mb", type=int, metavar="MB", help=f"Largest upload payload in MiB (default: {DEFAULT_MAX_PAYLOAD_MB})")

    # Repeat mode
    parser.add_argument("--repeat", type=int, default=1, metavar="N", help="Run the test N times (default: 1)")
    parser.add_argument("--interval", type=float, default=60.0, metavar="SECS", help="Seconds between repeated tests (default: 60)")

    # History
    parser.add_argument("--history", action="store_true", help="Show past test results and exit")
    parser.add_argument("--clear-history", action="store_true", help="Delete all stored results and exit")

    # Reference server
    parser.add_argument("--serve", action="store_true", help="Run the reference server instead of a test")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Reference server bind address")
    parser.add_argument("--port", type=int, default=DEFAULT_SERVER_PORT, help=f"Reference server port (default: {DEFAULT_SERVER_PORT})")
    parser.add_argument("--seed", type=int, metavar="N", help="Seed the reference server's synthetic network")
    parser.add_argument("--payload-dir", type=str, metavar="DIR", help="Serve test payloads from DIR")
    parser.add_argument("--generate-payloads", type=str, metavar="DIR", help="Write the test payload files into DIR and exit")

    # Logging
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", type=str, metavar="FILE", help="Also write logs to FILE")
    return parser


def main(argv: Optional[list] = None) -> None:
    args = build_parser().parse_args(argv)

    config = load_config()
    settings = resolve_settings(
        config,
        server_url=args.url,
        ping_count=args.ping_count,
        download_count=args.download_count,
        upload_repeats=args.upload_repeats,
        max_payload_mb=args.max_payload_mb,
        csv_file=args.csv,
    )
    configure_logging("DEBUG" if args.verbose else settings["log_level"], args.log_file)

    # Payload generation mode
    if args.generate_payloads:
        paths = generate_payload_files(args.generate_payloads, PAYLOAD_SIZES_MB)
        console.print(f"[green]Wrote {len(paths)} payload files to:[/green] {args.generate_payloads}")
        return

    # Server mode
    if args.serve:
        console.print(f"[bold cyan]Reference server on http://{args.host}:{args.port}[/bold cyan]")
        run_server(host=args.host, port=args.port, seed=args.seed, payload_dir=args.payload_dir)
        return

    history = ResultHistory(JsonFileStorage())

    # History modes
    if args.clear_history:
        history.clear()
        console.print("[green]Test history cleared[/green]")
        return
    if args.history:
        print_history(history.tests)
        return

    # Validate
    try:
        _validate(
            ping_count=settings["ping_count"],
            download_count=settings["download_count"],
            upload_repeats=settings["upload_repeats"],
            max_payload_mb=settings["max_payload_mb"],
            server_url=settings["server_url"],
        )
    except ValueError as exc:
        err_console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)

    if args.repeat < 1:
        err_console.print("[red]Error: --repeat must be >= 1[/red]")
        sys.exit(1)

    # Normal run (with repeat support)
    try:
        for run_idx in range(args.repeat):
            if args.repeat > 1 and not args.json:
                console.print(f"\n[bold cyan]--- Run {run_idx + 1}/{args.repeat} ---[/bold cyan]")

            asyncio.run(
                run_speedtest(
                    server_url=settings["server_url"],
                    json_output=args.json,
                    output_file=args.output,
                    csv_file=settings["csv_file"] or None,
                    simple=args.simple,
                    ping_count=settings["ping_count"],
                    download_count=settings["download_count"],
                    upload_repeats=settings["upload_repeats"],
                    max_payload_mb=settings["max_payload_mb"],
                    history=history,
                )
            )

            # Wait between runs (but not after the last one)
            if run_idx < args.repeat - 1:
                if not args.json:
                    console.print(f"[dim]Next run in {args.interval:.0f}s...[/dim]")
                time.sleep(args.interval)

    except KeyboardInterrupt:
        err_console.print("\n[yellow]Test cancelled by user[/yellow]")
        sys.exit(1)
    except (SpeedgaugeError, OSError) as exc:
        logger.debug("Run failed", exc_info=True)
        err_console.print(f"\n[red]Error: {exc}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
