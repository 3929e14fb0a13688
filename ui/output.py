"""
Output formatting -- JSON export, plain text, and CSV.
"""
from __future__ import annotations

import csv
import io
import json
import os
import statistics
from typing import Any, Dict, List, Optional

from netgauge.models import TestResult


def create_result_json(
    result: TestResult,
    latency_results: Optional[Dict[str, Any]] = None,
    download_results: Optional[Dict[str, Any]] = None,
    upload_results: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build the JSON export for one run.

    The top level carries the same keys as a history entry; the per-phase
    ``*_results`` dicts (from the testers' ``to_dict``) add the raw samples.
    """
    latency_results = latency_results or {}
    download_results = download_results or {}
    upload_results = upload_results or {}

    pings: List[float] = latency_results.get("pings", [])
    if pings:
        rtt = {
            "min": min(pings),
            "max": max(pings),
            "mean": statistics.mean(pings),
            "median": statistics.median(pings),
        }
    else:
        rtt = {"min": 0, "max": 0, "mean": 0, "median": 0}

    export: Dict[str, Any] = result.to_dict()
    export["latency"] = {
        "ping": result.ping,
        "jitter": result.jitter,
        "rtt": rtt,
        "count": len(pings),
        "samples": pings,
    }
    export["downloadDetails"] = {
        "speed_mbps": result.download,
        "bytes": download_results.get("bytes_total", 0),
        "duration_ms": download_results.get("duration_ms", 0),
        "samples": download_results.get("samples", []),
    }
    export["uploadDetails"] = {
        "speed_mbps": result.upload,
        "probe_mbps": upload_results.get("probe_mbps", 0),
        "payload_mb": upload_results.get("payload_mb", 0),
        "bytes": upload_results.get("bytes_total", 0),
        "duration_ms": upload_results.get("duration_ms", 0),
        "samples": upload_results.get("samples", []),
        "discarded": upload_results.get("discarded", []),
    }
    return export


def save_json(result: Dict[str, Any], filepath: str) -> None:
    """Write *result* to *filepath* atomically (write-tmp then rename)."""
    dir_path = os.path.dirname(filepath) or "."
    tmp = os.path.join(dir_path, f".tmp_{os.path.basename(filepath)}")

    try:
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(result, fh, indent=2, ensure_ascii=False)
        os.replace(tmp, filepath)
    except OSError as exc:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise OSError(f"Failed to save JSON to {filepath}: {exc}") from exc


# ---------------------------------------------------------------------------
# Plain-text / CSV helpers
# ---------------------------------------------------------------------------

def format_text_result(result: TestResult) -> str:
    sep = "=" * 50
    mid = "-" * 50
    return (
        f"{sep}\n"
        f"speedgauge Results\n"
        f"{sep}\n"
        f"Server: {result.server}\n"
        f"ISP: {result.isp}\n"
        f"IP: {result.ip}\n"
        f"{mid}\n"
        f"Ping: {result.ping:.1f} ms (jitter: {result.jitter:.2f} ms)\n"
        f"Download: {result.download:.2f} Mbps\n"
        f"Upload: {result.upload:.2f} Mbps\n"
        f"{sep}"
    )


CSV_FIELDS = ["date", "server", "isp", "ip", "ping_ms", "jitter_ms", "download_mbps", "upload_mbps"]


def _csv_line(fields: List[str]) -> str:
    """One RFC 4180 record without its line terminator."""
    buf = io.StringIO()
    csv.writer(buf).writerow(fields)
    return buf.getvalue().rstrip("\r\n")


def format_csv_header() -> str:
    return _csv_line(CSV_FIELDS)


def format_csv_row(result: TestResult) -> str:
    fields = [
        result.date,
        result.server,
        result.isp,
        result.ip,
        f"{result.ping:.1f}",
        f"{result.jitter:.2f}",
        f"{result.download:.2f}",
        f"{result.upload:.2f}",
    ]
    return _csv_line(fields)
