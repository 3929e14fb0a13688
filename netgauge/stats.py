"""
Network measurement statistics.

Pure functions -- no I/O, no side effects.  Every reducer returns the same
value for the same samples, which keeps them easy to unit-test.
"""
from __future__ import annotations

import math
import statistics
from typing import List, Sequence, Tuple, TypeVar

from .constants import MAX_PLAUSIBLE_SPEED, MIN_TRIM_SAMPLES, PING_TRIM
from .errors import MeasurementError

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------

def speed_mbps(bytes_count: int, elapsed_seconds: float) -> float:
    """
    Throughput in megabits per second (1 Mbps = 1e6 bit/s).

    A non-positive duration yields ``math.inf`` so the plausibility ceiling
    rejects it.
    """
    if elapsed_seconds <= 0:
        return math.inf
    return (bytes_count * 8) / elapsed_seconds / 1_000_000


# ---------------------------------------------------------------------------
# Latency
# ---------------------------------------------------------------------------

def trim_outliers(
    samples: Sequence[T],
    key=lambda s: s,  # noqa: ANN001
    trim: int = PING_TRIM,
    min_samples: int = MIN_TRIM_SAMPLES,
) -> List[T]:
    """
    Sort *samples* by *key* and drop *trim* items from each end.

    With fewer than *min_samples* samples there is nothing left worth
    trimming, so every sample is returned (sorted).
    """
    ordered = sorted(samples, key=key)
    if len(ordered) < min_samples or len(ordered) <= 2 * trim:
        return ordered
    return ordered[trim : len(ordered) - trim]


def reduce_latency(
    pairs: Sequence[Tuple[float, float]],
    trim: int = PING_TRIM,
) -> Tuple[float, float]:
    """
    Reduce ``(latency_ms, jitter_ms)`` probe pairs to ``(ping, jitter)``.

    Pairs are ranked by latency; jitter travels with its probe.
    """
    kept = trim_outliers(pairs, key=lambda p: p[0], trim=trim)
    if not kept:
        return 0.0, 0.0
    ping = statistics.mean(p[0] for p in kept)
    jitter = statistics.mean(p[1] for p in kept)
    return ping, jitter


# ---------------------------------------------------------------------------
# Throughput
# ---------------------------------------------------------------------------

def weighted_mean(samples: Sequence[float]) -> float:
    """Arrival-order weighted mean: sample *i* (1-indexed) has weight *i*."""
    if not samples:
        return 0.0
    weighted = sum(v * i for i, v in enumerate(samples, start=1))
    weights = len(samples) * (len(samples) + 1) / 2
    return weighted / weights


def filter_plausible(
    samples: Sequence[float],
    ceiling: float = MAX_PLAUSIBLE_SPEED,
) -> List[float]:
    """Drop speeds at or above *ceiling* (degenerate zero-duration transfers)."""
    return [s for s in samples if 0 <= s < ceiling]


def median_sample(samples: Sequence[float]) -> float:
    """
    Median that is always an observed sample.

    Odd counts give the middle value; even counts give the upper middle
    (``sorted[n // 2]``).
    """
    if not samples:
        return 0.0
    return statistics.median_high(samples)


def reduce_upload(samples: Sequence[float], ceiling: float = MAX_PLAUSIBLE_SPEED) -> float:
    """Median of the plausible same-size upload samples."""
    valid = filter_plausible(samples, ceiling)
    if not valid:
        raise MeasurementError("No plausible upload samples to reduce")
    return median_sample(valid)


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_speed(speed_mbps: float) -> str:
    """Human-readable speed string."""
    if speed_mbps >= 1000:
        return f"{speed_mbps / 1000:.2f} Gbps"
    return f"{speed_mbps:.2f} Mbps"


def format_latency(latency_ms: float) -> str:
    """Human-readable latency string."""
    if latency_ms >= 1000:
        return f"{latency_ms / 1000:.2f} s"
    return f"{latency_ms:.1f} ms"
