"""
Upload speed test module.

The payload size is adaptive::

    1. Fetch the 1 MiB probe payload and POST it once.  Its speed picks the
       tier from UPLOAD_TIERS.
    2. Fetch the tier payload (capped at the largest size the server accepts)
       and POST it ``repeats`` times with UPLOAD_PAUSE in between.
    3. Discard samples at or above MAX_PLAUSIBLE_SPEED and report the median
       of the same-size samples that remain.

The probe sample is reported through ``on_progress`` but never enters the
final reduction: payloads of different sizes carry different overhead
ratios.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from .cancel import CancellationToken
from .constants import (
    DEFAULT_MAX_PAYLOAD_MB,
    DEFAULT_UPLOAD_REPEATS,
    MAX_PLAUSIBLE_SPEED,
    PAYLOAD_SIZES_MB,
    PROBE_PAYLOAD_MB,
    UPLOAD_PAUSE,
    UPLOAD_TIERS,
)
from .models import Phase, PhaseResult, Sample
from .stats import reduce_upload

logger = logging.getLogger(__name__)

Tiers = Sequence[Tuple[float, int]]


# ---------------------------------------------------------------------------
# Tier selection
# ---------------------------------------------------------------------------

def select_tier(
    probe_mbps: float,
    max_payload_mb: int = DEFAULT_MAX_PAYLOAD_MB,
    tiers: Tiers = UPLOAD_TIERS,
    sizes: Sequence[int] = PAYLOAD_SIZES_MB,
) -> int:
    """
    Return the payload size (MiB) for a probe speed.

    *tiers* holds ``(upper_bound_mbps, size_mb)`` pairs with ascending
    bounds; the first bound above *probe_mbps* wins.  The result never
    exceeds *max_payload_mb*: the largest tier that fits is used instead,
    or, when no tier fits, the largest served payload size that does.
    """
    chosen = tiers[-1][1]
    for bound, size_mb in tiers:
        if probe_mbps < bound:
            chosen = size_mb
            break

    if chosen <= max_payload_mb:
        return chosen

    fitting = [size_mb for _, size_mb in tiers if size_mb <= max_payload_mb]
    if fitting:
        return max(fitting)
    served = [size_mb for size_mb in sizes if size_mb <= max_payload_mb]
    return max(served) if served else min(sizes)


def _finite(value: float) -> Optional[float]:
    return round(value, 2) if math.isfinite(value) else None


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class UploadResult:
    """Upload test result."""

    speed_mbps: float = 0.0
    probe_mbps: float = 0.0
    payload_mb: int = 0
    bytes_total: int = 0
    duration_ms: float = 0.0
    samples: List[Sample] = field(default_factory=list)
    discarded: List[float] = field(default_factory=list)

    @property
    def speeds(self) -> List[float]:
        return [s.value for s in self.samples]

    def calculate(self, ceiling: float = MAX_PLAUSIBLE_SPEED) -> None:
        """Median of the surviving same-size samples."""
        self.speed_mbps = reduce_upload(self.speeds, ceiling)

    def to_phase_result(self) -> PhaseResult:
        return PhaseResult(kind=Phase.UPLOAD, primary=self.speed_mbps)

    def to_dict(self) -> dict:
        return {
            "speed_mbps": round(self.speed_mbps, 2),
            "probe_mbps": _finite(self.probe_mbps),
            "payload_mb": self.payload_mb,
            "bytes_total": self.bytes_total,
            "duration_ms": round(self.duration_ms, 2),
            "samples": [round(s, 2) for s in self.speeds],
            "discarded": [_finite(s) for s in self.discarded],
        }


# ---------------------------------------------------------------------------
# Tester
# ---------------------------------------------------------------------------

class UploadTester:
    """Adaptive upload speed tester using ``POST /upload``."""

    def __init__(
        self,
        transfer,  # noqa: ANN001 (HttpTransfer or compatible)
        repeats: int = DEFAULT_UPLOAD_REPEATS,
        pause: float = UPLOAD_PAUSE,
        max_payload_mb: int = DEFAULT_MAX_PAYLOAD_MB,
        tiers: Tiers = UPLOAD_TIERS,
        ceiling: float = MAX_PLAUSIBLE_SPEED,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.transfer = transfer
        self.repeats = repeats
        self.pause = pause
        self.max_payload_mb = max_payload_mb
        self.tiers = tiers
        self.ceiling = ceiling
        self._sleep = sleep
        self._clock = clock
        self.on_progress: Optional[Callable[[float], None]] = None

    async def test(self, token: Optional[CancellationToken] = None) -> UploadResult:
        token = token or CancellationToken()
        result = UploadResult()

        # -- Probe ----------------------------------------------------------
        token.check()
        probe_payload = await self.transfer.fetch_payload(PROBE_PAYLOAD_MB)
        token.check()
        probe = await self.transfer.upload(probe_payload)
        token.check()

        result.probe_mbps = probe.speed_mbps
        result.bytes_total += probe.bytes
        result.duration_ms += probe.elapsed_ms
        if self.on_progress:
            self.on_progress(result.probe_mbps)

        result.payload_mb = select_tier(result.probe_mbps, self.max_payload_mb, self.tiers)
        logger.info(
            "Upload probe %.2f Mbps, selected %d MiB payload", result.probe_mbps, result.payload_mb
        )

        # -- Same-size repetitions ------------------------------------------
        payload = await self.transfer.fetch_payload(result.payload_mb)

        for i in range(self.repeats):
            if i > 0:
                await self._sleep(self.pause)
            token.check()

            transfer = await self.transfer.upload(payload)
            token.check()

            result.bytes_total += transfer.bytes
            result.duration_ms += transfer.elapsed_ms
            mbps = transfer.speed_mbps

            if not 0 <= mbps < self.ceiling:
                logger.warning(
                    "Discarding implausible upload sample %d/%d: %.2f Mbps", i + 1, self.repeats, mbps
                )
                result.discarded.append(mbps)
                continue

            result.samples.append(Sample(mbps, self._clock()))
            logger.debug("Upload %d/%d: %.2f Mbps", i + 1, self.repeats, mbps)
            if self.on_progress:
                self.on_progress(mbps)

        result.calculate(self.ceiling)
        logger.info("Upload %.2f Mbps from %d samples", result.speed_mbps, len(result.samples))
        return result
