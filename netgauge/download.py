"""
Download speed test module.

Sequential fixed-size ``GET /probe`` transfers against a single server.
Each transfer yields one speed sample which is reported through
``on_progress`` as soon as it arrives.  The final speed is a weighted mean
in which later samples count more: early transfers are biased low by TCP
slow-start.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from .cancel import CancellationToken
from .constants import DEFAULT_DOWNLOAD_COUNT, DOWNLOAD_PAUSE
from .errors import MeasurementError
from .models import Phase, PhaseResult, Sample
from .stats import speed_mbps, weighted_mean

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class DownloadResult:
    """Download test result."""

    speed_mbps: float = 0.0
    bytes_total: int = 0
    duration_ms: float = 0.0
    samples: List[Sample] = field(default_factory=list)

    @property
    def speeds(self) -> List[float]:
        return [s.value for s in self.samples]

    def calculate(self) -> None:
        """Weighted mean of the per-transfer speeds, in arrival order."""
        self.speed_mbps = weighted_mean(self.speeds)

    def to_phase_result(self) -> PhaseResult:
        return PhaseResult(kind=Phase.DOWNLOAD, primary=self.speed_mbps)

    def to_dict(self) -> dict:
        return {
            "speed_mbps": round(self.speed_mbps, 2),
            "bytes_total": self.bytes_total,
            "duration_ms": round(self.duration_ms, 2),
            "samples": [round(s, 2) for s in self.speeds],
        }


# ---------------------------------------------------------------------------
# Tester
# ---------------------------------------------------------------------------

class DownloadTester:
    """
    Sequential download speed tester.

    Transfers never overlap; a short pause between them keeps a single
    connection from being driven in a way that misrepresents steady-state
    throughput.
    """

    def __init__(
        self,
        transfer,  # noqa: ANN001 (HttpTransfer or compatible)
        count: int = DEFAULT_DOWNLOAD_COUNT,
        pause: float = DOWNLOAD_PAUSE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.transfer = transfer
        self.count = count
        self.pause = pause
        self._sleep = sleep
        self._clock = clock
        self.on_progress: Optional[Callable[[float], None]] = None

    async def test(self, token: Optional[CancellationToken] = None) -> DownloadResult:
        token = token or CancellationToken()
        result = DownloadResult()

        for i in range(self.count):
            if i > 0:
                await self._sleep(self.pause)
            token.check()

            transfer = await self.transfer.download()
            token.check()

            if transfer.elapsed_seconds <= 0:
                raise MeasurementError(
                    f"Download {i + 1} reported a non-positive duration ({transfer.elapsed_seconds} s)"
                )

            mbps = speed_mbps(transfer.bytes, transfer.elapsed_seconds)
            result.samples.append(Sample(mbps, self._clock()))
            result.bytes_total += transfer.bytes
            result.duration_ms += transfer.elapsed_ms
            logger.debug(
                "Download %d/%d: %d bytes in %.3f s = %.2f Mbps",
                i + 1, self.count, transfer.bytes, transfer.elapsed_seconds, mbps,
            )

            if self.on_progress:
                self.on_progress(mbps)

        result.calculate()
        logger.info("Download %.2f Mbps over %d transfers", result.speed_mbps, len(result.samples))
        return result
