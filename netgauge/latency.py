"""
Latency measurement over zero-payload HTTP probes.

Protocol::

    1. HEAD /probe, timed from dispatch to response headers.
    2. Record (latency_ms, jitter_ms); jitter is the server's X-Jitter
       header when present, otherwise the distance from the previous probe.
    3. Wait PING_DELAY before the next probe.
    4. After all probes: sort by latency, drop the PING_TRIM lowest and
       highest, and average what is left.

Trimming removes transient spikes such as the first probe paying for the
TCP/TLS setup.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from .cancel import CancellationToken
from .constants import DEFAULT_PING_COUNT, PING_DELAY, PING_TRIM
from .models import Phase, PhaseResult, Sample
from .stats import reduce_latency, trim_outliers

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class PingResult:
    """A single probe round-trip."""

    latency_ms: float
    jitter_ms: float
    timestamp: float = 0.0


@dataclass
class LatencyResult:
    """Aggregated latency data for one run."""

    probes: List[PingResult] = field(default_factory=list)
    ping_ms: float = 0.0
    jitter_ms: float = 0.0
    trim: int = PING_TRIM

    def calculate(self) -> None:
        """Derive trimmed-mean ping and jitter from the collected probes."""
        pairs = [(p.latency_ms, p.jitter_ms) for p in self.probes]
        self.ping_ms, self.jitter_ms = reduce_latency(pairs, trim=self.trim)

    @property
    def samples(self) -> List[Sample]:
        return [Sample(p.latency_ms, p.timestamp) for p in self.probes]

    @property
    def pings(self) -> List[float]:
        return [p.latency_ms for p in self.probes]

    @property
    def retained(self) -> List[float]:
        """Latencies that survived outlier trimming, ascending."""
        return trim_outliers(self.pings, trim=self.trim)

    def to_phase_result(self) -> PhaseResult:
        return PhaseResult(kind=Phase.PING, primary=self.ping_ms, secondary=self.jitter_ms)

    def to_dict(self) -> dict:
        return {
            "pings": [round(p, 1) for p in self.pings],
            "jitters": [round(p.jitter_ms, 3) for p in self.probes],
            "ping_ms": round(self.ping_ms, 2),
            "jitter_ms": round(self.jitter_ms, 3),
        }


# ---------------------------------------------------------------------------
# Tester
# ---------------------------------------------------------------------------

class LatencyTester:
    """Measure ping and jitter with sequential ``HEAD /probe`` requests."""

    def __init__(
        self,
        transfer,  # noqa: ANN001 (HttpTransfer or compatible)
        ping_count: int = DEFAULT_PING_COUNT,
        delay: float = PING_DELAY,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.transfer = transfer
        self.ping_count = ping_count
        self.delay = delay
        self._sleep = sleep
        self._clock = clock
        self.on_progress: Optional[Callable[[float], None]] = None

    async def test(self, token: Optional[CancellationToken] = None) -> LatencyResult:
        token = token or CancellationToken()
        result = LatencyResult()
        previous: Optional[float] = None

        for i in range(self.ping_count):
            if i > 0:
                await self._sleep(self.delay)
            token.check()

            probe = await self.transfer.probe()
            token.check()  # drop a probe that finished after cancellation

            latency = probe.elapsed_ms
            jitter = probe.server_jitter_ms
            if jitter is None:
                jitter = abs(latency - previous) if previous is not None else 0.0
            previous = latency

            result.probes.append(PingResult(latency, jitter, self._clock()))
            logger.debug("Probe %d/%d: %.2f ms (jitter %.2f ms)", i + 1, self.ping_count, latency, jitter)

            if self.on_progress:
                self.on_progress(latency)

        result.calculate()
        logger.info("Ping %.2f ms, jitter %.2f ms", result.ping_ms, result.jitter_ms)
        return result
