"""
Test orchestrator.

Runs the three phases strictly one after another (ping, download, upload)
because overlapping transfers would contend for bandwidth and invalidate
both measurements.  The runner owns the phase state machine::

    IDLE -> PING -> DOWNLOAD -> UPLOAD -> IDLE

and a progress scalar (0-100) that never decreases.  Progress is published
as ``ProgressEvent`` objects, either to synchronous listeners or to async
iterators obtained from ``subscribe()``.

Any error aborts the remaining phases, emits a single FAILED event, puts the
runner back in IDLE and is re-raised.  Nothing is recorded to history for a
failed run.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional

from .api import NetworkIdentity
from .cancel import CancellationToken
from .constants import (
    DEFAULT_DOWNLOAD_COUNT,
    DEFAULT_MAX_PAYLOAD_MB,
    DEFAULT_PING_COUNT,
    DEFAULT_UPLOAD_REPEATS,
    PROGRESS_DONE,
    PROGRESS_DOWNLOAD_END,
    PROGRESS_DOWNLOAD_START,
    PROGRESS_DOWNLOAD_STEP,
    PROGRESS_PING,
    PROGRESS_UPLOAD_START,
    PROGRESS_UPLOAD_STEP,
)
from .download import DownloadResult, DownloadTester
from .errors import MeasurementAbortedError
from .history import ResultHistory
from .latency import LatencyResult, LatencyTester
from .models import EventKind, Phase, PhaseResult, ProgressEvent, TestResult, utc_now_iso
from .upload import UploadResult, UploadTester

logger = logging.getLogger(__name__)

Listener = Callable[[ProgressEvent], None]

_NEXT_PHASE = {
    Phase.IDLE: Phase.PING,
    Phase.PING: Phase.DOWNLOAD,
    Phase.DOWNLOAD: Phase.UPLOAD,
}


# ---------------------------------------------------------------------------
# Event stream
# ---------------------------------------------------------------------------

class ProgressStream:
    """Async iterator over the events of one run; ends when the run ends."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def push(self, event: ProgressEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(None)

    def __aiter__(self) -> ProgressStream:
        return self

    async def __anext__(self) -> ProgressEvent:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class SpeedTestRunner:
    """Sequences ping, download and upload into one end-to-end run."""

    def __init__(
        self,
        transfer,  # noqa: ANN001 (HttpTransfer or compatible)
        history: Optional[ResultHistory] = None,
        *,
        ping_count: int = DEFAULT_PING_COUNT,
        download_count: int = DEFAULT_DOWNLOAD_COUNT,
        upload_repeats: int = DEFAULT_UPLOAD_REPEATS,
        max_payload_mb: int = DEFAULT_MAX_PAYLOAD_MB,
        abort_in_flight: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.transfer = transfer
        self.history = history
        self.abort_in_flight = abort_in_flight

        self.latency_tester = LatencyTester(transfer, ping_count=ping_count, sleep=sleep, clock=clock)
        self.download_tester = DownloadTester(transfer, count=download_count, sleep=sleep, clock=clock)
        self.upload_tester = UploadTester(
            transfer,
            repeats=upload_repeats,
            max_payload_mb=max_payload_mb,
            sleep=sleep,
            clock=clock,
        )

        self.latency: Optional[LatencyResult] = None
        self.download: Optional[DownloadResult] = None
        self.upload: Optional[UploadResult] = None
        self.results: Dict[Phase, PhaseResult] = {}

        self._phase = Phase.IDLE
        self._progress = 0.0
        self._running = False
        self._token = CancellationToken()
        self._task: Optional[asyncio.Task] = None
        self._listeners: List[Listener] = []
        self._streams: List[ProgressStream] = []

    # -- State --------------------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def running(self) -> bool:
        return self._running

    # -- Subscriptions ------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def subscribe(self) -> ProgressStream:
        """Stream of events for the next (or current) run."""
        stream = ProgressStream()
        self._streams.append(stream)
        return stream

    # -- Cancellation -------------------------------------------------------

    def cancel(self, reason: str = "Test cancelled") -> None:
        """
        Stop the current run at its next suspension point.

        With ``abort_in_flight`` the running task is cancelled as well, which
        interrupts a transfer that is still in flight.
        """
        if not self._running:
            return
        logger.info("Cancelling run during %s phase", self._phase.value)
        self._token.cancel(reason)
        if self.abort_in_flight and self._task is not None and not self._task.done():
            self._task.cancel()

    # -- Run ----------------------------------------------------------------

    async def run(self, identity: Optional[NetworkIdentity] = None) -> TestResult:
        """Execute ping, download and upload, and return the assembled result."""
        if self._running:
            raise RuntimeError("A test run is already in progress")

        identity = identity or NetworkIdentity()
        self._running = True
        self._token = CancellationToken()
        self._task = asyncio.current_task()
        self._progress = 0.0
        self.latency = self.download = self.upload = None
        self.results = {}

        self._emit(EventKind.STARTED)

        try:
            try:
                result = await self._run_phases(identity)
            except asyncio.CancelledError as exc:
                if not self._token.cancelled:
                    raise
                raise MeasurementAbortedError(self._token.reason) from exc
        except BaseException as exc:
            logger.warning("Test run failed during %s phase: %s", self._phase.value, exc)
            self._emit(EventKind.FAILED)
            raise
        finally:
            self._phase = Phase.IDLE
            self._running = False
            self._task = None
            for stream in self._streams:
                stream.close()
            self._streams = []

        return result

    async def _run_phases(self, identity: NetworkIdentity) -> TestResult:
        token = self._token

        # -- Ping -----------------------------------------------------------
        self._enter(Phase.PING, PROGRESS_PING)
        self.latency_tester.on_progress = lambda ms: self._sample(ms)
        self.latency = await self.latency_tester.test(token)
        self._complete(self.latency.to_phase_result())

        # -- Download -------------------------------------------------------
        token.check()
        self._enter(Phase.DOWNLOAD, PROGRESS_DOWNLOAD_START)
        self.download_tester.on_progress = lambda mbps: self._sample(
            mbps, min(PROGRESS_DOWNLOAD_END, self._progress + PROGRESS_DOWNLOAD_STEP)
        )
        self.download = await self.download_tester.test(token)
        self._complete(self.download.to_phase_result())

        # -- Upload ---------------------------------------------------------
        token.check()
        self._enter(Phase.UPLOAD, PROGRESS_UPLOAD_START)
        self.upload_tester.on_progress = lambda mbps: self._sample(
            mbps, min(PROGRESS_DONE, self._progress + PROGRESS_UPLOAD_STEP)
        )
        self.upload = await self.upload_tester.test(token)
        self._complete(self.upload.to_phase_result())

        token.check()
        result = TestResult(
            date=utc_now_iso(),
            isp=identity.isp,
            ip=identity.ip,
            server=identity.server,
            ping=self.latency.ping_ms,
            jitter=self.latency.jitter_ms,
            download=self.download.speed_mbps,
            upload=self.upload.speed_mbps,
        )

        if self.history is not None:
            self.history.record(result)

        self._phase = Phase.IDLE
        self._advance(PROGRESS_DONE)
        self._emit(EventKind.COMPLETED)
        logger.info(
            "Run complete: ping %.1f ms, download %.2f Mbps, upload %.2f Mbps",
            result.ping, result.download, result.upload,
        )
        return result

    # -- Internals ----------------------------------------------------------

    def _enter(self, phase: Phase, progress: float) -> None:
        if _NEXT_PHASE.get(self._phase) is not phase:
            raise RuntimeError(f"Illegal phase transition {self._phase.value} -> {phase.value}")
        self._phase = phase
        self._advance(progress)
        logger.info("Starting %s phase", phase.value)
        self._emit(EventKind.PHASE_STARTED)

    def _complete(self, result: PhaseResult) -> None:
        self.results[result.kind] = result
        self._emit(EventKind.PHASE_COMPLETED, result.primary)

    def _sample(self, value: float, progress: Optional[float] = None) -> None:
        if progress is not None:
            self._advance(progress)
        self._emit(EventKind.SAMPLE, value)

    def _advance(self, progress: float) -> None:
        self._progress = max(self._progress, progress)

    def _emit(self, kind: EventKind, value: Optional[float] = None) -> None:
        event = ProgressEvent(kind=kind, phase=self._phase, progress=self._progress, value=value)
        for listener in list(self._listeners):
            listener(event)
        for stream in self._streams:
            stream.push(event)
