"""Scripted stand-ins for HttpTransfer, the clock and asyncio.sleep."""

from netgauge.api import NetworkIdentity
from netgauge.constants import DOWNLOAD_SIZE
from netgauge.errors import PayloadFetchError
from netgauge.transfer import TransferResult


def probe(latency_ms, jitter_ms=None):
    return TransferResult(bytes=0, elapsed_seconds=latency_ms / 1000, server_jitter_ms=jitter_ms)


def download(mbps, size=DOWNLOAD_SIZE):
    return TransferResult(bytes=size, elapsed_seconds=size * 8 / (mbps * 1_000_000))


def upload(mbps, size=1):
    return TransferResult(bytes=size, elapsed_seconds=1.0, server_speed_mbps=mbps)


class FakeTransport:
    """
    Replays scripted results in order.  A scripted exception is raised
    instead of returned.  Payloads are ``size_mb`` bytes long so tests can
    tell tiers apart without allocating MiBs.
    """

    def __init__(self, probes=(), downloads=(), uploads=(), missing_payloads=(), identity=None):
        self.probes = list(probes)
        self.downloads = list(downloads)
        self.uploads = list(uploads)
        self.missing_payloads = set(missing_payloads)
        self._identity = identity or NetworkIdentity(ip="10.0.0.1", isp="Test ISP", server="Test DC")
        self.calls = []
        self.before_transfer = None

    @staticmethod
    def _next(queue):
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def _hook(self):
        if self.before_transfer is not None:
            await self.before_transfer()

    async def probe(self):
        self.calls.append("probe")
        await self._hook()
        return self._next(self.probes)

    async def download(self):
        self.calls.append("download")
        await self._hook()
        return self._next(self.downloads)

    async def upload(self, payload):
        self.calls.append(("upload", len(payload)))
        await self._hook()
        return self._next(self.uploads)

    async def fetch_payload(self, size_mb):
        self.calls.append(("fetch", size_mb))
        if size_mb in self.missing_payloads:
            raise PayloadFetchError(f"no {size_mb} MiB payload", size_mb=size_mb, status=404)
        return b"x" * size_mb

    async def identity(self):
        return self._identity


class RecordingSleep:
    """No-op ``asyncio.sleep`` replacement that remembers every delay."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is awaited."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.now += seconds
