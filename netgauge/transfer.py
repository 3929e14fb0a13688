"""
Timed transfer primitive.

One HTTP request/response exchange per call, timed with a monotonic clock
from immediately before dispatch to immediately after the full body (or the
upload acknowledgment) has arrived.  All HTTP work goes through a single
``aiohttp.ClientSession`` managed via async-context-manager protocol
(``async with HttpTransfer(endpoint) as transfer: ...``).

No retries happen here: every call is a single attempt and any failure is
raised as ``TransferError`` (or ``PayloadFetchError`` for static payloads).
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

import aiohttp

from .api import Endpoint, NetworkIdentity, fetch_identity
from .constants import (
    BASE_LATENCY_HEADER,
    COMMON_HEADERS,
    CONNECT_TIMEOUT,
    JITTER_HEADER,
    TRANSFER_TIMEOUT,
)
from .errors import PayloadFetchError, TransferError
from .stats import speed_mbps

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransferResult:
    """Outcome of one timed exchange, plus any server-reported metrics."""

    bytes: int
    elapsed_seconds: float
    server_latency_ms: Optional[float] = None
    server_jitter_ms: Optional[float] = None
    server_speed_mbps: Optional[float] = None
    server_duration: Optional[float] = None

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed_seconds * 1000

    @property
    def speed_mbps(self) -> float:
        """Server-reported speed when available, otherwise bytes / elapsed."""
        if self.server_speed_mbps is not None:
            return self.server_speed_mbps
        return speed_mbps(self.bytes, self.elapsed_seconds)


def _header_float(headers: Mapping[str, str], name: str) -> Optional[float]:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _json_float(data: dict, key: str) -> Optional[float]:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


# ---------------------------------------------------------------------------
# HTTP transfer
# ---------------------------------------------------------------------------

class HttpTransfer:
    """Async context-manager performing timed exchanges against one server."""

    def __init__(
        self,
        endpoint: Endpoint,
        clock: Clock = time.perf_counter,
        timeout: float = TRANSFER_TIMEOUT,
    ) -> None:
        self.endpoint = endpoint
        self._clock = clock
        self._timeout = aiohttp.ClientTimeout(total=timeout, connect=CONNECT_TIMEOUT)
        self._session: Optional[aiohttp.ClientSession] = None

    # -- Context manager ----------------------------------------------------

    async def __aenter__(self) -> HttpTransfer:
        # identity encoding so the byte count is what actually crossed the wire
        headers = {**COMMON_HEADERS, "Accept-Encoding": "identity"}
        self._session = aiohttp.ClientSession(headers=headers, timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._session:
            await self._session.close()
            self._session = None

    # -- Internal helpers ---------------------------------------------------

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError(
                "HttpTransfer must be used as an async context manager "
                "(async with HttpTransfer(endpoint) as transfer: ...)"
            )
        return self._session

    @staticmethod
    def _check_status(resp: aiohttp.ClientResponse, url: str) -> None:
        if not 200 <= resp.status < 300:
            raise TransferError(
                f"{resp.method} {url} failed with HTTP {resp.status} {resp.reason or ''}".rstrip(),
                url=url,
                status=resp.status,
            )

    # -- Timed exchanges ----------------------------------------------------

    async def probe(self) -> TransferResult:
        """Zero-payload ``HEAD /probe`` round trip."""
        session = self.session
        url = self.endpoint.probe_url
        try:
            start = self._clock()
            async with session.head(url) as resp:
                end = self._clock()
                self._check_status(resp, url)
                headers = resp.headers
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            raise TransferError(f"HEAD {url} failed: {exc}", url=url) from exc

        return TransferResult(
            bytes=0,
            elapsed_seconds=end - start,
            server_latency_ms=_header_float(headers, BASE_LATENCY_HEADER),
            server_jitter_ms=_header_float(headers, JITTER_HEADER),
        )

    async def download(self) -> TransferResult:
        """``GET /probe``, reading the full fixed-size body."""
        session = self.session
        url = self.endpoint.probe_url
        try:
            start = self._clock()
            async with session.get(url) as resp:
                self._check_status(resp, url)
                body = await resp.read()
                end = self._clock()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            raise TransferError(f"GET {url} failed: {exc}", url=url) from exc

        return TransferResult(bytes=len(body), elapsed_seconds=end - start)

    async def upload(self, payload: bytes) -> TransferResult:
        """``POST /upload`` with a raw body; waits for the JSON acknowledgment."""
        session = self.session
        url = self.endpoint.upload_url
        headers = {"Content-Type": "application/octet-stream"}
        try:
            start = self._clock()
            async with session.post(url, data=payload, headers=headers) as resp:
                self._check_status(resp, url)
                ack = await resp.json(content_type=None)
                end = self._clock()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            raise TransferError(f"POST {url} failed: {exc}", url=url) from exc
        except ValueError as exc:
            raise TransferError(f"POST {url} returned an invalid acknowledgment: {exc}", url=url) from exc

        if not isinstance(ack, dict) or not ack.get("success", False):
            raise TransferError(f"POST {url} was rejected by the server: {ack!r}", url=url)

        return TransferResult(
            bytes=len(payload),
            elapsed_seconds=end - start,
            server_speed_mbps=_json_float(ack, "speed"),
            server_duration=_json_float(ack, "duration"),
        )

    # -- Untimed helpers ----------------------------------------------------

    async def fetch_payload(self, size_mb: int) -> bytes:
        """Fetch the static ``test_{size}mb.bin`` payload used for uploads."""
        session = self.session
        url = self.endpoint.payload_url(size_mb)
        try:
            async with session.get(url) as resp:
                if not 200 <= resp.status < 300:
                    raise PayloadFetchError(
                        f"Failed to fetch test payload {url}: HTTP {resp.status}",
                        size_mb=size_mb,
                        status=resp.status,
                    )
                data = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            raise PayloadFetchError(f"Failed to fetch test payload {url}: {exc}", size_mb=size_mb) from exc

        logger.debug("Fetched %d MiB payload (%d bytes)", size_mb, len(data))
        return data

    async def identity(self) -> NetworkIdentity:
        return await fetch_identity(self.session, self.endpoint)
