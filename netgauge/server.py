"""
Reference speedgauge server.

An ``aiohttp.web`` application exposing the endpoints the measurement core
depends on.  It does not measure the real network: every response is
shaped by ``NetworkConditions`` (artificial latency, bandwidth and
congestion), drawn from an injected ``random.Random`` so runs can be
reproduced with a seed.  ``sleep`` and ``clock`` are injectable too, which
lets tests drive the server on a fake clock.

Endpoints::

    HEAD /probe            latency probe, X-Base-Latency / X-Jitter headers
    GET  /probe            fixed-size body delivered at a synthetic speed
    POST /upload           JSON {success, speed, size, duration, ...}
    GET  /test_{n}mb.bin   static upload payloads (1/2/4/5/10/25 MiB)
    GET  /network-info     JSON {ip, isp, dataCenter, success}
"""
from __future__ import annotations

import asyncio
import logging
import math
import os
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from aiohttp import web

from .constants import (
    BASE_LATENCY_HEADER,
    DEFAULT_SERVER_PORT,
    DOWNLOAD_SIZE,
    JITTER_HEADER,
    NETWORK_INFO_PATH,
    PAYLOAD_PATH_TEMPLATE,
    PAYLOAD_SIZES_MB,
    PROBE_PATH,
    UPLOAD_PATH,
)

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
NO_STORE = {"Cache-Control": "no-store"}


# ---------------------------------------------------------------------------
# Network conditions
# ---------------------------------------------------------------------------

@dataclass
class NetworkConditions:
    """Envelope for the synthetic network.  Latencies in ms, speeds in Mbps."""

    latency_min: float = 5.0
    latency_max: float = 20.0
    jitter_min: float = 1.0
    jitter_max: float = 5.0

    download_min: float = 45.0
    download_max: float = 65.0
    download_variance: float = 0.15
    download_size: int = DOWNLOAD_SIZE

    upload_processing_ms: float = 200.0
    upload_processing_variance: float = 0.5
    upload_min: float = 2.0
    upload_max: float = 12.0
    upload_base_latency_ms: float = 50.0
    upload_network_jitter: float = 0.3
    upload_congestion_factor: float = 2.0
    upload_speed_variance: float = 0.4
    upload_final_variation: float = 0.05

    @classmethod
    def fixed(
        cls,
        latency_ms: float,
        jitter_ms: float,
        download_mbps: float,
        upload_mbps: float,
    ) -> NetworkConditions:
        """Conditions with every envelope collapsed to a single value."""
        return cls(
            latency_min=latency_ms,
            latency_max=latency_ms,
            jitter_min=jitter_ms,
            jitter_max=jitter_ms,
            download_min=download_mbps,
            download_max=download_mbps,
            download_variance=0.0,
            upload_processing_variance=0.0,
            upload_min=upload_mbps,
            upload_max=upload_mbps,
            upload_network_jitter=0.0,
            upload_speed_variance=0.0,
            upload_final_variation=0.0,
        )


class NetworkShaper:
    """Draws the artificial delays and speeds from ``NetworkConditions``."""

    def __init__(self, conditions: NetworkConditions, rng: random.Random) -> None:
        self.conditions = conditions
        self.rng = rng

    def _between(self, low: float, high: float) -> float:
        return low + self.rng.random() * (high - low)

    def _spread(self, fraction: float) -> float:
        """Uniform draw in [-fraction, +fraction)."""
        return self.rng.random() * fraction * 2 - fraction

    def latency(self) -> float:
        c = self.conditions
        return self._between(c.latency_min, c.latency_max)

    def probe(self) -> Tuple[float, float, float]:
        """Return ``(base_latency_ms, jitter_ms, delay_ms)`` for one probe."""
        c = self.conditions
        base = self.latency()
        jitter = self._between(c.jitter_min, c.jitter_max)
        delay = base + (jitter if self.rng.random() > 0.5 else -jitter)
        return base, jitter, max(1.0, delay)

    def download_speed(self) -> float:
        c = self.conditions
        base = self._between(c.download_min, c.download_max)
        variance = base * c.download_variance * (self.rng.random() * 2 - 1)
        return max(c.download_min, base + variance)

    def processing_time(self) -> float:
        c = self.conditions
        return c.upload_processing_ms * (1 + self.rng.random() * c.upload_processing_variance)

    def upload_latency(self, size: int) -> float:
        """Base latency with network jitter, plus a term growing with payload size."""
        c = self.conditions
        latency = c.upload_base_latency_ms * (1 + self._spread(c.upload_network_jitter))
        return latency + math.log2(size / MIB + 1) * 20

    def upload_speed(self, size: int, duration: float) -> Tuple[float, float, float]:
        """
        Shape a raw upload into ``(speed_mbps, duration_s, congestion)``.

        Larger payloads see more congestion; the result is clamped to the
        upload envelope and given a small final fluctuation.
        """
        c = self.conditions
        congestion = max(1.0, math.log2(size / MIB + 1) * c.upload_congestion_factor)
        duration *= congestion
        speed = (size * 8) / duration / 1_000_000
        speed *= 1 + self._spread(c.upload_speed_variance)
        speed = min(max(speed, c.upload_min), c.upload_max)
        speed *= 1 + self._spread(c.upload_final_variation)
        return round(speed, 2), duration, congestion


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

def payload_filename(size_mb: int) -> str:
    return PAYLOAD_PATH_TEMPLATE.format(size=size_mb).lstrip("/")


def generate_payload_files(
    directory: str,
    sizes: Sequence[int] = PAYLOAD_SIZES_MB,
    rng: Optional[random.Random] = None,
) -> List[str]:
    """Write random ``test_{n}mb.bin`` files into *directory*.  Returns their paths."""
    rng = rng or random.Random()
    os.makedirs(directory, exist_ok=True)
    paths = []
    for size_mb in sizes:
        path = os.path.join(directory, payload_filename(size_mb))
        with open(path, "wb") as fh:
            fh.write(rng.randbytes(size_mb * MIB))
        logger.info("Created %s (%d MiB)", path, size_mb)
        paths.append(path)
    return paths


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

class ReferenceServer:
    """Request handlers bound to one set of conditions and one randomness source."""

    def __init__(
        self,
        conditions: Optional[NetworkConditions] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
        payload_dir: Optional[str] = None,
        payload_sizes: Sequence[int] = PAYLOAD_SIZES_MB,
        isp: str = "Development Environment",
        data_center: str = "Local Server",
    ) -> None:
        self.conditions = conditions or NetworkConditions()
        self.rng = rng or random.Random()
        self.shaper = NetworkShaper(self.conditions, self.rng)
        self._sleep = sleep
        self._clock = clock
        self.payload_dir = payload_dir
        self.payload_sizes = tuple(payload_sizes)
        self.isp = isp
        self.data_center = data_center
        self._payloads: Dict[int, bytes] = {}
        self._download_body = bytes(self.conditions.download_size)

    def make_app(self) -> web.Application:
        largest = max(self.payload_sizes) if self.payload_sizes else 1
        app = web.Application(client_max_size=(largest + 1) * MIB)
        app.add_routes([
            web.head(PROBE_PATH, self.probe_head),
            web.get(PROBE_PATH, self.probe_get, allow_head=False),
            web.post(UPLOAD_PATH, self.upload),
            web.get(PAYLOAD_PATH_TEMPLATE.format(size=r"{size:\d+}"), self.payload),
            web.get(NETWORK_INFO_PATH, self.network_info),
        ])
        return app

    # -- Handlers -----------------------------------------------------------

    async def probe_head(self, request: web.Request) -> web.Response:
        base, jitter, delay = self.shaper.probe()
        await self._sleep(delay / 1000)
        return web.Response(
            headers={
                **NO_STORE,
                BASE_LATENCY_HEADER: str(base),
                JITTER_HEADER: str(jitter),
            }
        )

    async def probe_get(self, request: web.Request) -> web.Response:
        await self._sleep(self.shaper.latency() / 1000)

        speed = self.shaper.download_speed()
        megabits = len(self._download_body) * 8 / 1_000_000
        await self._sleep(megabits / speed)

        return web.Response(
            body=self._download_body,
            content_type="application/octet-stream",
            headers=NO_STORE,
        )

    async def upload(self, request: web.Request) -> web.Response:
        processing = self.shaper.processing_time()
        await self._sleep(processing / 1000)
        start = self._clock()

        data = await request.read()
        size = len(data)

        latency = self.shaper.upload_latency(size)
        await self._sleep(latency / 1000)
        elapsed = self._clock() - start

        try:
            speed, duration, congestion = self.shaper.upload_speed(
                size, elapsed + (processing + latency) / 1000
            )
        except (ValueError, ZeroDivisionError) as exc:
            logger.error("Upload test error: %s", exc)
            return web.json_response({"success": False, "error": "Upload test failed"}, status=500)

        logger.debug("Upload of %d bytes shaped to %.2f Mbps", size, speed)
        return web.json_response({
            "success": True,
            "speed": speed,
            "size": size,
            "duration": duration,
            "latency": round(latency, 2),
            "congestion": round(congestion, 2),
            "processing_time": round(processing, 2),
        })

    async def payload(self, request: web.Request) -> web.Response:
        size_mb = int(request.match_info["size"])
        if size_mb not in self.payload_sizes:
            raise web.HTTPNotFound(text=f"No {size_mb} MiB test payload")
        return web.Response(
            body=self._payload(size_mb),
            content_type="application/octet-stream",
            headers=NO_STORE,
        )

    async def network_info(self, request: web.Request) -> web.Response:
        forwarded = request.headers.get("X-Forwarded-For", "")
        ip = forwarded.split(",")[0].strip() or request.headers.get("X-Real-IP") or request.remote

        if not ip:
            return web.json_response({
                "ip": "Unknown",
                "isp": "Unknown ISP",
                "dataCenter": "Unknown",
                "success": False,
                "error": "Could not determine client IP address",
            })

        return web.json_response({
            "ip": ip,
            "isp": self.isp,
            "dataCenter": self.data_center,
            "success": True,
        })

    # -- Internals ----------------------------------------------------------

    def _payload(self, size_mb: int) -> bytes:
        if size_mb not in self._payloads:
            data = None
            if self.payload_dir:
                path = os.path.join(self.payload_dir, payload_filename(size_mb))
                if os.path.isfile(path):
                    with open(path, "rb") as fh:
                        data = fh.read()
            if data is None:
                data = self.rng.randbytes(size_mb * MIB)
            self._payloads[size_mb] = data
        return self._payloads[size_mb]


def create_app(
    conditions: Optional[NetworkConditions] = None,
    seed: Optional[int] = None,
    **kwargs,
) -> web.Application:
    """Build the reference application; *seed* makes the shaping reproducible."""
    rng = kwargs.pop("rng", None) or random.Random(seed)
    return ReferenceServer(conditions, rng=rng, **kwargs).make_app()


def run_server(
    host: str = "127.0.0.1",
    port: int = DEFAULT_SERVER_PORT,
    conditions: Optional[NetworkConditions] = None,
    seed: Optional[int] = None,
    payload_dir: Optional[str] = None,
) -> None:
    """Serve the reference application until interrupted."""
    app = create_app(conditions, seed=seed, payload_dir=payload_dir)
    logger.info("Reference server listening on http://%s:%d", host, port)
    web.run_app(app, host=host, port=port, print=None)
