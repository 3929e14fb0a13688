"""
Server endpoint layout and the network-identity collaborator.

``Endpoint`` turns a base URL into the concrete URLs used by the transfer
primitive.  ``fetch_identity`` asks the server who the client is (IP, ISP,
serving location); it never fails a run -- on any error it falls back to
``Unknown`` values.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict

import aiohttp

from .constants import NETWORK_INFO_PATH, PAYLOAD_PATH_TEMPLATE, PROBE_PATH, UPLOAD_PATH

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Endpoint:
    """A single speedgauge server."""

    base_url: str

    def __post_init__(self) -> None:
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"Server URL must start with http:// or https:// (got {self.base_url!r})")
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))

    # -- Derived URLs -------------------------------------------------------

    @property
    def probe_url(self) -> str:
        """HEAD for latency, GET for the fixed-size download body."""
        return f"{self.base_url}{PROBE_PATH}"

    @property
    def upload_url(self) -> str:
        return f"{self.base_url}{UPLOAD_PATH}"

    @property
    def network_info_url(self) -> str:
        return f"{self.base_url}{NETWORK_INFO_PATH}"

    def payload_url(self, size_mb: int) -> str:
        return self.base_url + PAYLOAD_PATH_TEMPLATE.format(size=size_mb)


@dataclass(frozen=True)
class NetworkIdentity:
    """Who the client is, as seen by the server."""

    ip: str = UNKNOWN
    isp: str = UNKNOWN
    server: str = UNKNOWN

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> NetworkIdentity:
        return cls(
            ip=str(data.get("ip") or UNKNOWN),
            isp=str(data.get("isp") or UNKNOWN),
            server=str(data.get("dataCenter") or data.get("server") or UNKNOWN),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"ip": self.ip, "isp": self.isp, "server": self.server}


# ---------------------------------------------------------------------------
# Identity lookup
# ---------------------------------------------------------------------------

async def fetch_identity(session: aiohttp.ClientSession, endpoint: Endpoint) -> NetworkIdentity:
    """Query ``GET /network-info``; returns ``Unknown`` fields on failure."""
    try:
        async with session.get(endpoint.network_info_url) as resp:
            resp.raise_for_status()
            data = await resp.json()
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as exc:
        logger.warning("Could not fetch network identity from %s: %s", endpoint.network_info_url, exc)
        return NetworkIdentity()

    if not isinstance(data, dict):
        logger.warning("Unexpected network identity payload: %r", data)
        return NetworkIdentity()
    if not data.get("success", True):
        logger.warning("Server could not determine network identity: %s", data.get("error", ""))

    return NetworkIdentity.from_dict(data)
