"""
Data models shared by the samplers, the orchestrator and the history store.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class Phase(str, Enum):
    """Stage of a test run.  Runs move IDLE -> PING -> DOWNLOAD -> UPLOAD -> IDLE."""

    IDLE = "idle"
    PING = "ping"
    DOWNLOAD = "download"
    UPLOAD = "upload"


class EventKind(str, Enum):
    STARTED = "started"
    PHASE_STARTED = "phase_started"
    SAMPLE = "sample"
    PHASE_COMPLETED = "phase_completed"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Samples and phase output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Sample:
    """One timed measurement (ms for latency, Mbps for throughput)."""

    value: float
    timestamp: float


@dataclass(frozen=True)
class PhaseResult:
    """Reduced output of one sampler.  ``secondary`` holds jitter for PING."""

    kind: Phase
    primary: float
    secondary: Optional[float] = None


@dataclass(frozen=True)
class ProgressEvent:
    """Progress notification published by the orchestrator."""

    kind: EventKind
    phase: Phase
    progress: float
    value: Optional[float] = None


# ---------------------------------------------------------------------------
# Test result / history
# ---------------------------------------------------------------------------

def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


_NUMERIC_FIELDS = ("ping", "jitter", "download", "upload")


@dataclass(frozen=True)
class TestResult:
    """Outcome of one completed run.  Never mutated after creation."""

    __test__ = False  # not a pytest test class

    date: str
    isp: str
    ip: str
    server: str
    ping: float
    jitter: float
    download: float
    upload: float

    def __post_init__(self) -> None:
        for name in _NUMERIC_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
                raise ValueError(f"{name} must be a finite, non-negative number (got {value!r})")

    # -- Serialisation ------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TestResult:
        return cls(
            date=str(data.get("date", "")),
            isp=str(data.get("isp", "")),
            ip=str(data.get("ip", "")),
            server=str(data.get("server", "")),
            ping=float(data.get("ping", 0)),
            jitter=float(data.get("jitter", 0)),
            download=float(data.get("download", 0)),
            upload=float(data.get("upload", 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "isp": self.isp,
            "ip": self.ip,
            "server": self.server,
            "ping": self.ping,
            "jitter": self.jitter,
            "download": self.download,
            "upload": self.upload,
        }


@dataclass
class TestHistory:
    """Completed runs, most recent first."""

    __test__ = False

    tests: List[TestResult] = field(default_factory=list)
    last_update: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TestHistory:
        entries = data.get("tests")
        if not isinstance(entries, list):
            entries = []
        last_update = data.get("lastUpdate")
        if not isinstance(last_update, str):
            last_update = None

        tests = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            try:
                tests.append(TestResult.from_dict(entry))
            except (TypeError, ValueError):
                continue  # skip corrupt entries
        return cls(tests=tests, last_update=last_update)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tests": [t.to_dict() for t in self.tests],
            "lastUpdate": self.last_update,
        }
