"""Exception hierarchy for the measurement core."""
from __future__ import annotations

from typing import Optional


class SpeedgaugeError(Exception):
    """Base class for every error raised by netgauge."""


class TransferError(SpeedgaugeError):
    """A timed HTTP exchange did not complete successfully."""

    def __init__(self, message: str, url: str = "", status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class PayloadFetchError(SpeedgaugeError):
    """A static upload payload could not be fetched from the server."""

    def __init__(self, message: str, size_mb: int, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.size_mb = size_mb
        self.status = status


class MeasurementAbortedError(SpeedgaugeError):
    """The run was cancelled before it completed."""


class MeasurementError(SpeedgaugeError):
    """The collected samples cannot be reduced to a result."""
