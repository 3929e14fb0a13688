"""Cooperative cancellation shared by the orchestrator and the samplers."""
from __future__ import annotations

from .errors import MeasurementAbortedError


class CancellationToken:
    """
    One-way flag checked at every suspension boundary of a run.

    Tripping the token does not interrupt a transfer that is already in
    flight; the sampler discards its result when it checks the token after
    the transfer returns.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason

    def check(self) -> None:
        """Raise ``MeasurementAbortedError`` once the token has been tripped."""
        if self._cancelled:
            raise MeasurementAbortedError(self.reason)
