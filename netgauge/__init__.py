"""speedgauge measurement library -- transfers, samplers, orchestration and history."""

from .api import Endpoint, NetworkIdentity, fetch_identity
from .cancel import CancellationToken
from .download import DownloadResult, DownloadTester
from .errors import (
    MeasurementAbortedError,
    MeasurementError,
    PayloadFetchError,
    SpeedgaugeError,
    TransferError,
)
from .history import JsonFileStorage, MemoryStorage, ResultHistory
from .latency import LatencyResult, LatencyTester, PingResult
from .models import EventKind, Phase, PhaseResult, ProgressEvent, Sample, TestHistory, TestResult
from .runner import ProgressStream, SpeedTestRunner
from .stats import (
    format_latency,
    format_speed,
    median_sample,
    reduce_latency,
    reduce_upload,
    speed_mbps,
    weighted_mean,
)
from .transfer import HttpTransfer, TransferResult
from .upload import UploadResult, UploadTester, select_tier

__all__ = [
    "CancellationToken",
    "DownloadResult",
    "DownloadTester",
    "Endpoint",
    "EventKind",
    "HttpTransfer",
    "JsonFileStorage",
    "LatencyResult",
    "LatencyTester",
    "MeasurementAbortedError",
    "MeasurementError",
    "MemoryStorage",
    "NetworkIdentity",
    "PayloadFetchError",
    "Phase",
    "PhaseResult",
    "PingResult",
    "ProgressEvent",
    "ProgressStream",
    "ResultHistory",
    "Sample",
    "SpeedTestRunner",
    "SpeedgaugeError",
    "TestHistory",
    "TestResult",
    "TransferError",
    "TransferResult",
    "UploadResult",
    "UploadTester",
    "fetch_identity",
    "format_latency",
    "format_speed",
    "median_sample",
    "reduce_latency",
    "reduce_upload",
    "select_tier",
    "speed_mbps",
    "weighted_mean",
]
