"""
Shared constants used across all netgauge modules.

Centralises magic numbers, default headers, and tunables so they live in
exactly one place.
"""

# ---------------------------------------------------------------------------
# HTTP headers
# ---------------------------------------------------------------------------

USER_AGENT = "speedgauge/1.0 (+https://github.com/speedgauge/speedgauge)"

COMMON_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
}

# ---------------------------------------------------------------------------
# Server endpoints
# ---------------------------------------------------------------------------

DEFAULT_SERVER_URL = "http://127.0.0.1:8080"
DEFAULT_SERVER_PORT = 8080

PROBE_PATH = "/probe"
UPLOAD_PATH = "/upload"
NETWORK_INFO_PATH = "/network-info"
PAYLOAD_PATH_TEMPLATE = "/test_{size}mb.bin"

BASE_LATENCY_HEADER = "X-Base-Latency"
JITTER_HEADER = "X-Jitter"

# ---------------------------------------------------------------------------
# Latency
# ---------------------------------------------------------------------------

DEFAULT_PING_COUNT = 8
MIN_PING_COUNT = 1
MAX_PING_COUNT = 100
PING_DELAY = 0.2                 # seconds between consecutive probes
PING_TRIM = 2                    # samples dropped from each end
MIN_TRIM_SAMPLES = 5             # below this, use every sample untrimmed

# ---------------------------------------------------------------------------
# Download
# ---------------------------------------------------------------------------

DEFAULT_DOWNLOAD_COUNT = 8
MIN_DOWNLOAD_COUNT = 1
MAX_DOWNLOAD_COUNT = 64
DOWNLOAD_SIZE = 2 * 1024 * 1024  # 2 MiB served by GET /probe
DOWNLOAD_PAUSE = 0.05            # seconds between transfers

# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

DEFAULT_UPLOAD_REPEATS = 3
MIN_UPLOAD_REPEATS = 1
MAX_UPLOAD_REPEATS = 20
UPLOAD_PAUSE = 1.0               # seconds between repetitions
PROBE_PAYLOAD_MB = 1

# (exclusive upper bound in Mbps, payload size in MiB), ascending thresholds
UPLOAD_TIERS = (
    (5.0, 5),
    (20.0, 10),
    (float("inf"), 25),
)

PAYLOAD_SIZES_MB = (1, 2, 4, 5, 10, 25)
DEFAULT_MAX_PAYLOAD_MB = 25

MAX_PLAUSIBLE_SPEED = 1000.0     # Mbps; samples at or above are discarded

# ---------------------------------------------------------------------------
# Progress scalar (percent)
# ---------------------------------------------------------------------------

PROGRESS_PING = 10.0
PROGRESS_DOWNLOAD_START = 30.0
PROGRESS_DOWNLOAD_STEP = 4.0
PROGRESS_DOWNLOAD_END = 60.0
PROGRESS_UPLOAD_START = 60.0
PROGRESS_UPLOAD_STEP = 5.0
PROGRESS_DONE = 100.0

# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

HISTORY_LIMIT = 100

# ---------------------------------------------------------------------------
# Timeouts
# ---------------------------------------------------------------------------

CONNECT_TIMEOUT = 5.0
TRANSFER_TIMEOUT = 60.0
