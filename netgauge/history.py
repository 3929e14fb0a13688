"""
Test history persistence and display.

``ResultHistory`` owns the retention policy (newest first, capped at
HISTORY_LIMIT) and talks to storage only through the ``HistoryStorage``
port, so the policy can be exercised without touching the disk.

The default port stores ``{"tests": [...], "lastUpdate": "..."}`` in
``~/.speedgauge/history.json``.
"""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .constants import HISTORY_LIMIT
from .models import TestHistory, TestResult, utc_now_iso

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

_DEFAULT_DIR = os.path.join(Path.home(), ".speedgauge")
_DEFAULT_FILE = "history.json"
_MAX_DISPLAY = 20  # show last N entries in --history


def _history_path() -> str:
    return os.path.join(_DEFAULT_DIR, _DEFAULT_FILE)


# ---------------------------------------------------------------------------
# Storage port
# ---------------------------------------------------------------------------

class HistoryStorage(Protocol):
    def load(self) -> TestHistory: ...

    def save(self, history: TestHistory) -> None: ...

    def clear(self) -> None: ...


class MemoryStorage:
    """Keeps the history in process memory."""

    def __init__(self, history: Optional[TestHistory] = None) -> None:
        self._data: Optional[Dict[str, Any]] = history.to_dict() if history else None

    def load(self) -> TestHistory:
        if self._data is None:
            return TestHistory()
        return TestHistory.from_dict(self._data)

    def save(self, history: TestHistory) -> None:
        self._data = history.to_dict()

    def clear(self) -> None:
        self._data = None


class JsonFileStorage:
    """Stores the history as a single JSON document, written atomically."""

    def __init__(self, path: Optional[str] = None) -> None:
        self._path = path

    @property
    def path(self) -> str:
        return self._path or _history_path()

    def load(self) -> TestHistory:
        path = self.path
        if not os.path.isfile(path):
            return TestHistory()

        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable history file %s: %s", path, exc)
            return TestHistory()

        if not isinstance(data, dict):
            logger.warning("Ignoring malformed history file %s", path)
            return TestHistory()
        return TestHistory.from_dict(data)

    def save(self, history: TestHistory) -> None:
        path = self.path
        dir_path = os.path.dirname(path) or "."
        os.makedirs(dir_path, exist_ok=True)
        tmp = os.path.join(dir_path, f".tmp_{os.path.basename(path)}")

        try:
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(history.to_dict(), fh, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except OSError:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def clear(self) -> None:
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass


# ---------------------------------------------------------------------------
# Retention policy
# ---------------------------------------------------------------------------

class ResultHistory:
    """Newest-first, capped list of completed runs backed by a storage port."""

    def __init__(self, storage: HistoryStorage, limit: int = HISTORY_LIMIT) -> None:
        self.storage = storage
        self.limit = limit
        self._history = storage.load()
        if len(self._history.tests) > limit:
            self._history.tests = self._history.tests[:limit]

    @property
    def tests(self) -> List[TestResult]:
        return list(self._history.tests)

    @property
    def last_update(self) -> Optional[str]:
        return self._history.last_update

    def record(self, result: TestResult) -> TestHistory:
        """Prepend *result*, drop entries beyond the cap, and persist."""
        tests = [result, *self._history.tests][: self.limit]
        self._history = TestHistory(tests=tests, last_update=utc_now_iso())
        self.storage.save(self._history)
        logger.debug("History now holds %d results", len(tests))
        return self._history

    def clear(self) -> None:
        self._history = TestHistory()
        self.storage.clear()


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def format_history_table(tests: List[TestResult], limit: int = _MAX_DISPLAY) -> List[dict]:
    """
    Transform history entries into a flat list of dicts suitable for
    tabular display.  Each dict has: date, server, isp, ping, jitter,
    download, upload.
    """
    rows = []
    for t in tests[:limit]:
        try:
            date = datetime.fromisoformat(t.date).strftime("%Y-%m-%d %H:%M")
        except (ValueError, TypeError):
            date = t.date[:16] if t.date else "?"

        rows.append({
            "date": date,
            "server": t.server,
            "isp": t.isp,
            "ping": t.ping,
            "jitter": t.jitter,
            "download": t.download,
            "upload": t.upload,
        })
    return rows


def sparkline(values: List[float]) -> str:
    """Single-line Unicode sparkline chart."""
    if not values:
        return ""
    bars = "▁▂▃▄▅▆▇█"
    lo, hi = min(values), max(values)
    span = hi - lo if hi > lo else 1.0
    return "".join(
        bars[min(int((v - lo) / span * (len(bars) - 1)), len(bars) - 1)]
        for v in values
    )
