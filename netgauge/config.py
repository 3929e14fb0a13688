"""
User configuration file support.

Reads/writes ``~/.speedgauge/config.json``.

Supported keys::

    server_url = "http://127.0.0.1:8080"
    max_payload_mb = 25      # largest upload body the server accepts
    ping_count = 8
    download_count = 8
    upload_repeats = 3
    csv_file = ""            # auto-append CSV path
    log_level = "WARNING"
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

from .constants import (
    DEFAULT_DOWNLOAD_COUNT,
    DEFAULT_MAX_PAYLOAD_MB,
    DEFAULT_PING_COUNT,
    DEFAULT_SERVER_URL,
    DEFAULT_UPLOAD_REPEATS,
)

logger = logging.getLogger(__name__)

_CONFIG_DIR = os.path.join(Path.home(), ".speedgauge")
_CONFIG_FILE = "config.json"


def _config_path() -> str:
    return os.path.join(_CONFIG_DIR, _CONFIG_FILE)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULTS: Dict[str, Any] = {
    "server_url": DEFAULT_SERVER_URL,
    "max_payload_mb": DEFAULT_MAX_PAYLOAD_MB,
    "ping_count": DEFAULT_PING_COUNT,
    "download_count": DEFAULT_DOWNLOAD_COUNT,
    "upload_repeats": DEFAULT_UPLOAD_REPEATS,
    "csv_file": "",
    "log_level": "WARNING",
}


# ---------------------------------------------------------------------------
# Read / Write
# ---------------------------------------------------------------------------

def load_config() -> Dict[str, Any]:
    """Load config from disk, returning defaults for missing keys."""
    path = _config_path()
    config = dict(DEFAULTS)

    if not os.path.isfile(path):
        return config

    try:
        with open(path, encoding="utf-8") as fh:
            user = json.load(fh)
        if isinstance(user, dict):
            config.update(user)
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", path, exc)

    return config


def save_config(config: Dict[str, Any]) -> str:
    """Write *config* to disk.  Returns the file path."""
    path = _config_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)

    with open(path, "w", encoding="utf-8") as fh:
        json.dump(config, fh, indent=2, ensure_ascii=False)

    return path


def get_config_value(key: str) -> Any:
    """Get a single config value."""
    return load_config().get(key, DEFAULTS.get(key))


def set_config_value(key: str, value: Any) -> str:
    """Set a single config value and persist.  Returns file path."""
    config = load_config()
    config[key] = value
    return save_config(config)


def config_path() -> str:
    """Return the config file path (for display purposes)."""
    return _config_path()


def resolve_settings(config: Dict[str, Any], **overrides: Any) -> Dict[str, Any]:
    """
    Merge command-line *overrides* over *config*.

    ``None`` means "not given on the command line" and keeps the configured
    value.  Numeric keys are coerced to the type of their default so a
    hand-edited ``"8"`` in the JSON file still works.
    """
    settings = dict(config)
    settings.update({k: v for k, v in overrides.items() if v is not None})

    for key, default in DEFAULTS.items():
        if isinstance(default, bool) or not isinstance(default, (int, float)):
            continue
        try:
            settings[key] = type(default)(settings.get(key, default))
        except (TypeError, ValueError):
            logger.warning("Invalid %s=%r in config; using %r", key, settings.get(key), default)
            settings[key] = default

    return settings
