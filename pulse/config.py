"""
Engine settings and the JSON file that stores user overrides.

The file lives at ``~/.netpulse/config.json`` and only needs the keys that
differ from the defaults::

    download_url = "https://speed.cloudflare.com/__down?bytes=1000000000"
    upload_url = "https://speed.cloudflare.com/__up"
    latency_url = "https://1.1.1.1"
    latency_method = "head"          # or "websocket"
    probe_count = 5
    download_duration_ms = 7000
    upload_duration_ms = 7000
    interval_ms = 200
    warmup_ms = 1500                 # upload samples dropped before this
    watchdog_grace_ms = 1500         # upload hang allowance beyond the cap
    upload_payload_bytes = 300000000
    upload_transport = "http"        # or "socket"
    chunk_size = 32768
    monitor_minutes = 15
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict

from .constants import (
    CHUNK_SIZE,
    DEFAULT_DURATION_MS,
    DEFAULT_MONITOR_MINUTES,
    DEFAULT_PROBE_COUNT,
    DOWNLOAD_URL,
    LATENCY_URL,
    MAX_DURATION_MS,
    MAX_PROBE_COUNT,
    MIN_DURATION_MS,
    MIN_INTERVAL_MS,
    MIN_PROBE_COUNT,
    SAMPLE_INTERVAL_MS,
    UPLOAD_PAYLOAD_BYTES,
    UPLOAD_URL,
    UPLOAD_WARMUP_MS,
    WATCHDOG_GRACE_MS,
)

logger = logging.getLogger(__name__)

NETPULSE_HOME = Path.home() / ".netpulse"


def _config_path() -> Path:
    return NETPULSE_HOME / "config.json"


# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------

@dataclass
class EngineConfig:
    """Every tunable of a test sequence."""

    download_url: str = DOWNLOAD_URL
    upload_url: str = UPLOAD_URL
    latency_url: str = LATENCY_URL
    latency_method: str = "head"
    probe_count: int = DEFAULT_PROBE_COUNT
    download_duration_ms: float = DEFAULT_DURATION_MS
    upload_duration_ms: float = DEFAULT_DURATION_MS
    interval_ms: float = SAMPLE_INTERVAL_MS
    warmup_ms: float = UPLOAD_WARMUP_MS
    watchdog_grace_ms: float = WATCHDOG_GRACE_MS
    upload_payload_bytes: int = UPLOAD_PAYLOAD_BYTES
    upload_transport: str = "http"
    chunk_size: int = CHUNK_SIZE
    monitor_minutes: int = DEFAULT_MONITOR_MINUTES

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> EngineConfig:
        """Build from a config dict, ignoring unknown keys and ``None`` values."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known and v is not None})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> None:
        """Raise ``ValueError`` if any setting is out of range."""
        if not MIN_PROBE_COUNT <= self.probe_count <= MAX_PROBE_COUNT:
            raise ValueError(f"Probe count must be between {MIN_PROBE_COUNT} and {MAX_PROBE_COUNT}")
        for key in ("download_duration_ms", "upload_duration_ms"):
            value = getattr(self, key)
            if not MIN_DURATION_MS <= value <= MAX_DURATION_MS:
                raise ValueError(
                    f"{key} must be between {MIN_DURATION_MS} and {MAX_DURATION_MS} ms"
                )
        if self.interval_ms < MIN_INTERVAL_MS:
            raise ValueError(f"interval_ms must be at least {MIN_INTERVAL_MS} ms")
        if self.warmup_ms < 0 or self.watchdog_grace_ms < 0:
            raise ValueError("warmup_ms and watchdog_grace_ms must not be negative")
        if self.warmup_ms >= self.upload_duration_ms:
            raise ValueError("warmup_ms must be shorter than upload_duration_ms")
        if self.upload_payload_bytes <= 0 or self.chunk_size <= 0:
            raise ValueError("upload_payload_bytes and chunk_size must be positive")
        if self.upload_transport not in ("http", "socket"):
            raise ValueError("upload_transport must be 'http' or 'socket'")
        if self.latency_method not in ("head", "websocket"):
            raise ValueError("latency_method must be 'head' or 'websocket'")
        if self.monitor_minutes < 1:
            raise ValueError("monitor_minutes must be at least 1")


DEFAULTS: Dict[str, Any] = EngineConfig().to_dict()


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def _stored_overrides() -> Dict[str, Any]:
    """Whatever the user saved; an unreadable or malformed file counts as empty."""
    path = Path(_config_path())
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        logger.warning("Cannot read %s: %s", path, exc)
        return {}

    try:
        stored = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed config file %s", path)
        return {}
    return stored if isinstance(stored, dict) else {}


def load_config() -> Dict[str, Any]:
    """Saved overrides layered on top of :data:`DEFAULTS`."""
    return {**DEFAULTS, **_stored_overrides()}


def load_engine_config() -> EngineConfig:
    return EngineConfig.from_dict(load_config())


def save_config(config: Dict[str, Any]) -> str:
    path = Path(_config_path())
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    logger.debug("Saved %d config keys to %s", len(config), path)
    return str(path)


def get_config_value(key: str) -> Any:
    return load_config().get(key)


def set_config_value(key: str, value: Any) -> str:
    """Persist one override, leaving the other saved keys alone."""
    overrides = _stored_overrides()
    overrides[key] = value
    return save_config(overrides)
