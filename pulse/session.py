"""
Session state shared between the orchestrator and the running phase.

The cancellation token is the only cross-thread mutable flag; everything
else in a session is written by the orchestrator alone.
"""
from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class CancelToken:
    """Cooperative cancellation flag, safe to set from any thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __bool__(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


class SessionPhase(enum.Enum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    MEASURING_LATENCY = "measuring_latency"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = {SessionPhase.COMPLETED, SessionPhase.CANCELLED, SessionPhase.FAILED}

_TRANSITIONS = {
    SessionPhase.IDLE: {SessionPhase.DOWNLOADING},
    SessionPhase.DOWNLOADING: {SessionPhase.MEASURING_LATENCY},
    SessionPhase.MEASURING_LATENCY: {SessionPhase.UPLOADING},
    SessionPhase.UPLOADING: {SessionPhase.COMPLETED},
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class TestSession:
    """One run of the Download -> Latency -> Upload sequence."""

    __test__ = False  # keep pytest from collecting this as a test class

    phase: SessionPhase = SessionPhase.IDLE
    token: CancelToken = field(default_factory=CancelToken)
    started_at_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    current_latency_ms: float = 0.0
    ended_in: Optional[SessionPhase] = None

    @property
    def cancel_requested(self) -> bool:
        return self.token.cancelled

    def advance(self, target: SessionPhase) -> None:
        """Move to *target*; Cancelled / Failed are reachable from any live phase."""
        if self.phase.terminal:
            raise InvalidTransition(f"session already {self.phase.value}")
        if target in (SessionPhase.CANCELLED, SessionPhase.FAILED):
            self.ended_in = self.phase
            self.phase = target
            return
        if target not in _TRANSITIONS.get(self.phase, set()):
            raise InvalidTransition(f"{self.phase.value} -> {target.value}")
        self.phase = target


@dataclass
class TestResult:
    """Combined outcome of a full sequence, handed to persistence."""

    __test__ = False

    download_mbps: float = 0.0
    upload_mbps: float = 0.0
    latency_ms: float = 0.0
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.completed_at.isoformat(),
            "download_mbps": round(self.download_mbps, 2),
            "upload_mbps": round(self.upload_mbps, 2),
            "latency_ms": round(self.latency_ms, 1),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TestResult:
        raw_ts = data.get("timestamp")
        try:
            completed_at = datetime.fromisoformat(raw_ts) if raw_ts else datetime.now(timezone.utc)
        except (TypeError, ValueError):
            completed_at = datetime.now(timezone.utc)
        return cls(
            download_mbps=float(data.get("download_mbps", 0.0)),
            upload_mbps=float(data.get("upload_mbps", 0.0)),
            latency_ms=float(data.get("latency_ms", 0.0)),
            completed_at=completed_at,
        )
