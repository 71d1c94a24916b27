"""
Interval sampling shared by the download and upload phases.

:class:`IntervalMeter` turns a stream of byte counts into interval samples
and smoothed live values.  :class:`PhaseCompletion` delivers the phase's
callbacks and guarantees exactly one terminal notification.
"""
from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .constants import SAMPLE_INTERVAL_MS, WINDOW_SIZE
from .errors import ErrorKind
from .session import CancelToken
from .stats import Sample, WindowedAverager, to_mbps

logger = logging.getLogger(__name__)

InstantCallback = Callable[[float], None]
DoneCallback = Callable[[float], None]
ErrorCallback = Callable[[ErrorKind], None]


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------

class PhaseStatus(enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class PhaseOutcome:
    """
    Value returned by every phase function.

    ``error`` is the failure kind of a FAILED phase.  A COMPLETED upload that
    the watchdog cut short carries ``TRANSPORT_HANG`` there as a notice.
    """

    status: PhaseStatus
    average_mbps: float = 0.0
    error: Optional[ErrorKind] = None
    samples: List[Sample] = field(default_factory=list)
    bytes_total: int = 0
    duration_ms: float = 0.0
    watchdog_fired: bool = False

    @property
    def ok(self) -> bool:
        return self.status is PhaseStatus.COMPLETED

    def to_dict(self) -> dict:
        result: dict = {
            "status": self.status.value,
            "speed_mbps": round(self.average_mbps, 2),
            "bytes_total": self.bytes_total,
            "duration_ms": round(self.duration_ms, 2),
            "samples": [round(s.instant_mbps, 2) for s in self.samples],
        }
        if self.error is not None:
            result["error"] = self.error.code
        if self.watchdog_fired:
            result["watchdog_fired"] = True
        return result


# ---------------------------------------------------------------------------
# Interval meter
# ---------------------------------------------------------------------------

class IntervalMeter:
    """
    Accumulates transferred bytes and closes an interval sample every
    *interval_ms*.

    Bytes moved during the first *warmup_ms* are counted in ``bytes_total``
    but never sampled; the first interval opens when the warm-up ends.
    """

    def __init__(
        self,
        interval_ms: float = SAMPLE_INTERVAL_MS,
        warmup_ms: float = 0.0,
        window_size: int = WINDOW_SIZE,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.interval = interval_ms / 1000
        self.warmup = warmup_ms / 1000
        self.averager = WindowedAverager(window_size)
        self.samples: List[Sample] = []
        self.bytes_total = 0
        self._clock = clock
        self.started = clock()
        self._last_tick = self.started
        self._interval_bytes = 0

    def elapsed(self) -> float:
        """Seconds since the phase started."""
        return self._clock() - self.started

    def add(self, n: int) -> Optional[float]:
        """Count *n* bytes.  Returns the smoothed value when an interval closes."""
        now = self._clock()
        self.bytes_total += n

        if now - self.started < self.warmup:
            self._last_tick = now
            self._interval_bytes = 0
            return None

        self._interval_bytes += n
        span = now - self._last_tick
        if span < self.interval:
            return None

        mbps = to_mbps(self._interval_bytes, span)
        self.samples.append(Sample(int((now - self.started) * 1000), mbps))
        self.averager.record(mbps)
        self._interval_bytes = 0
        self._last_tick = now
        return self.averager.smoothed()

    def final_average(self) -> float:
        return self.averager.final_average()


# ---------------------------------------------------------------------------
# Callback delivery
# ---------------------------------------------------------------------------

class PhaseCompletion:
    """
    Delivers one phase's callbacks.

    ``done`` and ``error`` are mutually exclusive and fire at most once in
    total, whichever path (normal or watchdog) gets there first.  Once the
    token is cancelled nothing further is delivered.
    """

    def __init__(
        self,
        token: CancelToken,
        on_instant: Optional[InstantCallback] = None,
        on_done: Optional[DoneCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        label: str = "phase",
    ) -> None:
        self.token = token
        self.on_instant = on_instant
        self.on_done = on_done
        self.on_error = on_error
        self.label = label
        self._lock = threading.Lock()
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def _claim(self) -> bool:
        with self._lock:
            if self._finished:
                return False
            self._finished = True
            return True

    def instant(self, mbps: float) -> None:
        if self._finished or self.token.cancelled:
            return
        if self.on_instant:
            self.on_instant(mbps)

    def done(self, average_mbps: float) -> bool:
        """Deliver completion.  Returns False if a terminal call already won."""
        if not self._claim():
            return False
        if self.token.cancelled:
            logger.debug("%s: completion suppressed after cancel", self.label)
            return False
        if self.on_done:
            self.on_done(average_mbps)
        return True

    def error(self, kind: ErrorKind) -> bool:
        if not self._claim():
            return False
        if self.token.cancelled:
            logger.debug("%s: %s suppressed after cancel", self.label, kind.name)
            return False
        if self.on_error:
            self.on_error(kind)
        return True

    def abandon(self) -> None:
        """Mark the phase finished without delivering anything."""
        self._claim()
