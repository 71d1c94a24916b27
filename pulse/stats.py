"""
Throughput and latency statistics.

Pure functions and small containers; nothing here touches the network.
"""
from __future__ import annotations

import statistics
from collections import deque
from dataclasses import dataclass
from typing import Deque, List

from .constants import WINDOW_SIZE


# ---------------------------------------------------------------------------
# Samples
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Sample:
    """Instantaneous throughput over one interval, stamped relative to phase start."""

    timestamp_ms: int
    instant_mbps: float

    def to_dict(self) -> dict:
        return {
            "timestamp_ms": self.timestamp_ms,
            "instant_mbps": round(self.instant_mbps, 3),
        }


class WindowedAverager:
    """
    Sliding-window mean for live display plus a full-run mean for the result.

    Not thread-safe: the sampler driving a phase must be its only writer.
    """

    def __init__(self, window_size: int = WINDOW_SIZE) -> None:
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        self._window: Deque[float] = deque(maxlen=window_size)
        self._all: List[float] = []

    def record(self, value: float) -> None:
        self._window.append(value)
        self._all.append(value)

    def smoothed(self) -> float:
        if not self._window:
            return 0.0
        return sum(self._window) / len(self._window)

    def final_average(self) -> float:
        """Mean of every recorded value, 0.0 when nothing was recorded."""
        if not self._all:
            return 0.0
        return sum(self._all) / len(self._all)

    @property
    def window(self) -> List[float]:
        return list(self._window)

    @property
    def count(self) -> int:
        return len(self._all)


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------

def to_mbps(byte_count: int, seconds: float) -> float:
    """Bits per second over *seconds*, expressed in megabits."""
    if seconds <= 0:
        return 0.0
    return (byte_count * 8) / (1_000_000 * seconds)


def calculate_jitter(samples: List[float]) -> float:
    """Mean absolute difference between consecutive samples."""
    if len(samples) < 2:
        return 0.0
    return statistics.mean(abs(later - earlier) for earlier, later in zip(samples, samples[1:]))


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------

def format_speed(speed_mbps: float) -> str:
    """``"94.20 Mbps"``, switching to Gbps from 1000 Mbps up."""
    value, unit = (speed_mbps / 1000, "Gbps") if speed_mbps >= 1000 else (speed_mbps, "Mbps")
    return f"{value:.2f} {unit}"


def format_latency(latency_ms: float) -> str:
    if latency_ms < 1000:
        return f"{latency_ms:.1f} ms"
    return f"{latency_ms / 1000:.2f} s"
