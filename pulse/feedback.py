"""
Qualitative feedback and comparison helpers.

Maps a download speed to a plain-language assessment, and computes deltas
against the previous stored result.  Pure functions, no engine state.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from .session import TestResult


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------

_TIERS = [
    (200.0, "Very fast", "green",
     "Your Internet connection is very fast. It handles 4K streaming and gaming "
     "on multiple devices."),
    (150.0, "Fast", "green",
     "Your connection is fast. Great for high-quality streaming and smooth gaming "
     "simultaneously."),
    (100.0, "Good", "yellow",
     "Good connection. Sufficient for HD streaming and standard online activities "
     "for a small household."),
    (50.0, "Basic", "yellow",
     "Basic connection. Suitable for single-device HD streaming and general web "
     "browsing."),
]

_SLOW = ("Slow", "red",
         "Slow connection. You may experience buffering during HD playback or lag "
         "during online gaming.")


def feedback_tier(download_mbps: float) -> Tuple[str, str, str]:
    """Return (label, color, message) for *download_mbps*."""
    for threshold, label, color, message in _TIERS:
        if download_mbps >= threshold:
            return (label, color, message)
    return _SLOW


def speed_feedback(download_mbps: float) -> str:
    """Plain-language assessment of a download speed."""
    return feedback_tier(download_mbps)[2]


# ---------------------------------------------------------------------------
# Change since the previous run
# ---------------------------------------------------------------------------

_COMPARED = (
    ("ping", "latency_ms"),
    ("download", "download_mbps"),
    ("upload", "upload_mbps"),
)


def compare_with_previous(
    current: TestResult,
    history: List[TestResult],
) -> Optional[Dict[str, float]]:
    """
    Differences between *current* and the newest entry of *history*.

    For each of ping, download and upload the result holds ``<name>_delta``
    and ``prev_<name>``.  None when there is nothing to compare against.
    """
    if not history:
        return None
    last = history[-1]
    changes: Dict[str, float] = {}
    for name, attr in _COMPARED:
        before = getattr(last, attr)
        changes[f"{name}_delta"] = getattr(current, attr) - before
        changes[f"prev_{name}"] = before
    return changes


def format_delta(value: float, unit: str, invert: bool = False) -> str:
    """Rich markup for a signed change; *invert* marks lower-is-better figures."""
    if round(value, 1) == 0:
        return "[dim](same)[/dim]"
    improved = value < 0 if invert else value > 0
    color = "green" if improved else "red"
    return f"[{color}]{value:+.1f} {unit}[/{color}]"
