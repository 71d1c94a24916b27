"""
Machine-readable and plain renderings of a :class:`TestResult`.
"""
from __future__ import annotations

import csv
import io
import json
import os
import tempfile
from typing import Any, Dict, Optional

from pulse.feedback import speed_feedback
from pulse.session import TestResult

CSV_FIELDS = ("timestamp", "latency_ms", "download_mbps", "upload_mbps")


def create_result_json(
    result: TestResult,
    errors: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Build the JSON document for one completed sequence."""
    doc: Dict[str, Any] = {
        **result.to_dict(),
        "feedback": speed_feedback(result.download_mbps),
    }
    if errors:
        doc["errors"] = dict(errors)
    return doc


def save_json(document: Dict[str, Any], path: str) -> None:
    """
    Replace *path* with *document*.

    The JSON is written to a sibling temp file first, so readers never see
    a half-written file.  Any failure is re-raised as ``OSError`` naming
    *path*.
    """
    directory = os.path.dirname(os.path.abspath(path))
    try:
        fd, staged = tempfile.mkstemp(prefix=".netpulse-", suffix=".json", dir=directory)
    except OSError as exc:
        raise OSError(f"Cannot write {path}: {exc}") from exc

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(document, fh, indent=2, ensure_ascii=False)
        os.replace(staged, path)
    except OSError as exc:
        if os.path.exists(staged):
            os.unlink(staged)
        raise OSError(f"Cannot write {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Plain text and CSV
# ---------------------------------------------------------------------------

def format_text_result(result: TestResult) -> str:
    rule = "-" * 40
    lines = [
        rule,
        "NetPulse",
        rule,
        f"{'Latency':<10}{result.latency_ms:>12.1f} ms",
        f"{'Download':<10}{result.download_mbps:>12.2f} Mbps",
        f"{'Upload':<10}{result.upload_mbps:>12.2f} Mbps",
        rule,
    ]
    return "\n".join(lines)


def _csv_line(values) -> str:
    buf = io.StringIO()
    csv.writer(buf, lineterminator="").writerow(values)
    return buf.getvalue()


def format_csv_header() -> str:
    return _csv_line(CSV_FIELDS)


def _row(result: TestResult):
    return (
        result.completed_at.isoformat(),
        f"{result.latency_ms:.1f}",
        f"{result.download_mbps:.2f}",
        f"{result.upload_mbps:.2f}",
    )


def format_csv_row(result: TestResult) -> str:
    return _csv_line(_row(result))


def append_csv(path: str, result: TestResult) -> None:
    """Append one row to *path*; a new or empty file gets the header first."""
    fresh = not os.path.exists(path) or os.path.getsize(path) == 0
    with open(path, "a", encoding="utf-8", newline="") as fh:
        writer = csv.writer(fh, lineterminator="\n")
        if fresh:
            writer.writerow(CSV_FIELDS)
        writer.writerow(_row(result))
