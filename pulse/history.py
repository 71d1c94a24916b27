"""
Result persistence.

The engine hands every completed :class:`TestResult` to a
:class:`ResultRepository`.  The default repository stores JSON-lines in
``~/.netpulse/history.jsonl``: each line is a self-contained record, so the
file can be appended to safely without parsing what is already there.
"""
from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol

from .config import NETPULSE_HOME
from .session import TestResult

logger = logging.getLogger(__name__)

RECENT_LIMIT = 20


def _history_path() -> Path:
    return NETPULSE_HOME / "history.jsonl"


class ResultRepository(Protocol):
    def save(self, result: TestResult) -> None:
        ...


class JsonlResultRepository:
    """Append-only JSON-lines store."""

    def __init__(self, path: Optional[str] = None) -> None:
        self._path = Path(path) if path else None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path or Path(_history_path())

    def save(self, result: TestResult) -> None:
        path = self.path
        path.parent.mkdir(parents=True, exist_ok=True)
        record = json.dumps(result.to_dict(), ensure_ascii=False)
        with self._lock, path.open("a", encoding="utf-8") as fh:
            fh.write(record + "\n")

    def _records(self) -> Iterator[Dict[str, Any]]:
        with self.path.open(encoding="utf-8") as fh:
            for number, raw in enumerate(fh, 1):
                if not raw.strip():
                    continue
                try:
                    record = json.loads(raw)
                except json.JSONDecodeError:
                    logger.debug("Skipping unreadable history line %d", number)
                    continue
                if isinstance(record, dict):
                    yield record

    def load(self, limit: int = RECENT_LIMIT) -> List[TestResult]:
        """The newest *limit* results in file order; ``limit <= 0`` returns all."""
        if not self.path.is_file():
            return []
        results = [TestResult.from_dict(record) for record in self._records()]
        return results[-limit:] if limit > 0 else results


class MemoryResultRepository:
    """Keeps results in a list; handy for embedding and tests."""

    def __init__(self) -> None:
        self.results: List[TestResult] = []

    def save(self, result: TestResult) -> None:
        self.results.append(result)


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def format_history_table(entries: List[TestResult]) -> List[Dict[str, Any]]:
    """One display row per result: local timestamp plus the three figures."""
    return [
        {
            "timestamp": _local_time(entry.completed_at),
            "ping": entry.latency_ms,
            "download": entry.download_mbps,
            "upload": entry.upload_mbps,
        }
        for entry in entries
    ]


def _local_time(moment: datetime) -> str:
    try:
        return moment.astimezone().strftime("%Y-%m-%d %H:%M")
    except (ValueError, OSError):
        return moment.isoformat()[:16]


_LEVELS = "▁▂▃▄▅▆▇█"


def sparkline(values: List[float]) -> str:
    if not values:
        return ""
    floor = min(values)
    spread = max(values) - floor
    if spread <= 0:
        return _LEVELS[0] * len(values)
    top = len(_LEVELS) - 1
    return "".join(_LEVELS[round((v - floor) / spread * top)] for v in values)
