"""Tests for pulse.history -- JSON-lines repository and display helpers."""

import os
import tempfile
import unittest
from datetime import datetime, timezone
from unittest import mock

from pulse.history import (
    JsonlResultRepository,
    MemoryResultRepository,
    format_history_table,
    sparkline,
)
from pulse.session import TestResult


def _result(dl, ul=10.0, ping=20.0, hour=12):
    return TestResult(
        download_mbps=dl,
        upload_mbps=ul,
        latency_ms=ping,
        completed_at=datetime(2025, 1, 15, hour, 0, tzinfo=timezone.utc),
    )


class TestJsonlRepository(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, "sub", "history.jsonl")
        self.repo = JsonlResultRepository(self.path)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_missing_file_is_empty(self):
        self.assertEqual(self.repo.load(), [])

    def test_save_and_load(self):
        self.repo.save(_result(100.0))
        self.repo.save(_result(200.0, hour=13))
        loaded = self.repo.load()
        self.assertEqual([r.download_mbps for r in loaded], [100.0, 200.0])
        self.assertEqual(loaded[1].completed_at.hour, 13)

    def test_one_line_per_result(self):
        for i in range(3):
            self.repo.save(_result(float(i)))
        with open(self.path, encoding="utf-8") as fh:
            self.assertEqual(len(fh.readlines()), 3)

    def test_limit_keeps_newest(self):
        for i in range(30):
            self.repo.save(_result(float(i)))
        loaded = self.repo.load(limit=5)
        self.assertEqual([r.download_mbps for r in loaded], [25.0, 26.0, 27.0, 28.0, 29.0])

    def test_corrupt_lines_skipped(self):
        self.repo.save(_result(1.0))
        with open(self.path, "a", encoding="utf-8") as fh:
            fh.write("{not json\n\n[1, 2]\n")
        self.repo.save(_result(2.0))
        self.assertEqual([r.download_mbps for r in self.repo.load()], [1.0, 2.0])

    def test_default_path(self):
        with mock.patch("pulse.history._history_path", return_value=self.path):
            repo = JsonlResultRepository()
            repo.save(_result(5.0))
            self.assertEqual(str(repo.path), self.path)
            self.assertEqual(len(repo.load()), 1)


class TestMemoryRepository(unittest.TestCase):
    def test_save(self):
        repo = MemoryResultRepository()
        r = _result(1.0)
        repo.save(r)
        self.assertEqual(repo.results, [r])


class TestHistoryTable(unittest.TestCase):
    def test_rows(self):
        rows = format_history_table([_result(100.0, 50.0, 15.0)])
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["download"], 100.0)
        self.assertEqual(rows[0]["upload"], 50.0)
        self.assertEqual(rows[0]["ping"], 15.0)
        self.assertTrue(rows[0]["timestamp"].startswith("2025-01-1"))

    def test_empty(self):
        self.assertEqual(format_history_table([]), [])


class TestSparkline(unittest.TestCase):
    def test_empty(self):
        self.assertEqual(sparkline([]), "")

    def test_rising(self):
        line = sparkline([1.0, 2.0, 3.0, 4.0])
        self.assertEqual(len(line), 4)
        self.assertEqual(line[0], "▁")
        self.assertEqual(line[-1], "█")

    def test_flat(self):
        self.assertEqual(sparkline([5.0, 5.0]), "▁▁")


if __name__ == "__main__":
    unittest.main()
