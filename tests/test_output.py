"""Unit tests for ui.output -- JSON creation and text formatting."""

import json
import os
import tempfile
import unittest
from datetime import datetime, timezone

from pulse.session import TestResult
from ui.output import (
    append_csv,
    create_result_json,
    format_csv_header,
    format_csv_row,
    format_text_result,
    save_json,
)


def _result(**overrides):
    values = dict(
        download_mbps=100.0,
        upload_mbps=50.0,
        latency_ms=15.0,
        completed_at=datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return TestResult(**values)


class TestCreateResultJson(unittest.TestCase):
    def test_basic_structure(self):
        r = create_result_json(_result())
        for key in ("timestamp", "download_mbps", "upload_mbps", "latency_ms", "feedback"):
            self.assertIn(key, r)
        self.assertEqual(r["download_mbps"], 100.0)

    def test_feedback_follows_download(self):
        self.assertIn("Good connection", create_result_json(_result())["feedback"])

    def test_errors_included_when_given(self):
        r = create_result_json(_result(), errors={"latency": "No latency probes succeeded"})
        self.assertEqual(r["errors"], {"latency": "No latency probes succeeded"})

    def test_no_errors_key_by_default(self):
        self.assertNotIn("errors", create_result_json(_result()))

    def test_serializable(self):
        json.dumps(create_result_json(_result()))


class TestSaveJson(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.path = os.path.join(self.tmpdir.name, "result.json")

    def test_written_document_loads_back(self):
        save_json({"download_mbps": 88.5, "note": "caf\u00e9"}, self.path)
        with open(self.path, encoding="utf-8") as fh:
            self.assertEqual(json.load(fh), {"download_mbps": 88.5, "note": "caf\u00e9"})

    def test_overwrites_existing_file(self):
        save_json({"run": 1}, self.path)
        save_json({"run": 2}, self.path)
        with open(self.path, encoding="utf-8") as fh:
            self.assertEqual(json.load(fh), {"run": 2})

    def test_no_staging_files_left_behind(self):
        save_json({"run": 1}, self.path)
        self.assertEqual(os.listdir(self.tmpdir.name), ["result.json"])

    def test_missing_directory(self):
        missing = os.path.join(self.tmpdir.name, "absent", "result.json")
        with self.assertRaises(OSError) as ctx:
            save_json({"run": 1}, missing)
        self.assertIn(missing, str(ctx.exception))


class TestFormatTextResult(unittest.TestCase):
    def test_contains_values(self):
        text = format_text_result(_result())
        self.assertIn("15.0 ms", text)
        self.assertIn("100.00 Mbps", text)
        self.assertIn("50.00 Mbps", text)


class TestCsvHelpers(unittest.TestCase):
    def test_header(self):
        h = format_csv_header()
        self.assertIn("timestamp", h)
        self.assertIn("download_mbps", h)

    def test_row(self):
        parts = format_csv_row(_result()).split(",")
        self.assertEqual(len(parts), len(format_csv_header().split(",")))
        self.assertEqual(parts[1:], ["15.0", "100.00", "50.00"])

    def test_append_writes_header_once(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "log.csv")
            append_csv(path, _result())
            append_csv(path, _result(download_mbps=200.0))
            with open(path) as fh:
                lines = fh.readlines()
            self.assertEqual(len(lines), 3)
            self.assertEqual(sum(1 for l in lines if l.startswith("timestamp")), 1)
            self.assertIn("200.00", lines[2])


if __name__ == "__main__":
    unittest.main()
