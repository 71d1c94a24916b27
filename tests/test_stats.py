"""Unit tests for pulse.stats -- pure functions and the windowed averager."""

import unittest

from pulse.stats import (
    Sample,
    WindowedAverager,
    calculate_jitter,
    format_latency,
    format_speed,
    to_mbps,
)


class TestWindowedAverager(unittest.TestCase):
    def test_empty(self):
        avg = WindowedAverager()
        self.assertEqual(avg.smoothed(), 0.0)
        self.assertEqual(avg.final_average(), 0.0)
        self.assertEqual(avg.count, 0)

    def test_window_keeps_last_ten(self):
        avg = WindowedAverager(10)
        for v in range(1, 13):  # 1..12
            avg.record(float(v))
        self.assertEqual(avg.window, [float(v) for v in range(3, 13)])
        self.assertAlmostEqual(avg.smoothed(), sum(range(3, 13)) / 10)

    def test_final_average_covers_every_sample(self):
        avg = WindowedAverager(10)
        for v in range(1, 13):
            avg.record(float(v))
        self.assertAlmostEqual(avg.final_average(), sum(range(1, 13)) / 12)
        self.assertEqual(avg.count, 12)

    def test_partial_window(self):
        avg = WindowedAverager(10)
        avg.record(10.0)
        avg.record(20.0)
        self.assertAlmostEqual(avg.smoothed(), 15.0)

    def test_invalid_size(self):
        with self.assertRaises(ValueError):
            WindowedAverager(0)


class TestToMbps(unittest.TestCase):
    def test_basic(self):
        # 12.5 MB in one second is 100 Mbps
        self.assertAlmostEqual(to_mbps(12_500_000, 1.0), 100.0)

    def test_short_interval(self):
        self.assertAlmostEqual(to_mbps(2_500_000, 0.2), 100.0)

    def test_zero_seconds(self):
        self.assertEqual(to_mbps(1000, 0), 0.0)

    def test_zero_bytes(self):
        self.assertEqual(to_mbps(0, 0.2), 0.0)


class TestCalculateJitter(unittest.TestCase):
    def test_empty(self):
        self.assertEqual(calculate_jitter([]), 0.0)

    def test_single(self):
        self.assertEqual(calculate_jitter([10.0]), 0.0)

    def test_varying(self):
        # |15-10| + |10-15| + |20-10| = 20 / 3
        self.assertAlmostEqual(calculate_jitter([10.0, 15.0, 10.0, 20.0]), 20.0 / 3, places=3)


class TestSample(unittest.TestCase):
    def test_to_dict(self):
        s = Sample(timestamp_ms=400, instant_mbps=99.12345)
        self.assertEqual(s.to_dict(), {"timestamp_ms": 400, "instant_mbps": 99.123})


class TestFormatSpeed(unittest.TestCase):
    def test_mbps(self):
        self.assertEqual(format_speed(100.0), "100.00 Mbps")

    def test_gbps(self):
        self.assertEqual(format_speed(1500.0), "1.50 Gbps")

    def test_zero(self):
        self.assertEqual(format_speed(0.0), "0.00 Mbps")


class TestFormatLatency(unittest.TestCase):
    def test_ms(self):
        self.assertEqual(format_latency(15.3), "15.3 ms")

    def test_seconds(self):
        self.assertEqual(format_latency(1500.0), "1.50 s")


if __name__ == "__main__":
    unittest.main()
