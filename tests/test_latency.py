"""Tests for pulse.latency -- prober aggregation and both probe methods."""

import unittest

from pulse.errors import AllProbesFailedError, PhaseTimeoutError
from pulse.latency import HeadProbe, LatencyProber, LatencyResult, WebSocketProbe, make_probe
from pulse.session import CancelToken

from tests.servers import REFUSED_URL, start_server, url, ws_url


class ScriptedProbe:
    """Returns (or raises) the scripted values in order."""

    name = "scripted"

    def __init__(self, script, on_probe=None):
        self.script = list(script)
        self.on_probe = on_probe
        self.calls = 0
        self.entered = False
        self.exited = False

    async def __aenter__(self):
        self.entered = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.exited = True

    async def probe(self):
        self.calls += 1
        if self.on_probe:
            self.on_probe(self.calls)
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class BrokenChannel(ScriptedProbe):
    async def __aenter__(self):
        raise ConnectionRefusedError(111, "Connection refused")


class TestLatencyResult(unittest.TestCase):
    def test_calculate(self):
        r = LatencyResult(pings=[10.0, 20.0, 30.0], attempts=4)
        r.calculate()
        self.assertAlmostEqual(r.average_ms, 20.0)
        self.assertEqual(r.min_ms, 10.0)
        self.assertEqual(r.max_ms, 30.0)
        self.assertAlmostEqual(r.jitter_ms, 10.0)
        self.assertEqual(r.failures, 1)
        self.assertTrue(r.ok)

    def test_empty(self):
        r = LatencyResult()
        r.calculate()
        self.assertFalse(r.ok)
        self.assertEqual(r.average_ms, 0.0)

    def test_to_dict(self):
        r = LatencyResult(pings=[12.34], attempts=1)
        r.calculate()
        d = r.to_dict()
        self.assertEqual(d["latency_ms"], 12.3)
        self.assertTrue(d["ok"])


class TestLatencyProber(unittest.IsolatedAsyncioTestCase):
    async def test_all_succeed(self):
        probe = ScriptedProbe([10.0, 20.0, 30.0, 40.0, 50.0])
        result = await LatencyProber(probe, probe_count=5).measure()
        self.assertAlmostEqual(result.average_ms, 30.0)
        self.assertEqual(result.attempts, 5)
        self.assertTrue(probe.entered and probe.exited)

    async def test_failures_are_skipped(self):
        probe = ScriptedProbe([10.0, OSError("lost"), PhaseTimeoutError(), 30.0, OSError("lost")])
        result = await LatencyProber(probe, probe_count=5).measure()
        self.assertEqual(result.pings, [10.0, 30.0])
        self.assertAlmostEqual(result.average_ms, 20.0)
        self.assertEqual(result.attempts, 5)
        self.assertEqual(result.failures, 3)

    async def test_all_fail(self):
        probe = ScriptedProbe([OSError("lost")] * 5)
        with self.assertRaises(AllProbesFailedError) as ctx:
            await LatencyProber(probe, probe_count=5).measure()
        self.assertEqual(ctx.exception.attempts, 5)

    async def test_channel_failure(self):
        with self.assertRaises(AllProbesFailedError) as ctx:
            await LatencyProber(BrokenChannel([]), probe_count=4).measure()
        self.assertEqual(ctx.exception.attempts, 4)

    async def test_cancelled_before_start(self):
        token = CancelToken()
        token.cancel()
        probe = ScriptedProbe([10.0] * 5)
        result = await LatencyProber(probe, probe_count=5).measure(token)
        self.assertTrue(result.cancelled)
        self.assertFalse(result.ok)
        self.assertEqual(probe.calls, 0)

    async def test_cancel_stops_remaining_probes(self):
        token = CancelToken()

        def cancel_after_two(n):
            if n == 2:
                token.cancel()

        probe = ScriptedProbe([10.0, 20.0, 30.0, 40.0, 50.0], on_probe=cancel_after_two)
        result = await LatencyProber(probe, probe_count=5).measure(token)
        self.assertTrue(result.cancelled)
        self.assertEqual(probe.calls, 2)
        self.assertAlmostEqual(result.average_ms, 15.0)

    async def test_unexpected_errors_propagate(self):
        probe = ScriptedProbe([ValueError("bug")])
        with self.assertRaises(ValueError):
            await LatencyProber(probe, probe_count=1).measure()


class TestProbesAgainstServer(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.server = await start_server()

    async def asyncTearDown(self):
        await self.server.close()

    async def test_head_probe(self):
        probe = HeadProbe(url(self.server, "/ping"))
        result = await LatencyProber(probe, probe_count=3).measure()
        self.assertEqual(len(result.pings), 3)
        self.assertGreater(result.average_ms, 0.0)

    async def test_head_probe_any_status_counts(self):
        # A 500 answer is still a completed round-trip
        probe = HeadProbe(url(self.server, "/fail"))
        result = await LatencyProber(probe, probe_count=2).measure()
        self.assertEqual(len(result.pings), 2)

    async def test_head_probe_refused(self):
        with self.assertRaises(AllProbesFailedError):
            await LatencyProber(HeadProbe(REFUSED_URL), probe_count=2).measure()

    async def test_websocket_probe(self):
        probe = WebSocketProbe(ws_url(self.server))
        result = await LatencyProber(probe, probe_count=3).measure()
        self.assertEqual(len(result.pings), 3)

    async def test_websocket_refused(self):
        probe = WebSocketProbe(REFUSED_URL.replace("http://", "ws://"))
        with self.assertRaises(AllProbesFailedError):
            await LatencyProber(probe, probe_count=2).measure()

    async def test_probe_requires_context(self):
        with self.assertRaises(RuntimeError):
            await HeadProbe(url(self.server, "/ping")).probe()


class TestMakeProbe(unittest.TestCase):
    def test_methods(self):
        self.assertIsInstance(make_probe("head", "https://example.test"), HeadProbe)
        self.assertIsInstance(make_probe("websocket", "wss://example.test/ws"), WebSocketProbe)

    def test_unknown(self):
        with self.assertRaises(ValueError):
            make_probe("icmp")


if __name__ == "__main__":
    unittest.main()
