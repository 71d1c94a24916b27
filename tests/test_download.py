"""Tests for pulse.download against an in-process aiohttp server."""

import asyncio
import time
import unittest

from pulse.download import DownloadSampler
from pulse.errors import ErrorKind
from pulse.sampling import PhaseStatus
from pulse.session import CancelToken

from tests.servers import REFUSED_URL, start_server, url


class Recorder:
    """Collects the three phase callbacks with arrival times."""

    def __init__(self):
        self.instants = []
        self.done = []
        self.errors = []

    def on_instant(self, mbps):
        self.instants.append((time.perf_counter(), mbps))

    def on_done(self, avg):
        self.done.append(avg)

    def on_error(self, kind):
        self.errors.append(kind)

    def callbacks(self):
        return {"on_instant": self.on_instant, "on_done": self.on_done, "on_error": self.on_error}


class TestDownloadSampler(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.server = await start_server()
        self.rec = Recorder()

    async def asyncTearDown(self):
        await self.server.close()

    async def test_runs_until_cap(self):
        sampler = DownloadSampler(duration_ms=600, interval_ms=50)
        start = time.perf_counter()
        outcome = await sampler.run(url(self.server, "/down"), **self.rec.callbacks())
        wall = time.perf_counter() - start

        self.assertIs(outcome.status, PhaseStatus.COMPLETED)
        self.assertGreater(outcome.bytes_total, 0)
        self.assertTrue(outcome.samples)
        self.assertGreater(outcome.average_mbps, 0.0)
        self.assertLess(wall, 3.0)
        self.assertGreaterEqual(outcome.duration_ms, 590)

        self.assertEqual(self.rec.done, [outcome.average_mbps])
        self.assertEqual(self.rec.errors, [])
        self.assertEqual(len(self.rec.instants), len(outcome.samples))

    async def test_samples_stay_inside_cap(self):
        sampler = DownloadSampler(duration_ms=500, interval_ms=50)
        outcome = await sampler.run(url(self.server, "/down"))
        for sample in outcome.samples:
            self.assertLessEqual(sample.timestamp_ms, 500 + 50)

    async def test_finite_body_completes_early(self):
        sampler = DownloadSampler(duration_ms=5000, interval_ms=50)
        outcome = await sampler.run(url(self.server, "/finite"), **self.rec.callbacks())
        self.assertIs(outcome.status, PhaseStatus.COMPLETED)
        self.assertEqual(outcome.bytes_total, 100_000)
        self.assertLess(outcome.duration_ms, 5000)
        self.assertEqual(len(self.rec.done), 1)

    async def test_http_error_status(self):
        sampler = DownloadSampler(duration_ms=500, interval_ms=50)
        outcome = await sampler.run(url(self.server, "/fail"), **self.rec.callbacks())
        self.assertIs(outcome.status, PhaseStatus.FAILED)
        self.assertIs(outcome.error, ErrorKind.HTTP_STATUS)
        self.assertEqual(self.rec.errors, [ErrorKind.HTTP_STATUS])
        self.assertEqual(self.rec.done, [])

    async def test_connection_refused(self):
        sampler = DownloadSampler(duration_ms=500, interval_ms=50)
        outcome = await sampler.run(REFUSED_URL, **self.rec.callbacks())
        self.assertIs(outcome.status, PhaseStatus.FAILED)
        self.assertEqual(self.rec.errors, [ErrorKind.CONNECTION_FAILED])
        self.assertEqual(self.rec.done, [])

    async def test_cancel_mid_phase(self):
        token = CancelToken()
        cancelled_at = []

        def cancel():
            cancelled_at.append(time.perf_counter())
            token.cancel()

        asyncio.get_running_loop().call_later(0.3, cancel)
        sampler = DownloadSampler(duration_ms=10_000, interval_ms=50)
        start = time.perf_counter()
        outcome = await sampler.run(url(self.server, "/down"), token, **self.rec.callbacks())

        self.assertIs(outcome.status, PhaseStatus.CANCELLED)
        self.assertLess(time.perf_counter() - start, 2.0)
        self.assertEqual(self.rec.done, [])
        self.assertEqual(self.rec.errors, [])
        for arrived, _ in self.rec.instants:
            self.assertLessEqual(arrived, cancelled_at[0])

    async def test_cancelled_before_start(self):
        token = CancelToken()
        token.cancel()
        sampler = DownloadSampler(duration_ms=5000, interval_ms=50)
        outcome = await sampler.run(url(self.server, "/down"), token, **self.rec.callbacks())
        self.assertIs(outcome.status, PhaseStatus.CANCELLED)
        self.assertEqual(outcome.samples, [])
        self.assertEqual(self.rec.done, [])


if __name__ == "__main__":
    unittest.main()
