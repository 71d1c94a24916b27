"""
Round-trip latency measurement.

The prober issues a fixed number of sequential, lightweight round-trips
and averages the successful ones.  Two probe methods are available:

* ``head``      -- an HTTP ``HEAD`` against a low-latency target; any
  response status counts as a completed round-trip.
* ``websocket`` -- one persistent WebSocket, ``PING {ts}`` answered by a
  ``PONG`` frame (speedtest-server style).

A failed probe is logged and skipped.  Only when every probe fails does
the measurement fail.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import statistics
import time
from dataclasses import dataclass, field
from typing import List, Optional, Union

import aiohttp
import websockets
import websockets.exceptions

from .connection import TRANSFER_ERRORS, client_session
from .constants import COMMON_HEADERS, DEFAULT_PROBE_COUNT, LATENCY_URL, PROBE_TIMEOUT, USER_AGENT
from .errors import AllProbesFailedError, MeasurementError, PhaseProtocolError
from .session import CancelToken
from .stats import calculate_jitter

logger = logging.getLogger(__name__)

PROBE_ERRORS = TRANSFER_ERRORS + (websockets.exceptions.WebSocketException, MeasurementError)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class LatencyResult:
    """Outcome of one latency measurement."""

    pings: List[float] = field(default_factory=list)
    attempts: int = 0
    cancelled: bool = False
    average_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0
    jitter_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return bool(self.pings)

    @property
    def failures(self) -> int:
        return self.attempts - len(self.pings)

    def calculate(self) -> None:
        """Derive mean, spread, and jitter from the successful probes."""
        if not self.pings:
            return
        self.average_ms = statistics.mean(self.pings)
        self.min_ms = min(self.pings)
        self.max_ms = max(self.pings)
        self.jitter_ms = calculate_jitter(self.pings)

    def to_dict(self) -> dict:
        return {
            "pings": [round(p, 1) for p in self.pings],
            "attempts": self.attempts,
            "latency_ms": round(self.average_ms, 1),
            "min_ms": round(self.min_ms, 1),
            "max_ms": round(self.max_ms, 1),
            "jitter_ms": round(self.jitter_ms, 3),
            "ok": self.ok,
        }


# ---------------------------------------------------------------------------
# Probe methods
# ---------------------------------------------------------------------------

class HeadProbe:
    """HTTP ``HEAD`` round-trip over a kept-alive ``aiohttp`` session."""

    name = "head"

    def __init__(
        self,
        url: str = LATENCY_URL,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = PROBE_TIMEOUT,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._given = session
        self._stack: Optional[contextlib.AsyncExitStack] = None
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> HeadProbe:
        self._stack = contextlib.AsyncExitStack()
        self._session = await self._stack.enter_async_context(client_session(self._given))
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._stack is not None:
            await self._stack.aclose()
        self._stack = None
        self._session = None

    async def probe(self) -> float:
        """One round-trip, in milliseconds."""
        if self._session is None:
            raise RuntimeError("HeadProbe must be used as an async context manager")
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        start = time.perf_counter()
        async with self._session.head(self.url, allow_redirects=False, timeout=timeout):
            pass
        return (time.perf_counter() - start) * 1000


class WebSocketProbe:
    """``PING``/``PONG`` round-trip over one WebSocket connection."""

    name = "websocket"

    def __init__(self, url: str, timeout: float = PROBE_TIMEOUT) -> None:
        self.url = url
        self.timeout = timeout
        self._ws = None

    async def __aenter__(self) -> WebSocketProbe:
        self._ws = await websockets.connect(
            self.url,
            additional_headers={k: v for k, v in COMMON_HEADERS.items() if k != "User-Agent"},
            user_agent_header=USER_AGENT,
            ping_interval=None,
            close_timeout=2,
            open_timeout=self.timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def probe(self) -> float:
        if self._ws is None:
            raise RuntimeError("WebSocketProbe must be used as an async context manager")
        send_ms = time.perf_counter() * 1000
        await self._ws.send(f"PING {int(time.time() * 1000)}")
        msg = await asyncio.wait_for(self._ws.recv(), timeout=self.timeout)
        rtt = time.perf_counter() * 1000 - send_ms
        if not isinstance(msg, str) or not msg.startswith("PONG"):
            raise PhaseProtocolError(0)
        return rtt


Probe = Union[HeadProbe, WebSocketProbe]


def make_probe(
    method: str = "head",
    url: str = LATENCY_URL,
    session: Optional[aiohttp.ClientSession] = None,
) -> Probe:
    if method == HeadProbe.name:
        return HeadProbe(url, session=session)
    if method == WebSocketProbe.name:
        return WebSocketProbe(url)
    raise ValueError(f"Unknown probe method {method!r}; choose 'head' or 'websocket'")


# ---------------------------------------------------------------------------
# Prober
# ---------------------------------------------------------------------------

class LatencyProber:
    """Average of *probe_count* sequential round-trips."""

    def __init__(self, probe: Optional[Probe] = None, probe_count: int = DEFAULT_PROBE_COUNT) -> None:
        self.probe = probe or HeadProbe()
        self.probe_count = probe_count

    async def measure(self, token: Optional[CancelToken] = None) -> LatencyResult:
        """
        Run the probes and return the aggregated result.

        Cancellation is checked before every probe; a cancelled run returns
        the partial result.  Raises :class:`AllProbesFailedError` when no
        probe succeeded and the run was not cancelled.
        """
        token = token or CancelToken()
        result = LatencyResult()

        try:
            async with self.probe:
                for i in range(self.probe_count):
                    if token.cancelled:
                        result.cancelled = True
                        break
                    result.attempts += 1
                    try:
                        rtt = await self.probe.probe()
                    except PROBE_ERRORS as exc:
                        logger.info("Latency probe %d/%d failed: %r", i + 1, self.probe_count, exc)
                        continue
                    result.pings.append(rtt)
        except PROBE_ERRORS as exc:
            logger.warning("Latency probe channel failed: %r", exc)
            if not result.pings:
                result.attempts = self.probe_count

        result.calculate()
        if not result.ok and not result.cancelled:
            raise AllProbesFailedError(result.attempts)

        logger.info(
            "Latency: %.1f ms avg over %d/%d probes",
            result.average_ms, len(result.pings), result.attempts,
        )
        return result
