"""
Download throughput phase.

Streams an oversized HTTP response body in fixed-size chunks and samples
throughput every interval until the wall-clock cap, the end of the stream,
or cancellation -- whichever comes first.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

from .connection import TRANSFER_ERRORS, client_session
from .constants import (
    CHUNK_SIZE,
    DEFAULT_DURATION_MS,
    DOWNLOAD_URL,
    READ_POLL,
    SAMPLE_INTERVAL_MS,
)
from .errors import MeasurementError, PhaseProtocolError, classify_error
from .sampling import (
    DoneCallback,
    ErrorCallback,
    InstantCallback,
    IntervalMeter,
    PhaseCompletion,
    PhaseOutcome,
    PhaseStatus,
)
from .session import CancelToken

logger = logging.getLogger(__name__)


class DownloadSampler:
    """
    Single-stream download sampler.

    Every read is bounded by ``READ_POLL`` (and by the time left under the
    cap), so a cancellation or an expired cap is noticed within one poll
    even when the server stalls.
    """

    def __init__(
        self,
        duration_ms: float = DEFAULT_DURATION_MS,
        interval_ms: float = SAMPLE_INTERVAL_MS,
        chunk_size: int = CHUNK_SIZE,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.duration_ms = duration_ms
        self.interval_ms = interval_ms
        self.chunk_size = chunk_size
        self.session = session

    async def run(
        self,
        url: str = DOWNLOAD_URL,
        token: Optional[CancelToken] = None,
        on_instant: Optional[InstantCallback] = None,
        on_done: Optional[DoneCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> PhaseOutcome:
        token = token or CancelToken()
        completion = PhaseCompletion(token, on_instant, on_done, on_error, label="download")
        meter = IntervalMeter(self.interval_ms)
        cap = self.duration_ms / 1000

        try:
            async with client_session(self.session, {"Accept-Encoding": "identity"}) as session:
                async with session.get(url) as resp:
                    if not 200 <= resp.status < 300:
                        raise PhaseProtocolError(resp.status)
                    await self._drain(resp, meter, completion, token, cap)
        except (MeasurementError,) + TRANSFER_ERRORS as exc:
            return self._failed(exc, meter, completion, token)

        outcome = PhaseOutcome(
            status=PhaseStatus.COMPLETED,
            average_mbps=meter.final_average(),
            samples=list(meter.samples),
            bytes_total=meter.bytes_total,
            duration_ms=meter.elapsed() * 1000,
        )
        if token.cancelled:
            completion.abandon()
            outcome.status = PhaseStatus.CANCELLED
            logger.info("Download cancelled after %.0f ms", outcome.duration_ms)
            return outcome

        logger.info(
            "Download finished: %.2f Mbps over %d samples (%d bytes)",
            outcome.average_mbps, len(outcome.samples), outcome.bytes_total,
        )
        completion.done(outcome.average_mbps)
        return outcome

    # -- Internals ----------------------------------------------------------

    async def _drain(
        self,
        resp: aiohttp.ClientResponse,
        meter: IntervalMeter,
        completion: PhaseCompletion,
        token: CancelToken,
        cap: float,
    ) -> None:
        while not token.cancelled:
            remaining = cap - meter.elapsed()
            if remaining <= 0:
                break
            try:
                chunk = await asyncio.wait_for(
                    resp.content.read(self.chunk_size),
                    timeout=min(READ_POLL, remaining),
                )
            except aiohttp.ServerTimeoutError:
                raise
            except asyncio.TimeoutError:
                continue
            if not chunk:
                break

            smoothed = meter.add(len(chunk))
            if smoothed is not None:
                completion.instant(smoothed)

    @staticmethod
    def _failed(
        exc: BaseException,
        meter: IntervalMeter,
        completion: PhaseCompletion,
        token: CancelToken,
    ) -> PhaseOutcome:
        duration_ms = meter.elapsed() * 1000
        if token.cancelled:
            completion.abandon()
            logger.debug("Download error after cancel ignored: %r", exc)
            return PhaseOutcome(
                status=PhaseStatus.CANCELLED,
                average_mbps=meter.final_average(),
                samples=list(meter.samples),
                bytes_total=meter.bytes_total,
                duration_ms=duration_ms,
            )

        kind = classify_error(exc)
        logger.warning("Download failed (%s): %s", kind.name, exc)
        completion.error(kind)
        return PhaseOutcome(
            status=PhaseStatus.FAILED,
            error=kind,
            samples=list(meter.samples),
            bytes_total=meter.bytes_total,
            duration_ms=duration_ms,
        )
