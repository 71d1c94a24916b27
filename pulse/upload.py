"""
Upload throughput phase.

The payload is an instrumented async byte source: it meters every chunk
the transport consumes, stops yielding once the cap is reached or the
token is cancelled, and ignores the warm-up period when sampling.  A
watchdog bounds the whole phase to ``cap + grace`` even when the
transport never returns.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import AsyncIterator, Optional

from .constants import (
    CHUNK_SIZE,
    DEFAULT_DURATION_MS,
    READ_POLL,
    SAMPLE_INTERVAL_MS,
    UPLOAD_BUFFER_SIZE,
    UPLOAD_PAYLOAD_BYTES,
    UPLOAD_URL,
    UPLOAD_WARMUP_MS,
    WATCHDOG_GRACE_MS,
)
from .connection import TRANSFER_ERRORS
from .errors import ErrorKind, MeasurementError, TransportHangError, classify_error
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
from .transport import HttpPostTransport, UploadTransport

logger = logging.getLogger(__name__)

YIELD_CHECK_INTERVAL = 256 * 1024  # hand control to the loop every 256 KB


class MeteredPayload:
    """
    Async byte source that cycles a pre-generated random buffer.

    Bytes are counted once the consumer comes back for the next chunk,
    i.e. after the transport has accepted the previous one.
    """

    def __init__(
        self,
        size: int,
        meter: IntervalMeter,
        completion: PhaseCompletion,
        token: CancelToken,
        cap_seconds: float,
        chunk_size: int = CHUNK_SIZE,
        buffer: Optional[bytes] = None,
    ) -> None:
        self.size = size
        self.meter = meter
        self.completion = completion
        self.token = token
        self.cap_seconds = cap_seconds
        self.chunk_size = chunk_size
        self._buffer = buffer or os.urandom(UPLOAD_BUFFER_SIZE)
        self.sent = 0

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._generate()

    @property
    def exhausted(self) -> bool:
        return self.sent >= self.size

    def _slice(self, offset: int, n: int) -> bytes:
        buf_len = len(self._buffer)
        start = offset % buf_len
        end = start + n
        if end <= buf_len:
            return self._buffer[start:end]
        # Wrap around the end of the buffer
        out = bytearray(self._buffer[start:])
        while len(out) < n:
            out += self._buffer[: n - len(out)]
        return bytes(out)

    def _may_continue(self) -> bool:
        return not self.token.cancelled and self.meter.elapsed() < self.cap_seconds

    async def _generate(self) -> AsyncIterator[bytes]:
        since_yield = 0
        while self.sent < self.size and self._may_continue():
            n = min(self.chunk_size, self.size - self.sent)
            yield self._slice(self.sent, n)

            self.sent += n
            smoothed = self.meter.add(n)
            if smoothed is not None:
                self.completion.instant(smoothed)

            since_yield += n
            if since_yield >= YIELD_CHECK_INTERVAL:
                since_yield = 0
                await asyncio.sleep(0)


class UploadSampler:
    """
    Upload sampler over a pluggable :class:`UploadTransport`.

    Samples taken before ``warmup_ms`` are excluded from both the live value
    and the final average.  If the transport has not returned by
    ``duration_ms + grace_ms`` the watchdog cancels it and completes the
    phase with whatever was sampled.
    """

    def __init__(
        self,
        transport: Optional[UploadTransport] = None,
        payload_bytes: int = UPLOAD_PAYLOAD_BYTES,
        duration_ms: float = DEFAULT_DURATION_MS,
        interval_ms: float = SAMPLE_INTERVAL_MS,
        warmup_ms: float = UPLOAD_WARMUP_MS,
        grace_ms: float = WATCHDOG_GRACE_MS,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self.transport = transport or HttpPostTransport()
        self.payload_bytes = payload_bytes
        self.duration_ms = duration_ms
        self.interval_ms = interval_ms
        self.warmup_ms = warmup_ms
        self.grace_ms = grace_ms
        self.chunk_size = chunk_size
        self._buffer = os.urandom(UPLOAD_BUFFER_SIZE)

    async def run(
        self,
        url: str = UPLOAD_URL,
        token: Optional[CancelToken] = None,
        on_instant: Optional[InstantCallback] = None,
        on_done: Optional[DoneCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> PhaseOutcome:
        token = token or CancelToken()
        completion = PhaseCompletion(token, on_instant, on_done, on_error, label="upload")
        meter = IntervalMeter(self.interval_ms, warmup_ms=self.warmup_ms)
        body = MeteredPayload(
            self.payload_bytes,
            meter,
            completion,
            token,
            cap_seconds=self.duration_ms / 1000,
            chunk_size=self.chunk_size,
            buffer=self._buffer,
        )

        send = asyncio.ensure_future(self.transport.send(url, body, self.payload_bytes))
        hang: Optional[TransportHangError] = None
        try:
            await self._watch(send, meter, token)
        except TransportHangError as exc:
            hang = exc
        finally:
            if not send.done():
                send.cancel()
                await asyncio.gather(send, return_exceptions=True)

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
            logger.info("Upload cancelled after %.0f ms", outcome.duration_ms)
            return outcome

        if hang is not None:
            # Completed, not failed: the partial average is the result.
            outcome.watchdog_fired = True
            outcome.error = hang.kind
            logger.warning("%s; completing with %d samples", hang, len(outcome.samples))
        else:
            kind = self._failure(send)
            if kind is not None:
                completion.error(kind)
                outcome.status = PhaseStatus.FAILED
                outcome.average_mbps = 0.0
                outcome.error = kind
                return outcome

        logger.info(
            "Upload finished: %.2f Mbps over %d samples (%d bytes, transport=%s)",
            outcome.average_mbps, len(outcome.samples), outcome.bytes_total,
            getattr(self.transport, "name", type(self.transport).__name__),
        )
        completion.done(outcome.average_mbps)
        return outcome

    # -- Internals ----------------------------------------------------------

    async def _watch(self, send: asyncio.Future, meter: IntervalMeter, token: CancelToken) -> None:
        """Wait for the transport; raise TransportHangError past cap + grace."""
        deadline = (self.duration_ms + self.grace_ms) / 1000
        while not send.done():
            if token.cancelled:
                return
            left = deadline - meter.elapsed()
            if left <= 0:
                raise TransportHangError(
                    f"Upload transport still busy after {meter.elapsed() * 1000:.0f} ms"
                )
            await asyncio.wait({send}, timeout=min(READ_POLL, left))

    @staticmethod
    def _failure(send: asyncio.Future) -> Optional[ErrorKind]:
        """Return the error kind for a finished transport, or None on success."""
        exc = send.exception()
        if exc is not None:
            if not isinstance(exc, (MeasurementError,) + TRANSFER_ERRORS):
                raise exc
            kind = classify_error(exc, upload=True)
            logger.warning("Upload failed (%s): %s", kind.name, exc)
            return kind

        status = send.result()
        if status is not None and not 200 <= status < 300:
            logger.warning("Upload rejected with HTTP %d", status)
            return ErrorKind.UPLOAD_REJECTED
        return None
