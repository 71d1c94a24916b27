"""
Test orchestrator.

Sequences Download -> Latency -> Upload for one :class:`TestSession`.  Each
phase is an ordinary awaited function returning a value; the orchestrator
only decides what happens next.  ``start_sequence`` runs the whole thing on
a background worker thread with its own event loop so callers never block.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Optional

import aiohttp

from .config import EngineConfig
from .download import DownloadSampler
from .errors import AllProbesFailedError, CancelledByUser, ErrorKind
from .history import ResultRepository
from .latency import LatencyProber, LatencyResult, Probe, make_probe
from .sampling import PhaseOutcome, PhaseStatus
from .session import CancelToken, SessionPhase, TestResult, TestSession
from .transport import UploadTransport, make_transport
from .upload import UploadSampler

logger = logging.getLogger(__name__)

InstantHandler = Callable[[SessionPhase, float], None]
PhaseCompleteHandler = Callable[[SessionPhase, float], None]
ErrorHandler = Callable[[SessionPhase, str], None]
ResultHandler = Callable[[TestResult], None]
MessageCallback = Callable[[str], None]


class SequenceRunning(RuntimeError):
    """Raised when a sequence is started while another one is in flight."""


class SpeedTestEngine:
    """
    Public entry point of the measurement engine.

    Callbacks are invoked on the worker running the phase; marshalling them
    to a UI thread is the caller's business.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        repository: Optional[ResultRepository] = None,
        session: Optional[aiohttp.ClientSession] = None,
        transport: Optional[UploadTransport] = None,
        probe: Optional[Probe] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.repository = repository
        self._http = session
        self._transport = transport
        self._probe = probe

        self._lock = threading.Lock()
        self._current: Optional[TestSession] = None
        self._token = CancelToken()
        self._thread: Optional[threading.Thread] = None
        self._latency_ms = 0.0

    # -- State --------------------------------------------------------------

    @property
    def session(self) -> Optional[TestSession]:
        return self._current

    @property
    def running(self) -> bool:
        current = self._current
        return current is not None and not current.phase.terminal

    def current_latency_ms(self) -> float:
        """Last successfully measured latency (0.0 until one succeeds)."""
        return self._latency_ms

    def cancel(self) -> None:
        """Request cancellation of whatever is running.  Idempotent, any thread."""
        self._token.cancel()
        current = self._current
        if current is not None and not current.phase.terminal:
            current.token.cancel()
        logger.info("Cancellation requested")

    # -- Phase builders -----------------------------------------------------

    def _download_sampler(self) -> DownloadSampler:
        cfg = self.config
        return DownloadSampler(
            duration_ms=cfg.download_duration_ms,
            interval_ms=cfg.interval_ms,
            chunk_size=cfg.chunk_size,
            session=self._http,
        )

    def _upload_sampler(self) -> UploadSampler:
        cfg = self.config
        return UploadSampler(
            transport=self._transport or make_transport(cfg.upload_transport, self._http),
            payload_bytes=cfg.upload_payload_bytes,
            duration_ms=cfg.upload_duration_ms,
            interval_ms=cfg.interval_ms,
            warmup_ms=cfg.warmup_ms,
            grace_ms=cfg.watchdog_grace_ms,
            chunk_size=cfg.chunk_size,
        )

    def _latency_prober(self) -> LatencyProber:
        cfg = self.config
        probe = self._probe or make_probe(cfg.latency_method, cfg.latency_url, self._http)
        return LatencyProber(probe, probe_count=cfg.probe_count)

    def _arm(self, token: Optional[CancelToken]) -> CancelToken:
        """Token for a standalone phase; refused while a sequence owns the engine."""
        with self._lock:
            if self.running:
                raise SequenceRunning("A test sequence is already running")
            self._token = token or CancelToken()
            return self._token

    # -- Individual phases --------------------------------------------------

    async def run_download_test(
        self,
        on_instant: Optional[Callable[[float], None]] = None,
        on_complete: Optional[Callable[[float], None]] = None,
        on_error: Optional[MessageCallback] = None,
        token: Optional[CancelToken] = None,
    ) -> PhaseOutcome:
        """Download phase alone; ``on_error`` receives a user-facing message."""
        token = self._arm(token)
        return await self._download_sampler().run(
            self.config.download_url,
            token,
            on_instant,
            on_complete,
            _message_adapter(on_error),
        )

    async def run_upload_test(
        self,
        on_instant: Optional[Callable[[float], None]] = None,
        on_complete: Optional[Callable[[float], None]] = None,
        on_error: Optional[MessageCallback] = None,
        token: Optional[CancelToken] = None,
    ) -> PhaseOutcome:
        """Upload phase alone; ``on_error`` receives a user-facing message."""
        token = self._arm(token)
        return await self._upload_sampler().run(
            self.config.upload_url,
            token,
            on_instant,
            on_complete,
            _message_adapter(on_error),
        )

    async def measure_latency(self, token: Optional[CancelToken] = None) -> LatencyResult:
        """
        Latency phase alone.  Never raises for network failures: a run where
        every probe failed comes back with ``ok == False`` and the last known
        latency is kept.  Raises :class:`SequenceRunning` while a sequence
        is in flight, as do the other standalone phases.
        """
        token = self._arm(token)
        try:
            result = await self._latency_prober().measure(token)
        except AllProbesFailedError as exc:
            logger.warning("%s; keeping last known latency %.1f ms", exc, self._latency_ms)
            return LatencyResult(attempts=exc.attempts)
        if result.ok:
            self._latency_ms = result.average_ms
        return result

    # -- Full sequence ------------------------------------------------------

    def _begin(self) -> TestSession:
        with self._lock:
            if self.running:
                raise SequenceRunning("A test sequence is already running")
            session = TestSession(current_latency_ms=self._latency_ms)
            self._current = session
            self._token = session.token
            return session

    async def run_sequence(
        self,
        on_instant: Optional[InstantHandler] = None,
        on_phase_complete: Optional[PhaseCompleteHandler] = None,
        on_error: Optional[ErrorHandler] = None,
        on_result: Optional[ResultHandler] = None,
    ) -> Optional[TestResult]:
        """Run the sequence on the current event loop.  Returns None unless completed."""
        session = self._begin()
        return await self._sequence(session, on_instant, on_phase_complete, on_error, on_result)

    def start_sequence(
        self,
        on_instant: Optional[InstantHandler] = None,
        on_phase_complete: Optional[PhaseCompleteHandler] = None,
        on_error: Optional[ErrorHandler] = None,
        on_result: Optional[ResultHandler] = None,
    ) -> TestSession:
        """Start the sequence on a background worker and return immediately."""
        session = self._begin()

        def _worker() -> None:
            try:
                asyncio.run(
                    self._sequence(session, on_instant, on_phase_complete, on_error, on_result)
                )
            except Exception:
                logger.exception("Test sequence crashed")
                if on_error is not None and session.ended_in is not None:
                    try:
                        on_error(session.ended_in, ErrorKind.IO_ERROR.message)
                    except Exception:
                        logger.exception("on_error handler failed")

        self._thread = threading.Thread(target=_worker, name="netpulse-sequence", daemon=True)
        self._thread.start()
        return session

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Join the background worker.  Returns True once it has finished."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    async def _sequence(
        self,
        session: TestSession,
        on_instant: Optional[InstantHandler],
        on_phase_complete: Optional[PhaseCompleteHandler],
        on_error: Optional[ErrorHandler],
        on_result: Optional[ResultHandler],
    ) -> Optional[TestResult]:
        hooks = _PhaseHooks(on_instant, on_phase_complete, on_error)
        try:
            return await self._phases(session, hooks, on_result)
        except CancelledByUser as exc:
            logger.info("Sequence %s", str(exc).lower())
            session.advance(SessionPhase.CANCELLED)
            return None
        except (asyncio.CancelledError, KeyboardInterrupt):
            _abandon(session, SessionPhase.CANCELLED)
            raise
        except BaseException:
            _abandon(session, SessionPhase.FAILED)
            raise

    async def _phases(
        self,
        session: TestSession,
        hooks: _PhaseHooks,
        on_result: Optional[ResultHandler],
    ) -> Optional[TestResult]:
        token = session.token

        # -- Download -------------------------------------------------------
        session.advance(SessionPhase.DOWNLOADING)
        logger.info("Sequence started: download")
        download = await self._download_sampler().run(
            self.config.download_url, token, *hooks.for_phase(SessionPhase.DOWNLOADING)
        )
        if self._failed(session, download):
            return None

        # -- Latency (failure is not fatal) ---------------------------------
        session.advance(SessionPhase.MEASURING_LATENCY)
        latency = await self._latency_phase(session, hooks)
        _checkpoint(session)

        # -- Upload ---------------------------------------------------------
        session.advance(SessionPhase.UPLOADING)
        upload = await self._upload_sampler().run(
            self.config.upload_url, token, *hooks.for_phase(SessionPhase.UPLOADING)
        )
        if self._failed(session, upload):
            return None

        session.advance(SessionPhase.COMPLETED)
        result = TestResult(
            download_mbps=download.average_mbps,
            upload_mbps=upload.average_mbps,
            latency_ms=latency,
        )
        logger.info(
            "Sequence complete. DL: %.2f Mbps | UL: %.2f Mbps | Ping: %.1f ms",
            result.download_mbps, result.upload_mbps, result.latency_ms,
        )
        self._persist(result)
        if on_result:
            on_result(result)
        return result

    async def _latency_phase(self, session: TestSession, hooks: _PhaseHooks) -> float:
        phase = SessionPhase.MEASURING_LATENCY
        try:
            result = await self._latency_prober().measure(session.token)
        except AllProbesFailedError as exc:
            logger.warning("%s; falling back to %.1f ms", exc, session.current_latency_ms)
            hooks.error(phase, exc.kind, session.token)
            return session.current_latency_ms

        if result.ok:
            session.current_latency_ms = result.average_ms
            self._latency_ms = result.average_ms
        if not result.cancelled:
            hooks.complete(phase, session.current_latency_ms, session.token)
        return session.current_latency_ms

    @staticmethod
    def _failed(session: TestSession, outcome: PhaseOutcome) -> bool:
        """
        True when *outcome* failed the sequence (session moved to Failed).
        Raises :class:`CancelledByUser` for a cancelled phase.
        """
        _checkpoint(session, outcome)
        if outcome.status is PhaseStatus.FAILED:
            logger.error("Sequence failed: %s", outcome.error.message if outcome.error else "?")
            session.advance(SessionPhase.FAILED)
            return True
        return False

    def _persist(self, result: TestResult) -> None:
        if self.repository is None:
            return
        try:
            self.repository.save(result)
        except OSError:
            logger.exception("Could not persist test result")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _message_adapter(callback: Optional[MessageCallback]) -> Optional[Callable[[ErrorKind], None]]:
    if callback is None:
        return None
    return lambda kind: callback(kind.message)


class _PhaseHooks:
    """Binds the sequence-level handlers to one phase at a time."""

    def __init__(
        self,
        on_instant: Optional[InstantHandler],
        on_phase_complete: Optional[PhaseCompleteHandler],
        on_error: Optional[ErrorHandler],
    ) -> None:
        self.on_instant = on_instant
        self.on_phase_complete = on_phase_complete
        self.on_error = on_error

    def for_phase(self, phase: SessionPhase):  # noqa: ANN201
        instant = done = error = None
        if self.on_instant:
            instant = lambda mbps: self.on_instant(phase, mbps)  # noqa: E731
        if self.on_phase_complete:
            done = lambda avg: self.on_phase_complete(phase, avg)  # noqa: E731
        if self.on_error:
            error = lambda kind: self.on_error(phase, kind.message)  # noqa: E731
        return instant, done, error

    def complete(self, phase: SessionPhase, value: float, token: CancelToken) -> None:
        if self.on_phase_complete and not token.cancelled:
            self.on_phase_complete(phase, value)

    def error(self, phase: SessionPhase, kind: ErrorKind, token: CancelToken) -> None:
        if self.on_error and not token.cancelled:
            self.on_error(phase, kind.message)


def _checkpoint(session: TestSession, outcome: Optional[PhaseOutcome] = None) -> None:
    """Raise :class:`CancelledByUser` once the session's token is set."""
    cancelled = outcome is not None and outcome.status is PhaseStatus.CANCELLED
    if cancelled or session.cancel_requested:
        raise CancelledByUser(session.phase.value)


def _abandon(session: TestSession, phase: SessionPhase) -> None:
    """Close a session that is unwinding on an exception the sequence does not handle."""
    if not session.phase.terminal:
        logger.warning("Sequence aborted during %s", session.phase.value)
        session.advance(phase)
