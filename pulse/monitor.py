"""
Repeating background measurement.

Runs the full sequence every N minutes from an APScheduler background
scheduler.  The first run happens one interval after monitoring starts; a
tick that finds a sequence already in flight is skipped rather than queued.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED, JobEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .engine import SequenceRunning, SpeedTestEngine
from .session import SessionPhase, TestResult

logger = logging.getLogger(__name__)

JOB_ID = "netpulse-sequence"


class BackgroundMonitor:
    """Fixed-rate scheduler around :class:`SpeedTestEngine`."""

    def __init__(self, engine: SpeedTestEngine) -> None:
        self.engine = engine
        self.interval_minutes: float = 0.0
        self.runs = 0
        self.skipped = 0
        self._scheduler: Optional[BackgroundScheduler] = None
        self._on_complete: Optional[Callable[[TestResult], None]] = None

    @property
    def active(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start_or_update(
        self,
        minutes: float,
        on_complete: Optional[Callable[[TestResult], None]] = None,
    ) -> None:
        """Start monitoring, or move the running job to a new interval."""
        if minutes <= 0:
            raise ValueError("Interval must be positive")

        self.interval_minutes = minutes
        self._on_complete = on_complete
        trigger = IntervalTrigger(minutes=minutes)

        if self.active:
            self._scheduler.reschedule_job(JOB_ID, trigger=trigger)
            logger.info("Monitor interval changed to %g min", minutes)
            return

        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.add_listener(self._on_skipped, EVENT_JOB_MAX_INSTANCES | EVENT_JOB_MISSED)
        scheduler.add_job(
            self._tick,
            trigger=trigger,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Monitor started, one run every %g min", minutes)

    def stop(self) -> None:
        """Stop monitoring and cancel any run in flight.  No effect when not active."""
        if not self.active:
            return
        self.engine.cancel()
        self._scheduler.shutdown(wait=True)
        self._scheduler = None
        logger.info("Monitor stopped after %d runs", self.runs)

    def next_run_time(self):
        if not self.active:
            return None
        job = self._scheduler.get_job(JOB_ID)
        return job.next_run_time if job is not None else None

    def _on_skipped(self, event: JobEvent) -> None:
        self.skipped += 1
        logger.info("Sequence still in flight; tick %d skipped", self.skipped)

    def _tick(self) -> None:
        if self.engine.running:
            self.skipped += 1
            logger.info("Sequence still in flight; tick %d skipped", self.skipped)
            return

        logger.info("Monitor tick: starting sequence")
        try:
            result = asyncio.run(self.engine.run_sequence(on_error=_log_phase_error))
        except SequenceRunning:
            self.skipped += 1
            logger.info("Sequence still in flight; tick %d skipped", self.skipped)
            return
        except Exception:
            self.runs += 1
            logger.exception("Monitor run crashed; will retry next interval")
            return

        self.runs += 1
        if result is None or self._on_complete is None:
            return
        try:
            self._on_complete(result)
        except Exception:
            logger.exception("Monitor result handler failed")


def _log_phase_error(phase: SessionPhase, message: str) -> None:
    logger.error("Monitor run, %s: %s", phase.value, message)
