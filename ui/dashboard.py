"""
Rich-based terminal dashboard for netpulse.

All formatting helpers live in ``pulse.stats`` -- this module only does
presentation via the ``rich`` library.
"""
from __future__ import annotations

import threading
import time
from typing import Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from pulse.feedback import feedback_tier
from pulse.history import format_history_table, sparkline
from pulse.session import SessionPhase, TestResult
from pulse.stats import format_latency, format_speed

console = Console()

_PHASE_TITLES = {
    SessionPhase.DOWNLOADING: ("Downloading", "green"),
    SessionPhase.MEASURING_LATENCY: ("Latency", "yellow"),
    SessionPhase.UPLOADING: ("Uploading", "blue"),
}


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

def print_header() -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]NetPulse[/bold cyan]\n"
            "[dim]Download, latency and upload measurement[/dim]",
            border_style="cyan",
        )
    )
    console.print()


def print_phase_result(phase: SessionPhase, value: float) -> None:
    title, color = _PHASE_TITLES.get(phase, (phase.value, "white"))
    shown = format_latency(value) if phase is SessionPhase.MEASURING_LATENCY else format_speed(value)
    console.print(f"  [bold]{title}:[/bold] [bold {color}]{shown}[/bold {color}]")


def print_phase_error(phase: SessionPhase, message: str) -> None:
    title, _ = _PHASE_TITLES.get(phase, (phase.value, "white"))
    console.print(f"  [bold]{title}:[/bold] [red]{message}[/red]")


def print_final_results(result: TestResult) -> None:
    label, color, message = feedback_tier(result.download_mbps)
    console.print()
    console.print(
        Panel.fit(
            f"[bold white]   Ping:[/bold white]  [bold yellow]{format_latency(result.latency_ms)}[/bold yellow]\n"
            f"[bold white]   Download:[/bold white]  [bold green]{format_speed(result.download_mbps)}[/bold green]\n"
            f"[bold white]   Upload:[/bold white]  [bold blue]{format_speed(result.upload_mbps)}[/bold blue]\n\n"
            f"[bold {color}]{label}[/bold {color}] [dim]{message}[/dim]",
            title="[bold]Results[/bold]",
            border_style="cyan",
        )
    )
    console.print()


def print_history(entries: List[TestResult]) -> None:
    if not entries:
        console.print("[dim]No results recorded yet.[/dim]")
        return

    table = Table(title="Recent Results", box=box.ROUNDED)
    table.add_column("When", style="dim")
    table.add_column("Ping", justify="right")
    table.add_column("Download", justify="right", style="green")
    table.add_column("Upload", justify="right", style="blue")

    for row in format_history_table(entries):
        table.add_row(
            row["timestamp"],
            format_latency(row["ping"]),
            format_speed(row["download"]),
            format_speed(row["upload"]),
        )
    console.print(table)

    console.print(
        Panel(
            f"[green]DL {sparkline([e.download_mbps for e in entries])}[/green]\n"
            f"[blue]UL {sparkline([e.upload_mbps for e in entries])}[/blue]",
            title="Trend",
        )
    )


# ---------------------------------------------------------------------------
# Live progress
# ---------------------------------------------------------------------------

class PhaseProgress:
    """One ``rich`` progress bar per transfer phase, sharing a single live display."""

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description:<12}"),
            BarColumn(bar_width=40),
            TextColumn("[bold cyan]{task.fields[live]:>12}[/bold cyan]"),
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )
        self._tasks: Dict[SessionPhase, TaskID] = {}
        self._started = False

    def begin(self, phase: SessionPhase) -> None:
        if phase in self._tasks:
            return
        if not self._started:
            self.progress.start()
            self._started = True
        title, _ = _PHASE_TITLES.get(phase, (phase.value, "white"))
        self._tasks[phase] = self.progress.add_task(title, total=1.0, live="...")

    def update(self, phase: SessionPhase, fraction: float, mbps: float) -> None:
        task = self._tasks.get(phase)
        if task is not None:
            self.progress.update(task, completed=min(fraction, 1.0), live=format_speed(mbps))

    def finish(self, phase: SessionPhase, shown: str) -> None:
        task = self._tasks.get(phase)
        if task is not None:
            self.progress.update(task, completed=1.0, live=shown)

    def stop(self) -> None:
        if self._started:
            self.progress.stop()
            self._started = False


class SequenceView:
    """
    Turns engine callbacks into progress bars and result lines.

    Callbacks arrive on the engine's worker thread; a lock keeps bar
    creation ordered with respect to updates.
    """

    def __init__(self, durations_ms: Dict[SessionPhase, float], live: bool = True) -> None:
        self.durations_ms = durations_ms
        self.live = live
        self.result: Optional[TestResult] = None
        self.errors: Dict[SessionPhase, str] = {}
        self._lock = threading.Lock()
        self._bars = PhaseProgress() if live else None
        self._phase_started: Dict[SessionPhase, float] = {}

    def on_instant(self, phase: SessionPhase, mbps: float) -> None:
        with self._lock:
            started = self._phase_started.setdefault(phase, time.perf_counter())
            if self._bars is None:
                return
            self._bars.begin(phase)
            cap = self.durations_ms.get(phase) or 1.0
            elapsed_ms = (time.perf_counter() - started) * 1000
            self._bars.update(phase, elapsed_ms / cap, mbps)

    def on_phase_complete(self, phase: SessionPhase, value: float) -> None:
        with self._lock:
            if self._bars is None:
                return
            if phase is SessionPhase.MEASURING_LATENCY:
                print_phase_result(phase, value)
            else:
                self._bars.begin(phase)
                self._bars.finish(phase, format_speed(value))

    def on_error(self, phase: SessionPhase, message: str) -> None:
        with self._lock:
            self.errors[phase] = message
            if self._bars is None:
                return
            if phase in (SessionPhase.DOWNLOADING, SessionPhase.UPLOADING):
                self._bars.begin(phase)
                self._bars.finish(phase, "failed")
            print_phase_error(phase, message)

    def on_result(self, result: TestResult) -> None:
        self.result = result

    def stop(self) -> None:
        with self._lock:
            if self._bars is not None:
                self._bars.stop()
