#!/usr/bin/env python3
"""
NetPulse CLI -- download, latency and upload measurement from the terminal.

Usage::

    python netpulse.py                      # rich dashboard
    python netpulse.py --simple             # plain text
    python netpulse.py --json               # JSON to stdout
    python netpulse.py -o result.json       # save to file
    python netpulse.py --csv log.csv        # append CSV row
    python netpulse.py --history            # show past results
    python netpulse.py --monitor 15         # test every 15 minutes
    python netpulse.py --transport socket   # raw-socket uploader
"""
from __future__ import annotations

import argparse
import json
import sys
import time
from typing import Optional

from pulse.config import EngineConfig, load_config
from pulse.engine import SpeedTestEngine
from pulse.feedback import compare_with_previous, format_delta
from pulse.history import JsonlResultRepository
from pulse.logging_config import configure_logging
from pulse.monitor import BackgroundMonitor
from pulse.session import SessionPhase, TestResult
from ui.dashboard import (
    SequenceView,
    console,
    print_final_results,
    print_header,
    print_history,
)
from ui.output import append_csv, create_result_json, format_text_result, save_json


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def build_config(args: argparse.Namespace) -> EngineConfig:
    """Config file values overlaid with any command-line overrides."""
    config = load_config()
    overrides = {
        "probe_count": args.probe_count,
        "upload_transport": args.transport,
        "latency_method": args.latency_method,
        "download_url": args.download_url,
        "upload_url": args.upload_url,
        "latency_url": args.latency_url,
    }
    if args.download_duration is not None:
        overrides["download_duration_ms"] = args.download_duration * 1000
    if args.upload_duration is not None:
        overrides["upload_duration_ms"] = args.upload_duration * 1000
    config.update({k: v for k, v in overrides.items() if v is not None})

    engine_config = EngineConfig.from_dict(config)
    engine_config.validate()
    return engine_config


# ---------------------------------------------------------------------------
# Core test runner
# ---------------------------------------------------------------------------

def run_once(engine: SpeedTestEngine, show_ui: bool) -> Optional[TestResult]:
    """Run one sequence in the background, wait for it, return the result."""
    cfg = engine.config
    view = SequenceView(
        {
            SessionPhase.DOWNLOADING: cfg.download_duration_ms,
            SessionPhase.UPLOADING: cfg.upload_duration_ms,
        },
        live=show_ui,
    )

    engine.start_sequence(
        on_instant=view.on_instant,
        on_phase_complete=view.on_phase_complete,
        on_error=view.on_error,
        on_result=view.on_result,
    )
    try:
        while not engine.wait(0.2):
            pass
    except KeyboardInterrupt:
        engine.cancel()
        engine.wait()
        raise
    finally:
        view.stop()

    return view.result


def report(
    result: TestResult,
    *,
    json_output: bool,
    simple: bool,
    output_file: Optional[str],
    csv_file: Optional[str],
    previous: list,
) -> None:
    show_ui = not json_output and not simple

    if show_ui:
        print_final_results(result)
        delta = compare_with_previous(result, previous)
        if delta:
            console.print(
                f"  vs last: "
                f"Ping {format_delta(delta['ping_delta'], 'ms', invert=True)}  "
                f"DL {format_delta(delta['download_delta'], 'Mbps')}  "
                f"UL {format_delta(delta['upload_delta'], 'Mbps')}"
            )
    elif simple:
        print(format_text_result(result))

    doc = create_result_json(result)
    if json_output:
        print(json.dumps(doc, indent=2))

    if output_file:
        save_json(doc, output_file)
        if not json_output:
            console.print(f"[dim]wrote {output_file}[/dim]")

    if csv_file:
        append_csv(csv_file, result)
        if not json_output:
            console.print(f"[dim]appended to {csv_file}[/dim]")


def monitor(engine: SpeedTestEngine, minutes: float) -> None:
    """Run the sequence every *minutes* until interrupted."""
    mon = BackgroundMonitor(engine)

    def _done(result: TestResult) -> None:
        console.print(
            f"[dim]{result.completed_at.astimezone():%H:%M}[/dim]  "
            f"Ping {result.latency_ms:.1f} ms  "
            f"DL [green]{result.download_mbps:.2f}[/green] Mbps  "
            f"UL [blue]{result.upload_mbps:.2f}[/blue] Mbps"
        )

    mon.start_or_update(minutes, on_complete=_done)
    first = mon.next_run_time()
    console.print(
        f"[bold]Monitoring every {minutes:g} min.[/bold] "
        f"[dim]First run at {first.astimezone():%H:%M}. Ctrl-C to stop.[/dim]"
    )
    try:
        while mon.active:
            time.sleep(1.0)
    finally:
        mon.stop()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="netpulse",
        description="Measure download throughput, latency and upload throughput.",
    )

    out = parser.add_argument_group("output")
    out.add_argument("-j", "--json", action="store_true",
                     help="print the result document as JSON instead of the dashboard")
    out.add_argument("-s", "--simple", action="store_true",
                     help="plain text summary, no live progress")
    out.add_argument("-o", "--output", metavar="PATH",
                     help="also write the JSON document to PATH")
    out.add_argument("--csv", metavar="PATH",
                     help="append one CSV line per run to PATH")
    out.add_argument("--no-save", action="store_true",
                     help="leave the run out of the local history")
    out.add_argument("-v", "--verbose", action="store_true",
                     help="log engine activity to stderr")

    run = parser.add_argument_group("measurement")
    run.add_argument("--download-duration", type=float, metavar="S",
                     help="stop the download after S seconds")
    run.add_argument("--upload-duration", type=float, metavar="S",
                     help="stop the upload after S seconds")
    run.add_argument("--probe-count", type=int, metavar="N",
                     help="latency probes per run")
    run.add_argument("--transport", choices=("http", "socket"),
                     help="how the upload body is sent")
    run.add_argument("--latency-method", choices=("head", "websocket"),
                     help="how latency probes reach the server")
    run.add_argument("--download-url", metavar="URL")
    run.add_argument("--upload-url", metavar="URL")
    run.add_argument("--latency-url", metavar="URL")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--monitor", type=float, metavar="MIN",
                      help="keep testing, one run every MIN minutes")
    mode.add_argument("--history", action="store_true",
                      help="list recorded runs and exit")
    return parser


def main() -> None:
    args = _parser().parse_args()
    configure_logging("DEBUG" if args.verbose else None)

    repository = JsonlResultRepository()

    if args.history:
        print_history(repository.load())
        return

    try:
        config = build_config(args)
    except ValueError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)

    engine = SpeedTestEngine(config, repository=None if args.no_save else repository)
    show_ui = not args.json and not args.simple

    try:
        if args.monitor is not None:
            if args.monitor <= 0:
                console.print("[red]Error: --monitor must be positive[/red]")
                sys.exit(1)
            monitor(engine, args.monitor)
            return

        previous = repository.load(limit=1)
        if show_ui:
            print_header()
        result = run_once(engine, show_ui)
        if result is None:
            console.print("[red]Test did not complete.[/red]")
            sys.exit(1)

        report(
            result,
            json_output=args.json,
            simple=args.simple,
            output_file=args.output,
            csv_file=args.csv,
            previous=previous,
        )

    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(1)


if __name__ == "__main__":
    main()
