#!/usr/bin/env python3
"""
JamCapture command-line entry point.

Allows JamCapture to be run as a module: python3 -m jamcapture

Example:
    ```bash
    # Record a take; recording starts once every source is up, Ctrl+C stops it
    python3 -m jamcapture record "Blues in A"

    # List routing graph ports, flagging duplicates
    python3 -m jamcapture sources

    # Show configured channels and whether their sources are available
    python3 -m jamcapture status
    ```
"""

import argparse
import logging
import os
import signal
import sys
import threading
import time
from collections import Counter
from typing import List, Optional

from jamcapture.config import CaptureConfig
from jamcapture.errors import CaptureError, InvalidStateError
from jamcapture.recorder.capture_machine import CaptureStateMachine
from jamcapture.recorder.state import CaptureStatus
from jamcapture.routing.pw_link import RoutingGraph

logger = logging.getLogger("jamcapture")

STATUS_POLL_SEC = 0.2
PROMOTION_SETTLE_SEC = 5.0


def setup_logging(level: str, verbose: bool = False) -> None:
    log_level = "DEBUG" if verbose else level.upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _install_stop_handlers(stop_requested: threading.Event) -> None:
    def _handler(signum, frame):
        logger.info(f"Received signal {signum}, stopping")
        stop_requested.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def cmd_record(
    machine: CaptureStateMachine,
    song_name: str,
    stop_requested: Optional[threading.Event] = None,
) -> int:
    """
    Prepare a session, wait for auto-start, record until asked to stop.

    Returns:
        Process exit code
    """
    if stop_requested is None:
        stop_requested = threading.Event()
        _install_stop_handlers(stop_requested)

    try:
        session = machine.prepare(song_name)
    except CaptureError as e:
        print(f"Cannot prepare recording: {e}", file=sys.stderr)
        return 1

    print(f"Waiting for sources ({len(session.channel_names)} channels): {', '.join(session.channel_names)}")

    announced = False
    while True:
        status, session = machine.get_status()

        if status is CaptureStatus.RECORDING and not announced:
            print(f"Recording to {session.output_file} - press Ctrl+C to stop")
            announced = True
        elif status in (CaptureStatus.STANDBY, CaptureStatus.ERROR):
            print(f"Recording did not start: {machine.last_error or status.value}", file=sys.stderr)
            return 1

        if stop_requested.wait(STATUS_POLL_SEC):
            break

    status, session = machine.get_status()
    if status is CaptureStatus.READY:
        try:
            machine.cancel()
            print("Cancelled before recording started")
            return 0
        except InvalidStateError:
            # Promotion won the race; let it finish, then stop the recording
            status, session = _wait_while_ready(machine, PROMOTION_SETTLE_SEC)

    # Promotion may land between the last poll and the stop request
    if status is CaptureStatus.RECORDING and not announced:
        print(f"Recording to {session.output_file} - press Ctrl+C to stop")

    try:
        output_file = machine.stop()
    except InvalidStateError as e:
        print(f"Nothing to stop: {e}", file=sys.stderr)
        return 1
    except CaptureError as e:
        print(f"Recording failed: {e}", file=sys.stderr)
        return 1

    print(f"Saved {output_file}")
    return 0


def _wait_while_ready(machine: CaptureStateMachine, timeout: float):
    deadline = time.monotonic() + timeout
    status, session = machine.get_status()
    while status is CaptureStatus.READY and time.monotonic() < deadline:
        time.sleep(STATUS_POLL_SEC / 4)
        status, session = machine.get_status()
    return status, session


def cmd_sources(graph: RoutingGraph) -> int:
    try:
        ports = graph.list_ports()
    except CaptureError as e:
        print(f"Cannot list ports: {e}", file=sys.stderr)
        return 1

    # Counter keeps first-seen order
    counts = Counter(ports)
    for i, port in enumerate(counts, start=1):
        marker = f"  [DUPLICATE x{counts[port]}]" if counts[port] > 1 else ""
        print(f"{i:3d}. {port}{marker}")
    return 0


def cmd_status(machine: CaptureStateMachine) -> int:
    statuses = machine.get_channel_status()
    for channel in machine.channels:
        sources = ", ".join(str(s) for s in channel.sources)
        state = statuses.get(channel.name)
        label = state.value if state is not None else "unknown"
        print(f"{channel.name:<16} {channel.role.value:<8} {label:<12} {sources}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jamcapture",
        description="Multi-channel PipeWire capture for jam sessions",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    record = subparsers.add_parser("record", help="Record a song once all sources are available")
    record.add_argument("song", help="Song name (used for the output file name)")

    subparsers.add_parser("sources", help="List routing graph ports")
    subparsers.add_parser("status", help="Show channel source status")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = CaptureConfig.load_config()
    except ValueError as e:
        setup_logging(os.getenv("JAMCAPTURE_LOG_LEVEL", "INFO"), args.verbose)
        logger.error(f"Configuration error: {e}")
        return 1

    setup_logging(config.log_level, args.verbose)

    if args.command == "sources":
        return cmd_sources(RoutingGraph())

    machine = CaptureStateMachine(config)
    try:
        if args.command == "status":
            return cmd_status(machine)
        return cmd_record(machine, args.song)
    finally:
        machine.cleanup()


if __name__ == "__main__":
    sys.exit(main())
