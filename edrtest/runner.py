#!/usr/bin/env python3
"""
runner.py - CLI entry point for edrtest.

Runs one benign endpoint activity (or all of them) and records the
telemetry an EDR agent should have observed, so the agent's own logs can be
cross-checked against it.

Modes (mutually exclusive)
--------------------------
-p/--process "NAME [ARGS]"   launch and kill an allow-listed process
-f/--file PATH               create / modify / delete a file (see --action)
-t/--tcp HOST:PORT           open a TCP connection and send a payload
-w/--http URL                issue an HTTP GET (POST with --data)
-u/--udp HOST:PORT           send a UDP datagram
-n/--network-sweep           TCP/UDP/HTTP against a fixed set of targets
-a/--all                     every activity once, in a fixed order

Usage
-----
    python -m edrtest.runner --all
    python -m edrtest.runner -p "ls -l" --json-log out/run.json
    python -m edrtest.runner -f tmp/probe.txt --action create --content hello

Exit codes: 0 success, 1 validation or probe failure, 2 usage error.
"""

from __future__ import annotations

import argparse
import logging
import shlex
import sys
import uuid
from pathlib import Path
from typing import Any, Callable, List, Sequence

from edrtest import display
from edrtest.errors import ProbeError, UsageError, ValidationError
from edrtest.events import Event
from edrtest.platforms import PlatformProfile, get_profile
from edrtest.probes import DEFAULT_TIMEOUT, FILE_ACTIONS, FilesystemProbe, NetworkProbe, ProcessProbe
from edrtest.recorder import DEFAULT_JSON_LOG, DEFAULT_TEXT_LOG, TelemetryRecorder

logger = logging.getLogger("edrtest")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

# ---------------------------------------------------------------------------
# Targets used by --all and --network-sweep
# ---------------------------------------------------------------------------
ALL_TEST_DIR = "tmp"
ALL_FILE_CONTENT = "Test content"
ALL_TCP_TARGET = ("example.com", 80)
ALL_HTTP_URL = "https://example.com"
ALL_UDP_TARGET = ("8.8.8.8", 53)
ALL_UDP_PAYLOAD = "DNS query simulation"

SWEEP_HOST = "example.com"
SWEEP_TCP_PORTS = (80, 443, 8080)
SWEEP_UDP_PORTS = (53, 123)
SWEEP_HTTP_HOSTS = ("example.com", "google.com")
SWEEP_UDP_PAYLOAD = "Test UDP packet"


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class Orchestrator:
    """Runs probes one at a time against a single recorder.

    Probe failures are caught here, counted in :attr:`failures`, and the
    run moves on.  Usage and validation errors propagate to the caller.
    """

    def __init__(
        self,
        recorder: TelemetryRecorder,
        timeout: float = DEFAULT_TIMEOUT,
        profile: PlatformProfile | None = None,
        echo: bool = True,
    ) -> None:
        self.recorder = recorder
        self.timeout = timeout
        self.profile = profile
        self.echo = echo
        self.failures: List[str] = []

    def attempt(self, label: str, action: Callable[..., Event], *args: Any, **kwargs: Any) -> Event | None:
        """Run one probe action; return its event, or ``None`` if it failed."""
        logger.debug("Running %s", label)
        try:
            event = action(*args, **kwargs)
        except ProbeError as exc:
            self.failures.append(f"{label}: {exc}")
            if self.echo:
                display.show_event(self.recorder.events[-1])
            return None
        if self.echo:
            display.show_event(event)
        return event

    # -- single activities ------------------------------------------------

    def process(self, name: str, args: Sequence[str] = ()) -> Event | None:
        probe = ProcessProbe(self.recorder, profile=self.profile, timeout=self.timeout)
        return self.attempt(f"process {name}", probe.run, name, args)

    def filesystem(self, path: str | Path, action: str, content: str | None = None) -> Event | None:
        probe = FilesystemProbe(self.recorder)
        return self.attempt(f"file {action} {path}", probe.run, path, action, content)

    def tcp(self, host: str, port: int, payload: str | None = None) -> Event | None:
        probe = NetworkProbe(self.recorder, timeout=self.timeout)
        return self.attempt(f"tcp {host}:{port}", probe.tcp, host, port, payload)

    def http(self, url: str, payload: str | None = None) -> Event | None:
        probe = NetworkProbe(self.recorder, timeout=self.timeout)
        return self.attempt(f"http {url}", probe.http, url, payload)

    def udp(self, host: str, port: int, payload: str | None = None) -> Event | None:
        probe = NetworkProbe(self.recorder, timeout=self.timeout)
        return self.attempt(f"udp {host}:{port}", probe.udp, host, port, payload)

    # -- sequences ----------------------------------------------------------

    def run_all(self, test_file: str | Path | None = None) -> None:
        """Process, file create/modify/delete, TCP, HTTP, UDP, in that order."""
        test_file = Path(test_file or Path(ALL_TEST_DIR) / f"telemetry_test_{uuid.uuid4()}.txt")

        profile = self.profile or get_profile(self.recorder.context.os_name)
        name, args = profile.default
        self.process(name, args)

        if self.filesystem(test_file, "create", ALL_FILE_CONTENT) is not None:
            self.filesystem(test_file, "modify")
            self.filesystem(test_file, "delete")
        else:
            logger.warning("Skipping modify/delete: %s was not created", test_file)

        self.tcp(*ALL_TCP_TARGET)
        self.http(ALL_HTTP_URL)
        self.udp(*ALL_UDP_TARGET, payload=ALL_UDP_PAYLOAD)

    def run_network_sweep(self) -> None:
        """TCP to common ports, UDP to DNS/NTP, HTTPS GET to a few hosts."""
        for port in SWEEP_TCP_PORTS:
            self.tcp(SWEEP_HOST, port)
        for port in SWEEP_UDP_PORTS:
            self.udp(SWEEP_HOST, port, payload=SWEEP_UDP_PAYLOAD)
        for host in SWEEP_HTTP_HOSTS:
            self.http(f"https://{host}")


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

def host_port(value: str) -> tuple[str, int]:
    """Parse ``HOST:PORT`` (``[v6addr]:PORT`` for IPv6)."""
    host, sep, port = value.rpartition(":")
    host = host.strip("[]")
    if not sep or not host:
        raise argparse.ArgumentTypeError(f"expected HOST:PORT, got {value!r}")
    try:
        number = int(port)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port in {value!r}") from None
    if not 0 < number < 65536:
        raise argparse.ArgumentTypeError(f"port out of range in {value!r}")
    return host, number


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="edrtest",
        description="Generate benign endpoint activity and record ground-truth telemetry for EDR testing.",
    )
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument(
        "-p", "--process",
        metavar="COMMAND",
        help='Allow-listed process and arguments, e.g. "ls -l".',
    )
    mode.add_argument("-f", "--file", metavar="PATH", help="File to create, modify or delete.")
    mode.add_argument("-t", "--tcp", metavar="HOST:PORT", type=host_port, help="Open a TCP connection.")
    mode.add_argument("-w", "--http", metavar="URL", help="Send an HTTP request.")
    mode.add_argument("-u", "--udp", metavar="HOST:PORT", type=host_port, help="Send a UDP datagram.")
    mode.add_argument(
        "-n", "--network-sweep",
        action="store_true",
        help="TCP, UDP and HTTP against a fixed set of public targets.",
    )
    mode.add_argument("-a", "--all", action="store_true", help="Run every activity once.")

    parser.add_argument(
        "--action",
        choices=FILE_ACTIONS,
        default="create",
        help="File action for --file (default: create).",
    )
    parser.add_argument("--content", default=None, help="Content written on create / appended on modify.")
    parser.add_argument("--data", default=None, help="Payload for --tcp, --udp, or an HTTP POST body.")
    parser.add_argument(
        "--json-log",
        default=DEFAULT_JSON_LOG,
        help=f"JSON event log path (default: {DEFAULT_JSON_LOG}).",
    )
    parser.add_argument(
        "--text-log",
        default=DEFAULT_TEXT_LOG,
        help=f"Text event log path (default: {DEFAULT_TEXT_LOG}).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f"Network/process timeout in seconds (default: {DEFAULT_TIMEOUT:g}).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr.")
    return parser


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def dispatch(args: argparse.Namespace, orchestrator: Orchestrator) -> None:
    """Run the activity selected by *args*."""
    if args.all:
        orchestrator.run_all()
    elif args.network_sweep:
        orchestrator.run_network_sweep()
    elif args.process is not None:
        try:
            name, *proc_args = shlex.split(args.process)
        except ValueError as exc:
            raise UsageError(f"Cannot parse process command {args.process!r}: {exc}") from exc
        orchestrator.process(name, proc_args)
    elif args.file is not None:
        orchestrator.filesystem(args.file, args.action, args.content)
    elif args.tcp is not None:
        orchestrator.tcp(*args.tcp, payload=args.data)
    elif args.http is not None:
        orchestrator.http(args.http, payload=args.data)
    elif args.udp is not None:
        orchestrator.udp(*args.udp, payload=args.data)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _persist(recorder: TelemetryRecorder) -> bool:
    """Write the JSON log; report an unwritable destination instead of raising."""
    try:
        recorder.persist()
    except OSError as exc:
        logger.error("Could not persist events: %s", exc)
        display.show_failure(f"Could not write {recorder.json_path}: {exc}")
        return False
    return True


def main(argv: Sequence[str] | None = None) -> int:
    """Parse CLI args, run the selected activity and persist the telemetry.

    Whatever was recorded before a failure is still persisted.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.process is not None and not args.process.strip():
        parser.error("argument -p/--process: must name a process")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )

    display.init_console()
    recorder = TelemetryRecorder(json_path=args.json_log, text_path=args.text_log)
    orchestrator = Orchestrator(recorder, timeout=args.timeout)
    display.show_banner(recorder.context, recorder.json_path, recorder.text_path)

    exit_code = EXIT_OK
    persisted = False
    try:
        try:
            dispatch(args, orchestrator)
        except UsageError as exc:
            parser.print_usage(sys.stderr)
            display.show_failure(str(exc))
            exit_code = EXIT_USAGE
        except ValidationError as exc:
            display.show_failure(str(exc))
            exit_code = EXIT_FAILURE
        finally:
            persisted = _persist(recorder)
    finally:
        recorder.close()

    if exit_code == EXIT_OK and not persisted:
        exit_code = EXIT_FAILURE
    if exit_code == EXIT_OK and orchestrator.failures:
        for failure in orchestrator.failures:
            display.show_failure(failure)
        exit_code = EXIT_FAILURE

    display.show_summary(recorder.events, orchestrator.failures, recorder.json_path)
    logger.info("Run finished with exit code %d", exit_code)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
