"""
probes.py - Activity probes for edrtest.

Each probe performs one real OS-level action and reports it through the
:class:`~edrtest.recorder.TelemetryRecorder`:

  ProcessProbe     launch an allow-listed process, then kill it at once
  FilesystemProbe  create / modify / delete a file
  NetworkProbe     TCP connect, HTTP request, UDP datagram

Contract shared by every probe:

* Bad input raises :class:`UsageError` before anything touches the OS, and
  nothing is recorded.
* On success exactly one event is recorded and returned.
* If the OS action fails, a ``<domain>_error`` event is recorded and
  :class:`ProbeError` is raised.  Nothing is retried.
"""

from __future__ import annotations

import logging
import os
import socket
import subprocess
from pathlib import Path
from typing import Sequence, Tuple
from urllib.parse import urlsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool

from edrtest.context import RunContext
from edrtest.errors import ProbeError, UsageError
from edrtest.events import Event
from edrtest.platforms import PlatformProfile, get_profile
from edrtest.process_monitor import kill_process
from edrtest.recorder import TelemetryRecorder, now_iso
from edrtest.schema import EventKind

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0

FILE_ACTIONS = ("create", "modify", "delete")
DEFAULT_FILE_CONTENT = "edrtest telemetry test file\n"

DEFAULT_TCP_PAYLOAD = b"edrtest TCP probe\r\n"
DEFAULT_UDP_PAYLOAD = b"edrtest UDP probe"


class Probe:
    """Base class: holds the recorder and knows how to report a failure."""

    domain = ""

    def __init__(self, recorder: TelemetryRecorder, context: RunContext | None = None) -> None:
        self.recorder = recorder
        self.context = context or recorder.context

    def _fail(self, message: str) -> ProbeError:
        """Record a ``<domain>_error`` event and return the error to raise."""
        logger.error("%s probe failed: %s", self.domain, message)
        self.recorder.record_error(self.domain, message, **self.context.process_attributes())
        return ProbeError(self.domain, message)


# ---------------------------------------------------------------------------
# Process
# ---------------------------------------------------------------------------

class ProcessProbe(Probe):
    """Launch an allow-listed process and force-terminate it immediately.

    The point is the launch/exit telemetry pair, not the workload, so the
    child is killed as soon as it has a PID.

    Parameters:
        profile: Platform capability.  Defaults to the run context's OS.
        timeout: Seconds to wait for the killed child to be reaped.
    """

    domain = "process"

    def __init__(
        self,
        recorder: TelemetryRecorder,
        profile: PlatformProfile | None = None,
        context: RunContext | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(recorder, context)
        self.profile = profile or get_profile(self.context.os_name)
        self.timeout = timeout

    def run(self, name: str, args: Sequence[str] = ()) -> Event:
        argv = self.profile.resolve(name, args)
        command = self.profile.command_line(argv)
        logger.info("Launching %s", command)

        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            raise self._fail(f"could not launch {command!r}: {exc}") from exc

        try:
            kill_process(proc.pid)
        finally:
            try:
                proc.wait(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                logger.warning("pid %d did not exit within %.1f s", proc.pid, self.timeout)

        return self.recorder.record(
            EventKind.PROCESS_EXECUTION,
            {
                "process_name": name,
                "process_command": command,
                "process_id": proc.pid,
            },
        )


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------

class FilesystemProbe(Probe):
    """Create, modify or delete a file on behalf of the edrtest process."""

    domain = "filesystem"

    def run(self, path: str | os.PathLike[str], action: str, content: str | None = None) -> Event:
        """Perform *action* on *path*.

        Args:
            path:    Target file.  Recorded as an absolute path.
            action:  ``"create"``, ``"modify"`` or ``"delete"``.
            content: Text written on create (placeholder if omitted) or
                     appended on modify.

        Raises:
            UsageError: unknown action, or modify/delete of a missing or
                read-only file.
            ProbeError: the filesystem call itself failed.
        """
        if action not in FILE_ACTIONS:
            raise UsageError(f"Unsupported file action {action!r}; choose from {list(FILE_ACTIONS)}")

        # abspath, not resolve(): a symlink is acted on as itself
        target = Path(os.path.abspath(Path(path).expanduser()))
        if action in ("modify", "delete") and not (target.exists() or target.is_symlink()):
            raise UsageError(f"Cannot {action} {target}: file does not exist")
        if action == "modify" and not os.access(target, os.W_OK):
            raise UsageError(f"Cannot modify {target}: file is not writable")

        try:
            if action == "create":
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(
                    content if content is not None else DEFAULT_FILE_CONTENT,
                    encoding="utf-8",
                )
            elif action == "modify":
                with open(target, "a", encoding="utf-8") as fh:
                    if content:
                        fh.write(content)
                    fh.write(f"\nModified: {now_iso()}\n")
            else:
                target.unlink()
        except OSError as exc:
            raise self._fail(f"{action} {target}: {exc}") from exc

        logger.info("File %s: %s", action, target)
        return self.recorder.record(
            EventKind.FILESYSTEM_ACTIVITY,
            {
                **self.context.process_attributes(),
                "file_path": str(target),
                "activity": action,
            },
        )


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------

def _as_bytes(payload: str | bytes | None, default: bytes) -> bytes:
    if payload is None:
        return default
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return payload


class _EndpointMixin:
    """Remembers the local endpoint as soon as the socket is connected.

    http.client drops ``sock`` once a ``Connection: close`` response has
    been parsed, so the address can't be read back afterwards.
    """

    local_endpoint: Tuple[str, int] | None = None

    def connect(self) -> None:
        super().connect()
        address = self.sock.getsockname()
        self.local_endpoint = (address[0], address[1])


class _EndpointHTTPConnection(_EndpointMixin, HTTPConnection):
    pass


class _EndpointHTTPSConnection(_EndpointMixin, HTTPSConnection):
    pass


class _EndpointHTTPPool(HTTPConnectionPool):
    ConnectionCls = _EndpointHTTPConnection


class _EndpointHTTPSPool(HTTPSConnectionPool):
    ConnectionCls = _EndpointHTTPSConnection


class EndpointAdapter(HTTPAdapter):
    """Transport adapter whose connections record their source address."""

    def init_poolmanager(self, *args, **kwargs) -> None:
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = {
            "http": _EndpointHTTPPool,
            "https": _EndpointHTTPSPool,
        }


def _local_endpoint(response: requests.Response) -> Tuple[str, int]:
    """Source address/port of the connection that carried *response*.

    Only valid for a streamed response, which keeps its connection.
    """
    raw = response.raw
    conn = getattr(raw, "connection", None) or getattr(raw, "_connection", None)
    endpoint = getattr(conn, "local_endpoint", None)
    if endpoint is not None:
        return endpoint
    sock = getattr(conn, "sock", None)
    if sock is None:
        raise OSError("connection socket is no longer available")
    address = sock.getsockname()
    return address[0], address[1]


class NetworkProbe(Probe):
    """TCP, HTTP and UDP network activity.

    Every method records the local (source) and remote (destination)
    endpoints, the protocol and the number of payload bytes sent.

    Parameters:
        timeout: Connect/read timeout in seconds.  A hung peer blocks the
                 run for at most this long.
    """

    domain = "network"

    def __init__(
        self,
        recorder: TelemetryRecorder,
        context: RunContext | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(recorder, context)
        self.timeout = timeout

    def tcp(self, host: str, port: int, payload: str | bytes | None = None) -> Event:
        data = _as_bytes(payload, DEFAULT_TCP_PAYLOAD)
        try:
            with socket.create_connection((host, port), timeout=self.timeout) as sock:
                source = sock.getsockname()
                sock.sendall(data)
        except OSError as exc:
            raise self._fail(f"TCP connection to {host}:{port} failed: {exc}") from exc

        return self._record(EventKind.NETWORK_TCP, "TCP", len(data), host, port, source)

    def http(self, url: str, payload: str | bytes | None = None) -> Event:
        """GET *url*, or POST *payload* to it when one is given.

        Redirects are not followed, so the recorded destination is the
        endpoint the socket actually talked to.
        """
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise UsageError(f"Must provide an http(s) URL, got {url!r}")
        try:
            port = parts.port or (443 if parts.scheme == "https" else 80)
        except ValueError as exc:
            raise UsageError(f"Invalid port in URL {url!r}") from exc

        body = None if payload is None else _as_bytes(payload, b"")
        with requests.Session() as session:
            adapter = EndpointAdapter()
            session.mount("http://", adapter)
            session.mount("https://", adapter)
            try:
                if body is None:
                    response = session.get(url, timeout=self.timeout, stream=True, allow_redirects=False)
                else:
                    response = session.post(
                        url, data=body, timeout=self.timeout, stream=True, allow_redirects=False
                    )
            except requests.RequestException as exc:
                raise self._fail(f"HTTP request to {url} failed: {exc}") from exc

            with response:
                try:
                    source = _local_endpoint(response)
                    received = len(response.content)
                except (OSError, requests.RequestException) as exc:
                    raise self._fail(f"HTTP request to {url}: {exc}") from exc
                status = response.status_code

        return self._record(
            EventKind.NETWORK_HTTP,
            "HTTP",
            len(body or b""),
            parts.hostname,
            port,
            source,
            url=url,
            response_code=status,
            response_body_size=received,
        )

    def udp(self, host: str, port: int, payload: str | bytes | None = None) -> Event:
        data = _as_bytes(payload, DEFAULT_UDP_PAYLOAD)
        try:
            family, _, _, _, sockaddr = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)[0]
            with socket.socket(family, socket.SOCK_DGRAM) as sock:
                sock.settimeout(self.timeout)
                # connect() binds a concrete source address for the record
                sock.connect(sockaddr)
                sent = sock.send(data)
                source = sock.getsockname()
        except OSError as exc:
            raise self._fail(f"UDP transmission to {host}:{port} failed: {exc}") from exc

        return self._record(EventKind.NETWORK_UDP, "UDP", sent, host, port, source)

    def _record(
        self,
        kind: EventKind,
        protocol: str,
        sent: int,
        host: str,
        port: int,
        source: Sequence,
        **extra: int | str,
    ) -> Event:
        logger.info("%s %s:%s -> %s:%s (%d bytes)", protocol, source[0], source[1], host, port, sent)
        return self.recorder.record(
            kind,
            {
                **self.context.process_attributes(),
                "protocol": protocol,
                "data_in_bytes": sent,
                "destination_addr": host,
                "destination_port": int(port),
                "source_addr": source[0],
                "source_port": source[1],
                **extra,
            },
        )
