"""
Shared fixtures: an isolated recorder plus loopback TCP/UDP/HTTP servers.
"""

import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from edrtest.context import RunContext
from edrtest.recorder import TelemetryRecorder


@pytest.fixture
def context():
    return RunContext(
        username="testuser",
        hostname="testhost",
        os_name="Linux",
        process_name="edrtest",
        process_command="edrtest --all",
        process_id=4321,
    )


@pytest.fixture
def recorder(tmp_path, context):
    rec = TelemetryRecorder(
        json_path=tmp_path / "logs" / "events.json",
        text_path=tmp_path / "logs" / "events.log",
        context=context,
    )
    yield rec
    rec.close()


@pytest.fixture
def tcp_server():
    with socket.create_server(("127.0.0.1", 0)) as server:
        yield server


@pytest.fixture
def tcp_server_b():
    with socket.create_server(("127.0.0.1", 0)) as server:
        yield server


@pytest.fixture
def closed_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def udp_server():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as server:
        server.bind(("127.0.0.1", 0))
        server.settimeout(2.0)
        yield server


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        self._reply(200, b"ok")

    def do_POST(self):
        length = int(self.headers.get("Content-Length", 0))
        self.rfile.read(length)
        self._reply(201, b"created")

    def _reply(self, status, body):
        self.send_response(status)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):  # noqa: A002
        pass


@pytest.fixture(params=["HTTP/1.0", "HTTP/1.1"])
def http_server(request, monkeypatch):
    """Loopback HTTP server; HTTP/1.0 closes the connection after each reply."""
    monkeypatch.setenv("NO_PROXY", "127.0.0.1,localhost")
    monkeypatch.setenv("no_proxy", "127.0.0.1,localhost")
    handler = type("Handler", (_Handler,), {"protocol_version": request.param})
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()
