"""
pytest configuration and fixtures.
"""

import socket
import threading
from typing import Callable, Generator, List
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from httpkit import HTTPServer, ServerClosed, ServerConfig
from httpkit.handler import NetHandler
from httpkit.pool import ByteBufferPool
from httpkit.recorder import LogEntryRecorder


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /api/users?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: application/json\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with JSON body."""
    body = b'{"name": "John", "email": "john@example.com"}'
    return (
        b"POST /api/users HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: application/json\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        min_workers=2,
        max_workers=4,
        timeout=5.0,
        keep_alive_timeout=1.0,
        shutdown_timeout=2.0,
        log_level="WARNING",
    )


@pytest.fixture
def recorder() -> LogEntryRecorder:
    """A recorder with its own pools, so tests don't share recycled state."""
    return LogEntryRecorder(buffer_pool=ByteBufferPool())


class TestServer:
    """Runs an HTTPServer on a background thread."""

    __test__ = False  # not a test class

    def __init__(self, server: HTTPServer):
        self.server = server
        self.errors: List[BaseException] = []
        self._thread: threading.Thread = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self) -> "TestServer":
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()
        if not self.server.wait_ready(5.0):
            raise RuntimeError("Server failed to start")
        return self

    def _run(self):
        try:
            self.server.listen_and_serve()
        except ServerClosed:
            pass
        except Exception as e:
            self.errors.append(e)

    def connect(self) -> socket.socket:
        sock = socket.create_connection(("127.0.0.1", self.port), timeout=5.0)
        return sock

    def request(self, raw: bytes) -> bytes:
        """Send one raw request on a fresh connection and read until close."""
        with self.connect() as sock:
            sock.sendall(raw)
            return recv_all(sock)

    def stop(self):
        self.server.close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)


def recv_all(sock: socket.socket) -> bytes:
    chunks = []
    while True:
        chunk = sock.recv(65536)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


@pytest.fixture
def serve(config: ServerConfig) -> Generator[Callable[[NetHandler], TestServer], None, None]:
    """Factory fixture: serve(handler) starts a live server for `handler`."""
    started: List[TestServer] = []

    def start(handler: NetHandler, **overrides) -> TestServer:
        for key, value in overrides.items():
            setattr(config, key, value)
        test_srv = TestServer(HTTPServer(handler, config)).start()
        started.append(test_srv)
        return test_srv

    yield start

    for test_srv in started:
        test_srv.stop()
