"""
=============================================================================
HTTP SERVER
=============================================================================

A threaded HTTP/1.1 server that hosts any NetHandler (normally a ServeMux
wrapped in net middleware).

=============================================================================
REQUEST FLOW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   SocketServer.accept()                                              │
    │        │                                                             │
    │        ▼                                                             │
    │   ThreadPool.submit(serve_connection) ── pool full? ──► 503, close  │
    │        │                                                             │
    │        ▼  (worker thread)                                            │
    │   ┌── keep-alive loop ─────────────────────────────────────────┐    │
    │   │  conn.read_request()                                        │    │
    │   │  RequestParser.parse()  ── HTTPParseError ──► 4xx/505, close│    │
    │   │  handler(BufferedResponseWriter(), request)                 │    │
    │   │  add Content-Length / Date / Server / Connection headers   │    │
    │   │  conn.send_response()                                       │    │
    │   └─────────────────────────────────────────────────────────────┘    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
LIFECYCLE
=============================================================================

    listen_and_serve()   blocks; raises ServerClosed once stopped
    shutdown(timeout)    stop accepting, close idle connections, wait for
                         in-flight requests; TimeoutError past the deadline
    close()              stop accepting and drop every connection now

Both shutdown() and close() are meant to be called from another thread,
which is exactly what GracefulRunner does.

=============================================================================
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

from .config import ServerConfig
from .core.connection import Connection
from .core.socket_server import SocketServer
from .core.thread_pool import ThreadPool
from .errors import HTTPParseError, ServerClosed
from .handler import NetHandler
from .http.request import RequestParser
from .http.response import BufferedResponseWriter, write_json
from .http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)


class HTTPServer:
    """
    Threaded HTTP/1.1 server.

    Usage:
        mux = ServeMux(middleware=log_and_error_handling())
        server = HTTPServer(log_entry_recorder(mux), ServerConfig(port=8080))
        server.listen_and_serve()
    """

    def __init__(self, handler: NetHandler, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.config.validate()
        self.handler = handler

        self._parser = RequestParser(self.config.max_request_size)
        self._socket_server = SocketServer(self.config)
        self._thread_pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
            queue_size=self.config.queue_size,
        )

        self._closing = threading.Event()
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); the real port once listening, even for port 0."""
        return self._socket_server.address

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the server is accepting connections."""
        return self._socket_server.wait_bound(timeout)

    def listen_and_serve(self) -> None:
        """
        Accept and serve connections until shutdown() or close().

        Raises:
            ServerClosed: The server was stopped (the normal way out)
            OSError: Binding failed or the accept loop died
        """
        if self._closing.is_set():
            raise ServerClosed()

        self._thread_pool.start()
        try:
            self._socket_server.start(self._handle_connection)
        except OSError:
            self._thread_pool.shutdown(wait=False)
            raise

        if self._closing.is_set():
            raise ServerClosed()

        self._thread_pool.shutdown(wait=False)
        raise OSError("accept loop stopped unexpectedly")

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Graceful shutdown.

        1. Stop accepting new connections
        2. Close connections that are idle between requests
        3. Let in-flight requests finish (each then closes its connection)

        Args:
            timeout: Seconds to wait for step 3 (default: config.shutdown_timeout)

        Raises:
            TimeoutError: Requests were still running at the deadline
        """
        timeout = self.config.shutdown_timeout if timeout is None else timeout
        logger.info("Shutting down server...")
        self._closing.set()
        self._socket_server.stop()

        for conn in self._snapshot():
            if conn.is_idle:
                conn.force_close()

        if not self._thread_pool.shutdown(wait=True, timeout=timeout):
            active = len(self._snapshot())
            raise TimeoutError(f"shutdown deadline exceeded with {active} active connections")
        logger.info("Server stopped")

    def close(self) -> None:
        """Stop accepting and close every connection immediately."""
        logger.info("Closing server...")
        self._closing.set()
        self._socket_server.stop()
        for conn in self._snapshot():
            conn.force_close()
        self._thread_pool.shutdown(wait=False)

    def _snapshot(self) -> List[Connection]:
        with self._lock:
            return list(self._connections.values())

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection) -> None:
        """Called on the accept thread for every new connection."""
        with self._lock:
            self._connections[conn.id] = conn

        if self._closing.is_set():
            self._forget(conn)
            return

        try:
            submitted = self._thread_pool.submit(self._serve_connection, args=(conn,), block=False)
        except RuntimeError:
            self._forget(conn)
            return

        if not submitted:
            logger.warning(f"[{conn.id}] Thread pool full, rejecting connection")
            self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server overloaded")
            self._forget(conn, graceful=True)

    def _forget(self, conn: Connection, graceful: bool = False) -> None:
        with self._lock:
            self._connections.pop(conn.id, None)
        if graceful:
            conn.close()
        else:
            conn.force_close()

    def _serve_connection(self, conn: Connection) -> None:
        """Keep-alive loop for one connection (runs on a worker thread)."""
        try:
            while not self._closing.is_set():
                if not self._serve_one(conn):
                    break
                conn.set_keep_alive()
        finally:
            self._forget(conn, graceful=True)

    def _serve_one(self, conn: Connection) -> bool:
        """
        Read, handle and answer one request.

        Returns:
            True if the connection should stay open for another request
        """
        try:
            raw = conn.read_request()
        except TimeoutError:
            self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
            return False
        except ValueError as e:
            self._send_error(conn, HTTPStatus.PAYLOAD_TOO_LARGE, str(e))
            return False
        if raw is None:
            return False

        try:
            request = self._parser.parse(raw, conn.address)
        except HTTPParseError as e:
            logger.debug(f"[{conn.id}] Parse error: {e}")
            self._send_error(conn, e.status_code, str(e))
            return False

        w = BufferedResponseWriter()
        try:
            self.handler(w, request)
        except Exception as e:
            logger.exception(f"[{conn.id}] Handler error on {request.method} {request.path}: {e}")
            if not w.committed:
                w = BufferedResponseWriter()
                write_json(w, {"error": HTTPStatus.INTERNAL_SERVER_ERROR.phrase},
                           HTTPStatus.INTERNAL_SERVER_ERROR)

        keep_alive = (
            self.config.keep_alive
            and request.is_keep_alive
            and not self._closing.is_set()
            and w.headers.get("Connection").lower() != "close"
        )
        if keep_alive:
            w.headers.setdefault("Connection", "keep-alive")
            w.headers.setdefault("Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}")
        else:
            w.headers.set("Connection", "close")

        data = w.to_bytes(self.config.server_name, include_body=request.method != "HEAD")
        if not conn.send_response(data):
            return False
        return keep_alive

    def _send_error(self, conn: Connection, status: int, message: str) -> None:
        """Answer a request that never reached the handler."""
        w = BufferedResponseWriter()
        w.headers.set("Connection", "close")
        write_json(w, {"error": message}, status)
        conn.send_response(w.to_bytes(self.config.server_name))
