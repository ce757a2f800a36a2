"""
=============================================================================
SOCKET SERVER
=============================================================================

The TCP layer under HTTPServer: bind, listen, accept, and hand every
accepted client to a callback as a Connection.

    socket() ─► setsockopt() ─► bind() ─► listen() ─► accept loop
                                                          │
                                     Connection(client) ◄─┘
                                          │
                                          ▼
                                  connection_handler(conn)

The accept loop wakes up every second (socket timeout) to check whether
it should stop, so stop() from another thread takes effect promptly.
Signal handling lives in GracefulRunner, not here: the socket server can
run in any thread.

=============================================================================
"""

import logging
import socket
import threading
from typing import Callable, Optional, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)


ConnectionHandler = Callable[[Connection], None]


class SocketServer:
    """
    Listening TCP socket plus accept loop.

    Usage:
        server = SocketServer(config)
        server.start(handle_connection)   # blocks until stop()
    """

    def __init__(self, config: ServerConfig):
        self.config = config
        self._socket: Optional[socket.socket] = None
        self._running = False
        self._bound = threading.Event()
        self._address: Optional[Tuple[str, int]] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """
        The bound (host, port). With port 0 this is the port the OS picked,
        available once wait_bound() returns True.
        """
        return self._address or (self.config.host, self.config.port)

    def wait_bound(self, timeout: Optional[float] = None) -> bool:
        """Block until the socket is listening."""
        return self._bound.wait(timeout)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(1.0)
        return sock

    def start(self, connection_handler: ConnectionHandler) -> None:
        """
        Bind, listen, and accept until stop() is called.

        Raises:
            OSError: The address could not be bound
        """
        self._socket = self._create_socket()
        try:
            self._socket.bind((self.config.host, self.config.port))
            self._socket.listen(self.config.backlog)
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._cleanup()
            raise

        self._address = self._socket.getsockname()[:2]
        self._running = True
        self._bound.set()
        logger.info(f"Server listening on {self._address[0]}:{self._address[1]}")

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: ConnectionHandler) -> None:
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Accept error: {e}")
                break

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")
            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                keep_alive_timeout=self.config.keep_alive_timeout,
                max_request_size=self.config.max_request_size,
            )
            connection_handler(conn)

    def stop(self) -> None:
        """Stop accepting. Idempotent and safe from any thread."""
        if self._running:
            logger.info("Stopping socket server...")
        self._running = False

    def _cleanup(self) -> None:
        self._running = False
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
        logger.info("Socket server stopped")
