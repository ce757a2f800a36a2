"""
=============================================================================
CLIENT CONNECTION
=============================================================================

Wraps an accepted client socket: buffered reads of complete HTTP
requests, response writes, keep-alive timeouts and a clean TCP close.

=============================================================================
READING ONE REQUEST
=============================================================================

TCP delivers bytes in arbitrary chunks, so the connection buffers:

    recv() until "\r\n\r\n"           ← headers complete
    parse Content-Length               ← how much body follows
    recv() until body complete
    slice one request off the buffer   ← extra bytes stay for the next one

First request on a connection uses `timeout`; later ones use the shorter
`keep_alive_timeout`, and a timeout there just means the client is done.

=============================================================================
"""

import logging
import socket
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Lifecycle states, used for logging and shutdown decisions."""
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    One client connection.

    Attributes:
        socket: The accepted client socket
        address: Client (ip, port)
        id: Short identifier for log lines
        state: Current ConnectionState
        requests_handled: Requests read so far on this connection
    """

    socket: socket.socket
    address: Tuple[str, int]

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def is_idle(self) -> bool:
        """True while waiting for a request rather than serving one."""
        return self.state in (ConnectionState.NEW, ConnectionState.KEEP_ALIVE)

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete HTTP request (headers + body).

        Returns:
            Raw request bytes, or None if the client closed the connection
            or went quiet on a keep-alive connection.

        Raises:
            TimeoutError: The first request did not arrive in time
            ValueError: The request exceeds max_request_size
        """
        # Stays NEW / KEEP_ALIVE (idle) until the first byte of a request.
        if self._buffer:
            self.state = ConnectionState.READING
        self.last_activity = time.time()

        try:
            if self.requests_handled > 0:
                self.socket.settimeout(self.keep_alive_timeout)

            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None
                self.state = ConnectionState.READING
                self._buffer += chunk
                self._check_size()

            header_end = self._buffer.find(b"\r\n\r\n")
            body_start = header_end + 4
            content_length = self._parse_content_length(self._buffer[:header_end])

            while len(self._buffer) - body_start < content_length:
                chunk = self._recv()
                if not chunk:
                    break
                self._buffer += chunk
                self._check_size()

            request_end = body_start + content_length
            request_data, self._buffer = self._buffer[:request_end], self._buffer[request_end:]

            self.requests_handled += 1
            self.state = ConnectionState.PROCESSING
            return request_data

        except socket.timeout:
            if self.requests_handled > 0:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")
        except OSError:
            if self.state == ConnectionState.CLOSED:
                return None
            raise
        finally:
            if self.state != ConnectionState.CLOSED:
                try:
                    self.socket.settimeout(self.timeout)
                except OSError:
                    pass

    def _check_size(self) -> None:
        if len(self._buffer) > self.max_request_size:
            raise ValueError(f"Request too large: {len(self._buffer)} bytes")

    def _recv(self) -> bytes:
        try:
            data = self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError):
            return b""
        except OSError:
            # Closed under us by a forced shutdown.
            if self.state == ConnectionState.CLOSED:
                return b""
            raise
        self.last_activity = time.time()
        return data

    @staticmethod
    def _parse_content_length(headers: bytes) -> int:
        """Content-Length from raw header bytes, 0 if absent or invalid."""
        for line in headers.decode("latin-1").lower().split("\r\n"):
            if line.startswith("content-length:"):
                try:
                    return max(int(line.split(":", 1)[1].strip()), 0)
                except ValueError:
                    return 0
        return 0

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Send a full response with sendall().

        Returns:
            True on success, False if the client went away
        """
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False
        self.last_activity = time.time()
        return True

    def set_keep_alive(self) -> None:
        self.state = ConnectionState.KEEP_ALIVE

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self) -> None:
        """
        Close gracefully: FIN, drain what the client still sends, release
        the descriptor. Safe to call more than once.
        """
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass

        self.force_close()

    def force_close(self) -> None:
        """Release the socket immediately, without the graceful dance."""
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        try:
            # Wakes up a worker blocked in recv() on this socket.
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self.socket.close()
        except OSError:
            pass
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")
