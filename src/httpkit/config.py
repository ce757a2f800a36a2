"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Settings for HTTPServer and the demo entry point, in one dataclass.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    Priority (highest to lowest):

    1. Command-line arguments     python -m httpkit --port 3000
    2. Environment variables      HTTP_PORT=3000 python -m httpkit
    3. Defaults in this dataclass

Validation happens once, when the server is built, so a bad value fails
at startup rather than on the first request.

=============================================================================
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class ServerConfig:
    """
    Configuration for the HTTP server.

    NETWORK      host, port, backlog, buffer_size, timeout
    HTTP         keep_alive, keep_alive_timeout, max_request_size
    THREADING    min_workers, max_workers, queue_size
    LIFECYCLE    shutdown_timeout
    LOGGING      log_level, log_format
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────
    host: str = "127.0.0.1"
    port: int = 8080
    """0 lets the OS pick a free port (handy in tests)."""
    backlog: int = 128
    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    """Socket read timeout for the first request on a connection."""

    # ─────────────────────────────────────────────────────────────────────
    # HTTP SETTINGS
    # ─────────────────────────────────────────────────────────────────────
    keep_alive: bool = True
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024  # 10 MB

    # ─────────────────────────────────────────────────────────────────────
    # THREAD POOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────
    min_workers: int = 4
    max_workers: int = 16
    queue_size: int = 100
    """Connections waiting for a worker; beyond this the server answers 503."""

    # ─────────────────────────────────────────────────────────────────────
    # LIFECYCLE
    # ─────────────────────────────────────────────────────────────────────
    shutdown_timeout: float = 5.0
    """How long a graceful shutdown waits for in-flight requests."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "text"
    """Access log format: 'text' or 'json'."""

    server_name: str = "httpkit/1.0"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

            HTTP_HOST              Server host (default: 127.0.0.1)
            HTTP_PORT              Server port (default: 8080)
            HTTP_WORKERS           Max worker threads (default: 16)
            HTTP_TIMEOUT           Read timeout in seconds (default: 30)
            HTTP_SHUTDOWN_TIMEOUT  Graceful shutdown wait (default: 5)
            HTTP_LOG_LEVEL         Logging level (default: INFO)
            HTTP_LOG_FORMAT        Access log format (default: text)
        """
        return cls(
            host=os.getenv("HTTP_HOST", "127.0.0.1"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            max_workers=int(os.getenv("HTTP_WORKERS", "16")),
            timeout=float(os.getenv("HTTP_TIMEOUT", "30")),
            shutdown_timeout=float(os.getenv("HTTP_SHUTDOWN_TIMEOUT", "5")),
            log_level=os.getenv("HTTP_LOG_LEVEL", "INFO"),
            log_format=os.getenv("HTTP_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """Raise ValueError on the first invalid setting."""
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")
        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")
        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")
        if self.queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if self.shutdown_timeout <= 0:
            raise ValueError("shutdown_timeout must be > 0")
        if self.log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', got {self.log_format!r}")


def setup_logging(config: ServerConfig) -> None:
    """Configure the root logger from `config`."""
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    logging.getLogger("httpkit").setLevel(level)
