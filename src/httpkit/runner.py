"""
=============================================================================
GRACEFUL RUNNER
=============================================================================

Runs a server until SIGTERM / SIGINT, then shuts it down gracefully and,
if that takes too long, forcefully.

=============================================================================
SHUTDOWN SEQUENCE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   server thread: server.listen_and_serve()                           │
    │                                                                      │
    │   main thread: wait for ──┬── signal (SIGTERM, SIGINT, notify())    │
    │                           │      │                                   │
    │                           │      ▼                                   │
    │                           │   server.shutdown(wait_timeout)          │
    │                           │      ├── ok ────────► wait for thread   │
    │                           │      ├── TimeoutError ► server.close()  │
    │                           │      │      └── fails ► RunnerError     │
    │                           │      └── other error ► RunnerError      │
    │                           │                                          │
    │                           └── server failed ───► RunnerError        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    docker stop      → SIGTERM → graceful shutdown
    Ctrl+C           → SIGINT  → graceful shutdown
    kill -9          → SIGKILL → cannot be caught

Works with anything shaped like a Runner, not just HTTPServer. Signal
handlers can only be installed from the main thread; elsewhere the runner
still works, driven by notify().

=============================================================================
"""

import logging
import queue
import signal
import threading
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol, Tuple

from .errors import RunnerError, ServerClosed


logger = logging.getLogger(__name__)


class Runner(Protocol):
    """A server that can be started, shut down gracefully, and force closed."""

    def listen_and_serve(self) -> None:
        """Serve until stopped; raise ServerClosed after shutdown()/close()."""

    def shutdown(self, timeout: float) -> None:
        """Wait for active work; raise TimeoutError past `timeout`."""

    def close(self) -> None:
        """Force close."""


class RunEvent(Enum):
    """Kinds of lifecycle events reported to the event listener."""
    INFO = "info"
    ADDR = "listening on address"
    ERROR = "error occurred"
    SIGNAL = "signal received"

    def __str__(self) -> str:
        return self.value


EventListener = Callable[[RunEvent, str], None]


def log_event(event: RunEvent, data: str) -> None:
    """Default event listener: one log line per event."""
    level = logging.ERROR if event is RunEvent.ERROR else logging.INFO
    logger.log(level, f"{event}: {data}")


def _signal_name(sig: int) -> str:
    try:
        return signal.Signals(sig).name
    except ValueError:
        return str(sig)


class GracefulRunner:
    """
    Run a server with graceful shutdown on signals.

    Usage:
        runner = GracefulRunner(HTTPServer(handler, config), wait_timeout=10.0)
        runner.listen_and_serve()   # returns after a clean shutdown

    Args:
        server: Anything implementing the Runner protocol
        signals: Signals that start a shutdown
        wait_timeout: How long shutdown() may take before close() is used
        event_listener: Receives (RunEvent, str) for every lifecycle event
    """

    def __init__(
        self,
        server: Runner,
        signals: Iterable[int] = (signal.SIGTERM, signal.SIGINT),
        wait_timeout: float = 5.0,
        event_listener: Optional[EventListener] = None,
    ):
        self.server = server
        self.signals = tuple(signals)
        self.wait_timeout = wait_timeout if wait_timeout and wait_timeout > 0 else 5.0
        self.event_listener = event_listener or log_event
        self._events: "queue.Queue[Tuple[str, object]]" = queue.Queue()

    def notify(self, sig: int) -> None:
        """Start a shutdown as if `sig` had been received. Thread-safe."""
        self._events.put(("signal", sig))

    def _emit(self, event: RunEvent, data: str) -> None:
        self.event_listener(event, data)

    # =========================================================================
    # SIGNALS
    # =========================================================================

    def _install_signals(self) -> dict:
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, signal handlers not installed")
            return {}

        def handler(signum, frame):
            self.notify(signum)

        return {sig: signal.signal(sig, handler) for sig in self.signals}

    @staticmethod
    def _restore_signals(previous: dict) -> None:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    # =========================================================================
    # RUN
    # =========================================================================

    def _serve(self) -> None:
        try:
            self.server.listen_and_serve()
        except ServerClosed:
            self._events.put(("closed", None))
        except Exception as e:
            self._emit(RunEvent.ERROR, "server failed")
            self._events.put(("failed", e))
        else:
            self._events.put(("closed", None))

    def _announce(self, thread: threading.Thread) -> None:
        wait_ready = getattr(self.server, "wait_ready", None)
        if wait_ready is None:
            self._emit(RunEvent.INFO, "server is listening")
            return
        while thread.is_alive() and self._events.empty():
            if wait_ready(0.05):
                host, port = self.server.address
                self._emit(RunEvent.ADDR, f"{host}:{port}")
                return

    def _next_event(self) -> Tuple[str, object]:
        # Short timeouts keep the main thread responsive to signal handlers.
        while True:
            try:
                return self._events.get(timeout=0.2)
            except queue.Empty:
                continue

    def listen_and_serve(self) -> None:
        """
        Serve until a signal arrives, then shut down.

        Returns normally after a graceful or a successful forced shutdown.

        Raises:
            RunnerError: The server failed, or could not be shut down
        """
        previous = self._install_signals()
        thread = threading.Thread(target=self._serve, name="httpkit-runner", daemon=True)
        try:
            thread.start()
            self._announce(thread)

            kind, value = self._next_event()
            if kind == "failed":
                raise RunnerError("server failed to start") from value
            if kind == "closed":
                self._emit(RunEvent.INFO, "server closed")
                return

            return self._shutdown(value, thread)
        finally:
            self._restore_signals(previous)

    def _shutdown(self, sig: int, thread: threading.Thread) -> None:
        name = _signal_name(sig)
        self._emit(RunEvent.SIGNAL, name)
        self._emit(RunEvent.INFO, "graceful shutdown initiated")

        try:
            self.server.shutdown(self.wait_timeout)
        except TimeoutError:
            self._emit(RunEvent.INFO, "forced shutdown initiated")
            try:
                self.server.close()
            except Exception as close_err:
                self._emit(RunEvent.ERROR, "forced shutdown failed")
                raise RunnerError("deadline exceeded, force shutdown failed") from close_err
            self._emit(RunEvent.INFO, "forced shutdown completed")
            return
        except Exception as e:
            self._emit(RunEvent.ERROR, "graceful shutdown failed")
            raise RunnerError(f"shutdown failed, signal: {name}") from e

        thread.join()
        self._emit(RunEvent.INFO, "graceful shutdown completed")
