"""
=============================================================================
HTTPKIT
=============================================================================

An error-aware HTTP toolkit: handlers that raise, middleware on both sides
of the router, and a pooled recorder that gives access logs the status,
latency and bodies of every request.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   HTTPServer / GracefulRunner                                        │
    │     └─ log_entry_recorder           (net middleware)                 │
    │          └─ cors                    (net middleware)                 │
    │               └─ ServeMux                                            │
    │                    └─ log_and_error_handling   (mux middleware)      │
    │                         └─ route middleware                          │
    │                              └─ handler(w, r)  raises on failure    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Quick start:

    from httpkit import HTTPServer, ServeMux, log_and_error_handling, log_entry_recorder
    from httpkit.http import write_json

    mux = ServeMux(middleware=log_and_error_handling())

    @mux.get("/hello/:name")
    def hello(w, r):
        write_json(w, {"hello": r.path_params.by_name("name")})

    HTTPServer(log_entry_recorder(mux)).listen_and_serve()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig, setup_logging
from .errors import (
    HTTPError,
    HTTPParseError,
    ResolvedError,
    RunnerError,
    ServerClosed,
    find_error,
    is_resolved,
    resolve_error,
)
from .handler import ErrorHandler, Handler, NetHandler, PanicHandler
from .middleware import (
    CORSConfig,
    cors,
    log_and_error_handling,
    reduce_mux_middleware,
    reduce_net_middleware,
)
from .mux import DefaultHandlers, MuxConfig, Route, ServeMux, path_params
from .recorder import LogEntry, LogEntryRecorder, get_log_entry, log_entry_recorder
from .runner import GracefulRunner, RunEvent, Runner
from .server import HTTPServer


__all__ = [
    "__version__",
    # Contracts
    "Handler",
    "NetHandler",
    "ErrorHandler",
    "PanicHandler",
    # Errors
    "HTTPError",
    "HTTPParseError",
    "ResolvedError",
    "ServerClosed",
    "RunnerError",
    "resolve_error",
    "find_error",
    "is_resolved",
    # Routing
    "ServeMux",
    "MuxConfig",
    "Route",
    "DefaultHandlers",
    "path_params",
    # Middleware
    "reduce_mux_middleware",
    "reduce_net_middleware",
    "log_and_error_handling",
    "cors",
    "CORSConfig",
    # Recorder
    "LogEntry",
    "LogEntryRecorder",
    "log_entry_recorder",
    "get_log_entry",
    # Serving
    "HTTPServer",
    "GracefulRunner",
    "Runner",
    "RunEvent",
    "ServerConfig",
    "setup_logging",
]
