"""
=============================================================================
LOG AND ERROR HANDLING MIDDLEWARE
=============================================================================

A mux middleware that turns handler exceptions into responses and writes
one access-log line per request.

=============================================================================
FLOW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                  log_and_error_handling()(next)                     │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   entry = get_log_entry(w) ── None? ──► raise RuntimeError          │
    │        │                                (recorder not installed)    │
    │        ▼                                                             │
    │   next(w, r)                                                         │
    │        │                                                             │
    │        ├── returned ─────────────────► INFO  "completed"            │
    │        │                                                             │
    │        └── raised err                                                │
    │               │                                                      │
    │               ▼                                                      │
    │          error_mapper(w, err)                                        │
    │               ├── ResolvedError ─────► INFO  "resolved_error"       │
    │               └── anything else ─────► ERROR "unresolved_error"     │
    │                                                                      │
    │   the error is handled here: nothing propagates further             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Status and latency come from the LogEntry filled in by the recorder, so
this middleware needs log_entry_recorder somewhere in the net chain.

=============================================================================
LOG RECORDS
=============================================================================

Every record goes to the "httpkit.access" logger. The message is either
a compact text line or a JSON object (log_format="json"), and the same
fields are attached to the record via `extra` for structured handlers:

    completed GET /data/1 status=200 latency=1.27ms uri=/data/1?x=1
    {"msg": "completed", "method": "GET", "path": "/data/1", ...}

=============================================================================
"""

from dataclasses import dataclass
from typing import Callable, Optional
import json
import logging

from ..errors import HTTPError, HTTPParseError, ResolvedError, find_error, is_resolved, resolve_error
from ..handler import Handler
from ..http.request import HTTPRequest
from ..http.response import ResponseWriter, write_json
from ..http.status_codes import HTTPStatus
from ..recorder import LogEntry, get_log_entry
from .base import MuxMiddleware


access_logger = logging.getLogger("httpkit.access")


ErrorMapper = Callable[[ResponseWriter, Exception], Exception]


@dataclass
class RequestLog:
    """
    Structured access-log record for one request.

    Attributes:
        msg:        "completed", "resolved_error" or "unresolved_error"
        method:     HTTP method
        path:       Request path
        uri:        Raw request target including query string
        status:     Committed status (0 if nothing was committed)
        latency_ms: Checkout to status commit, in milliseconds
        error:      Error message for the error outcomes
    """

    msg: str
    method: str
    path: str
    uri: str
    status: int
    latency_ms: float
    error: Optional[str] = None

    @classmethod
    def from_entry(cls, msg: str, r: HTTPRequest, entry: LogEntry,
                   error: Optional[BaseException] = None) -> "RequestLog":
        return cls(
            msg=msg,
            method=r.method,
            path=r.path,
            uri=r.uri,
            status=int(entry.status_code),
            latency_ms=entry.latency * 1000,
            error=str(error) if error is not None else None,
        )

    def to_dict(self) -> dict:
        data = {
            "msg": self.msg,
            "method": self.method,
            "path": self.path,
            "uri": self.uri,
            "status": self.status,
            "latency_ms": round(self.latency_ms, 3),
        }
        if self.error is not None:
            data["error"] = self.error
        return data

    def to_text(self) -> str:
        text = (
            f"{self.msg} {self.method} {self.path} status={self.status} "
            f"latency={self.latency_ms:.2f}ms uri={self.uri}"
        )
        if self.error is not None:
            text += f" error={self.error!r}"
        return text


def map_error(w: ResponseWriter, err: Exception) -> Exception:
    """
    Default error mapper: render `err` as a JSON error response.

    already resolved    → returned untouched, nothing written
    HTTPError           → its status, {"error": message}, returned RESOLVED
    HTTPParseError      → same, for bad request bodies (read_json)
    anything else       → 500, {"error": "Internal Server Error"}, returned as-is

    If writing the response fails, the write error is returned (chained to
    the original via __cause__) and is therefore unresolved.
    """
    if is_resolved(err):
        return err

    if isinstance(err, HTTPError):
        status, message, resolve = err.status_code, err.message or str(err), True
    elif isinstance(err, HTTPParseError):
        status, message, resolve = err.status_code, str(err), True
    else:
        status, message, resolve = (
            HTTPStatus.INTERNAL_SERVER_ERROR, HTTPStatus.INTERNAL_SERVER_ERROR.phrase, False
        )

    try:
        write_json(w, {"error": message}, status)
    except Exception as write_err:
        write_err.__cause__ = err
        return write_err

    return resolve_error(err) if resolve else err


def log_and_error_handling(
    logger: Optional[logging.Logger] = None,
    error_mapper: ErrorMapper = map_error,
    log_format: str = "text",
) -> MuxMiddleware:
    """
    Build the log-and-error-handling middleware.

    Args:
        logger: Where access records go (default "httpkit.access")
        error_mapper: Renders an error and returns it, resolved or not
        log_format: "text" or "json"

    Returns:
        A MuxMiddleware. Place it first in the global middleware so its
        log line covers everything inside.
    """
    log = logger or access_logger

    def emit(level: int, record: RequestLog, exc: Optional[BaseException] = None) -> None:
        message = json.dumps(record.to_dict()) if log_format == "json" else record.to_text()
        log.log(level, message, extra={"request": record.to_dict()}, exc_info=exc)

    def middleware(next_handler: Handler) -> Handler:
        def handler(w: ResponseWriter, r: HTTPRequest) -> None:
            entry = get_log_entry(w)
            if entry is None:
                raise RuntimeError(f"missing log entry: method={r.method} path={r.path}")

            try:
                next_handler(w, r)
            except Exception as err:
                mapped = error_mapper(w, err)
                resolved = find_error(mapped, ResolvedError)
                if resolved is not None:
                    emit(logging.INFO, RequestLog.from_entry("resolved_error", r, entry, resolved.err))
                else:
                    emit(logging.ERROR, RequestLog.from_entry("unresolved_error", r, entry, mapped),
                         exc=mapped)
                return

            emit(logging.INFO, RequestLog.from_entry("completed", r, entry))

        return handler

    return middleware
