"""
=============================================================================
ERRORS
=============================================================================

Exception types shared by the whole request lifecycle.

=============================================================================
RESOLVED VS UNRESOLVED ERRORS
=============================================================================

A handler signals failure by raising. Somewhere up the middleware chain an
error mapper turns that exception into an HTTP response. Once it has done
so, the error is "resolved": the client got a proper answer, and the
remaining layers should only log it, not render it again.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     ERROR FLOW THROUGH THE MUX                      │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   handler raises HTTPError(400, "bad input")                        │
    │        │                                                             │
    │        ▼                                                             │
    │   error mapper writes 400 {"error": "bad input"}                    │
    │        │                                                             │
    │        ▼                                                             │
    │   raise ResolvedError(original) ──► logged at INFO                  │
    │                                                                      │
    │   handler raises KeyError(...)                                      │
    │        │                                                             │
    │        ▼                                                             │
    │   error mapper writes 500, returns it as-is ──► logged at ERROR     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

ResolvedError is a thin wrapper: str() is the original message and the
original stays reachable both as `.err` and as `__cause__`, so
`find_error()` and tracebacks see through it.

=============================================================================
"""

from typing import Optional, Type, TypeVar


E = TypeVar("E", bound=BaseException)


class HTTPParseError(Exception):
    """
    Raised when HTTP request parsing fails.

    Carries the status code that should be sent back to the client:

        400 Bad Request              - Malformed request syntax
        405 Method Not Allowed       - Unknown method token
        413 Payload Too Large        - Request exceeds size limit
        505 HTTP Version Not Supported
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class HTTPError(Exception):
    """
    An application error that already knows its HTTP status.

    Raise it from a handler when the failure maps cleanly onto a status
    code. The default error mapper renders it as JSON and marks it resolved.

    Example:
        raise HTTPError(404, "user not found")
    """

    def __init__(self, status_code: int, message: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ResolvedError(Exception):
    """
    Marks an error as already handled.

    The wrapped error is available as `.err` and as `__cause__`.
    Its string form is the wrapped error's string form, nothing more.
    """

    def __init__(self, err: BaseException):
        super().__init__(err)
        self.err = err
        self.__cause__ = err

    def __str__(self) -> str:
        return str(self.err)


def resolve_error(err: BaseException) -> ResolvedError:
    """Wrap `err` so upstream layers know a response was already written."""
    return ResolvedError(err)


def find_error(err: Optional[BaseException], cls: Type[E]) -> Optional[E]:
    """
    Find the first exception of type `cls` in the chain starting at `err`.

    Follows explicit links only: `raise ... from ...` and the error a
    ResolvedError wraps. The implicit `__context__` Python attaches to
    anything raised inside an `except` block is not followed, so a new
    failure raised while handling a resolved one is not itself resolved.

    Args:
        err: Exception to start from (may be None)
        cls: Exception class to look for

    Returns:
        The matching exception, or None
    """
    seen = set()
    while err is not None and id(err) not in seen:
        if isinstance(err, cls):
            return err
        seen.add(id(err))
        if err.__cause__ is None and isinstance(err, ResolvedError):
            err = err.err
        else:
            err = err.__cause__
    return None


def is_resolved(err: Optional[BaseException]) -> bool:
    """Check whether `err` or anything it was chained from is a ResolvedError."""
    return find_error(err, ResolvedError) is not None


class ServerClosed(Exception):
    """Raised by HTTPServer.listen_and_serve() once shutdown() or close() ran."""

    def __init__(self, message: str = "http: server closed"):
        super().__init__(message)


class RunnerError(Exception):
    """A GracefulRunner lifecycle failure. The underlying error is __cause__."""
