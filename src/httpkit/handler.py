"""
=============================================================================
HANDLER CONTRACTS
=============================================================================

Two handler shapes flow through this package. They have the same call
signature and differ only in what they're allowed to do on failure:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │  NetHandler(w, r) -> None                                           │
    │     Raw network handler. Must deal with its own failures; nothing   │
    │     above it will turn an exception into a response.                │
    │     Used by: server, net middleware (CORS, recorder), router        │
    │                                                                      │
    │  Handler(w, r) -> None                                              │
    │     Error-aware handler. Returning normally means success.          │
    │     Raising means failure: the exception travels up through the     │
    │     mux middleware (which may log, map or resolve it) and lands in  │
    │     the mux's last-resort error handler.                            │
    │     Used by: routes, mux middleware                                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

An error-aware handler may already have written headers, a status or part
of the body before it raises. Whoever handles the exception must not
assume the response is still blank.

=============================================================================
"""

from typing import Callable

from .http.request import HTTPRequest
from .http.response import ResponseWriter
from .http.router import NetHandler, PanicHandler


Handler = Callable[[ResponseWriter, HTTPRequest], None]

# (w, r, err): called with the exception that escaped a handler chain
ErrorHandler = Callable[[ResponseWriter, HTTPRequest, Exception], None]


__all__ = ["Handler", "NetHandler", "ErrorHandler", "PanicHandler"]
