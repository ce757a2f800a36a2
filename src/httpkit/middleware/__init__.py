"""
=============================================================================
MIDDLEWARE
=============================================================================

Two kinds of middleware, one per handler contract:

    MuxMiddleware   Handler → Handler         (may raise; inside the mux)
    NetMiddleware   NetHandler → NetHandler   (must not raise; around it)

    net middleware          log_entry_recorder, cors
      └─ ServeMux
           └─ mux middleware    log_and_error_handling, auth, ...
                └─ route handler

Lists are reduced so the FIRST middleware listed is the OUTERMOST.

=============================================================================
"""

from .base import (
    MuxMiddleware,
    NetMiddleware,
    identity,
    mux_middleware,
    net_middleware,
    reduce_mux_middleware,
    reduce_net_middleware,
    then,
)
from .cors import CORSConfig, cors
from .logging import RequestLog, log_and_error_handling, map_error


__all__ = [
    "MuxMiddleware",
    "NetMiddleware",
    "reduce_mux_middleware",
    "reduce_net_middleware",
    "then",
    "identity",
    "mux_middleware",
    "net_middleware",
    "CORSConfig",
    "cors",
    "RequestLog",
    "log_and_error_handling",
    "map_error",
]
