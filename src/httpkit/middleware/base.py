"""
=============================================================================
MIDDLEWARE COMPOSITION
=============================================================================

A middleware is a function from handler to handler:

    MuxMiddleware = Callable[[Handler], Handler]         (errors visible)
    NetMiddleware = Callable[[NetHandler], NetHandler]   (raw network level)

Both kinds compose the same way, but they live at different layers and
never nest into each other on their own:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     TWO MIDDLEWARE LAYERS                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   server                                                             │
    │     └─ NET: cors ─► log_entry_recorder ─► ServeMux                  │
    │                                             │                        │
    │                                             ├─ routing               │
    │                                             └─ MUX: global ─► route │
    │                                                   └─► handler       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
REDUCTION ORDER
=============================================================================

    reduce_mux_middleware(m1, m2, m3)(h)  ==  m1(m2(m3(h)))

The FIRST middleware listed is the OUTERMOST: it runs first on the way
in and its post-processing (including finally blocks) runs last on the
way out. Reducing nothing gives the identity.

We wrap in REVERSE order so the first-listed ends up outside:

    current = h
    current = m3(current)      # m3 calls h
    current = m2(current)      # m2 calls m3
    current = m1(current)      # m1 calls m2

Reduction builds nothing but closures, so reducing the same list twice
gives two independent chains with no shared state.

=============================================================================
"""

from functools import wraps
from typing import Callable, TypeVar

from ..handler import Handler, NetHandler
from ..http.request import HTTPRequest
from ..http.response import ResponseWriter


MuxMiddleware = Callable[[Handler], Handler]
NetMiddleware = Callable[[NetHandler], NetHandler]

H = TypeVar("H", bound=Callable[[ResponseWriter, HTTPRequest], None])


def _reduce(*middleware: Callable[[H], H]) -> Callable[[H], H]:
    def apply(handler: H) -> H:
        for mw in reversed(middleware):
            handler = mw(handler)
        return handler
    return apply


def reduce_mux_middleware(*middleware: MuxMiddleware) -> MuxMiddleware:
    """
    Collapse mux middleware into one, first listed = outermost.

    Example:
        chain = reduce_mux_middleware(log_and_error_handling(), auth)
        handler = chain(get_user)
    """
    return _reduce(*middleware)


def reduce_net_middleware(*middleware: NetMiddleware) -> NetMiddleware:
    """
    Collapse net middleware into one, first listed = outermost.

    Example:
        app = reduce_net_middleware(cors(), log_entry_recorder)(mux)
    """
    return _reduce(*middleware)


def then(middleware: Callable[[H], H], handler: H) -> H:
    """Apply `middleware` to `handler`."""
    return middleware(handler)


def identity(handler: H) -> H:
    """Middleware that does nothing."""
    return handler


# =============================================================================
# FUNCTION MIDDLEWARE
# =============================================================================
#
# Most middleware only wants (w, r, next). These decorators turn such a
# function into a proper handler → handler middleware:
#
#     @mux_middleware
#     def trace(w, r, next):
#         r.context["trace"] = "start"
#         next(w, r)
#
#     handler = trace(handler)
#
# =============================================================================

def _function_middleware(func: Callable[[ResponseWriter, HTTPRequest, H], None]) -> Callable[[H], H]:
    @wraps(func)
    def middleware(next_handler: H) -> H:
        def handler(w: ResponseWriter, r: HTTPRequest) -> None:
            func(w, r, next_handler)
        handler.__name__ = f"{func.__name__}({getattr(next_handler, '__name__', 'handler')})"
        return handler
    return middleware


def mux_middleware(func: Callable[[ResponseWriter, HTTPRequest, Handler], None]) -> MuxMiddleware:
    """
    Decorator: build a MuxMiddleware from func(w, r, next).

    `func` may raise, and exceptions from `next` propagate through it
    unless it catches them.
    """
    return _function_middleware(func)


def net_middleware(func: Callable[[ResponseWriter, HTTPRequest, NetHandler], None]) -> NetMiddleware:
    """Decorator: build a NetMiddleware from func(w, r, next)."""
    return _function_middleware(func)
