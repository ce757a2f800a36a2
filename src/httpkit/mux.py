"""
=============================================================================
SERVE MUX
=============================================================================

The router applications register routes on. It wraps the PathRouter
engine and adds the error-aware layer on top of it:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       ServeMux DISPATCH                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   mux(w, r)                                                          │
    │     └─ panic guard ─────────────── any escaping exception           │
    │          │                          └─► panic_handler (500)          │
    │          ▼                                                           │
    │        PathRouter                                                    │
    │          ├─ redirect / OPTIONS / 405 / 404 (default handlers)       │
    │          └─ matched route:                                           │
    │               global middleware                                      │
    │                 └─ route middleware                                  │
    │                      └─ handler  (may raise)                         │
    │               exception escaped the chain?                           │
    │                 └─► last_resort_error_handler(w, r, err)  (once)     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The last-resort handler is called for ANY exception that makes it out of
the global middleware, resolved or not. Deciding whether to still write
something (nothing, if the error is resolved and a response already went
out) is the last-resort handler's job.

=============================================================================
CONFIGURATION
=============================================================================

    mux = ServeMux(MuxConfig(not_found=my_404))
    mux = ServeMux(not_found=my_404)             # same thing

Unset handler fields are filled with DefaultHandlers when the mux is
built. There is no module-level mutable default to patch.

=============================================================================
"""

from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional
import logging

from .handler import ErrorHandler, Handler, NetHandler, PanicHandler
from .http.params import Params
from .http.request import HTTPRequest
from .http.response import ResponseWriter, write_text
from .http.router import CompiledRoute, PathRouter
from .http.status_codes import HTTPStatus
from .middleware.base import MuxMiddleware, identity, reduce_mux_middleware


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Route:
    """
    A route definition: method, path pattern and error-aware handler.

    Path patterns support ":name" single-segment parameters and a
    trailing "*name" catch-all.
    """
    method: str
    path: str
    handler: Handler


class DefaultHandlers:
    """
    Handlers used when MuxConfig leaves one unset.

    All of them answer in plain text and name the method and path, which
    makes misrouted requests easy to spot in a client.
    """

    @staticmethod
    def last_resort_error(w: ResponseWriter, r: HTTPRequest, err: Exception) -> None:
        write_text(
            w,
            f"default last resort error handler: method: {r.method}, path: {r.path}, error: {err}",
            HTTPStatus.INTERNAL_SERVER_ERROR,
        )

    @staticmethod
    def not_found(w: ResponseWriter, r: HTTPRequest) -> None:
        write_text(
            w,
            f"default not found handler: method: {r.method}, path: {r.path}",
            HTTPStatus.NOT_FOUND,
        )

    @staticmethod
    def method_not_allowed(w: ResponseWriter, r: HTTPRequest) -> None:
        write_text(
            w,
            f"default method not allowed handler: method: {r.method}, path: {r.path}",
            HTTPStatus.METHOD_NOT_ALLOWED,
        )

    @staticmethod
    def panic(w: ResponseWriter, r: HTTPRequest, err: Exception) -> None:
        logger.error(f"Unhandled exception serving {r.method} {r.path}", exc_info=err)
        write_text(
            w,
            f"default panic handler: method: {r.method}, path: {r.path}, error: {err}",
            HTTPStatus.INTERNAL_SERVER_ERROR,
        )


@dataclass
class MuxConfig:
    """
    ServeMux options.

    Attributes:
        redirect_trailing_slash:   Redirect "/x/" ↔ "/x" when only the other exists
        redirect_fixed_path:       Redirect unclean or wrongly-cased paths
        handle_method_not_allowed: Answer 405 (with Allow) instead of 404
        handle_options:            Answer OPTIONS automatically (with Allow)
        global_options:            Handler for automatic OPTIONS answers
        not_found:                 404 handler
        method_not_allowed:        405 handler
        panic_handler:             Handler for exceptions escaping dispatch
        last_resort_error_handler: Handler for exceptions escaping a route
        middleware:                Global mux middleware around every route
    """

    redirect_trailing_slash: bool = True
    redirect_fixed_path: bool = True
    handle_method_not_allowed: bool = True
    handle_options: bool = True

    global_options: Optional[NetHandler] = None
    not_found: Optional[NetHandler] = None
    method_not_allowed: Optional[NetHandler] = None
    panic_handler: Optional[PanicHandler] = None
    last_resort_error_handler: Optional[ErrorHandler] = None
    middleware: Optional[MuxMiddleware] = None

    def with_defaults(self) -> "MuxConfig":
        """Copy of this config with every unset handler filled in."""
        return replace(
            self,
            not_found=self.not_found or DefaultHandlers.not_found,
            method_not_allowed=self.method_not_allowed or DefaultHandlers.method_not_allowed,
            panic_handler=self.panic_handler or DefaultHandlers.panic,
            last_resort_error_handler=(
                self.last_resort_error_handler or DefaultHandlers.last_resort_error
            ),
            middleware=self.middleware or identity,
        )


class ServeMux:
    """
    Error-aware HTTP router.

    Usage:
        mux = ServeMux(middleware=log_and_error_handling())

        @mux.post("/data")
        def create(w, r):
            write_json(w, {"ok": True}, 201)

        mux.route(Route("GET", "/data/:id", get_one), auth_required)

        server = HTTPServer(log_entry_recorder(mux))

    A ServeMux is itself a NetHandler: call it with (w, r).
    Register everything before serving; the route table is not locked.
    """

    def __init__(self, config: Optional[MuxConfig] = None, **options):
        config = replace(config or MuxConfig(), **options)
        self.config = config.with_defaults()

        self._router = PathRouter(
            redirect_trailing_slash=self.config.redirect_trailing_slash,
            redirect_fixed_path=self.config.redirect_fixed_path,
            handle_method_not_allowed=self.config.handle_method_not_allowed,
            handle_options=self.config.handle_options,
            global_options=self.config.global_options,
            not_found=self.config.not_found,
            method_not_allowed=self.config.method_not_allowed,
            panic_handler=self.config.panic_handler,
        )
        self._routes: List[Route] = []

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def route(self, route: Route, *middleware: MuxMiddleware) -> CompiledRoute:
        """
        Register a Route, wrapping its handler in route-specific middleware.

        Route middleware runs inside the global middleware.

        Raises:
            ValueError: Malformed pattern or duplicate method + path
        """
        handler = reduce_mux_middleware(*middleware)(route.handler)
        compiled = self._register(route.method, route.path, handler)
        self._routes.append(route)
        return compiled

    def handle(self, method: str, path: str, handler: Handler) -> CompiledRoute:
        """
        Register an error-aware handler with no route middleware.

        The handler is wrapped in the global middleware. If an exception
        escapes that chain, the last-resort error handler gets it.
        """
        compiled = self._register(method, path, handler)
        self._routes.append(Route(method, path, handler))
        return compiled

    def _register(self, method: str, path: str, handler: Handler) -> CompiledRoute:
        chain = self.config.middleware(handler)
        last_resort = self.config.last_resort_error_handler

        def serve(w: ResponseWriter, r: HTTPRequest) -> None:
            try:
                chain(w, r)
            except Exception as err:
                last_resort(w, r, err)

        serve.__name__ = f"{method} {path}"
        return self._router.handle(method, path, serve)

    def _method_decorator(self, method: str, path: str, *middleware: MuxMiddleware) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.route(Route(method, path, handler), *middleware)
            return handler
        return decorator

    def get(self, path: str, *middleware: MuxMiddleware):
        """Decorator: register a GET route."""
        return self._method_decorator("GET", path, *middleware)

    def head(self, path: str, *middleware: MuxMiddleware):
        return self._method_decorator("HEAD", path, *middleware)

    def post(self, path: str, *middleware: MuxMiddleware):
        """Decorator: register a POST route."""
        return self._method_decorator("POST", path, *middleware)

    def put(self, path: str, *middleware: MuxMiddleware):
        return self._method_decorator("PUT", path, *middleware)

    def patch(self, path: str, *middleware: MuxMiddleware):
        return self._method_decorator("PATCH", path, *middleware)

    def delete(self, path: str, *middleware: MuxMiddleware):
        return self._method_decorator("DELETE", path, *middleware)

    def options(self, path: str, *middleware: MuxMiddleware):
        return self._method_decorator("OPTIONS", path, *middleware)

    @property
    def routes(self) -> List[Route]:
        """Every registered route, in registration order."""
        return list(self._routes)

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def __call__(self, w: ResponseWriter, r: HTTPRequest) -> None:
        self._router(w, r)

    serve_http = __call__


def path_params(r: HTTPRequest) -> Params:
    """Path parameters matched for the current request's route."""
    return r.path_params
