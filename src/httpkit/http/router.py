"""
=============================================================================
PATH ROUTER
=============================================================================

Maps (method, path) to a raw network handler and answers everything that
doesn't map cleanly: redirects, OPTIONS, 405 and 404.

=============================================================================
ROUTE PATTERNS
=============================================================================

1. STATIC:    /users              exact match
2. PARAM:     /users/:id          one segment   → Param("id", "123")
3. CATCH-ALL: /static/*filepath   rest of path  → Param("filepath", "/css/a.css")
                                  (must be last; value keeps its leading "/")

A trailing slash is significant: "/users" and "/users/" are different
routes. A request that misses only by that slash gets redirected.

=============================================================================
PATTERN COMPILATION
=============================================================================

    Pattern:  /users/:id/files/*path
    Regex:    ^/users/(?P<id>[^/]+)/files(?P<path>/.*)$

Every pattern is compiled twice: once as-is, and once case-insensitively
for the fixed-path lookup. Routes are tried in registration order; first
match wins, so register "/users/me" before "/users/:id".

=============================================================================
DISPATCH ORDER
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │   1. exact match for the method ──────────────► route handler       │
    │                                                                      │
    │   (method has routes, method != CONNECT, path != "/")               │
    │   2. path ± trailing slash matches ──────────► redirect             │
    │   3. cleaned, case-insensitive path matches ─► redirect             │
    │                                                                      │
    │   4. OPTIONS + handle_options + other methods match                 │
    │         └─ Allow header, global OPTIONS handler or empty 200        │
    │   5. handle_method_not_allowed + other methods match                │
    │         └─ Allow header, method-not-allowed handler (405)           │
    │   6. not-found handler (404)                                         │
    └─────────────────────────────────────────────────────────────────────┘

Redirects use 301 for safe methods and 307 otherwise, so non-idempotent
requests are replayed with their method and body intact. The request path
has already been percent-decoded, so the target is re-escaped before it
goes into Location; the raw query string is carried over as-is.

If a panic handler is configured, any exception escaping steps 1-6 is
routed to it instead of propagating.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import quote
import logging
import re

from .params import Param, Params
from .path import clean_path
from .request import HTTPRequest
from .response import ResponseWriter, write_text
from .status_codes import HTTPStatus


logger = logging.getLogger(__name__)


NetHandler = Callable[[ResponseWriter, HTTPRequest], None]
PanicHandler = Callable[[ResponseWriter, HTTPRequest, Exception], None]

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})

# RFC 3986 pchar minus "%": everything else in a redirect target is escaped
LOCATION_SAFE = "/:@!$&'()*+,;="


@dataclass
class _Segment:
    """One "/"-separated piece of a route pattern."""
    kind: str   # "static", "param" or "catchall"
    text: str   # literal text, or the parameter name


@dataclass
class CompiledRoute:
    """
    A registered route with its compiled matchers.

    Attributes:
        method:   HTTP method
        pattern:  Route pattern as registered
        handler:  Network handler to call on match
    """

    method: str
    pattern: str
    handler: NetHandler
    _segments: List[_Segment] = field(default_factory=list, repr=False)
    _regex: Optional[re.Pattern] = field(default=None, repr=False)
    _ci_regex: Optional[re.Pattern] = field(default=None, repr=False)

    def match(self, path: str) -> Optional[Params]:
        """Params for `path`, or None if it doesn't match."""
        m = self._regex.match(path)
        if m is None:
            return None
        return Params(Param(seg.text, m.group(seg.text))
                      for seg in self._segments if seg.kind != "static")

    def match_canonical(self, path: str) -> Optional[str]:
        """
        Case-insensitive match.

        Returns:
            The path rebuilt with the registered casing for static
            segments and the request's values for parameters, or None
        """
        m = self._ci_regex.match(path)
        if m is None:
            return None
        out = []
        for seg in self._segments:
            if seg.kind == "static":
                out.append("/" + seg.text)
            elif seg.kind == "param":
                out.append("/" + m.group(seg.text))
            else:
                out.append(m.group(seg.text))
        return "".join(out)


def compile_route(method: str, pattern: str, handler: NetHandler) -> CompiledRoute:
    """
    Validate and compile a route pattern.

    Raises:
        ValueError: Malformed pattern (no leading "/", empty or duplicate
                    parameter name, catch-all not in last position)
    """
    if not pattern.startswith("/"):
        raise ValueError(f"path must begin with '/': {pattern!r}")

    segments: List[_Segment] = []
    regex_parts = ["^"]
    names = set()
    raw_segments = pattern.split("/")[1:]

    for i, raw in enumerate(raw_segments):
        if raw[:1] in (":", "*"):
            name = raw[1:]
            if not name.isidentifier():
                raise ValueError(f"invalid parameter name {raw!r} in {pattern!r}")
            if name in names:
                raise ValueError(f"duplicate parameter {name!r} in {pattern!r}")
            names.add(name)

        if raw.startswith("*"):
            if i != len(raw_segments) - 1:
                raise ValueError(f"catch-all must be the last segment: {pattern!r}")
            segments.append(_Segment("catchall", raw[1:]))
            # The catch-all swallows the slash that introduces it.
            regex_parts.append(f"(?P<{raw[1:]}>/.*)")
            break

        regex_parts.append("/")
        if raw.startswith(":"):
            segments.append(_Segment("param", raw[1:]))
            regex_parts.append(f"(?P<{raw[1:]}>[^/]+)")
        else:
            segments.append(_Segment("static", raw))
            regex_parts.append(re.escape(raw))

    regex_parts.append("$")
    source = "".join(regex_parts)
    return CompiledRoute(
        method=method,
        pattern=pattern,
        handler=handler,
        _segments=segments,
        _regex=re.compile(source),
        _ci_regex=re.compile(source, re.IGNORECASE),
    )


class PathRouter:
    """
    Method + path dispatcher for raw network handlers.

    It knows nothing about errors raised by handlers; the mux layered on
    top of it deals with those. Handlers registered here are expected to
    handle their own failures.

    Usage:
        router = PathRouter()
        router.handle("GET", "/users/:id", get_user)
        router(w, request)
    """

    def __init__(
        self,
        redirect_trailing_slash: bool = True,
        redirect_fixed_path: bool = True,
        handle_method_not_allowed: bool = True,
        handle_options: bool = True,
        global_options: Optional[NetHandler] = None,
        not_found: Optional[NetHandler] = None,
        method_not_allowed: Optional[NetHandler] = None,
        panic_handler: Optional[PanicHandler] = None,
    ):
        self.redirect_trailing_slash = redirect_trailing_slash
        self.redirect_fixed_path = redirect_fixed_path
        self.handle_method_not_allowed = handle_method_not_allowed
        self.handle_options = handle_options
        self.global_options = global_options
        self.not_found = not_found
        self.method_not_allowed = method_not_allowed
        self.panic_handler = panic_handler

        # method -> routes in registration order
        self._routes: Dict[str, List[CompiledRoute]] = {}

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def handle(self, method: str, path: str, handler: NetHandler) -> CompiledRoute:
        """
        Register `handler` for `method` and `path`.

        Raises:
            ValueError: Empty method, malformed pattern, or the same
                        method + pattern registered twice
        """
        if not method:
            raise ValueError("method must not be empty")
        if handler is None:
            raise ValueError("handler must not be None")

        method = method.upper()
        routes = self._routes.setdefault(method, [])
        if any(route.pattern == path for route in routes):
            raise ValueError(f"route already registered: {method} {path}")

        route = compile_route(method, path, handler)
        routes.append(route)
        logger.debug(f"Registered route {method} {path}")
        return route

    def routes(self) -> List[CompiledRoute]:
        """All registered routes, grouped by method."""
        return [route for routes in self._routes.values() for route in routes]

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def lookup(self, method: str, path: str) -> Tuple[Optional[CompiledRoute], Params, bool]:
        """
        Find the route for `method` and `path`.

        Returns:
            (route, params, tsr). `tsr` is True when there's no route but
            the same path with the trailing slash added or removed has one.
        """
        routes = self._routes.get(method, [])
        for route in routes:
            params = route.match(path)
            if params is not None:
                return route, params, False

        tsr = False
        if path != "/":
            toggled = path[:-1] if path.endswith("/") else path + "/"
            tsr = any(route.match(toggled) is not None for route in routes)
        return None, Params(), tsr

    def _find_case_insensitive(self, method: str, path: str) -> Optional[str]:
        """Canonical registered path matching `path` ignoring case."""
        candidates = [path]
        if self.redirect_trailing_slash and path != "/":
            candidates.append(path[:-1] if path.endswith("/") else path + "/")

        for candidate in candidates:
            for route in self._routes.get(method, []):
                fixed = route.match_canonical(candidate)
                if fixed is not None:
                    return fixed
        return None

    def allowed(self, path: str, req_method: str) -> str:
        """
        Value for the Allow header, or "" if no other method matches.

        The request method and OPTIONS are skipped while scanning; OPTIONS
        is appended whenever something else is allowed. "*" asks about the
        server as a whole and lists every registered method.
        """
        allowed: List[str] = []
        for method, routes in self._routes.items():
            if method == "OPTIONS":
                continue
            if path == "*":
                allowed.append(method)
                continue
            if method == req_method:
                continue
            if any(route.match(path) is not None for route in routes):
                allowed.append(method)

        if not allowed:
            return ""
        allowed.append("OPTIONS")
        return ", ".join(sorted(allowed))

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def __call__(self, w: ResponseWriter, r: HTTPRequest) -> None:
        if self.panic_handler is None:
            self._dispatch(w, r)
            return
        try:
            self._dispatch(w, r)
        except Exception as exc:
            self.panic_handler(w, r, exc)

    serve_http = __call__

    def _dispatch(self, w: ResponseWriter, r: HTTPRequest) -> None:
        path = r.path

        if r.method in self._routes:
            route, params, tsr = self.lookup(r.method, path)
            if route is not None:
                r.path_params = params
                route.handler(w, r)
                return

            if r.method != "CONNECT" and path != "/":
                code = (HTTPStatus.MOVED_PERMANENTLY if r.method in SAFE_METHODS
                        else HTTPStatus.TEMPORARY_REDIRECT)

                if tsr and self.redirect_trailing_slash:
                    target = path[:-1] if path.endswith("/") else path + "/"
                    self._redirect(w, r, target, code)
                    return

                if self.redirect_fixed_path:
                    fixed = self._find_case_insensitive(r.method, clean_path(path))
                    if fixed is not None:
                        self._redirect(w, r, fixed, code)
                        return

        if r.method == "OPTIONS" and self.handle_options:
            allow = self.allowed(path, r.method)
            if allow:
                w.headers.set("Allow", allow)
                if self.global_options is not None:
                    self.global_options(w, r)
                else:
                    w.write_header(HTTPStatus.OK)
                return
        elif self.handle_method_not_allowed:
            allow = self.allowed(path, r.method)
            if allow:
                w.headers.set("Allow", allow)
                if self.method_not_allowed is not None:
                    self.method_not_allowed(w, r)
                else:
                    write_text(w, HTTPStatus.METHOD_NOT_ALLOWED.phrase,
                               HTTPStatus.METHOD_NOT_ALLOWED)
                return

        if self.not_found is not None:
            self.not_found(w, r)
        else:
            write_text(w, HTTPStatus.NOT_FOUND.phrase, HTTPStatus.NOT_FOUND)

    @staticmethod
    def _redirect(w: ResponseWriter, r: HTTPRequest, path: str, code: int) -> None:
        location = quote(path, safe=LOCATION_SAFE)
        if r.query_string:
            location += f"?{r.query_string}"
        logger.debug(f"Redirecting {r.method} {r.path} → {location} ({int(code)})")
        w.headers.set("Location", location)
        w.write_header(code)
