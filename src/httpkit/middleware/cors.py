"""
=============================================================================
CORS MIDDLEWARE
=============================================================================

Cross-Origin Resource Sharing as a net middleware. It sits in front of the
router so preflight requests are answered before routing (and before any
auth a route might require).

=============================================================================
TWO KINDS OF CORS REQUESTS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │  PREFLIGHT                                                          │
    │    OPTIONS /data                                                     │
    │    Origin: https://app.example                                       │
    │    Access-Control-Request-Method: POST                               │
    │                                                                      │
    │    ◄── 204, Allow-Origin / Allow-Methods / Allow-Headers / Max-Age  │
    │        next handler is NOT called                                    │
    ├─────────────────────────────────────────────────────────────────────┤
    │  ACTUAL REQUEST                                                     │
    │    POST /data                                                        │
    │    Origin: https://app.example                                       │
    │                                                                      │
    │    Allow-Origin (+ credentials, expose headers) added, then next()  │
    └─────────────────────────────────────────────────────────────────────┘

Requests without an Origin header pass through untouched (except for
Vary: Origin). Disallowed origins pass through too, just without any
Access-Control-* headers; the browser does the blocking.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import List, Optional
import logging

from ..handler import NetHandler
from ..http.request import HTTPRequest
from ..http.response import Headers, ResponseWriter
from ..http.status_codes import HTTPStatus
from .base import NetMiddleware


logger = logging.getLogger(__name__)


@dataclass
class CORSConfig:
    """
    CORS options.

    Development (permissive):
        CORSConfig()

    Production:
        CORSConfig(
            allow_origins=["https://app.example"],
            allow_credentials=True,
            allow_headers=["Authorization", "Content-Type"],
        )

    Attributes:
        allow_origins:     Allowed origins, "*" for any
        allow_methods:     Methods allowed in preflight requests
        allow_headers:     Request headers allowed, "*" for any
        expose_headers:    Response headers the browser may read
        allow_credentials: Allow cookies / Authorization
        max_age:           Preflight cache lifetime in seconds (0 = omit)
    """

    allow_origins: List[str] = field(default_factory=lambda: ["*"])
    allow_methods: List[str] = field(
        default_factory=lambda: ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"]
    )
    allow_headers: List[str] = field(
        default_factory=lambda: ["Content-Type", "Authorization", "X-Requested-With"]
    )
    expose_headers: List[str] = field(default_factory=list)
    allow_credentials: bool = False
    max_age: int = 0

    def __post_init__(self):
        self.allow_methods = [m.upper() for m in self.allow_methods]
        self._header_set = {h.lower() for h in self.allow_headers}

    def origin_allowed(self, origin: str) -> bool:
        return "*" in self.allow_origins or origin in self.allow_origins

    def method_allowed(self, method: str) -> bool:
        return method == "OPTIONS" or method.upper() in self.allow_methods

    def headers_allowed(self, requested: List[str]) -> bool:
        if "*" in self._header_set:
            return True
        return all(h.lower() in self._header_set for h in requested)


def _add_vary(headers: Headers, *names: str) -> None:
    for name in names:
        if name not in headers.values("Vary"):
            headers.add("Vary", name)


def _allowed_origin_value(config: CORSConfig, origin: str) -> str:
    # "*" can't be combined with credentials, so echo the origin instead.
    if "*" in config.allow_origins and not config.allow_credentials:
        return "*"
    return origin


def cors(config: Optional[CORSConfig] = None) -> NetMiddleware:
    """
    Build the CORS net middleware.

    Args:
        config: CORS options (permissive defaults if omitted)
    """
    config = config or CORSConfig()

    def preflight(w: ResponseWriter, r: HTTPRequest) -> None:
        headers = w.headers
        _add_vary(headers, "Origin", "Access-Control-Request-Method",
                  "Access-Control-Request-Headers")

        origin = r.get_header("origin")
        method = r.get_header("access-control-request-method")
        requested = [h.strip() for h in r.get_header("access-control-request-headers").split(",")
                     if h.strip()]

        if not origin or not config.origin_allowed(origin):
            logger.debug(f"Preflight aborted: origin {origin!r} not allowed")
        elif not config.method_allowed(method):
            logger.debug(f"Preflight aborted: method {method!r} not allowed")
        elif not config.headers_allowed(requested):
            logger.debug(f"Preflight aborted: headers {requested!r} not allowed")
        else:
            headers.set("Access-Control-Allow-Origin", _allowed_origin_value(config, origin))
            headers.set("Access-Control-Allow-Methods", method.upper())
            if requested:
                headers.set("Access-Control-Allow-Headers", ", ".join(requested))
            if config.allow_credentials:
                headers.set("Access-Control-Allow-Credentials", "true")
            if config.max_age > 0:
                headers.set("Access-Control-Max-Age", str(config.max_age))

        w.write_header(HTTPStatus.NO_CONTENT)

    def actual(w: ResponseWriter, r: HTTPRequest) -> None:
        headers = w.headers
        _add_vary(headers, "Origin")

        origin = r.get_header("origin")
        if not origin or not config.origin_allowed(origin) or not config.method_allowed(r.method):
            return

        headers.set("Access-Control-Allow-Origin", _allowed_origin_value(config, origin))
        if config.expose_headers:
            headers.set("Access-Control-Expose-Headers", ", ".join(config.expose_headers))
        if config.allow_credentials:
            headers.set("Access-Control-Allow-Credentials", "true")

    def middleware(next_handler: NetHandler) -> NetHandler:
        def handler(w: ResponseWriter, r: HTTPRequest) -> None:
            if r.method == "OPTIONS" and r.get_header("access-control-request-method"):
                preflight(w, r)
                return
            actual(w, r)
            next_handler(w, r)
        return handler

    return middleware
