"""
=============================================================================
HTTP PROTOCOL LAYER
=============================================================================

Request parsing, the ResponseWriter contract, status codes and the
path-matching engine the ServeMux is built on.

    request.py        HTTPRequest, RequestParser
    response.py       Headers, ResponseWriter, BufferedResponseWriter
    status_codes.py   HTTPStatus
    params.py         Param, Params (path parameters)
    path.py           clean_path
    router.py         PathRouter (matching, redirects, 404/405, OPTIONS)

=============================================================================
"""

from .params import Param, Params
from .path import clean_path
from .request import HTTPRequest, RequestParser, parse_request
from .response import (
    BufferedResponseWriter,
    Headers,
    ResponseWriter,
    ResponseWriterWrapper,
    Unwrapper,
    write_json,
    write_text,
)
from .router import CompiledRoute, PathRouter, compile_route
from .status_codes import HTTPStatus, status_text


__all__ = [
    # Request
    "HTTPRequest",
    "RequestParser",
    "parse_request",
    # Response
    "Headers",
    "ResponseWriter",
    "ResponseWriterWrapper",
    "Unwrapper",
    "BufferedResponseWriter",
    "write_json",
    "write_text",
    # Status
    "HTTPStatus",
    "status_text",
    # Routing
    "Param",
    "Params",
    "clean_path",
    "CompiledRoute",
    "PathRouter",
    "compile_route",
]
