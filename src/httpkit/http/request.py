"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns raw request bytes from the socket into an HTTPRequest.

=============================================================================
HTTP REQUEST ANATOMY
=============================================================================

    POST /data?draft=1 HTTP/1.1\r\n          ← Request line
    Host: localhost:8080\r\n                 ← Headers
    Content-Type: application/json\r\n
    Content-Length: 13\r\n
    \r\n                                     ← Blank line
    {"name": "x"}                            ← Body (Content-Length bytes)

=============================================================================
BODY AS A STREAM
=============================================================================

The body is exposed as a binary reader (``request.body.read()``), not as
a bytes attribute. Middleware can swap the reader for a wrapper that sees
every byte the handler consumes; the request/response recorder does
exactly that. Reading is what triggers recording, so a handler that never
touches the body never pays for it.

Path cleaning ("/a/../b", "//x") is deliberately NOT done here: the router
answers those with a redirect to the canonical path.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, unquote
import io
import json
import re

from ..errors import HTTPParseError
from .params import Params


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    Attributes:
        method:         HTTP method (GET, POST, ...)
        path:           Decoded path without query string ("/data/1")
        version:        "HTTP/1.1" or "HTTP/1.0"
        headers:        Header map with LOWERCASE keys
        query_params:   "?a=1&a=2" → {"a": ["1", "2"]}
        body:           Binary reader over the request body
        uri:            Raw request target as sent ("/data/1?x=y")
        query_string:   Raw query string without "?"
        path_params:    Set by the router for the matched route
        context:        Free-form per-request values for middleware
        client_address: (ip, port) of the peer
    """

    method: str
    path: str
    version: str = "HTTP/1.1"

    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, List[str]] = field(default_factory=dict)
    body: BinaryIO = field(default_factory=io.BytesIO, repr=False)

    uri: str = ""
    query_string: str = ""

    path_params: Params = field(default_factory=Params)
    context: Dict[str, Any] = field(default_factory=dict, repr=False)

    client_address: Tuple[str, int] = ("", 0)

    def __post_init__(self):
        if isinstance(self.body, (bytes, bytearray)):
            self.body = io.BytesIO(bytes(self.body))
        if not self.uri:
            self.uri = self.path + (f"?{self.query_string}" if self.query_string else "")

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters ("application/json")."""
        ct = self.headers.get("content-type", "")
        return ct.split(";")[0].strip().lower() or None

    @property
    def content_length(self) -> int:
        """Content-Length as int, 0 if missing or invalid."""
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def host(self) -> str:
        return self.headers.get("host", "")

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def is_keep_alive(self) -> bool:
        """
        Whether the client wants the connection kept open.

        HTTP/1.1 keeps alive unless "Connection: close";
        HTTP/1.0 closes unless "Connection: keep-alive".
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of a query parameter."""
        values = self.query_params.get(name, [])
        return values[0] if values else default

    def get_query_list(self, name: str) -> List[str]:
        return self.query_params.get(name, [])

    def read_body(self) -> bytes:
        """Read the remaining body bytes."""
        return self.body.read()

    def read_json(self) -> Any:
        """
        Read the remaining body and decode it as JSON.

        Raises:
            HTTPParseError: Body is not valid UTF-8 JSON (400)
        """
        raw = self.read_body()
        try:
            return json.loads(raw.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise HTTPParseError(f"Invalid JSON body: {e}") from e


class RequestParser:
    """
    Parses raw HTTP request bytes into HTTPRequest objects.

        1. Size check          → 413 if over max_request_size
        2. Find \\r\\n\\r\\n      → 400 if missing
        3. Request line         → 400 / 405 / 505
        4. Headers              → lowercase names, repeats joined with ", "
        5. Body                 → exactly Content-Length bytes
    """

    VALID_METHODS = {
        "GET", "HEAD", "POST", "PUT", "PATCH", "DELETE",
        "OPTIONS", "TRACE", "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:\s]+):\s*(.*?)\s*$")

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(self, data: bytes, client_address: Tuple[str, int] = ("", 0)) -> HTTPRequest:
        """
        Parse a complete request.

        Args:
            data: Raw bytes as read by the connection (headers + body)
            client_address: Peer (ip, port)

        Raises:
            HTTPParseError: If the request is malformed
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        header_section = data[:header_end].decode("latin-1")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, uri, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            raise HTTPParseError(f"Invalid Content-Length: {headers['content-length']}")
        if content_length < 0:
            raise HTTPParseError(f"Invalid Content-Length: {content_length}")
        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        # Split by hand: urlsplit() would read "//a/b" as a network location.
        target, _, query = uri.partition("#")[0].partition("?")
        return HTTPRequest(
            method=method,
            path=unquote(target) or "/",
            version=version,
            headers=headers,
            query_params=parse_qs(query, keep_blank_values=True),
            body=io.BytesIO(body[:content_length]),
            uri=uri,
            query_string=query,
            client_address=client_address,
        )

    def _parse_request_line(self, line: str) -> Tuple[str, str, str]:
        """Split "METHOD SP URI SP VERSION" and validate each part."""
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, uri, version = match.groups()
        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)
        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)
        if not (uri.startswith("/") or uri == "*"):
            raise HTTPParseError(f"Invalid request target: {uri}")
        return method, uri, version

    def _parse_headers(self, lines: List[str]) -> Dict[str, str]:
        """
        Parse header lines into a lowercase-keyed dict.

        Obsolete line folding (a line starting with whitespace) continues
        the previous header. Repeated headers are joined with ", ".
        """
        headers: Dict[str, str] = {}
        last_name: Optional[str] = None

        for line in lines:
            if not line:
                continue
            if line[0] in " \t" and last_name:
                headers[last_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Invalid header line: {line!r}")

            name, value = match.group(1).lower(), match.group(2)
            if name in headers:
                headers[name] = f"{headers[name]}, {value}"
            else:
                headers[name] = value
            last_name = name

        return headers


def parse_request(
    data: bytes,
    client_address: Tuple[str, int] = ("", 0),
    max_request_size: int = 10 * 1024 * 1024,
) -> HTTPRequest:
    """Parse a request with a throwaway RequestParser."""
    return RequestParser(max_request_size).parse(data, client_address)
