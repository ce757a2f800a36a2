"""
=============================================================================
RESPONSE WRITERS
=============================================================================

Handlers don't return response objects. They write into a ResponseWriter,
the same streaming sink every middleware layer sees:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     RESPONSE WRITER CONTRACT                        │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   w.headers.set("Content-Type", "application/json")                 │
    │        │    headers are mutable until the status is committed       │
    │        ▼                                                             │
    │   w.write_header(201)                                                │
    │        │    commits the status; later calls are ignored             │
    │        ▼                                                             │
    │   w.write(b'{"id": 1}')                                              │
    │             appends to the body; commits 200 first if needed        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
WRAPPING
=============================================================================

Middleware that needs to observe the response (the recorder, for one)
wraps the writer it was given. Every wrapper exposes unwrap(), so code
further down the chain can walk back through the layers:

    recorder ──unwrap()──► cors wrapper ──unwrap()──► BufferedResponseWriter

BufferedResponseWriter is the innermost sink used by the server: it keeps
the status, headers and body in memory and serializes them to HTTP/1.1 once
the handler returns. It doubles as a recorder in unit tests.

=============================================================================
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple, runtime_checkable
import json
import logging

from .status_codes import status_text


logger = logging.getLogger(__name__)


CONTENT_TYPE_JSON = "application/json; charset=utf-8"
CONTENT_TYPE_TEXT = "text/plain; charset=utf-8"


def _checked(name: str, value: object) -> str:
    """Stringify a header value, refusing anything that would split the header block."""
    text = str(value)
    if any(c in name for c in "\r\n:") or "\r" in text or "\n" in text:
        raise ValueError(f"Invalid header {name!r}: {text!r}")
    return text


class Headers:
    """
    Case-insensitive, multi-valued header map.

    Lookups ignore case; the casing used on first insertion is what gets
    serialized.

        h = Headers()
        h.add("Vary", "Origin")
        h.add("vary", "Accept-Encoding")
        h.values("VARY")  # ["Origin", "Accept-Encoding"]
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        # lowercase name -> (display name, values)
        self._items: Dict[str, Tuple[str, List[str]]] = {}
        for name, value in (initial or {}).items():
            self.add(name, value)

    def add(self, name: str, value: str) -> None:
        """Append a value, keeping any existing ones."""
        value = _checked(name, value)
        key = name.lower()
        if key in self._items:
            self._items[key][1].append(value)
        else:
            self._items[key] = (name, [value])

    def set(self, name: str, value: str) -> None:
        """Replace all values of `name` with a single value."""
        value = _checked(name, value)
        key = name.lower()
        display = self._items[key][0] if key in self._items else name
        self._items[key] = (display, [value])

    def setdefault(self, name: str, value: str) -> str:
        if name.lower() not in self._items:
            self.set(name, value)
        return self.get(name)

    def get(self, name: str, default: str = "") -> str:
        """First value of `name`, or `default`."""
        entry = self._items.get(name.lower())
        return entry[1][0] if entry else default

    def values(self, name: str) -> List[str]:
        """All values of `name` (empty list if absent)."""
        entry = self._items.get(name.lower())
        return list(entry[1]) if entry else []

    def delete(self, name: str) -> None:
        self._items.pop(name.lower(), None)

    def items(self) -> List[Tuple[str, str]]:
        """Flattened (name, value) pairs in insertion order."""
        return [(display, v) for display, values in self._items.values() for v in values]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._items

    def __iter__(self) -> Iterator[str]:
        return (display for display, _ in self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"Headers({self.items()!r})"


class ResponseWriter(ABC):
    """
    Abstract response sink handed to every handler and middleware.

    Implementations must make write_header() idempotent (first call
    wins) and must commit a 200 status on the first write() if no status
    was committed yet.
    """

    @property
    @abstractmethod
    def headers(self) -> Headers:
        """Response headers; mutate before the status is committed."""

    @abstractmethod
    def write_header(self, status: int) -> None:
        """Commit the status code."""

    @abstractmethod
    def write(self, data: bytes) -> int:
        """
        Write body bytes.

        Returns:
            Number of bytes written

        Raises:
            OSError (or any exception) if the underlying sink fails
        """


@runtime_checkable
class Unwrapper(Protocol):
    """Capability of writers that wrap another writer."""

    def unwrap(self) -> ResponseWriter:
        ...


class ResponseWriterWrapper(ResponseWriter):
    """
    Base class for writers that decorate another writer.

    Delegates everything to the wrapped writer. Subclasses override the
    methods they care about and keep unwrap() working.
    """

    def __init__(self, writer: ResponseWriter):
        self._writer = writer

    @property
    def headers(self) -> Headers:
        return self._writer.headers

    def write_header(self, status: int) -> None:
        self._writer.write_header(status)

    def write(self, data: bytes) -> int:
        return self._writer.write(data)

    def unwrap(self) -> ResponseWriter:
        return self._writer


class BufferedResponseWriter(ResponseWriter):
    """
    In-memory ResponseWriter.

    The server hands one of these to the handler chain for every request,
    then serializes it with to_bytes(). Tests use it to inspect what a
    handler produced.

    Attributes:
        status: Committed status code, 0 until something is committed
    """

    def __init__(self):
        self._headers = Headers()
        self._body = bytearray()
        self.status = 0

    @property
    def headers(self) -> Headers:
        return self._headers

    @property
    def committed(self) -> bool:
        """True once a status has been committed."""
        return self.status != 0

    @property
    def body(self) -> bytes:
        return bytes(self._body)

    @property
    def text(self) -> str:
        return self._body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self._body.decode("utf-8"))

    def write_header(self, status: int) -> None:
        if self.committed:
            logger.debug(f"Superfluous write_header({status}), status already {self.status}")
            return
        self.status = int(status)

    def write(self, data: bytes) -> int:
        if not self.committed:
            self.write_header(200)
        self._body += data
        return len(data)

    def to_bytes(self, server_name: str = "httpkit", include_body: bool = True) -> bytes:
        """
        Serialize to an HTTP/1.1 response.

            HTTP/1.1 201 Created\\r\\n
            Content-Type: application/json; charset=utf-8\\r\\n
            Content-Length: 9\\r\\n        <- added unless already set
            Date: Mon, 19 Oct 2026 ...\\r\\n <- added unless already set
            Server: httpkit\\r\\n          <- added unless already set
            \\r\\n
            {"id": 1}

        Args:
            server_name: Value for the Server header
            include_body: False for HEAD requests (headers still describe
                          the body that would have been sent)
        """
        status = self.status or 200
        headers = Headers()
        for name, value in self._headers.items():
            headers.add(name, value)
        headers.setdefault("Content-Length", str(len(self._body)))
        headers.setdefault("Date", format_http_date(datetime.now(timezone.utc)))
        headers.setdefault("Server", server_name)

        lines = [f"HTTP/1.1 {status} {status_text(status)}"]
        lines.extend(f"{name}: {value}" for name, value in headers.items())
        head = ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1", errors="replace")
        return head + bytes(self._body) if include_body else head


# =============================================================================
# HELPERS
# =============================================================================

def format_http_date(dt: datetime) -> str:
    """Format a UTC datetime as an RFC 7231 HTTP-date."""
    return format_datetime(dt, usegmt=True)


def write_json(w: ResponseWriter, data: Any, status: int = 200) -> int:
    """
    Write `data` as a JSON response.

    Sets Content-Type, commits `status`, then writes the encoded body.
    Any write error propagates to the caller.
    """
    w.headers.set("Content-Type", CONTENT_TYPE_JSON)
    w.write_header(status)
    return w.write(json.dumps(data).encode("utf-8"))


def write_text(w: ResponseWriter, text: str, status: int = 200) -> int:
    """Write a plain-text response."""
    w.headers.set("Content-Type", CONTENT_TYPE_TEXT)
    w.write_header(status)
    return w.write(text.encode("utf-8"))
