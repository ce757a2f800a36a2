"""
=============================================================================
REQUEST / RESPONSE RECORDER
=============================================================================

A net middleware that lets anything downstream see what happened to a
request (status code, timing, request and response bodies) without the
handler doing anything special.

=============================================================================
HOW IT HOOKS IN
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     log_entry_recorder(next)                        │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   rec = pool.get()              reset fields, fresh body buffers    │
    │                                                                      │
    │   r.body  ──► rec               reads are copied to entry.req_body  │
    │   w       ──► rec               writes are copied to entry.res_body │
    │                                 first status commit is recorded     │
    │   next(rec, r)                                                       │
    │                                                                      │
    │   finally:                                                           │
    │       buffers back to their pool, references cleared,               │
    │       rec back to the recorder pool                                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Nothing is copied eagerly: the request body is recorded only as the
handler reads it, and the response body only as the handler writes it.

Downstream code finds the entry with get_log_entry(w), which walks back
through writer wrappers via unwrap():

    entry = get_log_entry(w)
    if entry is not None:
        latency_ns = entry.responded_at - entry.requested_at

=============================================================================
LOG ENTRY INVARIANTS
=============================================================================

- status_code and responded_at are committed together, exactly once.
  A second write_header() is ignored, and so is one that follows an
  implicit 200 from write().
- requested_at is set at checkout; responded_at stays 0 until commit.
  Both are epoch nanoseconds, but responded_at is requested_at plus the
  monotonic time elapsed since checkout, so clock steps never reorder them.
- An entry belongs to exactly one in-flight request. Once the request
  finishes the recorder is recycled; a stale reference raises instead of
  writing into someone else's response.

=============================================================================
"""

import io
import logging
import time
from typing import BinaryIO, Optional

from .handler import NetHandler
from .http.request import HTTPRequest
from .http.response import Headers, ResponseWriter, Unwrapper
from .pool import ByteBuffer, ByteBufferPool, ObjectPool, default_buffer_pool


logger = logging.getLogger(__name__)


class LogEntry:
    """
    What the recorder observed about one request.

    Attributes:
        status_code:      Committed status, 0 until the first write
        requested_at:     Checkout time, ns since the epoch
        responded_at:     Status commit time, ns since the epoch (0 = not yet).
                          Measured on the monotonic clock from checkout, so
                          it is always later than requested_at.
        discard_req_body: Stop recording request body bytes
        discard_res_body: Stop recording response body bytes
    """

    __slots__ = (
        "status_code", "requested_at", "responded_at",
        "discard_req_body", "discard_res_body",
        "_req_body", "_res_body", "_started",
    )

    def __init__(self):
        self.status_code = 0
        self.requested_at = 0
        self.responded_at = 0
        self.discard_req_body = False
        self.discard_res_body = False
        self._req_body: Optional[ByteBuffer] = None
        self._res_body: Optional[ByteBuffer] = None
        self._started = 0

    @property
    def req_body(self) -> Optional[ByteBuffer]:
        """Request body bytes read by the handler so far."""
        return self._req_body

    @property
    def res_body(self) -> Optional[ByteBuffer]:
        """Response body bytes written by the handler so far."""
        return self._res_body

    @property
    def latency(self) -> float:
        """Seconds between checkout and status commit (0.0 if uncommitted)."""
        if self.responded_at <= 0:
            return 0.0
        return (self.responded_at - self.requested_at) / 1e9

    def __repr__(self) -> str:
        return (
            f"LogEntry(status_code={self.status_code}, "
            f"requested_at={self.requested_at}, responded_at={self.responded_at})"
        )


class _RecordingBody(io.RawIOBase):
    """
    Request body stand-in that copies every byte read into the entry.

    Unbuffered on purpose: only bytes the handler actually asked for get
    recorded. Detached when the request completes, after which it reads
    as EOF and records nothing.
    """

    def __init__(self, original: Optional[BinaryIO], entry: LogEntry):
        super().__init__()
        self._original = original
        self._entry: Optional[LogEntry] = entry

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if self._original is None:
            return 0
        data = self._original.read(len(b))
        n = len(data)
        b[:n] = data
        entry = self._entry
        if n and entry is not None and not entry.discard_req_body and entry._req_body is not None:
            entry._req_body.write(data)
        return n

    def close(self) -> None:
        # propagate to the original body
        if self._original is not None:
            self._original.close()
        super().close()

    def _detach(self) -> None:
        self._original = None
        self._entry = None


class _LogEntryRecorder(ResponseWriter):
    """
    Pooled writer wrapper that fills a LogEntry.

    Implements Unwrapper so get_log_entry() can find it behind other
    wrappers, and so writers wrapping it can still reach the real sink.
    """

    def __init__(self, buffer_pool: ByteBufferPool):
        self.entry = LogEntry()
        self._buffer_pool = buffer_pool
        self._writer: Optional[ResponseWriter] = None
        self._body: Optional[_RecordingBody] = None

    # ─────────────────────────────────────────────────────────────────────
    # POOL LIFECYCLE
    # ─────────────────────────────────────────────────────────────────────

    def _checkout(self, w: ResponseWriter, r: HTTPRequest) -> None:
        entry = self.entry
        entry.status_code = 0
        entry.responded_at = 0
        entry.discard_req_body = False
        entry.discard_res_body = False
        entry._req_body = self._buffer_pool.get()
        entry._res_body = self._buffer_pool.get()
        entry.requested_at = time.time_ns()
        entry._started = time.monotonic_ns()

        self._writer = w
        self._body = _RecordingBody(r.body, entry)
        r.body = self._body

    def _release(self) -> None:
        entry = self.entry
        if entry._req_body is not None:
            self._buffer_pool.put(entry._req_body)
        if entry._res_body is not None:
            self._buffer_pool.put(entry._res_body)
        entry._req_body = None
        entry._res_body = None
        if self._body is not None:
            self._body._detach()
        self._writer = None
        self._body = None

    def _sink(self) -> ResponseWriter:
        if self._writer is None:
            raise RuntimeError("log entry recorder used after its request completed")
        return self._writer

    # ─────────────────────────────────────────────────────────────────────
    # ResponseWriter
    # ─────────────────────────────────────────────────────────────────────

    @property
    def headers(self) -> Headers:
        return self._sink().headers

    def write_header(self, status: int) -> None:
        sink = self._sink()
        if self.entry.responded_at > 0:
            return
        sink.write_header(status)
        self.entry.status_code = status
        # strictly after requested_at, even on a coarse clock
        elapsed = time.monotonic_ns() - self.entry._started
        self.entry.responded_at = self.entry.requested_at + max(elapsed, 1)

    def write(self, data: bytes) -> int:
        sink = self._sink()
        if self.entry.responded_at <= 0:
            self.write_header(200)

        n = sink.write(data)
        entry = self.entry
        if not entry.discard_res_body and entry._res_body is not None:
            entry._res_body.write(data[:n])
        return n

    def unwrap(self) -> ResponseWriter:
        return self._sink()


class LogEntryRecorder:
    """
    The recorder middleware factory, with its own pools.

    Most code uses the module-level `log_entry_recorder`, which shares one
    recorder pool process-wide. Build a separate instance to isolate pools
    (tests do).
    """

    def __init__(
        self,
        buffer_pool: Optional[ByteBufferPool] = None,
        max_idle: int = 256,
    ):
        self.buffer_pool = buffer_pool if buffer_pool is not None else default_buffer_pool
        self.pool: ObjectPool[_LogEntryRecorder] = ObjectPool(
            lambda: _LogEntryRecorder(self.buffer_pool), max_idle
        )

    def __call__(self, next_handler: NetHandler) -> NetHandler:
        def record(w: ResponseWriter, r: HTTPRequest) -> None:
            rec = self.pool.get()
            rec._checkout(w, r)
            try:
                next_handler(rec, r)
            finally:
                rec._release()
                self.pool.put(rec)
        return record


log_entry_recorder = LogEntryRecorder()


def get_log_entry(w: ResponseWriter) -> Optional[LogEntry]:
    """
    Find the LogEntry behind `w`.

    Unwraps writer layers until the recorder is found or there's nothing
    left to unwrap.

    Returns:
        The entry, or None if no recorder is in the chain
    """
    seen = set()
    while w is not None and id(w) not in seen:
        if isinstance(w, _LogEntryRecorder):
            return w.entry
        if not isinstance(w, Unwrapper):
            return None
        seen.add(id(w))
        w = w.unwrap()
    return None
