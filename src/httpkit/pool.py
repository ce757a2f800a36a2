"""
=============================================================================
OBJECT AND BUFFER POOLS
=============================================================================

Per-request objects (recorders, body buffers) are recycled instead of
being allocated for every request.

=============================================================================
POOL CONTRACT
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        POOL LIFECYCLE                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   get()  ──► pop a free object (or build one with factory())        │
    │              caller RESETS every mutable field before use           │
    │                                                                      │
    │   ...request runs, object owned by exactly one thread...            │
    │                                                                      │
    │   put()  ──► caller CLEARS references it no longer owns             │
    │              object goes back on the free list                      │
    │              (dropped if the pool is already full)                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

There are no finalizers: everything happens explicitly at get() and put().
A lock guards the free list, so the pools are safe to share between
worker threads.

=============================================================================
"""

import threading
from typing import BinaryIO, Callable, Generic, List, TypeVar


T = TypeVar("T")


class ObjectPool(Generic[T]):
    """
    Thread-safe free list of reusable objects.

    Usage:
        pool = ObjectPool(dict, max_size=64)
        d = pool.get()
        try:
            ...
        finally:
            d.clear()
            pool.put(d)
    """

    def __init__(self, factory: Callable[[], T], max_size: int = 256):
        """
        Args:
            factory: Builds a new object when the free list is empty
            max_size: Maximum number of idle objects kept around
        """
        self._factory = factory
        self._max_size = max_size
        self._free: List[T] = []
        self._lock = threading.Lock()

    def get(self) -> T:
        """Take an object from the pool, creating one if none is free."""
        with self._lock:
            if self._free:
                return self._free.pop()
        return self._factory()

    def put(self, obj: T) -> None:
        """Return an object to the pool."""
        with self._lock:
            if len(self._free) < self._max_size:
                self._free.append(obj)

    def __len__(self) -> int:
        """Number of idle objects currently held."""
        with self._lock:
            return len(self._free)


class ByteBuffer:
    """
    Growable byte buffer used to capture request and response bodies.

    Exposes the small surface the recorder and its readers need:
    write(), len(), bytes() and read_from().
    """

    __slots__ = ("_buf",)

    def __init__(self):
        self._buf = bytearray()

    def write(self, data: bytes) -> int:
        """Append `data` and return the number of bytes appended."""
        self._buf += data
        return len(data)

    def read_from(self, reader: BinaryIO, chunk_size: int = 8192) -> int:
        """
        Append everything `reader` yields until EOF.

        Returns:
            Number of bytes appended
        """
        total = 0
        while True:
            chunk = reader.read(chunk_size)
            if not chunk:
                return total
            total += self.write(chunk)

    def bytes(self) -> bytes:
        """Return a copy of the buffered bytes."""
        return bytes(self._buf)

    def reset(self) -> None:
        """Drop the contents, keeping the allocated capacity."""
        del self._buf[:]

    def __len__(self) -> int:
        return len(self._buf)

    def __repr__(self) -> str:
        return f"ByteBuffer(len={len(self._buf)})"


class ByteBufferPool:
    """
    Pool of ByteBuffer objects.

    get() always hands out an empty buffer. put() resets the buffer and
    keeps it unless it grew past `max_buffer_size`, so one huge upload
    doesn't pin memory forever.
    """

    def __init__(self, max_size: int = 256, max_buffer_size: int = 1024 * 1024):
        self._pool: ObjectPool[ByteBuffer] = ObjectPool(ByteBuffer, max_size)
        self._max_buffer_size = max_buffer_size

    def get(self) -> ByteBuffer:
        buf = self._pool.get()
        buf.reset()
        return buf

    def put(self, buf: ByteBuffer) -> None:
        oversized = len(buf) > self._max_buffer_size
        buf.reset()
        if not oversized:
            self._pool.put(buf)

    def __len__(self) -> int:
        return len(self._pool)


# Shared by every recorder in the process.
default_buffer_pool = ByteBufferPool()
