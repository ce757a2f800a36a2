"""
=============================================================================
CORE NETWORKING
=============================================================================

The transport under HTTPServer:

    SocketServer   bind/listen/accept, one Connection per client
    Connection     buffered request reads, response writes, clean close
    ThreadPool     bounded worker threads that serve connections

Nothing in here knows about routing or middleware; HTTPServer glues the
two halves together.

=============================================================================
"""

from .connection import Connection, ConnectionState
from .socket_server import SocketServer
from .thread_pool import ThreadPool


__all__ = [
    "SocketServer",     # Accept loop
    "Connection",       # Client socket wrapper
    "ConnectionState",  # Connection lifecycle states
    "ThreadPool",       # Worker threads
]
