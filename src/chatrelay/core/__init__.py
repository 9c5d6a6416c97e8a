"""
=============================================================================
CORE NETWORKING COMPONENTS
=============================================================================

The transport layer of the chat relay, independent of the chat protocol:

    SocketServer   accepts TCP connections on the listening socket
    Connection     line framing around one client socket
    ThreadPool     worker threads, one per live client

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   SocketServer ──accept()──► Connection ──► ChatServer              │
    │                                                 │                    │
    │                                                 ▼                    │
    │                                  ThreadPool.submit(session.run)      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState, ConnectionClosedError, LineTooLongError
from .thread_pool import ThreadPool

__all__ = [
    "SocketServer",           # Accept loop on the listening socket
    "Connection",             # Line-framed client socket
    "ConnectionState",        # OPEN / CLOSED
    "ConnectionClosedError",  # Write on a closed connection
    "LineTooLongError",       # Client line over max_line_length
    "ThreadPool",             # Worker threads
]
