"""
=============================================================================
CHATRELAY - Multi-Client Line Chat Relay
=============================================================================

Clients connect over TCP, pick a nickname, and every line they send is
relayed to everyone in the room. Everything lives in memory.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    chatrelay/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m chatrelay)
    ├── server.py            # ChatServer: wires everything together
    ├── config.py            # ServerConfig dataclass
    ├── core/                # Transport, no chat knowledge
    │   ├── socket_server.py # Accept loop
    │   ├── connection.py    # Line framing around a client socket
    │   └── thread_pool.py   # One worker per live client
    └── chat/                # Chat semantics
        ├── protocol.py      # Command parsing and message text
        ├── session.py       # Per-client read loop and state
        └── registry.py      # Thread-safe set of sessions, broadcast

=============================================================================
QUICK START
=============================================================================

    from chatrelay import ChatServer, ServerConfig

    server = ChatServer(ServerConfig(port=8080))
    server.run()

Then, from two terminals:

    $ nc localhost 8080
    Please, enter a nickname:
    alice
    alice joined the chat!

=============================================================================
"""

__version__ = "1.0.0"

from .server import ChatServer
from .config import ServerConfig

__all__ = ["ChatServer", "ServerConfig", "__version__"]
