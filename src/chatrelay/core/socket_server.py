"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

This module owns the passive listening socket. It accepts connections,
wraps each one in a Connection, and hands it to a callback. It knows
nothing about chat.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()    Create a socket file descriptor
    2. bind()      Associate the socket with an IP:PORT
    3. listen()    Mark socket as a "listening" socket
    4. accept()    Wait for a connection, get a NEW socket for that client
    5. close()     Release the listening socket

                    ┌───────────────────────┐
                    │   Listening Socket    │ ◄── Created once at startup
                    └───────────┬───────────┘     Never sends/receives data
                                │
        ┌───────────────────────┼───────────────────────┐
        ▼                       ▼                       ▼
    ┌───────────┐         ┌───────────┐         ┌───────────┐
    │ Client 1  │         │ Client 2  │         │ Client 3  │
    └───────────┘         └───────────┘         └───────────┘

=============================================================================
STOPPING A BLOCKING accept()
=============================================================================

accept() blocks. To be able to stop, the listening socket gets a short
timeout (config.accept_timeout) and the loop re-checks its running flag
after every timeout. shutdown() also closes the listening socket, so an
accept() in progress fails with OSError, which the loop treats as the
signal to stop rather than as an error.

SIGINT (Ctrl+C) and SIGTERM trigger shutdown() when the server runs in
the main thread. Python only allows signal handlers there, so a server
started from a background thread (tests, embedding) skips them.

=============================================================================
"""

import socket
import signal
import logging
import threading
from typing import Optional, Callable, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)


class SocketServer:
    """
    Low-level TCP socket server.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    start(handler)                                                    │
    │        ├──► _create_socket()   socket() + setsockopt()              │
    │        ├──► bind(), listen()                                         │
    │        ├──► _setup_signals()   (main thread only)                   │
    │        └──► _accept_loop()     blocks until shutdown()              │
    │                 └──► accept() → Connection() → handler(conn)        │
    │                                                                      │
    │    shutdown()                                                        │
    │        └──► _running = False, close listening socket                │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        def handle_connection(conn: Connection):
            ...

        server = SocketServer(config)
        server.start(handle_connection)  # Blocks until shutdown
    """

    def __init__(self, config: ServerConfig):
        """
        Initialize the socket server.

        Args:
            config: Server configuration containing host, port, backlog, etc.

        The socket is created lazily in start().
        """
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._socket_lock = threading.Lock()  # Protects _socket during close

        self._running = False
        self._bound_address: Optional[Tuple[str, int]] = None

        # Set once listening, cleared again on cleanup
        self._ready_event = threading.Event()
        # Set when shutdown() is called
        self._shutdown_event = threading.Event()

        self._original_handlers: dict = {}

    @property
    def address(self) -> Tuple[str, int]:
        """
        Get the server's bound address (IP, port).

        After start() this is the real address, which matters when the
        configured port is 0.
        """
        if self._bound_address is not None:
            return self._bound_address
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        """Create and configure the listening socket."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        # Avoid "Address already in use" while old sockets sit in TIME_WAIT
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Chat lines are tiny and interactive: send them right away
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        # Lets the accept loop wake up and check self._running
        sock.settimeout(self.config.accept_timeout)

        return sock

    def _setup_signals(self):
        """
        Install SIGTERM/SIGINT handlers that call shutdown().

        Only possible from the main thread; elsewhere this is a no-op.
        """
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        """Restore original signal handlers."""
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Start accepting connections.

        This method BLOCKS until shutdown() is called.

        Args:
            connection_handler: Called with each new Connection, on the
                                accept thread. It must not block.

        Raises:
            OSError: If the address cannot be bound.
        """
        sock = self._create_socket()

        try:
            sock.bind((self.config.host, self.config.port))
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            sock.close()
            raise

        sock.listen(self.config.backlog)
        self._bound_address = sock.getsockname()[:2]

        # A shutdown() that arrived before this point must still win
        with self._socket_lock:
            if self._shutdown_event.is_set():
                sock.close()
                logger.info("Shutdown requested before start, not accepting")
                return
            self._socket = sock
            self._running = True

        self._setup_signals()

        logger.info(f"Server listening on {self.address[0]}:{self.address[1]}")
        self._ready_event.set()

        try:
            self._accept_loop(sock, connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, sock: socket.socket, connection_handler: Callable[[Connection], None]):
        """
        Main loop for accepting connections.

            while self._running:
                accept()         → (client_socket, client_address)
                Connection(...)  → line framing around the client socket
                handler(conn)    → ChatServer registers it and starts its session
        """
        while self._running:
            try:
                client_socket, client_address = sock.accept()
            except socket.timeout:
                # Normal: just a chance to re-check self._running
                continue
            except OSError as e:
                # Listening socket closed underneath us: we're shutting down
                if self._running:
                    logger.error(f"Accept error: {e}")
                break

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                encoding=self.config.encoding,
                timeout=self.config.idle_timeout,
                max_line_length=self.config.max_line_length,
            )

            connection_handler(conn)

    def shutdown(self):
        """
        Initiate shutdown.

        Can be called from a signal handler, another thread, or the
        connection handler itself. Idempotent, and also effective when
        called before start(): start() then returns without accepting.
        A SocketServer is single-use.
        """
        if self._shutdown_event.is_set():
            return

        logger.info("Shutting down socket server...")
        self._shutdown_event.set()
        self._running = False
        self._close_socket()

    def _close_socket(self):
        with self._socket_lock:
            sock, self._socket = self._socket, None
        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass  # Already closed

    def _cleanup(self):
        """Clean up resources once the accept loop has exited."""
        self._running = False
        self._restore_signals()
        self._close_socket()
        self._ready_event.clear()
        logger.info("Socket server stopped")

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the server is listening.

        Returns:
            True if listening, False on timeout.
        """
        return self._ready_event.wait(timeout)
