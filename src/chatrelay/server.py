"""
=============================================================================
CHAT SERVER
=============================================================================

ChatServer ties the pieces together:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   SocketServer (accept thread)                                       │
    │       │  accept() → Connection                                       │
    │       ▼                                                              │
    │   ChatServer._handle_connection(conn)                                │
    │       │  Session(conn, registry)                                     │
    │       │  registry.add(session)                                       │
    │       ▼                                                              │
    │   ThreadPool.submit(session.run)  ──► one worker per client          │
    │                                           │                          │
    │                                           ▼                          │
    │                          registry.broadcast(line)                    │
    │                                           │                          │
    │                     ┌─────────────────────┼─────────────────────┐    │
    │                     ▼                     ▼                     ▼    │
    │          alice.send_message    bob.send_message    carol.send_message│
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
SHUTDOWN ORDER
=============================================================================

    1. Stop accepting          SocketServer.shutdown() closes the listener
    2. Close every session     Registry.shutdown_all() → Session.shutdown()
                               Each worker's blocked read returns EOF
    3. Stop the workers        ThreadPool.shutdown(timeout=...)

shutdown() performs steps 1 and 2 right away and may be called from any
thread. run() performs all three on its way out, whichever way the
accept loop ended (shutdown(), SIGINT/SIGTERM, Ctrl+C).

=============================================================================
"""

import logging
from typing import Optional, Tuple

from .config import ServerConfig
from .core import SocketServer, Connection, ThreadPool
from .chat import Registry, Session


logger = logging.getLogger(__name__)


class ChatServer:
    """
    Multi-client line chat server.

    Usage:
        server = ChatServer(ServerConfig(port=8080))
        server.run()   # Blocks until Ctrl+C or server.shutdown()
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        """
        Initialize the chat server.

        Args:
            config: Server configuration. Uses defaults if not provided.

        Raises:
            ValueError: If the configuration is invalid.
        """
        self.config = config or ServerConfig()
        self.config.validate()  # Fail-fast on invalid config

        self._socket_server = SocketServer(self.config)

        self._thread_pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
        )

        # Shared by this server and every session it creates
        self._registry = Registry()

        self._running = False

    @property
    def registry(self) -> Registry:
        return self._registry

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); the real port once listening."""
        return self._socket_server.address

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict:
        return {
            "sessions": len(self._registry),
            "nicknames": self._registry.nicknames(),
            "thread_pool": self._thread_pool.stats,
        }

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self, host: Optional[str] = None, port: Optional[int] = None):
        """
        Start the server (blocking).

        Args:
            host: Override config host.
            port: Override config port.

        Raises:
            OSError: If the address cannot be bound.
        """
        if host:
            self.config.host = host
        if port is not None:
            self.config.port = port

        self._setup_logging()

        self._running = True
        self._thread_pool.start()

        logger.info(f"Starting chat server on {self.config.host}:{self.config.port}")

        try:
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the listening socket is up. False on timeout."""
        return self._socket_server.wait_until_ready(timeout)

    def shutdown(self):
        """
        Stop accepting and disconnect every client. Idempotent.

        run() returns shortly afterwards, once its worker pool has drained.
        """
        self._socket_server.shutdown()
        self._registry.shutdown_all()

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("chatrelay").setLevel(level)

    def _shutdown(self):
        logger.info("Shutting down server...")

        self._socket_server.shutdown()
        self._registry.shutdown_all()
        self._thread_pool.shutdown(wait=True, timeout=self.config.shutdown_timeout)

        self._running = False
        logger.info("Server stopped")

    # =========================================================================
    # CONNECTION HANDLING (accept thread)
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """
        Turn an accepted connection into a running session.

        Called by SocketServer on the accept thread, so nothing here may
        block on the client.
        """
        session = Session(conn, self._registry)

        if not self._registry.add(session):
            logger.debug(f"[{conn.id}] Server shutting down, refusing connection")
            conn.close()
            return

        try:
            self._thread_pool.submit(session.run)
        except RuntimeError as e:
            logger.warning(f"[{conn.id}] Could not start session: {e}")
            session.shutdown()
