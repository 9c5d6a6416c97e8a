"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the chat relay.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m chatrelay --port 9000                           │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── CHAT_PORT=9000 python -m chatrelay                        │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A dataclass gives us one typed place to see every option, and validate()
lets the server fail at startup instead of on the first client.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class ServerConfig:
    """
    Configuration for the chat server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, accept_timeout

    PROTOCOL SETTINGS
    - encoding, max_line_length, idle_timeout

    THREADING SETTINGS
    - min_workers, max_workers, shutdown_timeout

    LOGGING
    - log_level

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """
    The IP address to bind to.
    - "127.0.0.1" - Localhost only
    - "0.0.0.0" - All network interfaces
    """

    port: int = 8080
    """
    The port number to listen on. 0 lets the OS pick a free port
    (read it back from ChatServer.address once listening).
    """

    backlog: int = 128
    """Maximum number of queued, not yet accepted connections."""

    buffer_size: int = 4096
    """Bytes requested per recv() call."""

    accept_timeout: float = 1.0
    """
    How often the accept loop wakes up to check whether it should stop.
    Lower = faster shutdown, more idle wakeups.
    """

    # ─────────────────────────────────────────────────────────────────────
    # PROTOCOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    encoding: str = "utf-8"
    """Text encoding of lines on the wire."""

    max_line_length: int = 64 * 1024
    """
    Maximum bytes buffered for a single line. A client that sends more
    without a newline is disconnected.
    """

    idle_timeout: Optional[float] = None
    """
    Read timeout per connection in seconds.
    None = an idle client may stay connected forever (one blocked
    worker thread each). A number turns idleness into a disconnect.
    """

    # ─────────────────────────────────────────────────────────────────────
    # THREAD POOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    """Worker threads created at startup."""

    max_workers: Optional[int] = None
    """
    Upper bound on worker threads. Every connected client holds one
    worker for its whole lifetime, so None (unbounded) is the default.
    """

    shutdown_timeout: float = 5.0
    """Seconds to wait for workers to finish during shutdown."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    server_name: str = "ChatRelay/1.0"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        CHAT_HOST          Server host (default: 127.0.0.1)
        CHAT_PORT          Server port (default: 8080)
        CHAT_WORKERS       Pre-started worker threads (default: 4)
        CHAT_IDLE_TIMEOUT  Read timeout in seconds (default: none)
        CHAT_LOG_LEVEL     Logging level (default: INFO)

        =====================================================================
        """
        idle_timeout = os.getenv("CHAT_IDLE_TIMEOUT")
        return cls(
            host=os.getenv("CHAT_HOST", "127.0.0.1"),
            port=int(os.getenv("CHAT_PORT", "8080")),
            min_workers=int(os.getenv("CHAT_WORKERS", "4")),
            idle_timeout=float(idle_timeout) if idle_timeout else None,
            log_level=os.getenv("CHAT_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: On the first invalid value found.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")

        if self.max_line_length < 1:
            raise ValueError("max_line_length must be >= 1")

        if self.accept_timeout <= 0:
            raise ValueError("accept_timeout must be > 0")

        if self.idle_timeout is not None and self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers is not None and self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.shutdown_timeout < 0:
            raise ValueError("shutdown_timeout must be >= 0")

        try:
            "".encode(self.encoding)
        except LookupError:
            raise ValueError(f"Unknown encoding: {self.encoding}")
