"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

This module wraps one accepted client socket with a line-oriented API:
read a line, write a line, close.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

TCP does NOT preserve message boundaries. A client that types two lines
might produce any of these recv() results:

    Client sends:
        "hello\n"
        "world\n"

    Server might receive:
        recv() → "hello\nworld\n"   (both combined)
        recv() → "hel"              (partial)
        recv() → "lo\nwor"          (rest of first + part of second)

So we keep a buffer and only hand out text once we have seen the
newline that ends it. Whatever follows the newline stays in the buffer
for the next read_line() call.

    ┌─────────────────────────────────────────────────────────────────┐
    │                    read_line() Buffering                         │
    ├─────────────────────────────────────────────────────────────────┤
    │                                                                  │
    │   _buffer = b"hel"          no "\n" yet → recv() more            │
    │   _buffer = b"hello\nwor"   found "\n"  → return "hello"         │
    │   _buffer = b"wor"          kept for the next call               │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

=============================================================================
ONE READER, MANY WRITERS
=============================================================================

Only the owning session's worker ever reads. Writes are different: a
broadcast triggered by ANY session ends up writing to EVERY connection,
so several threads may call write_line() on the same connection at once.
A per-connection lock keeps each line's bytes together on the wire.

close() may be called from a thread other than the reader (server
shutdown). It uses shutdown(SHUT_RDWR) before close() because that wakes
a reader blocked in recv() with an end-of-stream, and makes a writer
blocked in sendall() fail instead of hanging.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    OPEN ──────► CLOSED

    CLOSED is terminal. Once closed, read_line() returns None and
    write_line() raises ConnectionClosedError.

=============================================================================
"""

import socket
import threading
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional
import uuid


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states."""
    OPEN = "open"        # Socket usable for reads and writes
    CLOSED = "closed"    # Socket released, terminal


class ConnectionClosedError(ConnectionError):
    """Raised when writing to a connection that has already been closed."""


class LineTooLongError(ValueError):
    """Raised when a client sends more than max_line_length bytes without a newline."""


@dataclass
class Connection:
    """
    Represents a client connection with newline framing.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Unique connection identifier (for logging).
        state: Current connection state.
        created_at: Timestamp when connection was accepted.
        lines_read: Number of complete lines handed to the reader.
        lines_written: Number of lines sent.
    """

    # Required parameters
    socket: socket.socket
    address: tuple

    # Generated/default parameters
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.OPEN
    created_at: float = field(default_factory=time.time)
    lines_read: int = 0
    lines_written: int = 0

    # Configuration (passed from ServerConfig)
    buffer_size: int = 4096
    encoding: str = "utf-8"
    timeout: Optional[float] = None
    max_line_length: int = 64 * 1024

    # Internal state (not shown in repr for cleaner logs)
    _buffer: bytes = field(default=b"", repr=False)
    _eof: bool = field(default=False, repr=False)
    _write_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _close_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        """
        Configure socket after initialization.

        Accepted sockets may inherit the listening socket's accept
        timeout, so put them back into plain blocking mode first.
        """
        self.socket.setblocking(True)

        if self.timeout:
            self.socket.settimeout(self.timeout)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client_ip(self) -> str:
        """Get the client IP address."""
        return self.address[0]

    @property
    def client_port(self) -> int:
        """Get the client port."""
        return self.address[1]

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    # =========================================================================
    # READING
    # =========================================================================

    def read_line(self) -> Optional[str]:
        """
        Read one line from the client.

        Blocks until a newline arrives. The terminator ("\\n", or "\\r\\n"
        from telnet-style clients) is stripped. If the peer closes after
        a final line without a newline, that line is still returned and
        the following call returns None.

        Returns:
            The decoded line, or None at end of stream.

        Raises:
            OSError: On transport failure (reset, read timeout).
            LineTooLongError: If the pending line exceeds max_line_length.
        """
        if self.is_closed:
            return None

        while True:
            newline = self._buffer.find(b"\n")
            if newline >= 0:
                raw = self._buffer[:newline]
                self._buffer = self._buffer[newline + 1:]
                return self._decode(raw)

            if len(self._buffer) > self.max_line_length:
                raise LineTooLongError(
                    f"Line exceeds {self.max_line_length} bytes"
                )

            if self._eof:
                if self._buffer:
                    raw, self._buffer = self._buffer, b""
                    return self._decode(raw)
                return None

            chunk = self._recv()
            if not chunk:
                self._eof = True
            else:
                self._buffer += chunk

    def _recv(self) -> bytes:
        """
        Receive data from the socket.

        A failure after close() was called elsewhere is reported as end of
        stream, since the reader is only being told to stop.
        """
        try:
            data = self.socket.recv(self.buffer_size)
        except OSError:
            if self.is_closed:
                return b""
            raise
        return data

    def _decode(self, raw: bytes) -> str:
        if len(raw) > self.max_line_length:
            raise LineTooLongError(f"Line exceeds {self.max_line_length} bytes")
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        self.lines_read += 1
        return raw.decode(self.encoding, errors="replace")

    # =========================================================================
    # WRITING
    # =========================================================================

    def write_line(self, text: str):
        """
        Send one line to the client.

        Uses sendall() so the whole line is on its way before we return.

        A timeout during sendall() may leave part of the line on the wire,
        so the connection is closed before the timeout propagates. The
        next line can never be glued onto a half-written one.

        Args:
            text: Line content without terminator.

        Raises:
            ConnectionClosedError: If the connection is (or becomes) closed.
            socket.timeout: If the peer stopped reading; the connection
                            is closed by then.
            OSError: On transport failure.
        """
        data = (text + "\n").encode(self.encoding, errors="replace")

        with self._write_lock:
            if self.is_closed:
                raise ConnectionClosedError(f"[{self.id}] Connection is closed")
            try:
                self.socket.sendall(data)
            except socket.timeout:
                logger.debug(f"[{self.id}] Write timed out, closing")
                self.close()
                raise
            except OSError as e:
                if self.is_closed:
                    raise ConnectionClosedError(f"[{self.id}] Connection is closed") from e
                raise
            self.lines_written += 1

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close the connection.

        Safe to call any number of times, from any thread. Only the first
        call does anything.

        1. shutdown(SHUT_RDWR): sends FIN and wakes any thread blocked
           in recv() or sendall() on this socket.
        2. close(): release the file descriptor.
        """
        with self._close_lock:
            if self.state == ConnectionState.CLOSED:
                return  # Already closed
            self.state = ConnectionState.CLOSED

        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Peer already gone

        try:
            self.socket.close()
        except OSError:
            pass

        logger.debug(
            f"[{self.id}] Connection closed after {self.lines_read} lines read, "
            f"{self.lines_written} written, {time.time() - self.created_at:.1f}s open"
        )

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensure connection is closed."""
        self.close()
        return False  # Don't suppress exceptions
