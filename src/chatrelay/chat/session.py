"""
=============================================================================
CHAT SESSION
=============================================================================

A Session is the server side of one connected client. It owns the
client's Connection and nickname, and runs the client's read loop on a
worker thread.

=============================================================================
SESSION STATE MACHINE
=============================================================================

    CONNECTING ──nickname read──► ACTIVE ──/quit, EOF, error──► CLOSED
         │                                                        ▲
         └──────────────EOF before nickname, error────────────────┘

    CLOSED is terminal. shutdown() may move a session to CLOSED from
    another thread (server shutdown) at any moment; the worker notices
    on its next read, which returns end of stream, and exits.

=============================================================================
WHAT RUNS WHERE
=============================================================================

    Worker thread (this session)        Any other thread
    ────────────────────────────        ────────────────
    run()                               send_message()  (via broadcast)
      _handshake()                      shutdown()      (server stop)
      _read_loop()
        registry.broadcast(...)

nickname is only written by the session's own worker. state is guarded
by self._lock because shutdown() can race the worker's own transition
from CONNECTING to ACTIVE.

Every registered session receives broadcasts, including one still at
the nickname prompt. self._send_lock orders the prompt ahead of any
broadcast that races the handshake, so the prompt is always the first
line a client sees.

=============================================================================
"""

import logging
import threading
from enum import Enum
from typing import Optional

from ..core.connection import Connection, LineTooLongError
from . import protocol
from .protocol import Command, CommandKind
from .registry import Registry


logger = logging.getLogger(__name__)


class SessionState(Enum):
    CONNECTING = "connecting"  # Prompt sent, waiting for a nickname
    ACTIVE = "active"          # Joined, lines are relayed to the room
    CLOSED = "closed"          # Connection released, terminal


class Session:
    """
    Per-client handler.

    Usage (what ChatServer does for every accepted connection):

        session = Session(conn, registry)
        registry.add(session)
        pool.submit(session.run)

    Attributes:
        connection: The client connection (owned).
        registry: Shared registry used for broadcasts.
        nickname: Display name, None until the handshake completes.
        state: Current SessionState.
    """

    def __init__(self, connection: Connection, registry: Registry):
        self.connection = connection
        self.registry = registry
        self.nickname: Optional[str] = None
        self.state = SessionState.CONNECTING
        self._lock = threading.Lock()

        # Guards _prompted and the writes that depend on it
        self._send_lock = threading.Lock()
        self._prompted = False

    @property
    def id(self) -> str:
        return self.connection.id

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.state == SessionState.CLOSED

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, nickname={self.nickname!r}, state={self.state.value})"

    # =========================================================================
    # WORKER ENTRY POINT
    # =========================================================================

    def run(self):
        """
        Serve this client until it leaves. Runs on a pool worker.

        Every exit path ends in shutdown(). Only an explicit /quit is
        announced to the room; a dropped connection leaves silently.
        """
        try:
            if self._handshake():
                self._read_loop()
        except LineTooLongError as e:
            logger.warning(f"[{self.id}] Dropping client: {e}")
        except OSError as e:
            # Expected when shutdown() closed us from another thread
            if not self.is_closed:
                logger.info(f"[{self.id}] Connection error: {e}")
        finally:
            self.shutdown()

    def _handshake(self) -> bool:
        """
        Ask for a nickname and join the room.

        Returns:
            True if the session is now ACTIVE.
        """
        with self._send_lock:
            self._prompt()

        nickname = self.connection.read_line()
        if nickname is None:
            logger.debug(f"[{self.id}] Disconnected before choosing a nickname")
            return False

        with self._lock:
            if self.state != SessionState.CONNECTING:
                return False
            self.nickname = nickname
            self.state = SessionState.ACTIVE

        logger.info(f"[{self.id}] {nickname} connected from {self.connection.client_ip}")
        self.registry.broadcast(protocol.joined(nickname))
        return True

    def _read_loop(self):
        """Process client lines, strictly in arrival order, while ACTIVE."""
        while self.is_active:
            line = self.connection.read_line()
            if line is None:
                if self.is_active:
                    logger.info(f"[{self.id}] {self.nickname} disconnected")
                return

            if not self.is_active:
                return

            self._handle(protocol.parse_line(line))

    def _handle(self, command: Command):
        if command.kind == CommandKind.NICK:
            if command.argument is None:
                self.send_message(protocol.NO_NICKNAME_PROVIDED)
            else:
                self._rename(command.argument)

        elif command.kind == CommandKind.QUIT:
            logger.info(f"[{self.id}] {self.nickname} left the chat")
            self.registry.broadcast(protocol.left(self.nickname))
            self.shutdown()

        else:
            self.registry.broadcast(protocol.chat_message(self.nickname, command.text))

    def _rename(self, new_nickname: str):
        old_nickname = self.nickname
        self.registry.broadcast(protocol.renamed(old_nickname, new_nickname))
        logger.info(f"[{self.id}] {old_nickname} renamed themselves to {new_nickname}")
        self.nickname = new_nickname
        self.send_message(protocol.nickname_changed(new_nickname))

    def _prompt(self):
        """Write the nickname prompt once. Caller holds self._send_lock."""
        if not self._prompted:
            self._prompted = True
            self.connection.write_line(protocol.NICKNAME_PROMPT)

    # =========================================================================
    # CALLED FROM ANY THREAD
    # =========================================================================

    def send_message(self, text: str) -> bool:
        """
        Deliver one line to this client.

        This is the registry's broadcast target, so it never raises: a dead
        peer must not abort delivery to everyone else. A session still at
        the nickname prompt receives the line too; if its worker has not
        written the prompt yet, the prompt goes out first.

        Returns:
            True if the line was written, False once the session is closed
            or when the write fails.
        """
        if self.state == SessionState.CLOSED:
            return False

        try:
            with self._send_lock:
                self._prompt()
                self.connection.write_line(text)
            return True
        except OSError as e:
            logger.debug(f"[{self.id}] Send failed: {e}")
            return False

    def shutdown(self):
        """
        Close this session. Idempotent and thread-safe.

        The first call marks the session CLOSED, closes the connection
        (waking the worker if it is blocked reading) and unregisters it.
        """
        with self._lock:
            if self.state == SessionState.CLOSED:
                return
            self.state = SessionState.CLOSED

        self.connection.close()
        self.registry.remove(self)
        logger.debug(f"[{self.id}] Session closed")
