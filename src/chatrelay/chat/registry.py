"""
=============================================================================
SESSION REGISTRY
=============================================================================

The registry is the set of live sessions, shared by the server (which
adds every accepted session) and by every session (which broadcasts
through it and removes itself when it ends).

=============================================================================
WHY A LOCK?
=============================================================================

Many worker threads touch this set at the same time:

    Worker-0 (alice)  ──► broadcast("alice: hi")     iterates members
    Worker-1 (bob)    ──► remove(bob)                 mutates members
    accept thread     ──► add(carol)                  mutates members

Iterating a dict while another thread resizes it raises
"RuntimeError: dictionary changed size during iteration". So every
access takes self._lock.

=============================================================================
SNAPSHOT BROADCAST
=============================================================================

broadcast() holds the lock only long enough to copy the member list,
then writes to each member WITHOUT the lock:

    ┌─────────────────────────────────────────────────────────────────┐
    │                    broadcast(text)                               │
    ├─────────────────────────────────────────────────────────────────┤
    │                                                                  │
    │   with lock:                                                     │
    │       targets = list(members)      ← stable snapshot             │
    │                                                                  │
    │   for session in targets:          ← lock released               │
    │       session.send_message(text)   ← False on failure, skip      │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

Writing to a socket can block (slow client, full send buffer). Holding
the lock during that would freeze every add, remove and broadcast in
the server. With the snapshot, a member removed mid-broadcast is simply
written to once more, which fails quietly because its connection is
already closed.

=============================================================================
"""

import logging
import threading
from typing import TYPE_CHECKING, Dict, List

if TYPE_CHECKING:
    from .session import Session


logger = logging.getLogger(__name__)


class Registry:
    """
    Thread-safe collection of live sessions.

    Usage:
        registry = Registry()
        registry.add(session)
        registry.broadcast("alice joined the chat!")
        registry.remove(session)
        registry.shutdown_all()
    """

    def __init__(self):
        self._sessions: Dict[str, "Session"] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def add(self, session: "Session") -> bool:
        """
        Register a newly accepted session.

        Returns:
            False if the registry has been shut down; the caller owns
            the session and must close it.
        """
        with self._lock:
            if self._closed:
                return False
            self._sessions[session.id] = session
            count = len(self._sessions)

        logger.debug(f"[{session.id}] Registered ({count} sessions)")
        return True

    def remove(self, session: "Session") -> bool:
        """
        Unregister a session.

        Returns:
            True if the session was registered.
        """
        with self._lock:
            removed = self._sessions.pop(session.id, None) is not None
            count = len(self._sessions)

        if removed:
            logger.debug(f"[{session.id}] Unregistered ({count} sessions)")
        return removed

    def broadcast(self, text: str) -> int:
        """
        Deliver one line to every registered session.

        Every session present when the snapshot is taken gets a delivery
        attempt. A failing session is skipped; it never stops delivery to
        the others.

        Returns:
            Number of sessions the line was delivered to.
        """
        with self._lock:
            targets = list(self._sessions.values())

        delivered = 0
        for session in targets:
            if session.send_message(text):
                delivered += 1

        logger.debug(f"Broadcast delivered to {delivered}/{len(targets)} sessions")
        return delivered

    def shutdown_all(self):
        """
        Close the registry and shut down every session in it.

        Idempotent. Sessions accepted afterwards are refused by add().
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            sessions = list(self._sessions.values())
            self._sessions.clear()

        logger.info(f"Shutting down {len(sessions)} sessions")

        # Outside the lock: Session.shutdown() calls back into remove()
        for session in sessions:
            session.shutdown()

    def nicknames(self) -> List[str]:
        """Nicknames of sessions that have completed the handshake."""
        with self._lock:
            sessions = list(self._sessions.values())
        return [s.nickname for s in sessions if s.nickname is not None]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session: "Session") -> bool:
        with self._lock:
            return self._sessions.get(session.id) is session
