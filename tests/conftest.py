"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Generator, List, Optional
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from chatrelay import ChatServer, ServerConfig
from chatrelay.core import Connection
from chatrelay.chat import Registry


@pytest.fixture
def config() -> ServerConfig:
    """Test server configuration on an OS-assigned port."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        min_workers=2,
        accept_timeout=0.1,
        shutdown_timeout=5.0,
        log_level="WARNING",
    )


@pytest.fixture
def registry() -> Registry:
    return Registry()


@pytest.fixture
def connection_pair() -> Generator[tuple, None, None]:
    """A server-side Connection plus the raw client socket at the other end."""
    server_sock, client_sock = socket.socketpair()
    client_sock.settimeout(5.0)
    conn = Connection(socket=server_sock, address=("127.0.0.1", 50000))

    yield conn, client_sock

    conn.close()
    client_sock.close()


class ChatClient:
    """Minimal line client for talking to a server in tests."""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self.sock.settimeout(5.0)
        self._reader = sock.makefile("r", encoding="utf-8", newline="\n")

    @classmethod
    def connect(cls, address) -> "ChatClient":
        return cls(socket.create_connection(address, timeout=5.0))

    def send(self, line: str):
        self.sock.sendall((line + "\n").encode("utf-8"))

    def read_line(self) -> Optional[str]:
        """Next line without terminator, or None at end of stream."""
        line = self._reader.readline()
        if not line:
            return None
        return line.rstrip("\n")

    def read_lines(self, count: int) -> List[str]:
        return [self.read_line() for _ in range(count)]

    def join(self, nickname: str) -> "ChatClient":
        """Complete the handshake and consume our own join line."""
        assert self.read_line() == "Please, enter a nickname:"
        self.send(nickname)
        assert self.read_line() == f"{nickname} joined the chat!"
        return self

    def close(self):
        try:
            self._reader.close()
        finally:
            self.sock.close()


class TestServer:
    """Test server helper that runs in a background thread."""

    __test__ = False  # Not a test class

    def __init__(self, server: ChatServer):
        self.server = server
        self._thread: threading.Thread = None
        self._clients: List[ChatClient] = []

    @property
    def address(self):
        return self.server.address

    def start(self):
        """Start server in background thread."""
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()

        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def client(self) -> ChatClient:
        client = ChatClient.connect(self.address)
        self._clients.append(client)
        return client

    def wait_for_sessions(self, count: int, timeout: float = 5.0):
        """Poll until exactly `count` sessions are registered."""
        deadline = time.time() + timeout
        while len(self.server.registry) != count:
            if time.time() > deadline:
                raise AssertionError(
                    f"expected {count} sessions, have {len(self.server.registry)}"
                )
            time.sleep(0.01)

    def stop(self):
        """Stop the server."""
        self.server.shutdown()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=10.0)

        for client in self._clients:
            client.close()


@pytest.fixture
def test_server(config: ServerConfig) -> Generator[TestServer, None, None]:
    """A running chat server."""
    test_srv = TestServer(ChatServer(config))
    test_srv.start()

    yield test_srv

    test_srv.stop()
