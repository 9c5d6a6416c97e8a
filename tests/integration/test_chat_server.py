"""
End-to-end tests against a running ChatServer over real TCP sockets.
"""

import threading

import pytest

from chatrelay import ChatServer, ServerConfig


class TestChatServer:
    """Protocol behaviour seen by real clients."""

    def test_server_binds_ephemeral_port(self, test_server):
        host, port = test_server.address

        assert host == "127.0.0.1"
        assert port != 0

    def test_join_is_seen_by_everyone(self, test_server):
        alice = test_server.client().join("alice")
        bob = test_server.client().join("bob")

        assert alice.read_line() == "bob joined the chat!"
        assert sorted(test_server.server.registry.nicknames()) == ["alice", "bob"]

    def test_conversation(self, test_server):
        alice = test_server.client().join("Alice")
        bob = test_server.client().join("Bob")
        alice.read_line()  # Bob joined

        alice.send("hi Bob")
        assert alice.read_line() == "Alice: hi Bob"
        assert bob.read_line() == "Alice: hi Bob"

        alice.send("/nick Alicia")
        assert alice.read_line() == "Alice renamed themselves to Alicia"
        assert alice.read_line() == "Nickname successfully changed to Alicia"
        assert bob.read_line() == "Alice renamed themselves to Alicia"

        bob.send("/nick")
        assert bob.read_line() == "No nickname was provided."

        bob.send("hello Alicia")
        assert alice.read_line() == "Bob: hello Alicia"
        assert bob.read_line() == "Bob: hello Alicia"

    def test_quit(self, test_server):
        alice = test_server.client().join("alice")
        bob = test_server.client().join("bob")
        alice.read_line()  # bob joined

        alice.send("/quit")

        assert bob.read_line() == "alice left the chat."
        assert alice.read_line() == "alice left the chat."
        assert alice.read_line() is None
        test_server.wait_for_sessions(1)

        bob.send("alone now")
        assert bob.read_line() == "bob: alone now"

    def test_abrupt_disconnect_is_silent(self, test_server):
        alice = test_server.client().join("alice")
        bob = test_server.client().join("bob")
        alice.read_line()  # bob joined

        bob.close()
        test_server.wait_for_sessions(1)

        alice.send("ping")
        assert alice.read_line() == "alice: ping"

    def test_many_clients_many_messages(self, test_server):
        """Every message reaches every client once, in each sender's order."""
        clients_count = 6
        messages_each = 25

        clients = []
        for n in range(clients_count):
            client = test_server.client().join(f"user{n}")
            for earlier in clients:
                assert earlier.read_line() == f"user{n} joined the chat!"
            clients.append(client)

        def chat(n, client):
            for i in range(messages_each):
                client.send(f"message {i}")

        senders = [
            threading.Thread(target=chat, args=(n, c)) for n, c in enumerate(clients)
        ]
        for t in senders:
            t.start()
        for t in senders:
            t.join()

        total = clients_count * messages_each
        for client in clients:
            lines = client.read_lines(total)

            for n in range(clients_count):
                prefix = f"user{n}: "
                from_sender = [line[len(prefix):] for line in lines if line.startswith(prefix)]
                assert from_sender == [f"message {i}" for i in range(messages_each)]

    def test_shutdown_disconnects_everyone(self, config):
        server = ChatServer(config)
        thread = threading.Thread(target=server.run, daemon=True)
        thread.start()
        assert server.wait_until_ready(timeout=5.0)

        from conftest import ChatClient
        alice = ChatClient.connect(server.address).join("alice")
        waiting = ChatClient.connect(server.address)
        assert waiting.read_line() == "Please, enter a nickname:"

        try:
            server.shutdown()
            server.shutdown()  # idempotent

            assert alice.read_line() is None
            assert waiting.read_line() is None

            thread.join(timeout=10.0)
            assert not thread.is_alive()
            assert len(server.registry) == 0
            assert not server.is_running
        finally:
            alice.close()
            waiting.close()

    def test_shutdown_before_run_is_honoured(self, config):
        server = ChatServer(config)
        server.shutdown()

        thread = threading.Thread(target=server.run, daemon=True)
        thread.start()
        thread.join(timeout=3.0)

        assert not thread.is_alive()
        assert not server.is_running
        assert not server.wait_until_ready(timeout=0)

    def test_stats(self, test_server):
        test_server.client().join("alice")

        stats = test_server.server.stats

        assert stats["sessions"] == 1
        assert stats["nicknames"] == ["alice"]
        assert stats["thread_pool"]["workers"]["busy"] >= 1


class TestServerConfig:
    """Configuration validation."""

    def test_defaults_are_valid(self):
        config = ServerConfig()
        config.validate()

        assert config.port == 8080
        assert config.idle_timeout is None
        assert config.max_workers is None

    @pytest.mark.parametrize("overrides", [
        {"port": -1},
        {"port": 70000},
        {"min_workers": 0},
        {"min_workers": 4, "max_workers": 2},
        {"idle_timeout": 0},
        {"accept_timeout": 0},
        {"encoding": "no-such-codec"},
    ])
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValueError):
            ChatServer(ServerConfig(**overrides))

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CHAT_HOST", "0.0.0.0")
        monkeypatch.setenv("CHAT_PORT", "9000")
        monkeypatch.setenv("CHAT_WORKERS", "8")
        monkeypatch.setenv("CHAT_IDLE_TIMEOUT", "30")
        monkeypatch.setenv("CHAT_LOG_LEVEL", "DEBUG")

        config = ServerConfig.from_env()

        assert config.host == "0.0.0.0"
        assert config.port == 9000
        assert config.min_workers == 8
        assert config.idle_timeout == 30.0
        assert config.log_level == "DEBUG"

    def test_idle_timeout_disconnects_silent_client(self, config):
        config.idle_timeout = 0.2
        server = ChatServer(config)
        thread = threading.Thread(target=server.run, daemon=True)
        thread.start()
        assert server.wait_until_ready(timeout=5.0)

        from conftest import ChatClient
        client = ChatClient.connect(server.address).join("sleepy")
        try:
            assert client.read_line() is None
        finally:
            client.close()
            server.shutdown()
            thread.join(timeout=10.0)
