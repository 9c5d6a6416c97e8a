"""
Unit tests for the session registry.
"""

import threading
import uuid

from chatrelay.chat.registry import Registry


class FakeSession:
    """Stands in for Session: records deliveries and shutdowns."""

    def __init__(self, registry: Registry, nickname=None, fail=False):
        self.id = str(uuid.uuid4())[:8]
        self.registry = registry
        self.nickname = nickname
        self.fail = fail
        self.received = []
        self.shutdown_calls = 0
        self._lock = threading.Lock()

    def send_message(self, text: str) -> bool:
        if self.fail:
            return False
        with self._lock:
            self.received.append(text)
        return True

    def shutdown(self):
        self.shutdown_calls += 1
        self.registry.remove(self)


class TestRegistry:
    """Tests for Registry membership."""

    def test_add_and_remove(self, registry):
        session = FakeSession(registry)

        assert registry.add(session) is True
        assert session in registry
        assert len(registry) == 1

        assert registry.remove(session) is True
        assert session not in registry
        assert len(registry) == 0

    def test_remove_unknown_session(self, registry):
        assert registry.remove(FakeSession(registry)) is False

    def test_nicknames_skip_sessions_without_one(self, registry):
        registry.add(FakeSession(registry, nickname="alice"))
        registry.add(FakeSession(registry))

        assert registry.nicknames() == ["alice"]


class TestBroadcast:
    """Tests for Registry.broadcast()."""

    def test_delivers_to_every_member(self, registry):
        sessions = [FakeSession(registry) for _ in range(3)]
        for s in sessions:
            registry.add(s)

        delivered = registry.broadcast("hello")

        assert delivered == 3
        for s in sessions:
            assert s.received == ["hello"]

    def test_failing_member_is_skipped(self, registry):
        good_before = FakeSession(registry)
        dead = FakeSession(registry, fail=True)
        good_after = FakeSession(registry)
        for s in (good_before, dead, good_after):
            registry.add(s)

        delivered = registry.broadcast("hello")

        assert delivered == 2
        assert good_before.received == ["hello"]
        assert good_after.received == ["hello"]

    def test_empty_registry(self, registry):
        assert registry.broadcast("anyone?") == 0

    def test_member_removed_during_broadcast(self, registry):
        """A session leaving mid-fan-out does not break the broadcast."""
        first = FakeSession(registry)
        second = FakeSession(registry)

        def send_and_leave(text):
            second.received.append(text)
            registry.remove(first)
            registry.remove(second)
            return True

        second.send_message = send_and_leave
        registry.add(first)
        registry.add(second)

        assert registry.broadcast("hello") == 2
        assert len(registry) == 0

    def test_concurrent_add_remove_and_broadcast(self, registry):
        """Many threads mutating and iterating never raise."""
        errors = []
        listener = FakeSession(registry)
        registry.add(listener)

        def churn():
            try:
                for _ in range(200):
                    s = FakeSession(registry)
                    registry.add(s)
                    registry.broadcast("ping")
                    registry.remove(s)
            except Exception as e:  # pragma: no cover - reported below
                errors.append(e)

        threads = [threading.Thread(target=churn) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(registry) == 1
        assert len(listener.received) == 8 * 200


class TestShutdownAll:
    """Tests for Registry.shutdown_all()."""

    def test_shuts_down_every_session(self, registry):
        sessions = [FakeSession(registry) for _ in range(3)]
        for s in sessions:
            registry.add(s)

        registry.shutdown_all()

        assert registry.is_closed
        assert len(registry) == 0
        assert [s.shutdown_calls for s in sessions] == [1, 1, 1]

    def test_is_idempotent(self, registry):
        session = FakeSession(registry)
        registry.add(session)

        registry.shutdown_all()
        registry.shutdown_all()

        assert session.shutdown_calls == 1

    def test_refuses_new_sessions_after_shutdown(self, registry):
        registry.shutdown_all()

        assert registry.add(FakeSession(registry)) is False
        assert len(registry) == 0
