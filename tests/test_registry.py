"""
Tests for the connection registry: ids, capacity, fan-out and eviction.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from conftest import FakeClock

from roomsync.errors import CapacityExceeded, ConnectionLost
from roomsync.server.registry import (
    CLOSE_POLICY_VIOLATION,
    CloseRequest,
    ConnectionRegistry,
)


def _queued(client) -> list:
    items = []
    while not client.outbox.empty():
        items.append(client.outbox.get_nowait())
    return items


class TestRegister:
    def test_ids_are_unique_and_prefixed(self, registry):
        ids = {registry.register(MagicMock()).id for _ in range(10)}
        assert len(ids) == 10
        assert all(cid.startswith("c_") for cid in ids)
        assert len(registry) == 10

    def test_last_seen_comes_from_clock(self):
        reg = ConnectionRegistry(clock=FakeClock(42.0))
        assert reg.register(MagicMock()).last_seen == 42.0

    def test_capacity(self):
        reg = ConnectionRegistry(max_clients=2)
        reg.register(MagicMock())
        reg.register(MagicMock())
        with pytest.raises(CapacityExceeded):
            reg.register(MagicMock())

    def test_capacity_frees_up_after_unregister(self):
        reg = ConnectionRegistry(max_clients=1)
        first = reg.register(MagicMock())
        reg.unregister(first.id)
        assert reg.register(MagicMock()).id != first.id

    def test_unregister_is_idempotent(self, registry):
        client = registry.register(MagicMock())
        assert registry.unregister(client.id) is client
        assert registry.unregister(client.id) is None
        assert client.id not in registry


class TestBroadcast:
    def test_reaches_everyone_in_order(self, registry):
        a = registry.register(MagicMock())
        b = registry.register(MagicMock())
        assert registry.broadcast("one") == 2
        assert registry.broadcast("two") == 2
        assert _queued(a) == ["one", "two"]
        assert _queued(b) == ["one", "two"]

    def test_exclude(self, registry):
        a = registry.register(MagicMock())
        b = registry.register(MagicMock())
        assert registry.broadcast("x", exclude=a.id) == 1
        assert _queued(a) == []
        assert _queued(b) == ["x"]

    def test_closing_client_is_skipped(self, registry):
        a = registry.register(MagicMock())
        b = registry.register(MagicMock())
        a.close()
        assert registry.broadcast("x") == 1
        assert _queued(a) == [CloseRequest()]
        assert _queued(b) == ["x"]

    def test_overflow_evicts_only_the_slow_client(self):
        reg = ConnectionRegistry(outbox_max_frames=2)
        slow = reg.register(MagicMock())
        fast = reg.register(MagicMock())
        reg.broadcast("1")
        reg.broadcast("2")
        _queued(fast)  # fast one keeps up

        assert reg.broadcast("3") == 1

        assert slow.id not in reg
        assert slow.closing
        assert _queued(slow) == [CloseRequest(CLOSE_POLICY_VIOLATION, "outbox overflow")]
        assert _queued(fast) == ["3"]

    def test_overflow_calls_eviction_hook(self):
        reg = ConnectionRegistry(outbox_max_frames=1)
        evicted = []
        reg.on_evict = evicted.append
        c = reg.register(MagicMock())
        reg.broadcast("1")
        reg.broadcast("2")
        assert evicted == [c]


class TestSend:
    def test_send_queues_for_one_client(self, registry):
        a = registry.register(MagicMock())
        b = registry.register(MagicMock())
        registry.send(a, "only-a")
        assert _queued(a) == ["only-a"]
        assert _queued(b) == []

    def test_send_to_closing_client_raises(self, registry):
        a = registry.register(MagicMock())
        a.close()
        with pytest.raises(ConnectionLost, match="closing"):
            registry.send(a, "x")

    def test_send_overflow_evicts_and_raises(self):
        reg = ConnectionRegistry(outbox_max_frames=1)
        a = reg.register(MagicMock())
        reg.send(a, "1")
        with pytest.raises(ConnectionLost, match="overflow"):
            reg.send(a, "2")
        assert a.id not in reg


class TestClient:
    def test_close_drops_pending_frames(self, registry):
        a = registry.register(MagicMock())
        registry.send(a, "pending")
        a.close(1001, "idle")
        a.close(1000)  # second close is a no-op
        assert _queued(a) == [CloseRequest(1001, "idle")]

    def test_touch(self, registry):
        a = registry.register(MagicMock())
        a.touch(99.0)
        assert a.last_seen == 99.0
