"""
Tests for connect / disconnect / heartbeat handling.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import drain

from roomsync.server.dispatcher import Dispatcher, FrameOutcome
from roomsync.server.lifecycle import LifecycleManager
from roomsync.server.registry import (
    CLOSE_GOING_AWAY,
    CLOSE_INTERNAL_ERROR,
    CLOSE_POLICY_VIOLATION,
    CLOSE_TRY_AGAIN_LATER,
    CloseRequest,
    ConnectionRegistry,
)
from roomsync.server.room import Room


def _point(stroke_id: str, x: float = 0, y: float = 0) -> str:
    return json.dumps({"type": "draw_point", "strokeId": stroke_id, "x": x, "y": y})


class TestConnect:
    def test_snapshot_is_first_frame(self, lifecycle, dispatcher, room):
        a = lifecycle.connect(MagicMock())
        dispatcher.handle(a, '{"type":"chat","text":"one"}')
        dispatcher.handle(a, '{"type":"counter_inc"}')
        drain(a)

        late = lifecycle.connect(MagicMock())
        [snap] = drain(late)

        assert snap["type"] == "snapshot"
        assert snap["clientId"] == late.id
        assert [m["text"] for m in snap["chatHistory"]] == ["one"]
        assert snap["counterValue"] == 1
        assert snap["counterVersion"] == 1

    def test_late_joiner_sees_each_message_exactly_once(self, lifecycle, dispatcher):
        a = lifecycle.connect(MagicMock())
        for i in range(4):
            dispatcher.handle(a, json.dumps({"type": "chat", "text": f"m{i}"}))
        late = lifecycle.connect(MagicMock())
        dispatcher.handle(a, '{"type":"chat","text":"after"}')

        snap, delta = drain(late)
        assert [m["seq"] for m in snap["chatHistory"]] == [1, 2, 3, 4]
        assert delta["seq"] == 5


class TestDrop:
    def test_open_stroke_is_ended_for_everyone_else(self, lifecycle, dispatcher, room):
        a = lifecycle.connect(MagicMock())
        b = lifecycle.connect(MagicMock())
        for i in range(3):
            dispatcher.handle(a, _point("s1", i, i))
        drain(b)

        assert lifecycle.drop(a, "disconnect") is True

        assert drain(b) == [{"type": "draw_end", "strokeId": "s1"}]
        assert a.id not in lifecycle.registry
        assert a.closing
        assert dispatcher.handle(b, _point("s1")) is FrameOutcome.REJECTED_STALE

    def test_drop_is_idempotent(self, lifecycle, dispatcher):
        a = lifecycle.connect(MagicMock())
        b = lifecycle.connect(MagicMock())
        dispatcher.handle(a, _point("s1"))
        drain(b)

        assert lifecycle.drop(a, "disconnect") is True
        assert lifecycle.drop(a, "disconnect") is False
        assert drain(b) == [{"type": "draw_end", "strokeId": "s1"}]

    def test_server_side_drop_queues_close(self, lifecycle):
        a = lifecycle.connect(MagicMock())
        lifecycle.drop(a, "heartbeat_timeout", close_code=CLOSE_GOING_AWAY)
        assert a.outbox.get_nowait() == CloseRequest(CLOSE_GOING_AWAY, "heartbeat_timeout")

    def test_overflow_eviction_runs_full_cleanup(self):
        room = Room()
        registry = ConnectionRegistry(outbox_max_frames=3)
        dispatcher = Dispatcher(room, registry)
        lifecycle = LifecycleManager(room, registry, dispatcher)
        slow = lifecycle.connect(MagicMock())
        fast = lifecycle.connect(MagicMock())
        dispatcher.handle(slow, _point("s1"))

        # slow never drains: snapshot + point + 1 more fills it, the next one overflows
        for _ in range(3):
            dispatcher.handle(fast, '{"type":"counter_inc"}')
            drain(fast)

        assert slow.id not in registry
        assert slow.outbox.get_nowait() == CloseRequest(CLOSE_POLICY_VIOLATION, "outbox_overflow")
        assert not room.is_open("s1")


class TestHeartbeat:
    def test_reap_idle(self, lifecycle, clock, dispatcher):
        clock.now = 0.0
        idle = lifecycle.connect(MagicMock())
        busy = lifecycle.connect(MagicMock())
        dispatcher.handle(idle, _point("s1"))
        busy.touch(25.0)
        drain(busy)

        clock.now = 31.0
        assert lifecycle.reap_idle() == [idle.id]

        assert idle.id not in lifecycle.registry
        assert busy.id in lifecycle.registry
        assert drain(busy) == [{"type": "draw_end", "strokeId": "s1"}]

    def test_nobody_reaped_within_timeout(self, lifecycle, clock):
        lifecycle.connect(MagicMock())
        assert lifecycle.reap_idle(now=clock.now + 30.0) == []


class TestServe:
    @pytest.mark.asyncio
    async def test_refused_when_full(self):
        room = Room()
        registry = ConnectionRegistry(max_clients=1)
        lifecycle = LifecycleManager(room, registry, Dispatcher(room, registry))
        lifecycle.connect(MagicMock())

        ws = AsyncMock()
        await lifecycle.serve(ws)

        ws.accept.assert_awaited_once()
        ws.close.assert_awaited_once_with(code=CLOSE_TRY_AGAIN_LATER, reason="room is full")
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_serve_dispatches_then_cleans_up(self, lifecycle, room):
        ws = AsyncMock()
        ws.receive.side_effect = [
            {"type": "websocket.receive", "text": '{"type":"counter_inc"}'},
            {"type": "websocket.receive", "bytes": b'{"type":"chat","text":"hi"}'},
            {"type": "websocket.disconnect", "code": 1000},
        ]

        await lifecycle.serve(ws)
        await asyncio.sleep(0)  # let the cancelled writer unwind

        ws.accept.assert_awaited_once()
        assert room.counter.version == 1
        assert room.chat_count == 1
        assert len(lifecycle.registry) == 0

    @pytest.mark.asyncio
    async def test_write_loop_sends_in_order_then_closes(self, lifecycle):
        ws = AsyncMock()
        client = lifecycle.registry.register(ws)
        lifecycle.registry.send(client, "a")
        lifecycle.registry.send(client, "b")
        client.outbox.put_nowait(CloseRequest(1000, "bye"))

        await lifecycle._write_loop(client)

        assert [c.args[0] for c in ws.send_text.await_args_list] == ["a", "b"]
        ws.close.assert_awaited_once_with(code=1000, reason="bye")

    @pytest.mark.asyncio
    async def test_failed_send_drops_the_client(self, lifecycle):
        ws = AsyncMock()
        ws.send_text.side_effect = RuntimeError("socket gone")
        client = lifecycle.connect(ws)

        await lifecycle._write_loop(client)

        assert client.id not in lifecycle.registry
        assert client.closing
        ws.close.assert_awaited_once_with(code=CLOSE_INTERNAL_ERROR)

    @pytest.mark.asyncio
    async def test_failed_close_after_failed_send_does_not_raise(self, lifecycle):
        ws = AsyncMock()
        ws.send_text.side_effect = RuntimeError("socket gone")
        ws.close.side_effect = RuntimeError("already closed")
        client = lifecycle.connect(ws)

        await lifecycle._write_loop(client)

        assert client.id not in lifecycle.registry
