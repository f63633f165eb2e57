from __future__ import annotations

import asyncio

from fastapi import WebSocket, WebSocketDisconnect

from roomsync.errors import CapacityExceeded
from roomsync.logging_config import get_logger
from roomsync.protocol.codec import encode_frame, snapshot_frame, stroke_end_delta

from .dispatcher import Dispatcher
from .registry import (
    CLOSE_GOING_AWAY,
    CLOSE_INTERNAL_ERROR,
    CLOSE_POLICY_VIOLATION,
    CLOSE_TRY_AGAIN_LATER,
    Client,
    CloseRequest,
    ConnectionRegistry,
)
from .room import Room

logger = get_logger(__name__)


class LifecycleManager:
    """Connect, initial sync, heartbeat reaping and cleanup of clients."""

    def __init__(
        self,
        room: Room,
        registry: ConnectionRegistry,
        dispatcher: Dispatcher,
        *,
        heartbeat_timeout_s: float = 30.0,
        heartbeat_check_interval_s: float = 5.0,
    ) -> None:
        self.room = room
        self.registry = registry
        self.dispatcher = dispatcher
        self.heartbeat_timeout_s = heartbeat_timeout_s
        self.heartbeat_check_interval_s = heartbeat_check_interval_s
        registry.on_evict = self._evict

    def connect(self, ws: WebSocket) -> Client:
        """
        Register `ws` and queue the room snapshot as its first frame.

        Nothing here awaits, so no delta can be broadcast between taking the
        snapshot and the client showing up in the registry.
        """
        client = self.registry.register(ws)
        snap = snapshot_frame(client.id, self.room.snapshot())
        self.registry.send(client, encode_frame(snap))
        logger.info("client_connected", client_id=client.id, clients=len(self.registry))
        return client

    async def serve(self, ws: WebSocket) -> None:
        try:
            client = self.connect(ws)
        except CapacityExceeded as e:
            logger.warning("connection_refused", code=e.code, clients=len(self.registry))
            # accept first: a close before the handshake is an HTTP 403, not 1013
            await ws.accept()
            await ws.close(code=CLOSE_TRY_AGAIN_LATER, reason="room is full")
            return

        reason = "disconnect"
        try:
            await ws.accept()
            client.writer = asyncio.create_task(self._write_loop(client))
            while True:
                msg = await ws.receive()
                if msg["type"] == "websocket.disconnect":
                    break
                client.touch(self.registry.clock())
                payload = msg.get("text")
                if payload is None:
                    payload = msg.get("bytes")
                if payload is None:
                    continue
                self.dispatcher.handle(client, payload)
        except WebSocketDisconnect:
            pass
        except Exception:
            reason = "error"
            logger.exception("connection_error", client_id=client.id)
        finally:
            self.drop(client, reason)

    async def _write_loop(self, client: Client) -> None:
        try:
            while True:
                item = await client.outbox.get()
                if isinstance(item, CloseRequest):
                    await client.ws.close(code=item.code, reason=item.reason or None)
                    return
                await client.ws.send_text(item)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info("send_failed", client_id=client.id, error=repr(e))
            self.drop(client, "send_failed")
            # peer has to see the drop, the reader loop ends on its disconnect
            try:
                await client.ws.close(code=CLOSE_INTERNAL_ERROR)
            except Exception as close_err:
                logger.debug("close_failed", client_id=client.id, error=repr(close_err))

    def drop(self, client: Client, reason: str, close_code: int | None = None) -> bool:
        """
        Remove a client and clean up after it. Idempotent.

        Open strokes of the client are force-ended and a draw_end is broadcast
        for each. With `close_code` the socket is closed by the server,
        otherwise the peer is assumed gone and the writer is just cancelled.
        Returns False if the client had already been dropped.
        """
        if self.registry.unregister(client.id) is None:
            return False

        ended = self.room.end_strokes_owned_by(client.id)
        for stroke in ended:
            self.registry.broadcast(encode_frame(stroke_end_delta(stroke.stroke_id)))

        if close_code is None:
            client.abort()
        else:
            client.close(close_code, reason)

        logger.info(
            "client_disconnected",
            client_id=client.id,
            reason=reason,
            strokes_closed=len(ended),
            clients=len(self.registry),
        )
        return True

    def _evict(self, client: Client) -> None:
        self.drop(client, "outbox_overflow", close_code=CLOSE_POLICY_VIOLATION)

    def reap_idle(self, now: float | None = None) -> list[str]:
        """Drop clients silent for longer than the heartbeat timeout."""
        if now is None:
            now = self.registry.clock()
        cutoff = now - self.heartbeat_timeout_s
        reaped: list[str] = []
        for client in self.registry.clients():
            if client.last_seen >= cutoff:
                continue
            if self.drop(client, "heartbeat_timeout", close_code=CLOSE_GOING_AWAY):
                reaped.append(client.id)
        return reaped

    async def run_reaper(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_check_interval_s)
            try:
                reaped = self.reap_idle()
            except Exception:
                logger.exception("reaper_failed")
                continue
            if reaped:
                logger.info("clients_reaped", count=len(reaped), clients=len(self.registry))
