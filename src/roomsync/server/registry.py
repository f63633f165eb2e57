from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

from fastapi import WebSocket

from roomsync.errors import CapacityExceeded, ConnectionLost
from roomsync.logging_config import get_logger

logger = get_logger(__name__)

# RFC 6455 close codes used by the server
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_POLICY_VIOLATION = 1008
CLOSE_INTERNAL_ERROR = 1011
CLOSE_TRY_AGAIN_LATER = 1013


@dataclass(frozen=True)
class CloseRequest:
    """Outbox sentinel: the writer closes the socket instead of sending."""

    code: int = CLOSE_NORMAL
    reason: str = ""


@dataclass(eq=False)
class Client:
    id: str
    ws: WebSocket
    last_seen: float
    # encoded frames waiting for the writer task (or a CloseRequest)
    outbox: asyncio.Queue[str | CloseRequest] = field(default_factory=asyncio.Queue)
    closing: bool = False
    writer: asyncio.Task[None] | None = None

    def touch(self, now: float) -> None:
        self.last_seen = now

    def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        """Discard pending frames and have the writer close the socket."""
        if self.closing:
            return
        self.closing = True
        while not self.outbox.empty():
            self.outbox.get_nowait()
        self.outbox.put_nowait(CloseRequest(code, reason))

    def abort(self) -> None:
        """Peer is already gone: stop writing without a close handshake."""
        self.closing = True
        w = self.writer
        if w is not None and not w.done() and w is not asyncio.current_task():
            w.cancel()


class ConnectionRegistry:
    """
    Live connections of the room.

    All methods are synchronous: sending only enqueues into the client's
    outbox, the lifecycle manager's writer task does the socket I/O. A frame
    broadcast before another therefore reaches every receiver first.
    """

    def __init__(
        self,
        *,
        max_clients: int = 256,
        outbox_max_frames: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_clients = max_clients
        self.outbox_max_frames = outbox_max_frames
        self.clock = clock
        self._clients: dict[str, Client] = {}
        # set by the lifecycle manager so evictions run the full cleanup path
        self.on_evict: Callable[[Client], None] | None = None

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients

    def clients(self) -> Iterator[Client]:
        return iter(list(self._clients.values()))

    def register(self, ws: WebSocket) -> Client:
        if len(self._clients) >= self.max_clients:
            raise CapacityExceeded(f"room is full ({self.max_clients} clients)")
        client = Client(
            id=self._new_id(),
            ws=ws,
            last_seen=self.clock(),
            outbox=asyncio.Queue(maxsize=self.outbox_max_frames),
        )
        self._clients[client.id] = client
        return client

    def _new_id(self) -> str:
        while True:
            cid = f"c_{uuid.uuid4().hex[:12]}"
            if cid not in self._clients:
                return cid

    def unregister(self, client_id: str) -> Client | None:
        """Remove a client; returns None if it was already gone."""
        return self._clients.pop(client_id, None)

    def _enqueue(self, client: Client, frame: str) -> bool:
        if client.closing:
            return False
        try:
            client.outbox.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        return True

    def send(self, client: Client, frame: str) -> None:
        """Queue one frame for one client; raises ConnectionLost if it can't take it."""
        if self._enqueue(client, frame):
            return
        if not client.closing:
            self._evict(client)
            raise ConnectionLost(f"client {client.id} outbox overflowed")
        raise ConnectionLost(f"client {client.id} is closing")

    def broadcast(self, frame: str, exclude: str | None = None) -> int:
        """Queue `frame` for every client but `exclude`; returns how many took it."""
        sent = 0
        overflowed: list[Client] = []
        for client in list(self._clients.values()):
            if client.id == exclude:
                continue
            if self._enqueue(client, frame):
                sent += 1
            elif not client.closing:
                overflowed.append(client)
        for client in overflowed:
            self._evict(client)
        return sent

    def _evict(self, client: Client) -> None:
        logger.warning(
            "outbox_overflow",
            client_id=client.id,
            queued=client.outbox.qsize(),
            limit=self.outbox_max_frames,
        )
        if self.on_evict is not None:
            self.on_evict(client)
        else:
            self.unregister(client.id)
            client.close(CLOSE_POLICY_VIOLATION, "outbox overflow")
