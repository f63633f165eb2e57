"""
Per-frame pipeline: Received -> Decoded -> Validated -> Applied -> Broadcast.

`Dispatcher.handle` is synchronous on purpose. The room mutation and the
enqueue of its delta into every outbox happen without a suspension point in
between, so two deltas of the same field leave in the order they were
applied, and a snapshot taken on the event loop never sits between a
mutation and its broadcast.
"""

from __future__ import annotations

from enum import Enum

from roomsync.errors import ConnectionLost, MalformedFrame, RoomSyncError, StaleStroke, StrokeLimitExceeded
from roomsync.logging_config import get_logger
from roomsync.protocol.codec import (
    chat_delta,
    counter_delta,
    decode_frame,
    encode_frame,
    error_ack,
    stroke_delta,
    stroke_end_delta,
)
from roomsync.protocol.constants import MAX_CHAT_TEXT_LEN, MAX_FRAME_BYTES
from roomsync.protocol.messages import (
    ChatSend,
    CounterIncrement,
    InboundFrame,
    OutboundFrame,
    Ping,
    Pong,
    StrokeEnd,
    StrokePoint,
)

from .registry import Client, ConnectionRegistry
from .room import Room

logger = get_logger(__name__)


class FrameOutcome(str, Enum):
    BROADCAST = "broadcast"
    REPLIED = "replied"
    REJECTED_MALFORMED = "rejected_malformed"
    REJECTED_STALE = "rejected_stale"
    REJECTED_LIMIT = "rejected_limit"
    # sender was already dropped; the frame is not applied
    IGNORED = "ignored"


class Dispatcher:
    def __init__(
        self,
        room: Room,
        registry: ConnectionRegistry,
        *,
        echo_to_sender: bool = True,
        error_acks: bool = True,
        max_frame_bytes: int = MAX_FRAME_BYTES,
        max_chat_text_len: int = MAX_CHAT_TEXT_LEN,
        debug_log_msgs: bool = False,
    ) -> None:
        self.room = room
        self.registry = registry
        self.echo_to_sender = echo_to_sender
        self.error_acks = error_acks
        self.max_frame_bytes = max_frame_bytes
        self.max_chat_text_len = max_chat_text_len
        self.debug_log_msgs = debug_log_msgs

    def handle(self, client: Client, raw: str | bytes) -> FrameOutcome:
        if client.closing or client.id not in self.registry:
            return FrameOutcome.IGNORED

        try:
            frame = decode_frame(
                raw,
                max_frame_bytes=self.max_frame_bytes,
                max_chat_text_len=self.max_chat_text_len,
            )
        except MalformedFrame as e:
            logger.info("frame_rejected", client_id=client.id, code=e.code, detail=e.detail)
            self._reject(client, e)
            return FrameOutcome.REJECTED_MALFORMED

        if self.debug_log_msgs:
            logger.debug("frame_in", client_id=client.id, type=frame.type)

        if isinstance(frame, Ping):
            self._unicast(client, Pong())
            return FrameOutcome.REPLIED

        try:
            delta = self._apply(client, frame)
        except StaleStroke as e:
            self._reject_stroke(client, e)
            return FrameOutcome.REJECTED_STALE
        except StrokeLimitExceeded as e:
            self._reject_stroke(client, e)
            return FrameOutcome.REJECTED_LIMIT

        exclude = None if self.echo_to_sender else client.id
        self.registry.broadcast(encode_frame(delta), exclude=exclude)
        return FrameOutcome.BROADCAST

    def _apply(self, client: Client, frame: InboundFrame) -> OutboundFrame:
        if isinstance(frame, ChatSend):
            return chat_delta(self.room.append_chat(client.id, frame.text))
        if isinstance(frame, CounterIncrement):
            return counter_delta(self.room.increment_counter())
        if isinstance(frame, StrokePoint):
            pt = self.room.append_stroke_point(client.id, frame.stroke_id, frame.x, frame.y)
            return stroke_delta(pt)
        if isinstance(frame, StrokeEnd):
            stroke = self.room.end_stroke(frame.stroke_id, client_id=client.id)
            return stroke_end_delta(stroke.stroke_id)
        raise TypeError(f"no handler for frame type {type(frame).__name__}")

    def _reject_stroke(self, client: Client, exc: StaleStroke | StrokeLimitExceeded) -> None:
        logger.info(
            "frame_rejected",
            client_id=client.id,
            code=exc.code,
            stroke_id=exc.stroke_id,
            detail=exc.detail,
        )
        self._reject(client, exc)

    def _reject(self, client: Client, exc: RoomSyncError) -> None:
        if self.error_acks:
            self._unicast(client, error_ack(exc))

    def _unicast(self, client: Client, frame: OutboundFrame) -> None:
        try:
            self.registry.send(client, encode_frame(frame))
        except ConnectionLost as e:
            logger.debug("unicast_dropped", client_id=client.id, detail=e.detail)
