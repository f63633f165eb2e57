"""
Wire codec: raw websocket payloads <-> typed frames.

Decoding is the only place untrusted input is interpreted; everything past
`decode_frame` works with validated pydantic models. The `*_delta` helpers
turn Room results into outbound frames so the dispatcher and the lifecycle
manager share one mapping.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import ValidationError

from roomsync.errors import MalformedFrame

from .constants import MAX_CHAT_TEXT_LEN, MAX_FRAME_BYTES
from .messages import (
    INBOUND_ADAPTER,
    ChatDelta,
    ChatEntry,
    ChatSend,
    CounterDelta,
    ErrorAck,
    InboundFrame,
    OutboundFrame,
    PointEntry,
    StatusSnapshot,
    StrokeDelta,
    StrokeEndDelta,
    StrokeEntry,
)

if TYPE_CHECKING:
    from roomsync.server.room import ChatMessage, CounterState, RoomSnapshot, Stroke
    from roomsync.server.room import StrokePoint as RoomPoint


def _describe(exc: ValidationError) -> str:
    errs = exc.errors(include_url=False)
    if not errs:
        return "invalid frame"
    first = errs[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    msg = first.get("msg", "invalid value")
    return f"{loc}: {msg}" if loc else msg


def decode_frame(
    raw: str | bytes,
    *,
    max_frame_bytes: int = MAX_FRAME_BYTES,
    max_chat_text_len: int = MAX_CHAT_TEXT_LEN,
) -> InboundFrame:
    """Parse one inbound payload; raises `MalformedFrame` on anything off-schema."""
    if isinstance(raw, (bytes, bytearray)):
        size = len(raw)
        if size > max_frame_bytes:
            raise MalformedFrame(f"frame exceeds {max_frame_bytes} bytes")
        try:
            text = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFrame("frame is not valid utf-8") from e
    elif isinstance(raw, str):
        text = raw
        if len(text.encode("utf-8")) > max_frame_bytes:
            raise MalformedFrame(f"frame exceeds {max_frame_bytes} bytes")
    else:
        raise MalformedFrame(f"unsupported payload type {type(raw).__name__}")

    try:
        frame = INBOUND_ADAPTER.validate_json(text)
    except ValidationError as e:
        raise MalformedFrame(_describe(e)) from e

    if isinstance(frame, ChatSend) and len(frame.text) > max_chat_text_len:
        raise MalformedFrame(f"text: longer than {max_chat_text_len} characters")
    return frame


def encode_frame(frame: OutboundFrame) -> str:
    return frame.model_dump_json(by_alias=True)


def chat_delta(msg: ChatMessage) -> ChatDelta:
    return ChatDelta(sender_id=msg.sender_id, text=msg.text, seq=msg.seq)


def counter_delta(state: CounterState) -> CounterDelta:
    return CounterDelta(value=state.value, version=state.version)


def stroke_delta(point: RoomPoint) -> StrokeDelta:
    return StrokeDelta(stroke_id=point.stroke_id, x=point.x, y=point.y, seq=point.seq)


def stroke_end_delta(stroke_id: str) -> StrokeEndDelta:
    return StrokeEndDelta(stroke_id=stroke_id)


def error_ack(exc: Exception) -> ErrorAck:
    code = getattr(exc, "code", "error")
    detail = getattr(exc, "detail", None) or str(exc)
    return ErrorAck(code=code, detail=detail)


def _stroke_entry(stroke: Stroke) -> StrokeEntry:
    return StrokeEntry(
        stroke_id=stroke.stroke_id,
        owner_id=stroke.owner_id,
        points=[PointEntry(x=p.x, y=p.y, seq=p.seq) for p in stroke.points],
    )


def snapshot_frame(client_id: str, snap: RoomSnapshot) -> StatusSnapshot:
    return StatusSnapshot(
        client_id=client_id,
        chat_history=[
            ChatEntry(sender_id=m.sender_id, text=m.text, seq=m.seq) for m in snap.chat_history
        ],
        counter_value=snap.counter_value,
        counter_version=snap.counter_version,
        active_strokes=[_stroke_entry(s) for s in snap.active_strokes],
        completed_strokes=[_stroke_entry(s) for s in snap.completed_strokes],
    )
