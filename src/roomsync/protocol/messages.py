from __future__ import annotations

from typing import Annotated, Literal, TypeAlias, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter
from pydantic.alias_generators import to_camel

from .constants import MAX_STROKE_ID_LEN

# Coordinates are canvas pixels as the client measured them; the server does
# not normalize. Must be real JSON numbers (no bools, strings, NaN/Infinity).
Coord: TypeAlias = Annotated[float, Field(strict=True, allow_inf_nan=False)]
StrokeId: TypeAlias = Annotated[
    str, StringConstraints(strict=True, min_length=1, max_length=MAX_STROKE_ID_LEN)
]


class Frame(BaseModel):
    # Wire names are camelCase; python attributes stay snake_case.
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


# ---------------------------------------------------------------- inbound


class ChatSend(Frame):
    type: Literal["chat"]
    text: Annotated[str, StringConstraints(strict=True, min_length=1)]


class CounterIncrement(Frame):
    type: Literal["counter_inc"]


class StrokePoint(Frame):
    type: Literal["draw_point"]
    stroke_id: StrokeId
    x: Coord
    y: Coord


class StrokeEnd(Frame):
    type: Literal["draw_end"]
    stroke_id: StrokeId


class Ping(Frame):
    type: Literal["ping"]


InboundFrame: TypeAlias = Annotated[
    Union[ChatSend, CounterIncrement, StrokePoint, StrokeEnd, Ping],
    Field(discriminator="type"),
]
INBOUND_ADAPTER: TypeAdapter[InboundFrame] = TypeAdapter(InboundFrame)


# --------------------------------------------------------------- outbound


class ChatDelta(Frame):
    type: Literal["chat"] = "chat"
    sender_id: str
    text: str
    seq: int


class CounterDelta(Frame):
    type: Literal["counter"] = "counter"
    value: int
    version: int


class StrokeDelta(Frame):
    type: Literal["draw_point"] = "draw_point"
    stroke_id: str
    x: float
    y: float
    seq: int


class StrokeEndDelta(Frame):
    type: Literal["draw_end"] = "draw_end"
    stroke_id: str


class ChatEntry(Frame):
    sender_id: str
    text: str
    seq: int


class PointEntry(Frame):
    x: float
    y: float
    seq: int


class StrokeEntry(Frame):
    stroke_id: str
    owner_id: str
    points: list[PointEntry]


class StatusSnapshot(Frame):
    type: Literal["snapshot"] = "snapshot"
    client_id: str
    chat_history: list[ChatEntry]
    counter_value: int
    counter_version: int
    active_strokes: list[StrokeEntry]
    completed_strokes: list[StrokeEntry]


class ErrorAck(Frame):
    type: Literal["error"] = "error"
    code: str
    detail: str


class Pong(Frame):
    type: Literal["pong"] = "pong"


OutboundFrame: TypeAlias = Union[
    ChatDelta,
    CounterDelta,
    StrokeDelta,
    StrokeEndDelta,
    StatusSnapshot,
    ErrorAck,
    Pong,
]
