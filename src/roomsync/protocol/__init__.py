from .codec import decode_frame, encode_frame
from .constants import (
    T_CHAT,
    T_COUNTER,
    T_COUNTER_INC,
    T_DRAW_END,
    T_DRAW_POINT,
    T_ERROR,
    T_PING,
    T_PONG,
    T_SNAPSHOT,
)

__all__ = [
    "decode_frame",
    "encode_frame",
    "T_CHAT",
    "T_COUNTER",
    "T_COUNTER_INC",
    "T_DRAW_END",
    "T_DRAW_POINT",
    "T_ERROR",
    "T_PING",
    "T_PONG",
    "T_SNAPSHOT",
]
