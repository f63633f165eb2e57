from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field

from roomsync.errors import StaleStroke, StrokeLimitExceeded


@dataclass(frozen=True)
class ChatMessage:
    sender_id: str
    text: str
    seq: int


@dataclass(frozen=True)
class CounterState:
    value: int
    version: int


@dataclass(frozen=True)
class StrokePoint:
    stroke_id: str
    x: float
    y: float
    seq: int  # index within the stroke, first point is 0


@dataclass
class Stroke:
    stroke_id: str
    owner_id: str
    points: list[StrokePoint] = field(default_factory=list)
    ended: bool = False

    def copy(self) -> Stroke:
        return Stroke(self.stroke_id, self.owner_id, list(self.points), self.ended)


@dataclass(frozen=True)
class RoomSnapshot:
    chat_history: tuple[ChatMessage, ...]
    counter_value: int
    counter_version: int
    active_strokes: tuple[Stroke, ...]
    completed_strokes: tuple[Stroke, ...]


class Room:
    """
    Authoritative state of the single shared room.

    Every method takes `self._lock` for its whole body. Critical sections do
    no I/O and never await, so callers on the event loop (or worker threads)
    are never held up for long.
    """

    def __init__(
        self,
        *,
        max_chat_history: int = 1000,
        max_completed_strokes: int = 500,
        max_stroke_points: int = 4096,
        max_open_strokes_per_client: int = 16,
    ) -> None:
        self._lock = threading.Lock()
        self.max_stroke_points = max_stroke_points
        self.max_open_strokes_per_client = max_open_strokes_per_client

        self._chat: deque[ChatMessage] = deque(maxlen=max_chat_history)
        self._chat_seq = 0

        self._counter = CounterState(value=0, version=0)

        # open strokes keep insertion order, which is also the snapshot order
        self._open: dict[str, Stroke] = {}
        self._completed: deque[Stroke] = deque(maxlen=max_completed_strokes)
        # never trimmed: an ended id must stay rejected for the process lifetime
        self._ended_ids: set[str] = set()

    # ------------------------------------------------------------- chat

    def append_chat(self, client_id: str, text: str) -> ChatMessage:
        with self._lock:
            self._chat_seq += 1
            msg = ChatMessage(sender_id=client_id, text=text, seq=self._chat_seq)
            self._chat.append(msg)
            return msg

    # ---------------------------------------------------------- counter

    def increment_counter(self) -> CounterState:
        with self._lock:
            cur = self._counter
            self._counter = CounterState(value=cur.value + 1, version=cur.version + 1)
            return self._counter

    # ---------------------------------------------------------- strokes

    def append_stroke_point(self, client_id: str, stroke_id: str, x: float, y: float) -> StrokePoint:
        with self._lock:
            if stroke_id in self._ended_ids:
                raise StaleStroke(stroke_id, f"stroke {stroke_id!r} already ended")
            stroke = self._open.get(stroke_id)
            if stroke is None:
                owned = sum(1 for s in self._open.values() if s.owner_id == client_id)
                if owned >= self.max_open_strokes_per_client:
                    raise StrokeLimitExceeded(
                        stroke_id, f"at most {self.max_open_strokes_per_client} open strokes per client"
                    )
                stroke = Stroke(stroke_id=stroke_id, owner_id=client_id)
                self._open[stroke_id] = stroke
            elif stroke.owner_id != client_id:
                raise StaleStroke(stroke_id, f"stroke {stroke_id!r} belongs to another client")
            elif len(stroke.points) >= self.max_stroke_points:
                raise StrokeLimitExceeded(
                    stroke_id, f"stroke {stroke_id!r} is full ({self.max_stroke_points} points)"
                )
            pt = StrokePoint(stroke_id=stroke_id, x=x, y=y, seq=len(stroke.points))
            stroke.points.append(pt)
            return pt

    def end_stroke(self, stroke_id: str, client_id: str | None = None) -> Stroke:
        """End an open stroke. With `client_id`, only its owner may end it."""
        with self._lock:
            stroke = self._open.get(stroke_id)
            if stroke is None:
                if stroke_id in self._ended_ids:
                    raise StaleStroke(stroke_id, f"stroke {stroke_id!r} already ended")
                raise StaleStroke(stroke_id, f"unknown stroke {stroke_id!r}")
            if client_id is not None and stroke.owner_id != client_id:
                raise StaleStroke(stroke_id, f"stroke {stroke_id!r} belongs to another client")
            return self._close_locked(stroke)

    def end_strokes_owned_by(self, client_id: str) -> list[Stroke]:
        with self._lock:
            owned = [s for s in self._open.values() if s.owner_id == client_id]
            return [self._close_locked(s) for s in owned]

    def _close_locked(self, stroke: Stroke) -> Stroke:
        del self._open[stroke.stroke_id]
        stroke.ended = True
        self._ended_ids.add(stroke.stroke_id)
        self._completed.append(stroke)
        return stroke.copy()

    # ------------------------------------------------------------- reads

    def snapshot(self) -> RoomSnapshot:
        with self._lock:
            return RoomSnapshot(
                chat_history=tuple(self._chat),
                counter_value=self._counter.value,
                counter_version=self._counter.version,
                active_strokes=tuple(s.copy() for s in self._open.values()),
                completed_strokes=tuple(s.copy() for s in self._completed),
            )

    @property
    def counter(self) -> CounterState:
        with self._lock:
            return self._counter

    @property
    def chat_count(self) -> int:
        with self._lock:
            return self._chat_seq

    def is_open(self, stroke_id: str) -> bool:
        with self._lock:
            return stroke_id in self._open
