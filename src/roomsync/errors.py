from __future__ import annotations


class RoomSyncError(Exception):
    """Base class for every error the room server raises on purpose."""

    code = "roomsync_error"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.code)
        self.detail = detail or self.code


class MalformedFrame(RoomSyncError):
    """Inbound frame did not parse, or parsed to an unknown shape."""

    code = "malformed_frame"


class StaleStroke(RoomSyncError):
    """Point or end referencing an unknown, ended, or foreign stroke."""

    code = "stale_stroke"

    def __init__(self, stroke_id: str, detail: str = "") -> None:
        super().__init__(detail or f"stroke {stroke_id!r} is not open")
        self.stroke_id = stroke_id


class CapacityExceeded(RoomSyncError):
    code = "capacity_exceeded"


class ConnectionLost(RoomSyncError):
    """The transport under a client went away (or is being torn down)."""

    code = "connection_lost"


class StrokeLimitExceeded(RoomSyncError):
    """Point past the per-stroke cap, or one open stroke too many for a client."""

    code = "stroke_limit"

    def __init__(self, stroke_id: str, detail: str = "") -> None:
        super().__init__(detail or f"stroke {stroke_id!r} is over its limit")
        self.stroke_id = stroke_id
