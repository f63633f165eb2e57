from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Collection
from pathlib import Path

import websockets

from roomsync.protocol.constants import T_COUNTER, T_ERROR, T_PONG, T_SNAPSHOT

# server -> client only; replaying them at the server just earns error acks
_SERVER_ONLY = frozenset({T_SNAPSHOT, T_COUNTER, T_ERROR, T_PONG})


def load_events(jsonl_path: Path) -> list[tuple[int | None, dict]]:
    """
    Parse a recording into (ts_ms | None, frame) pairs.

    Accepted line formats:
      - record_jsonl.py output: {"ts": <ms>, "msg": {...}}
      - or raw frames per line: {...}
    Blank lines are skipped.
    """
    events: list[tuple[int | None, dict]] = []
    for line in jsonl_path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        obj = json.loads(line)
        if isinstance(obj, dict) and "msg" in obj and isinstance(obj["msg"], dict):
            ts = obj.get("ts")
            events.append((int(ts) if isinstance(ts, (int, float)) else None, obj["msg"]))
        elif isinstance(obj, dict):
            events.append((None, obj))
    return events


def select_events(
    events: list[tuple[int | None, dict]],
    *,
    only_types: Collection[str] | None = None,
) -> list[tuple[int | None, dict]]:
    """Drop server-only frames and, if given, everything not in `only_types`."""
    out = []
    for ts, msg in events:
        t = msg.get("type")
        if t in _SERVER_ONLY:
            continue
        if only_types and t not in only_types:
            continue
        out.append((ts, msg))
    return out


def delays_ms(events: list[tuple[int | None, dict]], *, default_dt_ms: int = 0) -> list[int]:
    """Delay before each event, from recorded timestamps where both ends have one."""
    out: list[int] = []
    prev_ts: int | None = None
    for ts, _msg in events:
        if ts is not None and prev_ts is not None:
            out.append(max(0, ts - prev_ts))
        else:
            out.append(default_dt_ms)
        prev_ts = ts if ts is not None else prev_ts
    return out


async def replay(
    ws_url: str,
    jsonl_path: Path,
    *,
    speed: float = 1.0,
    default_dt_ms: int = 0,
    only_types: Collection[str] | None = None,
) -> None:
    """Replay a recording into the room websocket, honouring recorded timing."""
    events = select_events(load_events(jsonl_path), only_types=only_types)
    waits = delays_ms(events, default_dt_ms=default_dt_ms)

    async with websockets.connect(ws_url, max_size=2**22) as ws:
        for dt_ms, (_ts, msg) in zip(waits, events):
            if dt_ms:
                await asyncio.sleep((dt_ms / 1000.0) / max(0.01, speed))
            await ws.send(json.dumps(msg, ensure_ascii=False, separators=(",", ":")))


def main() -> None:
    ap = argparse.ArgumentParser(description="Replay recorded frames into the room websocket.")
    ap.add_argument("--ws", required=True, help="WebSocket URL, e.g. ws://127.0.0.1:8000/ws")
    ap.add_argument("--in", dest="inp", required=True, help="Input JSONL path")
    ap.add_argument("--speed", type=float, default=1.0, help="Speed multiplier (2.0 = 2x faster)")
    ap.add_argument("--default-dt-ms", type=int, default=0, help="Delay between frames if no timestamps")
    ap.add_argument(
        "--only-type",
        action="append",
        default=None,
        help="Only replay frames of this type (repeatable, e.g. --only-type draw_point).",
    )
    args = ap.parse_args()

    asyncio.run(
        replay(
            args.ws,
            Path(args.inp),
            speed=args.speed,
            default_dt_ms=args.default_dt_ms,
            only_types=args.only_type,
        )
    )


if __name__ == "__main__":
    main()
