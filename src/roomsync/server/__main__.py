from __future__ import annotations

from typing import Any

import uvicorn

from .config import Settings, get_settings


def server_options(settings: Settings) -> dict[str, Any]:
    """uvicorn.run / uvicorn.Config keyword arguments for `settings`."""
    return {
        "host": settings.host,
        "port": settings.port,
        "log_level": settings.log_level.lower(),
        # transport liveness: a peer that stops answering pings is disconnected
        "ws_ping_interval": settings.heartbeat_check_interval_s,
        "ws_ping_timeout": settings.heartbeat_timeout_s,
    }


def main() -> None:
    settings = get_settings()
    uvicorn.run("roomsync.server.app:create_app", factory=True, **server_options(settings))


if __name__ == "__main__":
    main()
