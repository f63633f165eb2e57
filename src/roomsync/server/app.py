from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator

from fastapi import FastAPI, WebSocket

from roomsync.logging_config import configure_logging, get_logger

from .config import Settings, get_settings
from .dispatcher import Dispatcher
from .lifecycle import LifecycleManager
from .registry import ConnectionRegistry
from .room import Room

logger = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the server with a fresh room. One app == one room."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_logs=settings.log_json)

    room = Room(
        max_chat_history=settings.max_chat_history,
        max_completed_strokes=settings.max_completed_strokes,
        max_stroke_points=settings.max_stroke_points,
        max_open_strokes_per_client=settings.max_open_strokes_per_client,
    )
    registry = ConnectionRegistry(
        max_clients=settings.max_clients,
        outbox_max_frames=settings.outbox_max_frames,
    )
    dispatcher = Dispatcher(
        room,
        registry,
        echo_to_sender=settings.echo_to_sender,
        error_acks=settings.error_acks,
        max_frame_bytes=settings.max_frame_bytes,
        max_chat_text_len=settings.max_chat_text_len,
        debug_log_msgs=settings.debug_log_msgs,
    )
    lifecycle = LifecycleManager(
        room,
        registry,
        dispatcher,
        heartbeat_timeout_s=settings.heartbeat_timeout_s,
        heartbeat_check_interval_s=settings.heartbeat_check_interval_s,
    )

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        reaper = None
        if settings.reap_silent_clients:
            reaper = asyncio.create_task(lifecycle.run_reaper())
        logger.info(
            "server_started",
            max_clients=settings.max_clients,
            heartbeat_timeout_s=settings.heartbeat_timeout_s,
            reap_silent_clients=settings.reap_silent_clients,
        )
        try:
            yield
        finally:
            if reaper is not None:
                reaper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await reaper
            logger.info("server_stopped", clients=len(registry))

    app = FastAPI(title="roomsync", lifespan=lifespan)
    app.state.settings = settings
    app.state.room = room
    app.state.registry = registry
    app.state.dispatcher = dispatcher
    app.state.lifecycle = lifecycle

    @app.get("/healthz")
    def healthz():
        return {"ok": True, "clients": len(registry)}

    @app.websocket("/ws")
    async def ws(ws: WebSocket):
        await lifecycle.serve(ws)

    return app
