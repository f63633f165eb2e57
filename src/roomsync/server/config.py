from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime config.

    - Loaded from environment variables (`ROOMSYNC_*`)
    - Also reads `.env` if present (via pydantic-settings + python-dotenv)
    """

    model_config = SettingsConfigDict(env_file=".env", env_prefix="ROOMSYNC_", extra="ignore")

    host: str = "127.0.0.1"
    port: int = 8000

    # Connections
    max_clients: int = Field(default=256, ge=1)
    outbox_max_frames: int = Field(default=1024, ge=1)

    # Heartbeat. uvicorn sends a protocol ping every check interval and drops
    # the connection when no pong arrives within the timeout.
    heartbeat_timeout_s: float = Field(default=30.0, gt=0)
    heartbeat_check_interval_s: float = Field(default=5.0, gt=0)
    # Also drop clients that sent no application frame for heartbeat_timeout_s.
    # Protocol pings are invisible to the app, so only enable this when every
    # client sends {"type":"ping"} frames.
    reap_silent_clients: bool = False

    # Room retention
    max_chat_history: int = Field(default=1000, ge=1)
    max_completed_strokes: int = Field(default=500, ge=0)
    max_stroke_points: int = Field(default=4096, ge=1)
    max_open_strokes_per_client: int = Field(default=16, ge=1)

    # Frame limits
    max_frame_bytes: int = Field(default=64 * 1024, ge=64)
    max_chat_text_len: int = Field(default=2000, ge=1)

    # Behaviour
    echo_to_sender: bool = True
    error_acks: bool = True

    # Debugging / logging
    debug_log_msgs: bool = False
    log_level: str = "INFO"
    log_json: bool = False


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
