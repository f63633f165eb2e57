"""
Pytest configuration and shared fixtures for the room server.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from roomsync.server.config import Settings
from roomsync.server.dispatcher import Dispatcher
from roomsync.server.lifecycle import LifecycleManager
from roomsync.server.registry import Client, CloseRequest, ConnectionRegistry
from roomsync.server.room import Room


def make_settings(**overrides) -> Settings:
    """Settings isolated from the developer's environment / .env."""
    return Settings(_env_file=None, **overrides)


def drain(client: Client) -> list[dict]:
    """Pop every queued frame of a client, decoded; close requests are skipped."""
    out: list[dict] = []
    while not client.outbox.empty():
        item = client.outbox.get_nowait()
        if isinstance(item, CloseRequest):
            continue
        out.append(json.loads(item))
    return out


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def room():
    return Room(max_chat_history=100, max_completed_strokes=10)


@pytest.fixture
def registry(clock):
    return ConnectionRegistry(max_clients=16, outbox_max_frames=64, clock=clock)


@pytest.fixture
def dispatcher(room, registry):
    return Dispatcher(room, registry)


@pytest.fixture
def lifecycle(room, registry, dispatcher):
    return LifecycleManager(room, registry, dispatcher, heartbeat_timeout_s=30.0)


@pytest.fixture
def fake_ws():
    return MagicMock(name="websocket")
