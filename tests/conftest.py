"""
Pytest fixtures shared by the relay tests.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from relay.room import Room


class FakeClock:
    """Manually advanced replacement for time.monotonic."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_connection():
    """A stand-in for aiohttp's WebSocketResponse."""
    return AsyncMock(name="connection")


def sent(connection):
    """Decode every frame sent over a mocked connection, in order."""
    return [json.loads(call.args[0]) for call in connection.send_str.call_args_list]


async def settle():
    """Let background close tasks run."""
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def room(clock):
    # Long interval: ticks are driven by hand in unit tests
    room = Room("lobby", heartbeat_interval=60, idle_timeout=20, clock=clock)
    yield room
    await room.stop()
