"""
Pytest fixtures for the TradeStation client tests.

This module provides:
- Fake clocks for the token store and rate limiter
- Mock aiohttp sessions and responses (no real network I/O)
- Controllable chunked stream bodies
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from tradestation.lib.config import AuthConfig, ClientConfig


# =============================================================================
# Clocks
# =============================================================================

class FakeDateTimeClock:
    """Callable returning a controllable UTC datetime."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2024, 1, 2, 14, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeMonotonicClock:
    """Callable returning a controllable monotonic reading in seconds."""

    def __init__(self, start: float = 1000.0):
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def utc_clock():
    return FakeDateTimeClock()


@pytest.fixture
def mono_clock():
    return FakeMonotonicClock()


# =============================================================================
# Mock HTTP
# =============================================================================

def make_response(status: int = 200, body: Any = None, headers: Optional[dict] = None) -> MagicMock:
    """Create a mock aiohttp response with a text body."""
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    if body is None:
        text = ""
    elif isinstance(body, str):
        text = body
    else:
        text = json.dumps(body)
    response.text = AsyncMock(return_value=text)
    response.close = MagicMock()
    return response


def make_post_context(response: MagicMock) -> MagicMock:
    """Wrap a response so it can be used with `async with session.post(...)`."""
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


def token_body(access_token: str = "access-1", expires_in: int = 1200, refresh_token: Optional[str] = None) -> dict:
    body = {"access_token": access_token, "expires_in": expires_in, "token_type": "Bearer"}
    if refresh_token:
        body["refresh_token"] = refresh_token
    return body


@pytest.fixture
def mock_session():
    """Create a mock aiohttp session."""
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    session.post = MagicMock(return_value=make_post_context(make_response(200, token_body())))
    session.request = AsyncMock(return_value=make_response(200, {}))
    return session


@pytest.fixture
def get_session(mock_session):
    """Coroutine function returning the mock session."""
    async def _get_session():
        return mock_session
    return _get_session


@pytest.fixture
def auth_config():
    return AuthConfig(
        client_id="test_client",
        client_secret="test_secret",
        refresh_token="refresh-0",
    )


@pytest.fixture
def client_config(auth_config):
    return ClientConfig(environment="Simulation", auth=auth_config)


# =============================================================================
# Mock Streams
# =============================================================================

class ChunkFeed:
    """Stream body whose chunks are pushed by the test.

    readany() blocks until a chunk is pushed; end() signals EOF.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()

    def push(self, *chunks: bytes) -> None:
        for chunk in chunks:
            self._queue.put_nowait(chunk)

    def end(self) -> None:
        self._queue.put_nowait(b"")

    def fail(self, error: BaseException) -> None:
        self._queue.put_nowait(error)

    async def readany(self) -> bytes:
        item = await self._queue.get()
        if isinstance(item, BaseException):
            raise item
        return item


def make_stream_response(feed: ChunkFeed, status: int = 200) -> MagicMock:
    """Create a mock streaming response reading from a ChunkFeed."""
    response = make_response(status)
    response.content = MagicMock()
    response.content.readany = feed.readany
    return response


def frame(payload: dict) -> bytes:
    return (json.dumps(payload) + "\n").encode()


async def settle(rounds: int = 20) -> None:
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
