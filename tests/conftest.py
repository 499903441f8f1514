"""Shared fixtures: an in-memory WebSocket standing in for aiohttp's."""

from __future__ import annotations

import asyncio
import heapq
import itertools
from types import SimpleNamespace

import aiohttp
import orjson
import pytest

from tick_viewer.config import EndpointConfig
from tick_viewer.datafeed.deriv_client import open_session

_real_sleep = asyncio.sleep


class FakeWebSocket:
    """Duck-typed ClientWebSocketResponse driven by the test."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self.close_code: int | None = None
        self.close_calls = 0
        self.fail_sends = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    # Test side -------------------------------------------------------

    def feed_text(self, data: str | bytes) -> None:
        if isinstance(data, bytes):
            data = data.decode()
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data))

    def feed_json(self, payload: dict) -> None:
        self.feed_text(orjson.dumps(payload))

    def feed_error(self, exc: Exception) -> None:
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.ERROR, data=exc))

    def drop(self) -> None:
        """Server side goes away without a close handshake."""
        self._inbox.put_nowait(None)

    def sent_json(self) -> list[dict]:
        return [orjson.loads(s) for s in self.sent]

    def pings(self) -> int:
        return sum(1 for m in self.sent_json() if m == {"ping": 1})

    # aiohttp side ----------------------------------------------------

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        if self.fail_sends:
            raise ConnectionResetError("Connection reset by peer")
        self.sent.append(data)

    async def close(self) -> bool:
        self.close_calls += 1
        if self.closed:
            return False
        self.closed = True
        self.close_code = 1000
        self._inbox.put_nowait(None)
        return True

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed and self._inbox.empty():
            raise StopAsyncIteration
        msg = await self._inbox.get()
        if msg is None:
            self.closed = True
            raise StopAsyncIteration
        return msg


class Recorder:
    """Collects handler calls."""

    def __init__(self) -> None:
        self.opened = 0
        self.messages: list[dict] = []
        self.errors: list[Exception] = []
        self.closed = 0

    def on_open(self, session) -> None:
        self.opened += 1

    def on_message(self, payload: dict) -> None:
        self.messages.append(payload)

    def on_error(self, exc: Exception) -> None:
        self.errors.append(exc)

    def on_close(self, session) -> None:
        self.closed += 1

    def register(self, session) -> None:
        session.register_handlers(
            on_open=self.on_open,
            on_message=self.on_message,
            on_error=self.on_error,
            on_close=self.on_close,
        )


async def settle(rounds: int = 5) -> None:
    """Let queued callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """
    Stands in for asyncio.sleep so timer tests run on simulated time.

    Non-zero sleeps park until advance() moves the clock past their
    deadline; sleep(0) still yields to the real loop.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self._sleepers: list = []
        self._seq = itertools.count()

    async def sleep(self, delay: float, result=None):
        if delay <= 0:
            return await _real_sleep(0, result)
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self.now + delay, next(self._seq), future))
        await future
        return result

    async def advance(self, seconds: float) -> None:
        """Run every sleeper due within the next `seconds`, in deadline order."""
        end = self.now + seconds
        await settle()
        while self._sleepers and self._sleepers[0][0] <= end:
            deadline, _, future = heapq.heappop(self._sleepers)
            self.now = deadline
            if not future.done():
                future.set_result(None)
            await settle()
        self.now = end


@pytest.fixture
def fake_ws():
    return FakeWebSocket()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def connect_to(fake_ws):
    """Connector returning fake_ws, recording the URL it was asked for."""
    urls: list[str] = []

    async def connector(url: str) -> FakeWebSocket:
        urls.append(url)
        return fake_ws

    connector.urls = urls
    return connector


@pytest.fixture
async def open_fake(connect_to, recorder):
    """Open a session on the fake socket and wait until on_open has run."""
    sessions = []

    async def _open(keepalive_ms: int = 30_000, endpoint: EndpointConfig | None = None):
        session = open_session(endpoint or EndpointConfig(), connector=connect_to,
                               keepalive_ms=keepalive_ms)
        recorder.register(session)
        await settle()
        sessions.append(session)
        return session

    yield _open

    for session in sessions:
        await session.close()


@pytest.fixture
def clock(monkeypatch):
    """Simulated time for the session's keepalive and refresh timers."""
    fake = FakeClock()
    monkeypatch.setattr(asyncio, "sleep", fake.sleep)
    return fake
