"""
Deriv WebSocket session with async lifecycle handling.

Handles:
1. One WebSocket connection per TickSession (connecting -> open -> closed)
2. Application-level keepalive ({"ping": 1}) on a timer owned by the session
3. Optional periodic ticks_history refresh, also owned by the session
4. Dispatch of inbound frames to registered handlers

Failures after the connection attempt starts never raise out of the read
loop: they go to on_error as TickViewerError subclasses, followed by a single
on_close. No reconnection is attempted; call open_session() again.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import aiohttp
from yarl import URL

from ..config import DEFAULT_KEEPALIVE_MS, DEFAULT_REFRESH_MS, DEFAULT_SYMBOL, EndpointConfig
from ..engine.digits import DEFAULT_TICK_COUNT
from ..errors import (
    ConnectionSetupError,
    MalformedPayloadError,
    NotConnectedError,
    TickViewerError,
    TransportError,
)
from ..types import HistoryRequest, SessionState
from .protocol import (
    MessageKind,
    classify,
    decode_frame,
    encode_history_request,
    encode_ping,
    remote_error,
)

logger = logging.getLogger(__name__)

Handler = Optional[Callable[..., Any]]
# Async callable returning an object with send_str/close/closed and async iteration
Connector = Callable[[str], Awaitable[Any]]

_CLOSE_TYPES = (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED)

# Unanswered requests kept for matching; the oldest are dropped beyond this
MAX_PENDING_REQUESTS = 100


class TickSession:
    """
    A single live connection to the tick feed.

    Usage:
        session = open_session(EndpointConfig(app_id=APP_IDS.DEMO))
        session.register_handlers(on_open=..., on_message=..., on_close=...)
        ...
        await session.close()

    Thread-safety: NOT thread-safe. All calls must happen on the loop that
    opened the session.
    """

    def __init__(
        self,
        endpoint: EndpointConfig,
        connector: Connector | None = None,
        keepalive_ms: int = DEFAULT_KEEPALIVE_MS,
    ) -> None:
        self.endpoint = endpoint
        self.state = SessionState.CONNECTING
        self.keepalive_ms = keepalive_ms

        # Requests sent and not yet answered, by req_id
        self.pending_requests: dict[int, HistoryRequest] = {}

        self._connector = connector or self._aiohttp_connect
        self._http: aiohttp.ClientSession | None = None
        self._ws: Any = None

        # Timers are tasks bound to this session, cancelled on close
        self._keepalive_task: asyncio.Task | None = None
        self._refresh_task: asyncio.Task | None = None
        self._runner: asyncio.Task | None = None
        self._close_fired = False

        self._on_open: Handler = None
        self._on_message: Handler = None
        self._on_error: Handler = None
        self._on_close: Handler = None

    @property
    def connected(self) -> bool:
        return self.state is SessionState.OPEN

    @property
    def keepalive_running(self) -> bool:
        return self._keepalive_task is not None and not self._keepalive_task.done()

    @property
    def refresh_running(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def register_handlers(
        self,
        on_open: Handler = None,
        on_message: Handler = None,
        on_error: Handler = None,
        on_close: Handler = None,
    ) -> None:
        """
        Attach lifecycle callbacks. Each may be a plain function or a
        coroutine function.

        on_open(session)      once, when the socket is open
        on_message(payload)   per parsed frame that is not an error or pong
        on_error(exc)         zero or more times, before on_close
        on_close(session)     exactly once, terminal
        """
        self._on_open = on_open
        self._on_message = on_message
        self._on_error = on_error
        self._on_close = on_close

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def _start(self) -> None:
        loop = asyncio.get_running_loop()
        self._runner = loop.create_task(self._run(), name=f"tick-session-{self.endpoint.app_id}")

    async def _aiohttp_connect(self, url: str) -> aiohttp.ClientWebSocketResponse:
        self._http = aiohttp.ClientSession()
        # Keepalive is done at the application level with {"ping": 1}
        return await self._http.ws_connect(url, autoping=True)

    async def _run(self) -> None:
        logger.info("Connecting to %s", self.endpoint.ws_url)
        try:
            self._ws = await self._connector(self.endpoint.ws_url)
        except asyncio.CancelledError:
            # close() while still connecting
            await self._finish(clean=True)
            raise
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError, ValueError) as e:
            await self._emit_error(TransportError(f"Connection failed: {e}"))
            await self._finish(clean=False)
            return

        self.state = SessionState.OPEN
        logger.info("[open] Connection established")
        await self._call(self._on_open, self)

        # on_open may already have started its own keepalive
        if self.state is SessionState.OPEN and not self.keepalive_running:
            self.start_keepalive(self.keepalive_ms)

        clean = True
        try:
            async for msg in self._ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    await self._handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    clean = False
                    await self._emit_error(TransportError(f"WebSocket error: {msg.data}"))
                    break
                elif msg.type in _CLOSE_TYPES:
                    break
        except (aiohttp.ClientError, OSError) as e:
            clean = False
            await self._emit_error(TransportError(f"Connection lost: {e}"))
        except Exception:
            clean = False
            logger.exception("Read loop failed")
            raise
        finally:
            # Reached on cancellation too; on_close fires exactly once
            await self._finish(clean=clean)

    async def _finish(self, clean: bool) -> None:
        """Move to closed, release the socket, fire on_close once."""
        self._cancel_timers()
        self.state = SessionState.CLOSED

        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._http is not None and not self._http.closed:
            await self._http.close()

        if self._close_fired:
            return
        self._close_fired = True

        code = getattr(self._ws, "close_code", None)
        if clean:
            logger.info("[close] Connection closed cleanly, code=%s", code)
        else:
            logger.warning("[close] Connection died")
        await self._call(self._on_close, self)

    async def close(self) -> None:
        """
        Shut the session down. Timers are always stopped; calling this on a
        closed session does nothing else.
        """
        self._cancel_timers()
        if self.state is SessionState.CLOSED:
            return

        runner = self._runner
        in_runner = runner is not None and asyncio.current_task() is runner

        if self.state is SessionState.CONNECTING:
            if runner is not None and not in_runner:
                runner.cancel()
                await asyncio.wait([runner])
            # A task cancelled before its first step never reaches _finish
            if not self._close_fired:
                await self._finish(clean=True)
            return

        # Open: request a clean close, the read loop then ends and fires on_close
        logger.info("Closing connection")
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if runner is not None and not in_runner:
            await asyncio.wait([runner])
        else:
            await self._finish(clean=True)

    async def wait_closed(self) -> None:
        """Block until the read loop has ended."""
        if self._runner is not None:
            await asyncio.wait([self._runner])

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _handle_frame(self, raw: str | bytes) -> None:
        logger.debug("[message] Data received: %.200s", raw)
        try:
            payload = decode_frame(raw)
        except MalformedPayloadError as e:
            await self._emit_error(e)
            return

        kind = classify(payload)
        req_id = payload.get("req_id")
        # Only int ids can match a request; anything else counts as unknown
        if isinstance(req_id, bool) or not isinstance(req_id, int):
            req_id = None

        if kind is MessageKind.ERROR:
            if req_id is not None:
                self.pending_requests.pop(req_id, None)
            await self._emit_error(remote_error(payload))
            return

        if kind is MessageKind.PONG:
            logger.debug("Received pong response")
            return

        matched = req_id is not None and self.pending_requests.pop(req_id, None) is not None
        if kind is MessageKind.HISTORY and not matched:
            # Accepted anyway: replies are not matched against requests
            logger.debug("History reply with unknown req_id=%s", req_id)

        await self._call(self._on_message, payload)

    async def _emit_error(self, exc: TickViewerError) -> None:
        logger.warning("[error] %s", exc)
        await self._call(self._on_error, exc)

    async def _call(self, handler: Handler, *args: Any) -> None:
        if handler is None:
            return
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            # A faulty handler must not end the read loop
            logger.exception("Handler %s raised", getattr(handler, "__name__", handler))

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _send(self, data: bytes) -> None:
        if self.state is not SessionState.OPEN or self._ws is None:
            raise NotConnectedError("WebSocket is not connected")
        try:
            await self._ws.send_str(data.decode())
        except (ConnectionError, aiohttp.ClientError, RuntimeError) as e:
            raise TransportError(f"Send failed: {e}") from e

    async def send_history_request(
        self,
        symbol: str = DEFAULT_SYMBOL,
        count: int = 10,
    ) -> HistoryRequest:
        """
        Send a ticks_history request and return it.

        req_id is the current time in ms; two calls in the same millisecond
        share an id.
        """
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise ValueError(f"count must be a positive int, got {count!r}")
        if self.state is not SessionState.OPEN:
            raise NotConnectedError("WebSocket is not connected")

        request = HistoryRequest(symbol=symbol, count=count, req_id=int(time.time() * 1000))
        logger.info("Sending tick history request: %s count=%d req_id=%d",
                    request.symbol, request.count, request.req_id)

        self.pending_requests[request.req_id] = request
        while len(self.pending_requests) > MAX_PENDING_REQUESTS:
            stale = next(iter(self.pending_requests))
            logger.debug("Dropping unanswered request req_id=%d", stale)
            del self.pending_requests[stale]
        try:
            await self._send(encode_history_request(request))
        except TickViewerError:
            self.pending_requests.pop(request.req_id, None)
            raise
        return request

    def is_pending(self, req_id: int) -> bool:
        return req_id in self.pending_requests

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def start_keepalive(self, interval_ms: int = DEFAULT_KEEPALIVE_MS) -> None:
        """
        Send {"ping": 1} every interval_ms while open. Replaces a running
        keepalive instead of adding a second one.
        """
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        self._cancel_task(self._keepalive_task)
        self._keepalive_task = None
        if self.state is SessionState.CLOSED:
            logger.debug("Keepalive not started: session closed")
            return
        self._keepalive_task = asyncio.get_running_loop().create_task(
            self._keepalive_loop(interval_ms / 1000)
        )

    def start_refresh(
        self,
        interval_ms: int = DEFAULT_REFRESH_MS,
        symbol: str = DEFAULT_SYMBOL,
        count: int = DEFAULT_TICK_COUNT,
    ) -> None:
        """Re-send a history request every interval_ms. Same replace rule as keepalive."""
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        self._cancel_task(self._refresh_task)
        self._refresh_task = None
        if self.state is SessionState.CLOSED:
            logger.debug("Refresh not started: session closed")
            return
        self._refresh_task = asyncio.get_running_loop().create_task(
            self._refresh_loop(interval_ms / 1000, symbol, count)
        )

    def stop_refresh(self) -> None:
        self._cancel_task(self._refresh_task)
        self._refresh_task = None

    async def _keepalive_loop(self, interval: float) -> None:
        while self.state is not SessionState.CLOSED:
            await asyncio.sleep(interval)
            if self.state is not SessionState.OPEN:
                continue
            logger.debug("Sending ping to keep connection alive")
            try:
                await self._send(encode_ping())
            except TickViewerError as e:
                await self._emit_error(e)

    async def _refresh_loop(self, interval: float, symbol: str, count: int) -> None:
        while self.state is not SessionState.CLOSED:
            await asyncio.sleep(interval)
            if self.state is not SessionState.OPEN:
                continue
            logger.info("Refreshing data...")
            try:
                await self.send_history_request(symbol=symbol, count=count)
            except TickViewerError as e:
                await self._emit_error(e)

    @staticmethod
    def _cancel_task(task: asyncio.Task | None) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _cancel_timers(self) -> None:
        self._cancel_task(self._keepalive_task)
        self._cancel_task(self._refresh_task)
        self._keepalive_task = None
        self._refresh_task = None


def open_session(
    endpoint: EndpointConfig | None = None,
    connector: Connector | None = None,
    keepalive_ms: int = DEFAULT_KEEPALIVE_MS,
) -> TickSession:
    """
    Create a session and start connecting on the running loop.

    Raises ConnectionSetupError right away when the URL or app id is unusable
    or no event loop is running. Everything else is reported through the
    session's handlers.
    """
    endpoint = endpoint or EndpointConfig()

    if isinstance(endpoint.app_id, bool) or not isinstance(endpoint.app_id, int) or endpoint.app_id <= 0:
        raise ConnectionSetupError(f"Invalid app_id {endpoint.app_id!r}")
    try:
        url = URL(endpoint.ws_url)
    except (TypeError, ValueError) as e:
        raise ConnectionSetupError(f"Malformed URL {endpoint.url!r}: {e}") from e
    if url.scheme not in ("ws", "wss") or not url.host:
        raise ConnectionSetupError(f"Not a WebSocket URL: {endpoint.url!r}")

    logger.info("Creating WebSocket with app_id: %d", endpoint.app_id)
    session = TickSession(endpoint, connector=connector, keepalive_ms=keepalive_ms)
    try:
        session._start()
    except RuntimeError as e:
        raise ConnectionSetupError(f"open_session() needs a running event loop: {e}") from e
    return session
