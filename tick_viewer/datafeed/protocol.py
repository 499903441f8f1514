"""
Wire codec for the Deriv WebSocket API.

Outbound frames are JSON text: a keepalive ``{"ping": 1}`` and a
``ticks_history`` request. Inbound frames are told apart by shape:

    {"pong": 1, ...}                     -> keepalive reply
    {"error": {"message", "code"}, ...}  -> remote error
    {"msg_type": "history", ...}         -> tick history

Uses orjson for encoding and decoding.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

import orjson

from ..errors import EmptyHistoryError, MalformedPayloadError, RemoteApiError
from ..types import HistoryRequest, HistoryResponse

DEFAULT_PIP_SIZE = 4

_PING = orjson.dumps({"ping": 1})


class MessageKind(str, Enum):
    ERROR = "error"
    PONG = "pong"
    HISTORY = "history"
    OTHER = "other"


def encode_ping() -> bytes:
    """Keepalive frame."""
    return _PING


def encode_history_request(request: HistoryRequest) -> bytes:
    """Build the ticks_history frame for a request."""
    return orjson.dumps({
        "ticks_history": request.symbol,
        "adjust_start_time": 1,
        "count": request.count,
        "end": "latest",
        "start": 1,
        "style": "ticks",
        "req_id": request.req_id,
    })


def decode_frame(raw: str | bytes) -> dict[str, Any]:
    """
    Parse one inbound text frame.

    Raises MalformedPayloadError when the frame is not a JSON object.
    """
    try:
        payload = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise MalformedPayloadError(f"Frame is not valid JSON: {e}", raw) from e

    if not isinstance(payload, dict):
        raise MalformedPayloadError(
            f"Expected a JSON object, got {type(payload).__name__}", raw
        )
    return payload


def classify(payload: dict[str, Any]) -> MessageKind:
    """Discriminate an inbound payload by shape. Error wins over everything."""
    if payload.get("error") is not None:
        return MessageKind.ERROR
    if "pong" in payload:
        return MessageKind.PONG
    if payload.get("msg_type") == "history":
        return MessageKind.HISTORY
    return MessageKind.OTHER


def remote_error(payload: dict[str, Any]) -> RemoteApiError:
    """Turn an ``error`` reply into a RemoteApiError (not raised here)."""
    error = payload.get("error")
    if isinstance(error, dict):
        message = error.get("message") or "Unknown error"
        code = error.get("code")
    else:
        message = str(error) if error else "Unknown error"
        code = None
    return RemoteApiError(message, code=code, req_id=payload.get("req_id"))


def parse_history(payload: dict[str, Any]) -> HistoryResponse:
    """
    Extract prices and pip size from a history reply.

    pip_size defaults to 4 only when the field is missing or null; an
    explicit 0 is kept.
    """
    history = payload.get("history")
    if not isinstance(history, dict) or "prices" not in history:
        raise MalformedPayloadError("History reply has no history.prices", payload)

    raw_prices = history["prices"]
    if not isinstance(raw_prices, list):
        raise MalformedPayloadError("history.prices is not a list", raw_prices)
    if not raw_prices:
        raise EmptyHistoryError("No price data received from API", payload)

    prices: list[float] = []
    for p in raw_prices:
        # bool is an int subclass; a true/false price is a protocol error
        if isinstance(p, bool) or not isinstance(p, (int, float)):
            raise MalformedPayloadError(f"Non-numeric price {p!r}", raw_prices)
        if not math.isfinite(p):
            raise MalformedPayloadError(f"Non-finite price {p!r}", raw_prices)
        prices.append(float(p))

    pip_size = payload.get("pip_size")
    if pip_size is None:
        pip_size = DEFAULT_PIP_SIZE
    elif isinstance(pip_size, bool) or not isinstance(pip_size, int) or pip_size < 0:
        raise MalformedPayloadError(f"Invalid pip_size {pip_size!r}", payload)

    try:
        times = tuple(int(t) for t in history.get("times") or ())
    except (TypeError, ValueError) as e:
        raise MalformedPayloadError(f"Invalid history.times: {e}", history) from e

    return HistoryResponse(
        prices=tuple(prices),
        pip_size=pip_size,
        req_id=payload.get("req_id"),
        times=times,
    )
