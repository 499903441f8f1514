"""Custom exceptions for Tick Viewer."""

from __future__ import annotations

from typing import Optional


class TickViewerError(Exception):
    """Base exception for Tick Viewer errors."""
    pass


class ConfigurationError(TickViewerError):
    """Raised when settings from the environment or CLI are invalid."""
    pass


class ConnectionSetupError(TickViewerError):
    """Raised when the WebSocket transport cannot be constructed at all."""
    pass


class NotConnectedError(TickViewerError):
    """Raised when an operation needs an open session and it is not open."""
    pass


class TransportError(TickViewerError):
    """Connection-level failure reported by the socket."""
    pass


class RemoteApiError(TickViewerError):
    """The feed answered with an ``error`` object."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        req_id: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.req_id = req_id

    def __str__(self) -> str:
        if self.code:
            return f"API Error [{self.code}]: {self.message}"
        return f"API Error: {self.message}"


class MalformedPayloadError(TickViewerError):
    """An inbound frame did not have the expected structure."""

    def __init__(self, message: str, raw: object = None) -> None:
        super().__init__(message)
        # Keep a short excerpt only; frames can be large
        self.raw = repr(raw)[:200] if raw is not None else None


class EmptyHistoryError(MalformedPayloadError):
    """History reply carried no prices."""
    pass


class InvalidPriceError(TickViewerError, ValueError):
    """Price cannot be turned into a last digit (negative, NaN, inf)."""
    pass
