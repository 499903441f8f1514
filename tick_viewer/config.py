"""Configuration: feed endpoint constants and settings from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .engine.digits import DEFAULT_TICK_COUNT
from .errors import ConfigurationError

# Deriv public WebSocket API
WS_BASE = "wss://ws.derivws.com/websockets/v3"


class APP_IDS:
    """Application ids accepted by the feed. The caller picks one."""
    ORIGINAL = 75914
    DEMO = 1089


DEFAULT_SYMBOL = "R_50"
DEFAULT_KEEPALIVE_MS = 30_000
DEFAULT_REFRESH_MS = 30_000


@dataclass(frozen=True)
class EndpointConfig:
    """Where to connect: base URL plus the app_id query parameter."""
    app_id: int = APP_IDS.ORIGINAL
    url: str = WS_BASE

    @property
    def ws_url(self) -> str:
        return f"{self.url}?app_id={self.app_id}"


@dataclass
class Settings:
    """Runtime settings. CLI flags override these."""

    app_id: int
    ws_url: str
    symbol: str
    count: int
    keepalive_ms: int
    refresh_ms: int
    log_level: str

    @property
    def endpoint(self) -> EndpointConfig:
        return EndpointConfig(app_id=self.app_id, url=self.ws_url)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def load_settings() -> Settings:
    """Load settings from environment variables."""
    return Settings(
        app_id=_env_int("TICK_VIEWER_APP_ID", APP_IDS.ORIGINAL),
        ws_url=os.getenv("TICK_VIEWER_WS_URL", WS_BASE),
        symbol=os.getenv("TICK_VIEWER_SYMBOL", DEFAULT_SYMBOL),
        count=_env_int("TICK_VIEWER_COUNT", DEFAULT_TICK_COUNT),
        keepalive_ms=_env_int("TICK_VIEWER_KEEPALIVE_MS", DEFAULT_KEEPALIVE_MS),
        refresh_ms=_env_int("TICK_VIEWER_REFRESH_MS", DEFAULT_REFRESH_MS),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
