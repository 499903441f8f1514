"""Tests for settings and CLI flag handling."""

import pytest

from tick_viewer.config import APP_IDS, WS_BASE, EndpointConfig, load_settings
from tick_viewer.errors import ConfigurationError
from tick_viewer.main import apply_args, build_parser

ENV_VARS = [
    "TICK_VIEWER_APP_ID",
    "TICK_VIEWER_WS_URL",
    "TICK_VIEWER_SYMBOL",
    "TICK_VIEWER_COUNT",
    "TICK_VIEWER_KEEPALIVE_MS",
    "TICK_VIEWER_REFRESH_MS",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestEndpointConfig:

    def test_default_url(self):
        assert EndpointConfig().ws_url == f"{WS_BASE}?app_id={APP_IDS.ORIGINAL}"

    def test_demo(self):
        assert EndpointConfig(app_id=APP_IDS.DEMO).ws_url.endswith("app_id=1089")

    def test_app_ids(self):
        assert APP_IDS.ORIGINAL == 75914
        assert APP_IDS.DEMO == 1089


class TestLoadSettings:

    def test_defaults(self):
        settings = load_settings()
        assert settings.app_id == APP_IDS.ORIGINAL
        assert settings.ws_url == WS_BASE
        assert settings.symbol == "R_50"
        assert settings.count == 99
        assert settings.keepalive_ms == 30_000
        assert settings.refresh_ms == 30_000
        assert settings.log_level == "INFO"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TICK_VIEWER_APP_ID", "1089")
        monkeypatch.setenv("TICK_VIEWER_SYMBOL", "R_100")
        monkeypatch.setenv("TICK_VIEWER_COUNT", "500")
        monkeypatch.setenv("TICK_VIEWER_REFRESH_MS", "5000")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = load_settings()
        assert settings.endpoint == EndpointConfig(app_id=1089)
        assert settings.symbol == "R_100"
        assert settings.count == 500
        assert settings.refresh_ms == 5000
        assert settings.log_level == "DEBUG"

    def test_blank_env_uses_default(self, monkeypatch):
        monkeypatch.setenv("TICK_VIEWER_COUNT", "  ")
        assert load_settings().count == 99

    @pytest.mark.parametrize("value", ["abc", "1.5", "0", "-3"])
    def test_bad_integer(self, monkeypatch, value):
        monkeypatch.setenv("TICK_VIEWER_COUNT", value)
        with pytest.raises(ConfigurationError):
            load_settings()


class TestCliArgs:

    def parse(self, *argv):
        settings = load_settings()
        return apply_args(settings, build_parser(settings).parse_args(list(argv)))

    def test_defaults(self):
        settings = self.parse()
        assert settings.symbol == "R_50"
        assert settings.app_id == APP_IDS.ORIGINAL
        assert settings.refresh_ms == 30_000

    def test_overrides(self):
        settings = self.parse("R_75", "--count", "200", "--refresh", "2.5", "--log-level", "warning")
        assert settings.symbol == "R_75"
        assert settings.count == 200
        assert settings.refresh_ms == 2500
        assert settings.log_level == "WARNING"

    def test_demo_flag(self):
        assert self.parse("--demo").app_id == APP_IDS.DEMO

    def test_app_id_flag(self):
        assert self.parse("--app-id", "4242").app_id == 4242

    def test_demo_and_app_id_conflict(self):
        with pytest.raises(SystemExit):
            self.parse("--demo", "--app-id", "4242")

    @pytest.mark.parametrize("argv", [("--count", "0"), ("--refresh", "0")])
    def test_non_positive(self, argv):
        with pytest.raises(ConfigurationError):
            self.parse(*argv)


class TestLogging:

    def test_setup_installs_single_rich_handler(self):
        import logging

        from rich.logging import RichHandler

        from tick_viewer.log import setup_logging

        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            setup_logging("debug")
            setup_logging("warning")
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0], RichHandler)
            assert root.level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
