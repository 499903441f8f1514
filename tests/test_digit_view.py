"""Tests for dashboard rendering helpers and the one-shot CLI run."""

import asyncio

import pytest
from rich.console import Console

from tick_viewer.config import Settings
from tick_viewer.engine.digits import analyze
from tick_viewer.main import run_once
from tick_viewer.ui.digit_view import (
    insights_text,
    make_bar,
    ratio_table,
    render_report,
    sequence_text,
)

from .conftest import FakeWebSocket, settle


def render(renderable) -> str:
    console = Console(width=120, record=True, color_system=None)
    console.print(renderable)
    return console.export_text()


class TestRendering:

    def test_make_bar_width(self):
        bar = make_bar(5, 10, 20, "#ffffff")
        assert len(bar.plain) == 20
        assert bar.plain.count("█") == 10

    def test_make_bar_marker(self):
        bar = make_bar(0, 10, 10, "#ffffff", marker=5)
        assert bar.plain[5] == "┃"

    def test_make_bar_zero_max(self):
        assert make_bar(1, 0, 8, "#ffffff").plain == " " * 8

    def test_sequence_lists_every_digit(self):
        digits = (1, 1, 2, 7, 9)
        assert sequence_text(digits).plain.split() == ["1", "1", "2", "7", "9"]

    def test_ratio_table_rows(self):
        result = analyze([0, 5, 3, 6])
        text = render(ratio_table(result))
        assert "5→3" in text
        assert "3→6" in text
        assert "0→5" not in text

    def test_insights_wording(self):
        text = insights_text(analyze([1, 1, 2, 3, 5, 8, 3])).plain
        assert "100.00%" in text
        assert "some presence" in text

    def test_insights_short_series(self):
        assert "not enough ticks" in insights_text(analyze([4, 2])).plain

    def test_report_sections(self):
        digits = (1, 2, 3, 4, 5, 6, 7, 8, 9, 0)
        text = render(render_report(digits, analyze(digits)))
        for heading in ("Digit Frequency", "Last Digits Sequence", "Consecutive Ratios", "Insights"):
            assert heading in text
        assert "uniform" in text


def make_settings(**overrides) -> Settings:
    values = dict(
        app_id=1089,
        ws_url="wss://ws.derivws.com/websockets/v3",
        symbol="R_50",
        count=5,
        keepalive_ms=30_000,
        refresh_ms=30_000,
        log_level="INFO",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def scripted_connector(monkeypatch):
    """Patch the default connector so run_once talks to a FakeWebSocket."""
    ws = FakeWebSocket()

    async def connect(self, url):
        return ws

    monkeypatch.setattr("tick_viewer.datafeed.deriv_client.TickSession._aiohttp_connect", connect)
    return ws


class TestRunOnce:

    async def test_prints_report(self, scripted_connector, capsys):
        ws = scripted_connector
        task = asyncio.create_task(run_once(make_settings()))
        await settle()

        request = ws.sent_json()[0]
        assert request["ticks_history"] == "R_50"
        assert request["count"] == 5

        ws.feed_json({
            "msg_type": "history",
            "history": {"prices": [1.2345, 1.234, 0.25, 12.375, 1237]},
            "pip_size": 4,
            "req_id": request["req_id"],
        })
        code = await asyncio.wait_for(task, timeout=2)

        assert code == 0
        out = capsys.readouterr().out
        assert "5 ticks" in out
        assert "Digit Frequency" in out
        assert ws.closed

    async def test_remote_error_exit_code(self, scripted_connector, capsys):
        ws = scripted_connector
        task = asyncio.create_task(run_once(make_settings()))
        await settle()
        ws.feed_json({"error": {"code": "InvalidSymbol", "message": "Symbol R_50 is invalid."}})

        assert await asyncio.wait_for(task, timeout=2) == 1
        assert "Symbol R_50 is invalid." in capsys.readouterr().out
