"""
Last-digit dashboard TUI using Textual.

Displays:
- Top: status bar (symbol, connection state, last refresh)
- Tabs: digit frequency bars, digit sequence, consecutive ratios vs phi
- Bottom: findings panel

The app is the caller of the core: it owns the session, asks for history on
open and every refresh interval, and feeds replies through the analyzer.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Sequence

from rich.console import Group, RenderableType
from rich.style import Style
from rich.table import Table
from rich.text import Text

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.widgets import Footer, Static, TabbedContent, TabPane

from ..config import EndpointConfig
from ..datafeed.deriv_client import TickSession, open_session
from ..datafeed.protocol import MessageKind, classify, parse_history
from ..engine.digits import (
    GOLDEN_RATIO,
    analyze,
    digits_from_prices,
    expected_frequency,
    insights,
    pattern_hits,
)
from ..errors import TickViewerError

if TYPE_CHECKING:
    from ..types import AnalysisResult

logger = logging.getLogger(__name__)

# Color scheme (dark theme)
BAR_COLOR = "#8884d8"
EXPECTED_COLOR = "#ef4444"
HIT_COLOR = "#4caf50"
EVEN_COLOR = "#93c5fd"
ODD_COLOR = "#fdba74"
RATIO_COLOR = "#82ca9d"
HEADER_COLOR = "#94a3b8"
BAR_BG = "#1e293b"

BAR_WIDTH = 30


def make_bar(value: float, max_value: float, width: int, color: str, marker: float | None = None) -> Text:
    """Horizontal bar of block characters, with an optional marker column."""
    if max_value <= 0:
        return Text(" " * width)

    fill_width = int(min(1.0, value / max_value) * width)
    chars = ["█"] * fill_width + [" "] * (width - fill_width)

    if marker is not None:
        pos = min(width - 1, int(min(1.0, marker / max_value) * width))
        chars[pos] = "┃"

    bar = Text("".join(chars), style=Style(color=color, bgcolor=BAR_BG))
    if marker is not None:
        bar.stylize(Style(color=EXPECTED_COLOR, bgcolor=BAR_BG), pos, pos + 1)
    return bar


def frequency_table(digits: Sequence[int], result: AnalysisResult) -> Table:
    """Digit frequency bars; the red marker is the uniform expectation."""
    expected = expected_frequency(len(digits))
    max_count = max(max(result.frequency), expected, 1)

    table = Table(show_header=True, header_style=HEADER_COLOR, box=None, padding=(0, 1))
    table.add_column("Digit", justify="center", width=5)
    table.add_column("Count", justify="right", width=6)
    table.add_column("Share", justify="right", width=7)
    table.add_column(f"Actual vs expected ({expected:.1f})", no_wrap=True)

    total = max(len(digits), 1)
    for digit, count in enumerate(result.frequency):
        table.add_row(
            str(digit),
            str(count),
            f"{count / total:.1%}",
            make_bar(count, max_count, BAR_WIDTH, BAR_COLOR, marker=expected),
        )
    return table


def sequence_text(digits: Sequence[int]) -> Text:
    """Digits in order; even/odd shading, green when the recurrence hits."""
    text = Text()
    for digit, hit in zip(digits, pattern_hits(digits)):
        if hit:
            style = Style(color=HIT_COLOR, bold=True, underline=True)
        else:
            style = Style(color=EVEN_COLOR if digit % 2 == 0 else ODD_COLOR)
        text.append(f" {digit} ", style=style)
    return text


def ratio_table(result: AnalysisResult, limit: int = 40) -> Table:
    """Most recent consecutive ratios against the golden ratio."""
    table = Table(show_header=True, header_style=HEADER_COLOR, box=None, padding=(0, 1))
    table.add_column("Index", justify="right", width=6)
    table.add_column("Pair", justify="center", width=7)
    table.add_column("Ratio", justify="right", width=7)
    table.add_column(f"vs φ ≈ {GOLDEN_RATIO:.3f}", no_wrap=True)

    samples = result.ratios[-limit:]
    max_ratio = max((s.ratio for s in samples), default=0.0)
    max_ratio = max(max_ratio, GOLDEN_RATIO)
    for s in samples:
        table.add_row(
            str(s.index),
            f"{s.digit1}→{s.digit2}",
            f"{s.ratio:.3f}",
            make_bar(s.ratio, max_ratio, BAR_WIDTH, RATIO_COLOR, marker=GOLDEN_RATIO),
        )
    return table


def insights_text(result: AnalysisResult) -> Text:
    """Findings panel text."""
    found = insights(result)
    text = Text()

    if result.pattern_defined:
        text.append(f"Pattern match ratio of {result.pattern_match_ratio * 100:.2f}% indicates "
                    f"{found.pattern} of Fibonacci-like patterns in the digits\n")
    else:
        text.append("Pattern match ratio: not enough ticks (need at least 3)\n", style="dim")

    text.append(f"Correlation with golden ratio: {found.correlation} correlation detected "
                f"(score {result.correlation:.3f})\n")

    if found.clustered:
        text.append("Digit distribution: shows significant clustering around specific digits")
    else:
        text.append("Digit distribution: relatively uniform across all possible values")
    return text


def render_report(digits: Sequence[int], result: AnalysisResult) -> RenderableType:
    """Everything at once, for non-interactive output."""
    return Group(
        Text("Digit Frequency", style="bold"),
        frequency_table(digits, result),
        Text("\nLast Digits Sequence", style="bold"),
        sequence_text(digits),
        Text("\nConsecutive Ratios", style="bold"),
        ratio_table(result),
        Text("\nInsights", style="bold"),
        insights_text(result),
    )


class AnalysisPanel(Static):
    """Shows one view of the latest analysis."""

    DEFAULT_CSS = """
    AnalysisPanel {
        width: 100%;
        height: auto;
    }
    """

    def __init__(self, view: str) -> None:
        super().__init__()
        self._view = view
        self._digits: tuple[int, ...] = ()
        self._result: AnalysisResult | None = None

    def update_analysis(self, digits: tuple[int, ...], result: AnalysisResult) -> None:
        self._digits = digits
        self._result = result
        self.refresh(layout=True)

    def render(self) -> RenderableType:
        if self._result is None:
            return Text("Loading tick data...", style="dim")
        if self._view == "frequency":
            return frequency_table(self._digits, self._result)
        if self._view == "sequence":
            return sequence_text(self._digits)
        if self._view == "ratios":
            return ratio_table(self._result)
        return insights_text(self._result)


class StatusBar(Static):
    """Symbol, connection state and last refresh."""

    DEFAULT_CSS = """
    StatusBar {
        dock: top;
        height: 3;
        padding: 0 2;
        background: #0f172a;
    }
    """

    def __init__(self, symbol: str, count: int) -> None:
        super().__init__()
        self.symbol = symbol
        self.count = count
        self.connected = False
        self.last_update: float | None = None
        self.error: str | None = None

    def set_state(self, connected: bool | None = None, error: str | None = None,
                  updated: bool = False) -> None:
        if connected is not None:
            self.connected = connected
        if updated:
            self.last_update = time.time()
            self.error = None
        if error is not None:
            self.error = error
        self.refresh()

    def render(self) -> RenderableType:
        result = Text()
        result.append(f" {self.symbol} ", style="bold white on #1e40af")
        result.append(f"  {self.count} ticks  ", style="dim")
        if self.connected:
            result.append("Connected", style="bold green")
        else:
            result.append("Disconnected", style="bold red")
        if self.last_update is not None:
            result.append("  │  Updated: ", style="dim")
            result.append(time.strftime("%H:%M:%S", time.localtime(self.last_update)), style="cyan")
        if self.error:
            result.append(f"\n{self.error}", style="red")
        return result


class DigitApp(App):
    """Main Tick Viewer application."""

    CSS = """
    Screen {
        background: #0f172a;
    }

    #main-container {
        width: 100%;
        height: 1fr;
        padding: 1 2;
    }

    #insights {
        height: auto;
        padding: 1 2;
        border-top: solid #1e293b;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh Data"),
    ]

    def __init__(
        self,
        endpoint: EndpointConfig,
        symbol: str,
        count: int,
        refresh_ms: int,
        keepalive_ms: int,
    ) -> None:
        super().__init__()
        self.endpoint = endpoint
        self.symbol = symbol
        self.count = count
        self.refresh_ms = refresh_ms
        self.keepalive_ms = keepalive_ms
        self.session: TickSession | None = None

        self._status_bar = StatusBar(symbol, count)
        self._panels = {
            "frequency": AnalysisPanel("frequency"),
            "sequence": AnalysisPanel("sequence"),
            "ratios": AnalysisPanel("ratios"),
        }
        self._insights = AnalysisPanel("insights")

    def compose(self) -> ComposeResult:
        yield self._status_bar
        with Container(id="main-container"):
            with TabbedContent(initial="frequency"):
                with TabPane("Digit Frequency", id="frequency"):
                    yield self._panels["frequency"]
                with TabPane("Digit Sequence", id="sequence"):
                    yield self._panels["sequence"]
                with TabPane("Consecutive Ratios", id="ratios"):
                    yield self._panels["ratios"]
        yield Container(self._insights, id="insights")
        yield Footer()

    async def on_mount(self) -> None:
        """Open the feed session."""
        try:
            self.session = open_session(self.endpoint, keepalive_ms=self.keepalive_ms)
        except TickViewerError as e:
            self._status_bar.set_state(connected=False, error=f"Failed to create WebSocket: {e}")
            return

        self.session.register_handlers(
            on_open=self._feed_open,
            on_message=self._feed_message,
            on_error=self._feed_error,
            on_close=self._feed_close,
        )

    async def on_unmount(self) -> None:
        if self.session is not None:
            await self.session.close()

    async def _feed_open(self, session: TickSession) -> None:
        self._status_bar.set_state(connected=True)
        try:
            await session.send_history_request(symbol=self.symbol, count=self.count)
        except TickViewerError as e:
            self._status_bar.set_state(error=f"Failed to request data: {e}")
            return
        session.start_refresh(self.refresh_ms, symbol=self.symbol, count=self.count)

    def _feed_message(self, payload: dict) -> None:
        if classify(payload) is not MessageKind.HISTORY:
            return
        try:
            response = parse_history(payload)
            digits = digits_from_prices(response.prices, response.pip_size)
        except TickViewerError as e:
            self._status_bar.set_state(error=f"Failed to process data from API: {e}")
            return

        logger.info("Processing %d prices with pip size %d", len(response.prices), response.pip_size)
        result = analyze(digits)
        for panel in (*self._panels.values(), self._insights):
            panel.update_analysis(digits, result)
        self._status_bar.set_state(updated=True)

    def _feed_error(self, exc: TickViewerError) -> None:
        self._status_bar.set_state(error=str(exc))

    def _feed_close(self, session: TickSession) -> None:
        self._status_bar.set_state(connected=False)

    async def action_refresh(self) -> None:
        """Request fresh history now (bound to 'r' key)."""
        if self.session is None or not self.session.connected:
            return
        try:
            await self.session.send_history_request(symbol=self.symbol, count=self.count)
        except TickViewerError as e:
            self._status_bar.set_state(error=f"Failed to send request: {e}")


async def run_ui(
    endpoint: EndpointConfig,
    symbol: str,
    count: int,
    refresh_ms: int,
    keepalive_ms: int,
) -> None:
    """Run the TUI application."""
    app = DigitApp(endpoint, symbol, count, refresh_ms, keepalive_ms)
    await app.run_async()
