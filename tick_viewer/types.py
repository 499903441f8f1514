"""
Data types for Tick Viewer.

Notes:
- NamedTuple for immutable value objects passed between feed, engine and UI
- Digit series are plain tuples of ints; nothing here is mutated in place
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple, Optional


class SessionState(str, Enum):
    """Lifecycle of a single feed connection."""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class HistoryRequest(NamedTuple):
    """One ticks_history query. req_id is the send time in ms."""
    symbol: str
    count: int
    req_id: int


class HistoryResponse(NamedTuple):
    """Prices returned for a ticks_history query, oldest first."""
    prices: tuple[float, ...]
    pip_size: int = 4
    req_id: Optional[int] = None
    times: tuple[int, ...] = ()


class RatioSample(NamedTuple):
    """Ratio of two adjacent digits (digit2 / digit1), digit1 never 0."""
    index: int
    digit1: int
    digit2: int
    ratio: float


class AnalysisResult(NamedTuple):
    """
    Statistics derived from one digit series.

    pattern_trials is len(digits) - 2 and can be zero or negative for short
    series; pattern_match_ratio is then 0.0 and pattern_defined is False.
    """
    frequency: tuple[int, ...]
    pattern_matches: int
    pattern_trials: int
    correlation: float
    ratios: tuple[RatioSample, ...]

    @property
    def total(self) -> int:
        return sum(self.frequency)

    @property
    def pattern_defined(self) -> bool:
        return self.pattern_trials > 0

    @property
    def pattern_match_ratio(self) -> float:
        if not self.pattern_defined:
            return 0.0
        return self.pattern_matches / self.pattern_trials


class Insights(NamedTuple):
    """Plain-language reading of an AnalysisResult for the dashboard."""
    pattern: str       # "some presence" | "little presence"
    correlation: str   # "Strong" | "Moderate" | "Weak"
    clustered: bool    # True when one digit holds more than 1/5 of the ticks
