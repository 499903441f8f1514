"""
Last-digit analysis of tick prices.

Pure functions: no I/O, no timers, no shared state. Everything here takes a
price list or digit series and returns new values.

Statistics:
1. Frequency of each digit 0-9 (numpy bincount)
2. Pattern-match ratio: how often d[i] == (d[i-1] + d[i-2]) % 10
3. Consecutive ratios d[i+1] / d[i], skipping d[i] == 0
4. Distribution "correlation": 1 - chi2 / (total * 9) against a uniform
   ideal of total / 10 per digit. A heuristic score kept for compatibility
   with the original dashboard, not a correlation coefficient. chi2 peaks
   at total * 9 (one repeated digit), so the score bottoms out near 0;
   float rounding can push it a hair below.
"""

from __future__ import annotations

import math
from typing import Iterable, Sequence

import numpy as np

from ..errors import InvalidPriceError
from ..types import AnalysisResult, Insights, RatioSample

GOLDEN_RATIO = 1.618033988749895

# Ticks requested per refresh by the dashboard
DEFAULT_TICK_COUNT = 99

NUM_DIGITS = 10

EMPTY_RESULT = AnalysisResult(
    frequency=(0,) * NUM_DIGITS,
    pattern_matches=0,
    pattern_trials=0,
    correlation=0.0,
    ratios=(),
)


def extract_last_digit(price: float, pip_size: int = 4) -> int:
    """
    Last significant digit of a price: floor((price * 10**pip_size) % 10).

    Raises InvalidPriceError for negative, non-finite or non-numeric prices,
    for negative pip sizes, and when the scaled price leaves float range.
    """
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        raise InvalidPriceError(f"Price must be a number, got {price!r}")
    if not math.isfinite(price):
        raise InvalidPriceError(f"Price must be finite, got {price!r}")
    if price < 0:
        raise InvalidPriceError(f"Price must be non-negative, got {price!r}")
    if isinstance(pip_size, bool) or not isinstance(pip_size, int) or pip_size < 0:
        raise InvalidPriceError(f"pip_size must be a non-negative int, got {pip_size!r}")

    try:
        scaled = price * 10 ** pip_size
    except OverflowError:
        raise InvalidPriceError(f"pip_size {pip_size} is out of float range") from None
    if not math.isfinite(scaled):
        raise InvalidPriceError(f"Price {price!r} at pip_size {pip_size} is out of float range")

    return math.floor(scaled % 10)


def digits_from_prices(prices: Iterable[float], pip_size: int = 4) -> tuple[int, ...]:
    """One digit per price, same order."""
    return tuple(extract_last_digit(p, pip_size) for p in prices)


def _check_digits(digits: Sequence[int]) -> None:
    for d in digits:
        if isinstance(d, bool) or not isinstance(d, (int, np.integer)) or not 0 <= d <= 9:
            raise ValueError(f"Digits must be ints in 0..9, got {d!r}")


def pattern_hits(digits: Sequence[int]) -> tuple[bool, ...]:
    """
    Per position: does the digit equal (previous + one before) % 10?

    Positions 0 and 1 have no prediction and are always False.
    """
    hits = [False] * min(len(digits), 2)
    for i in range(2, len(digits)):
        hits.append(digits[i] == (digits[i - 1] + digits[i - 2]) % 10)
    return tuple(hits)


def consecutive_ratios(digits: Sequence[int]) -> tuple[RatioSample, ...]:
    """Ratios of adjacent digits. Pairs starting with 0 are skipped, not inf."""
    samples: list[RatioSample] = []
    for i in range(len(digits) - 1):
        d1, d2 = digits[i], digits[i + 1]
        if d1 == 0:
            continue
        samples.append(RatioSample(index=i, digit1=d1, digit2=d2, ratio=d2 / d1))
    return tuple(samples)


def expected_frequency(total: int) -> float:
    """Count per digit under a uniform distribution."""
    return total / NUM_DIGITS


def distribution_score(frequency: Sequence[int]) -> float:
    """
    1 - chi2 / (total * 9), chi2 taken against total / 10 per bucket.

    Returns 0.0 for an empty table.
    """
    counts = np.asarray(frequency, dtype=np.float64)
    total = counts.sum()
    if total <= 0:
        return 0.0

    ideal = expected_frequency(total)
    chi_square = float(((counts - ideal) ** 2 / ideal).sum())
    return 1.0 - chi_square / (total * 9)


def analyze(digits: Sequence[int]) -> AnalysisResult:
    """
    Compute all statistics for a digit series.

    Empty input returns EMPTY_RESULT rather than raising. Digits outside
    0..9 raise ValueError.
    """
    if len(digits) == 0:
        return EMPTY_RESULT

    _check_digits(digits)

    arr = np.asarray(digits, dtype=np.int64)
    frequency = tuple(int(c) for c in np.bincount(arr, minlength=NUM_DIGITS))

    hits = pattern_hits(digits)

    return AnalysisResult(
        frequency=frequency,
        pattern_matches=sum(hits),
        pattern_trials=len(digits) - 2,
        correlation=distribution_score(frequency),
        ratios=consecutive_ratios(digits),
    )


def insights(result: AnalysisResult) -> Insights:
    """Wording thresholds used by the dashboard's findings panel."""
    if result.correlation > 0.7:
        correlation = "Strong"
    elif result.correlation > 0.5:
        correlation = "Moderate"
    else:
        correlation = "Weak"

    return Insights(
        pattern="some presence" if result.pattern_match_ratio > 0.15 else "little presence",
        correlation=correlation,
        clustered=max(result.frequency) > result.total / 5,
    )
