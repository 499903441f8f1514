#!/usr/bin/env python3
"""
Micro-benchmark for the last-digit analyzer.

Tests:
1. Digit extraction throughput
2. Full analysis of a dashboard-sized batch (99 ticks)
3. Full analysis of a large batch (5000 ticks)

Usage:
    python -m tick_viewer.benchmark
"""

from __future__ import annotations

import random
import time
from statistics import mean, stdev

from .engine.digits import DEFAULT_TICK_COUNT, analyze, digits_from_prices


def generate_mock_prices(count: int, base_price: float = 250.0, pip_size: int = 4) -> list[float]:
    """Random walk of prices rounded to pip_size decimals."""
    prices = []
    price = base_price
    for _ in range(count):
        price = max(0.0, price + random.uniform(-0.5, 0.5))
        prices.append(round(price, pip_size))
    return prices


def benchmark_extraction(iterations: int = 200_000) -> None:
    """Benchmark last-digit extraction."""
    print("\n=== Digit Extraction Benchmark ===")

    prices = generate_mock_prices(iterations)

    start = time.perf_counter()
    digits_from_prices(prices, 4)
    elapsed = time.perf_counter() - start

    rate = iterations / elapsed
    print(f"  Prices: {iterations:,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {rate:,.0f} prices/sec")
    print(f"  Per price: {elapsed/iterations*1_000_000:.2f}µs")


def benchmark_analysis(count: int, iterations: int) -> None:
    """Benchmark analyze() for one batch size."""
    print(f"\n=== Analysis Benchmark ({count} ticks) ===")

    digits = digits_from_prices(generate_mock_prices(count), 4)

    # Warm up
    for _ in range(10):
        analyze(digits)

    times = []
    for _ in range(iterations):
        start = time.perf_counter()
        analyze(digits)
        times.append(time.perf_counter() - start)

    avg_time = mean(times) * 1000
    std_time = stdev(times) * 1000

    print(f"  Iterations: {iterations}")
    print(f"  Avg time: {avg_time:.3f}ms")
    print(f"  Std dev: {std_time:.3f}ms")
    print(f"  Rate: {1000/avg_time:,.0f} calls/sec")


def main() -> None:
    """Run all benchmarks."""
    print("=" * 60)
    print("Tick Viewer Analyzer Benchmark")
    print("=" * 60)

    benchmark_extraction()
    benchmark_analysis(DEFAULT_TICK_COUNT, iterations=2000)
    benchmark_analysis(5000, iterations=200)

    print("\n" + "=" * 60)
    print("Benchmark complete.")
    print("=" * 60)


if __name__ == "__main__":
    main()
