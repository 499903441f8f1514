#!/usr/bin/env python3
"""
Tick Viewer - last-digit analysis of Deriv tick history.

Usage:
    python -m tick_viewer.main R_50 --count 99
    python -m tick_viewer.main R_100 --demo --once

Controls:
    q - Quit
    r - Refresh data now
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .config import APP_IDS, Settings, load_settings
from .errors import ConfigurationError, TickViewerError

logger = logging.getLogger(__name__)


async def run_once(settings: Settings) -> int:
    """Fetch one batch of history, print the analysis, exit. Returns exit code."""

    # Import here to avoid slow startup for --help
    from rich.console import Console

    from .datafeed.deriv_client import TickSession, open_session
    from .datafeed.protocol import MessageKind, classify, parse_history
    from .engine.digits import analyze, digits_from_prices
    from .ui.digit_view import render_report

    console = Console()
    done = asyncio.Event()
    failure: list[TickViewerError] = []

    async def on_open(session: TickSession) -> None:
        try:
            await session.send_history_request(symbol=settings.symbol, count=settings.count)
        except TickViewerError as e:
            failure.append(e)
            done.set()

    def on_message(payload: dict) -> None:
        if classify(payload) is not MessageKind.HISTORY:
            return
        try:
            response = parse_history(payload)
            digits = digits_from_prices(response.prices, response.pip_size)
        except TickViewerError as e:
            failure.append(e)
        else:
            console.print(f"[bold]{settings.symbol}[/bold]: {len(digits)} ticks, "
                          f"pip size {response.pip_size}")
            console.print(render_report(digits, analyze(digits)))
        done.set()

    def on_error(exc: TickViewerError) -> None:
        failure.append(exc)
        done.set()

    session = open_session(settings.endpoint, keepalive_ms=settings.keepalive_ms)
    session.register_handlers(
        on_open=on_open,
        on_message=on_message,
        on_error=on_error,
        on_close=lambda _s: done.set(),
    )

    try:
        await done.wait()
    finally:
        await session.close()

    if failure:
        console.print(str(failure[0]), style="red", markup=False)
        return 1
    return 0


async def main(settings: Settings, once: bool) -> int:
    """Main entry point - one-shot report or the interactive dashboard."""
    print(f"Starting Tick Viewer for {settings.symbol}...", file=sys.stderr)
    print(f"  App id: {settings.app_id}", file=sys.stderr)
    print(f"  Ticks: {settings.count}", file=sys.stderr)

    if once:
        return await run_once(settings)

    from .ui.digit_view import run_ui

    await run_ui(
        settings.endpoint,
        settings.symbol,
        settings.count,
        settings.refresh_ms,
        settings.keepalive_ms,
    )
    return 0


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Tick Viewer - last-digit analysis of Deriv tick history",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m tick_viewer.main R_50
    python -m tick_viewer.main R_100 --count 500 --refresh 10
    python -m tick_viewer.main R_50 --demo --once
        """
    )

    parser.add_argument(
        "symbol",
        nargs="?",
        default=settings.symbol,
        help=f"Symbol to request (default: {settings.symbol})"
    )

    parser.add_argument(
        "--count",
        type=int,
        default=settings.count,
        help=f"Number of ticks per request (default: {settings.count})"
    )

    app_group = parser.add_mutually_exclusive_group()
    app_group.add_argument(
        "--demo",
        action="store_true",
        help=f"Use the demo app id ({APP_IDS.DEMO})"
    )
    app_group.add_argument(
        "--app-id",
        type=int,
        default=settings.app_id,
        help=f"Application id (default: {settings.app_id})"
    )

    parser.add_argument(
        "--refresh",
        type=float,
        default=settings.refresh_ms / 1000,
        help=f"Refresh interval in seconds (default: {settings.refresh_ms / 1000:g})"
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Print one analysis and exit instead of starting the dashboard"
    )

    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help=f"Logging level (default: {settings.log_level})"
    )
    return parser


def apply_args(settings: Settings, args: argparse.Namespace) -> Settings:
    """Fold CLI flags into settings."""
    if args.count <= 0:
        raise ConfigurationError(f"--count must be positive, got {args.count}")
    if args.refresh <= 0:
        raise ConfigurationError(f"--refresh must be positive, got {args.refresh}")

    return Settings(
        app_id=APP_IDS.DEMO if args.demo else args.app_id,
        ws_url=settings.ws_url,
        symbol=args.symbol,
        count=args.count,
        keepalive_ms=settings.keepalive_ms,
        refresh_ms=int(args.refresh * 1000),
        log_level=args.log_level.upper(),
    )


def cli(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    from .log import setup_logging

    try:
        settings = load_settings()
        args = build_parser(settings).parse_args(argv)
        settings = apply_args(settings, args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(settings.log_level)

    try:
        code = asyncio.run(main(settings, args.once))
    except TickViewerError as e:
        logger.error("%s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nShutdown requested.", file=sys.stderr)
        sys.exit(0)
    sys.exit(code)


if __name__ == "__main__":
    cli()
