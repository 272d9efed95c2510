from __future__ import annotations

import argparse
import asyncio
from dataclasses import replace
from typing import Optional, Sequence

import pandas as pd

from config import load_sync_settings
from watchlist_sync.coordinator import WatchlistCoordinator
from watchlist_sync.pacing import TokenBucket
from watchlist_sync.progress import LoadProgress
from watchlist_sync.source import StockApiSource


def _parse_symbols(raw_symbols: str) -> list[str]:
    symbols = [s.strip().upper() for s in raw_symbols.split(",") if s.strip()]
    if not symbols:
        raise argparse.ArgumentTypeError("Provide --symbols (comma-separated).")
    return symbols


def _print_progress(progress: LoadProgress) -> None:
    loading = f" loading {progress.currently_loading}" if progress.currently_loading else ""
    print(f"  loaded {progress.loaded_count}/{progress.total_count} ({progress.percent:.0%}){loading}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Keep a watchlist loaded and its prices fresh.")
    parser.add_argument("--symbols", required=True, type=_parse_symbols, help="Comma-separated symbols")
    parser.add_argument("--api-url", help="Stock API base URL (defaults to WATCHLIST_API_URL)")
    parser.add_argument("--duration", type=float, default=60.0, help="Seconds to keep syncing")
    parser.add_argument("--refresh-interval-ms", type=int, help="Override the price refresh period")
    parser.add_argument("--batch-size", type=int, help="Override the price batch size")
    parser.add_argument(
        "--rate", type=float, help="Cap full fetches at this many requests per second (token bucket)"
    )
    return parser


async def run_watch(args: argparse.Namespace) -> pd.DataFrame:
    settings = load_sync_settings()
    overrides = {}
    if args.api_url:
        overrides["api_base_url"] = args.api_url
    if args.refresh_interval_ms is not None:
        overrides["refresh_interval_ms"] = args.refresh_interval_ms
    if args.batch_size is not None:
        overrides["refresh_batch_size"] = args.batch_size
    if overrides:
        settings = replace(settings, **overrides)

    source = StockApiSource(settings.api_base_url, timeout=settings.request_timeout)
    full_load_pacing = TokenBucket(args.rate) if args.rate and args.rate > 0 else None
    coordinator = WatchlistCoordinator(
        source, settings, on_progress=_print_progress, full_load_pacing=full_load_pacing
    )
    try:
        print(f"Tracking {', '.join(args.symbols)} via {settings.api_base_url}")
        coordinator.set_tracked_set(args.symbols)
        await asyncio.sleep(max(0.0, float(args.duration)))
        return coordinator.current_frame()
    finally:
        await coordinator.aclose()
        source.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    frame = asyncio.run(run_watch(args))
    if frame.empty:
        print("No records loaded.")
        return 1
    print(frame.to_string())
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
