"""Watchlist synchronisation engine.

Keeps a tracked set of instrument records loaded and their prices fresh
without overwhelming the upstream source: a cache of full records, a
sequential full loader, a batched price refresher and a coordinator that
arbitrates between them across tracked-set changes.
"""
from __future__ import annotations

from .cache import CacheEntry, Record, RecordCache, normalize_key
from .epoch import EpochClock, EpochToken
from .errors import FetchError, NotFoundError, TransientFetchError
from .pacing import FixedDelay, PacingPolicy, TokenBucket
from .progress import LoadProgress, ProgressCallback
from .types import CycleStatus, LoadOutcome, RefreshOutcome, SyncState
from .source import DataSource, PricePatch, StockApiSource, extract_volatile, flatten_record
from .inflight import InFlightGuard
from .loader import FullLoader
from .refresher import PriceRefresher, partition
from .coordinator import WatchlistCoordinator

__all__ = [
    "CacheEntry",
    "Record",
    "RecordCache",
    "normalize_key",
    "EpochClock",
    "EpochToken",
    "FetchError",
    "NotFoundError",
    "TransientFetchError",
    "FixedDelay",
    "PacingPolicy",
    "TokenBucket",
    "LoadProgress",
    "ProgressCallback",
    "CycleStatus",
    "LoadOutcome",
    "RefreshOutcome",
    "SyncState",
    "DataSource",
    "PricePatch",
    "StockApiSource",
    "extract_volatile",
    "flatten_record",
    "InFlightGuard",
    "FullLoader",
    "PriceRefresher",
    "partition",
    "WatchlistCoordinator",
]
