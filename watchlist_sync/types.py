from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Tuple

from watchlist_sync.cache import Record


class CycleStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    UP_TO_DATE = "up_to_date"
    SUPPRESSED = "suppressed"
    PREEMPTED = "preempted"


class SyncState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    REFRESHING = "refreshing"
    CLOSED = "closed"


@dataclass(frozen=True)
class LoadOutcome:
    """Result of one full-load cycle."""

    status: CycleStatus
    epoch: int
    attempted: Tuple[str, ...] = ()
    loaded: Tuple[str, ...] = ()
    failed: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RefreshOutcome:
    """Result of one price-refresh cycle."""

    status: CycleStatus
    epoch: int
    batches: Tuple[Tuple[str, ...], ...] = ()
    failed_batches: int = 0
    patched: Tuple[str, ...] = field(default_factory=tuple)


RecordCallback = Callable[[str, Record], Any]


__all__ = ["CycleStatus", "LoadOutcome", "RecordCallback", "RefreshOutcome", "SyncState"]
