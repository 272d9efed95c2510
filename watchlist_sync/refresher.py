"""Periodic refresh of the volatile fields for already-loaded keys.

The refresher never fetches a full record.  It splits the loaded keys into
fixed-size batches and asks the data source for one combined price fetch per
batch, one batch at a time.  It yields to the full loader: when a full load is
running it does nothing, and a full load that starts mid-cycle stops the
remaining batches.
"""

from __future__ import annotations

import asyncio
import time
from typing import List, Optional, Sequence

from log_utils import setup_logger
from observability import log_event, record_metric
from watchlist_sync.cache import RecordCache, normalize_key
from watchlist_sync.epoch import EpochToken
from watchlist_sync.errors import FetchError
from watchlist_sync.loader import FullLoader
from watchlist_sync.pacing import FixedDelay, PacingPolicy
from watchlist_sync.source import DataSource
from watchlist_sync.types import CycleStatus, RefreshOutcome

logger = setup_logger(__name__)


def partition(keys: Sequence[str], size: int) -> List[List[str]]:
    """Split ``keys`` into consecutive batches of at most ``size`` items."""

    if size <= 0:
        raise ValueError("batch size must be positive")
    return [list(keys[start:start + size]) for start in range(0, len(keys), size)]


class PriceRefresher:
    """Batch price refresher gated on the full loader."""

    def __init__(
        self,
        cache: RecordCache,
        source: DataSource,
        loader: FullLoader,
        *,
        batch_size: int = 5,
        pacing: Optional[PacingPolicy] = None,
    ) -> None:
        self._cache = cache
        self._source = source
        self._loader = loader
        self.batch_size = max(1, int(batch_size))
        self._pacing = pacing or FixedDelay(0.5)

    def loaded_keys(self, keys: Sequence[str]) -> List[str]:
        return [normalize_key(key) for key in keys if self._cache.has(key)]

    def blocked_reason(
        self, keys: Sequence[str], token: EpochToken, *, focus_exclusive: bool = False
    ) -> Optional[str]:
        """Why a cycle may not run right now, or ``None`` when it may."""

        if token.cancelled:
            return "epoch_invalidated"
        if self._loader.in_progress:
            return "full_load_in_progress"
        if not self._loader.is_loaded_for(token):
            return "not_fully_loaded"
        if focus_exclusive:
            return "focus_exclusive"
        if not self.loaded_keys(keys):
            return "nothing_loaded"
        return None

    async def run_cycle(
        self, keys: Sequence[str], token: EpochToken, *, focus_exclusive: bool = False
    ) -> RefreshOutcome:
        """Refresh the volatile fields of every loaded key in ``keys`` once."""

        reason = self.blocked_reason(keys, token, focus_exclusive=focus_exclusive)
        if reason is not None:
            status = CycleStatus.CANCELLED if reason == "epoch_invalidated" else CycleStatus.SUPPRESSED
            logger.debug("Price refresh suppressed (epoch=%s, reason=%s)", token.epoch, reason)
            return RefreshOutcome(status, token.epoch)

        batches = partition(self.loaded_keys(keys), self.batch_size)
        status = CycleStatus.COMPLETED
        attempted: List[tuple[str, ...]] = []
        patched: List[str] = []
        failed_batches = 0
        started = time.perf_counter()
        for index, batch in enumerate(batches):
            if token.cancelled:
                status = CycleStatus.CANCELLED
                break
            if self._loader.in_progress:
                # full loads take precedence over price refreshes
                status = CycleStatus.PREEMPTED
                break
            attempted.append(tuple(batch))
            batch_started = time.perf_counter()
            try:
                result = await self._source.fetch_prices(batch)
            except FetchError as exc:
                failed_batches += 1
                logger.warning("Price batch %d/%d failed: %s", index + 1, len(batches), exc)
                log_event(
                    logger,
                    "price_refresh_batch_failed",
                    epoch=token.epoch,
                    batch=index + 1,
                    keys=list(batch),
                    message=str(exc),
                )
            except asyncio.CancelledError:
                raise
            except Exception:
                failed_batches += 1
                logger.exception("Unexpected error refreshing price batch %d/%d", index + 1, len(batches))
            else:
                if token.cancelled:
                    status = CycleStatus.CANCELLED
                    break
                for patch in result:
                    if self._cache.patch_volatile(patch.key, patch.fields):
                        patched.append(normalize_key(patch.key))
                record_metric(
                    "price_batch_ms",
                    (time.perf_counter() - batch_started) * 1000.0,
                    labels={"size": len(batch)},
                )
                logger.info("Price batch OK (%d/%d, %d keys)", index + 1, len(batches), len(batch))

            if index < len(batches) - 1:
                logger.info("Waiting before next price batch")
                await self._pacing.wait()

        record_metric("price_refresh_patched", float(len(patched)), labels={"epoch": token.epoch})
        log_event(
            logger,
            "price_refresh_finished",
            epoch=token.epoch,
            status=status.value,
            batches=len(attempted),
            failed_batches=failed_batches,
            patched=len(patched),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return RefreshOutcome(
            status=status,
            epoch=token.epoch,
            batches=tuple(attempted),
            failed_batches=failed_batches,
            patched=tuple(patched),
        )


__all__ = ["PriceRefresher", "partition"]
