"""Sequential full loader for the tracked set.

Only keys without a usable cache entry are fetched, strictly one after the
other in tracked-set order, with a pacing policy between requests.  At most
one cycle runs per loader: a second ``run`` while one is active returns
``SKIPPED`` straight away instead of queueing, and the coordinator re-triggers
once the active cycle has finished.

A failing key is logged and skipped.  It stays absent from the cache until the
next cycle (new epoch or forced refresh) tries it again.
"""

from __future__ import annotations

import asyncio
import time
from typing import List, Optional, Sequence

from log_utils import setup_logger
from observability import log_event, record_metric
from watchlist_sync.cache import Record, RecordCache, normalize_key
from watchlist_sync.epoch import EpochToken
from watchlist_sync.errors import NotFoundError, TransientFetchError
from watchlist_sync.inflight import InFlightGuard
from watchlist_sync.pacing import FixedDelay, PacingPolicy
from watchlist_sync.progress import LoadProgress, ProgressCallback, emit_progress
from watchlist_sync.source import DataSource
from watchlist_sync.types import CycleStatus, LoadOutcome, RecordCallback

logger = setup_logger(__name__)


class FullLoader:
    """Fill the cache with full records for every key of the tracked set."""

    def __init__(
        self,
        cache: RecordCache,
        source: DataSource,
        *,
        pacing: Optional[PacingPolicy] = None,
        ttl: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_record_loaded: Optional[RecordCallback] = None,
        inflight: Optional[InFlightGuard] = None,
    ) -> None:
        self._cache = cache
        self._source = source
        self._pacing = pacing or FixedDelay(0.5)
        self._ttl = ttl
        self._on_progress = on_progress
        self._on_record_loaded = on_record_loaded
        self._inflight = inflight if inflight is not None else InFlightGuard()
        self._busy = False
        self._active_epoch: Optional[int] = None
        self.loaded_epoch: Optional[int] = None

    @property
    def in_progress(self) -> bool:
        """Whether a full-load cycle currently holds the loader."""

        return self._busy

    @property
    def active_epoch(self) -> Optional[int]:
        return self._active_epoch

    def is_loaded_for(self, token: EpochToken) -> bool:
        return token.is_current and self.loaded_epoch == token.epoch

    def _mark_loaded(self, token: EpochToken) -> None:
        # epochs only move forward; a late stale cycle must not clear a newer marker
        if self.loaded_epoch is None or token.epoch > self.loaded_epoch:
            self.loaded_epoch = token.epoch

    def progress_for(self, keys: Sequence[str], currently_loading: Optional[str] = None) -> LoadProgress:
        loaded = sum(1 for key in keys if self._cache.has(key))
        return LoadProgress(loaded_count=loaded, total_count=len(keys), currently_loading=currently_loading)

    def _publish(self, token: EpochToken, progress: LoadProgress) -> None:
        # progress of a superseded epoch belongs to nobody
        if token.is_current:
            emit_progress(self._on_progress, progress)

    def _notify_loaded(self, key: str, record: Record) -> None:
        if self._on_record_loaded is None:
            return
        try:
            self._on_record_loaded(key, record)
        except Exception:
            logger.debug("Record-loaded callback failed for %s", key, exc_info=True)

    async def run(self, keys: Sequence[str], token: EpochToken) -> LoadOutcome:
        """Load every missing key of ``keys`` for the epoch behind ``token``."""

        tracked = [normalize_key(key) for key in keys]
        if token.cancelled:
            return LoadOutcome(CycleStatus.CANCELLED, token.epoch)

        missing = self._cache.missing(tracked, ttl=self._ttl)
        if not missing:
            self._mark_loaded(token)
            self._publish(token, LoadProgress(len(tracked), len(tracked)))
            return LoadOutcome(CycleStatus.UP_TO_DATE, token.epoch)

        if self._busy:
            logger.debug(
                "Full load for epoch %s skipped; epoch %s still loading",
                token.epoch,
                self._active_epoch,
            )
            return LoadOutcome(CycleStatus.SKIPPED, token.epoch)

        self._busy = True
        self._active_epoch = token.epoch
        status = CycleStatus.COMPLETED
        attempted: List[str] = []
        loaded: List[str] = []
        failed: List[str] = []
        started = time.perf_counter()
        logger.info(
            "Full load started (epoch=%s, missing=%d/%d)", token.epoch, len(missing), len(tracked)
        )
        log_event(logger, "full_load_started", epoch=token.epoch, missing=len(missing), total=len(tracked))
        try:
            for index, key in enumerate(missing):
                if token.cancelled:
                    status = CycleStatus.CANCELLED
                    break
                if not self._inflight.try_acquire(key):
                    # a single-key re-fetch already owns this request
                    logger.info("Full fetch for %s already in flight; skipped this cycle", key)
                    continue
                attempted.append(key)
                self._publish(token, self.progress_for(tracked, key))
                logger.info("Fetching full record for %s", key)
                fetch_started = time.perf_counter()
                try:
                    record = await self._source.fetch_full(key)
                except NotFoundError as exc:
                    failed.append(key)
                    logger.warning("Full fetch for %s: not found upstream (%s)", key, exc)
                    log_event(logger, "full_load_key_failed", key=key, reason="not_found", epoch=token.epoch)
                except TransientFetchError as exc:
                    failed.append(key)
                    logger.warning("Full fetch for %s failed transiently: %s", key, exc)
                    log_event(logger, "full_load_key_failed", key=key, reason="transient", epoch=token.epoch)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    failed.append(key)
                    logger.exception("Unexpected error fetching full record for %s", key)
                    log_event(logger, "full_load_key_failed", key=key, reason="unexpected", epoch=token.epoch)
                else:
                    if token.cancelled:
                        # the tracked set moved on while this request was in flight
                        status = CycleStatus.CANCELLED
                        break
                    self._cache.set(key, record)
                    loaded.append(key)
                    record_metric(
                        "full_fetch_ms",
                        (time.perf_counter() - fetch_started) * 1000.0,
                        labels={"key": key},
                    )
                    logger.info("Full fetch OK for %s", key)
                    self._publish(token, self.progress_for(tracked))
                    self._notify_loaded(key, record)
                finally:
                    self._inflight.release(key)

                if index < len(missing) - 1:
                    logger.info("Waiting before next full fetch")
                    await self._pacing.wait()
        finally:
            self._busy = False
            self._active_epoch = None
            self._mark_loaded(token)

        self._publish(token, self.progress_for(tracked))
        record_metric("full_load_keys_loaded", float(len(loaded)), labels={"epoch": token.epoch})
        log_event(
            logger,
            "full_load_finished",
            epoch=token.epoch,
            status=status.value,
            loaded=len(loaded),
            failed=len(failed),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        logger.info(
            "Full load finished (epoch=%s, status=%s, loaded=%d, failed=%d)",
            token.epoch,
            status.value,
            len(loaded),
            len(failed),
        )
        return LoadOutcome(
            status=status,
            epoch=token.epoch,
            attempted=tuple(attempted),
            loaded=tuple(loaded),
            failed=tuple(failed),
        )


__all__ = ["FullLoader"]
