"""Coordinator that keeps the tracked set loaded and its prices fresh.

The coordinator owns the epoch clock, the shared :class:`RecordCache`, one
:class:`FullLoader` and one :class:`PriceRefresher`.  Replacing the tracked set
(or forcing a refresh) starts a new epoch, which invalidates any loader or
refresher step still working for the old one; those steps notice at their next
check and stop without writing.  Once the full load of the current epoch has
finished, a recurring timer drives price refresh cycles until the next epoch
change or teardown.

All public methods that start work must be called from inside a running
asyncio event loop.  Reads (snapshots, progress) are safe from any thread.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, List, Optional, Set, Tuple

import pandas as pd

from config import SyncSettings, load_sync_settings
from log_utils import setup_logger
from observability import log_event
from watchlist_sync.cache import Record, RecordCache, normalize_key
from watchlist_sync.epoch import EpochClock, EpochToken
from watchlist_sync.errors import FetchError
from watchlist_sync.inflight import InFlightGuard
from watchlist_sync.loader import FullLoader
from watchlist_sync.pacing import FixedDelay, PacingPolicy, Sleeper
from watchlist_sync.progress import LoadProgress, ProgressCallback, emit_progress
from watchlist_sync.refresher import PriceRefresher
from watchlist_sync.source import DataSource
from watchlist_sync.types import CycleStatus, LoadOutcome, RecordCallback, RefreshOutcome, SyncState

logger = setup_logger(__name__)


class WatchlistCoordinator:
    """Arbitrate full loads and price refreshes across tracked-set changes."""

    def __init__(
        self,
        source: DataSource,
        settings: Optional[SyncSettings] = None,
        *,
        cache: Optional[RecordCache] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_record_loaded: Optional[RecordCallback] = None,
        sleep: Optional[Sleeper] = None,
        full_load_pacing: Optional[PacingPolicy] = None,
        refresh_pacing: Optional[PacingPolicy] = None,
    ) -> None:
        self.settings = settings or load_sync_settings()
        self.cache = cache if cache is not None else RecordCache(self.settings.volatile_fields)
        self._source = source
        self._sleep = sleep or asyncio.sleep
        self._on_progress = on_progress
        self._on_record_loaded = on_record_loaded
        self._epochs = EpochClock()
        self._token = self._epochs.token()
        self._keys: Tuple[str, ...] = ()
        self._has_tracked_set = False
        self._progress = LoadProgress()
        self._state = SyncState.IDLE
        self._focus_exclusive = False
        self._closed = False
        self._refreshing = False
        self._load_tasks: Set[asyncio.Task] = set()
        self._queued_epoch: Optional[int] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._loaded_event = asyncio.Event()
        # shared by the full loader and single-key re-fetches
        self._inflight = InFlightGuard()
        self.loader = FullLoader(
            self.cache,
            source,
            pacing=full_load_pacing or FixedDelay(self.settings.full_load_inter_item_delay, sleep=self._sleep),
            ttl=self.settings.full_cache_ttl,
            on_progress=self._handle_progress,
            on_record_loaded=self._handle_record_loaded,
            inflight=self._inflight,
        )
        self.refresher = PriceRefresher(
            self.cache,
            source,
            self.loader,
            batch_size=self.settings.refresh_batch_size,
            pacing=refresh_pacing or FixedDelay(self.settings.refresh_batch_delay, sleep=self._sleep),
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def epoch(self) -> int:
        return self._token.epoch

    @property
    def tracked_keys(self) -> Tuple[str, ...]:
        return self._keys

    @property
    def focus_exclusive(self) -> bool:
        return self._focus_exclusive

    @property
    def closed(self) -> bool:
        return self._closed

    def current_snapshot(self) -> List[Record]:
        """Loaded records of the tracked set, in tracked-set order."""

        return self.cache.snapshot(self._keys)

    def current_progress(self) -> LoadProgress:
        return self._progress

    def current_frame(self) -> pd.DataFrame:
        return self.cache.snapshot_frame(self._keys)

    # ------------------------------------------------------------------
    # Consumer surface
    # ------------------------------------------------------------------
    def set_tracked_set(self, keys: Iterable[str]) -> bool:
        """Track ``keys``; returns ``False`` when the sequence did not change.

        Keys are normalised (stripped, upper-cased, empties dropped, duplicates
        collapsed to their first position) before the value comparison, so
        ``["aapl", "AAPL"]`` equals a current ``("AAPL",)``.
        """

        self._ensure_open()
        asyncio.get_running_loop()
        normalized = tuple(dict.fromkeys(key for key in (normalize_key(k) for k in keys) if key))
        if self._has_tracked_set and normalized == self._keys:
            return False
        previous = len(self._keys)
        self._keys = normalized
        self._has_tracked_set = True
        token = self._begin_epoch()
        log_event(
            logger,
            "tracked_set_changed",
            epoch=token.epoch,
            previous=previous,
            total=len(normalized),
        )
        self._start_load(token)
        return True

    def force_refresh(self) -> bool:
        """Evict the tracked set from the cache and reload it from scratch."""

        self._ensure_open()
        asyncio.get_running_loop()
        if not self._has_tracked_set:
            logger.info("Force refresh ignored; no tracked set yet")
            return False
        evicted = self.cache.evict(self._keys)
        token = self._begin_epoch()
        logger.info("Force refresh (epoch=%s, evicted=%d)", token.epoch, evicted)
        log_event(logger, "force_refresh", epoch=token.epoch, evicted=evicted, total=len(self._keys))
        self._start_load(token)
        return True

    def notify_focus_exclusive(self, active: bool) -> None:
        """Suppress (``True``) or resume (``False``) price refreshes."""

        active = bool(active)
        if active == self._focus_exclusive:
            return
        self._focus_exclusive = active
        logger.info("Focus-exclusive %s", "engaged" if active else "released")

    async def refresh_key(self, key: str) -> bool:
        """Re-fetch the full record of one key, rejecting duplicate requests.

        A request for a key the full loader is fetching right now is rejected
        too; the loader skips a key whose re-fetch is already in flight.  The
        result is written unless the coordinator closed meanwhile, or the
        epoch moved on and the key is no longer tracked.
        """

        self._ensure_open()
        normalized = normalize_key(key)
        if not self._inflight.try_acquire(normalized):
            logger.info("Full re-fetch for %s already in flight; request rejected", normalized)
            return False
        token = self._token
        try:
            record = await self._source.fetch_full(normalized)
        except FetchError as exc:
            logger.warning("Full re-fetch for %s failed: %s", normalized, exc)
            return False
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Unexpected error re-fetching %s", normalized)
            return False
        else:
            if self._closed or (token.cancelled and normalized not in self._keys):
                return False
            self.cache.set(normalized, record)
            if normalized in self._keys:
                self._handle_progress(self.loader.progress_for(self._keys))
            self._handle_record_loaded(normalized, record)
            return True
        finally:
            self._inflight.release(normalized)

    async def refresh_now(self) -> RefreshOutcome:
        """Run one price refresh cycle immediately, subject to the usual gates."""

        self._ensure_open()
        return await self._tick(self._token)

    async def wait_until_loaded(self, timeout: Optional[float] = None) -> LoadProgress:
        """Wait until the full load of the current epoch has finished."""

        async def _wait() -> LoadProgress:
            while True:
                event = self._loaded_event
                await event.wait()
                if event is self._loaded_event or self._closed:
                    return self._progress

        return await asyncio.wait_for(_wait(), timeout=timeout)

    def close(self) -> None:
        """Tear down: stop the refresh timer and invalidate the current epoch."""

        if self._closed:
            return
        self._closed = True
        self._epochs.close()
        self._state = SyncState.CLOSED
        self._cancel_timer()
        self._loaded_event.set()
        log_event(logger, "coordinator_closed", epoch=self._token.epoch)

    async def aclose(self) -> None:
        """Tear down and wait for in-flight cycles to observe the invalidation."""

        timer = self._timer_task
        self.close()
        pending = [task for task in (*self._load_tasks, timer) if task is not None]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("WatchlistCoordinator has been closed")

    def _begin_epoch(self) -> EpochToken:
        self._cancel_timer()
        token = self._epochs.advance()
        self._token = token
        self._state = SyncState.LOADING
        # wake waiters of the previous epoch so they re-check the new one
        previous_event = self._loaded_event
        self._loaded_event = asyncio.Event()
        previous_event.set()
        self._handle_progress(self.loader.progress_for(self._keys))
        return token

    def _handle_progress(self, progress: LoadProgress) -> None:
        self._progress = progress
        emit_progress(self._on_progress, progress)

    def _handle_record_loaded(self, key: str, record: Record) -> None:
        if self._on_record_loaded is None:
            return
        try:
            self._on_record_loaded(key, record)
        except Exception:
            logger.debug("Record-loaded callback failed for %s", key, exc_info=True)

    def _start_load(self, token: EpochToken) -> None:
        loop = asyncio.get_running_loop()
        self._queued_epoch = token.epoch
        task = loop.create_task(self._run_load(token, self._keys), name=f"watchlist-load-{token.epoch}")
        self._load_tasks.add(task)
        task.add_done_callback(self._load_tasks.discard)

    async def _run_load(self, token: EpochToken, keys: Tuple[str, ...]) -> Optional[LoadOutcome]:
        if self._queued_epoch == token.epoch:
            self._queued_epoch = None
        try:
            outcome = await self.loader.run(keys, token)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Full load for epoch %s crashed", token.epoch)
            return None
        self._after_load(token, outcome)
        return outcome

    def _after_load(self, token: EpochToken, outcome: LoadOutcome) -> None:
        if self._closed:
            return
        if outcome.status is CycleStatus.SKIPPED:
            # the cycle holding the loader re-triggers this epoch when it ends
            return
        current = self._token
        if token.epoch != current.epoch:
            if self._queued_epoch == current.epoch:
                return
            if not self.loader.in_progress and not self.loader.is_loaded_for(current):
                logger.info("Stale full load (epoch=%s) ended; loading epoch %s", token.epoch, current.epoch)
                self._start_load(current)
            return
        self._state = SyncState.READY
        self._loaded_event.set()
        self._arm_timer(current)

    def _arm_timer(self, token: EpochToken) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer_task = loop.create_task(self._timer_loop(token), name=f"watchlist-timer-{token.epoch}")

    def _cancel_timer(self) -> None:
        task = self._timer_task
        self._timer_task = None
        if task is not None and not task.done():
            task.cancel()

    async def _timer_loop(self, token: EpochToken) -> None:
        interval = self.settings.refresh_interval
        while token.is_current:
            await self._sleep(interval)
            if token.cancelled:
                return
            logger.info("Timer tick (epoch=%s)", token.epoch)
            try:
                await self._tick(token)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Price refresh tick failed (epoch=%s)", token.epoch)

    async def _tick(self, token: EpochToken) -> RefreshOutcome:
        if self._refreshing:
            return RefreshOutcome(CycleStatus.SKIPPED, token.epoch)
        reason = self.refresher.blocked_reason(self._keys, token, focus_exclusive=self._focus_exclusive)
        if reason is not None:
            logger.debug("Refresh tick suppressed (epoch=%s, reason=%s)", token.epoch, reason)
            status = CycleStatus.CANCELLED if token.cancelled else CycleStatus.SUPPRESSED
            return RefreshOutcome(status, token.epoch)
        self._refreshing = True
        self._state = SyncState.REFRESHING
        try:
            return await self.refresher.run_cycle(
                self._keys, token, focus_exclusive=self._focus_exclusive
            )
        finally:
            self._refreshing = False
            if token.is_current and self._state is SyncState.REFRESHING:
                self._state = SyncState.READY


__all__ = ["WatchlistCoordinator"]
