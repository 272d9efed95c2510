"""In-memory store of the latest full record per tracked key.

One :class:`RecordCache` is shared by the loader, the refresher and the
coordinator.  Entries are immutable once written: a full load replaces the
whole :class:`CacheEntry` and a volatile patch builds a new entry from the old
one, so a reader on any thread sees either the previous entry or the next one,
never a half-written record.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from config import DEFAULT_VOLATILE_FIELDS

Record = Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Latest known record for a key plus its fetch timestamps."""

    record: Record
    fetched_at: float
    full_fetched_at: float

    def age(self, now: Optional[float] = None) -> float:
        """Seconds since the last full fetch."""

        current = time.time() if now is None else float(now)
        return max(0.0, current - self.full_fetched_at)

    def is_stale(self, ttl: float, now: Optional[float] = None) -> bool:
        return self.age(now) > ttl


def normalize_key(key: object) -> str:
    return str(key).strip().upper()


class RecordCache:
    """Process-wide keyed record store with atomic per-key writes."""

    def __init__(
        self,
        volatile_fields: Iterable[str] = DEFAULT_VOLATILE_FIELDS,
        *,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._clock = clock or time.time
        self.volatile_fields = tuple(volatile_fields)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return self.has(str(key))

    def get(self, key: str) -> Optional[Record]:
        entry = self.entry(key)
        return entry.record if entry is not None else None

    def entry(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(normalize_key(key))

    def has(self, key: str) -> bool:
        with self._lock:
            return normalize_key(key) in self._entries

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries.keys())

    def set(self, key: str, record: Record) -> CacheEntry:
        """Replace the whole entry for ``key`` with a freshly fetched record."""

        now = self._clock()
        entry = CacheEntry(record=dict(record), fetched_at=now, full_fetched_at=now)
        with self._lock:
            self._entries[normalize_key(key)] = entry
        return entry

    def patch_volatile(self, key: str, fields: Mapping[str, Any]) -> bool:
        """Merge the volatile subset of ``fields`` into the entry for ``key``.

        Returns ``False`` without touching anything when ``key`` has no entry.
        Fields outside :attr:`volatile_fields` are ignored so a patch can never
        overwrite stable data.
        """

        patch = {name: value for name, value in fields.items() if name in self.volatile_fields}
        normalized = normalize_key(key)
        with self._lock:
            current = self._entries.get(normalized)
            if current is None:
                return False
            merged = dict(current.record)
            merged.update(patch)
            self._entries[normalized] = CacheEntry(
                record=merged,
                fetched_at=self._clock(),
                full_fetched_at=current.full_fetched_at,
            )
        return True

    def evict(self, keys: Iterable[str]) -> int:
        """Remove the entries for ``keys`` and return how many existed."""

        removed = 0
        with self._lock:
            for key in keys:
                if self._entries.pop(normalize_key(key), None) is not None:
                    removed += 1
        return removed

    def snapshot(self, keys: Sequence[str]) -> List[Record]:
        """Return records for ``keys`` in order, skipping keys without an entry."""

        with self._lock:
            entries = dict(self._entries)
        records: List[Record] = []
        for key in keys:
            entry = entries.get(normalize_key(key))
            if entry is not None:
                records.append(entry.record)
        return records

    def missing(self, keys: Sequence[str], *, ttl: Optional[float] = None) -> List[str]:
        """Keys (in order) without an entry, or whose full fetch is older than ``ttl``."""

        now = self._clock()
        with self._lock:
            entries = dict(self._entries)
        result: List[str] = []
        for key in keys:
            entry = entries.get(normalize_key(key))
            if entry is None or (ttl is not None and entry.is_stale(ttl, now)):
                result.append(normalize_key(key))
        return result

    def snapshot_frame(self, keys: Sequence[str]) -> pd.DataFrame:
        """Tabular view of the volatile columns for ``keys`` (loaded keys only)."""

        columns = [*self.volatile_fields, "fetched_at", "full_fetched_at"]
        with self._lock:
            entries = dict(self._entries)
        rows: List[Dict[str, Any]] = []
        index: List[str] = []
        for key in keys:
            normalized = normalize_key(key)
            entry = entries.get(normalized)
            if entry is None:
                continue
            row = {name: entry.record.get(name) for name in self.volatile_fields}
            row["fetched_at"] = entry.fetched_at
            row["full_fetched_at"] = entry.full_fetched_at
            rows.append(row)
            index.append(normalized)
        frame = pd.DataFrame(rows, index=pd.Index(index, name="key"), columns=columns)
        for column in ("fetched_at", "full_fetched_at"):
            frame[column] = pd.to_datetime(frame[column].astype("float64"), unit="s", utc=True)
        return frame


__all__ = ["CacheEntry", "Record", "RecordCache", "normalize_key"]
