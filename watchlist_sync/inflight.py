from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Set

from watchlist_sync.cache import normalize_key


class InFlightGuard:
    """Per-key set of requests currently in flight."""

    def __init__(self) -> None:
        self._keys: Set[str] = set()

    def __contains__(self, key: object) -> bool:
        return normalize_key(key) in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def try_acquire(self, key: str) -> bool:
        """Claim ``key``; ``False`` when a request for it is already running."""

        normalized = normalize_key(key)
        if normalized in self._keys:
            return False
        self._keys.add(normalized)
        return True

    def release(self, key: str) -> None:
        self._keys.discard(normalize_key(key))

    @contextmanager
    def hold(self, key: str) -> Iterator[bool]:
        acquired = self.try_acquire(key)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key)


__all__ = ["InFlightGuard"]
