"""Generation counter used to invalidate stale loader and refresher work."""

from __future__ import annotations

from dataclasses import dataclass


class EpochClock:
    """Monotonic epoch counter owned by one coordinator."""

    def __init__(self) -> None:
        self._epoch = 0
        self._closed = False

    @property
    def current(self) -> int:
        return self._epoch

    @property
    def closed(self) -> bool:
        return self._closed

    def advance(self) -> "EpochToken":
        """Start a new epoch; every previously issued token turns stale."""

        self._epoch += 1
        return EpochToken(self, self._epoch)

    def token(self) -> "EpochToken":
        return EpochToken(self, self._epoch)

    def close(self) -> None:
        """Invalidate the current epoch for good (teardown)."""

        self._closed = True


@dataclass(frozen=True)
class EpochToken:
    """Liveness token threaded through every async step of a cycle."""

    clock: EpochClock
    epoch: int

    @property
    def is_current(self) -> bool:
        return not self.clock.closed and self.clock.current == self.epoch

    @property
    def cancelled(self) -> bool:
        return not self.is_current


__all__ = ["EpochClock", "EpochToken"]
