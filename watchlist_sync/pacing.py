"""Rate-limiting policies placed between sequential upstream requests.

Loaders never sleep directly; they ``await policy.wait()`` between units of
work.  The policy decides how long that is, which keeps the request rate
against the upstream source bounded without tying the loaders to a literal
blocking sleep.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional, Protocol

Sleeper = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class PacingPolicy(Protocol):
    async def wait(self) -> None:
        ...


class FixedDelay:
    """Wait a constant ``delay`` seconds between units."""

    def __init__(self, delay: float, *, sleep: Optional[Sleeper] = None) -> None:
        self.delay = max(0.0, float(delay))
        self._sleep = sleep or asyncio.sleep

    async def wait(self) -> None:
        if self.delay <= 0:
            # still yield so other scheduled work gets a turn
            await self._sleep(0)
            return
        await self._sleep(self.delay)


class TokenBucket:
    """Allow bursts of ``capacity`` units refilled at ``rate`` units per second."""

    def __init__(
        self,
        rate: float,
        capacity: int = 1,
        *,
        sleep: Optional[Sleeper] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = float(rate)
        self.capacity = max(1, int(capacity))
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic
        self._tokens = float(self.capacity)
        self._updated = self._clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rate)
        self._updated = now

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    async def wait(self) -> None:
        self._refill()
        if self._tokens < 1.0:
            deficit = 1.0 - self._tokens
            await self._sleep(deficit / self.rate)
            self._refill()
            # a sleeper that returns early must not push the bucket negative
            self._tokens = max(self._tokens, 1.0)
        else:
            await self._sleep(0)
        self._tokens -= 1.0


__all__ = ["Clock", "FixedDelay", "PacingPolicy", "Sleeper", "TokenBucket"]
