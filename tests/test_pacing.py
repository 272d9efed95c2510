import asyncio

import pytest

from watchlist_sync.pacing import FixedDelay, TokenBucket


class _FakeTime:
    """Clock and sleeper sharing one virtual timeline."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


def test_fixed_delay_sleeps_configured_delay():
    fake = _FakeTime()
    policy = FixedDelay(0.5, sleep=fake.sleep)

    asyncio.run(policy.wait())

    assert fake.sleeps == [0.5]


def test_fixed_delay_zero_still_yields():
    fake = _FakeTime()
    policy = FixedDelay(-3, sleep=fake.sleep)

    asyncio.run(policy.wait())

    assert policy.delay == 0.0
    assert fake.sleeps == [0]


def test_token_bucket_allows_burst_then_paces():
    fake = _FakeTime()
    bucket = TokenBucket(rate=2.0, capacity=2, sleep=fake.sleep, clock=fake.clock)

    async def drain():
        for _ in range(4):
            await bucket.wait()

    asyncio.run(drain())

    # two burst tokens, then one token every half second
    assert fake.sleeps == [0, 0, pytest.approx(0.5), pytest.approx(0.5)]
    assert fake.now == pytest.approx(1.0)


def test_token_bucket_refills_over_time():
    fake = _FakeTime()
    bucket = TokenBucket(rate=1.0, capacity=3, sleep=fake.sleep, clock=fake.clock)

    async def take(count):
        for _ in range(count):
            await bucket.wait()

    asyncio.run(take(3))
    assert bucket.available == pytest.approx(0.0)

    fake.now += 10
    assert bucket.available == pytest.approx(3.0)


def test_token_bucket_rejects_non_positive_rate():
    with pytest.raises(ValueError):
        TokenBucket(rate=0)
