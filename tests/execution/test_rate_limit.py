"""Tests for the per-provider token bucket, driven by a simulated clock."""

import threading

import pytest

from anime_spine.core.providers import PROVIDERS, ProviderName
from anime_spine.execution.rate_limit import TokenBucketLimiter, for_provider


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def make_limiter(clock, requests=3, per_seconds=10.0):
    return TokenBucketLimiter(requests=requests, per_seconds=per_seconds, clock=clock, sleep=clock.sleep)


class TestTokenBucketLimiter:
    def test_starts_full(self, clock):
        limiter = make_limiter(clock)
        assert limiter.available_tokens == 3
        assert all(limiter.try_acquire() for _ in range(3))
        assert not limiter.try_acquire()

    def test_no_partial_refill_before_interval_ends(self, clock):
        limiter = make_limiter(clock)
        for _ in range(3):
            limiter.try_acquire()
        clock.now = 1009.99
        assert not limiter.try_acquire()
        clock.now = 1010.0
        assert limiter.available_tokens == 3

    def test_refill_capped_at_capacity(self, clock):
        limiter = make_limiter(clock)
        limiter.try_acquire()
        clock.now += 100
        assert limiter.available_tokens == 3

    def test_wait_time_until_oldest_token_returns(self, clock):
        limiter = make_limiter(clock)
        for _ in range(3):
            limiter.try_acquire()
        clock.now += 4.0
        assert limiter.get_wait_time() == pytest.approx(6.0)

    def test_acquire_sleeps_until_oldest_token_returns(self, clock):
        limiter = make_limiter(clock)
        for _ in range(3):
            limiter.acquire()
        assert clock.sleeps == []
        limiter.acquire()
        assert clock.sleeps == [pytest.approx(10.0)]

    def test_saturated_consumer_never_exceeds_quota_in_rolling_window(self, clock):
        """No ``per_seconds`` window, wherever it starts, holds more than ``requests``."""
        limiter = make_limiter(clock, requests=5, per_seconds=60.0)
        stamps = []
        for _ in range(23):
            limiter.acquire()
            stamps.append(clock.now)

        busiest = max(sum(1 for s in stamps if start <= s < start + 60.0) for start in stamps)
        assert busiest == 5
        assert stamps[-1] - stamps[0] == pytest.approx(240.0)

    def test_burst_straddling_a_boundary_is_held_to_quota(self, clock):
        """One call early, the rest just before the minute ends, then a burst."""
        limiter = make_limiter(clock, requests=30, per_seconds=60.0)
        start = clock.now
        stamps = []

        limiter.acquire()
        stamps.append(clock.now)
        clock.now = start + 59.0
        for _ in range(29):
            limiter.acquire()
            stamps.append(clock.now)
        clock.now = start + 60.0
        for _ in range(30):
            limiter.acquire()
            stamps.append(clock.now)

        for first in stamps:
            assert sum(1 for s in stamps if first <= s < first + 60.0) <= 30
        # the token taken at t=0 is the only one back at t=60
        assert stamps[30] == pytest.approx(start + 60.0)
        assert stamps[31] == pytest.approx(start + 119.0)
        assert len(stamps) == 60

    def test_each_token_returns_one_interval_after_use(self, clock):
        limiter = make_limiter(clock, requests=2, per_seconds=10.0)
        limiter.acquire()
        clock.now += 4.0
        limiter.acquire()
        assert limiter.get_wait_time() == pytest.approx(6.0)
        clock.now += 6.0
        assert limiter.available_tokens == 1
        assert limiter.get_wait_time() == 0.0
        limiter.acquire()
        assert limiter.get_wait_time() == pytest.approx(4.0)

    def test_rejects_bad_configuration(self, clock):
        with pytest.raises(ValueError):
            TokenBucketLimiter(requests=0, per_seconds=1, clock=clock)
        with pytest.raises(ValueError):
            TokenBucketLimiter(requests=1, per_seconds=0, clock=clock)

    def test_thread_safety_with_real_clock(self):
        limiter = TokenBucketLimiter(requests=50, per_seconds=3600)
        acquired = []

        def worker():
            for _ in range(20):
                if limiter.try_acquire():
                    acquired.append(1)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(acquired) == 50


class TestForProvider:
    @pytest.mark.parametrize("provider", list(ProviderName))
    def test_sized_from_quota(self, provider):
        limiter = for_provider(provider)
        assert limiter.requests == PROVIDERS[provider].requests
        assert limiter.per_seconds == PROVIDERS[provider].per_seconds
        assert limiter.name == provider.value
