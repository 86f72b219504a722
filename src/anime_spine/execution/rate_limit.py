"""Rate limiting: per-provider token bucket.

Manifesto:
External catalog providers publish request quotas (AniList 30/min, Kitsu
20/min, ...). Exceeding them earns 429s or bans, so every outbound provider
call acquires a token from that provider's bucket *before* it is made.

ARCHITECTURE
────────────
::

    TokenBucketLimiter
      capacity  = requests
      refill    = each token returns whole, one per_seconds interval after
                  it was taken (no partial refill)
      acquire() = take a token, or sleep until the oldest one returns

    So no more than ``requests`` calls start within any rolling
    ``per_seconds`` window.

    One limiter per provider, built by the fetcher registry at run start.
    Thread-safe (internal Lock); the lock is released while sleeping.

Waiters are not queued: when several threads block on an empty bucket,
whichever wakes first after a token returns gets it.

Example::

    limiter = TokenBucketLimiter(requests=30, per_seconds=60)
    limiter.acquire()          # blocks until a token is available
    response = client.post(...)

Tags:
    anime-spine, execution, rate-limit, throttle, token-bucket
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from anime_spine.core.logging import get_logger
from anime_spine.core.providers import PROVIDERS, ProviderName

logger = get_logger(__name__)


@dataclass
class TokenBucketLimiter:
    """Token bucket where each token refills one whole interval after use.

    Attributes:
        requests: Bucket capacity (calls allowed in any ``per_seconds`` window)
        per_seconds: Refill interval length in seconds
        clock: Monotonic time source (injectable for simulated-clock tests)
        sleep: Sleep function (injectable)
    """

    requests: int
    per_seconds: float
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep
    name: str = "limiter"

    _taken: deque[float] = field(default_factory=deque, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def __post_init__(self) -> None:
        if self.requests < 1:
            raise ValueError("requests must be >= 1")
        if self.per_seconds <= 0:
            raise ValueError("per_seconds must be > 0")

    def _refill(self, now: float) -> None:
        """Return every token taken at least one whole interval ago."""
        while self._taken and self._taken[0] + self.per_seconds <= now:
            self._taken.popleft()

    def _take(self) -> float | None:
        """Take a token (``None``) or return the seconds until the oldest refills."""
        now = self.clock()
        self._refill(now)
        if len(self._taken) < self.requests:
            self._taken.append(now)
            return None
        return max(0.0, self._taken[0] + self.per_seconds - now)

    def get_wait_time(self) -> float:
        """Seconds until a token is available (0 if one is available now)."""
        with self._lock:
            now = self.clock()
            self._refill(now)
            if len(self._taken) < self.requests:
                return 0.0
            return max(0.0, self._taken[0] + self.per_seconds - now)

    def try_acquire(self) -> bool:
        """Take a token if one is available; never blocks."""
        with self._lock:
            return self._take() is None

    def acquire(self) -> None:
        """Take a token, sleeping until the oldest one refills if empty."""
        while True:
            with self._lock:
                wait = self._take()
                if wait is None:
                    return

            logger.debug("rate_limit.waiting", limiter=self.name, wait_seconds=round(wait, 3))
            self.sleep(wait)

    @property
    def available_tokens(self) -> int:
        with self._lock:
            self._refill(self.clock())
            return self.requests - len(self._taken)


def for_provider(
    provider: ProviderName,
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> TokenBucketLimiter:
    """Limiter sized from the provider's published quota."""
    config = PROVIDERS[provider]
    return TokenBucketLimiter(
        requests=config.requests,
        per_seconds=config.per_seconds,
        clock=clock,
        sleep=sleep,
        name=provider.value,
    )


__all__ = ["TokenBucketLimiter", "for_provider"]
