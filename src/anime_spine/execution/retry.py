"""Retry policy: bounded exponential backoff with jitter.

Wraps exactly one fallible external call (a provider fetch, an LLM request,
an embedding batch). Delays grow as ``base_delay * 2**attempt`` with an
absolute ``± jitter``; a server hint (``retry_after`` on a
:class:`~anime_spine.core.errors.RateLimitError`) replaces the computed delay.
After ``max_retries`` retries the last error is re-raised to the caller.

Example:
    >>> policy = RetryPolicy(max_retries=2, base_delay=1.0, jitter=0.0)
    >>> [policy.next_delay(a) for a in range(3)]
    [1.0, 2.0, 4.0]
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any, TypeVar

from anime_spine.core.errors import is_retryable
from anime_spine.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


@dataclass
class RetryPolicy:
    """Exponential backoff with absolute jitter.

    Delay = min(base_delay * 2**attempt, max_delay) ± uniform(0, jitter)

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        base_delay: Initial delay in seconds
        max_delay: Cap for the computed delay
        jitter: Absolute jitter range in seconds
        retry_if: Predicate deciding whether an error is worth retrying
        sleep: Sleep function (injectable for tests)
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.5
    retry_if: Callable[[BaseException], bool] = is_retryable
    sleep: Callable[[float], None] = time.sleep

    def next_delay(self, attempt: int, error: BaseException | None = None) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        hint = getattr(error, "retry_after", None)
        if hint is not None:
            return max(0.0, float(hint))

        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        if self.jitter:
            delay += random.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        """``attempt`` is the number of attempts already made."""
        if attempt > self.max_retries:
            return False
        return self.retry_if(error)

    def call(
        self,
        func: Callable[..., T],
        *args: Any,
        on_retry: Callable[[int, Exception, float], None] | None = None,
        **kwargs: Any,
    ) -> T:
        """Run ``func`` under this policy."""
        return RetryContext(self, on_retry=on_retry).run(func, *args, **kwargs)


NO_RETRY = RetryPolicy(max_retries=0, jitter=0.0)


@dataclass
class RetryContext:
    """Tracks the attempts of one retried call.

    Example:
        >>> ctx = RetryContext(RetryPolicy(max_retries=3))
        >>> result = ctx.run(lambda: call_api())
    """

    policy: RetryPolicy
    on_retry: Callable[[int, Exception, float], None] | None = None
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    started_at: datetime = field(default_factory=utcnow, init=False)
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list, init=False)

    @property
    def attempts(self) -> int:
        """Number of attempts made."""
        return self.attempt

    @property
    def elapsed_seconds(self) -> float:
        return (utcnow() - self.started_at).total_seconds()

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute ``func`` with retries.

        Raises:
            The last exception once retries are exhausted or the error is
            not retryable.
        """
        while True:
            self.attempt += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e, utcnow()))

                if not self.policy.should_retry(self.attempt, e):
                    raise

                delay = self.policy.next_delay(self.attempt - 1, e)
                logger.debug(
                    "retry.scheduled",
                    attempt=self.attempt,
                    delay_seconds=round(delay, 3),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)

                self.policy.sleep(delay)


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a ``Retry-After`` header: delta seconds or an HTTP date.

    Returns ``None`` when the header is absent or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - (now or utcnow())).total_seconds())


__all__ = ["RetryPolicy", "RetryContext", "NO_RETRY", "parse_retry_after"]
