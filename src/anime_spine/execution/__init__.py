"""Resilience primitives wrapped around every external call.

::

    TokenBucketLimiter  one per provider, acquired before each request
    RetryPolicy         bounded exponential backoff, Retry-After aware
"""

from anime_spine.execution.rate_limit import TokenBucketLimiter, for_provider
from anime_spine.execution.retry import NO_RETRY, RetryContext, RetryPolicy, parse_retry_after

__all__ = [
    "TokenBucketLimiter",
    "for_provider",
    "RetryPolicy",
    "RetryContext",
    "NO_RETRY",
    "parse_retry_after",
]
