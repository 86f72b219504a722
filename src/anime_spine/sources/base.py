"""
Fetcher contract and registry.

A fetcher resolves one provider-local record by ID. It does *not* rate-limit
or retry by itself: the fetch stage acquires the provider's token bucket and
wraps each call in the retry policy. What the fetcher must get right is the
error taxonomy, so retries are not spent on definite misses:

    ========================  ==========================================
    Provider answer           Fetcher result
    ========================  ==========================================
    2xx with a record         ProviderResponse
    404 / empty record        None (permanent miss, never retried)
    429                       RateLimitError(retry_after=<header>)
    5xx, timeout, conn. drop  TransientError / TimeoutError (retried)
    other 4xx                 SourceError (not retried)
    ========================  ==========================================

The registry is built once per run and handed to the stages through the
pipeline context; there is no module-level fetcher cache.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from anime_spine.core.errors import (
    AnimeSpineError,
    NotFoundError,
    RateLimitError,
    SourceError,
    TimeoutError,
    TransientError,
)
from anime_spine.core.models import ProviderResponse
from anime_spine.core.providers import ProviderName
from anime_spine.execution.rate_limit import TokenBucketLimiter, for_provider
from anime_spine.execution.retry import parse_retry_after


@dataclass
class FetchPage:
    entries: list[ProviderResponse]
    next_cursor: str | None


@runtime_checkable
class Fetcher(Protocol):
    """Resolves provider records by provider-local ID."""

    provider: ProviderName

    def fetch_by_id(self, provider_id: str) -> ProviderResponse | None: ...


def error_for_response(response: httpx.Response, provider: ProviderName) -> AnimeSpineError | None:
    """Typed error for a non-2xx response, ``None`` when the response is OK."""
    status = response.status_code
    if 200 <= status < 300:
        return None

    try:
        url: str | None = str(response.request.url)
    except RuntimeError:
        url = None

    if status == 429:
        error: AnimeSpineError = RateLimitError(
            f"{provider.value} rate limited",
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
    elif status >= 500:
        error = TransientError(f"{provider.value} server error: HTTP {status}")
    elif status == 404:
        error = NotFoundError(f"{provider.value} record not found")
    else:
        error = SourceError(f"{provider.value} API error: HTTP {status}")
    return error.with_context(provider=provider.value, url=url, http_status=status)


class HttpFetcher:
    """Shared httpx plumbing for provider fetchers.

    Args:
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (``httpx.MockTransport`` in tests)
    """

    provider: ProviderName
    base_url: str

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        if base_url is not None:
            self.base_url = base_url
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response | None:
        """Send a request; ``None`` for 404, typed error for other failures."""
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TimeoutError(f"{self.provider.value} request timed out", cause=e).with_context(
                provider=self.provider.value, url=url
            ) from e
        except httpx.TransportError as e:
            raise TransientError(f"{self.provider.value} transport error: {e}", cause=e).with_context(
                provider=self.provider.value, url=url
            ) from e

        if response.status_code == 404:
            return None
        error = error_for_response(response, self.provider)
        if error is not None:
            raise error
        return response

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


@dataclass
class RegisteredFetcher:
    fetcher: Fetcher
    limiter: TokenBucketLimiter


@dataclass
class FetcherRegistry:
    """Fetcher + rate limiter per supported provider."""

    _entries: dict[ProviderName, RegisteredFetcher] = field(default_factory=dict)

    def register(self, fetcher: Fetcher, limiter: TokenBucketLimiter | None = None) -> None:
        provider = ProviderName(fetcher.provider)
        self._entries[provider] = RegisteredFetcher(
            fetcher=fetcher,
            limiter=limiter or for_provider(provider),
        )

    def get(self, provider: ProviderName) -> RegisteredFetcher:
        try:
            return self._entries[provider]
        except KeyError:
            raise SourceError(f"No fetcher registered for provider {provider.value}") from None

    @property
    def supported(self) -> tuple[ProviderName, ...]:
        """Registered providers in canonical order."""
        return tuple(p for p in ProviderName if p in self._entries)

    def __contains__(self, provider: object) -> bool:
        return provider in self._entries

    def __iter__(self) -> Iterator[ProviderName]:
        return iter(self.supported)

    def __len__(self) -> int:
        return len(self._entries)

    def close(self) -> None:
        for entry in self._entries.values():
            close = getattr(entry.fetcher, "close", None)
            if callable(close):
                close()


def build_default_registry(
    *,
    timeout: float = 30.0,
    transport: httpx.BaseTransport | None = None,
    limiter_factory: Callable[[ProviderName], TokenBucketLimiter] = for_provider,
) -> FetcherRegistry:
    """Registry with every shipped fetcher (AniList, Kitsu)."""
    from anime_spine.sources.anilist import AniListFetcher
    from anime_spine.sources.kitsu import KitsuFetcher

    registry = FetcherRegistry()
    for fetcher_cls in (AniListFetcher, KitsuFetcher):
        fetcher = fetcher_cls(timeout=timeout, transport=transport)
        registry.register(fetcher, limiter_factory(fetcher.provider))
    return registry


__all__ = [
    "FetchPage",
    "Fetcher",
    "error_for_response",
    "HttpFetcher",
    "RegisteredFetcher",
    "FetcherRegistry",
    "build_default_registry",
]
