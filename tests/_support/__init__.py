"""
Test support utilities for anime-spine tests.

Builders for catalog entries, snapshots and provider responses, plus the
in-process fakes (fetcher, LLM, embedding client) the stage and controller
tests run against. Fixtures wrapping these live in ``conftest.py``.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from anime_spine.core.catalog import AnimeSeason, CatalogEntry, CatalogSnapshot
from anime_spine.core.models import ExtractedFields, ProviderResponse
from anime_spine.core.providers import ProviderName
from anime_spine.embed.client import EmbeddingVector
from anime_spine.execution.rate_limit import TokenBucketLimiter
from anime_spine.execution.retry import RetryPolicy
from anime_spine.sources.base import FetcherRegistry

_URI_TEMPLATES = {
    ProviderName.ANILIST: "https://anilist.co/anime/{}",
    ProviderName.KITSU: "https://kitsu.app/anime/{}",
    ProviderName.MAL: "https://myanimelist.net/anime/{}",
    ProviderName.ANIDB: "https://anidb.net/anime/{}",
}


# =============================================================================
# Catalog builders
# =============================================================================


def source_uri(provider: ProviderName, provider_id: str | int) -> str:
    return _URI_TEMPLATES[provider].format(provider_id)


def make_entry(
    title: str = "Cowboy Bebop",
    *,
    anilist: str | None = "1",
    kitsu: str | None = "1",
    extra_sources: Sequence[str] = (),
    tags: Sequence[str] = ("space", "bounty hunters"),
    synonyms: Sequence[str] = (),
    type: str = "TV",
    episodes: int = 26,
    status: str = "FINISHED",
    season: str = "SPRING",
    year: int | None = 1998,
) -> CatalogEntry:
    sources = list(extra_sources)
    if anilist is not None:
        sources.append(source_uri(ProviderName.ANILIST, anilist))
    if kitsu is not None:
        sources.append(source_uri(ProviderName.KITSU, kitsu))
    return CatalogEntry(
        sources=sources,
        title=title,
        type=type,
        episodes=episodes,
        status=status,
        anime_season=AnimeSeason(season=season, year=year),
        synonyms=list(synonyms),
        tags=list(tags),
    )


def make_snapshot(entries: Iterable[CatalogEntry], version: str = "2024-01-01") -> CatalogSnapshot:
    return CatalogSnapshot(last_update=version, data=list(entries))


def snapshot_payload(entries: Iterable[CatalogEntry], version: str = "2024-01-01") -> dict[str, Any]:
    """Release JSON as published (camelCase aliases)."""
    return make_snapshot(entries, version).model_dump(mode="json", by_alias=True)


# =============================================================================
# Text builders
# =============================================================================


def long_text(seed: str, words: int = 30) -> str:
    """Synopsis-like text of ``words`` distinct tokens derived from ``seed``."""
    return " ".join(f"{seed}{i}" for i in range(words))


def good_synopsis(title: str, words: int = 120) -> str:
    """A candidate that passes every synthesis check for ``title``."""
    return f"{title} " + " ".join(f"fresh{i}" for i in range(words))


def make_response(
    provider: ProviderName,
    provider_id: str = "1",
    *,
    synopsis: str | None = None,
    tags: Sequence[str] = (),
    title: str = "Cowboy Bebop",
) -> ProviderResponse:
    return ProviderResponse(
        provider=provider,
        provider_id=provider_id,
        raw={"id": provider_id},
        extracted=ExtractedFields(title=title, synopsis=synopsis, tags=list(tags)),
    )


# =============================================================================
# Fakes
# =============================================================================


def no_sleep(_seconds: float) -> None:
    return None


def fast_retry(max_retries: int = 2) -> RetryPolicy:
    return RetryPolicy(max_retries=max_retries, base_delay=0.0, jitter=0.0, sleep=no_sleep)


def open_limiter(name: str = "test") -> TokenBucketLimiter:
    return TokenBucketLimiter(requests=10_000, per_seconds=1.0, name=name)


class FakeFetcher:
    """In-memory fetcher.

    ``records`` maps provider IDs to a response, ``None`` (miss), an exception
    to raise, or a list of those consumed one per call.
    """

    def __init__(self, provider: ProviderName, records: dict[str, Any] | None = None):
        self.provider = provider
        self.records = dict(records or {})
        self.calls: list[str] = []
        self.closed = False

    def fetch_by_id(self, provider_id: str) -> ProviderResponse | None:
        self.calls.append(provider_id)
        outcome = self.records.get(provider_id)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if outcome else None
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def close(self) -> None:
        self.closed = True


def make_registry(*fetchers: FakeFetcher) -> FetcherRegistry:
    registry = FetcherRegistry()
    for fetcher in fetchers:
        registry.register(fetcher, open_limiter(fetcher.provider.value))
    return registry


class FakeLLM:
    """``(prompt, config) -> str``; replays ``outputs`` (last one repeats)."""

    def __init__(self, outputs: Sequence[str | BaseException] | Callable[[str], str] = ()):
        self.outputs = outputs
        self.prompts: list[str] = []

    def __call__(self, prompt: str, config: Any) -> str:
        self.prompts.append(prompt)
        if callable(self.outputs):
            return self.outputs(prompt)
        index = min(len(self.prompts) - 1, len(self.outputs) - 1)
        outcome = self.outputs[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeEmbedder:
    """Deterministic embedding client.

    Args:
        dimensions: Vector length
        reverse: Return vectors in reverse order (indices stay correct)
        bad_index: Shift every returned index by one
        fail_when: Predicate on the texts; raise ``error`` when it matches
        healthy: Value returned by ``health()``
        delay: Seconds each call sleeps (for concurrency tests)
    """

    def __init__(
        self,
        dimensions: int = 4,
        *,
        reverse: bool = False,
        bad_index: bool = False,
        fail_when: Callable[[Sequence[str]], bool] | None = None,
        error: BaseException | None = None,
        healthy: bool = True,
        delay: float = 0.0,
    ):
        self.dimensions = dimensions
        self.reverse = reverse
        self.bad_index = bad_index
        self.fail_when = fail_when
        self.error = error
        self.healthy = healthy
        self.delay = delay
        self.calls: list[list[str]] = []
        self._lock = threading.Lock()
        self._active = 0
        self.max_active = 0

    def vector_for(self, text: str) -> list[float]:
        base = float(len(text))
        return [base + i for i in range(self.dimensions)]

    def embed(self, texts: Sequence[str]) -> list[EmbeddingVector]:
        with self._lock:
            self.calls.append(list(texts))
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.fail_when is not None and self.fail_when(texts):
                raise self.error or RuntimeError("embedding failed")
            shift = 1 if self.bad_index else 0
            vectors = [
                EmbeddingVector(index=i + shift, vector=self.vector_for(text))
                for i, text in enumerate(texts)
            ]
            return list(reversed(vectors)) if self.reverse else vectors
        finally:
            with self._lock:
                self._active -= 1

    def health(self) -> bool:
        return self.healthy


class RecordingBuilder:
    """ArtifactBuilder that keeps what it was given."""

    def __init__(self):
        self.calls: list[tuple[list, dict, Any]] = []

    def build(self, records, vectors, metadata):
        from anime_spine.pipeline.build import BuildManifest

        self.calls.append((list(records), dict(vectors), metadata))
        return BuildManifest(
            version=metadata.version,
            snapshot_version=metadata.snapshot_version,
            embedding_model=metadata.embedding_model,
            dimensions=metadata.dimensions,
            entry_count=len(records),
            built_at=metadata.built_at.isoformat(),
            run_id=metadata.run_id,
        )
