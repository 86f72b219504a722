"""Stage executors: fetch, synthesize, embed.

Manifesto:
    Each stage turns a batch of entity tasks into a stream of per-entity
    results. The stream is a plain iterator: the run controller consumes it
    one result at a time, so progress is visible (and durable) long before
    a stage finishes.

Contract (all stages):
    - exactly one :class:`StageResult` per input entity, in input order
    - the entity's state-store write happens *before* its result is yielded;
      a crash after any yielded result leaves the store consistent with it
    - per-entity failures are recorded and reported, never raised
    - ``ConfigError`` and ``StorageError`` are run-level and propagate

Architecture:
    ::

        PipelineContext (built once per run)
          ├── store          StateStore
          ├── entries        identity → CatalogEntry (current snapshot)
          ├── registry       FetcherRegistry (fetcher + limiter per provider)
          ├── fetch_retry    RetryPolicy for provider calls
          ├── synthesizer    Synthesizer (LLM capability + validation)
          └── embedder       BatchEmbedder (chunking + bounded fan-out)

        FetchStage      FetchTask[] ─► fetch_status
        SynthesizeStage entity id[] ─► synthesis_status, synopsis, canonical_text
        EmbedStage      entity id[] ─► embedding_status, vector

Tags:
    pipeline, stages, fetch, synthesis, embedding, anime-spine
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from anime_spine.core.catalog import CatalogEntry
from anime_spine.core.errors import ConfigError, StorageError
from anime_spine.core.logging import get_logger
from anime_spine.core.models import ProviderResponse, Stage, StageStatus
from anime_spine.core.providers import ProviderName, extract_provider_ids
from anime_spine.embed.batch import BatchEmbedder
from anime_spine.enrich.canonical import build_canonical_text
from anime_spine.enrich.prompt import usable_synopses
from anime_spine.enrich.synthesizer import Synthesizer
from anime_spine.execution.retry import RetryPolicy
from anime_spine.reconcile.planner import FetchTask
from anime_spine.sources.base import FetcherRegistry
from anime_spine.state.store import StateStore

logger = get_logger(__name__)

# Errors that abort the run instead of failing one entity.
RUN_LEVEL_ERRORS = (ConfigError, StorageError)


@dataclass
class StageResult:
    entity_id: str
    status: StageStatus
    data: Any = None
    error: str | None = None


@dataclass
class PipelineContext:
    store: StateStore
    entries: dict[str, CatalogEntry]
    registry: FetcherRegistry = field(default_factory=FetcherRegistry)
    fetch_retry: RetryPolicy = field(default_factory=RetryPolicy)
    synthesizer: Synthesizer | None = None
    embedder: BatchEmbedder | None = None
    run_id: str | None = None


# =============================================================================
# FETCH
# =============================================================================


class FetchStage:
    """Resolves each entity against its eligible providers.

    Outcomes:
        complete      at least one provider returned data
        insufficient  every provider missed or failed
        failed        the entity is not in the current snapshot
    """

    stage = Stage.FETCH

    def __init__(self, context: PipelineContext):
        self.ctx = context

    def _fetch_provider(
        self, entity_id: str, provider: ProviderName, provider_id: str, errors: list[str]
    ) -> ProviderResponse | None:
        registered = self.ctx.registry.get(provider)

        def attempt() -> ProviderResponse | None:
            registered.limiter.acquire()
            return registered.fetcher.fetch_by_id(provider_id)

        try:
            response = self.ctx.fetch_retry.call(attempt)
        except RUN_LEVEL_ERRORS:
            raise
        except Exception as e:
            errors.append(f"{provider.value}: {e}")
            logger.warning(
                "fetch.provider_failed",
                entity_id=entity_id,
                provider=provider.value,
                provider_id=provider_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        if response is None:
            logger.debug(
                "fetch.provider_miss",
                entity_id=entity_id,
                provider=provider.value,
                provider_id=provider_id,
            )
        return response

    def process(self, tasks: Sequence[FetchTask]) -> Iterator[StageResult]:
        store = self.ctx.store
        for task in tasks:
            entry = self.ctx.entries.get(task.entity_id)
            if entry is None:
                error = "Catalog entry not found in snapshot"
                store.upsert(task.entity_id, fetch_status=StageStatus.FAILED, last_error=error)
                yield StageResult(task.entity_id, StageStatus.FAILED, error=error)
                continue

            provider_ids = extract_provider_ids(entry.sources)
            responses: dict[ProviderName, ProviderResponse | None] = {}
            errors: list[str] = []
            for provider in task.eligible_providers:
                provider_id = provider_ids.get(provider)
                if provider_id is None:
                    continue
                responses[provider] = self._fetch_provider(
                    task.entity_id, provider, provider_id, errors
                )

            available = [r for r in responses.values() if r is not None]
            synopsis_count = len(usable_synopses([r.extracted.synopsis for r in available]))
            status = StageStatus.COMPLETE if available else StageStatus.INSUFFICIENT
            error = "; ".join(errors) or None

            store.upsert(
                task.entity_id,
                responses=responses,
                synopsis_count=synopsis_count,
                fetch_status=status,
                last_error=error if status is not StageStatus.COMPLETE else None,
            )
            yield StageResult(
                task.entity_id,
                status,
                data={
                    "providers": [r.provider.value for r in available],
                    "synopsis_count": synopsis_count,
                },
                error=error,
            )


# =============================================================================
# SYNTHESIZE
# =============================================================================


class SynthesizeStage:
    """Synthesizes a synopsis and the canonical embedding text per entity."""

    stage = Stage.SYNTHESIZE

    def __init__(self, context: PipelineContext):
        if context.synthesizer is None:
            raise ConfigError("Synthesize stage requires a synthesizer")
        self.ctx = context
        self.synthesizer = context.synthesizer

    def _fail(self, entity_id: str, error: str) -> StageResult:
        self.ctx.store.upsert(entity_id, synthesis_status=StageStatus.FAILED, last_error=error)
        return StageResult(entity_id, StageStatus.FAILED, error=error)

    def process(self, entity_ids: Sequence[str]) -> Iterator[StageResult]:
        store = self.ctx.store
        for entity_id in dict.fromkeys(entity_ids):
            entity = store.get(entity_id)
            entry = self.ctx.entries.get(entity_id)
            if entity is None or entry is None:
                yield self._fail(entity_id, "Catalog entry not found in snapshot")
                continue
            if entity.fetch_status is not StageStatus.COMPLETE:
                # Text from an earlier fetch no longer matches the stored responses.
                error = f"Fetch not complete ({entity.fetch_status.value})"
                store.upsert(
                    entity_id,
                    synthesis_status=StageStatus.FAILED,
                    synopsis=None,
                    canonical_text=None,
                    last_error=error,
                )
                yield StageResult(entity_id, StageStatus.FAILED, error=error)
                continue

            responses = entity.available_responses
            try:
                result = self.synthesizer.synthesize(
                    responses,
                    title=entry.title,
                    type=entry.type,
                    episodes=entry.episodes,
                    year=entry.anime_season.year,
                )
            except RUN_LEVEL_ERRORS:
                raise
            except Exception as e:
                logger.warning("synthesis.error", entity_id=entity_id, error=str(e))
                yield self._fail(entity_id, str(e))
                continue

            store.upsert(
                entity_id,
                synthesis_status=result.status,
                synopsis=result.synopsis,
                canonical_text=build_canonical_text(entry, responses, result.synopsis),
                last_error=result.error,
            )
            yield StageResult(
                entity_id,
                result.status,
                data={
                    "synopsis": result.synopsis,
                    "source_count": result.source_count,
                    "attempts": result.attempts,
                },
                error=result.error,
            )


# =============================================================================
# EMBED
# =============================================================================


class EmbedStage:
    """Embeds canonical texts in chunks; vectors land in the store."""

    stage = Stage.EMBED

    def __init__(self, context: PipelineContext):
        if context.embedder is None:
            raise ConfigError("Embed stage requires an embedder")
        self.ctx = context
        self.embedder = context.embedder

    def _check_health(self) -> None:
        health = getattr(self.embedder.client, "health", None)
        if callable(health) and not health():
            raise ConfigError("Embedding service is unreachable")

    def process(self, entity_ids: Sequence[str]) -> Iterator[StageResult]:
        store = self.ctx.store
        ids = list(dict.fromkeys(entity_ids))

        candidates: list[tuple[str, str]] = []
        for entity_id in ids:
            entity = store.get(entity_id)
            if entity is not None and entity.canonical_text:
                candidates.append((entity_id, entity.canonical_text))
        candidate_ids = {entity_id for entity_id, _ in candidates}

        if candidates:
            self._check_health()

        chunks = self.embedder.run(candidates)
        ready: dict[str, StageResult] = {}

        for entity_id in ids:
            if entity_id not in candidate_ids:
                error = "No canonical text to embed"
                store.upsert(
                    entity_id, embedding_status=StageStatus.INSUFFICIENT, last_error=error
                )
                yield StageResult(entity_id, StageStatus.INSUFFICIENT, error=error)
                continue

            while entity_id not in ready:
                chunk = next(chunks)
                if chunk.ok:
                    store.save_vectors(chunk.vectors)
                    for chunk_id in chunk.entity_ids:
                        store.upsert(
                            chunk_id, embedding_status=StageStatus.COMPLETE, last_error=None
                        )
                        ready[chunk_id] = StageResult(
                            chunk_id,
                            StageStatus.COMPLETE,
                            data={"dimensions": len(chunk.vectors[chunk_id])},
                        )
                else:
                    for chunk_id in chunk.entity_ids:
                        store.upsert(
                            chunk_id, embedding_status=StageStatus.FAILED, last_error=chunk.error
                        )
                        ready[chunk_id] = StageResult(
                            chunk_id, StageStatus.FAILED, error=chunk.error
                        )

            yield ready.pop(entity_id)


__all__ = [
    "RUN_LEVEL_ERRORS",
    "StageResult",
    "PipelineContext",
    "FetchStage",
    "SynthesizeStage",
    "EmbedStage",
]
