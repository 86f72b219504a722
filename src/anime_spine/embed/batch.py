"""Chunked, bounded-concurrency embedding.

Texts are split into ``batch_size`` chunks; at most ``concurrency`` chunks
are in flight at once (a ``ThreadPoolExecutor`` with that many workers, so
further chunks wait for a free worker). Results come back in chunk order.

Vectors are matched to entities through the ``index`` the server returns.
A chunk whose indices are not exactly ``0..len(chunk)-1`` is rejected as a
whole rather than risk attaching a vector to the wrong entity.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TypeVar

from anime_spine.core.errors import ConfigError, SourceError
from anime_spine.core.logging import get_logger
from anime_spine.embed.client import EmbeddingClient, EmbeddingVector
from anime_spine.execution.retry import RetryPolicy

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 128
DEFAULT_CONCURRENCY = 4


@dataclass
class ChunkResult:
    entity_ids: list[str]
    vectors: dict[str, list[float]] = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    if size < 1:
        raise ValueError("size must be >= 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def match_vectors(entity_ids: Sequence[str], vectors: Sequence[EmbeddingVector]) -> dict[str, list[float]]:
    """Map each returned vector to its entity by index.

    Raises:
        SourceError: indices are missing, duplicated or out of range
    """
    indices = [v.index for v in vectors]
    if sorted(indices) != list(range(len(entity_ids))):
        raise SourceError(
            f"Embedding index mismatch: expected {len(entity_ids)} indices 0..{len(entity_ids) - 1}, "
            f"got {len(indices)}"
        )
    return {entity_ids[v.index]: v.vector for v in vectors}


@dataclass
class BatchEmbedder:
    client: EmbeddingClient
    batch_size: int = DEFAULT_BATCH_SIZE
    concurrency: int = DEFAULT_CONCURRENCY
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def _embed_chunk(self, chunk: list[tuple[str, str]]) -> ChunkResult:
        entity_ids = [entity_id for entity_id, _ in chunk]
        texts = [text for _, text in chunk]
        try:
            vectors = self.retry.call(self.client.embed, texts)
            return ChunkResult(entity_ids, match_vectors(entity_ids, vectors))
        except ConfigError:
            raise
        except Exception as e:
            logger.warning("embed.chunk_failed", size=len(chunk), error=str(e))
            return ChunkResult(entity_ids, error=str(e))

    def run(self, items: Sequence[tuple[str, str]]) -> Iterator[ChunkResult]:
        """Embed ``(entity_id, text)`` pairs; yields one result per chunk, in order."""
        chunks = list(chunked(items, self.batch_size))
        if not chunks:
            return
        workers = min(self.concurrency, len(chunks))
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="embed")
        try:
            futures = [pool.submit(self._embed_chunk, chunk) for chunk in chunks]
            for future in futures:
                yield future.result()
        finally:
            # Queued chunks are dropped if the consumer stops early or a chunk raised.
            pool.shutdown(wait=True, cancel_futures=True)


__all__ = [
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_CONCURRENCY",
    "ChunkResult",
    "chunked",
    "match_vectors",
    "BatchEmbedder",
]
