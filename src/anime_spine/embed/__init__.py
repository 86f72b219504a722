"""Embedding client and chunked batch embedder."""

from anime_spine.embed.batch import BatchEmbedder, ChunkResult
from anime_spine.embed.client import EmbeddingClient, EmbeddingVector, InfinityEmbeddingClient

__all__ = [
    "BatchEmbedder",
    "ChunkResult",
    "EmbeddingClient",
    "EmbeddingVector",
    "InfinityEmbeddingClient",
]
