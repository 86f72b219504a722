"""Embedding service client (Infinity / OpenAI-compatible ``/embeddings``).

``embed(texts)`` returns one :class:`EmbeddingVector` per input, each carrying
the ``index`` of the input it belongs to as reported by the server. Callers
match vectors to inputs by that index; response order is not trusted.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal, Protocol

import httpx

from anime_spine.core.errors import SourceError, TimeoutError, TransientError
from anime_spine.core.logging import get_logger

logger = get_logger(__name__)

DOCUMENT_PREFIX = "search_document: "
QUERY_PREFIX = "search_query: "


@dataclass(frozen=True)
class EmbeddingVector:
    index: int
    vector: list[float]


class EmbeddingClient(Protocol):
    def embed(self, texts: Sequence[str]) -> list[EmbeddingVector]: ...


class InfinityEmbeddingClient:
    """HTTP client for an Infinity embedding server.

    Args:
        base_url: Server root, e.g. ``http://localhost:7997``
        model: Model name sent with every request
        prefix: ``search_document`` (indexing) or ``search_query``
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests)
    """

    def __init__(
        self,
        base_url: str = "http://localhost:7997",
        model: str = "nomic-ai/nomic-embed-text-v1.5",
        *,
        prefix: Literal["search_document", "search_query"] = "search_document",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.prefix = QUERY_PREFIX if prefix == "search_query" else DOCUMENT_PREFIX
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def embed(self, texts: Sequence[str]) -> list[EmbeddingVector]:
        if not texts:
            return []
        url = f"{self.base_url}/embeddings"
        try:
            response = self._client.post(
                url,
                json={"input": [f"{self.prefix}{t}" for t in texts], "model": self.model},
            )
        except httpx.TimeoutException as e:
            raise TimeoutError("Embedding request timed out", cause=e).with_context(url=url) from e
        except httpx.TransportError as e:
            raise TransientError(f"Embedding service unreachable: {e}", cause=e).with_context(
                url=url
            ) from e

        if response.status_code >= 500 or response.status_code == 429:
            raise TransientError(
                f"Embedding service error: HTTP {response.status_code}"
            ).with_context(url=url, http_status=response.status_code)
        if response.status_code >= 400:
            raise SourceError(
                f"Embedding service rejected request: HTTP {response.status_code}"
            ).with_context(url=url, http_status=response.status_code)

        try:
            items = response.json()["data"]
            return [
                EmbeddingVector(index=int(item["index"]), vector=[float(v) for v in item["embedding"]])
                for item in items
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise SourceError("Unexpected embedding response shape", cause=e) from e

    def health(self) -> bool:
        """``True`` when ``GET /health`` answers 2xx."""
        try:
            response = self._client.get(f"{self.base_url}/health", timeout=5.0)
        except httpx.HTTPError as e:
            logger.warning("embed.health_failed", url=self.base_url, error=str(e))
            return False
        return response.is_success

    def close(self) -> None:
        self._client.close()


__all__ = [
    "DOCUMENT_PREFIX",
    "QUERY_PREFIX",
    "EmbeddingVector",
    "EmbeddingClient",
    "InfinityEmbeddingClient",
]
