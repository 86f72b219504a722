"""External provider table.

Catalog entries reference the same title on several sites. Each provider is
recognised by a URI pattern, and has a published request quota that the
per-provider token bucket enforces.

Only some providers have an implemented fetcher; which ones are usable in a
run is decided by the fetcher registry, not by this table.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class ProviderName(str, Enum):
    """Known external providers, in canonical fetch order."""

    ANILIST = "anilist"
    KITSU = "kitsu"
    MAL = "mal"
    ANIDB = "anidb"


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    base_url: str
    uri_pattern: re.Pattern[str]
    requests: int
    per_seconds: float


PROVIDERS: dict[ProviderName, ProviderConfig] = {
    ProviderName.ANILIST: ProviderConfig(
        name="AniList",
        base_url="https://graphql.anilist.co",
        uri_pattern=re.compile(r"^https://anilist\.co/anime/(\d+)$"),
        requests=30,
        per_seconds=60,
    ),
    ProviderName.KITSU: ProviderConfig(
        name="Kitsu",
        base_url="https://kitsu.app/api/edge",
        uri_pattern=re.compile(r"^https://kitsu\.app/anime/(\d+)$"),
        requests=20,
        per_seconds=60,
    ),
    ProviderName.MAL: ProviderConfig(
        name="MyAnimeList",
        base_url="https://api.myanimelist.net/v2",
        uri_pattern=re.compile(r"^https://myanimelist\.net/anime/(\d+)$"),
        requests=30,
        per_seconds=60,
    ),
    ProviderName.ANIDB: ProviderConfig(
        name="AniDB",
        base_url="https://api.anidb.net",
        uri_pattern=re.compile(r"^https://anidb\.net/anime/(\d+)$"),
        requests=10,
        per_seconds=60,
    ),
}


def extract_provider_id(uri: str) -> tuple[ProviderName, str] | None:
    """Match ``uri`` against every provider pattern; ``None`` if unknown."""
    for provider, config in PROVIDERS.items():
        match = config.uri_pattern.match(uri)
        if match:
            return provider, match.group(1)
    return None


def extract_provider_ids(uris: list[str]) -> dict[ProviderName, str]:
    """Provider → provider-local ID for every recognised URI (last one wins)."""
    result: dict[ProviderName, str] = {}
    for uri in uris:
        extracted = extract_provider_id(uri)
        if extracted:
            provider, provider_id = extracted
            result[provider] = provider_id
    return result


__all__ = [
    "ProviderName",
    "ProviderConfig",
    "PROVIDERS",
    "extract_provider_id",
    "extract_provider_ids",
]
