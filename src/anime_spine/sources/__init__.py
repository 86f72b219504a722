"""Provider fetchers and the per-run fetcher registry."""

from anime_spine.sources.anilist import AniListFetcher
from anime_spine.sources.base import (
    FetchPage,
    Fetcher,
    FetcherRegistry,
    HttpFetcher,
    build_default_registry,
)
from anime_spine.sources.kitsu import KitsuFetcher

__all__ = [
    "AniListFetcher",
    "KitsuFetcher",
    "FetchPage",
    "Fetcher",
    "FetcherRegistry",
    "HttpFetcher",
    "build_default_registry",
]
