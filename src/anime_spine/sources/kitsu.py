"""Kitsu fetcher (JSON:API)."""

from __future__ import annotations

from typing import Any

from anime_spine.core.models import ExtractedFields, ProviderResponse
from anime_spine.core.providers import PROVIDERS, ProviderName
from anime_spine.core.text import clean_text
from anime_spine.sources.base import FetchPage, HttpFetcher

FIELDS = "titles,synopsis,subtype,status,episodeCount,startDate,posterImage"
PAGE_SIZE = 20

_SUBTYPES = {
    "TV": "TV",
    "movie": "MOVIE",
    "OVA": "OVA",
    "ONA": "ONA",
    "special": "SPECIAL",
    "music": "SPECIAL",
}

_STATUSES = {
    "finished": "FINISHED",
    "current": "ONGOING",
    "unreleased": "UPCOMING",
    "tba": "UPCOMING",
}


class KitsuFetcher(HttpFetcher):
    provider = ProviderName.KITSU
    base_url = PROVIDERS[ProviderName.KITSU].base_url

    def fetch_by_id(self, provider_id: str) -> ProviderResponse | None:
        response = self._send(
            "GET",
            f"{self.base_url}/anime/{provider_id}",
            params={"fields[anime]": FIELDS},
        )
        if response is None:
            return None
        anime = response.json().get("data")
        if not anime:
            return None
        return map_anime(anime)

    def fetch_page(self, cursor: str | None) -> FetchPage:
        offset = int(cursor) if cursor else 0
        response = self._send(
            "GET",
            f"{self.base_url}/anime",
            params={
                "page[limit]": PAGE_SIZE,
                "page[offset]": offset,
                "fields[anime]": FIELDS,
            },
        )
        if response is None:
            return FetchPage(entries=[], next_cursor=None)
        body = response.json()
        entries = [map_anime(a) for a in body.get("data") or []]
        has_next = bool((body.get("links") or {}).get("next"))
        return FetchPage(entries=entries, next_cursor=str(offset + PAGE_SIZE) if has_next else None)


def _start_year(start_date: str | None) -> int | None:
    if not start_date:
        return None
    try:
        return int(start_date[:4])
    except ValueError:
        return None


def map_anime(anime: dict[str, Any]) -> ProviderResponse:
    attrs = anime.get("attributes") or {}
    titles = attrs.get("titles") or {}
    title = titles.get("en") or titles.get("en_jp") or titles.get("ja_jp") or "Unknown"
    synopsis = attrs.get("synopsis")

    return ProviderResponse(
        provider=ProviderName.KITSU,
        provider_id=str(anime["id"]),
        raw=anime,
        extracted=ExtractedFields(
            title=title,
            synopsis=clean_text(synopsis) if synopsis else None,
            tags=[],
            type=_SUBTYPES.get(attrs.get("subtype") or "", "UNKNOWN"),
            episodes=attrs.get("episodeCount"),
            status=_STATUSES.get(attrs.get("status") or "", "UNKNOWN"),
            year=_start_year(attrs.get("startDate")),
        ),
    )


__all__ = ["KitsuFetcher", "map_anime"]
