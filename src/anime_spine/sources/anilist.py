"""AniList fetcher (GraphQL)."""

from __future__ import annotations

from typing import Any

from anime_spine.core.models import ExtractedFields, ProviderResponse
from anime_spine.core.providers import PROVIDERS, ProviderName
from anime_spine.core.text import clean_text
from anime_spine.sources.base import FetchPage, HttpFetcher

_MEDIA_FIELDS = """
    id
    title { romaji english native }
    description(asHtml: false)
    genres
    tags { name rank }
    format
    status
    episodes
    season
    seasonYear
    duration
    siteUrl
"""

MEDIA_QUERY = f"""
query ($id: Int) {{
  Media(id: $id, type: ANIME) {{{_MEDIA_FIELDS}  }}
}}
"""

PAGE_QUERY = f"""
query ($page: Int, $perPage: Int) {{
  Page(page: $page, perPage: $perPage) {{
    pageInfo {{ hasNextPage currentPage }}
    media(type: ANIME) {{{_MEDIA_FIELDS}    }}
  }}
}}
"""

PAGE_SIZE = 50
# Minimum tag rank (0-100) for a tag to be kept.
MIN_TAG_RANK = 50

_FORMATS = {
    "TV": "TV",
    "TV_SHORT": "TV",
    "MOVIE": "MOVIE",
    "OVA": "OVA",
    "ONA": "ONA",
    "SPECIAL": "SPECIAL",
    "MUSIC": "SPECIAL",
}

_STATUSES = {
    "FINISHED": "FINISHED",
    "RELEASING": "ONGOING",
    "NOT_YET_RELEASED": "UPCOMING",
    "CANCELLED": "UNKNOWN",
}


class AniListFetcher(HttpFetcher):
    provider = ProviderName.ANILIST
    base_url = PROVIDERS[ProviderName.ANILIST].base_url

    def _query(self, query: str, variables: dict[str, Any]) -> dict[str, Any] | None:
        response = self._send(
            "POST",
            self.base_url,
            json={"query": query, "variables": variables},
        )
        if response is None:
            return None
        return response.json().get("data") or None

    def fetch_by_id(self, provider_id: str) -> ProviderResponse | None:
        data = self._query(MEDIA_QUERY, {"id": int(provider_id)})
        media = (data or {}).get("Media")
        if not media:
            return None
        return map_media(media)

    def fetch_page(self, cursor: str | None) -> FetchPage:
        page = int(cursor) + 1 if cursor else 1
        data = self._query(PAGE_QUERY, {"page": page, "perPage": PAGE_SIZE}) or {}
        page_data = data.get("Page") or {}
        entries = [map_media(m) for m in page_data.get("media") or []]
        has_next = (page_data.get("pageInfo") or {}).get("hasNextPage", False)
        return FetchPage(entries=entries, next_cursor=str(page) if has_next else None)


def map_media(media: dict[str, Any]) -> ProviderResponse:
    titles = media.get("title") or {}
    title = titles.get("english") or titles.get("romaji") or titles.get("native") or "Unknown"
    tags = list(media.get("genres") or [])
    tags.extend(
        t["name"] for t in media.get("tags") or [] if (t.get("rank") or 0) >= MIN_TAG_RANK
    )
    description = media.get("description")

    return ProviderResponse(
        provider=ProviderName.ANILIST,
        provider_id=str(media["id"]),
        raw=media,
        extracted=ExtractedFields(
            title=title,
            synopsis=clean_text(description) if description else None,
            tags=tags,
            type=_FORMATS.get(media.get("format") or "", "UNKNOWN"),
            episodes=media.get("episodes"),
            status=_STATUSES.get(media.get("status") or "", "UNKNOWN"),
            year=media.get("seasonYear"),
        ),
    )


__all__ = ["AniListFetcher", "map_media", "MEDIA_QUERY", "PAGE_QUERY"]
