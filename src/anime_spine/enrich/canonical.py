"""Canonical embedding text.

The text that gets embedded for an entity: title, a few aliases, format,
season, tags and the synopsis, joined with ``". "``. Deterministic for a
given entry, response set and synopsis.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from anime_spine.core.catalog import CatalogEntry
from anime_spine.core.models import ProviderResponse

MAX_ALIASES = 5
MAX_TAGS = 20


def merge_tags(entry: CatalogEntry, responses: Iterable[ProviderResponse]) -> list[str]:
    """Catalog tags followed by provider tags, de-duplicated case-insensitively."""
    seen: set[str] = set()
    merged = []
    candidates = list(entry.tags)
    for response in responses:
        candidates.extend(response.extracted.tags)
    for tag in candidates:
        key = tag.strip().lower()
        if key and key not in seen:
            seen.add(key)
            merged.append(tag.strip())
    return merged


def build_canonical_text(
    entry: CatalogEntry,
    responses: Sequence[ProviderResponse],
    synopsis: str | None,
) -> str:
    parts = [entry.title]

    aliases = [s for s in entry.synonyms if s and s != entry.title][:MAX_ALIASES]
    if aliases:
        parts.append(f"Also known as: {', '.join(aliases)}")

    parts.append(f"{entry.type}, {entry.episodes} episodes")

    season = entry.anime_season
    if season.year:
        prefix = f"{season.season} " if season.season != "UNDEFINED" else ""
        parts.append(f"{prefix}{season.year}")

    tags = merge_tags(entry, responses)[:MAX_TAGS]
    if tags:
        parts.append(f"Tags: {', '.join(tags)}")

    if synopsis:
        parts.append(synopsis)

    return ". ".join(parts)


__all__ = ["MAX_ALIASES", "MAX_TAGS", "merge_tags", "build_canonical_text"]
