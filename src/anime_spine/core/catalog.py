"""Catalog snapshot models.

A snapshot is one full, versioned dump of the manami anime-offline-database.
These pydantic models validate the external JSON on load; unknown fields in
newer dumps are ignored.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from anime_spine.core.hashing import entity_identity

SeasonName = Literal["SPRING", "SUMMER", "FALL", "WINTER", "UNDEFINED"]


class AnimeSeason(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    season: SeasonName = "UNDEFINED"
    year: int | None = None


class CatalogEntry(BaseModel):
    """One catalog record. Identity is derived from ``sources``, never stored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    sources: list[str]
    title: str
    type: str = "UNKNOWN"
    episodes: int = 0
    status: str = "UNKNOWN"
    anime_season: AnimeSeason = Field(default_factory=AnimeSeason, alias="animeSeason")
    picture: str | None = None
    thumbnail: str | None = None
    synonyms: list[str] = Field(default_factory=list)
    relations: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @property
    def identity(self) -> str:
        return entity_identity(self.sources)


class SnapshotLicense(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    url: str = ""


class CatalogSnapshot(BaseModel):
    """A full catalog release. ``last_update`` is the snapshot version."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    license: SnapshotLicense = Field(default_factory=SnapshotLicense)
    repository: str = ""
    last_update: str = Field(alias="lastUpdate")
    data: list[CatalogEntry]

    @property
    def version(self) -> str:
        return self.last_update

    def by_identity(self) -> dict[str, CatalogEntry]:
        """Identity → entry. Later duplicates of an identity replace earlier ones."""
        return {entry.identity: entry for entry in self.data}


__all__ = ["AnimeSeason", "CatalogEntry", "CatalogSnapshot", "SnapshotLicense", "SeasonName"]
