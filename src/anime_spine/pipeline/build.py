"""Build stage and artifact collaborator.

The build stage gathers every entity whose embedding is complete and still
present in the current snapshot, merges the catalog entry with the stored
provider responses into an :class:`AnimeRecord`, loads its vector and hands
``(records, vectors, metadata)`` to an :class:`ArtifactBuilder`.

The shipped :class:`JsonArtifactBuilder` writes a release directory::

    <output_dir>/<version>/
        anime.jsonl.gz     one AnimeRecord per line
        vectors.jsonl      {"id": ..., "vector": [...]} per line
        manifest.json      versions, model, dimensions, count, sha256 per file
"""

from __future__ import annotations

import gzip
import json
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from anime_spine.core.catalog import CatalogEntry
from anime_spine.core.hashing import file_sha256
from anime_spine.core.logging import get_logger
from anime_spine.core.models import PipelineEntity, Stage, StageStatus, utcnow
from anime_spine.core.providers import extract_provider_ids
from anime_spine.enrich.canonical import merge_tags
from anime_spine.state.store import StateStore

logger = get_logger(__name__)


@dataclass
class AnimeRecord:
    id: str
    title: str
    synonyms: list[str]
    type: str
    episodes: int
    status: str
    season: str
    year: int | None
    sources: list[str]
    provider_ids: dict[str, str]
    tags: list[str]
    synopsis: str | None
    synopsis_source_count: int
    synthesis_status: str
    picture: str | None
    thumbnail: str | None
    canonical_text: str

    @classmethod
    def from_entity(cls, entry: CatalogEntry, entity: PipelineEntity) -> AnimeRecord:
        return cls(
            id=entity.id,
            title=entry.title,
            synonyms=list(entry.synonyms),
            type=entry.type,
            episodes=entry.episodes,
            status=entry.status,
            season=entry.anime_season.season,
            year=entry.anime_season.year,
            sources=sorted(entry.sources),
            provider_ids={p.value: pid for p, pid in extract_provider_ids(entry.sources).items()},
            tags=merge_tags(entry, entity.available_responses),
            synopsis=entity.synopsis,
            synopsis_source_count=entity.synopsis_count,
            synthesis_status=entity.synthesis_status.value,
            picture=entry.picture,
            thumbnail=entry.thumbnail,
            canonical_text=entity.canonical_text or "",
        )


@dataclass
class BuildMetadata:
    version: str
    snapshot_version: str
    embedding_model: str
    dimensions: int
    run_id: str | None = None
    built_at: datetime = field(default_factory=utcnow)

    @staticmethod
    def release_version(when: datetime | None = None) -> str:
        """Release version ``YYYY.MM.DD``."""
        return (when or utcnow()).strftime("%Y.%m.%d")


@dataclass
class ArtifactInfo:
    name: str
    path: str
    size_bytes: int
    sha256: str


@dataclass
class BuildManifest:
    version: str
    snapshot_version: str
    embedding_model: str
    dimensions: int
    entry_count: int
    built_at: str
    run_id: str | None = None
    artifacts: list[ArtifactInfo] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ArtifactBuilder(Protocol):
    def build(
        self,
        records: Sequence[AnimeRecord],
        vectors: Mapping[str, Sequence[float]],
        metadata: BuildMetadata,
    ) -> BuildManifest: ...


class JsonArtifactBuilder:
    """Writes gzip JSONL records, JSONL vectors and a manifest."""

    def __init__(self, output_dir: str | Path):
        self.output_dir = Path(output_dir)

    def build(
        self,
        records: Sequence[AnimeRecord],
        vectors: Mapping[str, Sequence[float]],
        metadata: BuildMetadata,
    ) -> BuildManifest:
        release_dir = self.output_dir / metadata.version
        release_dir.mkdir(parents=True, exist_ok=True)

        records_path = release_dir / "anime.jsonl.gz"
        with gzip.open(records_path, "wt", encoding="utf-8") as fh:
            for record in records:
                fh.write(json.dumps(asdict(record), ensure_ascii=False) + "\n")

        vectors_path = release_dir / "vectors.jsonl"
        with open(vectors_path, "w", encoding="utf-8") as fh:
            for record in records:
                fh.write(json.dumps({"id": record.id, "vector": list(vectors[record.id])}) + "\n")

        manifest = BuildManifest(
            version=metadata.version,
            snapshot_version=metadata.snapshot_version,
            embedding_model=metadata.embedding_model,
            dimensions=metadata.dimensions,
            entry_count=len(records),
            built_at=metadata.built_at.isoformat(),
            run_id=metadata.run_id,
            artifacts=[
                ArtifactInfo(
                    name=path.name,
                    path=str(path),
                    size_bytes=path.stat().st_size,
                    sha256=file_sha256(path),
                )
                for path in (records_path, vectors_path)
            ],
        )
        (release_dir / "manifest.json").write_text(
            json.dumps(manifest.to_dict(), indent=2), encoding="utf-8"
        )
        logger.info(
            "build.written",
            path=str(release_dir),
            version=metadata.version,
            entries=len(records),
        )
        return manifest


class BuildStage:
    """Collects build-ready entities and invokes the artifact builder."""

    def __init__(
        self,
        store: StateStore,
        entries: Mapping[str, CatalogEntry],
        builder: ArtifactBuilder,
    ):
        self.store = store
        self.entries = entries
        self.builder = builder

    def collect(self) -> tuple[list[AnimeRecord], dict[str, list[float]]]:
        records: list[AnimeRecord] = []
        vectors: dict[str, list[float]] = {}
        for entity in self.store.query_by_stage(Stage.EMBED, StageStatus.COMPLETE):
            entry = self.entries.get(entity.id)
            if entry is None:
                continue
            vector = self.store.get_vector(entity.id)
            if vector is None:
                logger.warning("build.missing_vector", entity_id=entity.id)
                continue
            records.append(AnimeRecord.from_entity(entry, entity))
            vectors[entity.id] = vector
        return records, vectors

    def run(self, metadata: BuildMetadata) -> BuildManifest | None:
        records, vectors = self.collect()
        if not records:
            logger.warning("build.nothing_to_build", snapshot_version=metadata.snapshot_version)
            return None
        metadata = replace(metadata, dimensions=len(vectors[records[0].id]))
        return self.builder.build(records, vectors, metadata)


__all__ = [
    "AnimeRecord",
    "BuildMetadata",
    "ArtifactInfo",
    "BuildManifest",
    "ArtifactBuilder",
    "JsonArtifactBuilder",
    "BuildStage",
]
