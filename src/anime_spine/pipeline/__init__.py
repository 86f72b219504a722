"""Stage executors, build stage and run controller."""

from anime_spine.pipeline.build import (
    AnimeRecord,
    ArtifactBuilder,
    BuildManifest,
    BuildMetadata,
    BuildStage,
    JsonArtifactBuilder,
)
from anime_spine.pipeline.controller import RunController, RunResult
from anime_spine.pipeline.stages import (
    EmbedStage,
    FetchStage,
    PipelineContext,
    StageResult,
    SynthesizeStage,
)

__all__ = [
    "AnimeRecord",
    "ArtifactBuilder",
    "BuildManifest",
    "BuildMetadata",
    "BuildStage",
    "JsonArtifactBuilder",
    "RunController",
    "RunResult",
    "EmbedStage",
    "FetchStage",
    "PipelineContext",
    "StageResult",
    "SynthesizeStage",
]
