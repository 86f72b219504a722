"""Pipeline settings.

Configuration is environment-driven (prefix ``ANIME_SPINE_``, ``.env``
supported) and validated at startup by pydantic-settings. Settings describe
*where* things live and *which* services to call; they never change pipeline
behaviour beyond the documented thresholds.

Examples:
    >>> settings = PipelineSettings(llm_api_key="sk-test")
    >>> settings.state_db_path.name
    'state.sqlite'
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MANAMI_DATABASE_URL = (
    "https://github.com/manami-project/anime-offline-database/raw/master/"
    "anime-offline-database-minified.json"
)


class PipelineSettings(BaseSettings):
    """Settings for the reconciliation/enrichment pipeline.

    Fields
    ──────
    state_db_path         : SQLite state store location
    output_dir            : Directory receiving built artifacts
    snapshot_url          : Catalog snapshot download URL
    embedding_url         : Embedding service base URL (Infinity-compatible)
    llm_provider          : ``anthropic`` or ``openai``
    llm_api_key           : Credential, also read from ANTHROPIC_API_KEY / OPENAI_API_KEY
    min_synthesis_sources : Usable synopses required before LLM synthesis
    """

    model_config = SettingsConfigDict(
        env_prefix="ANIME_SPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ── Storage ──────────────────────────────────────────────────
    state_db_path: Path = Path("data/intermediate/state.sqlite")
    output_dir: Path = Path("data/artifacts")

    # ── Catalog ──────────────────────────────────────────────────
    snapshot_url: str = MANAMI_DATABASE_URL
    snapshot_timeout: float = 120.0

    # ── Fetch ────────────────────────────────────────────────────
    fetch_max_retries: int = Field(default=3, ge=0)
    fetch_timeout: float = 30.0

    # ── Embedding ────────────────────────────────────────────────
    embedding_url: str = "http://localhost:7997"
    embedding_model: str = "nomic-ai/nomic-embed-text-v1.5"
    embedding_dimensions: int = 768
    embedding_batch_size: int = Field(default=128, ge=1)
    embedding_concurrency: int = Field(default=4, ge=1)

    # ── Synthesis ────────────────────────────────────────────────
    llm_provider: Literal["anthropic", "openai"] = "anthropic"
    llm_model: str = "claude-3-haiku-20240307"
    llm_api_key: str = Field(
        default="",
        validation_alias=AliasChoices(
            "ANIME_SPINE_LLM_API_KEY", "ANTHROPIC_API_KEY", "OPENAI_API_KEY"
        ),
    )
    llm_max_retries: int = Field(default=2, ge=0)
    llm_temperature: float = 0.7
    llm_max_tokens: int = 600
    min_synthesis_sources: int = Field(default=3, ge=1)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> PipelineSettings:
    """Return the process-wide settings (cached)."""
    return PipelineSettings()


__all__ = ["MANAMI_DATABASE_URL", "PipelineSettings", "get_settings"]
