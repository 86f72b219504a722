"""Anime Spine Core -- domain models, errors, settings and logging.

Architecture::

    errors.py      Structured error hierarchy (AnimeSpineError, TransientError, ...)
    logging.py     structlog configuration, get_logger, LogContext
    settings.py    PipelineSettings (pydantic-settings, ANIME_SPINE_ env prefix)
    hashing.py     Deterministic entity identity
    text.py        Whitespace / HTML / token helpers
    providers.py   Provider table (URI patterns, quotas)
    catalog.py     CatalogSnapshot / CatalogEntry pydantic models
    models.py      Stage statuses, PipelineEntity, run ledger records
"""

from anime_spine.core.catalog import AnimeSeason, CatalogEntry, CatalogSnapshot
from anime_spine.core.errors import (
    AnimeSpineError,
    ConfigError,
    ErrorCategory,
    InvalidTransitionError,
    MissingConfigError,
    NotFoundError,
    OrchestrationError,
    RateLimitError,
    RunInProgressError,
    SourceError,
    StorageError,
    TimeoutError,
    TransientError,
    ValidationFailure,
    is_retryable,
)
from anime_spine.core.hashing import compute_hash, entity_identity
from anime_spine.core.logging import LogContext, configure_logging, get_logger
from anime_spine.core.models import (
    ExtractedFields,
    PipelineEntity,
    PipelineRun,
    PipelineStats,
    ProviderResponse,
    RunStatus,
    RunType,
    Stage,
    StageStatus,
)
from anime_spine.core.providers import PROVIDERS, ProviderName
from anime_spine.core.settings import PipelineSettings, get_settings

__all__ = [
    # catalog
    "AnimeSeason",
    "CatalogEntry",
    "CatalogSnapshot",
    # errors
    "AnimeSpineError",
    "ConfigError",
    "ErrorCategory",
    "InvalidTransitionError",
    "MissingConfigError",
    "NotFoundError",
    "OrchestrationError",
    "RateLimitError",
    "RunInProgressError",
    "SourceError",
    "StorageError",
    "TimeoutError",
    "TransientError",
    "ValidationFailure",
    "is_retryable",
    # hashing
    "compute_hash",
    "entity_identity",
    # logging
    "LogContext",
    "configure_logging",
    "get_logger",
    # models
    "ExtractedFields",
    "PipelineEntity",
    "PipelineRun",
    "PipelineStats",
    "ProviderResponse",
    "RunStatus",
    "RunType",
    "Stage",
    "StageStatus",
    # providers
    "PROVIDERS",
    "ProviderName",
    # settings
    "PipelineSettings",
    "get_settings",
]
