"""
Structured error types for the anime-spine pipeline.

Every failure the pipeline can meet is expressed as a typed error that knows
its category and whether a retry can help. Stage executors use ``retryable``
and ``retry_after`` to drive the retry policy; the run controller uses the
category to decide whether an error aborts the run.

Manifesto:
    - **Typed hierarchy:** one class per failure family, no bare ``Exception``
    - **Explicit retry semantics:** each error knows if it is retryable
    - **Server hints win:** ``retry_after`` from a 429 beats computed backoff
    - **Error chaining:** the original exception is kept as ``cause``

Architecture:
    ::

        AnimeSpineError (category, retryable, retry_after, context, cause)
          ├── TransientError        retryable   NETWORK
          │     ├── RateLimitError  retryable   NETWORK  (retry_after)
          │     └── TimeoutError    retryable   NETWORK
          ├── SourceError           permanent   SOURCE
          │     └── NotFoundError   permanent   SOURCE
          ├── ValidationFailure     retryable   VALIDATION (synthesis only)
          ├── ConfigError           permanent   CONFIG   → aborts the run
          │     └── MissingConfigError
          ├── StorageError          permanent   STORAGE  → aborts the run
          └── OrchestrationError    permanent   ORCHESTRATION
                └── RunInProgressError

    InvalidTransitionError (ValueError) guards stage status regressions.

Usage:
    from anime_spine.core.errors import RateLimitError, NotFoundError

    if response.status_code == 404:
        return None
    if response.status_code == 429:
        raise RateLimitError("anilist throttled", retry_after=parse_retry_after(...))

Tags:
    error-handling, exception-hierarchy, retry-logic, anime-spine
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for routing and retry decisions."""

    NETWORK = "NETWORK"
    SOURCE = "SOURCE"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    STORAGE = "STORAGE"
    ORCHESTRATION = "ORCHESTRATION"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        run_id: Pipeline run the error happened in
        stage: Stage name (fetch, synthesize, embed, build)
        entity_id: Catalog entity identity
        provider: External provider name (anilist, kitsu, ...)
        url: URL that was being accessed
        http_status: HTTP status code if applicable
        metadata: Additional key-value pairs
    """

    run_id: str | None = None
    stage: str | None = None
    entity_id: str | None = None
    provider: str | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["run_id", "stage", "entity_id", "provider", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class AnimeSpineError(Exception):
    """
    Base exception for all anime-spine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    callers rarely need to pass them explicitly.

    Examples:
        >>> error = AnimeSpineError("Something went wrong")
        >>> error.retryable
        False
        >>> error.with_context(provider="kitsu").context.provider
        'kitsu'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> AnimeSpineError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Retryable)
# =============================================================================


class TransientError(AnimeSpineError):
    """
    Temporary error that may succeed on retry.

    Raised for 5xx responses, dropped connections and similar conditions.
    """

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class RateLimitError(TransientError):
    """Provider answered 429. ``retry_after`` carries the server hint, if any."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, retry_after=retry_after, **kwargs)


class TimeoutError(TransientError):
    """Operation timed out."""


# =============================================================================
# SOURCE ERRORS (Permanent)
# =============================================================================


class SourceError(AnimeSpineError):
    """Error from an external data source. Not retried by default."""

    default_category = ErrorCategory.SOURCE
    default_retryable = False


class NotFoundError(SourceError):
    """The provider has no record for the requested ID (404-equivalent)."""


# =============================================================================
# VALIDATION
# =============================================================================


class ValidationFailure(AnimeSpineError):
    """
    Generated synopsis rejected by a content check.

    Retryable: a fresh LLM sample may pass. After the retry cap the
    synthesis stage degrades to the passthrough synopsis.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = True

    def __init__(self, message: str, *, check: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.check = check

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.check:
            result["check"] = self.check
        return result


# =============================================================================
# CONFIGURATION / STORAGE / ORCHESTRATION (Run-level)
# =============================================================================


class ConfigError(AnimeSpineError):
    """
    Configuration error or unreachable dependency.

    Never retried per-entity; unwinds to the run controller and fails the run.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class MissingConfigError(ConfigError):
    """Required configuration (e.g. an API key) is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class StorageError(AnimeSpineError):
    """State store unavailable or corrupt."""

    default_category = ErrorCategory.STORAGE
    default_retryable = False


class OrchestrationError(AnimeSpineError):
    """Run-level sequencing error."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = False


class RunInProgressError(OrchestrationError):
    """A new run was requested while another run is still marked running."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(
            f"Run {run_id} is still marked running; resume it or mark it failed first"
        )


class InvalidTransitionError(ValueError):
    """Raised when a stage status would move backwards without a reset."""

    def __init__(self, current: str, target: str, stage: str = "stage") -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid {stage} status transition: {current} → {target}")


def is_retryable(error: BaseException) -> bool:
    """
    Decide whether ``error`` is worth another attempt.

    Typed errors answer for themselves; anything untyped is assumed transient.
    """
    if isinstance(error, AnimeSpineError):
        return error.retryable
    return True


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "AnimeSpineError",
    "TransientError",
    "RateLimitError",
    "TimeoutError",
    "SourceError",
    "NotFoundError",
    "ValidationFailure",
    "ConfigError",
    "MissingConfigError",
    "StorageError",
    "OrchestrationError",
    "RunInProgressError",
    "InvalidTransitionError",
    "is_retryable",
]
