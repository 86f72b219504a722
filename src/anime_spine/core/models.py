"""Pipeline domain models.

Defines the records the state store persists and the stage executors pass
around:

- StageStatus / Stage: per-entity progress markers, one column per stage
- ProviderResponse: one provider's answer for one entity
- PipelineEntity: the durable per-entity row
- PipelineRun / PipelineStats: the run ledger

Stage status graph::

    pending ──► in_progress ──► complete | failed | insufficient
       ▲                             │
       └──────── reset() only ◄──────┘

Terminal states may be overwritten by another terminal state when a stage is
re-executed (e.g. a failed synthesis retried in a later run); they never go
back to ``pending`` except through an explicit reset.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from anime_spine.core.errors import InvalidTransitionError
from anime_spine.core.providers import ProviderName


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class StageStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"
    INSUFFICIENT = "insufficient"

    @property
    def is_terminal(self) -> bool:
        return self in (StageStatus.COMPLETE, StageStatus.FAILED, StageStatus.INSUFFICIENT)


def validate_stage_transition(
    current: StageStatus, target: StageStatus, stage: str = "stage"
) -> None:
    """Raise :class:`InvalidTransitionError` if ``current → target`` regresses.

    Writing ``pending`` over any other status is a regression; only the
    store's ``reset()`` may do that.
    """
    if target is StageStatus.PENDING and current is not StageStatus.PENDING:
        raise InvalidTransitionError(current.value, target.value, stage)


class Stage(str, Enum):
    """Pipeline stages that carry a per-entity status."""

    FETCH = "fetch"
    SYNTHESIZE = "synthesize"
    EMBED = "embed"

    @property
    def status_field(self) -> str:
        """Attribute/column holding this stage's status."""
        return _STATUS_FIELDS[self]

    @property
    def prerequisite(self) -> Stage | None:
        return _PREREQUISITES[self]


_STATUS_FIELDS: dict[Stage, str] = {
    Stage.FETCH: "fetch_status",
    Stage.SYNTHESIZE: "synthesis_status",
    Stage.EMBED: "embedding_status",
}

_PREREQUISITES: dict[Stage, Stage | None] = {
    Stage.FETCH: None,
    Stage.SYNTHESIZE: Stage.FETCH,
    Stage.EMBED: Stage.SYNTHESIZE,
}


class RunType(str, Enum):
    INITIAL_LOAD = "initial_load"
    INCREMENTAL_UPDATE = "incremental_update"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ExtractedFields:
    """Provider-neutral fields pulled out of a raw provider payload."""

    title: str
    synopsis: str | None = None
    tags: list[str] = field(default_factory=list)
    type: str = "UNKNOWN"
    episodes: int | None = None
    status: str = "UNKNOWN"
    year: int | None = None


@dataclass
class ProviderResponse:
    """One provider's record for one entity."""

    provider: ProviderName
    provider_id: str
    extracted: ExtractedFields
    raw: Any = None
    fetched_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider.value,
            "provider_id": self.provider_id,
            "fetched_at": self.fetched_at.isoformat(),
            "raw": self.raw,
            "extracted": asdict(self.extracted),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderResponse:
        return cls(
            provider=ProviderName(data["provider"]),
            provider_id=str(data["provider_id"]),
            fetched_at=datetime.fromisoformat(data["fetched_at"]),
            raw=data.get("raw"),
            extracted=ExtractedFields(**data["extracted"]),
        )


@dataclass
class PipelineEntity:
    """Durable per-entity stage progress (one row in ``pipeline_state``)."""

    id: str
    snapshot_version: str = ""
    responses: dict[ProviderName, ProviderResponse | None] = field(default_factory=dict)
    synopsis_count: int = 0
    fetch_status: StageStatus = StageStatus.PENDING
    synthesis_status: StageStatus = StageStatus.PENDING
    embedding_status: StageStatus = StageStatus.PENDING
    synopsis: str | None = None
    canonical_text: str | None = None
    last_error: str | None = None
    last_updated: datetime | None = None

    def status_of(self, stage: Stage) -> StageStatus:
        if stage is Stage.FETCH:
            return self.fetch_status
        if stage is Stage.SYNTHESIZE:
            return self.synthesis_status
        return self.embedding_status

    @property
    def available_responses(self) -> list[ProviderResponse]:
        """Responses that carry data, in canonical provider order."""
        return [
            self.responses[p]
            for p in ProviderName
            if self.responses.get(p) is not None
        ]


@dataclass
class PipelineStats:
    """Aggregate counters recorded on the run ledger."""

    total_entries: int = 0
    fetched: int = 0
    synthesized: int = 0
    embedded: int = 0
    failed: int = 0
    insufficient: int = 0
    skipped: int = 0
    built: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PipelineStats:
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: int(v) for k, v in data.items() if k in known})


@dataclass
class PipelineRun:
    """One orchestration run in the ledger (``pipeline_runs``)."""

    run_id: str
    run_type: RunType
    snapshot_version: str
    started_at: datetime
    completed_at: datetime | None = None
    status: RunStatus = RunStatus.RUNNING
    stats: PipelineStats | None = None
    error: str | None = None


__all__ = [
    "utcnow",
    "StageStatus",
    "validate_stage_transition",
    "Stage",
    "RunType",
    "RunStatus",
    "ExtractedFields",
    "ProviderResponse",
    "PipelineEntity",
    "PipelineStats",
    "PipelineRun",
]
