"""Work planner.

Turns a fresh snapshot (initial load) or a changeset (incremental update)
plus the persisted pipeline state into concrete per-stage work:

    to_fetch       entities to (re)fetch from their eligible providers
    to_synthesize  entities needing synopsis synthesis
    to_embed       entities needing an embedding
    to_skip        entities that cannot be processed, with a reason

Which providers are eligible depends on the *supported* set passed in (the
providers the fetcher registry can actually call), not on the full provider
table: a source URI for a provider without a fetcher does not count.
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from anime_spine.core.catalog import CatalogEntry
from anime_spine.core.logging import get_logger
from anime_spine.core.models import PipelineEntity, StageStatus
from anime_spine.core.providers import ProviderName, extract_provider_ids
from anime_spine.reconcile.differ import Changeset

logger = get_logger(__name__)

# Changed fields that invalidate fetched provider data.
REFETCH_FIELDS = frozenset({"sources", "tags"})

StateReader = Callable[[str], PipelineEntity | None]


class SkipReason(str, Enum):
    NO_SOURCES = "no_sources"
    INSUFFICIENT_SYNOPSES = "insufficient_synopses"
    FETCH_FAILED = "fetch_failed"


@dataclass(frozen=True)
class FetchTask:
    entity_id: str
    eligible_providers: tuple[ProviderName, ...]


@dataclass(frozen=True)
class SkippedEntity:
    entity_id: str
    reason: SkipReason


@dataclass
class PlanStats:
    total_entries: int = 0
    new_entries: int = 0
    changed_entries: int = 0
    already_complete: int = 0


@dataclass
class WorkPlan:
    to_fetch: list[FetchTask] = field(default_factory=list)
    to_synthesize: list[str] = field(default_factory=list)
    to_embed: list[str] = field(default_factory=list)
    to_skip: list[SkippedEntity] = field(default_factory=list)
    stats: PlanStats = field(default_factory=PlanStats)

    @property
    def entity_ids(self) -> list[str]:
        """Every id with work planned, first appearance order."""
        ids = [task.entity_id for task in self.to_fetch]
        ids.extend(self.to_synthesize)
        ids.extend(self.to_embed)
        return list(dict.fromkeys(ids))

    @property
    def is_empty(self) -> bool:
        return not (self.to_fetch or self.to_synthesize or self.to_embed)


def eligible_providers(
    entry: CatalogEntry, supported: Collection[ProviderName]
) -> tuple[ProviderName, ...]:
    """Supported providers referenced by the entry's sources, in canonical order."""
    matched = extract_provider_ids(entry.sources)
    return tuple(p for p in ProviderName if p in matched and p in supported)


def _fetch_or_skip(
    entry: CatalogEntry, supported: Collection[ProviderName], plan: WorkPlan
) -> bool:
    providers = eligible_providers(entry, supported)
    if not providers:
        plan.to_skip.append(SkippedEntity(entry.identity, SkipReason.NO_SOURCES))
        return False
    plan.to_fetch.append(FetchTask(entry.identity, providers))
    plan.to_synthesize.append(entry.identity)
    plan.to_embed.append(entry.identity)
    return True


def plan_initial(
    entries: Iterable[CatalogEntry], supported: Collection[ProviderName]
) -> WorkPlan:
    """Plan a full load: every entry with an eligible provider is fetched."""
    plan = WorkPlan()
    count = 0
    for entry in entries:
        count += 1
        _fetch_or_skip(entry, supported, plan)

    plan.stats = PlanStats(total_entries=count, new_entries=count)
    logger.info(
        "plan.initial",
        total=count,
        to_fetch=len(plan.to_fetch),
        skipped=len(plan.to_skip),
    )
    return plan


def plan_incremental(
    changeset: Changeset,
    state_reader: StateReader,
    supported: Collection[ProviderName],
) -> WorkPlan:
    """Plan the targeted work for a changeset.

    Added entries are fetched. Changed entries are refetched when a
    refetch-relevant field changed; otherwise only the downstream stages that
    previously failed are redone.
    """
    plan = WorkPlan()
    already_complete = 0

    for entry in changeset.added:
        _fetch_or_skip(entry, supported, plan)

    for changed in changeset.changed:
        entry = changed.entry
        entity_id = entry.identity
        state = state_reader(entity_id)

        if REFETCH_FIELDS.intersection(changed.changed_fields) or state is None:
            _fetch_or_skip(entry, supported, plan)
            continue

        if state.synthesis_status is StageStatus.FAILED:
            plan.to_synthesize.append(entity_id)
            plan.to_embed.append(entity_id)
        elif state.embedding_status is StageStatus.FAILED:
            plan.to_embed.append(entity_id)
        if (
            state.synthesis_status is StageStatus.COMPLETE
            and state.embedding_status is StageStatus.COMPLETE
        ):
            already_complete += 1

    plan.stats = PlanStats(
        total_entries=changeset.total_current,
        new_entries=len(changeset.added),
        changed_entries=len(changeset.changed),
        already_complete=already_complete,
    )
    logger.info(
        "plan.incremental",
        total=plan.stats.total_entries,
        new=plan.stats.new_entries,
        changed=plan.stats.changed_entries,
        already_complete=already_complete,
        to_fetch=len(plan.to_fetch),
        to_synthesize=len(plan.to_synthesize),
        to_embed=len(plan.to_embed),
        skipped=len(plan.to_skip),
    )
    return plan


def include_pending(
    plan: WorkPlan,
    entries: Mapping[str, CatalogEntry],
    pending: Iterable[PipelineEntity],
    supported: Collection[ProviderName],
) -> int:
    """Add work for rows left ``pending`` outside any changeset (e.g. by a reset).

    Only rows of the current snapshot whose prerequisite stage has settled
    are picked up; a row already planned for a stage is not added twice.
    Returns the number of rows that gained work.
    """
    fetching = {task.entity_id for task in plan.to_fetch}
    synthesizing = set(plan.to_synthesize)
    embedding = set(plan.to_embed)
    added = 0

    for state in pending:
        entry = entries.get(state.id)
        if entry is None or state.id in fetching:
            continue
        if state.fetch_status is StageStatus.PENDING:
            if _fetch_or_skip(entry, supported, plan):
                fetching.add(state.id)
                added += 1
        elif (
            state.synthesis_status is StageStatus.PENDING
            and state.fetch_status is StageStatus.COMPLETE
            and state.id not in synthesizing
        ):
            plan.to_synthesize.append(state.id)
            synthesizing.add(state.id)
            if state.id not in embedding:
                plan.to_embed.append(state.id)
                embedding.add(state.id)
            added += 1
        elif (
            state.embedding_status is StageStatus.PENDING
            and state.synthesis_status.is_terminal
            and state.id not in embedding
        ):
            plan.to_embed.append(state.id)
            embedding.add(state.id)
            added += 1

    if added:
        logger.info("plan.pending_included", count=added)
    return added


__all__ = [
    "REFETCH_FIELDS",
    "StateReader",
    "SkipReason",
    "FetchTask",
    "SkippedEntity",
    "PlanStats",
    "WorkPlan",
    "eligible_providers",
    "plan_initial",
    "plan_incremental",
    "include_pending",
]
