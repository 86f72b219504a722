"""Snapshot loading, diffing and work planning."""

from anime_spine.reconcile.differ import Changeset, ChangedEntry, diff
from anime_spine.reconcile.planner import (
    FetchTask,
    PlanStats,
    SkipReason,
    SkippedEntity,
    WorkPlan,
    plan_incremental,
    plan_initial,
)
from anime_spine.reconcile.snapshot import (
    download_snapshot,
    load_snapshot_file,
    parse_snapshot,
    snapshot_loader,
)

__all__ = [
    "Changeset",
    "ChangedEntry",
    "diff",
    "FetchTask",
    "PlanStats",
    "SkipReason",
    "SkippedEntity",
    "WorkPlan",
    "plan_incremental",
    "plan_initial",
    "download_snapshot",
    "load_snapshot_file",
    "parse_snapshot",
    "snapshot_loader",
]
