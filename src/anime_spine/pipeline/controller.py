"""Run controller: initial load, incremental update, resume.

Manifesto:
    A run is one pass of snapshot → plan → fetch → synthesize → embed →
    build, recorded in the run ledger. The controller owns sequencing and
    the ledger; everything durable about entity progress lives in the
    state store, so a run interrupted at any point is finished by
    ``resume`` without repeating completed work.

Flows:
    ::

        initial_load        incremental_update           resume
        ────────────        ──────────────────           ──────
        refuse if running   refuse if running            find running run
        load snapshot       require completed run        reload its snapshot
        create_run          load snapshot                tasks from persisted
        plan_initial        diff vs retained previous      statuses
        ensure_pending      plan_incremental + pending rows
        mark re-planned     ensure_pending (new work)
          in_progress       mark re-planned in_progress
                 └──────────────┬──────────────┘
                    fetch → synthesize → embed → build → complete_run

Failure semantics:
    - per-entity failures stay inside the stages (recorded, counted)
    - a snapshot that cannot be loaded is recorded as a ``failed`` run with
      an empty snapshot version
    - anything else raised after ``create_run`` marks the run ``failed``
      with the partial stats and is returned as ``RunResult(success=False)``
    - a run already ``running`` blocks new runs (``RunInProgressError``)

Tags:
    orchestration, run-controller, resume, incremental, anime-spine
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from functools import partial

from anime_spine.core.catalog import CatalogEntry, CatalogSnapshot
from anime_spine.core.errors import OrchestrationError, RunInProgressError
from anime_spine.core.logging import LogContext, get_logger
from anime_spine.core.models import (
    PipelineEntity,
    PipelineRun,
    PipelineStats,
    RunStatus,
    RunType,
    Stage,
    StageStatus,
)
from anime_spine.core.settings import PipelineSettings
from anime_spine.embed.batch import BatchEmbedder
from anime_spine.embed.client import InfinityEmbeddingClient
from anime_spine.enrich.llm import HttpLLMClient, LLMConfig
from anime_spine.enrich.synthesizer import Synthesizer
from anime_spine.execution.retry import RetryPolicy
from anime_spine.pipeline.build import (
    ArtifactBuilder,
    BuildManifest,
    BuildMetadata,
    BuildStage,
    JsonArtifactBuilder,
)
from anime_spine.pipeline.stages import (
    EmbedStage,
    FetchStage,
    PipelineContext,
    StageResult,
    SynthesizeStage,
)
from anime_spine.reconcile.differ import diff
from anime_spine.reconcile.planner import (
    FetchTask,
    PlanStats,
    WorkPlan,
    eligible_providers,
    include_pending,
    plan_incremental,
    plan_initial,
)
from anime_spine.reconcile.snapshot import SnapshotLoader, snapshot_loader
from anime_spine.sources.base import FetcherRegistry, build_default_registry
from anime_spine.state.store import StateStore

logger = get_logger(__name__)

# (stage, current, total, message)
ProgressCallback = Callable[[str, int, int, str], None]

_UNSETTLED = (StageStatus.PENDING, StageStatus.IN_PROGRESS)


def new_run_id() -> str:
    return str(uuid.uuid4())


@dataclass
class RunResult:
    run_id: str | None
    run_type: RunType | None
    success: bool
    stats: PipelineStats = field(default_factory=PipelineStats)
    plan_stats: PlanStats | None = None
    manifest: BuildManifest | None = None
    error: str | None = None


class RunController:
    """Sequences stages into runs and keeps the run ledger.

    Collaborators are injected; :meth:`from_settings` wires the shipped
    HTTP implementations.
    """

    def __init__(
        self,
        store: StateStore,
        load_snapshot: SnapshotLoader,
        *,
        registry_factory: Callable[[], FetcherRegistry],
        synthesizer: Synthesizer,
        embedder: BatchEmbedder,
        builder: ArtifactBuilder,
        fetch_retry: RetryPolicy | None = None,
        embedding_model: str = "",
        dimensions: int = 0,
        progress: ProgressCallback | None = None,
        run_id_factory: Callable[[], str] = new_run_id,
    ):
        self.store = store
        self.load_snapshot = load_snapshot
        self.registry_factory = registry_factory
        self.synthesizer = synthesizer
        self.embedder = embedder
        self.builder = builder
        self.fetch_retry = fetch_retry or RetryPolicy()
        self.embedding_model = embedding_model
        self.dimensions = dimensions
        self.progress = progress
        self.run_id_factory = run_id_factory

    @classmethod
    def from_settings(
        cls,
        settings: PipelineSettings,
        store: StateStore,
        *,
        snapshot_path: str | None = None,
        progress: ProgressCallback | None = None,
    ) -> RunController:
        embedding_client = InfinityEmbeddingClient(
            settings.embedding_url, settings.embedding_model
        )
        return cls(
            store,
            snapshot_loader(
                snapshot_path, url=settings.snapshot_url, timeout=settings.snapshot_timeout
            ),
            registry_factory=partial(build_default_registry, timeout=settings.fetch_timeout),
            synthesizer=Synthesizer(
                llm_call=HttpLLMClient(),
                config=LLMConfig.from_settings(settings),
                min_sources=settings.min_synthesis_sources,
            ),
            embedder=BatchEmbedder(
                embedding_client,
                batch_size=settings.embedding_batch_size,
                concurrency=settings.embedding_concurrency,
            ),
            builder=JsonArtifactBuilder(settings.output_dir),
            fetch_retry=RetryPolicy(max_retries=settings.fetch_max_retries),
            embedding_model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            progress=progress,
        )

    # =========================================================================
    # FLOWS
    # =========================================================================

    def _refuse_if_running(self) -> None:
        incomplete = self.store.get_incomplete_run()
        if incomplete is not None:
            raise RunInProgressError(incomplete.run_id)

    def initial_load(self) -> RunResult:
        """Load everything in the current snapshot."""
        self._refuse_if_running()
        snapshot = self._load_current(RunType.INITIAL_LOAD)
        if isinstance(snapshot, RunResult):
            return snapshot

        self.store.save_snapshot(snapshot)
        run = self.store.create_run(self.run_id_factory(), RunType.INITIAL_LOAD, snapshot.version)

        def plan(registry: FetcherRegistry) -> WorkPlan:
            return plan_initial(snapshot.by_identity().values(), registry.supported)

        return self._run(run, snapshot, plan)

    def incremental_update(self) -> RunResult:
        """Process what changed since the last completed run, plus rows left pending."""
        self._refuse_if_running()
        previous_run = self.store.get_last_run(RunStatus.COMPLETED)
        if previous_run is None:
            raise OrchestrationError("No completed run found; run an initial load first")

        snapshot = self._load_current(RunType.INCREMENTAL_UPDATE)
        if isinstance(snapshot, RunResult):
            return snapshot

        previous = self.store.load_snapshot(previous_run.snapshot_version)
        if previous is None:
            logger.warning(
                "run.previous_snapshot_missing",
                previous_version=previous_run.snapshot_version,
            )

        self.store.save_snapshot(snapshot)
        run = self.store.create_run(
            self.run_id_factory(), RunType.INCREMENTAL_UPDATE, snapshot.version
        )

        def plan(registry: FetcherRegistry) -> WorkPlan:
            changeset = diff(previous, snapshot)
            logger.info("run.diff", **changeset.summary())
            work = plan_incremental(changeset, self.store.get, registry.supported)
            include_pending(
                work, snapshot.by_identity(), self._pending_rows(), registry.supported
            )
            return work

        return self._run(run, snapshot, plan)

    def resume(self) -> RunResult:
        """Finish the run still marked ``running``, from persisted statuses."""
        run = self.store.get_incomplete_run()
        if run is None:
            raise OrchestrationError("No incomplete run to resume")
        return self._run(run, None, None)

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _load_current(self, run_type: RunType) -> CatalogSnapshot | RunResult:
        """Load the snapshot; on failure record a failed run with no snapshot version."""
        try:
            return self.load_snapshot()
        except Exception as e:
            run = self.store.create_run(self.run_id_factory(), run_type, "")
            stats = PipelineStats()
            self.store.complete_run(run.run_id, stats, RunStatus.FAILED, error=str(e))
            logger.error(
                "run.snapshot_failed", run_id=run.run_id, run_type=run_type.value, error=str(e)
            )
            return RunResult(
                run_id=run.run_id, run_type=run_type, success=False, stats=stats, error=str(e)
            )

    def _snapshot_for(self, run: PipelineRun) -> CatalogSnapshot:
        retained = self.store.load_snapshot(run.snapshot_version)
        if retained is not None:
            return retained
        snapshot = self.load_snapshot()
        if snapshot.version != run.snapshot_version:
            logger.warning(
                "run.snapshot_version_mismatch",
                expected=run.snapshot_version,
                loaded=snapshot.version,
            )
        return snapshot

    def _run(
        self,
        run: PipelineRun,
        snapshot: CatalogSnapshot | None,
        planner: Callable[[FetcherRegistry], WorkPlan] | None,
    ) -> RunResult:
        stats = PipelineStats()
        result = RunResult(run_id=run.run_id, run_type=run.run_type, success=False, stats=stats)

        with LogContext(run_id=run.run_id, run_type=run.run_type.value):
            logger.info("run.started", snapshot_version=run.snapshot_version, resumed=planner is None)
            registry: FetcherRegistry | None = None
            try:
                if snapshot is None:
                    snapshot = self._snapshot_for(run)
                entries = snapshot.by_identity()
                registry = self.registry_factory()
                ctx = PipelineContext(
                    store=self.store,
                    entries=entries,
                    registry=registry,
                    fetch_retry=self.fetch_retry,
                    synthesizer=self.synthesizer,
                    embedder=self.embedder,
                    run_id=run.run_id,
                )

                if planner is not None:
                    plan = planner(registry)
                    result.plan_stats = plan.stats
                    stats.total_entries = plan.stats.total_entries
                    stats.skipped = len(plan.to_skip)
                    self.store.ensure_pending(plan.entity_ids, snapshot.version)
                    self._mark_planned(plan)
                    self._execute_planned(ctx, plan, stats)
                else:
                    stats.total_entries = len(entries)
                    self._execute_resumed(ctx, entries, stats)

                result.manifest = self._build(run, snapshot, entries, stats)
                self.store.complete_run(run.run_id, stats, RunStatus.COMPLETED)
                result.success = True
                logger.info("run.completed", **stats.to_dict())
            except Exception as e:
                result.error = str(e)
                logger.exception("run.failed", error=str(e), **stats.to_dict())
                self.store.complete_run(run.run_id, stats, RunStatus.FAILED, error=str(e))
            finally:
                if registry is not None:
                    registry.close()

        return result

    def _mark_planned(self, plan: WorkPlan) -> None:
        """Persist the plan as ``in_progress`` on rows an earlier run settled."""
        marked = {
            Stage.FETCH: self.store.mark_in_progress(
                Stage.FETCH, (task.entity_id for task in plan.to_fetch)
            ),
            Stage.SYNTHESIZE: self.store.mark_in_progress(Stage.SYNTHESIZE, plan.to_synthesize),
            Stage.EMBED: self.store.mark_in_progress(Stage.EMBED, plan.to_embed),
        }
        if any(marked.values()):
            logger.info("run.replanned", **{stage.value: count for stage, count in marked.items()})

    def _execute_planned(self, ctx: PipelineContext, plan: WorkPlan, stats: PipelineStats) -> None:
        self._consume(Stage.FETCH, FetchStage(ctx).process(plan.to_fetch), len(plan.to_fetch), stats)

        synthesize_ids = self._ready_for(Stage.SYNTHESIZE, plan.to_synthesize)
        self._consume(
            Stage.SYNTHESIZE,
            SynthesizeStage(ctx).process(synthesize_ids),
            len(synthesize_ids),
            stats,
        )

        embed_ids = self._ready_for(Stage.EMBED, plan.to_embed)
        self._consume(Stage.EMBED, EmbedStage(ctx).process(embed_ids), len(embed_ids), stats)

    def _execute_resumed(
        self, ctx: PipelineContext, entries: dict[str, CatalogEntry], stats: PipelineStats
    ) -> None:
        supported = ctx.registry.supported
        fetch_tasks = []
        for status in _UNSETTLED:
            for entity in self.store.query_by_stage(Stage.FETCH, status):
                entry = entries.get(entity.id)
                providers = eligible_providers(entry, supported) if entry is not None else ()
                fetch_tasks.append(FetchTask(entity.id, providers))
        self._consume(Stage.FETCH, FetchStage(ctx).process(fetch_tasks), len(fetch_tasks), stats)

        synthesize_ids = self._ready_for(Stage.SYNTHESIZE, self._unsettled_ids(Stage.SYNTHESIZE))
        self._consume(
            Stage.SYNTHESIZE,
            SynthesizeStage(ctx).process(synthesize_ids),
            len(synthesize_ids),
            stats,
        )

        embed_ids = self._ready_for(Stage.EMBED, self._unsettled_ids(Stage.EMBED))
        self._consume(Stage.EMBED, EmbedStage(ctx).process(embed_ids), len(embed_ids), stats)

    def _pending_rows(self) -> list[PipelineEntity]:
        rows = {}
        for stage in Stage:
            for entity in self.store.query_by_stage(stage, StageStatus.PENDING):
                rows.setdefault(entity.id, entity)
        return list(rows.values())

    def _unsettled_ids(self, stage: Stage) -> list[str]:
        ids = []
        for status in _UNSETTLED:
            ids.extend(entity.id for entity in self.store.query_by_stage(stage, status))
        return ids

    def _ready_for(self, stage: Stage, entity_ids: Iterable[str]) -> list[str]:
        """Ids whose prerequisite stage has settled well enough to run ``stage``.

        Synthesis needs a complete fetch, except on a re-planned row whose
        refetch came back short: the stage fails it and drops its old text.
        Embedding needs synthesis to have run at all.
        """
        ready = []
        for entity_id in dict.fromkeys(entity_ids):
            entity = self.store.get(entity_id)
            if entity is None:
                continue
            if stage is Stage.SYNTHESIZE and (
                entity.fetch_status is StageStatus.COMPLETE
                or entity.synthesis_status is StageStatus.IN_PROGRESS
            ):
                ready.append(entity_id)
            elif stage is Stage.EMBED and entity.synthesis_status.is_terminal:
                ready.append(entity_id)
        return ready

    def _consume(
        self,
        stage: Stage,
        results: Iterator[StageResult],
        total: int,
        stats: PipelineStats,
    ) -> None:
        logger.info("stage.started", stage=stage.value, total=total)
        tally = {status: 0 for status in StageStatus}
        for current, item in enumerate(results, start=1):
            tally[item.status] += 1
            if item.status is StageStatus.COMPLETE:
                if stage is Stage.FETCH:
                    stats.fetched += 1
                elif stage is Stage.SYNTHESIZE:
                    stats.synthesized += 1
                else:
                    stats.embedded += 1
            elif item.status is StageStatus.FAILED:
                stats.failed += 1
            elif item.status is StageStatus.INSUFFICIENT:
                stats.insufficient += 1
            if self.progress:
                self.progress(stage.value, current, total, item.entity_id)
        logger.info(
            "stage.completed",
            stage=stage.value,
            complete=tally[StageStatus.COMPLETE],
            failed=tally[StageStatus.FAILED],
            insufficient=tally[StageStatus.INSUFFICIENT],
        )

    def _build(
        self,
        run: PipelineRun,
        snapshot: CatalogSnapshot,
        entries: dict[str, CatalogEntry],
        stats: PipelineStats,
    ) -> BuildManifest | None:
        metadata = BuildMetadata(
            version=BuildMetadata.release_version(),
            snapshot_version=snapshot.version,
            embedding_model=self.embedding_model,
            dimensions=self.dimensions,
            run_id=run.run_id,
        )
        manifest = BuildStage(self.store, entries, self.builder).run(metadata)
        if manifest is not None:
            stats.built = manifest.entry_count
            if self.progress:
                self.progress("build", manifest.entry_count, manifest.entry_count, metadata.version)
        return manifest


__all__ = ["ProgressCallback", "RunResult", "RunController", "new_run_id"]
