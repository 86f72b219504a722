"""
Root Typer application for the anime-spine CLI.

Commands::

    anime-spine initial-load         full load of the current snapshot
    anime-spine incremental-update   process what changed since the last run
    anime-spine resume               finish a run left in ``running``
    anime-spine status               entity tally per stage status
    anime-spine reset [STAGE]        put a stage (or all) back to pending
    anime-spine runs                 recent entries of the run ledger
"""

from __future__ import annotations

from contextlib import nullcontext

import typer
from typer import Typer

from anime_spine import __version__
from anime_spine.cli.utils import (
    RichProgress,
    console,
    fail,
    load_settings,
    open_store,
    output_json,
    print_dict,
    print_table,
)
from anime_spine.core.errors import AnimeSpineError
from anime_spine.core.models import Stage, StageStatus
from anime_spine.core.settings import PipelineSettings
from anime_spine.pipeline.controller import ProgressCallback, RunController, RunResult
from anime_spine.state.store import StateStore

app = Typer(
    name="anime-spine",
    help="anime-spine: catalog reconciliation and enrichment pipeline.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"anime-spine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """anime-spine CLI. Run the pipeline and inspect its state."""


# ── Run commands ─────────────────────────────────────────────────────────


def build_controller(
    settings: PipelineSettings,
    store: StateStore,
    snapshot: str | None,
    progress: ProgressCallback | None,
) -> RunController:
    return RunController.from_settings(
        settings, store, snapshot_path=snapshot, progress=progress
    )


def _run(action: str, database: str | None, snapshot: str | None) -> None:
    settings = load_settings(database)
    try:
        with open_store(settings) as store:
            progress_ctx = RichProgress() if console.is_terminal else nullcontext(None)
            with progress_ctx as progress:
                controller = build_controller(settings, store, snapshot, progress)
                result: RunResult = getattr(controller, action)()
    except AnimeSpineError as e:
        raise fail(e) from e

    _print_run_result(result)
    if not result.success:
        raise typer.Exit(code=1)


def _print_run_result(result: RunResult) -> None:
    summary = {
        "run_id": result.run_id or "-",
        "run_type": result.run_type.value if result.run_type else "-",
        "success": result.success,
    }
    if result.manifest is not None:
        summary["release"] = result.manifest.version
    if result.error:
        summary["error"] = result.error
    print_dict(summary, title="Run")
    print_dict(result.stats.to_dict(), title="Stats")
    if result.success:
        console.print("[green]✓[/green] Run completed")
    else:
        console.print("[bold red]✗[/bold red] Run failed")


@app.command("initial-load")
def initial_load(
    snapshot: str | None = typer.Option(
        None, "--snapshot", "-s", help="Local snapshot file instead of downloading."
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Load and process every entry of the current catalog snapshot."""
    _run("initial_load", database, snapshot)


@app.command("incremental-update")
def incremental_update(
    snapshot: str | None = typer.Option(
        None, "--snapshot", "-s", help="Local snapshot file instead of downloading."
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Process only entries added or changed since the last completed run."""
    _run("incremental_update", database, snapshot)


@app.command()
def resume(
    snapshot: str | None = typer.Option(
        None, "--snapshot", "-s", help="Snapshot file if the retained copy is missing."
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Finish the run still marked running."""
    _run("resume", database, snapshot)


# ── Inspection commands ──────────────────────────────────────────────────


@app.command()
def status(
    stage: Stage = typer.Option(Stage.FETCH, "--stage", help="Stage to tally."),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Count entities per status for one stage."""
    settings = load_settings(database)
    try:
        with open_store(settings) as store:
            counts = store.count_by_status(stage)
            total = store.count_entities()
            last_run = store.get_last_run()
    except AnimeSpineError as e:
        raise fail(e) from e

    ordered = {s.value: counts.get(s.value, 0) for s in StageStatus}
    if json_out:
        output_json(
            {
                "stage": stage.value,
                "total": total,
                "counts": ordered,
                "last_run": _run_row(last_run) if last_run else None,
            }
        )
        return

    print_table(
        [{"status": name, "count": count} for name, count in ordered.items()],
        title=f"{stage.value} status ({total} entities)",
    )
    if last_run is not None:
        print_dict(_run_row(last_run), title="Last run")


@app.command()
def reset(
    stage: Stage | None = typer.Argument(None, help="Stage to reset (default: all)."),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Put one stage (or every stage) back to pending.

    The next incremental-update (or initial-load) reprocesses the reset rows.
    """
    label = stage.value if stage else "all stages"
    if not force:
        if not typer.confirm(f"Reset {label} to pending?"):
            console.print("[dim]Aborted.[/dim]")
            raise typer.Exit(code=0)

    settings = load_settings(database)
    try:
        with open_store(settings) as store:
            changed = store.reset(stage)
    except AnimeSpineError as e:
        raise fail(e) from e
    console.print(f"[green]✓[/green] Reset {label}: {changed} status values changed")
    console.print("[dim]Run incremental-update to reprocess them.[/dim]")


@app.command()
def runs(
    limit: int = typer.Option(20, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List recent runs from the run ledger."""
    settings = load_settings(database)
    try:
        with open_store(settings) as store:
            rows = [_run_row(run) for run in store.list_runs(limit)]
    except AnimeSpineError as e:
        raise fail(e) from e

    if json_out:
        output_json(rows)
        return
    print_table(rows, title="Runs")


def _run_row(run) -> dict:
    stats = run.stats.to_dict() if run.stats else {}
    return {
        "run_id": run.run_id,
        "run_type": run.run_type.value,
        "status": run.status.value,
        "snapshot_version": run.snapshot_version,
        "started_at": run.started_at.isoformat(),
        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
        "fetched": stats.get("fetched", 0),
        "embedded": stats.get("embedded", 0),
        "failed": stats.get("failed", 0),
        "built": stats.get("built", 0),
        "error": run.error,
    }
