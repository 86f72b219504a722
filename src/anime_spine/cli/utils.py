"""
CLI utility helpers: output formatting, store access and progress display.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TaskID, TextColumn
from rich.table import Table

from anime_spine.core.errors import AnimeSpineError
from anime_spine.core.logging import configure_logging
from anime_spine.core.settings import PipelineSettings, get_settings
from anime_spine.state.store import StateStore

console = Console()
err_console = Console(stderr=True)


# ── Settings / store helpers ─────────────────────────────────────────────


def load_settings(database: str | None = None) -> PipelineSettings:
    """Process settings with the ``--database`` override applied; configures logging."""
    settings = get_settings()
    if database:
        settings = settings.model_copy(update={"state_db_path": Path(database)})
    configure_logging(settings.log_level)
    return settings


def open_store(settings: PipelineSettings) -> StateStore:
    return StateStore.open(settings.state_db_path)


def fail(error: AnimeSpineError | str) -> typer.Exit:
    """Print an error and return the ``Exit`` to raise."""
    if isinstance(error, AnimeSpineError):
        err_console.print(
            f"[bold red]Error[/bold red] ({error.category.value}): {error.message}"
        )
    else:
        err_console.print(f"[bold red]Error[/bold red]: {error}")
    return typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def output_json(payload: Any) -> None:
    """Write ``payload`` as JSON on stdout (no rich wrapping, so it stays parseable)."""
    typer.echo(json.dumps(payload, indent=2, default=_json_default))


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return str(value)


def print_table(items: list, *, title: str = "") -> None:
    """Render a list of dataclasses/dicts as a Rich table."""
    if not items:
        console.print("[dim]No items.[/dim]")
        return
    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col, overflow="fold")
    for item in items:
        d = _to_dict(item)
        table.add_row(*(str(_plain(v)) if v is not None else "" for v in d.values()))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {_plain(v)}")


# ── Progress ─────────────────────────────────────────────────────────────


class RichProgress:
    """Progress callback rendering one bar per stage.

    Usage::

        with RichProgress(console) as progress:
            controller = RunController.from_settings(settings, store, progress=progress)
    """

    def __init__(self, target: Console | None = None):
        self._progress = Progress(
            TextColumn("[bold blue]{task.description:<11}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[dim]{task.fields[message]}"),
            console=target or console,
            transient=False,
        )
        self._tasks: dict[str, TaskID] = {}

    def __enter__(self) -> RichProgress:
        self._progress.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._progress.stop()

    def __call__(self, stage: str, current: int, total: int, message: str) -> None:
        task = self._tasks.get(stage)
        if task is None:
            task = self._progress.add_task(stage, total=total, message="")
            self._tasks[stage] = task
        self._progress.update(task, completed=current, total=total, message=message[:16])
