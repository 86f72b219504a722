"""State store: durable per-entity stage progress plus the run ledger.

The StateStore is the single source of truth for pipeline progress. Every
stage executor writes an entity's outcome here *before* reporting it, so a
process killed at any point restarts from what is on disk.

Architecture:

    .. code-block:: text

        StateStore: single writer, one sqlite3 connection
        ┌───────────────────────────────────────────────────────────┐
        │  ENTITY STATE               RUN LEDGER                    │
        │  ────────────               ──────────                    │
        │  upsert()                   create_run()                  │
        │  ensure_pending()           complete_run()                │
        │  get()                      get_run() / list_runs()       │
        │  query_by_stage()           get_last_run()                │
        │  count_by_status()          get_incomplete_run()          │
        │  reset()                                                  │
        │                                                           │
        │  RETAINED SNAPSHOTS         VECTORS                       │
        │  save_snapshot()            save_vector(s)()              │
        │  load_snapshot()            get_vector(s)()               │
        └───────────────────────────────────────────────────────────┘

Guarantees:
    - ``upsert`` merges inside one transaction; absent fields keep their
      stored value; re-applying the same fields is a no-op.
    - Stage statuses never go back to ``pending`` except through ``reset``.
    - ``get_incomplete_run`` doubles as the single-run lock: the controller
      refuses to start a run while one is still ``running``.

Example:
    >>> store = StateStore.open(":memory:")
    >>> store.ensure_pending(["abc"], "2024-01-01")
    1
    >>> store.upsert("abc", fetch_status=StageStatus.COMPLETE)
    >>> store.get("abc").fetch_status
    <StageStatus.COMPLETE: 'complete'>
"""

from __future__ import annotations

import gzip
import json
import sqlite3
import threading
from array import array
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from anime_spine.core.catalog import CatalogSnapshot
from anime_spine.core.errors import OrchestrationError, StorageError
from anime_spine.core.logging import get_logger
from anime_spine.core.models import (
    PipelineEntity,
    PipelineRun,
    PipelineStats,
    ProviderResponse,
    RunStatus,
    RunType,
    Stage,
    StageStatus,
    utcnow,
    validate_stage_transition,
)
from anime_spine.core.providers import ProviderName
from anime_spine.state.schema import create_tables

logger = get_logger(__name__)

_ENTITY_COLUMNS = (
    "id, snapshot_version, responses, synopsis_count, fetch_status, "
    "synthesis_status, embedding_status, synopsis, canonical_text, last_error, last_updated"
)

_RUN_COLUMNS = (
    "run_id, run_type, snapshot_version, started_at, completed_at, status, stats, error"
)

# Fields callers may pass to upsert(); the status fields are transition-checked.
_STATUS_FIELDS = ("fetch_status", "synthesis_status", "embedding_status")
_WRITABLE_FIELDS = frozenset(
    {
        "snapshot_version",
        "responses",
        "synopsis_count",
        "synopsis",
        "canonical_text",
        "last_error",
        *_STATUS_FIELDS,
    }
)

# One explicit statement per stage; no column names are built from input.
_SELECT_BY_STAGE = {
    Stage.FETCH: f"SELECT {_ENTITY_COLUMNS} FROM pipeline_state WHERE fetch_status = ? ORDER BY id",
    Stage.SYNTHESIZE: f"SELECT {_ENTITY_COLUMNS} FROM pipeline_state WHERE synthesis_status = ? ORDER BY id",
    Stage.EMBED: f"SELECT {_ENTITY_COLUMNS} FROM pipeline_state WHERE embedding_status = ? ORDER BY id",
}

_COUNT_BY_STAGE = {
    Stage.FETCH: "SELECT fetch_status, COUNT(*) FROM pipeline_state GROUP BY fetch_status",
    Stage.SYNTHESIZE: "SELECT synthesis_status, COUNT(*) FROM pipeline_state GROUP BY synthesis_status",
    Stage.EMBED: "SELECT embedding_status, COUNT(*) FROM pipeline_state GROUP BY embedding_status",
}

_RESET_BY_STAGE = {
    Stage.FETCH: "UPDATE pipeline_state SET fetch_status = 'pending', last_updated = ? WHERE fetch_status != 'pending'",
    Stage.SYNTHESIZE: "UPDATE pipeline_state SET synthesis_status = 'pending', last_updated = ? WHERE synthesis_status != 'pending'",
    Stage.EMBED: "UPDATE pipeline_state SET embedding_status = 'pending', last_updated = ? WHERE embedding_status != 'pending'",
}

# Re-planned work on a settled row goes back to in_progress so a resume finds it.
_MARK_BY_STAGE = {
    Stage.FETCH: "UPDATE pipeline_state SET fetch_status = 'in_progress', last_updated = ? WHERE id = ? AND fetch_status IN ('complete', 'failed', 'insufficient')",
    Stage.SYNTHESIZE: "UPDATE pipeline_state SET synthesis_status = 'in_progress', last_updated = ? WHERE id = ? AND synthesis_status IN ('complete', 'failed', 'insufficient')",
    Stage.EMBED: "UPDATE pipeline_state SET embedding_status = 'in_progress', last_updated = ? WHERE id = ? AND embedding_status IN ('complete', 'failed', 'insufficient')",
}


class StateStore:
    """SQLite-backed pipeline state.

    Args:
        conn: Open ``sqlite3.Connection``. Tables are created if missing.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        with self._transaction():
            create_tables(self._conn)

    @classmethod
    def open(cls, path: str | Path) -> StateStore:
        """Open (creating if needed) the store at ``path`` or ``":memory:"``."""
        target = str(path)
        try:
            if target != ":memory:":
                Path(target).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(target, check_same_thread=False)
            if target != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL")
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Cannot open state store at {target}: {e}", cause=e) from e
        return cls(conn)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> StateStore:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on any error; sqlite errors become StorageError."""
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as e:
                raise StorageError(f"State store error: {e}", cause=e) from e

    # =========================================================================
    # ENTITY STATE
    # =========================================================================

    def upsert(self, entity_id: str, **fields: Any) -> None:
        """Merge ``fields`` into the entity row, creating it if absent.

        Raises:
            ValueError: unknown field name
            InvalidTransitionError: a status would regress to ``pending``
        """
        unknown = set(fields) - _WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown pipeline_state fields: {sorted(unknown)}")

        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT {_ENTITY_COLUMNS} FROM pipeline_state WHERE id = ?", (entity_id,)
            ).fetchone()
            current = dict(row) if row is not None else None

            updates: dict[str, Any] = {}
            for name, value in fields.items():
                encoded = _encode_field(name, value)
                if name in _STATUS_FIELDS and current is not None:
                    validate_stage_transition(
                        StageStatus(current[name]), StageStatus(encoded), name
                    )
                if current is None or current[name] != encoded:
                    updates[name] = encoded

            if current is None:
                values = {
                    "snapshot_version": "",
                    "responses": "{}",
                    "synopsis_count": 0,
                    "fetch_status": StageStatus.PENDING.value,
                    "synthesis_status": StageStatus.PENDING.value,
                    "embedding_status": StageStatus.PENDING.value,
                    "synopsis": None,
                    "canonical_text": None,
                    "last_error": None,
                    **updates,
                }
                conn.execute(
                    f"""
                    INSERT INTO pipeline_state ({_ENTITY_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entity_id,
                        values["snapshot_version"],
                        values["responses"],
                        values["synopsis_count"],
                        values["fetch_status"],
                        values["synthesis_status"],
                        values["embedding_status"],
                        values["synopsis"],
                        values["canonical_text"],
                        values["last_error"],
                        utcnow().isoformat(),
                    ),
                )
                return

            if not updates:
                return

            # Column names come from _WRITABLE_FIELDS, never from caller strings.
            assignments = ", ".join(f"{name} = ?" for name in updates)
            conn.execute(
                f"UPDATE pipeline_state SET {assignments}, last_updated = ? WHERE id = ?",
                (*updates.values(), utcnow().isoformat(), entity_id),
            )

    def ensure_pending(self, entity_ids: Iterable[str], snapshot_version: str) -> int:
        """Create missing rows as pending and stamp ``snapshot_version`` on all.

        Existing statuses are never touched. Returns the number of rows created.
        """
        ids = list(dict.fromkeys(entity_ids))
        if not ids:
            return 0
        now = utcnow().isoformat()
        with self._transaction() as conn:
            before = conn.total_changes
            conn.executemany(
                """
                INSERT OR IGNORE INTO pipeline_state (id, snapshot_version, last_updated)
                VALUES (?, ?, ?)
                """,
                [(entity_id, snapshot_version, now) for entity_id in ids],
            )
            created = conn.total_changes - before
            conn.executemany(
                "UPDATE pipeline_state SET snapshot_version = ? WHERE id = ? AND snapshot_version != ?",
                [(snapshot_version, entity_id, snapshot_version) for entity_id in ids],
            )
        return created

    def mark_in_progress(self, stage: Stage, entity_ids: Iterable[str]) -> int:
        """Move settled rows back to ``in_progress`` for one stage.

        Rows still ``pending`` or already ``in_progress`` are left alone.
        Returns the number of rows changed.
        """
        ids = list(dict.fromkeys(entity_ids))
        if not ids:
            return 0
        now = utcnow().isoformat()
        with self._transaction() as conn:
            before = conn.total_changes
            conn.executemany(_MARK_BY_STAGE[stage], [(now, entity_id) for entity_id in ids])
            return conn.total_changes - before

    def get(self, entity_id: str) -> PipelineEntity | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_ENTITY_COLUMNS} FROM pipeline_state WHERE id = ?", (entity_id,)
            ).fetchone()
        return _row_to_entity(row) if row is not None else None

    def get_many(self, entity_ids: Iterable[str]) -> dict[str, PipelineEntity]:
        result = {}
        for entity_id in entity_ids:
            entity = self.get(entity_id)
            if entity is not None:
                result[entity_id] = entity
        return result

    def query_by_stage(self, stage: Stage, status: StageStatus) -> list[PipelineEntity]:
        """All entities whose ``stage`` status equals ``status``, ordered by id."""
        with self._lock:
            rows = self._conn.execute(_SELECT_BY_STAGE[stage], (StageStatus(status).value,)).fetchall()
        return [_row_to_entity(row) for row in rows]

    def iter_entities(self) -> Iterator[PipelineEntity]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_ENTITY_COLUMNS} FROM pipeline_state ORDER BY id"
            ).fetchall()
        for row in rows:
            yield _row_to_entity(row)

    def count_by_status(self, stage: Stage = Stage.FETCH) -> dict[str, int]:
        """Tally of entities per status for one stage."""
        with self._lock:
            rows = self._conn.execute(_COUNT_BY_STAGE[stage]).fetchall()
        return {row[0]: row[1] for row in rows}

    def count_entities(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM pipeline_state").fetchone()[0]

    def reset(self, stage: Stage | None = None) -> int:
        """Bulk-reset one stage (or every stage) to ``pending``.

        The only operation allowed to move a status back to ``pending``.
        Returns the number of status values changed.
        """
        stages = [stage] if stage is not None else list(Stage)
        now = utcnow().isoformat()
        changed = 0
        with self._transaction() as conn:
            for target in stages:
                changed += conn.execute(_RESET_BY_STAGE[target], (now,)).rowcount
            if stage is None:
                conn.execute("UPDATE pipeline_state SET last_error = NULL")
        logger.info("state.reset", stage=stage.value if stage else "all", changed=changed)
        return changed

    # =========================================================================
    # RUN LEDGER
    # =========================================================================

    def create_run(self, run_id: str, run_type: RunType, snapshot_version: str) -> PipelineRun:
        run = PipelineRun(
            run_id=run_id,
            run_type=RunType(run_type),
            snapshot_version=snapshot_version,
            started_at=utcnow(),
        )
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO pipeline_runs (run_id, run_type, snapshot_version, started_at, status)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    run.run_id,
                    run.run_type.value,
                    run.snapshot_version,
                    run.started_at.isoformat(),
                    run.status.value,
                ),
            )
        return run

    def complete_run(
        self,
        run_id: str,
        stats: PipelineStats,
        status: RunStatus = RunStatus.COMPLETED,
        error: str | None = None,
    ) -> None:
        """Finalize a running run. A run is finalized exactly once."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE pipeline_runs
                SET completed_at = ?, status = ?, stats = ?, error = ?
                WHERE run_id = ? AND status = 'running'
                """,
                (
                    utcnow().isoformat(),
                    RunStatus(status).value,
                    json.dumps(stats.to_dict()),
                    error,
                    run_id,
                ),
            )
            if cursor.rowcount == 0:
                raise OrchestrationError(f"Run {run_id} does not exist or is already finalized")

    def get_run(self, run_id: str) -> PipelineRun | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_RUN_COLUMNS} FROM pipeline_runs WHERE run_id = ?", (run_id,)
            ).fetchone()
        return _row_to_run(row) if row is not None else None

    def get_last_run(self, status: RunStatus | None = None) -> PipelineRun | None:
        """Most recently started run, optionally filtered by status."""
        with self._lock:
            if status is None:
                row = self._conn.execute(
                    f"SELECT {_RUN_COLUMNS} FROM pipeline_runs ORDER BY started_at DESC, rowid DESC LIMIT 1"
                ).fetchone()
            else:
                row = self._conn.execute(
                    f"""
                    SELECT {_RUN_COLUMNS} FROM pipeline_runs
                    WHERE status = ? ORDER BY started_at DESC, rowid DESC LIMIT 1
                    """,
                    (RunStatus(status).value,),
                ).fetchone()
        return _row_to_run(row) if row is not None else None

    def get_incomplete_run(self) -> PipelineRun | None:
        return self.get_last_run(RunStatus.RUNNING)

    def list_runs(self, limit: int = 20) -> list[PipelineRun]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_RUN_COLUMNS} FROM pipeline_runs ORDER BY started_at DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [_row_to_run(row) for row in rows]

    # =========================================================================
    # RETAINED SNAPSHOTS
    # =========================================================================

    def save_snapshot(self, snapshot: CatalogSnapshot) -> None:
        """Retain the full snapshot so later runs can diff against it."""
        payload = gzip.compress(snapshot.model_dump_json(by_alias=True).encode("utf-8"))
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO catalog_snapshots (version, saved_at, entry_count, payload)
                VALUES (?, ?, ?, ?)
                """,
                (snapshot.version, utcnow().isoformat(), len(snapshot.data), payload),
            )

    def load_snapshot(self, version: str) -> CatalogSnapshot | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT payload FROM catalog_snapshots WHERE version = ?", (version,)
            ).fetchone()
        if row is None:
            return None
        return CatalogSnapshot.model_validate_json(gzip.decompress(row["payload"]))

    def has_snapshot(self, version: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM catalog_snapshots WHERE version = ?", (version,)
            ).fetchone()
        return row is not None

    # =========================================================================
    # VECTORS
    # =========================================================================

    def save_vector(self, entity_id: str, vector: Sequence[float]) -> None:
        self.save_vectors({entity_id: vector})

    def save_vectors(self, vectors: Mapping[str, Sequence[float]]) -> None:
        now = utcnow().isoformat()
        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO entity_vectors (id, dimensions, vector, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                [
                    (entity_id, len(vector), array("f", vector).tobytes(), now)
                    for entity_id, vector in vectors.items()
                ],
            )

    def get_vector(self, entity_id: str) -> list[float] | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT vector FROM entity_vectors WHERE id = ?", (entity_id,)
            ).fetchone()
        return _decode_vector(row["vector"]) if row is not None else None

    def get_vectors(self, entity_ids: Iterable[str]) -> dict[str, list[float]]:
        result = {}
        for entity_id in entity_ids:
            vector = self.get_vector(entity_id)
            if vector is not None:
                result[entity_id] = vector
        return result


# =============================================================================
# ROW CONVERSION
# =============================================================================


def _encode_field(name: str, value: Any) -> Any:
    if name in _STATUS_FIELDS:
        return StageStatus(value).value
    if name == "responses":
        return _encode_responses(value)
    if name == "synopsis_count":
        return int(value)
    return value


def _encode_responses(responses: Mapping[ProviderName, ProviderResponse | None]) -> str:
    encoded = {
        ProviderName(provider).value: (response.to_dict() if response is not None else None)
        for provider, response in responses.items()
    }
    return json.dumps(encoded, sort_keys=True, default=str)


def _decode_responses(raw: str) -> dict[ProviderName, ProviderResponse | None]:
    data = json.loads(raw or "{}")
    return {
        ProviderName(provider): (ProviderResponse.from_dict(item) if item is not None else None)
        for provider, item in data.items()
    }


def _decode_vector(blob: bytes) -> list[float]:
    values = array("f")
    values.frombytes(blob)
    return values.tolist()


def _row_to_entity(row: sqlite3.Row) -> PipelineEntity:
    return PipelineEntity(
        id=row["id"],
        snapshot_version=row["snapshot_version"],
        responses=_decode_responses(row["responses"]),
        synopsis_count=row["synopsis_count"],
        fetch_status=StageStatus(row["fetch_status"]),
        synthesis_status=StageStatus(row["synthesis_status"]),
        embedding_status=StageStatus(row["embedding_status"]),
        synopsis=row["synopsis"],
        canonical_text=row["canonical_text"],
        last_error=row["last_error"],
        last_updated=datetime.fromisoformat(row["last_updated"]),
    )


def _row_to_run(row: sqlite3.Row) -> PipelineRun:
    return PipelineRun(
        run_id=row["run_id"],
        run_type=RunType(row["run_type"]),
        snapshot_version=row["snapshot_version"],
        started_at=datetime.fromisoformat(row["started_at"]),
        completed_at=datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None,
        status=RunStatus(row["status"]),
        stats=PipelineStats.from_dict(json.loads(row["stats"])) if row["stats"] else None,
        error=row["error"],
    )


__all__ = ["StateStore"]
