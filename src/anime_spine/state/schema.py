"""
State store tables.

Defines the table names and DDL for the durable pipeline state. The schema
is also the operator-facing interface: ``sqlite3 state.sqlite`` is enough to
see which entities are stuck in which stage.

Tables:
    - **pipeline_state:** One row per entity; one status column per stage
    - **pipeline_runs:** Run ledger (one row per orchestration run)
    - **catalog_snapshots:** Full retained snapshots, diffed by incremental runs
    - **entity_vectors:** Embedding vectors (float32 blobs) awaiting build

Examples:
    >>> from anime_spine.state.schema import TABLES
    >>> TABLES["state"]
    'pipeline_state'
"""

import sqlite3

TABLES = {
    "state": "pipeline_state",
    "runs": "pipeline_runs",
    "snapshots": "catalog_snapshots",
    "vectors": "entity_vectors",
}

DDL = {
    "state": """
        CREATE TABLE IF NOT EXISTS pipeline_state (
            id TEXT PRIMARY KEY,
            snapshot_version TEXT NOT NULL DEFAULT '',
            responses TEXT NOT NULL DEFAULT '{}',
            synopsis_count INTEGER NOT NULL DEFAULT 0,
            fetch_status TEXT NOT NULL DEFAULT 'pending',
            synthesis_status TEXT NOT NULL DEFAULT 'pending',
            embedding_status TEXT NOT NULL DEFAULT 'pending',
            synopsis TEXT,
            canonical_text TEXT,
            last_error TEXT,
            last_updated TEXT NOT NULL
        )
    """,
    "runs": """
        CREATE TABLE IF NOT EXISTS pipeline_runs (
            run_id TEXT PRIMARY KEY,
            run_type TEXT NOT NULL,
            snapshot_version TEXT NOT NULL,
            started_at TEXT NOT NULL,
            completed_at TEXT,
            status TEXT NOT NULL DEFAULT 'running',
            stats TEXT,
            error TEXT
        )
    """,
    "snapshots": """
        CREATE TABLE IF NOT EXISTS catalog_snapshots (
            version TEXT PRIMARY KEY,
            saved_at TEXT NOT NULL,
            entry_count INTEGER NOT NULL,
            payload BLOB NOT NULL
        )
    """,
    "vectors": """
        CREATE TABLE IF NOT EXISTS entity_vectors (
            id TEXT PRIMARY KEY,
            dimensions INTEGER NOT NULL,
            vector BLOB NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_state_fetch ON pipeline_state(fetch_status)",
    "CREATE INDEX IF NOT EXISTS idx_state_synthesis ON pipeline_state(synthesis_status)",
    "CREATE INDEX IF NOT EXISTS idx_state_embedding ON pipeline_state(embedding_status)",
    "CREATE INDEX IF NOT EXISTS idx_runs_status ON pipeline_runs(status, started_at)",
]


def create_tables(conn: sqlite3.Connection) -> None:
    """Create all state tables and indexes (idempotent)."""
    for ddl in DDL.values():
        conn.execute(ddl)
    for index in INDEXES:
        conn.execute(index)
    conn.commit()


__all__ = ["TABLES", "DDL", "INDEXES", "create_tables"]
