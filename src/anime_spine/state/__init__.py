"""Durable pipeline state (SQLite)."""

from anime_spine.state.schema import TABLES, create_tables
from anime_spine.state.store import StateStore

__all__ = ["StateStore", "TABLES", "create_tables"]
