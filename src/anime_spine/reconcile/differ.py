"""Snapshot differ.

Classifies the entries of a catalog snapshot against the previous one:

- **added:** identity only in the current snapshot
- **changed:** identity in both, one or more compared fields differ
- **unchanged:** identity in both, nothing differs (count only)
- **removed:** identity only in the previous snapshot (identity only)

Identity is a hash of the sorted source URIs, so editing an entry's source
list surfaces as a removed + added pair, never as ``changed``.

Invariant::

    len(added) + len(changed) + unchanged == number of distinct current identities
"""

from __future__ import annotations

from dataclasses import dataclass, field

from anime_spine.core.catalog import CatalogEntry, CatalogSnapshot

# Fields compared for identities present in both snapshots.
COMPARED_FIELDS = ("title", "type", "episodes", "status", "season", "year", "tags", "sources")


@dataclass
class ChangedEntry:
    entry: CatalogEntry
    changed_fields: list[str]


@dataclass
class Changeset:
    added: list[CatalogEntry] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    changed: list[ChangedEntry] = field(default_factory=list)
    unchanged: int = 0
    previous_version: str = ""
    current_version: str = ""

    @property
    def total_current(self) -> int:
        return len(self.added) + len(self.changed) + self.unchanged

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.changed)

    def summary(self) -> dict[str, int | str]:
        return {
            "previous_version": self.previous_version,
            "current_version": self.current_version,
            "added": len(self.added),
            "removed": len(self.removed),
            "changed": len(self.changed),
            "unchanged": self.unchanged,
        }


def compare_entries(previous: CatalogEntry, current: CatalogEntry) -> list[str]:
    """Names of the compared fields that differ between two entries."""
    changed = []
    if previous.title != current.title:
        changed.append("title")
    if previous.type != current.type:
        changed.append("type")
    if previous.episodes != current.episodes:
        changed.append("episodes")
    if previous.status != current.status:
        changed.append("status")
    if previous.anime_season.season != current.anime_season.season:
        changed.append("season")
    if previous.anime_season.year != current.anime_season.year:
        changed.append("year")
    if sorted(previous.tags) != sorted(current.tags):
        changed.append("tags")
    if sorted(previous.sources) != sorted(current.sources):
        changed.append("sources")
    return changed


def diff(previous: CatalogSnapshot | None, current: CatalogSnapshot) -> Changeset:
    """Compute the changeset from ``previous`` (may be ``None``) to ``current``."""
    current_map = current.by_identity()

    if previous is None:
        return Changeset(
            added=list(current_map.values()),
            previous_version="",
            current_version=current.version,
        )

    previous_map = previous.by_identity()
    changeset = Changeset(previous_version=previous.version, current_version=current.version)

    for identity, entry in current_map.items():
        prev_entry = previous_map.get(identity)
        if prev_entry is None:
            changeset.added.append(entry)
            continue
        changed_fields = compare_entries(prev_entry, entry)
        if changed_fields:
            changeset.changed.append(ChangedEntry(entry=entry, changed_fields=changed_fields))
        else:
            changeset.unchanged += 1

    changeset.removed = [identity for identity in previous_map if identity not in current_map]
    return changeset


__all__ = ["COMPARED_FIELDS", "ChangedEntry", "Changeset", "compare_entries", "diff"]
