"""Tests for the snapshot differ."""

from _support import make_entry, make_snapshot

from anime_spine.reconcile.differ import compare_entries, diff


def _ids(entries):
    return {e.identity for e in entries}


class TestDiff:
    def test_no_previous_means_everything_added(self):
        current = make_snapshot([make_entry(), make_entry("Trigun", anilist="6", kitsu="6")], "v2")
        changeset = diff(None, current)
        assert len(changeset.added) == 2
        assert changeset.previous_version == ""
        assert changeset.current_version == "v2"
        assert not changeset.removed and not changeset.changed

    def test_removed_and_added(self):
        """An entry replaced by another surfaces as one removal and one addition."""
        x = make_entry("X", anilist="1", kitsu=None)
        y = make_entry("Y", anilist="2", kitsu=None)
        changeset = diff(make_snapshot([x], "v1"), make_snapshot([y], "v2"))
        assert changeset.removed == [x.identity]
        assert _ids(changeset.added) == {y.identity}
        assert changeset.unchanged == 0

    def test_tags_only_change(self):
        before = make_entry(tags=["space"])
        after = make_entry(tags=["space", "jazz"])
        changeset = diff(make_snapshot([before]), make_snapshot([after], "v2"))
        assert len(changeset.changed) == 1
        assert changeset.changed[0].changed_fields == ["tags"]

    def test_tag_order_is_not_a_change(self):
        before = make_entry(tags=["a", "b"])
        after = make_entry(tags=["b", "a"])
        changeset = diff(make_snapshot([before]), make_snapshot([after], "v2"))
        assert changeset.unchanged == 1
        assert not changeset.has_changes

    def test_source_edit_is_remove_plus_add(self):
        before = make_entry(kitsu="1")
        after = make_entry(kitsu="2")
        changeset = diff(make_snapshot([before]), make_snapshot([after], "v2"))
        assert changeset.removed == [before.identity]
        assert _ids(changeset.added) == {after.identity}
        assert changeset.changed == []

    def test_completeness(self):
        keep = make_entry("Keep", anilist="1", kitsu=None)
        edit_before = make_entry("Edit", anilist="2", kitsu=None, episodes=12)
        edit_after = make_entry("Edit", anilist="2", kitsu=None, episodes=13)
        gone = make_entry("Gone", anilist="3", kitsu=None)
        new_a = make_entry("NewA", anilist="4", kitsu=None)
        new_b = make_entry("NewB", anilist="5", kitsu=None)

        previous = make_snapshot([keep, edit_before, gone], "v1")
        current = make_snapshot([keep, edit_after, new_a, new_b, new_b], "v2")
        changeset = diff(previous, current)

        assert len(changeset.added) + len(changeset.changed) + changeset.unchanged == len(
            current.by_identity()
        )
        assert changeset.total_current == 4
        assert changeset.summary() == {
            "previous_version": "v1",
            "current_version": "v2",
            "added": 2,
            "removed": 1,
            "changed": 1,
            "unchanged": 1,
        }


class TestCompareEntries:
    def test_reports_every_changed_field(self):
        before = make_entry(title="A", type="TV", episodes=1, status="ONGOING", season="FALL", year=2000)
        after = make_entry(title="B", type="MOVIE", episodes=2, status="FINISHED", season="WINTER", year=2001)
        assert compare_entries(before, after) == [
            "title",
            "type",
            "episodes",
            "status",
            "season",
            "year",
        ]

    def test_identical(self):
        assert compare_entries(make_entry(), make_entry()) == []
