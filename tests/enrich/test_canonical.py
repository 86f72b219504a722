"""Tests for canonical embedding text."""

from _support import make_entry, make_response

from anime_spine.core.providers import ProviderName
from anime_spine.enrich.canonical import MAX_ALIASES, build_canonical_text, merge_tags


class TestMergeTags:
    def test_catalog_tags_first_then_provider_tags_deduplicated(self):
        entry = make_entry(tags=["space", "Jazz"])
        responses = [
            make_response(ProviderName.ANILIST, tags=["Action", "jazz"]),
            make_response(ProviderName.KITSU, tags=["SPACE", "Noir"]),
        ]
        assert merge_tags(entry, responses) == ["space", "Jazz", "Action", "Noir"]


class TestBuildCanonicalText:
    def test_full_text(self):
        entry = make_entry(synonyms=["Bebop", "Cowboy Bebop"], tags=["space"])
        text = build_canonical_text(entry, [], "A synopsis.")
        assert text == (
            "Cowboy Bebop. Also known as: Bebop. TV, 26 episodes. SPRING 1998. "
            "Tags: space. A synopsis."
        )

    def test_without_synopsis_or_year(self):
        entry = make_entry(tags=[], year=None, season="UNDEFINED")
        assert build_canonical_text(entry, [], None) == "Cowboy Bebop. TV, 26 episodes"

    def test_alias_cap(self):
        entry = make_entry(synonyms=[f"Alias {i}" for i in range(10)], tags=[])
        text = build_canonical_text(entry, [], None)
        assert f"Alias {MAX_ALIASES - 1}" in text
        assert f"Alias {MAX_ALIASES}" not in text

    def test_deterministic(self):
        entry = make_entry()
        responses = [make_response(ProviderName.ANILIST, tags=["x"])]
        assert build_canonical_text(entry, responses, "s") == build_canonical_text(entry, responses, "s")
