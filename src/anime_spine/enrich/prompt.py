"""Synthesis prompt and passthrough synopsis."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from anime_spine.core.text import word_count

# Minimum words for a provider synopsis to count as a usable source.
MIN_SYNOPSIS_WORDS = 20


@dataclass(frozen=True)
class SynthesisContext:
    title: str
    type: str
    episodes: int
    year: int | None
    synopses: tuple[str, ...]


def usable_synopses(texts: Sequence[str | None]) -> list[str]:
    return [t.strip() for t in texts if t and word_count(t) >= MIN_SYNOPSIS_WORDS]


def passthrough_synopsis(synopses: Sequence[str]) -> str | None:
    """Longest source text, verbatim. First one wins on equal length."""
    longest: str | None = None
    for text in synopses:
        if longest is None or len(text) > len(longest):
            longest = text
    return longest


def build_synthesis_prompt(context: SynthesisContext) -> str:
    year = f" {context.year}" if context.year else ""
    sources = "\n\n".join(f"Source {i}: {s}" for i, s in enumerate(context.synopses, start=1))

    return (
        "You are synthesizing anime synopses. You will receive multiple synopsis texts "
        "from different sources for the same anime. Your task:\n"
        "\n"
        "1. Understand the core plot, characters, and setting from ALL sources.\n"
        "2. Write a single, original synopsis in your own words (150-300 words).\n"
        "3. Do NOT copy phrases or sentences from any source.\n"
        "4. Capture key story elements, tone, and genre without spoilers.\n"
        "5. Write in third person, present tense.\n"
        "\n"
        f"Anime: {context.title} ({context.type}, {context.episodes} episodes{year})\n"
        "\n"
        "Source synopses:\n"
        f"{sources}\n"
        "\n"
        "Write your synthesized synopsis:"
    )


__all__ = [
    "MIN_SYNOPSIS_WORDS",
    "SynthesisContext",
    "usable_synopses",
    "passthrough_synopsis",
    "build_synthesis_prompt",
]
