"""
Content checks for generated synopses.

A candidate must pass, in order:

1. **length:** word count within ``[min_words, max_words]``
2. **similarity:** token Jaccard overlap with *each* source at most
   ``max_similarity`` (the model must not paraphrase one source)
3. **coherence:** at least one title word longer than 3 characters appears
   (skipped when the title has no such word)

Each check raises :class:`ValidationFailure` with ``check`` set to its name,
so the retry policy treats a rejected candidate like any retryable error.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from anime_spine.core.errors import ValidationFailure
from anime_spine.core.text import tokenize, word_count


@dataclass(frozen=True)
class ValidationRules:
    min_words: int = 100
    max_words: int = 500
    max_similarity: float = 0.6


DEFAULT_RULES = ValidationRules()


def jaccard(a: Sequence[str], b: Sequence[str]) -> float:
    """Jaccard index of two token collections (0.0 when both are empty)."""
    set_a, set_b = set(a), set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def check_length(text: str, rules: ValidationRules = DEFAULT_RULES) -> None:
    words = word_count(text)
    if words < rules.min_words:
        raise ValidationFailure(
            f"Too short: {words} words (min {rules.min_words})", check="length"
        )
    if words > rules.max_words:
        raise ValidationFailure(
            f"Too long: {words} words (max {rules.max_words})", check="length"
        )


def check_similarity(
    text: str, sources: Sequence[str], rules: ValidationRules = DEFAULT_RULES
) -> None:
    tokens = tokenize(text)
    for source in sources:
        similarity = jaccard(tokens, tokenize(source))
        if similarity > rules.max_similarity:
            raise ValidationFailure(
                f"Too similar to source ({similarity:.1%} overlap, max {rules.max_similarity:.0%})",
                check="similarity",
            )


def check_coherence(text: str, title: str) -> None:
    title_words = [w for w in title.lower().split() if len(w) > 3]
    if not title_words:
        return
    lowered = text.lower()
    if not any(word in lowered for word in title_words):
        raise ValidationFailure("Synopsis doesn't reference the anime title", check="coherence")


def validate_synopsis(
    text: str,
    sources: Sequence[str],
    title: str,
    rules: ValidationRules = DEFAULT_RULES,
) -> str:
    """Run every check; return the stripped candidate when it passes."""
    candidate = text.strip()
    check_length(candidate, rules)
    check_similarity(candidate, sources, rules)
    check_coherence(candidate, title)
    return candidate


__all__ = [
    "ValidationRules",
    "DEFAULT_RULES",
    "jaccard",
    "check_length",
    "check_similarity",
    "check_coherence",
    "validate_synopsis",
]
