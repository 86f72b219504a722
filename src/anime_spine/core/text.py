"""Small text helpers shared by fetchers and synthesis."""

import html
import re

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^\w\s]")


def normalize_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def clean_text(text: str) -> str:
    """Strip HTML tags and entities, collapse whitespace."""
    return normalize_whitespace(html.unescape(_TAG_RE.sub("", text)))


def word_count(text: str) -> int:
    return len(text.split())


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens longer than two characters, punctuation dropped."""
    return [t for t in _NON_WORD_RE.sub(" ", text.lower()).split() if len(t) > 2]
