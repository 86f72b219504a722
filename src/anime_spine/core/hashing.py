"""
Deterministic hashing for entity identity.

A catalog entry has no stable ID of its own; what identifies it across
snapshots is the set of provider URIs it lists. ``entity_identity`` hashes
the *sorted* source list so the identity is independent of list order and
changes whenever the source set changes.

Examples:
    >>> a = entity_identity(["https://kitsu.app/anime/1", "https://anilist.co/anime/1"])
    >>> b = entity_identity(["https://anilist.co/anime/1", "https://kitsu.app/anime/1"])
    >>> a == b
    True
    >>> len(a)
    32

Tags:
    hashing, identity, idempotency, anime-spine
"""

import hashlib
from collections.abc import Iterable
from typing import Any


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Compute deterministic hash from values.

    Values are joined with ``|`` and hashed with SHA-256. Order-dependent:
    ``compute_hash("a", "b") != compute_hash("b", "a")``.

    Args:
        *values: Values to hash (converted to strings)
        length: Hex digest length (default 32 = 128 bits)

    Returns:
        Hex string of specified length
    """
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


def entity_identity(sources: Iterable[str]) -> str:
    """Identity of a catalog entry: hash of its sorted source URIs."""
    return compute_hash(*sorted(sources))


def file_sha256(path: Any, chunk_size: int = 1 << 20) -> str:
    """Full SHA-256 hex digest of a file, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()
