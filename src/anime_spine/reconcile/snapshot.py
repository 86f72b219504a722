"""Catalog snapshot loading.

Snapshots come from the manami anime-offline-database release JSON, either
downloaded over HTTP or read from a local file (``.json`` or ``.json.gz``).
Both paths validate the payload into a :class:`CatalogSnapshot`; a failure
here is a run-level error.
"""

from __future__ import annotations

import gzip
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
from pydantic import ValidationError

from anime_spine.core.catalog import CatalogSnapshot
from anime_spine.core.errors import SourceError, TransientError
from anime_spine.core.logging import get_logger
from anime_spine.core.settings import MANAMI_DATABASE_URL

logger = get_logger(__name__)

SnapshotLoader = Callable[[], CatalogSnapshot]


def parse_snapshot(payload: Any) -> CatalogSnapshot:
    """Validate a decoded release document."""
    if not isinstance(payload, dict):
        raise SourceError("Invalid snapshot: expected a JSON object")
    if not isinstance(payload.get("data"), list):
        raise SourceError("Invalid snapshot: expected a 'data' array")
    try:
        return CatalogSnapshot.model_validate(payload)
    except ValidationError as e:
        raise SourceError(f"Invalid snapshot: {e.error_count()} validation errors", cause=e) from e


def load_snapshot_file(path: str | Path) -> CatalogSnapshot:
    path = Path(path)
    try:
        if path.suffix == ".gz":
            with gzip.open(path, "rt", encoding="utf-8") as fh:
                payload = json.load(fh)
        else:
            with open(path, encoding="utf-8") as fh:
                payload = json.load(fh)
    except FileNotFoundError as e:
        raise SourceError(f"Snapshot file not found: {path}", cause=e) from e
    except (OSError, json.JSONDecodeError) as e:
        raise SourceError(f"Cannot read snapshot {path}: {e}", cause=e) from e

    snapshot = parse_snapshot(payload)
    logger.info("snapshot.loaded", path=str(path), version=snapshot.version, entries=len(snapshot.data))
    return snapshot


def download_snapshot(
    url: str = MANAMI_DATABASE_URL,
    *,
    timeout: float = 120.0,
    client: httpx.Client | None = None,
) -> CatalogSnapshot:
    """Download and parse the release JSON."""
    owns_client = client is None
    http = client or httpx.Client(timeout=timeout, follow_redirects=True)
    try:
        response = http.get(url)
    except httpx.TimeoutException as e:
        raise TransientError(f"Snapshot download timed out: {url}", cause=e) from e
    except httpx.HTTPError as e:
        raise TransientError(f"Snapshot download failed: {e}", cause=e) from e
    finally:
        if owns_client:
            http.close()

    if response.status_code != 200:
        raise SourceError(
            f"Failed to download snapshot: HTTP {response.status_code}"
        ).with_context(url=url, http_status=response.status_code)

    try:
        payload = response.json()
    except json.JSONDecodeError as e:
        raise SourceError("Snapshot response is not valid JSON", cause=e) from e

    snapshot = parse_snapshot(payload)
    logger.info("snapshot.downloaded", url=url, version=snapshot.version, entries=len(snapshot.data))
    return snapshot


def snapshot_loader(
    path: str | Path | None = None,
    *,
    url: str = MANAMI_DATABASE_URL,
    timeout: float = 120.0,
) -> SnapshotLoader:
    """Loader for a local file when ``path`` is given, else a downloader."""
    if path is not None:
        return lambda: load_snapshot_file(path)
    return lambda: download_snapshot(url, timeout=timeout)


__all__ = [
    "SnapshotLoader",
    "parse_snapshot",
    "load_snapshot_file",
    "download_snapshot",
    "snapshot_loader",
]
