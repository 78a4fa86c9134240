"""Shared helpers for interacting with the persisted bank cache."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from ..errors import SchemaError
from ..records import BankCache

logger = logging.getLogger(__name__)


def load_cache_safe(source_dir: Path | None) -> BankCache:
    """Load the persisted cache for *source_dir*, or an empty cache.

    A stored cache written by a different schema version is discarded
    wholesale so the next refresh rebuilds from scratch.
    """

    if source_dir is None:
        return BankCache()
    from ..cache import load_cache  # local import keeps sqlite off the hot path

    try:
        return load_cache(source_dir)
    except FileNotFoundError:
        return BankCache()
    except SchemaError as exc:
        logger.info("Discarding persisted cache for %s: %s", source_dir, exc)
        return BankCache()


def is_cache_current(
    cache: BankCache,
    source_dir: Path,
    *,
    platform: str | None = None,
    exclude_patterns: Sequence[str] | None = None,
) -> bool:
    """Return True if the banks under *source_dir* still match the checkpoint."""

    if not cache.is_valid():
        return False
    from .build_service import matches_checkpoint

    content_dir = source_dir / platform if platform else source_dir
    if not content_dir.is_dir():
        return False
    return matches_checkpoint(cache, content_dir, exclude_patterns)
