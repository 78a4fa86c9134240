"""Utility helpers for filesystem access and path handling."""

from __future__ import annotations

import math
import os
from pathlib import Path
from typing import Iterable, List, Sequence

BANK_EXTENSION = ".bank"
MARKER_EXTENSION = ".strings.bank"
RESOURCE_FORK_PREFIX = "._"


def resolve_directory(path: Path | str) -> Path:
    """Resolve and validate a user supplied directory path."""
    dir_path = Path(path).expanduser().resolve()
    if not dir_path.exists():
        raise FileNotFoundError(f"Directory does not exist: {dir_path}")
    if not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    return dir_path


def normalize_exclude_patterns(values: Iterable[str] | None) -> tuple[str, ...]:
    """Return deduplicated gitignore-style patterns with blanks removed."""

    if not values:
        return ()
    normalized: list[str] = []
    for raw in values:
        if raw is None:
            continue
        token = raw.strip()
        if not token or token.startswith("#"):
            continue
        if token not in normalized:
            normalized.append(token)
    return tuple(normalized)


def build_exclude_spec(patterns: Sequence[str] | None):
    patterns = normalize_exclude_patterns(patterns)
    if not patterns:
        return None
    from pathspec.gitignore import GitIgnoreSpec

    return GitIgnoreSpec.from_lines(patterns)


def is_excluded_path(spec, rel_path: str, *, is_dir: bool) -> bool:
    if spec is None or not rel_path:
        return False
    candidate = f"{rel_path}/" if is_dir and not rel_path.endswith("/") else rel_path
    return spec.match_file(candidate)


def is_marker_bank(path: Path | str) -> bool:
    return os.path.basename(str(path)).lower().endswith(MARKER_EXTENSION)


def master_bank_name(marker: Path | str) -> str:
    """Return the file name of the master bank built alongside *marker*."""

    name = os.path.basename(str(marker))
    return name[: -len(MARKER_EXTENSION)] + BANK_EXTENSION


def collect_bank_files(
    root: Path | str,
    exclude_patterns: Sequence[str] | None = None,
) -> List[Path]:
    """Collect every ``*.bank`` file under *root*, recursively and sorted.

    Marker banks are included; callers split them with :func:`is_marker_bank`.
    Resource-fork files left behind on FAT32 volumes are skipped.
    """

    directory = resolve_directory(root)
    exclude_spec = build_exclude_spec(exclude_patterns)
    files: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(directory, topdown=True):
        current_dir = Path(dirpath)
        if exclude_spec is not None:
            dirnames[:] = [
                d
                for d in dirnames
                if not is_excluded_path(
                    exclude_spec,
                    _relative_posix(current_dir / d, directory),
                    is_dir=True,
                )
            ]
        for filename in filenames:
            if filename.startswith(RESOURCE_FORK_PREFIX):
                continue
            if not filename.lower().endswith(BANK_EXTENSION):
                continue
            candidate = current_dir / filename
            if exclude_spec is not None and is_excluded_path(
                exclude_spec,
                _relative_posix(candidate, directory),
                is_dir=False,
            ):
                continue
            files.append(candidate)
    files.sort()
    return files


def _relative_posix(path: Path, root: Path) -> str:
    rel = path.relative_to(root)
    if rel == Path("."):
        return ""
    return rel.as_posix()


def relative_sub_dir(path: Path, root: Path) -> str:
    """Return the folder of *path* relative to *root* in posix form."""

    try:
        rel = path.parent.relative_to(root)
    except ValueError:
        return ""
    if rel == Path("."):
        return ""
    return rel.as_posix()


def format_path(path: Path, base: Path | None = None) -> str:
    """Return a user friendly representation of *path* relative to *base* when possible."""
    if base:
        try:
            relative = path.relative_to(base)
            return f"./{relative.as_posix()}"
        except ValueError:
            return str(path)
    return str(path)


def format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"  # pragma: no cover


def _pluralize(count: int, singular: str, plural: str) -> str:
    return f"{count} {singular if count == 1 else plural}"


def duration_string(seconds: float) -> str:
    """Describe a duration the way the refresh status reports it."""

    minutes = seconds / 60
    hours = minutes / 60
    if hours >= 1:
        return _pluralize(math.floor(hours), "hour", "hours")
    if minutes >= 1:
        return _pluralize(math.floor(minutes), "minute", "minutes")
    if seconds >= 1:
        return _pluralize(math.floor(seconds), "second", "seconds")
    return "a moment"

