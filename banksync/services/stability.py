"""Detect builds that the authoring tool is still writing."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Sequence

from ..config import DEFAULT_STABILITY_RETRIES

logger = logging.getLogger(__name__)

StabilityProbe = Callable[[Path], bool]


def is_file_exclusively_readable(path: Path) -> bool:
    """Return True if *path* can be opened for reading with no writer holding it."""

    try:
        with open(path, "rb") as handle:
            if os.name == "posix":
                import fcntl

                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_SH | fcntl.LOCK_NB)
                except OSError:
                    return False
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    except (PermissionError, FileNotFoundError):
        return False
    except OSError:
        return False
    return True


class StabilityGate:
    """Bounded retry counter around a file stability probe.

    Every failed check spends one unit of the retry budget; a stable check
    restores it. Once the budget is spent the gate reports ``exhausted`` so
    the caller can surface the condition instead of retrying silently.
    """

    def __init__(
        self,
        retry_budget: int = DEFAULT_STABILITY_RETRIES,
        probe: StabilityProbe | None = None,
    ) -> None:
        self.retry_budget = max(int(retry_budget), 0)
        self.remaining = self.retry_budget
        self._probe = probe or is_file_exclusively_readable

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    @property
    def attempts(self) -> int:
        """Consecutive unstable checks since the last stable one."""
        return self.retry_budget - self.remaining

    def reset(self) -> None:
        self.remaining = self.retry_budget

    def is_build_stable(self, marker: Path) -> bool:
        if self._probe(Path(marker)):
            self.reset()
            return True
        if self.remaining > 0:
            self.remaining -= 1
        logger.debug("Build marker %s is not stable (%d retries left)", marker, self.remaining)
        return False

    def select_marker(self, markers: Sequence[Path]) -> Path | None:
        """Return the most recently modified marker, or None when there are none."""

        newest: Path | None = None
        newest_time = -1
        for marker in sorted(markers):
            try:
                mtime = marker.stat().st_mtime_ns
            except OSError:
                continue
            if mtime > newest_time:
                newest, newest_time = marker, mtime
        return newest
