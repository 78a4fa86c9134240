"""Filesystem change signal for the bank source directory."""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler

logger = logging.getLogger(__name__)


def _default_observer():
    from watchdog.observers import Observer

    return Observer()


class _ChangeFlagHandler(FileSystemEventHandler):
    """Forwards every create/modify/delete/move under the root to *on_change*."""

    def __init__(self, on_change: Callable[[], None]) -> None:
        super().__init__()
        self._on_change = on_change

    def on_created(self, event: FileSystemEvent) -> None:
        self._on_change()

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._on_change()

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._on_change()

    def on_moved(self, event: FileSystemEvent) -> None:
        self._on_change()


class ChangeDetector:
    """Edge-triggered "something changed" flag fed by a watchdog observer.

    The observer thread only ever sets the flag; :meth:`signal_changed` is
    the single consumer and clears it. When the watcher cannot be attached
    the detector stays usable and callers fall back to polling.
    """

    def __init__(self, observer_factory: Callable[[], object] | None = None) -> None:
        self._observer_factory = observer_factory or _default_observer
        self._observer = None
        self._started = False
        self._watch = None
        self._root: Path | None = None
        self._configured = False
        self._awaiting_root = False
        self._changed = False
        self._lock = threading.Lock()
        self._handler = _ChangeFlagHandler(self.notify)

    @property
    def root(self) -> Path | None:
        return self._root

    @property
    def watching(self) -> bool:
        return self._watch is not None

    def notify(self) -> None:
        with self._lock:
            self._changed = True

    def signal_changed(self) -> bool:
        """Return whether a change arrived since the last call, then clear it."""

        with self._lock:
            changed = self._changed
            self._changed = False
        return changed

    def root_exists(self) -> bool:
        return self._root is not None and self._root.is_dir()

    def configure(self, path: Path | str | None) -> None:
        """Point the watcher at *path*.

        None watches nothing. A missing folder is watched once a later call
        finds it on disk; a watched folder that disappears goes back to
        waiting.
        """

        root = Path(os.path.abspath(path)) if path is not None else None
        if self._configured and root == self._root:
            if self._watch is not None and not self.root_exists():
                logger.debug("%s disappeared; waiting for it to return", root)
                self._detach()
                self._awaiting_root = True
            elif self._awaiting_root and self.root_exists():
                logger.debug("%s appeared; attaching watcher", root)
                self._attach(root)
                self.notify()
            return
        self._detach()
        self._configured = True
        self._root = root
        with self._lock:
            self._changed = False
        if root is None or not root.is_dir():
            logger.debug("Nothing to watch at %s", root)
            self._awaiting_root = root is not None
            return
        self._attach(root)

    def close(self) -> None:
        self._detach()
        observer = self._observer
        self._observer = None
        if observer is not None and self._started:
            observer.stop()
            observer.join(timeout=2)
        self._started = False
        self._configured = False
        self._awaiting_root = False
        self._root = None

    def _attach(self, root: Path) -> None:
        self._awaiting_root = False
        try:
            observer = self._ensure_observer()
            self._watch = observer.schedule(self._handler, str(root), recursive=True)
            if not self._started:
                observer.start()
                self._started = True
        except (OSError, ValueError) as exc:
            self._watch = None
            logger.warning("Error watching %s: %s", root, exc)
            return
        logger.debug("Watching %s", root)

    def _ensure_observer(self):
        if self._observer is None:
            self._observer = self._observer_factory()
        return self._observer

    def _detach(self) -> None:
        # event delivery stops before the root changes
        if self._observer is not None and self._watch is not None:
            self._observer.unschedule_all()
        self._watch = None
