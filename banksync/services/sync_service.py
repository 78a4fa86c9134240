"""Top-level coordinator that keeps a bank cache in step with a build folder."""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .build_service import BuildResult, BuildStatus, CacheBuilder, matches_checkpoint
from .cache_service import load_cache_safe
from .change_detector import ChangeDetector
from .cooldown import RefreshCooldownCoordinator, RefreshState
from .stability import StabilityGate
from ..config import Config, CooldownKind, load_config, resolve_source_dir
from ..errors import BankSyncError, ConfigurationError, ParseError, TransientBuildError
from ..reader import BankReader, get_reader
from ..records import BankCache
from ..text import Messages

logger = logging.getLogger(__name__)

CacheListener = Callable[[BankCache], None]


@dataclass(slots=True)
class SyncStatus:
    source_dir: Path | None
    state: RefreshState
    cache_valid: bool
    watching: bool
    bank_count: int = 0
    event_count: int = 0
    parameter_count: int = 0
    time_remaining: float | None = None
    time_since_change: float | None = None
    last_error: str | None = None


class BankSyncCoordinator:
    """Owns the committed cache and every timer around it.

    Drive it by calling :meth:`tick` from any loop. Nothing raised while
    refreshing escapes ``tick``; the last good cache keeps being served and
    the failure is available as ``last_error``.
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        reader: BankReader | None = None,
        detector: ChangeDetector | None = None,
        gate: StabilityGate | None = None,
        builder: CacheBuilder | None = None,
        clock: Callable[[], float] = time.monotonic,
        persist: bool = True,
        cwd: Path | None = None,
    ) -> None:
        self.config = config if config is not None else load_config()
        self._clock = clock
        self._cwd = cwd
        self.persist = persist
        self.reader = reader if reader is not None else get_reader(self.config.reader)
        self.gate = gate if gate is not None else StabilityGate(self.config.stability_retries)
        self.builder = builder if builder is not None else self._make_builder()
        self.detector = detector if detector is not None else ChangeDetector()
        self.cooldown = RefreshCooldownCoordinator(self.config.cooldown)
        self.last_error: str | None = None
        self.last_exception: BankSyncError | None = None
        self._listeners: list[CacheListener] = []
        self._last_poll: float | None = None
        self._next_attempt: float | None = None
        self.source_dir = self._resolve_source()
        self._cache = load_cache_safe(self.source_dir) if persist else BankCache()

    @property
    def cache(self) -> BankCache:
        """The committed cache. Treat it as read-only; use :meth:`snapshot` to modify."""
        return self._cache

    def snapshot(self) -> BankCache:
        return self._cache.copy()

    def add_listener(self, listener: CacheListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: CacheListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def tick(self, now: float | None = None) -> RefreshState:
        now = self._clock() if now is None else now
        self.detector.configure(self.source_dir)
        if self.detector.signal_changed():
            logger.debug("Change observed under %s", self.source_dir)
            self.cooldown.observe_change(now)
        if self._last_poll is None or now - self._last_poll >= self.config.poll_interval:
            self._last_poll = now
            self._poll(now)
        state = self.cooldown.tick(now)
        if state is RefreshState.READY and (
            self._next_attempt is None or now >= self._next_attempt
        ):
            self._refresh(now)
        return self.cooldown.state

    def refresh_now(self, now: float | None = None, *, force: bool = False) -> BuildResult | None:
        """Refresh immediately regardless of the cooldown policy."""

        now = self._clock() if now is None else now
        self._next_attempt = None
        return self._refresh(now, force=force)

    def confirm(self) -> bool:
        return self.cooldown.confirm()

    def cancel(self) -> None:
        self._next_attempt = None
        self.cooldown.cancel()

    def suppress(self) -> None:
        self.cooldown.suppress()

    def update_config(self, config: Config) -> None:
        previous = self.source_dir
        self.config = config
        self.cooldown.set_policy(config.cooldown)
        self.gate.retry_budget = max(int(config.stability_retries), 0)
        self.gate.reset()
        self.builder.platforms = tuple(config.platforms)
        self.builder.platform = config.content_platform
        self.builder.exclude_patterns = tuple(config.exclude_patterns)
        self.builder.build_timeout = config.build_timeout
        self.source_dir = self._resolve_source()
        if self.source_dir != previous:
            self._cache = load_cache_safe(self.source_dir) if self.persist else BankCache()
            self._last_poll = None
            self.cooldown.cancel()

    def status(self, now: float | None = None) -> SyncStatus:
        now = self._clock() if now is None else now
        cache = self._cache
        return SyncStatus(
            source_dir=self.source_dir,
            state=self.cooldown.state,
            cache_valid=cache.is_valid(),
            watching=self.detector.watching,
            bank_count=len(cache.banks),
            event_count=len(cache.events),
            parameter_count=len(cache.parameters),
            time_remaining=self.cooldown.time_remaining(now),
            time_since_change=self.cooldown.time_since_change(now),
            last_error=self.last_error,
        )

    def run(
        self,
        stop_event: threading.Event | None = None,
        tick_interval: float = 1.0,
        on_tick: Callable[[SyncStatus], None] | None = None,
    ) -> None:
        stop_event = stop_event or threading.Event()
        try:
            while not stop_event.is_set():
                self.tick()
                if on_tick is not None:
                    on_tick(self.status())
                stop_event.wait(tick_interval)
        finally:
            self.close()

    def close(self) -> None:
        self.detector.close()

    def _make_builder(self) -> CacheBuilder:
        return CacheBuilder(
            self.reader,
            self.gate,
            platforms=self.config.platforms,
            platform=self.config.content_platform,
            exclude_patterns=self.config.exclude_patterns,
            build_timeout=self.config.build_timeout,
        )

    def _resolve_source(self) -> Path | None:
        try:
            return resolve_source_dir(self.config, cwd=self._cwd)
        except ConfigurationError as exc:
            self.last_error = str(exc)
            self.last_exception = exc
            return None

    def _poll(self, now: float) -> None:
        if self.source_dir is None:
            self._reset(ConfigurationError(Messages.ERROR_SOURCE_MISSING))
            return
        content_dir = self.builder.content_dir(self.source_dir)
        if not content_dir.is_dir():
            self._reset(ConfigurationError(Messages.ERROR_SOURCE_INVALID.format(path=content_dir)))
            return
        if self.cooldown.state is RefreshState.SUPPRESSED or (
            self.cooldown.state is RefreshState.CHANGE_OBSERVED
            and self.config.cooldown.kind is CooldownKind.PROMPT
        ):
            self._adopt_stored_checkpoint(content_dir)
            return
        if self.cooldown.state is not RefreshState.IDLE:
            return
        if not self._cache.is_valid():
            logger.debug("No committed cache; refreshing %s", content_dir)
            self._refresh(now)
            return
        if not matches_checkpoint(self._cache, content_dir, self.config.exclude_patterns):
            self.cooldown.observe_change(now)

    def _adopt_stored_checkpoint(self, content_dir: Path) -> None:
        """Settle a pending change that another process already refreshed."""

        if not self.persist:
            return
        stored = load_cache_safe(self.source_dir)
        if not stored.is_valid():
            return
        if not matches_checkpoint(stored, content_dir, self.config.exclude_patterns):
            return
        logger.info(Messages.INFO_CHECKPOINT_ADOPTED.format(path=content_dir))
        self.cooldown.cancel()
        self._next_attempt = None
        if stored != self._cache:
            self._cache = stored
            self.last_error = None
            self.last_exception = None
            self._notify(stored)

    def _refresh(self, now: float, *, force: bool = False) -> BuildResult | None:
        self.cooldown.begin_refresh()
        try:
            result = self.builder.rebuild(self._cache, self.source_dir, force=force)
        except TransientBuildError as exc:
            self.cooldown.retry_later()
            self._next_attempt = now + self.config.poll_interval
            self.last_exception = exc
            self._report_transient(exc)
            return None
        except ParseError as exc:
            self.cooldown.complete_refresh(False)
            self.last_exception = exc
            self._report_error(str(exc))
            return None
        except ConfigurationError as exc:
            self.cooldown.complete_refresh(False)
            self._reset(exc)
            return None

        self._next_attempt = None
        self.cooldown.complete_refresh(True)
        if result.status is BuildStatus.NO_BANKS:
            self._reset(ConfigurationError(result.message or ""))
            return result
        self.last_error = None
        self.last_exception = None
        if result.status is BuildStatus.REBUILT:
            self._commit(result.cache)
        return result

    def _commit(self, cache: BankCache) -> None:
        self._cache = cache
        if self.persist and self.source_dir is not None:
            from ..cache import store_cache  # local import keeps sqlite off the hot path

            try:
                store_cache(self.source_dir, cache)
            except (OSError, sqlite3.Error) as exc:
                logger.warning("Could not persist bank cache: %s", exc)
        logger.info(
            Messages.INFO_SYNC_DONE.format(
                banks=len(cache.banks),
                events=len(cache.events),
                parameters=len(cache.parameters),
            )
        )
        self._notify(cache)

    def _reset(self, exc: ConfigurationError) -> None:
        message = str(exc)
        if message != self.last_error:
            logger.info(message)
        self.last_error = message
        self.last_exception = exc
        if not self._cache.banks and not self._cache.is_valid():
            return
        self._cache = BankCache()
        if self.persist and self.source_dir is not None:
            from ..cache import clear_cache

            try:
                clear_cache(self.source_dir)
            except (OSError, sqlite3.Error) as exc:
                logger.warning("Could not clear bank cache: %s", exc)
        self._notify(self._cache)

    def _report_transient(self, exc: TransientBuildError) -> None:
        if exc.path is None:
            self._report_error(str(exc), level=logging.WARNING)
            return
        if not self.gate.exhausted:
            logger.debug("%s Retrying in %.1fs", exc, self.config.poll_interval)
            return
        self._report_error(
            Messages.ERROR_BUILD_UNSTABLE_PERSISTENT.format(
                path=exc.path,
                attempts=self.gate.attempts,
            ),
            level=logging.WARNING,
        )

    def _report_error(self, message: str, *, level: int = logging.ERROR) -> None:
        if message != self.last_error:
            logger.log(level, message)
        self.last_error = message

    def _notify(self, cache: BankCache) -> None:
        for listener in list(self._listeners):
            listener(cache)
