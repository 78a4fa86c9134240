"""Public Python API for banksync."""

from __future__ import annotations

from collections.abc import Mapping
from contextlib import ExitStack, contextmanager
from pathlib import Path

from .cache import cache_dir_context, clear_cache, set_cache_dir
from .config import (
    Config,
    config_dir_context,
    config_from_json,
    load_config,
    resolve_source_dir,
    set_config_dir,
)
from .errors import BankSyncError, ConfigurationError
from .records import BankCache
from .services.build_service import BuildResult
from .services.cache_service import load_cache_safe
from .services.sync_service import BankSyncCoordinator
from .text import Messages

_RUNTIME_CONFIG: Config | None = None


@contextmanager
def _data_dir_context(
    data_dir: Path | str | None,
    *,
    config_dir: Path | str | None,
    cache_dir: Path | str | None,
):
    if data_dir is None and config_dir is None and cache_dir is None:
        yield
        return
    effective_config_dir = config_dir if config_dir is not None else data_dir
    effective_cache_dir = cache_dir if cache_dir is not None else data_dir
    with ExitStack() as stack:
        if effective_config_dir is not None:
            stack.enter_context(config_dir_context(effective_config_dir))
        if effective_cache_dir is not None:
            stack.enter_context(cache_dir_context(effective_cache_dir))
        yield


def set_data_dir(path: Path | str | None) -> None:
    """Set the base directory for config and cache data."""
    set_config_dir(path)
    set_cache_dir(path)


def set_config_json(
    payload: Mapping[str, object] | str | None, *, replace: bool = False
) -> None:
    """Set in-memory config for API calls from a JSON string or mapping."""
    global _RUNTIME_CONFIG
    if payload is None:
        _RUNTIME_CONFIG = None
        return
    base = None if replace else (_RUNTIME_CONFIG or load_config())
    try:
        _RUNTIME_CONFIG = config_from_json(payload, base=base)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc


@contextmanager
def config_context(
    payload: Mapping[str, object] | str | None = None,
    *,
    replace: bool = False,
    data_dir: Path | str | None = None,
    config_dir: Path | str | None = None,
    cache_dir: Path | str | None = None,
):
    """Scope an in-memory config (and optionally data directories) to a block.

    Yields the effective :class:`Config`.
    """

    global _RUNTIME_CONFIG
    previous = _RUNTIME_CONFIG
    with _data_dir_context(data_dir, config_dir=config_dir, cache_dir=cache_dir):
        try:
            if payload is not None:
                set_config_json(payload, replace=replace)
            yield _effective_config()
        finally:
            _RUNTIME_CONFIG = previous


def create_coordinator(
    config: Config | None = None,
    **overrides: object,
) -> BankSyncCoordinator:
    """Build a coordinator from the stored config plus field *overrides*.

    Keyword arguments name config fields (``source_dir="Build"``,
    ``cooldown="prompt"``...).
    """

    base = config if config is not None else _effective_config()
    if overrides:
        try:
            base = config_from_json(dict(overrides), base=base)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
    return BankSyncCoordinator(base)


def sync(path: Path | str | None = None, *, force: bool = False) -> BuildResult:
    """Refresh and persist the cache for *path* once, without watching.

    Raises the underlying :class:`BankSyncError` when the refresh fails.
    """

    coordinator = create_coordinator(_config_for_path(path))
    try:
        result = coordinator.refresh_now(force=force)
        if result is None:
            raise coordinator.last_exception or BankSyncError(
                coordinator.last_error or Messages.ERROR_SOURCE_MISSING
            )
        return result
    finally:
        coordinator.close()


def load(path: Path | str | None = None) -> BankCache:
    """Return the persisted cache for *path*, or an empty cache."""

    return load_cache_safe(_require_source(path))


def clear(path: Path | str | None = None) -> int:
    """Remove the persisted cache for *path*."""

    return clear_cache(_require_source(path))


def _effective_config() -> Config:
    return _RUNTIME_CONFIG if _RUNTIME_CONFIG is not None else load_config()


def _config_for_path(path: Path | str | None) -> Config:
    config = _effective_config()
    if path is None:
        return config
    return config_from_json({"source_dir": str(path)}, base=config)


def _require_source(path: Path | str | None) -> Path:
    source = resolve_source_dir(_config_for_path(path))
    if source is None:
        raise ConfigurationError(Messages.ERROR_SOURCE_MISSING)
    return source
