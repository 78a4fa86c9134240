"""Command line interface for banksync."""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path
from typing import Sequence

import click
import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from . import api
from .cache import clear_all_cache, clear_cache, list_cache_entries
from .config import (
    Config,
    CooldownKind,
    config_from_json,
    format_cooldown,
    load_config,
    resolve_source_dir,
)
from .errors import BankSyncError, ConfigurationError
from .output import configure_logging, format_status_icon
from .records import BankCache
from .services.build_service import BuildStatus
from .services.cache_service import is_cache_current, load_cache_safe
from .services.config_service import apply_config_updates, get_config_snapshot
from .services.cooldown import RefreshState
from .services.sync_service import BankSyncCoordinator, SyncStatus
from .text import Messages, Styles
from .utils import duration_string, format_path, format_size

LIST_KINDS = ("banks", "events", "parameters")

console = Console()

app = typer.Typer(
    help=Messages.APP_HELP,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"banksync v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help=Messages.HELP_VERBOSE,
    ),
) -> None:
    """Global Typer callback for shared options."""
    configure_logging(verbose, console=console)


@app.command()
def sync(
    path: Path | None = typer.Option(
        None,
        "--path",
        "-p",
        help=Messages.HELP_SOURCE_PATH,
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help=Messages.HELP_SYNC_FORCE,
    ),
) -> None:
    """Refresh the bank cache once and exit."""
    source = _require_source(_config_for(path))
    console.print(_styled(Messages.INFO_SYNC_RUNNING.format(path=source), Styles.INFO))
    try:
        result = api.sync(source, force=force)
    except BankSyncError as exc:
        console.print(_styled(str(exc), Styles.ERROR))
        raise typer.Exit(code=1)

    if result.status is BuildStatus.NO_BANKS:
        console.print(_styled(result.message or "", Styles.WARNING))
        return
    if result.status is BuildStatus.UNCHANGED:
        console.print(_styled(Messages.INFO_SYNC_UNCHANGED, Styles.INFO))
        return
    cache = result.cache
    console.print(
        _styled(
            Messages.INFO_SYNC_DONE.format(
                banks=len(cache.banks),
                events=len(cache.events),
                parameters=len(cache.parameters),
            ),
            Styles.SUCCESS,
        )
    )


@app.command()
def status(
    path: Path | None = typer.Option(
        None,
        "--path",
        "-p",
        help=Messages.HELP_SOURCE_PATH,
    ),
) -> None:
    """Summarize the cached banks and whether they match the latest build."""
    config = _config_for(path)
    source = _require_source(config)
    cache = load_cache_safe(source)
    if not cache.is_valid():
        console.print(_styled(Messages.INFO_CACHE_EMPTY.format(path=source), Styles.WARNING))
        return
    console.print(_styled(Messages.INFO_STATUS_HEADER.format(path=source), Styles.TITLE))
    console.print(
        Messages.INFO_STATUS_SUMMARY.format(
            schema=cache.schema_version,
            built=_format_marker_time(cache.last_build_marker_time),
            banks=len(cache.banks),
            masters=len(cache.master_bank_paths),
            events=len(cache.events),
            parameters=len(cache.parameters),
        )
    )
    current = False
    if source.is_dir():
        current = is_cache_current(
            cache,
            source,
            platform=config.content_platform,
            exclude_patterns=config.exclude_patterns,
        )
    message = Messages.INFO_STATUS_CURRENT if current else Messages.INFO_STATUS_STALE
    console.print(f"{format_status_icon(current, console)} {message}")


@app.command()
def watch(
    path: Path | None = typer.Option(
        None,
        "--path",
        "-p",
        help=Messages.HELP_SOURCE_PATH,
    ),
    tick: float = typer.Option(
        1.0,
        "--tick",
        "-t",
        min=0.05,
        help=Messages.HELP_WATCH_TICK,
    ),
) -> None:
    """Keep the bank cache in step with the build folder until interrupted."""
    config = _config_for(path)
    source = _require_source(config)
    coordinator = BankSyncCoordinator(config)
    reporter = _WatchReporter(config)
    coordinator.add_listener(reporter.on_refresh)
    console.print(_styled(Messages.INFO_WATCH_STARTED.format(path=source), Styles.TITLE))
    try:
        coordinator.run(tick_interval=tick, on_tick=reporter.on_tick)
    except KeyboardInterrupt:
        pass
    finally:
        console.print(_styled(Messages.INFO_WATCH_STOPPED, Styles.INFO))


@app.command("list")
def list_command(
    kind: str = typer.Argument(
        ...,
        click_type=click.Choice(LIST_KINDS, case_sensitive=False),
        help=Messages.HELP_LIST_KIND,
    ),
    path: Path | None = typer.Option(
        None,
        "--path",
        "-p",
        help=Messages.HELP_SOURCE_PATH,
    ),
) -> None:
    """Show cached banks, events or global parameters."""
    normalized = kind.strip().lower()
    source = _require_source(_config_for(path))
    cache = load_cache_safe(source)
    if not cache.is_valid():
        console.print(_styled(Messages.INFO_CACHE_EMPTY.format(path=source), Styles.WARNING))
        return
    if normalized == "banks":
        _render_banks(cache, source)
    elif normalized == "events":
        _render_events(cache)
    else:
        _render_parameters(cache)


@app.command()
def config(
    set_source_option: str | None = typer.Option(
        None,
        "--set-source",
        help=Messages.HELP_SET_SOURCE,
    ),
    clear_source: bool = typer.Option(
        False,
        "--clear-source",
        help=Messages.HELP_CLEAR_SOURCE,
    ),
    set_cooldown_option: str | None = typer.Option(
        None,
        "--set-cooldown",
        help=Messages.HELP_SET_COOLDOWN,
    ),
    set_poll_option: float | None = typer.Option(
        None,
        "--set-poll-interval",
        help=Messages.HELP_SET_POLL,
    ),
    set_retries_option: int | None = typer.Option(
        None,
        "--set-retries",
        help=Messages.HELP_SET_RETRIES,
    ),
    set_platforms_option: list[str] | None = typer.Option(
        None,
        "--set-platforms",
        help=Messages.HELP_SET_PLATFORMS,
    ),
    set_platform_option: str | None = typer.Option(
        None,
        "--set-platform",
        help=Messages.HELP_SET_PLATFORM,
    ),
    set_timeout_option: float | None = typer.Option(
        None,
        "--set-timeout",
        help=Messages.HELP_SET_TIMEOUT,
    ),
    set_exclude_option: list[str] | None = typer.Option(
        None,
        "--set-exclude",
        help=Messages.HELP_SET_EXCLUDE,
    ),
    show: bool = typer.Option(
        False,
        "--show",
        help=Messages.HELP_SHOW_CONFIG,
    ),
    show_cache_all: bool = typer.Option(
        False,
        "--show-cache-all",
        help=Messages.HELP_SHOW_CACHE_ALL,
    ),
) -> None:
    """Manage banksync configuration stored in ~/.banksync/config.json."""
    if set_source_option is not None and clear_source:
        raise typer.BadParameter(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="source_dir"))
    try:
        updates = apply_config_updates(
            source_dir=set_source_option,
            clear_source=clear_source,
            cooldown=set_cooldown_option,
            poll_interval=set_poll_option,
            stability_retries=set_retries_option,
            platforms=set_platforms_option or None,
            platform=set_platform_option,
            build_timeout=set_timeout_option,
            exclude_patterns=set_exclude_option or None,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    cfg = get_config_snapshot()
    if updates.source_set:
        console.print(
            _styled(Messages.INFO_SOURCE_SET.format(value=cfg.source_dir), Styles.SUCCESS)
        )
    if updates.source_cleared:
        console.print(_styled(Messages.INFO_SOURCE_CLEARED, Styles.SUCCESS))
    if updates.cooldown_set:
        console.print(
            _styled(
                Messages.INFO_COOLDOWN_SET.format(value=_describe_cooldown(cfg)),
                Styles.SUCCESS,
            )
        )
    if updates.poll_interval_set:
        console.print(
            _styled(Messages.INFO_POLL_SET.format(value=cfg.poll_interval), Styles.SUCCESS)
        )
    if updates.stability_retries_set:
        console.print(
            _styled(Messages.INFO_RETRIES_SET.format(value=cfg.stability_retries), Styles.SUCCESS)
        )
    if updates.platforms_set:
        console.print(
            _styled(
                Messages.INFO_PLATFORMS_SET.format(value=_format_list(cfg.platforms)),
                Styles.SUCCESS,
            )
        )
    if updates.platform_set:
        console.print(
            _styled(
                Messages.INFO_PLATFORM_SET.format(value=cfg.platform or "none"),
                Styles.SUCCESS,
            )
        )
    if updates.build_timeout_set:
        console.print(
            _styled(Messages.INFO_TIMEOUT_SET.format(value=cfg.build_timeout), Styles.SUCCESS)
        )
    if updates.exclude_patterns_set:
        console.print(
            _styled(
                Messages.INFO_EXCLUDE_SET.format(value=_format_list(cfg.exclude_patterns)),
                Styles.SUCCESS,
            )
        )

    if show or not (updates.changed or show_cache_all):
        console.print(
            _styled(
                Messages.INFO_CONFIG_SUMMARY.format(
                    source=cfg.source_dir or "none",
                    cooldown=_describe_cooldown(cfg),
                    poll=cfg.poll_interval,
                    retries=cfg.stability_retries,
                    platforms=_format_list(cfg.platforms),
                    platform=cfg.content_platform or "none",
                    exclude=_format_list(cfg.exclude_patterns),
                    timeout=cfg.build_timeout,
                    reader=cfg.reader,
                ),
                Styles.INFO,
            )
        )

    if show_cache_all:
        entries = list_cache_entries()
        if not entries:
            console.print(_styled(Messages.INFO_CACHE_ALL_EMPTY, Styles.INFO))
        else:
            console.print(_styled(Messages.INFO_CACHE_ALL_HEADER, Styles.TITLE))
            table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
            table.add_column(Messages.TABLE_HEADER_SOURCE, overflow="fold")
            table.add_column(Messages.TABLE_HEADER_BANKS, justify="right")
            table.add_column(Messages.TABLE_HEADER_EVENTS, justify="right")
            table.add_column(Messages.TABLE_HEADER_GENERATED, overflow="fold")
            for entry in entries:
                table.add_row(
                    str(entry["source_dir"]),
                    str(entry["bank_count"]),
                    str(entry["event_count"]),
                    str(entry["generated_at"]),
                )
            console.print(table)


@app.command()
def clear(
    path: Path | None = typer.Option(
        None,
        "--path",
        "-p",
        help=Messages.HELP_SOURCE_PATH,
    ),
    clear_all: bool = typer.Option(
        False,
        "--all",
        help=Messages.HELP_CLEAR_ALL,
    ),
) -> None:
    """Remove persisted bank caches."""
    if clear_all:
        removed = clear_all_cache()
    else:
        removed = clear_cache(_require_source(_config_for(path)))
    if removed:
        plural = "ies" if removed > 1 else "y"
        console.print(
            _styled(
                Messages.INFO_CACHE_CLEARED.format(count=removed, plural=plural),
                Styles.SUCCESS,
            )
        )
    else:
        console.print(_styled(Messages.INFO_CACHE_CLEAR_NONE, Styles.INFO))


class _WatchReporter:
    """Prints refresh-state transitions for `banksync watch`."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._state: RefreshState | None = None
        self._error: str | None = None
        self._countdown: str | None = None

    def on_refresh(self, cache: BankCache) -> None:
        if cache.is_valid():
            console.print(_styled(Messages.INFO_WATCH_REFRESHED, Styles.SUCCESS))

    def on_tick(self, status: SyncStatus) -> None:
        if status.last_error and status.last_error != self._error:
            console.print(
                _styled(Messages.INFO_WATCH_FAILED.format(reason=status.last_error), Styles.ERROR)
            )
        self._error = status.last_error

        if status.state is RefreshState.COUNTING_DOWN and status.time_remaining is not None:
            remaining = duration_string(status.time_remaining)
            if remaining != self._countdown:
                console.print(
                    _styled(Messages.INFO_WATCH_COUNTDOWN.format(remaining=remaining), Styles.INFO)
                )
            self._countdown = remaining
        else:
            self._countdown = None

        if status.state is not self._state:
            if status.state is RefreshState.CHANGE_OBSERVED and status.time_since_change is not None:
                console.print(
                    _styled(
                        Messages.INFO_WATCH_CHANGED.format(
                            ago=duration_string(status.time_since_change)
                        ),
                        Styles.INFO,
                    )
                )
                if self._config.cooldown.kind is CooldownKind.PROMPT:
                    console.print(_styled(Messages.INFO_WATCH_PROMPT, Styles.WARNING))
        self._state = status.state


def _config_for(path: Path | None) -> Config:
    config = load_config()
    if path is None:
        return config
    return config_from_json({"source_dir": str(path)}, base=config)


def _require_source(config: Config) -> Path:
    try:
        source = resolve_source_dir(config)
    except ConfigurationError as exc:
        console.print(_styled(str(exc), Styles.ERROR))
        raise typer.Exit(code=1)
    if source is None:
        console.print(_styled(Messages.ERROR_SOURCE_MISSING, Styles.ERROR))
        raise typer.Exit(code=1)
    return source


def _render_banks(cache: BankCache, source: Path) -> None:
    table = Table(
        title=Messages.TABLE_BANKS_TITLE,
        show_header=True,
        header_style=Styles.TABLE_HEADER,
    )
    table.add_column(Messages.TABLE_HEADER_INDEX, justify="right")
    table.add_column(Messages.TABLE_HEADER_NAME, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_ROLE, no_wrap=True)
    table.add_column(Messages.TABLE_HEADER_SIZE, justify="right")
    table.add_column(Messages.TABLE_HEADER_PATH, overflow="fold")
    for idx, bank in enumerate(sorted(cache.banks.values(), key=lambda b: b.name), start=1):
        sizes = ", ".join(
            f"{platform}: {format_size(size)}" if platform else format_size(size)
            for platform, size in sorted(bank.platform_sizes.items())
        )
        table.add_row(
            str(idx),
            bank.name,
            bank.role.value,
            sizes or "-",
            format_path(Path(bank.path), source),
        )
    console.print(table)


def _render_events(cache: BankCache) -> None:
    table = Table(
        title=Messages.TABLE_EVENTS_TITLE,
        show_header=True,
        header_style=Styles.TABLE_HEADER,
    )
    table.add_column(Messages.TABLE_HEADER_INDEX, justify="right")
    table.add_column(Messages.TABLE_HEADER_PATH, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_GUID, no_wrap=True)
    table.add_column(Messages.TABLE_HEADER_BANKS, overflow="fold")
    for idx, event in enumerate(sorted(cache.events.values(), key=lambda e: e.path), start=1):
        banks = sorted(
            cache.banks[key].name if key in cache.banks else Path(key).name
            for key in event.banks
        )
        table.add_row(str(idx), event.path, event.guid, ", ".join(banks))
    console.print(table)


def _render_parameters(cache: BankCache) -> None:
    table = Table(
        title=Messages.TABLE_PARAMETERS_TITLE,
        show_header=True,
        header_style=Styles.TABLE_HEADER,
    )
    table.add_column(Messages.TABLE_HEADER_INDEX, justify="right")
    table.add_column(Messages.TABLE_HEADER_NAME, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_RANGE, no_wrap=True)
    table.add_column(Messages.TABLE_HEADER_DEFAULT, justify="right")
    table.add_column(Messages.TABLE_HEADER_GUID, no_wrap=True)
    parameters = sorted(cache.parameters.values(), key=lambda p: p.name)
    for idx, parameter in enumerate(parameters, start=1):
        table.add_row(
            str(idx),
            parameter.name,
            f"{parameter.minimum:g} .. {parameter.maximum:g}",
            f"{parameter.default:g}",
            parameter.guid or "-",
        )
    console.print(table)


def _describe_cooldown(config: Config) -> str:
    value = format_cooldown(config.cooldown)
    if isinstance(value, str):
        return value
    return f"{value}s"


def _format_list(values: Sequence[str] | None) -> str:
    if not values:
        return "none"
    return ", ".join(values)


def _format_marker_time(value: int) -> str:
    if not value:
        return "never"
    return datetime.fromtimestamp(value / 1_000_000_000).isoformat(timespec="seconds")


def _styled(text: str, style: str) -> str:
    return f"[{style}]{text}[/{style}]"


def run(argv: list[str] | None = None) -> None:
    """Entry point wrapper allowing optional argument override."""
    args = list(argv) if argv is not None else sys.argv[1:]
    if argv is None:
        app()
    else:
        app(args=args)
