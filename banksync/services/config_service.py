"""Logic helpers for the `banksync config` command."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ..config import (
    Config,
    load_config,
    set_build_timeout,
    set_cooldown,
    set_exclude_patterns,
    set_platform,
    set_platforms,
    set_poll_interval,
    set_source_dir,
    set_stability_retries,
)


@dataclass(slots=True)
class ConfigUpdateResult:
    source_set: bool = False
    source_cleared: bool = False
    cooldown_set: bool = False
    poll_interval_set: bool = False
    stability_retries_set: bool = False
    platforms_set: bool = False
    platform_set: bool = False
    build_timeout_set: bool = False
    exclude_patterns_set: bool = False

    @property
    def changed(self) -> bool:
        return any(
            (
                self.source_set,
                self.source_cleared,
                self.cooldown_set,
                self.poll_interval_set,
                self.stability_retries_set,
                self.platforms_set,
                self.platform_set,
                self.build_timeout_set,
                self.exclude_patterns_set,
            )
        )


def apply_config_updates(
    *,
    source_dir: str | None = None,
    clear_source: bool = False,
    cooldown: str | None = None,
    poll_interval: float | None = None,
    stability_retries: int | None = None,
    platforms: Sequence[str] | None = None,
    platform: str | None = None,
    build_timeout: float | None = None,
    exclude_patterns: Sequence[str] | None = None,
) -> ConfigUpdateResult:
    """Apply config mutations and report which fields were updated."""

    result = ConfigUpdateResult()
    if source_dir is not None:
        set_source_dir(source_dir)
        result.source_set = True
    if clear_source:
        set_source_dir(None)
        result.source_cleared = True
    if cooldown is not None:
        set_cooldown(cooldown)
        result.cooldown_set = True
    if poll_interval is not None:
        set_poll_interval(poll_interval)
        result.poll_interval_set = True
    if stability_retries is not None:
        set_stability_retries(stability_retries)
        result.stability_retries_set = True
    if platforms is not None:
        set_platforms(platforms)
        result.platforms_set = True
    if platform is not None:
        set_platform(platform)
        result.platform_set = True
    if build_timeout is not None:
        set_build_timeout(build_timeout)
        result.build_timeout_set = True
    if exclude_patterns is not None:
        set_exclude_patterns(exclude_patterns)
        result.exclude_patterns_set = True
    return result


def get_config_snapshot() -> Config:
    """Return the current configuration dataclass."""

    return load_config()
