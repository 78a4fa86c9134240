"""Global configuration management for banksync."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from contextlib import contextmanager
from contextvars import ContextVar
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Sequence

from .errors import ConfigurationError
from .text import Messages

DEFAULT_CONFIG_DIR = Path(os.path.expanduser("~")) / ".banksync"
CONFIG_DIR = DEFAULT_CONFIG_DIR
CONFIG_FILE = CONFIG_DIR / "config.json"
_CONFIG_DIR_OVERRIDE: ContextVar[Path | None] = ContextVar(
    "banksync_config_dir_override",
    default=None,
)
DEFAULT_COOLDOWN_SECONDS = 5
DEFAULT_POLL_INTERVAL = 5.0
# 15 seconds of instability at the default poll interval
DEFAULT_STABILITY_RETRIES = 3
DEFAULT_BUILD_TIMEOUT = 30.0
DEFAULT_READER = "json"
COOLDOWN_PROMPT = "prompt"
COOLDOWN_MANUAL = "manual"
_LEGACY_COOLDOWN_SENTINELS = {-1: COOLDOWN_PROMPT, -2: COOLDOWN_MANUAL}


class CooldownKind(str, Enum):
    SECONDS = "seconds"
    PROMPT = COOLDOWN_PROMPT
    MANUAL = COOLDOWN_MANUAL


@dataclass(frozen=True, slots=True)
class CooldownPolicy:
    kind: CooldownKind = CooldownKind.SECONDS
    seconds: float = DEFAULT_COOLDOWN_SECONDS

    @classmethod
    def after(cls, seconds: float) -> "CooldownPolicy":
        if seconds < 0:
            raise ValueError(Messages.ERROR_NEGATIVE.format(field="cooldown"))
        return cls(CooldownKind.SECONDS, float(seconds))

    @classmethod
    def prompt(cls) -> "CooldownPolicy":
        return cls(CooldownKind.PROMPT, 0.0)

    @classmethod
    def manual(cls) -> "CooldownPolicy":
        return cls(CooldownKind.MANUAL, 0.0)

    @property
    def is_automatic(self) -> bool:
        return self.kind is CooldownKind.SECONDS


@dataclass
class Config:
    source_dir: str | None = None
    cooldown: CooldownPolicy = field(default_factory=CooldownPolicy)
    poll_interval: float = DEFAULT_POLL_INTERVAL
    stability_retries: int = DEFAULT_STABILITY_RETRIES
    platforms: tuple[str, ...] = ()
    platform: str | None = None
    exclude_patterns: tuple[str, ...] = ()
    build_timeout: float = DEFAULT_BUILD_TIMEOUT
    reader: str = DEFAULT_READER

    @property
    def content_platform(self) -> str | None:
        if self.platform:
            return self.platform
        return self.platforms[0] if self.platforms else None


def parse_cooldown(value: object) -> CooldownPolicy:
    """Turn a stored or user supplied cooldown value into a policy."""

    if isinstance(value, CooldownPolicy):
        return value
    if value is None:
        return CooldownPolicy()
    if isinstance(value, bool):
        raise ValueError(Messages.ERROR_COOLDOWN_INVALID.format(value=value))
    if isinstance(value, (int, float)):
        if value in _LEGACY_COOLDOWN_SENTINELS:
            return parse_cooldown(_LEGACY_COOLDOWN_SENTINELS[int(value)])
        if value < 0:
            raise ValueError(Messages.ERROR_COOLDOWN_INVALID.format(value=value))
        return CooldownPolicy.after(float(value))
    if isinstance(value, str):
        token = value.strip().lower()
        if token == COOLDOWN_PROMPT:
            return CooldownPolicy.prompt()
        if token == COOLDOWN_MANUAL:
            return CooldownPolicy.manual()
        try:
            number = float(token)
        except ValueError as exc:
            raise ValueError(Messages.ERROR_COOLDOWN_INVALID.format(value=value)) from exc
        return parse_cooldown(number)
    raise ValueError(Messages.ERROR_COOLDOWN_INVALID.format(value=value))


def format_cooldown(policy: CooldownPolicy) -> str | float:
    if policy.kind is CooldownKind.SECONDS:
        seconds = policy.seconds
        return int(seconds) if float(seconds).is_integer() else seconds
    return policy.kind.value


def _resolve_config_dir() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    return override if override is not None else CONFIG_DIR


def _resolve_config_file() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    if override is not None:
        return override / "config.json"
    return CONFIG_FILE


@contextmanager
def config_dir_context(path: Path | str | None):
    """Temporarily override the config directory for the current context."""

    if path is None:
        yield
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    token = _CONFIG_DIR_OVERRIDE.set(dir_path)
    try:
        yield
    finally:
        _CONFIG_DIR_OVERRIDE.reset(token)


def load_config() -> Config:
    config_file = _resolve_config_file()
    if not config_file.exists():
        return Config()
    raw = json.loads(config_file.read_text(encoding="utf-8"))
    try:
        cooldown = parse_cooldown(raw.get("cooldown"))
    except ValueError:
        cooldown = CooldownPolicy()
    return Config(
        source_dir=raw.get("source_dir") or None,
        cooldown=cooldown,
        poll_interval=float(raw.get("poll_interval", DEFAULT_POLL_INTERVAL)),
        stability_retries=int(raw.get("stability_retries", DEFAULT_STABILITY_RETRIES)),
        platforms=_coerce_str_tuple(raw.get("platforms"), "platforms"),
        platform=raw.get("platform") or None,
        exclude_patterns=_coerce_str_tuple(raw.get("exclude_patterns"), "exclude_patterns"),
        build_timeout=float(raw.get("build_timeout", DEFAULT_BUILD_TIMEOUT)),
        reader=raw.get("reader") or DEFAULT_READER,
    )


def save_config(config: Config) -> None:
    config_dir = _resolve_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    data: Dict[str, Any] = {}
    if config.source_dir:
        data["source_dir"] = config.source_dir
    data["cooldown"] = format_cooldown(config.cooldown)
    data["poll_interval"] = config.poll_interval
    data["stability_retries"] = config.stability_retries
    if config.platforms:
        data["platforms"] = list(config.platforms)
    if config.platform:
        data["platform"] = config.platform
    if config.exclude_patterns:
        data["exclude_patterns"] = list(config.exclude_patterns)
    data["build_timeout"] = config.build_timeout
    data["reader"] = config.reader or DEFAULT_READER
    config_file = _resolve_config_file()
    config_file.write_text(
        json.dumps(data, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def set_config_dir(path: Path | str | None) -> None:
    global CONFIG_DIR, CONFIG_FILE
    if path is None:
        CONFIG_DIR = DEFAULT_CONFIG_DIR
    else:
        dir_path = Path(path).expanduser().resolve()
        if dir_path.exists() and not dir_path.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {dir_path}")
        CONFIG_DIR = dir_path
    CONFIG_FILE = CONFIG_DIR / "config.json"


def config_from_json(
    payload: str | Mapping[str, object], *, base: Config | None = None
) -> Config:
    """Return a Config from a JSON string or mapping without saving it."""
    data = _coerce_config_payload(payload)
    config = Config() if base is None else _clone_config(base)
    _apply_config_payload(config, data)
    return config


def update_config_from_json(
    payload: str | Mapping[str, object], *, replace: bool = False
) -> Config:
    """Update config from a JSON string or mapping and persist it."""
    base = None if replace else load_config()
    config = config_from_json(payload, base=base)
    save_config(config)
    return config


def set_source_dir(value: str | None) -> None:
    config = load_config()
    config.source_dir = (value or "").strip() or None
    save_config(config)


def set_cooldown(value: object) -> None:
    config = load_config()
    config.cooldown = parse_cooldown(value)
    save_config(config)


def set_poll_interval(value: float) -> None:
    if value <= 0:
        raise ValueError(Messages.ERROR_NEGATIVE.format(field="poll_interval"))
    config = load_config()
    config.poll_interval = float(value)
    save_config(config)


def set_stability_retries(value: int) -> None:
    if value < 0:
        raise ValueError(Messages.ERROR_NEGATIVE.format(field="stability_retries"))
    config = load_config()
    config.stability_retries = int(value)
    save_config(config)


def set_platforms(values: Sequence[str] | None) -> None:
    config = load_config()
    config.platforms = _coerce_str_tuple(list(values or ()), "platforms")
    save_config(config)


def set_platform(value: str | None) -> None:
    config = load_config()
    config.platform = (value or "").strip() or None
    save_config(config)


def set_exclude_patterns(values: Sequence[str] | None) -> None:
    config = load_config()
    config.exclude_patterns = _coerce_str_tuple(list(values or ()), "exclude_patterns")
    save_config(config)


def set_build_timeout(value: float) -> None:
    if value < 0:
        raise ValueError(Messages.ERROR_NEGATIVE.format(field="build_timeout"))
    config = load_config()
    config.build_timeout = float(value)
    save_config(config)


def resolve_source_dir(config: Config, *, cwd: Path | None = None) -> Path | None:
    """Return the absolute bank source directory, or None when unset.

    Relative paths are anchored at *cwd* (the process working directory by
    default). The directory is not required to exist.
    """

    raw = (config.source_dir or "").strip()
    if not raw:
        return None
    try:
        candidate = Path(raw).expanduser()
        if not candidate.is_absolute():
            candidate = (cwd or Path.cwd()) / candidate
        return Path(os.path.abspath(candidate))
    except (OSError, ValueError) as exc:
        raise ConfigurationError(Messages.ERROR_SOURCE_INVALID.format(path=raw)) from exc


def _coerce_config_payload(payload: str | Mapping[str, object]) -> Mapping[str, object]:
    if isinstance(payload, str):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID) from exc
    elif isinstance(payload, Mapping):
        data = dict(payload)
    else:
        raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID)
    if not isinstance(data, Mapping):
        raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID)
    return data


def _clone_config(config: Config) -> Config:
    return Config(
        source_dir=config.source_dir,
        cooldown=config.cooldown,
        poll_interval=config.poll_interval,
        stability_retries=config.stability_retries,
        platforms=tuple(config.platforms),
        platform=config.platform,
        exclude_patterns=tuple(config.exclude_patterns),
        build_timeout=config.build_timeout,
        reader=config.reader,
    )


def _apply_config_payload(config: Config, payload: Mapping[str, object]) -> None:
    if "source_dir" in payload:
        config.source_dir = _coerce_optional_str(payload["source_dir"], "source_dir")
    if "cooldown" in payload:
        config.cooldown = parse_cooldown(payload["cooldown"])
    if "poll_interval" in payload:
        config.poll_interval = _coerce_float(
            payload["poll_interval"], "poll_interval", DEFAULT_POLL_INTERVAL
        )
        if config.poll_interval <= 0:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="poll_interval"))
    if "stability_retries" in payload:
        config.stability_retries = _coerce_int(
            payload["stability_retries"], "stability_retries", DEFAULT_STABILITY_RETRIES
        )
    if "platforms" in payload:
        config.platforms = _coerce_str_tuple(payload["platforms"], "platforms")
    if "platform" in payload:
        config.platform = _coerce_optional_str(payload["platform"], "platform")
    if "exclude_patterns" in payload:
        config.exclude_patterns = _coerce_str_tuple(
            payload["exclude_patterns"], "exclude_patterns"
        )
    if "build_timeout" in payload:
        config.build_timeout = _coerce_float(
            payload["build_timeout"], "build_timeout", DEFAULT_BUILD_TIMEOUT
        )
    if "reader" in payload:
        config.reader = _coerce_optional_str(payload["reader"], "reader") or DEFAULT_READER


def _coerce_optional_str(value: object, field: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or None
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_int(value: object, field: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, int):
        result = value
    elif isinstance(value, float) and value.is_integer():
        result = int(value)
    elif isinstance(value, str) and value.strip():
        try:
            result = int(value.strip())
        except ValueError as exc:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)) from exc
    elif isinstance(value, str):
        return default
    else:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if result < 0:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    return result


def _coerce_float(value: object, field: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return default
        try:
            result = float(cleaned)
        except ValueError as exc:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)) from exc
    else:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if result < 0:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    return result


def _coerce_str_tuple(value: object, field: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    normalized: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
        token = item.strip()
        if token and token not in normalized:
            normalized.append(token)
    return tuple(normalized)
