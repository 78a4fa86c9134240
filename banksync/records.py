"""In-memory bank cache: bank, event and parameter records."""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

SCHEMA_VERSION = 1


class BankRole(str, Enum):
    MARKER = "marker"
    MASTER = "master"
    CONTENT = "content"


class ParameterType(str, Enum):
    CONTINUOUS = "continuous"
    DISCRETE = "discrete"
    LABELED = "labeled"


@dataclass(slots=True)
class LoadOutcome:
    ok: bool = True
    reason: str | None = None


@dataclass(slots=True)
class BankRecord:
    path: str
    sub_dir: str = ""
    last_modified: int = 0
    exists_this_pass: bool = False
    platform_sizes: dict[str, int] = field(default_factory=dict)
    role: BankRole = BankRole.CONTENT
    load_outcome: LoadOutcome = field(default_factory=LoadOutcome)
    studio_path: str | None = None
    global_parameter_guids: set[str] = field(default_factory=set)

    @property
    def name(self) -> str:
        stem = os.path.basename(self.path)
        for suffix in (".strings.bank", ".bank"):
            if stem.endswith(suffix):
                stem = stem[: -len(suffix)]
                break
        if not self.sub_dir:
            return stem
        return f"{self.sub_dir}/{stem}"


@dataclass(slots=True)
class ParameterRecord:
    name: str
    minimum: float = 0.0
    maximum: float = 0.0
    default: float = 0.0
    guid: str | None = None
    type: ParameterType = ParameterType.CONTINUOUS
    labels: tuple[str, ...] = ()
    is_global: bool = False
    studio_path: str = ""


@dataclass(slots=True)
class EventRecord:
    guid: str
    path: str
    is_3d: bool = False
    is_one_shot: bool = False
    is_stream: bool = False
    length: int = 0
    min_distance: float = 0.0
    max_distance: float = 0.0
    parameters: list[ParameterRecord] = field(default_factory=list)
    banks: set[str] = field(default_factory=set)

    @property
    def local_parameters(self) -> list[ParameterRecord]:
        return sorted((p for p in self.parameters if not p.is_global), key=lambda p: p.name)

    @property
    def global_parameters(self) -> list[ParameterRecord]:
        return sorted((p for p in self.parameters if p.is_global), key=lambda p: p.name)


@dataclass(slots=True)
class BankCache:
    """Queryable result of the last committed rebuild.

    ``banks`` is keyed by absolute path, ``events`` by event path and
    ``parameters`` (global parameters only) by GUID. Instances handed out by
    the coordinator are never mutated again; rebuilds work on ``copy()``.
    """

    schema_version: int = SCHEMA_VERSION
    last_build_marker_time: int = 0
    banks: dict[str, BankRecord] = field(default_factory=dict)
    events: dict[str, EventRecord] = field(default_factory=dict)
    parameters: dict[str, ParameterRecord] = field(default_factory=dict)
    master_bank_paths: list[str] = field(default_factory=list)
    marker_bank_paths: list[str] = field(default_factory=list)
    _events_by_guid: dict[str, str] = field(default_factory=dict, repr=False, compare=False)

    def copy(self) -> "BankCache":
        clone = copy.deepcopy(self)
        clone.reindex()
        return clone

    def clear(self) -> None:
        self.last_build_marker_time = 0
        self.banks.clear()
        self.events.clear()
        self.parameters.clear()
        self.master_bank_paths.clear()
        self.marker_bank_paths.clear()
        self._events_by_guid.clear()

    def reindex(self) -> None:
        self._events_by_guid = {
            normalize_guid(event.guid): path for path, event in self.events.items()
        }

    def recompute_roles(self) -> None:
        self.master_bank_paths = sorted(
            path for path, bank in self.banks.items() if bank.role is BankRole.MASTER
        )
        self.marker_bank_paths = sorted(
            path for path, bank in self.banks.items() if bank.role is BankRole.MARKER
        )

    def content_bank_keys(self) -> set[str]:
        """Keys of every non-marker bank, the set a rescan must reproduce."""
        return {path for path, bank in self.banks.items() if bank.role is not BankRole.MARKER}

    def is_valid(self) -> bool:
        return self.last_build_marker_time != 0

    def all_banks(self) -> tuple[BankRecord, ...]:
        return tuple(self.banks.values())

    def all_events(self) -> tuple[EventRecord, ...]:
        return tuple(self.events.values())

    def all_parameters(self) -> tuple[ParameterRecord, ...]:
        return tuple(self.parameters.values())

    def master_banks(self) -> tuple[BankRecord, ...]:
        return tuple(self.banks[path] for path in self.master_bank_paths if path in self.banks)

    def marker_banks(self) -> tuple[BankRecord, ...]:
        return tuple(self.banks[path] for path in self.marker_bank_paths if path in self.banks)

    def content_banks(self) -> tuple[BankRecord, ...]:
        return tuple(bank for bank in self.banks.values() if bank.role is not BankRole.MARKER)

    def find_bank(self, path: Path | str) -> BankRecord | None:
        return self.banks.get(bank_key(path))

    def find_event_by_path(self, path: str) -> EventRecord | None:
        return self.events.get(path)

    def find_event_by_guid(self, guid: str) -> EventRecord | None:
        path = self._events_by_guid.get(normalize_guid(guid))
        if path is None:
            return None
        return self.events.get(path)

    def find_parameter_by_name(self, name: str) -> ParameterRecord | None:
        for parameter in self.parameters.values():
            if parameter.name == name:
                return parameter
        return None

    def events_in_bank(self, path: Path | str) -> list[EventRecord]:
        key = bank_key(path)
        return [event for event in self.events.values() if key in event.banks]


def normalize_guid(guid: str) -> str:
    return guid.strip().strip("{}").lower()


def bank_key(path: Path | str) -> str:
    """Return the identity key used for bank records."""

    return Path(os.path.abspath(path)).as_posix()
