"""JSON-encoded bank reader.

Each bank file holds one UTF-8 JSON object::

    {
      "guid": "…",
      "path": "bank:/Master",
      "events": [
        {"guid": "…", "path": "event:/Explosion", "is_3d": true,
         "parameters": [{"name": "Intensity", "guid": "…", "min": 0, "max": 1,
                         "flags": ["discrete"]}]}
      ],
      "parameters": [{"name": "Weather", "guid": "…", "flags": ["global"]}]
    }

Top-level ``parameters`` are the bank's global parameters.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Sequence

from ..errors import BankOpenError
from ..reader import EventDescriptor, ParameterDescriptor
from ..records import ParameterType, normalize_guid


@dataclass(slots=True, eq=False)
class JsonBankHandle:
    path: Path
    guid: str
    studio_path: str | None
    events: tuple[EventDescriptor, ...] = ()
    global_parameters: tuple[ParameterDescriptor, ...] = field(default_factory=tuple)


class JsonBankReader:
    """Bank reader for JSON-encoded bank documents."""

    def __init__(self) -> None:
        self._open: list[JsonBankHandle] = []

    def open(self, path: Path) -> JsonBankHandle:
        bank_path = Path(path)
        try:
            raw = bank_path.read_bytes()
        except OSError as exc:
            raise BankOpenError(bank_path, exc.strerror or str(exc)) from exc
        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise BankOpenError(bank_path, "not a valid bank document") from exc
        if not isinstance(document, Mapping):
            raise BankOpenError(bank_path, "not a valid bank document")
        guid = _clean_guid(document.get("guid"))
        if not guid:
            raise BankOpenError(bank_path, "bank has no identity GUID")
        try:
            events = tuple(_parse_event(item) for item in _as_list(document.get("events")))
            parameters = tuple(
                _parse_parameter(item, force_global=True)
                for item in _as_list(document.get("parameters"))
            )
        except (AttributeError, TypeError, ValueError, KeyError) as exc:
            raise BankOpenError(bank_path, f"malformed entry ({exc})") from exc
        handle = JsonBankHandle(
            path=bank_path,
            guid=guid,
            studio_path=document.get("path") or None,
            events=events,
            global_parameters=parameters,
        )
        self._open.append(handle)
        return handle

    def identity(self, handle: JsonBankHandle) -> str:
        return handle.guid

    def studio_path(self, handle: JsonBankHandle) -> str | None:
        return handle.studio_path

    def enumerate_events(self, handle: JsonBankHandle) -> Sequence[EventDescriptor]:
        return handle.events

    def enumerate_global_parameters(self) -> Sequence[ParameterDescriptor]:
        seen: set[str] = set()
        result: list[ParameterDescriptor] = []
        for handle in self._open:
            for parameter in handle.global_parameters:
                if parameter.guid in seen:
                    continue
                seen.add(parameter.guid)
                result.append(parameter)
        return result

    def close(self, handle: JsonBankHandle) -> None:
        if handle in self._open:
            self._open.remove(handle)


def _as_list(value: object) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError("expected a list")
    return value


def _clean_guid(value: object) -> str:
    if not isinstance(value, str):
        return ""
    return normalize_guid(value)


def _parse_event(item: Mapping[str, object]) -> EventDescriptor:
    guid = _clean_guid(item["guid"])
    path = str(item["path"])
    if not guid or not path:
        raise ValueError("event requires guid and path")
    return EventDescriptor(
        guid=guid,
        path=path,
        is_3d=bool(item.get("is_3d", False)),
        is_one_shot=bool(item.get("is_one_shot", False)),
        is_stream=bool(item.get("is_stream", False)),
        length=int(item.get("length", 0)),
        min_distance=float(item.get("min_distance", 0.0)),
        max_distance=float(item.get("max_distance", 0.0)),
        parameters=tuple(_parse_parameter(p) for p in item.get("parameters") or ()),
    )


def _parse_parameter(item: Mapping[str, object], *, force_global: bool = False) -> ParameterDescriptor:
    flags = {str(flag).strip().lower() for flag in item.get("flags") or ()}
    labels = tuple(str(label) for label in item.get("labels") or ())
    if labels:
        parameter_type = ParameterType.LABELED
    elif "discrete" in flags:
        parameter_type = ParameterType.DISCRETE
    else:
        parameter_type = ParameterType.CONTINUOUS
    guid = _clean_guid(item.get("guid")) or str(item["name"])
    return ParameterDescriptor(
        name=str(item["name"]),
        guid=guid,
        minimum=float(item.get("min", 0.0)),
        maximum=float(item.get("max", 0.0)),
        default=float(item.get("default", 0.0)),
        type=parameter_type,
        labels=labels,
        is_global=force_global or "global" in flags,
        is_readonly="readonly" in flags,
    )
