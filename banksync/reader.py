"""Bank reader protocol and the descriptors readers hand back."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from .config import DEFAULT_READER
from .records import ParameterType
from .text import Messages


@dataclass(frozen=True, slots=True)
class ParameterDescriptor:
    """A parameter as declared by a bank."""

    name: str
    guid: str
    minimum: float = 0.0
    maximum: float = 0.0
    default: float = 0.0
    type: ParameterType = ParameterType.CONTINUOUS
    labels: tuple[str, ...] = ()
    is_global: bool = False
    is_readonly: bool = False


@dataclass(frozen=True, slots=True)
class EventDescriptor:
    """An event as declared by a bank."""

    guid: str
    path: str
    is_3d: bool = False
    is_one_shot: bool = False
    is_stream: bool = False
    length: int = 0
    min_distance: float = 0.0
    max_distance: float = 0.0
    parameters: tuple[ParameterDescriptor, ...] = ()


class BankHandle(Protocol):
    """Opaque handle for an open bank."""

    path: Path


class BankReader(Protocol):
    """Minimal protocol for components that can open and enumerate banks.

    ``open`` raises :class:`banksync.errors.BankOpenError` for missing,
    locked or malformed files. ``enumerate_global_parameters`` reports the
    global parameters of every bank currently open, mirroring how the audio
    runtime exposes them system-wide rather than per bank.
    """

    def open(self, path: Path) -> BankHandle:
        raise NotImplementedError  # pragma: no cover

    def identity(self, handle: BankHandle) -> str:
        raise NotImplementedError  # pragma: no cover

    def studio_path(self, handle: BankHandle) -> str | None:
        raise NotImplementedError  # pragma: no cover

    def enumerate_events(self, handle: BankHandle) -> Sequence[EventDescriptor]:
        raise NotImplementedError  # pragma: no cover

    def enumerate_global_parameters(self) -> Sequence[ParameterDescriptor]:
        raise NotImplementedError  # pragma: no cover

    def close(self, handle: BankHandle) -> None:
        raise NotImplementedError  # pragma: no cover


SUPPORTED_READERS: tuple[str, ...] = (DEFAULT_READER,)


def get_reader(name: str | None = None) -> BankReader:
    """Return a reader instance for the provider called *name*."""

    normalized = (name or DEFAULT_READER).strip().lower()
    if normalized == "json":
        from .providers.json_bank import JsonBankReader  # local import

        return JsonBankReader()
    allowed = ", ".join(SUPPORTED_READERS)
    raise ValueError(Messages.ERROR_READER_UNKNOWN.format(name=name, allowed=allowed))
