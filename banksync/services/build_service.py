"""Incremental diff-and-merge of bank files into the bank cache."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence

from .stability import StabilityGate
from ..config import DEFAULT_BUILD_TIMEOUT
from ..errors import BankOpenError, ConfigurationError, ParseError, TransientBuildError
from ..reader import BankReader, EventDescriptor, ParameterDescriptor
from ..records import (
    SCHEMA_VERSION,
    BankCache,
    BankRecord,
    BankRole,
    EventRecord,
    LoadOutcome,
    ParameterRecord,
    bank_key,
)
from ..text import Messages
from ..utils import collect_bank_files, is_marker_bank, master_bank_name, relative_sub_dir

logger = logging.getLogger(__name__)


class BuildStatus(str, Enum):
    UNCHANGED = "unchanged"
    REBUILT = "rebuilt"
    NO_BANKS = "no_banks"


@dataclass(slots=True)
class BuildResult:
    status: BuildStatus
    cache: BankCache
    banks_parsed: int = 0
    banks_removed: int = 0
    marker: Path | None = None
    message: str | None = None


def newest_marker_time(markers: Sequence[Path]) -> int:
    """Return the newest modification time (ns) among *markers*, 0 when none."""

    newest = 0
    for marker in markers:
        try:
            newest = max(newest, marker.stat().st_mtime_ns)
        except OSError:
            continue
    return newest


def content_bank_keys(files: Sequence[Path]) -> set[str]:
    return {bank_key(path) for path in files if not is_marker_bank(path)}


def matches_checkpoint(
    cache: BankCache,
    content_dir: Path,
    exclude_patterns: Sequence[str] | None = None,
) -> bool:
    """Return True if a rescan of *content_dir* would leave *cache* as it is.

    The newest marker must match the checkpoint and the set of non-marker
    banks on disk must match the cached one; a bank added or deleted
    without a marker rewrite still counts as a change.
    """

    files = collect_bank_files(content_dir, exclude_patterns)
    markers = [path for path in files if is_marker_bank(path)]
    if newest_marker_time(markers) != cache.last_build_marker_time:
        return False
    return content_bank_keys(files) == cache.content_bank_keys()


def _mtime(path: Path) -> int:
    try:
        return path.stat().st_mtime_ns
    except OSError as exc:
        raise TransientBuildError(
            Messages.ERROR_BUILD_UNSTABLE.format(path=path), path=path
        ) from exc


class CacheBuilder:
    """Rebuild a :class:`BankCache` from the banks in a source directory.

    ``rebuild`` never mutates the cache it is given. On success it returns
    either that same object (nothing changed) or a new cache; any failure
    raises and leaves the caller's cache as it was.
    """

    def __init__(
        self,
        reader: BankReader,
        gate: StabilityGate | None = None,
        *,
        platforms: Sequence[str] = (),
        platform: str | None = None,
        exclude_patterns: Sequence[str] = (),
        build_timeout: float = DEFAULT_BUILD_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.reader = reader
        self.gate = gate or StabilityGate()
        self.platforms = tuple(platforms)
        self.platform = platform
        self.exclude_patterns = tuple(exclude_patterns)
        self.build_timeout = build_timeout
        self._clock = clock

    def content_dir(self, source_dir: Path) -> Path:
        return source_dir / self.platform if self.platform else source_dir

    def rebuild(
        self,
        cache: BankCache,
        source_dir: Path | None,
        marker: Path | None = None,
        *,
        force: bool = False,
    ) -> BuildResult:
        if source_dir is None:
            raise ConfigurationError(Messages.ERROR_SOURCE_MISSING)
        content_dir = self.content_dir(source_dir)
        if not content_dir.is_dir():
            raise ConfigurationError(Messages.ERROR_SOURCE_INVALID.format(path=content_dir))

        if cache.schema_version != SCHEMA_VERSION:
            logger.info(
                Messages.ERROR_SCHEMA_MISMATCH.format(
                    found=cache.schema_version, expected=SCHEMA_VERSION
                )
            )
            cache = BankCache()

        files = collect_bank_files(content_dir, self.exclude_patterns)
        markers = [path for path in files if is_marker_bank(path)]
        if marker is None:
            marker = self.gate.select_marker(markers)
        if marker is None:
            return BuildResult(
                status=BuildStatus.NO_BANKS,
                cache=BankCache(),
                message=Messages.INFO_NO_BANKS.format(path=content_dir),
            )

        marker_time = _mtime(marker)
        if (
            not force
            and marker_time == cache.last_build_marker_time
            and content_bank_keys(files) == cache.content_bank_keys()
        ):
            logger.debug("Build marker %s and bank set unchanged; cache is current", marker)
            return BuildResult(status=BuildStatus.UNCHANGED, cache=cache, marker=marker)

        if not self.gate.is_build_stable(marker):
            raise TransientBuildError(
                Messages.ERROR_BUILD_UNSTABLE.format(path=marker), path=marker
            )

        deadline = self._clock() + self.build_timeout if self.build_timeout > 0 else None
        work = BankCache() if force else cache.copy()
        for record in work.banks.values():
            record.exists_this_pass = False

        canonical = self._canonical_markers(marker, markers)
        master_keys = {bank_key(path.parent / master_bank_name(path)) for path in canonical}
        skipped = {bank_key(path) for path in markers} - {bank_key(path) for path in canonical}

        for path in canonical:
            record = self._touch(work, path, content_dir, source_dir)
            record.role = BankRole.MARKER
            record.last_modified = _mtime(path)
            record.load_outcome = LoadOutcome()

        parsed = 0
        for path in files:
            key = bank_key(path)
            if is_marker_bank(path):
                continue
            record = self._touch(work, path, content_dir, source_dir)
            record.role = BankRole.MASTER if key in master_keys else BankRole.CONTENT
            modified = _mtime(path)
            if modified != record.last_modified:
                self._parse_bank(work, record, path)
                record.last_modified = modified
                parsed += 1
            self._check_deadline(deadline)

        removed = self._prune(work)
        work.recompute_roles()
        work.reindex()
        work.schema_version = SCHEMA_VERSION
        work.last_build_marker_time = marker_time
        if skipped:
            logger.debug("Ignoring %d cloned marker bank(s)", len(skipped))
        logger.info(
            "Rebuilt bank cache from %s: %d parsed, %d removed",
            content_dir,
            parsed,
            removed,
        )
        return BuildResult(
            status=BuildStatus.REBUILT,
            cache=work,
            banks_parsed=parsed,
            banks_removed=removed,
            marker=marker,
        )

    def _canonical_markers(self, newest: Path, markers: Sequence[Path]) -> list[Path]:
        """Return markers with distinct identities, newest first.

        Clones of a project share the marker GUID; only the first one seen
        is kept.
        """

        ordered = sorted(markers, key=lambda path: (-newest_marker_time([path]), str(path)))
        if newest in ordered:
            ordered.remove(newest)
        ordered.insert(0, newest)
        seen: set[str] = set()
        canonical: list[Path] = []
        for path in ordered:
            guid = self._marker_identity(path)
            if guid in seen:
                logger.debug("Marker %s duplicates identity %s", path, guid)
                continue
            seen.add(guid)
            canonical.append(path)
        return canonical

    def _marker_identity(self, path: Path) -> str:
        try:
            handle = self.reader.open(path)
        except BankOpenError as exc:
            raise ParseError(
                path, exc.reason, Messages.ERROR_BANK_INVALID.format(path=path, reason=exc.reason)
            ) from exc
        try:
            return self.reader.identity(handle)
        finally:
            self.reader.close(handle)

    def _touch(self, work: BankCache, path: Path, content_dir: Path, source_dir: Path) -> BankRecord:
        key = bank_key(path)
        record = work.banks.get(key)
        if record is None:
            record = BankRecord(path=key, sub_dir=relative_sub_dir(path, content_dir))
            work.banks[key] = record
        record.exists_this_pass = True
        record.platform_sizes = self._platform_sizes(path, content_dir, source_dir)
        return record

    def _platform_sizes(self, path: Path, content_dir: Path, source_dir: Path) -> dict[str, int]:
        if not self.platforms:
            try:
                return {"": path.stat().st_size}
            except OSError:
                return {}
        relative = path.relative_to(content_dir)
        sizes: dict[str, int] = {}
        for platform in self.platforms:
            candidate = source_dir / platform / relative
            try:
                sizes[platform] = candidate.stat().st_size
            except OSError:
                continue
        return sizes

    def _parse_bank(self, work: BankCache, record: BankRecord, path: Path) -> None:
        key = record.path
        for event in work.events.values():
            event.banks.discard(key)
        try:
            handle = self.reader.open(path)
        except BankOpenError as exc:
            raise ParseError(
                path, exc.reason, Messages.ERROR_BANK_INVALID.format(path=path, reason=exc.reason)
            ) from exc
        try:
            record.studio_path = self.reader.studio_path(handle)
            for descriptor in self.reader.enumerate_events(handle):
                previous = work.events.get(descriptor.path)
                banks = set(previous.banks) if previous is not None else set()
                banks.add(key)
                work.events[descriptor.path] = _event_record(descriptor, banks)
            guids: set[str] = set()
            for descriptor in self.reader.enumerate_global_parameters():
                work.parameters[descriptor.guid] = _global_parameter(descriptor)
                guids.add(descriptor.guid)
            record.global_parameter_guids = guids
        finally:
            self.reader.close(handle)
        record.load_outcome = LoadOutcome()
        logger.debug("Parsed bank %s", path)

    def _prune(self, work: BankCache) -> int:
        gone = [key for key, record in work.banks.items() if not record.exists_this_pass]
        for key in gone:
            del work.banks[key]
        if gone:
            for event in work.events.values():
                event.banks.difference_update(gone)
        for path in [path for path, event in work.events.items() if not event.banks]:
            del work.events[path]
        alive: set[str] = set()
        for record in work.banks.values():
            alive.update(record.global_parameter_guids)
        for guid in [guid for guid in work.parameters if guid not in alive]:
            del work.parameters[guid]
        return len(gone)

    def _check_deadline(self, deadline: float | None) -> None:
        if deadline is not None and self._clock() > deadline:
            raise TransientBuildError(
                Messages.ERROR_BUILD_TIMEOUT.format(seconds=self.build_timeout)
            )


def _event_record(descriptor: EventDescriptor, banks: set[str]) -> EventRecord:
    leaf = descriptor.path.rsplit("/", 1)[-1]
    parameters = [
        _local_parameter(parameter, leaf)
        for parameter in descriptor.parameters
        if parameter.is_global or not parameter.is_readonly
    ]
    return EventRecord(
        guid=descriptor.guid,
        path=descriptor.path,
        is_3d=descriptor.is_3d,
        is_one_shot=descriptor.is_one_shot,
        is_stream=descriptor.is_stream,
        length=descriptor.length,
        min_distance=descriptor.min_distance,
        max_distance=descriptor.max_distance,
        parameters=parameters,
        banks=banks,
    )


def _local_parameter(descriptor: ParameterDescriptor, leaf: str) -> ParameterRecord:
    if descriptor.is_global:
        return _global_parameter(descriptor)
    return ParameterRecord(
        name=descriptor.name,
        minimum=descriptor.minimum,
        maximum=descriptor.maximum,
        default=descriptor.default,
        guid=descriptor.guid,
        type=descriptor.type,
        labels=descriptor.labels,
        is_global=False,
        studio_path=f"parameter:/{leaf}/{descriptor.name}",
    )


def _global_parameter(descriptor: ParameterDescriptor) -> ParameterRecord:
    return ParameterRecord(
        name=descriptor.name,
        minimum=descriptor.minimum,
        maximum=descriptor.maximum,
        default=descriptor.default,
        guid=descriptor.guid,
        type=descriptor.type,
        labels=descriptor.labels,
        is_global=True,
        studio_path=f"parameter:/{descriptor.name}",
    )
