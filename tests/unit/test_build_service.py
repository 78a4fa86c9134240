import itertools
import json
import os
from pathlib import Path

import pytest

from banksync.errors import ConfigurationError, ParseError, TransientBuildError
from banksync.providers.json_bank import JsonBankReader
from banksync.records import SCHEMA_VERSION, BankCache, BankRecord, BankRole, bank_key
from banksync.services.build_service import (
    BuildStatus,
    CacheBuilder,
    content_bank_keys,
    matches_checkpoint,
    newest_marker_time,
)
from banksync.services.stability import StabilityGate

T1 = 1_700_000_000_000_000_000
SECOND = 1_000_000_000


def _write_bank(path: Path, guid: str, *, events=(), parameters=(), mtime_ns=T1, studio_path=None):
    path.parent.mkdir(parents=True, exist_ok=True)
    document = {"guid": guid, "events": list(events), "parameters": list(parameters)}
    if studio_path:
        document["path"] = studio_path
    path.write_text(json.dumps(document), encoding="utf-8")
    os.utime(path, ns=(mtime_ns, mtime_ns))
    return path


def _touch(path: Path, mtime_ns: int) -> None:
    os.utime(path, ns=(mtime_ns, mtime_ns))


def _builder(**kwargs) -> CacheBuilder:
    gate = kwargs.pop("gate", None) or StabilityGate(probe=lambda path: True)
    return CacheBuilder(JsonBankReader(), gate, **kwargs)


def _explosion(guid="g1"):
    return {"guid": guid, "path": "event:/Explosion", "is_3d": True, "length": 1200}


def _project(root: Path):
    marker = _write_bank(root / "master.strings.bank", "m1")
    master = _write_bank(root / "master.bank", "b1", events=[_explosion()])
    return marker, master


def test_first_build_then_idempotent_then_prune(tmp_path):
    marker, master = _project(tmp_path)
    builder = _builder()

    first = builder.rebuild(BankCache(), tmp_path)

    assert first.status is BuildStatus.REBUILT
    cache = first.cache
    assert list(cache.events) == ["event:/Explosion"]
    event = cache.find_event_by_path("event:/Explosion")
    assert event.banks == {bank_key(master)}
    assert event.is_3d is True
    assert event.length == 1200
    assert cache.find_event_by_guid("G1") is event
    assert cache.last_build_marker_time == T1
    assert cache.master_bank_paths == [bank_key(master)]
    assert cache.marker_bank_paths == [bank_key(marker)]
    assert cache.is_valid()

    second = builder.rebuild(cache, tmp_path)

    assert second.status is BuildStatus.UNCHANGED
    assert second.cache is cache

    master.unlink()
    third = builder.rebuild(cache, tmp_path)

    assert third.status is BuildStatus.REBUILT
    assert third.cache.events == {}
    assert bank_key(master) not in third.cache.banks
    assert third.cache.master_bank_paths == []
    assert third.banks_removed == 1
    assert third.cache.last_build_marker_time == T1

    fourth = builder.rebuild(third.cache, tmp_path)

    assert fourth.status is BuildStatus.UNCHANGED
    assert fourth.cache is third.cache


def test_added_bank_is_picked_up_without_marker_rewrite(tmp_path):
    _project(tmp_path)
    builder = _builder()
    cache = builder.rebuild(BankCache(), tmp_path).cache

    _write_bank(tmp_path / "sfx.bank", "b2", events=[{"guid": "g2", "path": "event:/Step"}])
    result = builder.rebuild(cache, tmp_path)

    assert result.status is BuildStatus.REBUILT
    assert result.banks_parsed == 1
    assert set(result.cache.events) == {"event:/Explosion", "event:/Step"}


def test_rebuild_does_not_mutate_input_cache(tmp_path):
    marker, _ = _project(tmp_path)
    builder = _builder()
    cache = builder.rebuild(BankCache(), tmp_path).cache
    before = cache.copy()

    _write_bank(tmp_path / "sfx.bank", "b2", events=[{"guid": "g2", "path": "event:/Step"}])
    _touch(marker, T1 + SECOND)
    result = builder.rebuild(cache, tmp_path)

    assert "event:/Step" in result.cache.events
    assert result.cache is not cache
    assert cache == before


def test_parse_error_leaves_previous_cache_identical(tmp_path):
    marker, _ = _project(tmp_path)
    _write_bank(tmp_path / "a.bank", "ba", events=[{"guid": "ga", "path": "event:/A"}])
    _write_bank(tmp_path / "b.bank", "bb", events=[{"guid": "gb", "path": "event:/B"}])
    builder = _builder()
    cache = builder.rebuild(BankCache(), tmp_path).cache
    before = cache.copy()

    _write_bank(
        tmp_path / "a.bank",
        "ba",
        events=[{"guid": "ga", "path": "event:/A"}, {"guid": "gn", "path": "event:/New"}],
        mtime_ns=T1 + SECOND,
    )
    broken = tmp_path / "b.bank"
    broken.write_text("{not json", encoding="utf-8")
    _touch(broken, T1 + SECOND)
    _touch(marker, T1 + SECOND)

    with pytest.raises(ParseError) as excinfo:
        builder.rebuild(cache, tmp_path)

    assert excinfo.value.path.name == "b.bank"
    assert not excinfo.value.retryable
    assert cache == before
    assert "event:/New" not in cache.events


def test_pruning_removes_events_only_in_deleted_bank(tmp_path):
    marker, _ = _project(tmp_path)
    shared = {"guid": "gs", "path": "event:/Shared"}
    _write_bank(tmp_path / "a.bank", "ba", events=[shared, {"guid": "ga", "path": "event:/OnlyA"}])
    b_bank = _write_bank(tmp_path / "b.bank", "bb", events=[shared])
    builder = _builder()
    cache = builder.rebuild(BankCache(), tmp_path).cache
    assert cache.events["event:/Shared"].banks == {
        bank_key(tmp_path / "a.bank"),
        bank_key(b_bank),
    }

    (tmp_path / "a.bank").unlink()
    _touch(marker, T1 + SECOND)
    cache = builder.rebuild(cache, tmp_path).cache

    assert "event:/OnlyA" not in cache.events
    assert cache.events["event:/Shared"].banks == {bank_key(b_bank)}
    assert bank_key(tmp_path / "a.bank") not in cache.banks


def test_unchanged_banks_are_not_reparsed(tmp_path):
    marker, _ = _project(tmp_path)
    _write_bank(tmp_path / "a.bank", "ba", events=[{"guid": "ga", "path": "event:/A"}])
    builder = _builder()
    cache = builder.rebuild(BankCache(), tmp_path).cache

    _write_bank(tmp_path / "b.bank", "bb", events=[{"guid": "gb", "path": "event:/B"}])
    _touch(marker, T1 + SECOND)
    result = builder.rebuild(cache, tmp_path)

    assert result.banks_parsed == 1
    assert set(result.cache.events) == {"event:/Explosion", "event:/A", "event:/B"}


def test_schema_mismatch_discards_existing_records(tmp_path):
    _project(tmp_path)
    stale = BankCache(
        schema_version=SCHEMA_VERSION + 1,
        last_build_marker_time=T1,
        banks={"/gone.bank": BankRecord(path="/gone.bank")},
    )

    result = _builder().rebuild(stale, tmp_path)

    assert result.status is BuildStatus.REBUILT
    assert "/gone.bank" not in result.cache.banks
    assert result.cache.schema_version == SCHEMA_VERSION


def test_unstable_marker_is_retryable_and_leaves_cache(tmp_path):
    _project(tmp_path)
    gate = StabilityGate(retry_budget=3, probe=lambda path: False)
    cache = BankCache()

    with pytest.raises(TransientBuildError) as excinfo:
        _builder(gate=gate).rebuild(cache, tmp_path)

    assert excinfo.value.retryable
    assert excinfo.value.path.name == "master.strings.bank"
    assert gate.remaining == 2
    assert cache == BankCache()


def test_cloned_markers_keep_first_identity(tmp_path):
    newest = _write_bank(tmp_path / "a" / "master.strings.bank", "same", mtime_ns=T1 + SECOND)
    _write_bank(tmp_path / "a" / "master.bank", "ma", events=[_explosion()])
    clone = _write_bank(tmp_path / "b" / "master.strings.bank", "same")
    clone_master = _write_bank(tmp_path / "b" / "master.bank", "mb", events=[_explosion()])

    cache = _builder().rebuild(BankCache(), tmp_path).cache

    assert cache.marker_bank_paths == [bank_key(newest)]
    assert bank_key(clone) not in cache.banks
    assert cache.master_bank_paths == [bank_key(tmp_path / "a" / "master.bank")]
    assert cache.banks[bank_key(clone_master)].role is BankRole.CONTENT
    assert cache.last_build_marker_time == T1 + SECOND


def test_distinct_markers_are_all_registered(tmp_path):
    _write_bank(tmp_path / "master.strings.bank", "m1")
    _write_bank(tmp_path / "other.strings.bank", "m2")
    _write_bank(tmp_path / "master.bank", "b1")
    _write_bank(tmp_path / "other.bank", "b2")

    cache = _builder().rebuild(BankCache(), tmp_path).cache

    assert len(cache.marker_banks()) == 2
    assert {bank.name for bank in cache.master_banks()} == {"master", "other"}


def test_parameters_local_global_and_readonly(tmp_path):
    _write_bank(tmp_path / "master.strings.bank", "m1")
    _write_bank(
        tmp_path / "master.bank",
        "b1",
        events=[
            {
                "guid": "g1",
                "path": "event:/Weapons/Explosion",
                "parameters": [
                    {"name": "Intensity", "guid": "p1", "min": 0, "max": 1, "default": 0.5},
                    {"name": "Distance", "guid": "p2", "flags": ["readonly"]},
                    {"name": "Weather", "guid": "p3", "flags": ["global"]},
                ],
            }
        ],
        parameters=[{"name": "Weather", "guid": "p3", "min": 0, "max": 10}],
    )

    cache = _builder().rebuild(BankCache(), tmp_path).cache
    event = cache.events["event:/Weapons/Explosion"]

    assert [p.name for p in event.local_parameters] == ["Intensity"]
    assert event.local_parameters[0].studio_path == "parameter:/Explosion/Intensity"
    assert event.local_parameters[0].default == 0.5
    assert [p.name for p in event.global_parameters] == ["Weather"]
    assert set(cache.parameters) == {"p3"}
    weather = cache.find_parameter_by_name("Weather")
    assert weather.studio_path == "parameter:/Weather"
    assert weather.maximum == 10


def test_global_parameters_follow_their_banks(tmp_path):
    marker = _write_bank(tmp_path / "master.strings.bank", "m1")
    _write_bank(tmp_path / "master.bank", "b1", parameters=[{"name": "Weather", "guid": "p3"}])
    _write_bank(tmp_path / "sfx.bank", "b2", events=[_explosion()])
    builder = _builder()
    cache = builder.rebuild(BankCache(), tmp_path).cache

    _write_bank(tmp_path / "sfx.bank", "b2", events=[_explosion("g9")], mtime_ns=T1 + SECOND)
    _touch(marker, T1 + SECOND)
    cache = builder.rebuild(cache, tmp_path).cache
    assert "p3" in cache.parameters
    assert cache.events["event:/Explosion"].guid == "g9"

    (tmp_path / "master.bank").unlink()
    _touch(marker, T1 + 2 * SECOND)
    cache = builder.rebuild(cache, tmp_path).cache
    assert cache.parameters == {}


def test_force_reparses_even_when_marker_unchanged(tmp_path):
    _project(tmp_path)
    builder = _builder()
    cache = builder.rebuild(BankCache(), tmp_path).cache

    result = builder.rebuild(cache, tmp_path, force=True)

    assert result.status is BuildStatus.REBUILT
    assert result.banks_parsed == 1
    assert result.cache is not cache


def test_platform_sizes_and_content_platform(tmp_path):
    desktop = tmp_path / "Desktop"
    _write_bank(desktop / "master.strings.bank", "m1")
    master = _write_bank(desktop / "master.bank", "b1", events=[_explosion()])
    mobile = tmp_path / "Mobile" / "master.bank"
    mobile.parent.mkdir()
    mobile.write_text("x" * 7, encoding="utf-8")

    builder = _builder(platforms=("Desktop", "Mobile"), platform="Desktop")
    cache = builder.rebuild(BankCache(), tmp_path).cache

    record = cache.banks[bank_key(master)]
    assert record.platform_sizes == {"Desktop": master.stat().st_size, "Mobile": 7}
    assert bank_key(mobile) not in cache.banks


def test_sizes_without_platforms_use_blank_key(tmp_path):
    _, master = _project(tmp_path)

    cache = _builder().rebuild(BankCache(), tmp_path).cache

    assert cache.banks[bank_key(master)].platform_sizes == {"": master.stat().st_size}


def test_bank_names_and_studio_path(tmp_path):
    _write_bank(tmp_path / "master.strings.bank", "m1")
    nested = _write_bank(tmp_path / "Levels" / "Forest.bank", "b5", studio_path="bank:/Forest")

    cache = _builder().rebuild(BankCache(), tmp_path).cache

    record = cache.find_bank(nested)
    assert record.name == "Levels/Forest"
    assert record.studio_path == "bank:/Forest"
    assert record.load_outcome.ok


def test_exclude_patterns_skip_banks(tmp_path):
    _project(tmp_path)
    old = _write_bank(tmp_path / "Old" / "legacy.bank", "b7", events=[{"guid": "g7", "path": "event:/Old"}])

    cache = _builder(exclude_patterns=("Old/",)).rebuild(BankCache(), tmp_path).cache

    assert bank_key(old) not in cache.banks
    assert "event:/Old" not in cache.events


def test_timeout_raises_transient_error(tmp_path):
    _project(tmp_path)
    _write_bank(tmp_path / "a.bank", "ba")
    ticks = itertools.count(step=10)

    builder = _builder(build_timeout=5, clock=lambda: next(ticks))

    with pytest.raises(TransientBuildError) as excinfo:
        builder.rebuild(BankCache(), tmp_path)

    assert excinfo.value.path is None
    assert "5s" in str(excinfo.value)


def test_no_markers_reports_no_banks(tmp_path):
    _write_bank(tmp_path / "loose.bank", "b1")

    result = _builder().rebuild(BankCache(), tmp_path)

    assert result.status is BuildStatus.NO_BANKS
    assert not result.cache.is_valid()
    assert str(tmp_path) in result.message


def test_missing_source_raises_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        _builder().rebuild(BankCache(), None)
    with pytest.raises(ConfigurationError):
        _builder().rebuild(BankCache(), tmp_path / "missing")


def test_checkpoint_helpers(tmp_path):
    first = _write_bank(tmp_path / "a.strings.bank", "m1", mtime_ns=T1)
    second = _write_bank(tmp_path / "sub" / "b.strings.bank", "m2", mtime_ns=T1 + SECOND)
    content = _write_bank(tmp_path / "a.bank", "b1")

    assert newest_marker_time([first, second]) == T1 + SECOND
    assert newest_marker_time([]) == 0
    assert content_bank_keys([first, content]) == {bank_key(content)}

    cache = _builder().rebuild(BankCache(), tmp_path).cache
    assert matches_checkpoint(cache, tmp_path)

    content.unlink()
    assert not matches_checkpoint(cache, tmp_path)
