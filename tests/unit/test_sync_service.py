import json
import os
import shutil
from pathlib import Path

import pytest

import banksync.cache as cache_module
from banksync.config import Config, CooldownPolicy
from banksync.providers.json_bank import JsonBankReader
from banksync.services.cooldown import RefreshState
from banksync.services.stability import StabilityGate
from banksync.services.sync_service import BankSyncCoordinator
from banksync.text import Messages

T1 = 1_700_000_000_000_000_000
SECOND = 1_000_000_000


class FakeDetector:
    watching = False

    def __init__(self) -> None:
        self.changed = False
        self.root = None
        self.closed = False

    def configure(self, path):
        self.root = path

    def signal_changed(self) -> bool:
        changed = self.changed
        self.changed = False
        return changed

    def root_exists(self) -> bool:
        return self.root is not None and Path(self.root).is_dir()

    def close(self) -> None:
        self.closed = True


def _write_bank(path: Path, guid: str, *, events=(), mtime_ns=T1):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"guid": guid, "events": list(events)}), encoding="utf-8")
    os.utime(path, ns=(mtime_ns, mtime_ns))
    return path


def _project(root: Path, *, events=None, mtime_ns=T1):
    if events is None:
        events = [{"guid": "g1", "path": "event:/Explosion"}]
    marker = _write_bank(root / "master.strings.bank", "m1", mtime_ns=mtime_ns)
    _write_bank(root / "master.bank", "b1", events=events, mtime_ns=mtime_ns)
    return marker


def _coordinator(source, *, cooldown=None, retries=3, poll=5.0, probe=None, persist=False):
    config = Config(
        source_dir=str(source) if source is not None else None,
        cooldown=cooldown or CooldownPolicy.after(0),
        poll_interval=poll,
        stability_retries=retries,
    )
    gate = StabilityGate(retries, probe=probe or (lambda path: True))
    coordinator = BankSyncCoordinator(
        config,
        reader=JsonBankReader(),
        detector=FakeDetector(),
        gate=gate,
        clock=lambda: 0.0,
        persist=persist,
    )
    commits = []
    coordinator.add_listener(commits.append)
    return coordinator, commits


def test_cold_start_builds_on_first_tick(tmp_path):
    _project(tmp_path)
    coordinator, commits = _coordinator(tmp_path)

    state = coordinator.tick(0.0)

    assert state is RefreshState.IDLE
    assert len(commits) == 1
    assert coordinator.cache.is_valid()
    assert "event:/Explosion" in coordinator.cache.events
    assert coordinator.detector.root == tmp_path


def test_stability_retry_commits_once_after_unstable_cycles(tmp_path):
    _project(tmp_path)
    results = iter([False, False, True])
    coordinator, commits = _coordinator(tmp_path, probe=lambda path: next(results))

    coordinator.tick(0.0)
    assert commits == []
    assert coordinator.cooldown.state is RefreshState.READY

    coordinator.tick(2.0)
    assert commits == []

    coordinator.tick(5.0)
    assert commits == []

    coordinator.tick(10.0)
    assert len(commits) == 1
    assert coordinator.last_error is None
    assert coordinator.cooldown.state is RefreshState.IDLE


def test_exhausted_stability_budget_is_reported(tmp_path):
    _project(tmp_path)
    coordinator, commits = _coordinator(tmp_path, retries=2, probe=lambda path: False)

    coordinator.tick(0.0)
    assert coordinator.last_error is None

    coordinator.tick(5.0)

    assert commits == []
    assert "master.strings.bank" in coordinator.last_error
    assert "locked for 2 attempts" in coordinator.last_error
    assert coordinator.cache.is_valid() is False
    assert coordinator.gate.exhausted


def test_debounce_triggers_one_refresh_after_quiet_period(tmp_path):
    marker = _project(tmp_path)
    coordinator, commits = _coordinator(tmp_path, cooldown=CooldownPolicy.after(2))
    coordinator.tick(0.0)
    assert len(commits) == 1

    _project(
        tmp_path,
        events=[{"guid": "g1", "path": "event:/Explosion"}, {"guid": "g2", "path": "event:/Step"}],
        mtime_ns=T1 + SECOND,
    )
    coordinator.detector.changed = True
    coordinator.tick(1.0)
    assert coordinator.cooldown.state is RefreshState.COUNTING_DOWN

    coordinator.detector.changed = True
    coordinator.tick(2.0)
    coordinator.tick(3.9)
    assert len(commits) == 1
    assert coordinator.status(3.9).time_remaining == pytest.approx(0.1)

    coordinator.tick(4.0)
    assert len(commits) == 2
    assert "event:/Step" in coordinator.cache.events
    assert coordinator.cache.last_build_marker_time == marker.stat().st_mtime_ns

    coordinator.tick(5.0)
    coordinator.tick(10.0)
    assert len(commits) == 2


def test_backstop_poll_notices_missed_changes(tmp_path):
    _project(tmp_path)
    coordinator, commits = _coordinator(tmp_path)
    coordinator.tick(0.0)

    _project(tmp_path, mtime_ns=T1 + SECOND)
    coordinator.tick(1.0)
    assert len(commits) == 1

    coordinator.tick(5.0)
    assert len(commits) == 2


def test_deleted_bank_drops_its_events_after_cooldown(tmp_path):
    _project(tmp_path)
    coordinator, commits = _coordinator(tmp_path, cooldown=CooldownPolicy.after(1))
    coordinator.tick(0.0)
    assert coordinator.cache.find_event_by_path("event:/Explosion") is not None

    (tmp_path / "master.bank").unlink()
    coordinator.detector.changed = True
    coordinator.tick(1.0)
    assert coordinator.cooldown.state is RefreshState.COUNTING_DOWN

    coordinator.tick(2.5)

    assert len(commits) == 2
    assert coordinator.cache.find_event_by_path("event:/Explosion") is None
    assert coordinator.cache.master_banks() == ()
    assert coordinator.cooldown.state is RefreshState.IDLE


def test_backstop_poll_notices_deleted_bank(tmp_path):
    _project(tmp_path)
    coordinator, commits = _coordinator(tmp_path)
    coordinator.tick(0.0)

    (tmp_path / "master.bank").unlink()
    coordinator.tick(5.0)

    assert len(commits) == 2
    assert coordinator.cache.events == {}


def test_parse_error_keeps_last_good_cache(tmp_path):
    marker = _project(tmp_path)
    coordinator, commits = _coordinator(tmp_path)
    coordinator.tick(0.0)
    good = coordinator.cache

    broken = tmp_path / "master.bank"
    broken.write_text("garbage", encoding="utf-8")
    os.utime(broken, ns=(T1 + SECOND, T1 + SECOND))
    os.utime(marker, ns=(T1 + SECOND, T1 + SECOND))
    coordinator.detector.changed = True
    coordinator.tick(1.0)

    assert coordinator.cache is good
    assert len(commits) == 1
    assert "master.bank" in coordinator.last_error
    assert coordinator.cooldown.state is RefreshState.IDLE


def test_unconfigured_source_resets_cache(tmp_path):
    coordinator, commits = _coordinator(None)

    coordinator.tick(0.0)

    assert coordinator.last_error == Messages.ERROR_SOURCE_MISSING
    assert not coordinator.cache.is_valid()
    assert commits == []


def test_removed_source_resets_cache(tmp_path):
    source = tmp_path / "Build"
    _project(source)
    coordinator, commits = _coordinator(source)
    coordinator.tick(0.0)
    assert coordinator.cache.is_valid()

    shutil.rmtree(source)
    coordinator.tick(5.0)

    assert not coordinator.cache.is_valid()
    assert coordinator.cache.banks == {}
    assert len(commits) == 2
    assert "does not exist" in coordinator.last_error


def test_empty_source_reports_no_banks(tmp_path):
    coordinator, commits = _coordinator(tmp_path)

    coordinator.tick(0.0)

    assert commits == []
    assert "doesn't contain any banks" in coordinator.last_error


def test_prompt_policy_waits_for_confirmation(tmp_path):
    _project(tmp_path)
    coordinator, commits = _coordinator(tmp_path, cooldown=CooldownPolicy.prompt())
    coordinator.tick(0.0)

    _project(tmp_path, mtime_ns=T1 + SECOND)
    coordinator.detector.changed = True
    for now in (1.0, 30.0, 60.0):
        coordinator.tick(now)
    assert len(commits) == 1
    assert coordinator.cooldown.state is RefreshState.CHANGE_OBSERVED

    assert coordinator.confirm() is True
    coordinator.tick(61.0)
    assert len(commits) == 2


def test_prompt_change_settles_when_refreshed_by_another_process(tmp_path, monkeypatch):
    monkeypatch.setattr(cache_module, "CACHE_DIR", tmp_path / "data")
    source = tmp_path / "Build"
    _project(source)
    coordinator, commits = _coordinator(source, cooldown=CooldownPolicy.prompt(), persist=True)
    coordinator.tick(0.0)

    _project(
        source,
        events=[{"guid": "g1", "path": "event:/Explosion"}, {"guid": "g2", "path": "event:/Step"}],
        mtime_ns=T1 + SECOND,
    )
    coordinator.detector.changed = True
    coordinator.tick(1.0)
    coordinator.tick(5.0)
    assert coordinator.cooldown.state is RefreshState.CHANGE_OBSERVED
    assert len(commits) == 1

    other, _ = _coordinator(source, persist=True)
    other.refresh_now(6.0)
    coordinator.tick(10.0)

    assert coordinator.cooldown.state is RefreshState.IDLE
    assert "event:/Step" in coordinator.cache.events
    assert len(commits) == 2


def test_manual_policy_only_refreshes_on_request(tmp_path):
    _project(tmp_path)
    coordinator, commits = _coordinator(tmp_path, cooldown=CooldownPolicy.manual())
    coordinator.tick(0.0)

    _project(tmp_path, mtime_ns=T1 + SECOND)
    coordinator.detector.changed = True
    coordinator.tick(1.0)
    coordinator.tick(100.0)
    assert coordinator.cooldown.state is RefreshState.SUPPRESSED
    assert len(commits) == 1

    result = coordinator.refresh_now(101.0)

    assert result is not None
    assert len(commits) == 2
    assert coordinator.cooldown.state is RefreshState.IDLE


def test_cancel_drops_pending_change(tmp_path):
    _project(tmp_path)
    coordinator, commits = _coordinator(tmp_path, cooldown=CooldownPolicy.after(10))
    coordinator.tick(0.0)

    coordinator.detector.changed = True
    coordinator.tick(1.0)
    coordinator.cancel()
    coordinator.tick(20.0)

    assert coordinator.cooldown.state is RefreshState.IDLE
    assert len(commits) == 1


def test_snapshot_is_independent_copy(tmp_path):
    _project(tmp_path)
    coordinator, _ = _coordinator(tmp_path)
    coordinator.tick(0.0)

    snapshot = coordinator.snapshot()
    snapshot.events.clear()

    assert "event:/Explosion" in coordinator.cache.events


def test_committed_cache_is_persisted(tmp_path, monkeypatch):
    monkeypatch.setattr(cache_module, "CACHE_DIR", tmp_path / "data")
    source = tmp_path / "Build"
    _project(source)
    coordinator, _ = _coordinator(source, persist=True)
    coordinator.tick(0.0)

    reloaded, commits = _coordinator(source, persist=True)

    assert reloaded.cache.is_valid()
    assert set(reloaded.cache.events) == {"event:/Explosion"}
    reloaded.tick(0.0)
    assert commits == []


def test_update_config_switches_policy_and_source(tmp_path):
    first = tmp_path / "one"
    second = tmp_path / "two"
    _project(first)
    _project(second, events=[{"guid": "g5", "path": "event:/Other"}])
    coordinator, commits = _coordinator(first)
    coordinator.tick(0.0)

    coordinator.update_config(
        Config(source_dir=str(second), cooldown=CooldownPolicy.after(0), stability_retries=1)
    )
    coordinator.tick(1.0)

    assert coordinator.source_dir == second
    assert set(coordinator.cache.events) == {"event:/Other"}
    assert coordinator.gate.retry_budget == 1
    assert len(commits) == 2


def test_status_reports_counts(tmp_path):
    _project(tmp_path)
    coordinator, _ = _coordinator(tmp_path)
    coordinator.tick(0.0)

    status = coordinator.status(0.0)

    assert status.cache_valid is True
    assert status.bank_count == 2
    assert status.event_count == 1
    assert status.state is RefreshState.IDLE
    assert status.time_remaining is None


def test_run_ticks_until_stopped(tmp_path):
    _project(tmp_path)
    coordinator, commits = _coordinator(tmp_path)
    seen = []

    class _Stop:
        def __init__(self):
            self.calls = 0

        def is_set(self):
            return self.calls >= 2

        def wait(self, timeout):
            self.calls += 1

    coordinator.run(stop_event=_Stop(), tick_interval=0.0, on_tick=seen.append)

    assert len(seen) == 2
    assert len(commits) == 1
    assert coordinator.detector.closed is True
