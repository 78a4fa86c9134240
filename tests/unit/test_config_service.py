import pytest

from banksync import config as config_module
from banksync.config import CooldownPolicy
from banksync.services.config_service import apply_config_updates, get_config_snapshot


def _prepare_config(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module, "CONFIG_DIR", tmp_path / "config")
    monkeypatch.setattr(config_module, "CONFIG_FILE", tmp_path / "config" / "config.json")


def test_apply_updates_reports_changed_fields(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)

    result = apply_config_updates(
        source_dir="Build",
        cooldown="manual",
        stability_retries=5,
        platforms=["Desktop"],
        exclude_patterns=["Old/"],
    )

    assert result.changed
    assert result.source_set and result.cooldown_set and result.stability_retries_set
    assert result.platforms_set and result.exclude_patterns_set
    assert not result.poll_interval_set
    assert not result.build_timeout_set

    cfg = get_config_snapshot()
    assert cfg.source_dir == "Build"
    assert cfg.cooldown == CooldownPolicy.manual()
    assert cfg.stability_retries == 5
    assert cfg.platforms == ("Desktop",)
    assert cfg.exclude_patterns == ("Old/",)


def test_apply_updates_without_arguments_changes_nothing(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)

    result = apply_config_updates()

    assert not result.changed
    assert not (tmp_path / "config" / "config.json").exists()


def test_clear_source(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)
    apply_config_updates(source_dir="Build")

    result = apply_config_updates(clear_source=True, poll_interval=2.0, build_timeout=0)

    assert result.source_cleared
    cfg = get_config_snapshot()
    assert cfg.source_dir is None
    assert cfg.poll_interval == 2.0
    assert cfg.build_timeout == 0.0


def test_invalid_cooldown_propagates(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)

    with pytest.raises(ValueError):
        apply_config_updates(cooldown="eventually")
