from __future__ import annotations

import logging

from rich.logging import RichHandler
from typer.testing import CliRunner

import banksync
from banksync.cli import app
from banksync.output import configure_logging, format_status_icon


def test_get_version_matches_dunder():
    assert banksync.get_version() == banksync.__version__


def test_module_main_calls_run(monkeypatch):
    import banksync.__main__ as main_mod

    called = {"ok": False}

    def fake_run():
        called["ok"] = True

    monkeypatch.setattr(main_mod, "run", fake_run)
    main_mod.main()
    assert called["ok"] is True


def test_cli_version_flag_prints_version():
    runner = CliRunner()
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "banksync v" in result.stdout


def test_configure_logging_replaces_rich_handler():
    logger = configure_logging(verbose=True)
    configure_logging(verbose=False)

    handlers = [h for h in logger.handlers if isinstance(h, RichHandler)]
    try:
        assert len(handlers) == 1
        assert logger.level == logging.WARNING
    finally:
        for handler in handlers:
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)


def test_format_status_icon_falls_back_without_unicode(monkeypatch):
    monkeypatch.setattr("banksync.output.supports_unicode_output", lambda console=None: False)

    assert format_status_icon(True) == "[green]OK[/green]"
    assert format_status_icon(False) == "[red]X[/red]"
