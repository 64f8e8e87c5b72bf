"""Tests for the autovote process launcher."""

import json
import logging
from logging.handlers import RotatingFileHandler
from unittest.mock import AsyncMock, patch

import pytest

from autovote import cli
from autovote.engine.config import AppConfig, PathConfig, RunConfig
from autovote.modules.client import DryRunActionExecutor


class TestArgumentParsing:
    def test_no_command_exits(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main([])
        assert exc.value.code == 1

    def test_unknown_command_rejected(self):
        with pytest.raises(SystemExit):
            cli.main(["explode"])

    def test_log_level_flags(self):
        parser_args = type("Args", (), {"verbose": True, "quiet": False})
        assert cli._log_level(parser_args) == "DEBUG"
        parser_args.verbose, parser_args.quiet = False, True
        assert cli._log_level(parser_args) == "WARNING"
        parser_args.quiet = False
        assert cli._log_level(parser_args) == "INFO"


class TestCommands:
    def test_once_prints_summary(self, capsys):
        summary = {"cycle": 1, "fetched": 0, "votes": 0, "boosts": 0, "error": None}
        with (
            patch.object(cli, "_single", AsyncMock(return_value=summary)) as single,
            patch.object(cli, "_setup_logging"),
        ):
            cli.main(["once", "--quiet"])
        single.assert_awaited_once_with(manual=False)
        assert json.loads(capsys.readouterr().out) == summary

    def test_manual_uses_manual_cycle(self, capsys):
        with (
            patch.object(cli, "_single", AsyncMock(return_value={"voted": []})) as single,
            patch.object(cli, "_setup_logging"),
        ):
            cli.main(["manual"])
        single.assert_awaited_once_with(manual=True)

    def test_run_starts_service(self):
        with patch.object(cli, "_run", AsyncMock()) as run, patch.object(cli, "_setup_logging") as setup:
            cli.main(["run", "--verbose"])
        run.assert_awaited_once()
        setup.assert_called_once_with("DEBUG")


class TestLogging:
    def test_rotating_file_handler_when_log_dir_set(self, monkeypatch, tmp_path):
        monkeypatch.setenv("AUTOVOTE_LOG_DIR", str(tmp_path / "logs"))
        root = logging.getLogger()
        before = list(root.handlers)
        try:
            cli._setup_logging("INFO")
            added = [h for h in root.handlers if h not in before]
            assert any(isinstance(h, RotatingFileHandler) for h in added)
            assert (tmp_path / "logs").is_dir()
        finally:
            for handler in [h for h in root.handlers if h not in before]:
                root.removeHandler(handler)
                handler.close()


class TestBuild:
    async def test_wires_components(self, tmp_path):
        config = AppConfig(paths=PathConfig(data_dir=tmp_path), run=RunConfig(dry_run=True, action_delay_min_s=0))
        store, resolver, client, scheduler = await cli._build(config)
        try:
            assert (tmp_path / "settings.db").exists()
            assert isinstance(scheduler.executor, DryRunActionExecutor)
            assert scheduler.provider is client
            assert scheduler.resolver is resolver
            assert resolver.get_effective("check_frequency") == 3
        finally:
            await client.close()
            await store.close()
