"""Tests for process-level configuration dataclasses."""

from pathlib import Path

import pytest

from autovote.engine.config import ApiConfig, AppConfig, PathConfig, RunConfig


class TestApiConfig:
    def test_defaults(self, monkeypatch):
        for name in ("AUTOVOTE_API_URL", "AUTOVOTE_TOKEN", "AUTOVOTE_API_TIMEOUT"):
            monkeypatch.delenv(name, raising=False)
        config = ApiConfig.from_env()
        assert config.base_url == "http://localhost:8080/api"
        assert config.token == ""
        assert config.timeout_s == 30.0

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("AUTOVOTE_API_URL", "https://example.test/api/")
        monkeypatch.setenv("AUTOVOTE_TOKEN", "secret")
        monkeypatch.setenv("AUTOVOTE_API_TIMEOUT", "12.5")
        config = ApiConfig.from_env()
        assert config.base_url == "https://example.test/api"
        assert config.token == "secret"
        assert config.timeout_s == 12.5

    def test_bad_timeout(self, monkeypatch):
        monkeypatch.setenv("AUTOVOTE_API_TIMEOUT", "soon")
        with pytest.raises(ValueError, match="AUTOVOTE_API_TIMEOUT"):
            ApiConfig.from_env()


class TestPathConfig:
    def test_default_under_home(self, monkeypatch):
        monkeypatch.delenv("AUTOVOTE_DATA_DIR", raising=False)
        config = PathConfig.from_env()
        assert config.data_dir == Path.home() / ".autovote"
        assert config.settings_db_path == Path.home() / ".autovote" / "settings.db"

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("AUTOVOTE_DATA_DIR", str(tmp_path))
        assert PathConfig.from_env().settings_db_path == tmp_path / "settings.db"


class TestRunConfig:
    def test_defaults(self):
        config = RunConfig()
        assert config.dry_run is False
        assert (config.action_delay_min_s, config.action_delay_max_s) == (2.0, 5.0)
        assert config.config_debounce_s == 0.5
        assert config.config_poll_interval_s == 2.0
        assert config.recent_touch_window_s == 300

    @pytest.mark.parametrize("raw,expected", [("1", True), ("true", True), ("YES", True), ("0", False), ("", False)])
    def test_dry_run_flag(self, monkeypatch, raw, expected):
        monkeypatch.setenv("AUTOVOTE_DRY_RUN", raw)
        assert RunConfig.from_env().dry_run is expected

    def test_delay_bounds_checked(self):
        with pytest.raises(ValueError, match="action_delay_max_s"):
            RunConfig(action_delay_min_s=5, action_delay_max_s=1)
        with pytest.raises(ValueError, match="negative"):
            RunConfig(action_delay_min_s=-1)

    def test_zero_delay_allowed(self):
        config = RunConfig(action_delay_min_s=0, action_delay_max_s=0)
        assert config.action_delay_max_s == 0


class TestAppConfig:
    def test_composes_sub_configs(self, monkeypatch, tmp_path):
        monkeypatch.setenv("AUTOVOTE_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("AUTOVOTE_DRY_RUN", "on")
        config = AppConfig.from_env()
        assert config.paths.data_dir == tmp_path
        assert config.run.dry_run is True
        assert isinstance(config.api, ApiConfig)
