"""Tests for configuration module."""

from __future__ import annotations

import signal

import pytest

from bgproc.config import AppConfig, BotConfig, ProcessConfig, load_config, save_config
from bgproc.exceptions import ConfigError


class TestAppConfig:
    def test_defaults(self):
        config = AppConfig()
        assert config.bot.token == ""
        assert config.bot.allowed_users == []
        assert config.processes.detail_lines == 100
        assert config.processes.list_lines == 10
        assert config.processes.kill_signal == "SIGTERM"
        assert config.processes.guard_enabled is True

    def test_save_and_load(self, tmp_path, monkeypatch):
        import bgproc.config as cfg_module

        monkeypatch.setattr(cfg_module, "CONFIG_FILE", tmp_path / "config.toml")
        monkeypatch.setattr(cfg_module, "CONFIG_DIR", tmp_path)

        config = AppConfig(
            bot=BotConfig(token="test-token-123", allowed_users=[111, 222]),
            processes=ProcessConfig(kill_signal="SIGKILL", list_lines=5, shutdown_timeout=1.5),
        )
        save_config(config)
        assert (tmp_path / "config.toml").exists()

        loaded = load_config()
        assert loaded.bot.token == "test-token-123"
        assert loaded.bot.allowed_users == [111, 222]
        assert loaded.processes.kill_signal == "SIGKILL"
        assert loaded.processes.list_lines == 5
        assert loaded.processes.shutdown_timeout == 1.5
        assert loaded.processes.detail_lines == 100

    def test_env_overrides(self, tmp_path, monkeypatch):
        import bgproc.config as cfg_module

        monkeypatch.setattr(cfg_module, "CONFIG_FILE", tmp_path / "missing.toml")
        monkeypatch.setenv("BGPROC_BOT_TOKEN", "env-token")
        monkeypatch.setenv("BGPROC_ALLOWED_USERS", "1, 2,")
        monkeypatch.setenv("BGPROC_KILL_SIGNAL", "SIGINT")
        monkeypatch.setenv("BGPROC_SHUTDOWN_TIMEOUT", "0.5")

        loaded = load_config()
        assert loaded.bot.token == "env-token"
        assert loaded.bot.allowed_users == [1, 2]
        assert loaded.processes.kill_signal == "SIGINT"
        assert loaded.processes.shutdown_timeout == 0.5


class TestResolveSignal:
    def test_full_name(self):
        assert ProcessConfig(kill_signal="SIGKILL").resolve_signal() is signal.SIGKILL

    def test_short_lowercase_name(self):
        assert ProcessConfig(kill_signal="term").resolve_signal() is signal.SIGTERM

    def test_unknown(self):
        with pytest.raises(ConfigError):
            ProcessConfig(kill_signal="SIGNOPE").resolve_signal()
