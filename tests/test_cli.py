"""Tests for CLI module."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from bgproc.cli import app

runner = CliRunner()


@pytest.fixture
def no_config(tmp_path, monkeypatch):
    import bgproc.cli as cli_module
    import bgproc.config as cfg_module

    monkeypatch.setattr(cfg_module, "CONFIG_FILE", tmp_path / "nonexistent.toml")
    monkeypatch.setattr(cli_module, "CONFIG_FILE", tmp_path / "nonexistent.toml")
    monkeypatch.setenv("BGPROC_CWD", str(tmp_path))
    return tmp_path


class TestCli:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "bgproc v" in result.output

    def test_start_without_config(self, no_config):
        result = runner.invoke(app, ["start"])
        assert result.exit_code == 1

    def test_config_without_setup(self, no_config):
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 1

    def test_run_success(self, no_config):
        result = runner.invoke(app, ["run", "echo hello", "--name", "greeting", "--tag", "demo"])
        assert result.exit_code == 0
        assert '"status": "completed"' in result.output
        assert '"name": "greeting"' in result.output
        assert '"hello"' in result.output

    def test_run_failure_exit_code(self, no_config):
        result = runner.invoke(app, ["run", "exit 4"])
        assert result.exit_code == 1
        assert '"status": "failed"' in result.output
        assert "exit code 4" in result.output

    def test_run_timeout_cancels(self, no_config):
        result = runner.invoke(app, ["run", "sleep 30", "--timeout", "0.5"])
        assert result.exit_code == 130
        assert '"status": "cancelled"' in result.output

    def test_run_timeout_when_term_is_ignored(self, no_config, monkeypatch):
        monkeypatch.setenv("BGPROC_SHUTDOWN_TIMEOUT", "0.5")
        result = runner.invoke(app, ["run", "trap '' TERM; sleep 3", "--timeout", "0.3"])
        assert result.exit_code == 130
        assert '"status": "cancelled"' in result.output

    def test_run_bad_signal(self, no_config, monkeypatch):
        monkeypatch.setenv("BGPROC_KILL_SIGNAL", "SIGNOPE")
        result = runner.invoke(app, ["run", "true"])
        assert result.exit_code == 2
        assert "Unknown signal" in result.output

    def test_config_set_and_show(self, tmp_path, monkeypatch):
        import bgproc.cli as cli_module
        import bgproc.config as cfg_module

        monkeypatch.setattr(cfg_module, "CONFIG_DIR", tmp_path)
        monkeypatch.setattr(cfg_module, "CONFIG_FILE", tmp_path / "config.toml")
        monkeypatch.setattr(cli_module, "CONFIG_FILE", tmp_path / "config.toml")
        (tmp_path / "config.toml").write_text('[bot]\ntoken = "abcdefghijk"\n')

        result = runner.invoke(app, ["config", "processes.list_lines", "25"])
        assert result.exit_code == 0
        assert cfg_module.load_config().processes.list_lines == 25

        result = runner.invoke(app, ["config", "processes.kill_signal", "SIGNOPE"])
        assert result.exit_code == 1

        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "abcdefgh..." in result.output
