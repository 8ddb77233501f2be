"""Configuration management using TOML + environment variables."""

from __future__ import annotations

import os
import signal
import sys
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

import tomli_w

from bgproc.exceptions import ConfigError

CONFIG_DIR = Path.home() / ".bgproc"
CONFIG_FILE = CONFIG_DIR / "config.toml"
LOG_FILE = CONFIG_DIR / "bgproc.log"


@dataclass
class BotConfig:
    token: str = ""
    allowed_users: list[int] = field(default_factory=list)


@dataclass
class ProcessConfig:
    detail_lines: int = 100
    list_lines: int = 10
    kill_signal: str = "SIGTERM"
    stream_limit: int = 1024 * 1024
    shutdown_timeout: float = 5.0
    cwd: str = ""
    guard_enabled: bool = True

    def resolve_signal(self) -> signal.Signals:
        """Resolve the configured kill signal name."""
        name = self.kill_signal.upper()
        if not name.startswith("SIG"):
            name = f"SIG{name}"
        try:
            return signal.Signals[name]
        except KeyError:
            raise ConfigError(f"Unknown signal: {self.kill_signal}") from None


@dataclass
class StorageConfig:
    db_path: str = "~/.bgproc/history.db"


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    file: str = "~/.bgproc/bgproc.log"


@dataclass
class AppConfig:
    bot: BotConfig = field(default_factory=BotConfig)
    processes: ProcessConfig = field(default_factory=ProcessConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def ensure_config_dir() -> None:
    """Create config directory with secure permissions."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    os.chmod(CONFIG_DIR, 0o700)


def load_config() -> AppConfig:
    """Load configuration from TOML file with env var overrides."""
    config = AppConfig()

    if CONFIG_FILE.exists():
        with open(CONFIG_FILE, "rb") as f:
            data = tomllib.load(f)

        bot = data.get("bot", {})
        config.bot.token = bot.get("token", "")
        config.bot.allowed_users = bot.get("allowed_users", [])

        procs = data.get("processes", {})
        config.processes.detail_lines = procs.get("detail_lines", config.processes.detail_lines)
        config.processes.list_lines = procs.get("list_lines", config.processes.list_lines)
        config.processes.kill_signal = procs.get("kill_signal", config.processes.kill_signal)
        config.processes.stream_limit = procs.get("stream_limit", config.processes.stream_limit)
        config.processes.shutdown_timeout = procs.get("shutdown_timeout", config.processes.shutdown_timeout)
        config.processes.cwd = procs.get("cwd", config.processes.cwd)
        config.processes.guard_enabled = procs.get("guard_enabled", config.processes.guard_enabled)

        storage = data.get("storage", {})
        config.storage.db_path = storage.get("db_path", config.storage.db_path)

        logging_cfg = data.get("logging", {})
        config.logging.level = logging_cfg.get("level", config.logging.level)
        config.logging.file = logging_cfg.get("file", config.logging.file)

    # Environment variable overrides
    if env_token := os.environ.get("BGPROC_BOT_TOKEN"):
        config.bot.token = env_token
    if env_users := os.environ.get("BGPROC_ALLOWED_USERS"):
        config.bot.allowed_users = [int(u.strip()) for u in env_users.split(",") if u.strip()]
    if env_signal := os.environ.get("BGPROC_KILL_SIGNAL"):
        config.processes.kill_signal = env_signal
    if env_cwd := os.environ.get("BGPROC_CWD"):
        config.processes.cwd = env_cwd
    if env_shutdown := os.environ.get("BGPROC_SHUTDOWN_TIMEOUT"):
        config.processes.shutdown_timeout = float(env_shutdown)
    if env_db := os.environ.get("BGPROC_DB_PATH"):
        config.storage.db_path = env_db
    if env_log_level := os.environ.get("BGPROC_LOG_LEVEL"):
        config.logging.level = env_log_level

    return config


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML file."""
    ensure_config_dir()

    data = {
        "bot": {
            "token": config.bot.token,
            "allowed_users": config.bot.allowed_users,
        },
        "processes": {
            "detail_lines": config.processes.detail_lines,
            "list_lines": config.processes.list_lines,
            "kill_signal": config.processes.kill_signal,
            "stream_limit": config.processes.stream_limit,
            "shutdown_timeout": config.processes.shutdown_timeout,
            "cwd": config.processes.cwd,
            "guard_enabled": config.processes.guard_enabled,
        },
        "storage": {
            "db_path": config.storage.db_path,
        },
        "logging": {
            "level": config.logging.level,
            "file": config.logging.file,
        },
    }

    with open(CONFIG_FILE, "wb") as f:
        tomli_w.dump(data, f)

    os.chmod(CONFIG_FILE, 0o600)


_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or load the cached config."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Reset the cached config (for testing)."""
    global _config
    _config = None
