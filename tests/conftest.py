"""Shared test fixtures."""

from __future__ import annotations

import asyncio

import pytest

from bgproc.config import AppConfig, BotConfig, LoggingConfig, ProcessConfig, StorageConfig
from bgproc.processes.registry import ProcessRegistry


class RecordingNotifier:
    """Collects (session_id, text) pairs."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    async def deliver(self, session_id: str, text: str) -> None:
        self.messages.append((session_id, text))


class BrokenNotifier:
    async def deliver(self, session_id: str, text: str) -> None:
        raise RuntimeError("transport down")


class FakeProcess:
    """Stands in for asyncio.subprocess.Process with canned output."""

    def __init__(
        self,
        stdout: bytes = b"",
        stderr: bytes = b"",
        returncode: int = 0,
        pid: int = 4242,
    ) -> None:
        self.pid = pid
        self.returncode = returncode
        self.stdout = asyncio.StreamReader(limit=1024 * 1024)
        self.stdout.feed_data(stdout)
        self.stdout.feed_eof()
        self.stderr = asyncio.StreamReader(limit=1024 * 1024)
        self.stderr.feed_data(stderr)
        self.stderr.feed_eof()

    async def wait(self) -> int:
        return self.returncode


@pytest.fixture
def app_config(tmp_path):
    """Create a test configuration."""
    return AppConfig(
        bot=BotConfig(token="test-token", allowed_users=[12345]),
        processes=ProcessConfig(shutdown_timeout=2.0, cwd=str(tmp_path)),
        storage=StorageConfig(db_path=str(tmp_path / "test.db")),
        logging=LoggingConfig(level="DEBUG", file=str(tmp_path / "test.log")),
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def registry(app_config, notifier):
    return ProcessRegistry(app_config.processes, notifier)


class HangingProcess(FakeProcess):
    """Output is already closed but the exit only arrives once released."""

    def __init__(self, release: asyncio.Event, **kwargs) -> None:
        kwargs.setdefault("returncode", -15)
        super().__init__(**kwargs)
        self.release = release

    async def wait(self) -> int:
        await self.release.wait()
        return self.returncode
