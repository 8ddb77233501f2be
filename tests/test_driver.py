"""Tests for the lifecycle driver."""

from __future__ import annotations

import asyncio
import signal
from unittest.mock import AsyncMock, MagicMock

import pytest

from bgproc.processes.driver import (
    COMPLETED_MARKER,
    FAILED_MARKER,
    LifecycleDriver,
    describe_exit,
)
from bgproc.processes.models import KILLED_LINE, ProcessRecord, ProcessStatus

from conftest import BrokenNotifier, FakeProcess, HangingProcess, RecordingNotifier


class StuckProcess(HangingProcess):
    """Still running, with a stdout pipe that errors on read."""

    def __init__(self, release: asyncio.Event) -> None:
        super().__init__(release, returncode=-9)
        self._exit_code = self.returncode
        self.returncode = None
        self.stdout = asyncio.StreamReader()
        self.stdout.set_exception(RuntimeError("pipe broke"))

    async def wait(self) -> int:
        await self.release.wait()
        self.returncode = self._exit_code
        return self.returncode


def running_record(**kwargs) -> ProcessRecord:
    kwargs.setdefault("id", "abc123")
    kwargs.setdefault("command", "make build")
    kwargs.setdefault("session_id", "S1")
    record = ProcessRecord(**kwargs)
    record.mark_running(4242)
    return record


async def drive(record, proc, notifier, on_finished=None) -> LifecycleDriver:
    driver = LifecycleDriver(record, notifier, on_finished)
    await driver.start(proc)
    await driver.drain()
    return driver


class TestOutputCapture:
    @pytest.mark.asyncio
    async def test_stdout_and_stderr_lines(self):
        record = running_record()
        proc = FakeProcess(stdout=b"first\nsecond  \n", stderr=b"warning: x\n")
        await drive(record, proc, RecordingNotifier())

        lines = record.output.tail()
        assert lines.index("first") < lines.index("second")
        assert "[ERROR] warning: x" in lines

    @pytest.mark.asyncio
    async def test_blank_chunks_skipped(self):
        record = running_record()
        await drive(record, FakeProcess(stdout=b"\n   \nvalue\n\t\n"), RecordingNotifier())
        assert record.output.tail() == ["value"]

    @pytest.mark.asyncio
    async def test_invalid_utf8_replaced(self):
        record = running_record()
        await drive(record, FakeProcess(stdout=b"caf\xff\n"), RecordingNotifier())
        assert record.output.tail() == ["caf\ufffd"]

    @pytest.mark.asyncio
    async def test_long_line_kept_whole(self):
        record = running_record()
        long_line = "x" * 100_000
        await drive(record, FakeProcess(stdout=long_line.encode() + b"\n"), RecordingNotifier())
        assert record.output.tail() == [long_line]


class TestCompletion:
    @pytest.mark.asyncio
    async def test_success(self):
        record = running_record(name="Build")
        notifier = RecordingNotifier()
        await drive(record, FakeProcess(stdout=b"ok\n"), notifier)

        assert record.status is ProcessStatus.COMPLETED
        assert record.completed_at is not None
        assert record.error == ""
        assert record.exit_code == 0
        assert notifier.messages == [("S1", f"{COMPLETED_MARKER} Build (abc123)")]

    @pytest.mark.asyncio
    async def test_notification_uses_command_when_unnamed(self):
        record = running_record(command="ls -la")
        notifier = RecordingNotifier()
        await drive(record, FakeProcess(), notifier)
        assert "ls -la" in notifier.messages[0][1]

    @pytest.mark.asyncio
    async def test_nonzero_exit(self):
        record = running_record(name="Build")
        notifier = RecordingNotifier()
        await drive(record, FakeProcess(stderr=b"compile error\n", returncode=2), notifier)

        assert record.status is ProcessStatus.FAILED
        assert record.error == "Command failed with exit code 2"
        assert record.completed_at is not None
        assert record.output.tail()[-1] == "[FATAL] Command failed with exit code 2"

        session_id, text = notifier.messages[0]
        assert session_id == "S1"
        assert FAILED_MARKER in text
        assert "Build" in text
        assert "abc123" in text
        assert "Error: Command failed with exit code 2" in text

    @pytest.mark.asyncio
    async def test_wait_error_is_failure(self):
        record = running_record()
        proc = FakeProcess()
        proc.wait = AsyncMock(side_effect=RuntimeError("lost child"))
        notifier = RecordingNotifier()
        await drive(record, proc, notifier)

        assert record.status is ProcessStatus.FAILED
        assert record.error == "lost child"
        assert "[FATAL] lost child" in record.output.tail()
        assert FAILED_MARKER in notifier.messages[0][1]

    @pytest.mark.asyncio
    async def test_read_error_kills_and_reaps_process(self):
        release = asyncio.Event()
        proc = StuckProcess(release)
        signaller = MagicMock(side_effect=lambda pid, sig: release.set())
        record = running_record()
        notifier = RecordingNotifier()

        driver = LifecycleDriver(record, notifier, signaller=signaller, reap_timeout=5)
        await driver.start(proc)
        await driver.drain()

        signaller.assert_called_once_with(4242, signal.SIGKILL)
        assert record.status is ProcessStatus.FAILED
        assert record.error == "pipe broke"
        assert record.exit_code == -9
        assert FAILED_MARKER in notifier.messages[0][1]

    @pytest.mark.asyncio
    async def test_cancelled_record_stays_cancelled(self):
        record = running_record()
        record.transition(ProcessStatus.CANCELLED, line=KILLED_LINE)
        notifier = RecordingNotifier()
        await drive(record, FakeProcess(returncode=-15), notifier)

        assert record.status is ProcessStatus.CANCELLED
        assert record.error == ""
        assert record.exit_code == -15
        assert notifier.messages == []

    @pytest.mark.asyncio
    async def test_broken_notifier_does_not_change_state(self):
        record = running_record()
        await drive(record, FakeProcess(stdout=b"done\n"), BrokenNotifier())
        assert record.status is ProcessStatus.COMPLETED
        assert record.error == ""

    @pytest.mark.asyncio
    async def test_finished_hook_gets_final_snapshot(self):
        record = running_record()
        hook = AsyncMock()
        await drive(record, FakeProcess(returncode=1), RecordingNotifier(), on_finished=hook)

        hook.assert_awaited_once()
        snapshot = hook.await_args.args[0]
        assert snapshot.status is ProcessStatus.FAILED
        assert snapshot.exit_code == 1

    @pytest.mark.asyncio
    async def test_failing_hook_is_swallowed(self):
        record = running_record()
        hook = AsyncMock(side_effect=RuntimeError("db locked"))
        await drive(record, FakeProcess(), RecordingNotifier(), on_finished=hook)
        assert record.status is ProcessStatus.COMPLETED


class TestLaunchFailure:
    @pytest.mark.asyncio
    async def test_fail_without_process(self):
        record = ProcessRecord(id="p9", command="nope", session_id="S2")
        notifier = RecordingNotifier()
        driver = LifecycleDriver(record, notifier)
        driver.fail("No such file or directory")
        await driver.drain()

        assert record.status is ProcessStatus.FAILED
        assert record.output.tail() == ["[FATAL] No such file or directory"]
        assert notifier.messages[0][0] == "S2"
        assert "No such file or directory" in notifier.messages[0][1]


class TestDescribeExit:
    def test_exit_code(self):
        assert describe_exit(3) == "Command failed with exit code 3"

    def test_signal(self):
        assert describe_exit(-9) == "Process terminated by signal SIGKILL"
