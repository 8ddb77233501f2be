"""Lifecycle driver: feeds one OS process's output and exit into its record."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Awaitable, Callable

from bgproc.processes.launcher import Signaller, send_signal
from bgproc.processes.models import (
    FATAL_PREFIX,
    STDERR_PREFIX,
    ProcessRecord,
    ProcessSnapshot,
    ProcessStatus,
)
from bgproc.services.notifier import Notifier

logger = logging.getLogger(__name__)

COMPLETED_MARKER = "[Background Process Completed]"
FAILED_MARKER = "[Background Process Failed]"

FinishedHook = Callable[[ProcessSnapshot], Awaitable[None]]


def completion_message(record: ProcessRecord) -> str:
    return f"{COMPLETED_MARKER} {record.name} ({record.id})"


def failure_message(record: ProcessRecord, error: str) -> str:
    return f"{FAILED_MARKER} {record.name} ({record.id})\nError: {error}"


def describe_exit(code: int) -> str:
    if code < 0:
        try:
            name = signal.Signals(-code).name
        except ValueError:
            name = str(-code)
        return f"Process terminated by signal {name}"
    return f"Command failed with exit code {code}"


class LifecycleDriver:
    """Owns the asyncio activity of one tracked process.

    Output lines and the final status are written through the record's own
    locked methods, so termination requests arriving from callers serialize
    against them.
    """

    def __init__(
        self,
        record: ProcessRecord,
        notifier: Notifier,
        on_finished: FinishedHook | None = None,
        *,
        signaller: Signaller = send_signal,
        reap_timeout: float = 5.0,
    ) -> None:
        self.record = record
        self._notifier = notifier
        self._on_finished = on_finished
        self._signal = signaller
        self._reap_timeout = reap_timeout
        self._background: set[asyncio.Task[None]] = set()
        self.task: asyncio.Task[None] | None = None

    def start(self, proc: asyncio.subprocess.Process) -> asyncio.Task[None]:
        self.task = asyncio.create_task(self._run(proc), name=f"bgproc-{self.record.id}")
        return self.task

    def fail(self, error: str) -> None:
        """Record a failure that happened before or instead of a launch."""
        self._finish_failed(error)
        self._finished()

    async def _run(self, proc: asyncio.subprocess.Process) -> None:
        try:
            await asyncio.gather(
                self._pump(proc.stdout, ""),
                self._pump(proc.stderr, STDERR_PREFIX),
            )
            code = await proc.wait()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Lifecycle error for process %s", self.record.id)
            await self._reap(proc)
            self._finish_failed(str(e) or type(e).__name__)
        else:
            self.record.set_exit_code(code)
            if code == 0:
                self._finish_completed()
            else:
                self._finish_failed(describe_exit(code))
        self._finished()

    async def _pump(self, stream: asyncio.StreamReader | None, prefix: str) -> None:
        """Append one record line per output line.

        A line longer than the stream limit is flushed in pieces as it
        arrives instead of aborting the read.
        """
        if stream is None:
            return
        while True:
            try:
                chunk = await stream.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                self._append(e.partial, prefix)
                return
            except asyncio.LimitOverrunError as e:
                chunk = await stream.readexactly(e.consumed)
            self._append(chunk, prefix)

    def _append(self, chunk: bytes, prefix: str) -> None:
        line = chunk.decode("utf-8", errors="replace").rstrip()
        if line:
            self.record.append_line(f"{prefix}{line}")

    async def _reap(self, proc: asyncio.subprocess.Process) -> None:
        """Kill and collect a process whose output can no longer be read."""
        if proc.returncode is not None:
            return
        try:
            self._signal(proc.pid, signal.SIGKILL)
        except OSError as e:
            logger.warning("Failed to kill process %s (pid=%s): %s", self.record.id, proc.pid, e)
        try:
            code = await asyncio.wait_for(proc.wait(), self._reap_timeout)
        except Exception:
            logger.warning("Process %s (pid=%s) was not reaped", self.record.id, proc.pid, exc_info=True)
        else:
            self.record.set_exit_code(code)

    def _finish_completed(self) -> None:
        if self.record.transition(ProcessStatus.COMPLETED):
            logger.info("Process %s completed: %s", self.record.id, self.record.name)
            self._spawn(self._notify(completion_message(self.record)))

    def _finish_failed(self, error: str) -> None:
        if self.record.transition(ProcessStatus.FAILED, error=error, line=f"{FATAL_PREFIX}{error}"):
            logger.info("Process %s failed: %s", self.record.id, error)
            self._spawn(self._notify(failure_message(self.record, error)))

    def _finished(self) -> None:
        if self._on_finished is not None:
            self._spawn(self._record_history(self.record.snapshot()))

    async def _notify(self, text: str) -> None:
        try:
            await self._notifier.deliver(self.record.session_id, text)
        except Exception:
            logger.warning("Notification for process %s failed", self.record.id, exc_info=True)

    async def _record_history(self, snapshot: ProcessSnapshot) -> None:
        assert self._on_finished is not None
        try:
            await self._on_finished(snapshot)
        except Exception:
            logger.exception("Finished hook failed for process %s", snapshot.id)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for pending notifications and history writes."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
