"""Process registry: the single owner of every tracked process record."""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from typing import Iterable

from bgproc.config import ProcessConfig
from bgproc.exceptions import LaunchError, ProcessNotFoundError
from bgproc.processes import launcher as os_launcher
from bgproc.processes.driver import FinishedHook, LifecycleDriver
from bgproc.processes.launcher import Launcher, Signaller
from bgproc.processes.models import (
    KILL_ERROR_PREFIX,
    KILLED_LINE,
    ProcessFilter,
    ProcessRecord,
    ProcessSnapshot,
    ProcessStatus,
    utcnow,
)
from bgproc.services.guard import CommandGuard
from bgproc.services.notifier import LogNotifier, Notifier

logger = logging.getLogger(__name__)


class ProcessRegistry:
    """Create, query and terminate background processes.

    One registry is built per running application and torn down with
    :meth:`shutdown`. Structural changes to the id map are serialized by the
    registry lock; field changes on a record go through the record's lock.
    """

    def __init__(
        self,
        config: ProcessConfig | None = None,
        notifier: Notifier | None = None,
        *,
        launcher: Launcher = os_launcher.launch,
        signaller: Signaller = os_launcher.send_signal,
        guard: CommandGuard | None = None,
        on_finished: FinishedHook | None = None,
    ) -> None:
        self.config = config or ProcessConfig()
        self._notifier = notifier or LogNotifier()
        self._launch = launcher
        self._signal = signaller
        self._guard = guard if guard is not None else (CommandGuard() if self.config.guard_enabled else None)
        self._on_finished = on_finished
        self._kill_signal = self.config.resolve_signal()
        self._records: dict[str, ProcessRecord] = {}
        self._drivers: dict[str, LifecycleDriver] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, process_id: object) -> bool:
        with self._lock:
            return process_id in self._records

    # --- Creation ---

    async def create(
        self,
        command: str,
        name: str | None = None,
        tags: Iterable[str] | None = None,
        session_id: str = "unknown",
        global_: bool = False,
    ) -> str:
        """Launch ``command`` in the background and return its process id.

        Never waits for the command to finish. A launch failure is stored as
        a failed record instead of being raised, so the id is always valid.
        """
        record = self._register(
            command=command,
            name=name or command,
            tags=frozenset(tags or ()),
            session_id=session_id or "unknown",
            global_=global_,
        )
        driver = LifecycleDriver(
            record,
            self._notifier,
            self._on_finished,
            signaller=self._signal,
            reap_timeout=self.config.shutdown_timeout,
        )
        with self._lock:
            self._drivers[record.id] = driver

        try:
            if not command.strip():
                raise LaunchError("Empty command")
            if self._guard is not None:
                blocked, reason = self._guard.check(command)
                if blocked:
                    raise LaunchError(f"Blocked: {reason}")
            proc = await self._launch(
                command,
                cwd=self.config.cwd or None,
                limit=self.config.stream_limit,
            )
        except (OSError, LaunchError) as e:
            logger.warning("Failed to launch process %s: %s", record.id, e)
            driver.fail(str(e))
            return record.id

        record.mark_running(proc.pid)
        driver.start(proc)
        logger.info("Started process %s (pid=%s): %s", record.id, proc.pid, command)
        return record.id

    def _register(self, **fields) -> ProcessRecord:
        with self._lock:
            process_id = uuid.uuid4().hex
            while process_id in self._records:
                process_id = uuid.uuid4().hex
            record = ProcessRecord(id=process_id, started_at=utcnow(), **fields)
            self._records[process_id] = record
        return record

    # --- Queries ---

    def _lookup(self, process_id: str) -> ProcessRecord:
        with self._lock:
            record = self._records.get(process_id)
        if record is None:
            raise ProcessNotFoundError(process_id)
        return record

    def get(self, process_id: str) -> ProcessSnapshot:
        """Snapshot of one process with the detail output window."""
        return self._lookup(process_id).snapshot(self.config.detail_lines)

    def list(self, criteria: ProcessFilter | None = None) -> list[ProcessSnapshot]:
        """Snapshots of matching processes in creation order."""
        return [
            record.snapshot(self.config.list_lines)
            for record in self._select(criteria or ProcessFilter())
        ]

    def _select(self, criteria: ProcessFilter) -> list[ProcessRecord]:
        with self._lock:
            records = list(self._records.values())
        return [r for r in records if criteria.matches(r)]

    async def wait(self, process_id: str, timeout: float | None = None) -> ProcessSnapshot:
        """Wait for a process to finish and return its final snapshot."""
        record = self._lookup(process_id)
        with self._lock:
            driver = self._drivers.get(process_id)
        if driver is not None:
            if driver.task is not None:
                await asyncio.wait_for(asyncio.shield(driver.task), timeout)
            await driver.drain()
        return record.snapshot(self.config.detail_lines)

    # --- Termination ---

    def terminate(
        self,
        process_id: str | None = None,
        criteria: ProcessFilter | None = None,
    ) -> list[str]:
        """Signal matching processes and return the ids actually cancelled.

        ``process_id`` takes priority over ``criteria``. Processes already in
        a terminal state are skipped. A failed signal is written to the
        process output and the id is left out of the result.
        """
        if process_id:
            with self._lock:
                record = self._records.get(process_id)
            targets = [record] if record is not None else []
        else:
            targets = self._select(criteria or ProcessFilter())

        return [r.id for r in targets if self._terminate_one(r)]

    def _terminate_one(self, record: ProcessRecord) -> bool:
        if record.is_terminal:
            return False
        try:
            if record.pid is None:
                raise ProcessLookupError("No pid recorded for process")
            self._signal(record.pid, self._kill_signal)
        except OSError as e:
            logger.warning("Failed to signal process %s (pid=%s): %s", record.id, record.pid, e)
            record.append_line(f"{KILL_ERROR_PREFIX}{e}")
            return False

        if record.transition(ProcessStatus.CANCELLED, line=KILLED_LINE):
            logger.info("Cancelled process %s (pid=%s)", record.id, record.pid)
            return True
        record.append_line(f"{KILL_ERROR_PREFIX}Process already finished ({record.status.value})")
        return False

    # --- Cleanup ---

    def _evict(self, process_ids: Iterable[str]) -> list[str]:
        evicted = []
        with self._lock:
            for process_id in process_ids:
                if self._records.pop(process_id, None) is not None:
                    self._drivers.pop(process_id, None)
                    evicted.append(process_id)
        return evicted

    async def _settle(self, process_ids: Iterable[str], cancel: bool = False) -> None:
        with self._lock:
            drivers = [self._drivers[p] for p in process_ids if p in self._drivers]
        tasks = [d.task for d in drivers if d.task is not None and not d.task.done()]
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self.config.shutdown_timeout)
            if pending:
                logger.warning("%d process(es) did not exit in time", len(pending))
                if cancel:
                    for task in pending:
                        task.cancel()
                    await asyncio.gather(*pending, return_exceptions=True)
        for driver in drivers:
            await driver.drain()

    async def remove(self, process_id: str) -> bool:
        """Stop tracking a process, signalling it first if still active."""
        record = self._lookup(process_id)
        self._terminate_one(record)
        await self._settle([process_id])
        return bool(self._evict([process_id]))

    async def end_session(self, session_id: str) -> list[str]:
        """Terminate and evict the non-global processes of a session."""
        records = [
            r for r in self._select(ProcessFilter(session_id=session_id)) if not r.global_
        ]
        for record in records:
            self._terminate_one(record)
        ids = [r.id for r in records]
        await self._settle(ids)
        evicted = self._evict(ids)
        logger.info("Session %s ended, evicted %d process(es)", session_id, len(evicted))
        return evicted

    async def shutdown(self) -> None:
        """Terminate every tracked process and empty the registry."""
        with self._lock:
            ids = list(self._records)
        cancelled = self.terminate()
        await self._settle(ids, cancel=True)
        self._evict(ids)
        logger.info("Registry shut down (%d cancelled)", len(cancelled))
