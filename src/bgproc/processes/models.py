"""Process record, output buffer and filter types."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

STDERR_PREFIX = "[ERROR] "
FATAL_PREFIX = "[FATAL] "
KILLED_LINE = "[KILLED] Process forcibly terminated"
KILL_ERROR_PREFIX = "[KILL ERROR] "


class ProcessStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ProcessStatus.COMPLETED, ProcessStatus.FAILED, ProcessStatus.CANCELLED}
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OutputBuffer:
    """Append-only list of output lines.

    Storage is never truncated; only retrieval through tail() is capped.
    """

    def __init__(self) -> None:
        self._lines: list[str] = []

    def append(self, line: str) -> None:
        self._lines.append(line)

    def tail(self, limit: int | None = None) -> list[str]:
        if limit is None:
            return list(self._lines)
        if limit <= 0:
            return []
        return self._lines[-limit:]

    def __len__(self) -> int:
        return len(self._lines)


@dataclass
class ProcessRecord:
    """Tracked state of one launched command.

    Every mutable field is written under ``lock``. The lifecycle driver and
    termination requests only go through the methods below.
    """

    id: str
    command: str
    name: str = ""
    session_id: str = "unknown"
    tags: frozenset[str] = frozenset()
    global_: bool = False
    status: ProcessStatus = ProcessStatus.PENDING
    output: OutputBuffer = field(default_factory=OutputBuffer)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str = ""
    pid: int | None = None
    exit_code: int | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.command
        self.tags = frozenset(self.tags)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def append_line(self, line: str) -> None:
        with self.lock:
            self.output.append(line)

    def transition(
        self,
        status: ProcessStatus,
        *,
        error: str = "",
        line: str | None = None,
    ) -> bool:
        """Move to ``status`` if the record is not already terminal.

        This is the only compare-and-set on ``status``: whichever caller gets
        here first wins and later attempts return False without touching the
        record. Entering a terminal state stamps ``completed_at``; ``line`` is
        appended in the same critical section.
        """
        with self.lock:
            if self.status.is_terminal:
                return False
            self.status = status
            if status.is_terminal:
                self.completed_at = utcnow()
            if status is ProcessStatus.FAILED:
                self.error = error
            if line is not None:
                self.output.append(line)
            return True

    def mark_running(self, pid: int | None) -> bool:
        with self.lock:
            if self.status is not ProcessStatus.PENDING:
                return False
            self.pid = pid
            self.status = ProcessStatus.RUNNING
            if self.started_at is None:
                self.started_at = utcnow()
            return True

    def set_exit_code(self, code: int | None) -> None:
        with self.lock:
            self.exit_code = code

    def snapshot(self, max_lines: int | None = None) -> ProcessSnapshot:
        with self.lock:
            return ProcessSnapshot(
                id=self.id,
                name=self.name,
                command=self.command,
                status=self.status,
                session_id=self.session_id,
                tags=self.tags,
                global_=self.global_,
                started_at=self.started_at,
                completed_at=self.completed_at,
                error=self.error,
                pid=self.pid,
                exit_code=self.exit_code,
                output=tuple(self.output.tail(max_lines)),
                total_lines=len(self.output),
            )


@dataclass(frozen=True)
class ProcessSnapshot:
    """Read-only copy of a record handed out to callers."""

    id: str
    name: str
    command: str
    status: ProcessStatus
    session_id: str
    tags: frozenset[str]
    global_: bool
    started_at: datetime | None
    completed_at: datetime | None
    error: str
    pid: int | None
    exit_code: int | None
    output: tuple[str, ...]
    total_lines: int = 0

    @property
    def duration_ms(self) -> int | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "command": self.command,
            "started_at": self.started_at.isoformat() if self.started_at else "",
            "completed_at": self.completed_at.isoformat() if self.completed_at else "",
            "error": self.error or "",
            "session_id": self.session_id,
            "tags": sorted(self.tags),
            "pid": self.pid,
            "global": self.global_,
            "exit_code": self.exit_code,
            "output": list(self.output),
        }


@dataclass(frozen=True)
class ProcessFilter:
    """Conjunction of optional criteria.

    A missing field matches everything. ``tags`` matches a record sharing at
    least one tag with it; an empty tag collection matches everything too.
    """

    session_id: str | None = None
    status: ProcessStatus | str | None = None
    tags: Iterable[str] | None = None

    def __post_init__(self) -> None:
        if self.tags is not None:
            object.__setattr__(self, "tags", frozenset(self.tags))

    def matches(self, record: ProcessRecord | ProcessSnapshot) -> bool:
        if self.session_id and record.session_id != self.session_id:
            return False
        if self.status and record.status != self.status:
            return False
        if self.tags and not (self.tags & record.tags):  # type: ignore[operator]
            return False
        return True
