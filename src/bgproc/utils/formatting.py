"""Message formatting and splitting utilities for Telegram."""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING, Sequence

from bgproc.processes.models import ProcessSnapshot, ProcessStatus

if TYPE_CHECKING:
    from telegram import Update

logger = logging.getLogger(__name__)

MAX_TELEGRAM_LENGTH = 4096
FILE_THRESHOLD = 50000

STATUS_ICONS: dict[ProcessStatus, str] = {
    ProcessStatus.PENDING: "..",
    ProcessStatus.RUNNING: ">>",
    ProcessStatus.COMPLETED: "OK",
    ProcessStatus.FAILED: "ERR",
    ProcessStatus.CANCELLED: "KILL",
}


def split_message(text: str, max_len: int = MAX_TELEGRAM_LENGTH) -> list[str]:
    """Split a long message into chunks respecting Telegram's character limit."""
    chunks: list[str] = []
    while text:
        if len(text) <= max_len:
            chunks.append(text)
            break
        split_at = text.rfind("\n", 0, max_len)
        if split_at == -1:
            split_at = max_len
        chunks.append(text[:split_at])
        text = text[split_at:].lstrip("\n")
    return chunks


def format_duration(ms: int) -> str:
    """Format milliseconds to human-readable duration."""
    if ms < 1000:
        return f"{ms}ms"
    elif ms < 60000:
        return f"{ms / 1000:.1f}s"
    else:
        minutes = ms // 60000
        seconds = (ms % 60000) // 1000
        return f"{minutes}m {seconds}s"


def short_id(process_id: str) -> str:
    return process_id[:8]


def _status_label(snapshot: ProcessSnapshot) -> str:
    icon = STATUS_ICONS.get(snapshot.status, "?")
    if snapshot.status is ProcessStatus.FAILED and snapshot.exit_code is not None:
        icon = f"ERR({snapshot.exit_code})"
    return f"[{icon}]"


def format_process_detail(snapshot: ProcessSnapshot) -> str:
    """Full view of one process with its output window."""
    lines = [
        f"{_status_label(snapshot)} {snapshot.name}",
        f"id: {snapshot.id}",
        f"$ {snapshot.command}",
        f"status: {snapshot.status.value}",
    ]
    if snapshot.pid is not None:
        lines.append(f"pid: {snapshot.pid}")
    if snapshot.tags:
        lines.append(f"tags: {', '.join(sorted(snapshot.tags))}")
    if snapshot.global_:
        lines.append("scope: global")
    if snapshot.duration_ms is not None:
        lines.append(f"duration: {format_duration(snapshot.duration_ms)}")
    if snapshot.error:
        lines.append(f"error: {snapshot.error}")

    output = "\n".join(snapshot.output) or "(no output)"
    if snapshot.total_lines > len(snapshot.output):
        output = f"... {snapshot.total_lines - len(snapshot.output)} earlier lines\n{output}"
    return "\n".join(lines) + f"\n\n{output}"


def format_process_list(snapshots: Sequence[ProcessSnapshot]) -> str:
    """Compact listing, one entry per process with its last output line."""
    if not snapshots:
        return "No background processes."
    entries = []
    for s in snapshots:
        name = s.name[:50] + ("..." if len(s.name) > 50 else "")
        entry = f"{_status_label(s)} {short_id(s.id)} {name}"
        if s.output:
            entry += f"\n    {s.output[-1][:80]}"
        entries.append(entry)
    return "\n".join(entries)


def format_history(rows: Sequence[dict]) -> str:
    """Format rows from the process history table."""
    if not rows:
        return "No process history yet."
    lines = ["Recent processes:\n"]
    for i, row in enumerate(rows, 1):
        cmd = row["command"][:50] + ("..." if len(row["command"]) > 50 else "")
        elapsed = format_duration(row["duration_ms"]) if row["duration_ms"] is not None else "-"
        lines.append(f"{i}. [{row['status']}] {cmd} ({elapsed})")
    return "\n".join(lines)


async def send_long_message(update: Update, text: str) -> None:
    """Send a message, splitting or sending as file if too long."""
    if not update.message:
        return

    if len(text) <= MAX_TELEGRAM_LENGTH:
        await update.message.reply_text(text)
    elif len(text) <= FILE_THRESHOLD:
        for chunk in split_message(text):
            await update.message.reply_text(chunk)
    else:
        file = io.BytesIO(text.encode("utf-8"))
        file.name = "output.txt"
        await update.message.reply_document(file, caption="Output too long, sent as file.")
