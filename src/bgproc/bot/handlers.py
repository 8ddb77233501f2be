"""Telegram bot command handlers."""

from __future__ import annotations

import logging

from telegram import Update
from telegram.ext import ContextTypes

from bgproc.bot.security import user_id_required
from bgproc.exceptions import ProcessNotFoundError
from bgproc.processes.models import ProcessFilter, ProcessStatus
from bgproc.processes.registry import ProcessRegistry
from bgproc.storage.database import get_recent_processes
from bgproc.utils.formatting import (
    format_history,
    format_process_detail,
    format_process_list,
    send_long_message,
    short_id,
)

logger = logging.getLogger(__name__)

BG_USAGE = "Usage: /bg [-g] [-n name] [-t tag1,tag2] <command>"


def _registry(context: ContextTypes.DEFAULT_TYPE) -> ProcessRegistry:
    return context.bot_data["registry"]


def _session_id(update: Update) -> str:
    return str(update.effective_chat.id)  # type: ignore[union-attr]


def parse_bg_args(text: str) -> tuple[str, str | None, list[str], bool]:
    """Split ``/bg`` arguments into (command, name, tags, global).

    Options are only read before the first non-option word; everything
    after it is the shell command, kept verbatim.
    """
    name: str | None = None
    tags: list[str] = []
    global_ = False
    rest = text.strip()
    while rest.startswith("-"):
        parts = rest.split(None, 1)
        flag, rest = parts[0], (parts[1] if len(parts) > 1 else "")
        if flag == "--":
            break
        if flag in ("-g", "--global"):
            global_ = True
        elif flag in ("-n", "--name", "-t", "--tags"):
            parts = rest.split(None, 1)
            if not parts:
                raise ValueError(f"Option {flag} needs a value")
            value, rest = parts[0], (parts[1] if len(parts) > 1 else "")
            if flag in ("-n", "--name"):
                name = value
            else:
                tags.extend(t.strip() for t in value.split(",") if t.strip())
        else:
            # Not one of ours: the command itself starts with a dash.
            rest = f"{flag} {rest}".strip()
            break
    return rest.strip(), name, tags, global_


def _resolve_id(registry: ProcessRegistry, session_id: str, token: str) -> str:
    """Accept a full id or an unambiguous prefix among the chat's own processes."""
    ids = [s.id for s in registry.list(ProcessFilter(session_id=session_id))]
    if token in ids:
        return token
    matches = [p for p in ids if p.startswith(token)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise ProcessNotFoundError(token)
    raise ValueError(f"Ambiguous id prefix: {token}")


# --- Handlers ---


@user_id_required
async def start_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start command."""
    from bgproc import __version__

    await update.message.reply_text(  # type: ignore[union-attr]
        f"bgproc v{__version__}\n\n"
        "Run shell commands in the background and get notified when they finish.\n\n"
        "Use /help to see all commands."
    )


@user_id_required
async def help_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help command."""
    await update.message.reply_text(  # type: ignore[union-attr]
        "bgproc\n"
        f"{'=' * 30}\n"
        "Commands:\n"
        "  /bg <cmd>         - Start a background process\n"
        "      -g            keep it after /endsession\n"
        "      -n <name>     display name\n"
        "      -t <a,b>      tags\n"
        "  /ps [status] [#tag] - List processes\n"
        "  /task <id>        - Process details and output\n"
        "  /kill <id|all|#tag> - Terminate processes\n"
        "  /endsession       - Kill and forget this chat's processes\n"
        "  /history          - Recently finished processes\n"
        "  /help             - This help"
    )


@user_id_required
async def bg_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /bg [options] <command>."""
    raw_text = update.message.text  # type: ignore[union-attr]
    parts = raw_text.split(None, 1)
    if len(parts) < 2:
        await update.message.reply_text(BG_USAGE)  # type: ignore[union-attr]
        return

    try:
        command, name, tags, global_ = parse_bg_args(parts[1])
    except ValueError as e:
        await update.message.reply_text(f"{e}\n{BG_USAGE}")  # type: ignore[union-attr]
        return
    if not command:
        await update.message.reply_text(BG_USAGE)  # type: ignore[union-attr]
        return

    registry = _registry(context)
    process_id = await registry.create(
        command,
        name=name,
        tags=tags,
        session_id=_session_id(update),
        global_=global_,
    )
    snapshot = registry.get(process_id)
    if snapshot.status is ProcessStatus.FAILED:
        await update.message.reply_text(  # type: ignore[union-attr]
            f"Failed to start: {snapshot.error}\nid: {process_id}"
        )
        return
    await update.message.reply_text(  # type: ignore[union-attr]
        f"Started {short_id(process_id)} (pid {snapshot.pid})\n$ {command}"
    )


@user_id_required
async def ps_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /ps [status] [#tag ...]."""
    status: str | None = None
    tags: list[str] = []
    for arg in context.args or []:
        if arg.startswith("#"):
            tags.append(arg[1:])
        elif arg.lower() in {s.value for s in ProcessStatus}:
            status = arg.lower()
        else:
            await update.message.reply_text(f"Unknown filter: {arg}")  # type: ignore[union-attr]
            return

    criteria = ProcessFilter(session_id=_session_id(update), status=status, tags=tags)
    snapshots = _registry(context).list(criteria)
    await send_long_message(update, format_process_list(snapshots))


@user_id_required
async def task_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /task <id>."""
    if not context.args:
        await update.message.reply_text("Usage: /task <id>")  # type: ignore[union-attr]
        return

    registry = _registry(context)
    try:
        snapshot = registry.get(_resolve_id(registry, _session_id(update), context.args[0]))
    except (ProcessNotFoundError, ValueError) as e:
        await update.message.reply_text(str(e))  # type: ignore[union-attr]
        return
    await send_long_message(update, format_process_detail(snapshot))


@user_id_required
async def kill_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /kill <id> | all | #tag ..."""
    if not context.args:
        await update.message.reply_text("Usage: /kill <id|all|#tag>")  # type: ignore[union-attr]
        return

    registry = _registry(context)
    session_id = _session_id(update)
    args = context.args
    if args[0].lower() == "all":
        killed = registry.terminate(criteria=ProcessFilter(session_id=session_id))
    elif all(a.startswith("#") for a in args):
        tags = [a[1:] for a in args]
        killed = registry.terminate(criteria=ProcessFilter(session_id=session_id, tags=tags))
    else:
        try:
            killed = registry.terminate(_resolve_id(registry, session_id, args[0]))
        except (ProcessNotFoundError, ValueError) as e:
            await update.message.reply_text(str(e))  # type: ignore[union-attr]
            return

    if not killed:
        await update.message.reply_text("Nothing was terminated.")  # type: ignore[union-attr]
        return
    ids = ", ".join(short_id(p) for p in killed)
    await update.message.reply_text(f"Terminated: {ids}")  # type: ignore[union-attr]


@user_id_required
async def endsession_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /endsession."""
    evicted = await _registry(context).end_session(_session_id(update))
    await update.message.reply_text(  # type: ignore[union-attr]
        f"Session ended. {len(evicted)} process(es) removed; global processes kept."
    )


@user_id_required
async def history_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /history."""
    rows = await get_recent_processes(limit=10, session_id=_session_id(update))
    await update.message.reply_text(format_history(rows))  # type: ignore[union-attr]
