"""OS process primitives: shell launch and process-group signalling."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

# Launch callable shape used by the registry; tests swap in fakes.
Launcher = Callable[..., Awaitable[asyncio.subprocess.Process]]
Signaller = Callable[[int, signal.Signals], None]

DEFAULT_STREAM_LIMIT = 1024 * 1024


async def launch(
    command: str,
    *,
    cwd: str | None = None,
    limit: int = DEFAULT_STREAM_LIMIT,
) -> asyncio.subprocess.Process:
    """Start ``command`` through the shell in its own session.

    The child leads a new process group so a signal reaches everything the
    shell spawned. Raises OSError when the process cannot be started.
    """
    work_dir = str(Path(cwd).expanduser().resolve()) if cwd else None
    proc = await asyncio.create_subprocess_shell(
        command,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=work_dir,
        limit=limit,
        start_new_session=True,
    )
    logger.debug("Launched pid=%s: %s", proc.pid, command)
    return proc


def send_signal(pid: int, sig: signal.Signals = signal.SIGTERM) -> None:
    """Signal the process group led by ``pid``.

    Raises ProcessLookupError or PermissionError from the OS unchanged.
    """
    os.killpg(pid, sig)
