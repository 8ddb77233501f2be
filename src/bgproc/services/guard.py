"""Launch guard: refuses destructive or interactive commands."""

from __future__ import annotations

import logging
import re
from typing import Iterable

logger = logging.getLogger(__name__)

DEFAULT_RULES: list[tuple[str, str]] = [
    (r":\(\)\s*\{\s*:\|:\s*&\s*\}", "Fork bomb detected"),
    (r"\brm\s+(-[rfRF]+\s+)?/\s*$", "Dangerous rm on root"),
    (r"\bmkfs\b", "Filesystem format blocked"),
    (r"\bdd\s+if=.*\bof=/dev/", "Raw disk write blocked"),
    (r"^\s*(shutdown|reboot|halt|poweroff)\b", "System control blocked"),
    # A background process has no terminal to talk to.
    (
        r"^\s*(vi|vim|nvim|nano|emacs|less|more|top|htop|man|ssh|telnet)\s*($|\s)",
        "Interactive command cannot run in the background",
    ),
]


class CommandGuard:
    """Regex rules checked before a command is launched."""

    def __init__(self, rules: Iterable[tuple[str, str]] = DEFAULT_RULES) -> None:
        self._rules: list[tuple[re.Pattern[str], str]] = []
        for pattern, reason in rules:
            try:
                self._rules.append((re.compile(pattern, re.IGNORECASE), reason))
            except re.error:
                logger.error("Invalid guard pattern: %s", pattern)

    def check(self, command: str) -> tuple[bool, str]:
        """Return (blocked, reason) for ``command``."""
        for compiled, reason in self._rules:
            if compiled.search(command):
                logger.warning("Refused command: %s (%s)", command, reason)
                return True, reason
        return False, ""
