"""Exception types raised by bgproc."""

from __future__ import annotations


class BgprocError(Exception):
    """Base class for bgproc errors."""


class ProcessNotFoundError(BgprocError, KeyError):
    """Raised when a process id is not tracked by the registry."""

    def __init__(self, process_id: str) -> None:
        super().__init__(process_id)
        self.process_id = process_id

    def __str__(self) -> str:
        return f"Process {self.process_id} not found"


class LaunchError(BgprocError):
    """The OS could not start the process, or the command was refused."""


class ConfigError(BgprocError):
    """Invalid configuration value."""
