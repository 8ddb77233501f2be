"""Tool surface over the process registry.

Each call takes plain caller arguments and returns a JSON string, the way an
agent tool host expects results.
"""

from __future__ import annotations

import json
import logging

from bgproc.processes.models import ProcessFilter
from bgproc.processes.registry import ProcessRegistry

logger = logging.getLogger(__name__)


class ProcessTools:
    """JSON-returning wrappers bound to one registry."""

    def __init__(self, registry: ProcessRegistry) -> None:
        self.registry = registry

    async def create_process(
        self,
        command: str,
        name: str | None = None,
        tags: list[str] | None = None,
        session_id: str = "unknown",
        global_: bool = False,
    ) -> str:
        """Run a command as a background process and return its id."""
        return await self.registry.create(
            command,
            name=name,
            tags=tags,
            session_id=session_id,
            global_=global_,
        )

    def get_process(self, process_id: str) -> str:
        """Details and recent output of one process.

        Raises ProcessNotFoundError for an unknown id.
        """
        return json.dumps(self.registry.get(process_id).to_dict())

    def list_processes(
        self,
        session_id: str | None = None,
        status: str | None = None,
        tags: list[str] | None = None,
    ) -> str:
        criteria = ProcessFilter(session_id=session_id, status=status, tags=tags)
        return json.dumps([s.to_dict() for s in self.registry.list(criteria)])

    def kill_processes(
        self,
        process_id: str | None = None,
        session_id: str | None = None,
        status: str | None = None,
        tags: list[str] | None = None,
    ) -> str:
        criteria = ProcessFilter(session_id=session_id, status=status, tags=tags)
        killed = self.registry.terminate(process_id, criteria)
        if killed:
            logger.info("Killed %d process(es)", len(killed))
        return json.dumps(killed)
