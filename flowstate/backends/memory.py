"""In-memory persistence backend for testing and development."""

import logging
from typing import Any, Dict, List

from flowstate.interrupts import WorkflowInterrupt
from flowstate.utils.errors import InterruptNotFoundError

logger = logging.getLogger(__name__)


class MemoryPersistence:
    """In-memory interrupt storage.

    Interrupts are stored in their serialized form, so a loaded interrupt is
    an independent copy and values that could not be persisted by the other
    backends fail here too. Everything is lost when the process exits.

    Useful for:
    - Testing
    - Single-process human-in-the-loop flows
    """

    def __init__(self):
        self._storage: Dict[str, Dict[str, Any]] = {}

    async def save(self, workflow_id: str, interrupt: WorkflowInterrupt) -> None:
        self._storage[workflow_id] = interrupt.to_dict()
        logger.debug("Saved interrupt for %s in memory", workflow_id)

    async def load(self, workflow_id: str) -> WorkflowInterrupt:
        if workflow_id not in self._storage:
            raise InterruptNotFoundError(workflow_id)
        return WorkflowInterrupt.from_dict(self._storage[workflow_id])

    async def delete(self, workflow_id: str) -> None:
        self._storage.pop(workflow_id, None)

    async def exists(self, workflow_id: str) -> bool:
        return workflow_id in self._storage

    async def list_workflows(self) -> List[str]:
        return list(self._storage.keys())

    def clear_all(self) -> None:
        """Clear all stored interrupts.

        Useful for testing and cleanup.
        """
        self._storage.clear()

    def __repr__(self) -> str:
        return f"MemoryPersistence(workflows={len(self._storage)})"
