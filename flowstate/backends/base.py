"""Base protocol for interrupt persistence backends.

This module defines the PersistenceBackend protocol that all storage
backends must implement. A backend keeps at most one suspended
:class:`WorkflowInterrupt` per workflow id.
"""

from typing import List, Protocol, TYPE_CHECKING, runtime_checkable

if TYPE_CHECKING:
    from flowstate.interrupts import WorkflowInterrupt


@runtime_checkable
class PersistenceBackend(Protocol):
    """Protocol for interrupt persistence backends."""

    async def save(self, workflow_id: str, interrupt: "WorkflowInterrupt") -> None:
        """Save the interrupt for a workflow, replacing any earlier one.

        Args:
            workflow_id: Workflow identifier
            interrupt: Suspended run snapshot

        Raises:
            PersistenceError: If the save operation fails
        """
        ...

    async def load(self, workflow_id: str) -> "WorkflowInterrupt":
        """Load the interrupt saved for a workflow.

        Args:
            workflow_id: Workflow identifier

        Returns:
            The restored WorkflowInterrupt

        Raises:
            InterruptNotFoundError: If nothing is saved for the id
        """
        ...

    async def delete(self, workflow_id: str) -> None:
        """Delete the interrupt for a workflow. Missing ids are ignored."""
        ...

    async def exists(self, workflow_id: str) -> bool:
        """Check if an interrupt is saved for a workflow."""
        ...

    async def list_workflows(self) -> List[str]:
        """List all workflow ids with a saved interrupt."""
        ...
