"""Interrupt system for human-in-the-loop workflows.

A node pauses a run by raising :class:`WorkflowInterrupt` (usually through
``Node.interrupt``). The engine fills in the execution snapshot, persists it
and re-raises. Resuming loads the snapshot and re-invokes the suspended node,
which then receives the caller's feedback instead of raising again.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from flowstate.core.events import Event
from flowstate.core.state import WorkflowState
from flowstate.serialization import class_path, dump_value, import_class, load_value
from flowstate.utils.errors import SerializationError


class ActionDecision(str, Enum):
    """Human decision recorded on an :class:`Action`."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EDITED = "edited"


class Action(BaseModel):
    """A single item awaiting a human decision."""

    id: str
    name: str
    description: str = ""
    decision: ActionDecision = ActionDecision.PENDING
    feedback: Optional[str] = None

    def approve(self, feedback: Optional[str] = None) -> "Action":
        self.decision = ActionDecision.APPROVED
        self.feedback = feedback
        return self

    def reject(self, feedback: Optional[str] = None) -> "Action":
        self.decision = ActionDecision.REJECTED
        self.feedback = feedback
        return self

    def edit(self, feedback: str) -> "Action":
        self.decision = ActionDecision.EDITED
        self.feedback = feedback
        return self

    @property
    def is_approved(self) -> bool:
        return self.decision == ActionDecision.APPROVED

    @property
    def is_rejected(self) -> bool:
        return self.decision == ActionDecision.REJECTED

    @property
    def is_pending(self) -> bool:
        return self.decision == ActionDecision.PENDING


class InterruptRequest(BaseModel):
    """Payload a node attaches to an interrupt, shown to the human.

    The same type is usually sent back as feedback with the decisions filled in.
    """

    message: str = ""
    actions: List[Action] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def add_action(self, action: Action) -> "InterruptRequest":
        self.actions.append(action)
        return self

    def get_action(self, action_id: str) -> Optional[Action]:
        for action in self.actions:
            if action.id == action_id:
                return action
        return None

    def approve_all(self) -> "InterruptRequest":
        for action in self.actions:
            action.approve()
        return self

    def reject_all(self, feedback: Optional[str] = None) -> "InterruptRequest":
        for action in self.actions:
            action.reject(feedback)
        return self

    def pending_actions(self) -> List[Action]:
        return [action for action in self.actions if action.is_pending]


class ApprovalRequest(InterruptRequest):
    """Interrupt request asking the human to approve or reject tool calls."""

    message: str = "Approval required before running tools"


class WorkflowInterrupt(Exception):
    """Raised to suspend a run until a human supplies feedback.

    Attributes:
        request: Payload describing what the human is asked to decide
        current_node: Name of the node that raised the interrupt
        event: Event the suspended node was processing
        state: Snapshot of the workflow state at suspension
        workflow_id: Run the interrupt belongs to
        feedback: Value supplied on resume (None until then)
        node_checkpoints: Values recorded by ``Node.checkpoint`` before suspension
        pending: Queue of (node name, event) pairs still waiting to run
        merge_buffers: Partial join contributions, per join node
        created_at: When the interrupt was raised
    """

    def __init__(
        self,
        request: Any = None,
        current_node: Optional[str] = None,
        event: Optional[Event] = None,
        state: Optional[WorkflowState] = None,
        workflow_id: Optional[str] = None,
        feedback: Any = None,
        node_checkpoints: Optional[Dict[str, Any]] = None,
        pending: Optional[List[Tuple[str, Event]]] = None,
        merge_buffers: Optional[Dict[str, Dict[str, Event]]] = None,
        created_at: Optional[datetime] = None,
    ):
        self.request = request
        self.current_node = current_node
        self.event = event
        self.state = state
        self.workflow_id = workflow_id
        self.feedback = feedback
        self.node_checkpoints = dict(node_checkpoints) if node_checkpoints else {}
        self.pending = list(pending) if pending else []
        self.merge_buffers = {k: dict(v) for k, v in (merge_buffers or {}).items()}
        self.created_at = created_at or datetime.now()
        super().__init__(self._describe())

    def _describe(self) -> str:
        message = getattr(self.request, "message", None)
        where = f" at node '{self.current_node}'" if self.current_node else ""
        if message:
            return f"Workflow interrupted{where}: {message}"
        return f"Workflow interrupted{where}"

    def __str__(self) -> str:
        return self._describe()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for storage."""
        state = self.state if self.state is not None else WorkflowState()
        return {
            "workflow_id": self.workflow_id,
            "current_node": self.current_node,
            "event": dump_value(self.event),
            "request": dump_value(self.request),
            "feedback": dump_value(self.feedback),
            "state": dump_value(state.all()),
            "state_class": class_path(type(state)),
            "node_checkpoints": dump_value(self.node_checkpoints),
            "pending": [[node, dump_value(event)] for node, event in self.pending],
            "merge_buffers": dump_value(self.merge_buffers),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowInterrupt":
        """Deserialize from dictionary."""
        state_cls = WorkflowState
        if data.get("state_class"):
            state_cls = import_class(data["state_class"])
            if not issubclass(state_cls, WorkflowState):
                raise SerializationError(f"{data['state_class']!r} is not a WorkflowState")

        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)

        return cls(
            request=load_value(data.get("request")),
            current_node=data.get("current_node"),
            event=load_value(data.get("event")),
            state=state_cls(load_value(data.get("state") or {})),
            workflow_id=data.get("workflow_id"),
            feedback=load_value(data.get("feedback")),
            node_checkpoints=load_value(data.get("node_checkpoints") or {}),
            pending=[(node, load_value(event)) for node, event in data.get("pending", [])],
            merge_buffers=load_value(data.get("merge_buffers") or {}),
            created_at=created_at,
        )
