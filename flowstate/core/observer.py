"""Lifecycle observers for workflow runs.

The engine publishes a :class:`LifecycleEvent` at each notable point of a
run (start/resume, node start/end, middleware hooks, errors, end). Nodes can
publish their own through ``Node.emit``. Listeners are plain or async
callables and may be scoped to a single workflow id, so one emitter can be
shared between workflows without their observers seeing each other's runs.
"""

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

WORKFLOW_START = "workflow-start"
WORKFLOW_RESUME = "workflow-resume"
WORKFLOW_END = "workflow-end"
NODE_START = "workflow-node-start"
NODE_END = "workflow-node-end"
MIDDLEWARE_BEFORE_START = "middleware-before-start"
MIDDLEWARE_BEFORE_END = "middleware-before-end"
MIDDLEWARE_AFTER_START = "middleware-after-start"
MIDDLEWARE_AFTER_END = "middleware-after-end"
ERROR = "error"


@dataclass
class LifecycleEvent:
    """Something that happened during a run.

    Attributes:
        name: Event name (``workflow-start``, ``workflow-node-end``, or a
            custom name passed to ``Node.emit``)
        workflow_id: Run the event belongs to
        node: Name of the node involved, if any
        data: Event payload (the delivered event, the node's result, the
            middleware, the exception, ...)
        timestamp: When the event was published
    """

    name: str
    workflow_id: str
    node: Optional[str] = None
    data: Any = None
    timestamp: datetime = field(default_factory=datetime.now)


Listener = Callable[[LifecycleEvent], Any]


class EventEmitter:
    """Registry of lifecycle listeners.

    A listener registered with a ``workflow_id`` only receives events of
    that workflow; one registered without receives everything.
    """

    def __init__(self):
        self._listeners: List[Tuple[Listener, Optional[str]]] = []

    def on(self, listener: Listener, workflow_id: Optional[str] = None) -> None:
        """Register a listener.

        Args:
            listener: Callable (or coroutine function) receiving LifecycleEvent
            workflow_id: Only deliver events of this workflow
        """
        self._listeners.append((listener, workflow_id))

    def off(self, listener: Listener) -> None:
        """Remove a listener from every scope it was registered under."""
        self._listeners = [entry for entry in self._listeners if entry[0] is not listener]

    def rescope(self, old_workflow_id: str, new_workflow_id: str) -> None:
        """Move listeners scoped to one workflow id onto another."""
        self._listeners = [
            (listener, new_workflow_id if scope == old_workflow_id else scope)
            for listener, scope in self._listeners
        ]

    def listeners(self, workflow_id: Optional[str] = None) -> List[Listener]:
        return [
            listener
            for listener, scope in self._listeners
            if scope is None or workflow_id is None or scope == workflow_id
        ]

    async def emit(self, event: LifecycleEvent) -> None:
        """Deliver an event to every matching listener, in registration order.

        A failing listener is logged and does not affect the run or the
        other listeners.
        """
        for listener in self.listeners(event.workflow_id):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Error in lifecycle listener for %s", event.name)

    def clear(self, workflow_id: Optional[str] = None) -> None:
        """Remove all listeners, or only those scoped to ``workflow_id``."""
        if workflow_id is None:
            self._listeners.clear()
        else:
            self._listeners = [entry for entry in self._listeners if entry[1] != workflow_id]
