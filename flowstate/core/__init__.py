"""Core execution engine components."""

from flowstate.core.events import Event, MergeEvent, StartEvent, StopEvent
from flowstate.core.state import WorkflowState
from flowstate.core.graph import Edge, ExecutionGraph, GraphMetadata, WorkflowGraph
from flowstate.core.observer import EventEmitter, LifecycleEvent
from flowstate.core.executor import (
    NodeQueueItem,
    RunOutcome,
    RunStatus,
    WaitingNode,
    Workflow,
    WorkflowHandler,
)

__all__ = [
    "Event",
    "StartEvent",
    "StopEvent",
    "MergeEvent",
    "WorkflowState",
    "Edge",
    "ExecutionGraph",
    "GraphMetadata",
    "WorkflowGraph",
    "EventEmitter",
    "LifecycleEvent",
    "NodeQueueItem",
    "WaitingNode",
    "RunOutcome",
    "RunStatus",
    "Workflow",
    "WorkflowHandler",
]
