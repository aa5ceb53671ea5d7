"""
Flowstate: durable event-driven workflows for Python

Nodes consume and produce typed events; the engine routes each event to the
node that accepts it, streams intermediate events, joins parallel branches,
and can suspend a run for human input, persist it, and resume it later.

Example:
    >>> from flowstate import Workflow, WorkflowState, StartEvent, StopEvent, Node
    >>> from flowstate.backends import FilePersistence
    >>>
    >>> class Greet(Node):
    ...     def __call__(self, event: StartEvent, state: WorkflowState) -> StopEvent:
    ...         name = self.interrupt("What is your name?")
    ...         return StopEvent(f"Hello, {name}!")
    >>>
    >>> workflow = Workflow(
    ...     persistence=FilePersistence(".flowstate"),
    ...     workflow_id="greeting",
    ... ).add_node(Greet())
    >>>
    >>> try:
    ...     await workflow.start().run()
    ... except WorkflowInterrupt as interrupt:
    ...     print(interrupt.request)
    >>>
    >>> handler = workflow.start(resume=True, feedback="Ada")
    >>> await handler.run()
    >>> handler.result
    'Hello, Ada!'
"""

__version__ = "0.1.0"

# Core components
from flowstate.core.events import Event, MergeEvent, StartEvent, StopEvent
from flowstate.core.state import WorkflowState
from flowstate.core.graph import Edge, ExecutionGraph, WorkflowGraph
from flowstate.core.executor import RunOutcome, RunStatus, Workflow, WorkflowHandler
from flowstate.core.observer import EventEmitter, LifecycleEvent

# Nodes
from flowstate.nodes.base import FunctionNode, Node

# Middleware
from flowstate.middleware import MiddlewarePipeline, WorkflowMiddleware

# Interrupts (human-in-the-loop)
from flowstate.interrupts import (
    Action,
    ActionDecision,
    ApprovalRequest,
    InterruptRequest,
    WorkflowInterrupt,
)

# Backends
from flowstate.backends import (
    FilePersistence,
    MemoryPersistence,
    PersistenceBackend,
    SQLitePersistence,
)

# Tools
from flowstate.tools import (
    AsyncToolExecutor,
    ProcessToolExecutor,
    ThreadToolExecutor,
    ToolApprovalMiddleware,
    ToolCall,
    ToolCallsEvent,
    ToolExecutorConfig,
    ToolNode,
    ToolResult,
    ToolResultsEvent,
)

# Export
from flowstate.exporters import ConsoleExporter, MermaidExporter

# Errors
from flowstate.utils.errors import (
    ConfigurationError,
    FlowstateError,
    GraphValidationError,
    InterruptNotFoundError,
    PersistenceError,
    SerializationError,
    SkipRemainingMiddleware,
    WorkflowError,
)

__all__ = [
    # Core
    "Event",
    "StartEvent",
    "StopEvent",
    "MergeEvent",
    "WorkflowState",
    "Edge",
    "ExecutionGraph",
    "WorkflowGraph",
    "Workflow",
    "WorkflowHandler",
    "RunOutcome",
    "RunStatus",
    "EventEmitter",
    "LifecycleEvent",
    # Nodes
    "Node",
    "FunctionNode",
    # Middleware
    "WorkflowMiddleware",
    "MiddlewarePipeline",
    # Interrupts
    "WorkflowInterrupt",
    "InterruptRequest",
    "ApprovalRequest",
    "Action",
    "ActionDecision",
    # Backends
    "PersistenceBackend",
    "MemoryPersistence",
    "FilePersistence",
    "SQLitePersistence",
    # Tools
    "ToolCall",
    "ToolResult",
    "ToolCallsEvent",
    "ToolResultsEvent",
    "ToolExecutorConfig",
    "ProcessToolExecutor",
    "ThreadToolExecutor",
    "AsyncToolExecutor",
    "ToolNode",
    "ToolApprovalMiddleware",
    # Export
    "ConsoleExporter",
    "MermaidExporter",
    # Errors
    "FlowstateError",
    "GraphValidationError",
    "ConfigurationError",
    "WorkflowError",
    "SerializationError",
    "PersistenceError",
    "InterruptNotFoundError",
    "SkipRemainingMiddleware",
]
