"""Concurrent tool execution."""

from flowstate.tools.events import ToolCall, ToolCallsEvent, ToolResult, ToolResultsEvent
from flowstate.tools.executors import (
    AsyncToolExecutor,
    ProcessToolExecutor,
    ThreadToolExecutor,
    ToolExecutor,
    ToolExecutorConfig,
)
from flowstate.tools.node import ToolApprovalMiddleware, ToolNode

__all__ = [
    "ToolCall",
    "ToolResult",
    "ToolCallsEvent",
    "ToolResultsEvent",
    "ToolExecutor",
    "ToolExecutorConfig",
    "ProcessToolExecutor",
    "ThreadToolExecutor",
    "AsyncToolExecutor",
    "ToolNode",
    "ToolApprovalMiddleware",
]
