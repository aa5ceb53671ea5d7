"""Node implementations for workflow execution."""

from flowstate.nodes.base import FunctionNode, Node, NodeStream, as_node

__all__ = [
    "Node",
    "FunctionNode",
    "NodeStream",
    "as_node",
]
