"""Compiled event-routing graph.

Nodes are not wired by explicit edges. Each node declares the one event type
it accepts and the types it produces; compiling resolves those declarations
into a routing table and derived edges, then validates that every produced
event has somewhere to go.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Type, TYPE_CHECKING

from pydantic import BaseModel

from flowstate.core.events import Event, MergeEvent, StopEvent
from flowstate.utils.errors import ConfigurationError

if TYPE_CHECKING:
    from flowstate.nodes.base import Node

logger = logging.getLogger(__name__)

START = "START"
END = "END"


class Edge(BaseModel):
    """Derived connection between two nodes, labelled with the event type."""

    source: str
    target: str
    event: str
    is_merge: bool = False

    def __hash__(self):
        return hash((self.source, self.target, self.event, self.is_merge))


@dataclass
class GraphMetadata:
    """Summary of the graph structure used by exporters.

    Attributes:
        node_count: Total number of nodes in graph
        entry_nodes: Nodes that accept the start event
        terminal_nodes: Nodes that can produce a StopEvent
        join_nodes: Nodes that receive a MergeEvent
        has_cycles: Whether events can route back to an earlier node
    """

    node_count: int
    entry_nodes: List[str]
    terminal_nodes: List[str]
    join_nodes: List[str]
    has_cycles: bool


@dataclass
class ExecutionGraph:
    """Compiled graph ready for execution.

    Attributes:
        nodes: Mapping of node names to Node instances
        start_event_type: Event type that begins a run
        accepts: Event type consumed by each node
        produces: Event types each node may emit
        consumers: Routing table from event class to consuming node names
        joins: Join node name to the ordered names of its contributors
        contributor_of: Contributor name to the join it feeds
        edges: Derived edges, for export and reachability
    """

    nodes: Dict[str, "Node"]
    start_event_type: Type[Event]
    accepts: Dict[str, Type[Event]]
    produces: Dict[str, List[Type[Event]]]
    consumers: Dict[Type[Event], List[str]]
    joins: Dict[str, List[str]] = field(default_factory=dict)
    contributor_of: Dict[str, str] = field(default_factory=dict)
    edges: List[Edge] = field(default_factory=list)
    metadata: Optional[GraphMetadata] = None

    @classmethod
    def from_nodes(cls, nodes: Dict[str, "Node"], start_event_type: Type[Event]) -> "ExecutionGraph":
        """Resolve node declarations into a routing table.

        Args:
            nodes: Dictionary mapping node names to Node instances
            start_event_type: Type of the event the run starts with

        Returns:
            ExecutionGraph: Compiled graph (call ``validate`` before running)

        Raises:
            ConfigurationError: If a node's declarations cannot be resolved
        """
        accepts: Dict[str, Type[Event]] = {}
        produces: Dict[str, List[Type[Event]]] = {}
        consumers: Dict[Type[Event], List[str]] = {}
        joins: Dict[str, List[str]] = {}
        contributor_of: Dict[str, str] = {}

        for name, node in nodes.items():
            accepted = node.resolve_accepts()
            accepts[name] = accepted
            produces[name] = node.resolve_produces()
            consumers.setdefault(accepted, []).append(name)

            if node.merge_from:
                joins[name] = list(node.merge_from)

        for join_name, sources in joins.items():
            for source in sources:
                if source in contributor_of:
                    raise ConfigurationError(
                        f"Node '{source}' contributes to both '{contributor_of[source]}' "
                        f"and '{join_name}'"
                    )
                contributor_of[source] = join_name

        graph = cls(
            nodes=nodes,
            start_event_type=start_event_type,
            accepts=accepts,
            produces=produces,
            consumers=consumers,
            joins=joins,
            contributor_of=contributor_of,
        )
        graph.edges = graph._derive_edges()
        graph.metadata = graph._compute_metadata()
        return graph

    def _derive_edges(self) -> List[Edge]:
        edges: List[Edge] = []
        for target in self.consumers.get(self.start_event_type, []):
            edges.append(Edge(source=START, target=target, event=self.start_event_type.__name__))

        for source, produced in self.produces.items():
            join = self.contributor_of.get(source)
            for event_type in produced:
                if join is not None:
                    edges.append(
                        Edge(source=source, target=join, event=event_type.__name__, is_merge=True)
                    )
                elif issubclass(event_type, StopEvent):
                    edges.append(Edge(source=source, target=END, event=event_type.__name__))
                else:
                    for target in self.consumers.get(event_type, []):
                        edges.append(Edge(source=source, target=target, event=event_type.__name__))
        return edges

    def _compute_metadata(self) -> GraphMetadata:
        terminal_nodes = [
            name
            for name, produced in self.produces.items()
            if any(issubclass(t, StopEvent) for t in produced)
        ]
        return GraphMetadata(
            node_count=len(self.nodes),
            entry_nodes=list(self.consumers.get(self.start_event_type, [])),
            terminal_nodes=terminal_nodes,
            join_nodes=list(self.joins),
            has_cycles=self._has_cycles(),
        )

    def _has_cycles(self) -> bool:
        children = self._children()
        visited: Set[str] = set()
        rec_stack: Set[str] = set()

        def visit(node_name: str) -> bool:
            visited.add(node_name)
            rec_stack.add(node_name)
            for child in children.get(node_name, []):
                if child not in visited:
                    if visit(child):
                        return True
                elif child in rec_stack:
                    return True
            rec_stack.remove(node_name)
            return False

        return any(visit(name) for name in self.nodes if name not in visited)

    def _children(self) -> Dict[str, List[str]]:
        children: Dict[str, List[str]] = {}
        for edge in self.edges:
            if edge.target != END and edge.target not in children.setdefault(edge.source, []):
                children[edge.source].append(edge.target)
        return children

    def validate(self) -> None:
        """Validate event routing.

        Checks for:
        - A node accepting the start event
        - Exactly one consumer per event type, except fan-out to the
          contributors of a single join
        - Join declarations naming existing nodes and accepting MergeEvent
        - A consumer for every produced event type
        - At least one StopEvent producer
        - All nodes reachable from the start event

        Raises:
            ConfigurationError: If validation fails
        """
        if not self.nodes:
            raise ConfigurationError("Workflow has no nodes")

        if self.start_event_type not in self.consumers:
            raise ConfigurationError(
                f"No node accepts the start event {self.start_event_type.__name__}"
            )

        for event_type, names in self.consumers.items():
            if len(names) > 1:
                joins = {self.contributor_of.get(name) for name in names}
                if None in joins or len(joins) != 1:
                    raise ConfigurationError(
                        f"Multiple nodes accept {event_type.__name__}: {', '.join(names)}. "
                        "Only contributors of the same join may share an event type."
                    )

        for join_name, sources in self.joins.items():
            if self.accepts[join_name] is not MergeEvent:
                raise ConfigurationError(f"Join node '{join_name}' must accept MergeEvent")
            if len(set(sources)) != len(sources):
                raise ConfigurationError(f"Join node '{join_name}' lists a contributor twice")
            for source in sources:
                if source == join_name:
                    raise ConfigurationError(f"Join node '{join_name}' cannot merge from itself")
                if source not in self.nodes:
                    raise ConfigurationError(
                        f"Join node '{join_name}' merges from unknown node '{source}'"
                    )

        for name, accepted in self.accepts.items():
            if accepted is MergeEvent and name not in self.joins:
                raise ConfigurationError(
                    f"Node '{name}' accepts MergeEvent but does not declare merge_from"
                )

        for name, produced in self.produces.items():
            if name in self.contributor_of:
                continue
            for event_type in produced:
                if issubclass(event_type, StopEvent):
                    continue
                if event_type not in self.consumers:
                    raise ConfigurationError(
                        f"No node handles {event_type.__name__} produced by '{name}'"
                    )

        if not self.metadata.terminal_nodes:
            raise ConfigurationError("No node produces a StopEvent")

        reachable = self._get_reachable_nodes()
        unreachable = [name for name in self.nodes if name not in reachable]
        if unreachable:
            raise ConfigurationError(
                f"Workflow contains unreachable nodes: {', '.join(unreachable)}"
            )

    def _get_reachable_nodes(self) -> Set[str]:
        """Get all nodes reachable from the start event."""
        children = self._children()
        reachable: Set[str] = set()
        queue = list(children.get(START, []))

        while queue:
            name = queue.pop(0)
            if name in reachable:
                continue

            reachable.add(name)
            queue.extend(children.get(name, []))

        return reachable

    def get_node(self, name: str) -> "Node":
        """Get a node by name.

        Raises:
            KeyError: If node does not exist
        """
        return self.nodes[name]

    def has_node(self, name: str) -> bool:
        return name in self.nodes

    def consumers_of(self, event_type: Type[Event]) -> List[str]:
        """Names of the nodes that accept exactly ``event_type``."""
        return list(self.consumers.get(event_type, []))

    def join_for(self, node_name: str) -> Optional[str]:
        """Name of the join node ``node_name`` contributes to, if any."""
        return self.contributor_of.get(node_name)


class WorkflowGraph:
    """Node registry that compiles into an :class:`ExecutionGraph`.

    Example:
        >>> graph = WorkflowGraph()
        >>> graph.add_nodes([NodeOne(), InterruptableNode(), NodeForSecond()])
        >>> compiled = graph.build(StartEvent)
    """

    def __init__(self):
        self._nodes: Dict[str, "Node"] = {}

    @property
    def nodes(self) -> Dict[str, "Node"]:
        return dict(self._nodes)

    def add_node(self, node) -> "WorkflowGraph":
        """Register a node (or a plain callable, wrapped in FunctionNode).

        Raises:
            ConfigurationError: If a node with the same name already exists
        """
        from flowstate.nodes.base import as_node

        node = as_node(node)
        if node.name in self._nodes:
            raise ConfigurationError(f"Duplicate node name: '{node.name}'")
        self._nodes[node.name] = node
        logger.debug("Registered node %s", node.name)
        return self

    def add_nodes(self, nodes) -> "WorkflowGraph":
        for node in nodes:
            self.add_node(node)
        return self

    def get_node(self, name: str) -> "Node":
        return self._nodes[name]

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def build(self, start_event_type: Type[Event]) -> ExecutionGraph:
        """Compile and validate the registered nodes.

        Raises:
            ConfigurationError: If routing is ambiguous or incomplete
        """
        graph = ExecutionGraph.from_nodes(dict(self._nodes), start_event_type)
        graph.validate()
        return graph
