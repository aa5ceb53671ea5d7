"""Queue-based workflow engine with streaming and suspend/resume.

The engine pops one (node, event) item at a time, runs the node through the
middleware pipeline, forwards streamed intermediate events to the caller and
routes the terminal event to the next node. A join node is queued only once
every contributor has delivered its event. A :class:`WorkflowInterrupt`
raised during an invocation suspends the run: the full execution snapshot is
persisted and the interrupt is re-raised to the caller.
"""

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Deque, Dict, Iterable, List, Optional, Union

from flowstate.backends.base import PersistenceBackend
from flowstate.backends.memory import MemoryPersistence
from flowstate.core.events import Event, MergeEvent, StartEvent, StopEvent
from flowstate.core.graph import ExecutionGraph, WorkflowGraph
from flowstate.core.observer import (
    ERROR,
    NODE_END,
    NODE_START,
    WORKFLOW_END,
    WORKFLOW_RESUME,
    WORKFLOW_START,
    EventEmitter,
    LifecycleEvent,
    Listener,
)
from flowstate.core.state import WorkflowState
from flowstate.exporters import ConsoleExporter, Exporter
from flowstate.interrupts import WorkflowInterrupt
from flowstate.middleware import MiddlewarePipeline, WorkflowMiddleware
from flowstate.nodes.base import Node, NodeStream
from flowstate.utils.config import get_max_steps
from flowstate.utils.errors import ConfigurationError, WorkflowError

logger = logging.getLogger(__name__)

WORKFLOW_ID_KEY = "__workflow_id"


class RunStatus(str, Enum):
    """Lifecycle of a workflow run."""

    RUNNING = "running"
    SUSPENDED = "suspended"
    STOPPED = "stopped"


@dataclass
class RunOutcome:
    """How a run ended: stopped with a result, or suspended on an interrupt.

    Attributes:
        status: STOPPED or SUSPENDED
        state: The workflow's live state
        result: Payload of the StopEvent (stopped runs only)
        interrupt: The persisted interrupt (suspended runs only)
        steps: Number of node invocations performed
    """

    status: RunStatus
    state: WorkflowState
    result: Any = None
    interrupt: Optional[WorkflowInterrupt] = None
    steps: int = 0

    @property
    def completed(self) -> bool:
        return self.status == RunStatus.STOPPED

    @property
    def suspended(self) -> bool:
        return self.status == RunStatus.SUSPENDED


@dataclass
class NodeQueueItem:
    """Item in the execution queue.

    Attributes:
        node: Name of the node to invoke
        event: Event delivered to it
    """

    node: str
    event: Event


@dataclass
class WaitingNode:
    """Join node waiting for its contributors.

    Attributes:
        node: Name of the join node
        expected: Contributor names, in declared order
        received: Events received so far, keyed by contributor name
    """

    node: str
    expected: List[str]
    received: Dict[str, Event] = field(default_factory=dict)

    def has_all_inputs(self) -> bool:
        return all(name in self.received for name in self.expected)

    def to_merge_event(self) -> MergeEvent:
        return MergeEvent(events={name: self.received[name] for name in self.expected})


class Workflow:
    """A graph of nodes plus the persistence needed to suspend and resume it.

    Example:
        >>> workflow = Workflow(
        ...     state=WorkflowState(),
        ...     persistence=FilePersistence("/tmp/flows"),
        ...     workflow_id="order-42",
        ... )
        >>> workflow.add_nodes([NodeOne(), InterruptableNode(), NodeForSecond()])
        >>> try:
        ...     await workflow.start().run()
        ... except WorkflowInterrupt:
        ...     state = await workflow.start(resume=True, feedback="approved").run()
    """

    def __init__(
        self,
        state: Optional[WorkflowState] = None,
        persistence: Optional[PersistenceBackend] = None,
        workflow_id: Optional[str] = None,
        start_event: Optional[Event] = None,
        max_steps: Optional[int] = None,
        emitter: Optional[EventEmitter] = None,
    ):
        """Initialize workflow.

        Args:
            state: Initial state (a fresh WorkflowState if omitted)
            persistence: Backend for interrupts (in-memory if omitted)
            workflow_id: Identifier used to save and resume the run
            start_event: Event that begins a fresh run (StartEvent() if omitted)
            max_steps: Maximum node invocations per run
            emitter: Lifecycle event emitter, shareable between workflows

        Raises:
            ConfigurationError: If a workflow_id is given without persistence
        """
        if workflow_id is not None and persistence is None:
            raise ConfigurationError("A workflow_id requires a persistence backend")

        self.state = state if state is not None else WorkflowState()
        self.persistence: PersistenceBackend = persistence or MemoryPersistence()
        self.workflow_id = workflow_id or f"workflow_{uuid.uuid4().hex}"
        self.max_steps = max_steps if max_steps is not None else get_max_steps()
        self.graph = WorkflowGraph()
        self.middleware = MiddlewarePipeline()
        self._start_event = start_event
        self._compiled: Optional[ExecutionGraph] = None
        self._exporter: Optional[Exporter] = None
        self.emitter = emitter or EventEmitter()

    @classmethod
    def build(
        cls,
        state: Optional[WorkflowState] = None,
        persistence: Optional[PersistenceBackend] = None,
        workflow_id: Optional[str] = None,
    ) -> "Workflow":
        return cls(state=state, persistence=persistence, workflow_id=workflow_id)

    # Registration

    def add_node(self, node) -> "Workflow":
        self.graph.add_node(node)
        self._compiled = None
        return self

    def add_nodes(self, nodes: Iterable) -> "Workflow":
        self.graph.add_nodes(nodes)
        self._compiled = None
        return self

    def add_global_middleware(
        self, middleware: Union[WorkflowMiddleware, Iterable[WorkflowMiddleware]]
    ) -> "Workflow":
        self.middleware.add_global(middleware)
        self._compiled = None
        return self

    def add_middleware(
        self,
        node_names: Union[str, Iterable[str]],
        middleware: Union[WorkflowMiddleware, Iterable[WorkflowMiddleware]],
    ) -> "Workflow":
        self.middleware.add(node_names, middleware)
        self._compiled = None
        return self

    def set_persistence(
        self, persistence: PersistenceBackend, workflow_id: Optional[str] = None
    ) -> "Workflow":
        self.persistence = persistence
        if workflow_id is not None:
            self.emitter.rescope(self.workflow_id, workflow_id)
            self.workflow_id = workflow_id
        return self

    def observe(self, listener: Listener) -> "Workflow":
        """Register a listener for this workflow's lifecycle events.

        The listener is scoped to this workflow's id, so it does not see runs
        of other workflows sharing the same emitter. It may be a coroutine
        function.
        """
        self.emitter.on(listener, workflow_id=self.workflow_id)
        return self

    @property
    def start_event(self) -> Event:
        return self._start_event if self._start_event is not None else StartEvent()

    def set_start_event(self, event: Event) -> "Workflow":
        self._start_event = event
        self._compiled = None
        return self

    def set_exporter(self, exporter: Exporter) -> "Workflow":
        self._exporter = exporter
        return self

    def compile(self) -> ExecutionGraph:
        """Build and validate the routing table (cached until nodes or middleware change)."""
        if self._compiled is None:
            graph = self.graph.build(type(self.start_event))
            unknown = [name for name in self.middleware.node_names() if name not in self.graph]
            if unknown:
                raise ConfigurationError(
                    f"Middleware registered for unknown nodes: {', '.join(unknown)}"
                )
            self._compiled = graph
        return self._compiled

    def export(self) -> str:
        """Render the graph with the configured exporter (console by default)."""
        exporter = self._exporter or ConsoleExporter()
        return exporter.export(self.compile())

    # Running

    def start(self, resume: bool = False, feedback: Any = None) -> "WorkflowHandler":
        """Create a handle for a fresh or resumed run.

        Nothing executes until the handle is consumed. The graph is validated
        here so configuration errors surface before any node runs.
        """
        self.compile()
        return WorkflowHandler(self, resume=resume, feedback=feedback)

    def init(self, resume: bool = False, feedback: Any = None) -> "WorkflowHandler":
        return self.start(resume=resume, feedback=feedback)

    def _restore_state(self, snapshot: WorkflowState) -> None:
        if type(snapshot) is type(self.state):
            self.state.replace(snapshot.all())
        else:
            self.state = snapshot

    async def _emit(self, name: str, node: Optional[str] = None, data: Any = None) -> None:
        await self.emitter.emit(
            LifecycleEvent(name=name, workflow_id=self.workflow_id, node=node, data=data)
        )

    async def _flush_node_events(self, node: Node) -> None:
        for name, data in node.drain_emitted():
            await self._emit(name, node.name, data)

    async def _execute(self, resume: bool, feedback: Any) -> AsyncIterator[Any]:
        """Drive the run. Yields intermediate events, then one RunOutcome.

        Lifecycle events bracket the run: ``workflow-start`` (or
        ``workflow-resume``) first and ``workflow-end`` last, with ``error``
        before it when the run suspends or fails.
        """
        graph = self.compile()
        await self._emit(WORKFLOW_RESUME if resume else WORKFLOW_START, data=graph)
        try:
            async for item in self._run_queue(graph, resume, feedback):
                if isinstance(item, RunOutcome):
                    if item.suspended:
                        await self._emit(
                            ERROR, item.interrupt.current_node, {"error": item.interrupt, "critical": False}
                        )
                    await self._emit(WORKFLOW_END, data=self.state)
                yield item
        except Exception as e:
            await self._emit(ERROR, data={"error": e, "critical": True})
            await self._emit(WORKFLOW_END, data=self.state)
            raise

    async def _run_queue(self, graph: ExecutionGraph, resume: bool, feedback: Any) -> AsyncIterator[Any]:
        queue: Deque[NodeQueueItem] = deque()
        waiting: Dict[str, WaitingNode] = {}
        resume_item: Optional[NodeQueueItem] = None

        if resume:
            interrupt = await self.persistence.load(self.workflow_id)
            interrupt.feedback = feedback
            if not graph.has_node(interrupt.current_node):
                raise ConfigurationError(
                    f"Cannot resume: node '{interrupt.current_node}' is not registered"
                )
            self._restore_state(interrupt.state)
            graph.get_node(interrupt.current_node).restore_checkpoints(interrupt.node_checkpoints)

            resume_item = NodeQueueItem(node=interrupt.current_node, event=interrupt.event)
            queue.append(resume_item)
            queue.extend(NodeQueueItem(node=name, event=event) for name, event in interrupt.pending)
            for join_name, received in interrupt.merge_buffers.items():
                waiting[join_name] = WaitingNode(
                    node=join_name, expected=list(graph.joins[join_name]), received=dict(received)
                )
            logger.info("Resuming workflow %s at node %s", self.workflow_id, interrupt.current_node)
        else:
            self._route(graph, None, self.start_event, queue, waiting)
            logger.info("Starting workflow %s", self.workflow_id)

        self.state.set(WORKFLOW_ID_KEY, self.workflow_id)

        steps = 0
        while queue:
            if steps >= self.max_steps:
                raise WorkflowError(
                    f"Workflow {self.workflow_id} exceeded maximum steps ({self.max_steps})"
                )
            steps += 1

            item = queue.popleft()
            node = graph.get_node(item.node)
            resuming = item is resume_item
            node.set_workflow_context(self.state, item.event, resuming=resuming, feedback=feedback)
            logger.debug("Invoking node %s with %s", node.name, type(item.event).__name__)
            await self._emit(NODE_START, node.name, item.event)

            try:
                await self.middleware.run_before(node, item.event, self.state, notify=self._emit)
                stream = NodeStream(node.run(item.event, self.state), node.name)
                async for intermediate in stream:
                    await self._flush_node_events(node)
                    yield intermediate
                result = stream.terminal
                await self._flush_node_events(node)
                await self.middleware.run_after(node, result, self.state, notify=self._emit)
            except WorkflowInterrupt as interrupt:
                interrupt.workflow_id = self.workflow_id
                interrupt.current_node = node.name
                interrupt.event = item.event
                interrupt.state = self.state.snapshot()
                interrupt.node_checkpoints = dict(node.checkpoints)
                interrupt.pending = [(queued.node, queued.event) for queued in queue]
                interrupt.merge_buffers = {
                    name: dict(wait.received) for name, wait in waiting.items()
                }
                await self.persistence.save(self.workflow_id, interrupt)
                await self._flush_node_events(node)
                logger.info("Workflow %s suspended at node %s", self.workflow_id, node.name)
                yield RunOutcome(
                    status=RunStatus.SUSPENDED,
                    state=self.state,
                    interrupt=interrupt,
                    steps=steps,
                )
                return
            except Exception:
                await self._flush_node_events(node)
                raise
            finally:
                node.clear_workflow_context()

            await self._emit(NODE_END, node.name, result)
            logger.debug("Node %s produced %s", node.name, type(result).__name__)

            if isinstance(result, StopEvent):
                await self.persistence.delete(self.workflow_id)
                logger.info("Workflow %s stopped after %d steps", self.workflow_id, steps)
                yield RunOutcome(
                    status=RunStatus.STOPPED,
                    state=self.state,
                    result=result.result,
                    steps=steps,
                )
                return

            self._route(graph, node.name, result, queue, waiting)

        pending_joins = ", ".join(waiting) or "none"
        raise WorkflowError(
            f"Workflow {self.workflow_id} ran out of events before a StopEvent "
            f"(joins still waiting: {pending_joins})"
        )

    def _route(
        self,
        graph: ExecutionGraph,
        source: Optional[str],
        event: Event,
        queue: Deque[NodeQueueItem],
        waiting: Dict[str, WaitingNode],
    ) -> None:
        """Queue the consumers of ``event`` or buffer it for a join."""
        join_name = graph.join_for(source) if source is not None else None
        if join_name is not None:
            if join_name not in waiting:
                waiting[join_name] = WaitingNode(node=join_name, expected=list(graph.joins[join_name]))
            waiting[join_name].received[source] = event

            if waiting[join_name].has_all_inputs():
                queue.append(NodeQueueItem(node=join_name, event=waiting[join_name].to_merge_event()))
                del waiting[join_name]
                logger.debug("Join %s complete", join_name)
            return

        consumers = graph.consumers_of(type(event))
        if not consumers:
            raise ConfigurationError(
                f"No node handles {type(event).__name__}"
                + (f" produced by '{source}'" if source else "")
            )
        for name in consumers:
            queue.append(NodeQueueItem(node=name, event=event))


_END = object()


class WorkflowHandler:
    """Handle for one run of a workflow.

    ``events()`` streams intermediate events while the run advances. ``run()``
    drains whatever is left and returns the final state, raising the
    :class:`WorkflowInterrupt` if the run suspended. ``execute()`` does the
    same but returns a :class:`RunOutcome` instead of raising on suspension.
    """

    def __init__(self, workflow: Workflow, resume: bool = False, feedback: Any = None):
        self.workflow = workflow
        self.resume = resume
        self.feedback = feedback
        self._stream: Optional[AsyncIterator[Any]] = None
        self._outcome: Optional[RunOutcome] = None
        self._events_started = False

    @property
    def workflow_id(self) -> str:
        return self.workflow.workflow_id

    @property
    def outcome(self) -> Optional[RunOutcome]:
        return self._outcome

    @property
    def status(self) -> RunStatus:
        return self._outcome.status if self._outcome is not None else RunStatus.RUNNING

    @property
    def result(self) -> Any:
        """Payload of the StopEvent, once the run has stopped."""
        return self._outcome.result if self._outcome is not None else None

    async def _next(self) -> Any:
        if self._stream is None:
            self._stream = self.workflow._execute(self.resume, self.feedback)
        while True:
            try:
                item = await self._stream.__anext__()
            except StopAsyncIteration:
                return _END
            if isinstance(item, RunOutcome):
                self._outcome = item
                continue
            return item

    def _raise_if_suspended(self) -> None:
        if self._outcome is not None and self._outcome.suspended:
            raise self._outcome.interrupt

    async def events(self) -> AsyncIterator[Any]:
        """Stream intermediate events. Can be consumed only once.

        Raises:
            WorkflowInterrupt: When the run suspends
        """
        if self._events_started:
            raise WorkflowError("events() can only be consumed once per handler")
        self._events_started = True

        while True:
            item = await self._next()
            if item is _END:
                break
            yield item
        self._raise_if_suspended()

    async def execute(self) -> RunOutcome:
        """Run to completion or suspension and report which one happened."""
        while (await self._next()) is not _END:
            pass
        if self._outcome is None:
            raise WorkflowError(f"Workflow {self.workflow_id} ended without an outcome")
        return self._outcome

    async def run(self) -> WorkflowState:
        """Run to completion and return the final state.

        Raises:
            WorkflowInterrupt: If the run suspends
        """
        outcome = await self.execute()
        self._raise_if_suspended()
        return outcome.state
