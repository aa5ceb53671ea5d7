"""Base node class and result normalization.

A node consumes exactly one event type and produces one or more. Both are
read from the ``__call__`` annotations when the graph is compiled:

    class Summarize(Node):
        def __call__(self, event: DocumentEvent, state: WorkflowState) -> SummaryEvent:
            ...

Return annotations may be wrapped in ``Optional``/``Union``, ``Iterator``,
``Generator``, ``AsyncIterator`` or ``AsyncGenerator``. Nodes that cannot be
annotated set ``accepts`` and ``produces`` explicitly.
"""

import collections.abc
import inspect
import logging
import types
import typing
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, Union

from flowstate.core.events import Event, MergeEvent
from flowstate.core.state import WorkflowState
from flowstate.interrupts import WorkflowInterrupt
from flowstate.utils.errors import ConfigurationError, WorkflowError

logger = logging.getLogger(__name__)

_MISSING = object()

_ITERATOR_ORIGINS = (
    collections.abc.Iterator,
    collections.abc.Iterable,
    collections.abc.Generator,
    collections.abc.AsyncIterator,
    collections.abc.AsyncIterable,
    collections.abc.AsyncGenerator,
)
_AWAITABLE_ORIGINS = (collections.abc.Awaitable, collections.abc.Coroutine)


def _event_types(annotation: Any, owner: str) -> List[Type[Event]]:
    """Flatten a return annotation into the Event classes it can produce."""
    if annotation is None or annotation is type(None):
        return []

    origin = typing.get_origin(annotation)
    args = typing.get_args(annotation)

    if origin is Union or origin is types.UnionType:
        found: List[Type[Event]] = []
        for arg in args:
            found.extend(t for t in _event_types(arg, owner) if t not in found)
        return found

    if origin is collections.abc.Generator:
        # Generator[Yield, Send, Return]: both yielded and returned events count
        found = _event_types(args[0], owner) if args else []
        if len(args) > 2:
            found.extend(t for t in _event_types(args[2], owner) if t not in found)
        return found

    if origin in _ITERATOR_ORIGINS:
        return _event_types(args[0], owner) if args else []

    if origin in _AWAITABLE_ORIGINS:
        return _event_types(args[-1], owner) if args else []

    if isinstance(annotation, type) and issubclass(annotation, Event):
        if annotation is Event:
            raise ConfigurationError(
                f"Node '{owner}' must declare concrete event types, not the Event base class"
            )
        if annotation is MergeEvent:
            raise ConfigurationError(
                f"Node '{owner}' cannot produce MergeEvent; it is built by the engine"
            )
        return [annotation]

    raise ConfigurationError(f"Node '{owner}' has an unsupported return annotation: {annotation!r}")


class Node:
    """Base class for workflow nodes.

    Subclasses implement ``__call__(event, state)`` and return either an
    event, an awaitable resolving to one, or a (sync or async) generator of
    events. Generators stream: every item but the terminal one is forwarded
    to ``WorkflowHandler.events()`` as an intermediate event. The terminal is
    the generator's return value when it returns one, otherwise its last
    yielded item.

    Attributes:
        accepts: Explicit input event type (overrides the annotation)
        produces: Explicit output event types (overrides the annotation)
        merge_from: For join nodes, names of the nodes whose outputs are
            collected into a single MergeEvent
    """

    accepts: Optional[Type[Event]] = None
    produces: Optional[Sequence[Type[Event]]] = None
    merge_from: Optional[Sequence[str]] = None

    _name: Optional[str] = None

    def __init__(self, name: Optional[str] = None):
        if name:
            self._name = name

    @property
    def name(self) -> str:
        """Node name, unique within a workflow. Defaults to the class name."""
        return self._name or type(self).__name__

    def __call__(self, event: Event, state: WorkflowState) -> Any:
        raise NotImplementedError(f"{type(self).__name__} must implement __call__")

    def run(self, event: Event, state: WorkflowState) -> Any:
        """Invoke the node. The result is normalized by :class:`NodeStream`."""
        return self(event, state)

    def _annotated_callable(self) -> Callable:
        return type(self).__call__

    def _skip_first_param(self) -> bool:
        return True

    def _hints(self) -> Dict[str, Any]:
        target = self._annotated_callable()
        try:
            return typing.get_type_hints(target)
        except (NameError, TypeError) as e:
            raise ConfigurationError(
                f"Cannot resolve type hints for node '{self.name}': {e}. "
                "Define event classes at module level or set accepts/produces."
            ) from e

    def resolve_accepts(self) -> Type[Event]:
        """Event type this node consumes."""
        if self.accepts is not None:
            return self.accepts

        target = self._annotated_callable()
        try:
            params = list(inspect.signature(target).parameters.values())
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Cannot inspect node '{self.name}': {e}") from e
        if self._skip_first_param():
            params = params[1:]
        if not params:
            raise ConfigurationError(f"Node '{self.name}' must accept an event argument")

        annotation = self._hints().get(params[0].name)
        if not (isinstance(annotation, type) and issubclass(annotation, Event)):
            raise ConfigurationError(
                f"Node '{self.name}' must annotate its first argument with an Event subclass"
            )
        if annotation is Event:
            raise ConfigurationError(
                f"Node '{self.name}' must accept a concrete event type, not the Event base class"
            )
        return annotation

    def resolve_produces(self) -> List[Type[Event]]:
        """Event types this node may return or yield."""
        if self.produces is not None:
            return list(self.produces)

        hints = self._hints()
        if "return" not in hints:
            raise ConfigurationError(
                f"Node '{self.name}' must annotate its return type or set produces"
            )
        produced = _event_types(hints["return"], self.name)
        if not produced:
            raise ConfigurationError(f"Node '{self.name}' does not produce any event")
        return produced

    # Execution context

    def set_workflow_context(
        self,
        state: WorkflowState,
        event: Event,
        resuming: bool = False,
        feedback: Any = None,
    ) -> None:
        """Bind the node to the invocation the engine is about to run."""
        self._state = state
        self._event = event
        self._resuming = resuming
        self._feedback = feedback if resuming else None

    def clear_workflow_context(self) -> None:
        """Forget invocation-scoped data once the node has completed."""
        self._state = None
        self._event = None
        self._resuming = False
        self._feedback = None
        self.checkpoints.clear()
        self.emitted.clear()

    @property
    def checkpoints(self) -> Dict[str, Any]:
        if "_checkpoints" not in self.__dict__:
            self._checkpoints: Dict[str, Any] = {}
        return self._checkpoints

    def restore_checkpoints(self, checkpoints: Dict[str, Any]) -> None:
        self.checkpoints.clear()
        self.checkpoints.update(checkpoints)

    @property
    def is_resuming(self) -> bool:
        """True until the resume feedback has been consumed by ``interrupt``."""
        return getattr(self, "_resuming", False)

    @property
    def feedback(self) -> Any:
        """Feedback supplied on resume, while it has not been consumed."""
        return getattr(self, "_feedback", None) if self.is_resuming else None

    def interrupt(self, request: Any = None) -> Any:
        """Suspend the run and ask a human for input.

        On the first pass this raises :class:`WorkflowInterrupt`. When the run
        is resumed, the same call returns the supplied feedback instead. Later
        calls in the same invocation raise again, so one node can ask several
        questions in sequence.

        Args:
            request: Payload describing what the human should decide

        Returns:
            The feedback passed to ``Workflow.start(resume=True, feedback=...)``
        """
        return self.interrupt_if(True, request)

    def interrupt_if(self, condition: Union[bool, Callable[[], bool]], request: Any = None) -> Any:
        """Like :meth:`interrupt`, but only suspends when ``condition`` holds."""
        if self.is_resuming:
            feedback = self._feedback
            self._resuming = False
            self._feedback = None
            return feedback

        should_interrupt = condition() if callable(condition) else bool(condition)
        if not should_interrupt:
            return None

        logger.debug("Node %s requested an interrupt", self.name)
        raise WorkflowInterrupt(
            request=request,
            current_node=self.name,
            event=getattr(self, "_event", None),
            state=getattr(self, "_state", None),
            node_checkpoints=dict(self.checkpoints),
        )

    def checkpoint(self, name: str, fn: Callable[[], Any]) -> Any:
        """Run ``fn`` once per invocation, even across interrupt and resume.

        The value is saved with the interrupt, so side effects performed
        before an interrupt are not repeated when the node is re-invoked.
        """
        if name in self.checkpoints:
            return self.checkpoints[name]
        value = fn()
        self.checkpoints[name] = value
        return value

    def emit(self, name: str, data: Any = None) -> None:
        """Publish a custom lifecycle event to the workflow's observers.

        Events are queued and delivered in order when control returns to the
        engine: after each streamed item and when the invocation ends.

        Args:
            name: Event name seen by observers
            data: Arbitrary payload
        """
        self.emitted.append((name, data))

    @property
    def emitted(self) -> List[Tuple[str, Any]]:
        if "_emitted" not in self.__dict__:
            self._emitted: List[Tuple[str, Any]] = []
        return self._emitted

    def drain_emitted(self) -> List[Tuple[str, Any]]:
        """Return and forget the events queued by :meth:`emit`."""
        drained = list(self.emitted)
        self.emitted.clear()
        return drained

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class FunctionNode(Node):
    """Adapts a plain function (sync, async or generator) into a node.

    Example:
        >>> def shout(event: TextEvent, state: WorkflowState) -> StopEvent:
        ...     return StopEvent(event.text.upper())
        >>> node = FunctionNode(shout)
        >>> node.name
        'shout'
    """

    def __init__(
        self,
        func: Callable[..., Any],
        name: Optional[str] = None,
        accepts: Optional[Type[Event]] = None,
        produces: Optional[Sequence[Type[Event]]] = None,
        merge_from: Optional[Sequence[str]] = None,
    ):
        if not callable(func):
            raise ConfigurationError(f"FunctionNode requires a callable, got {type(func).__name__}")
        self.func = func
        super().__init__(name or getattr(func, "__name__", None))
        if accepts is not None:
            self.accepts = accepts
        if produces is not None:
            self.produces = list(produces)
        if merge_from is not None:
            self.merge_from = list(merge_from)

    def __call__(self, event: Event, state: WorkflowState) -> Any:
        return self.func(event, state)

    def _annotated_callable(self) -> Callable:
        return self.func

    def _skip_first_param(self) -> bool:
        return False


class NodeStream:
    """Async cursor over a node result.

    Iterating yields intermediate events. Once iteration stops, ``terminal``
    holds the event that is routed to the next node. Awaitables are awaited,
    and generators are read one item ahead so the last one can be held back.
    """

    def __init__(self, result: Any, node_name: str):
        self.node_name = node_name
        self.terminal: Optional[Event] = None
        self._result = result
        self._prepared = False
        self._gen = None
        self._agen = None
        self._held: Any = _MISSING
        self._returned: Any = None
        self._done = False

    def __aiter__(self) -> "NodeStream":
        return self

    async def _prepare(self) -> None:
        self._prepared = True
        result = self._result
        while inspect.isawaitable(result):
            result = await result

        if inspect.isasyncgen(result):
            self._agen = result
        elif inspect.isgenerator(result):
            self._gen = result
        else:
            self._finish(result)

    async def _advance(self) -> Any:
        if self._agen is not None:
            try:
                return await self._agen.__anext__()
            except StopAsyncIteration:
                return _MISSING
        try:
            return next(self._gen)
        except StopIteration as stop:
            self._returned = stop.value
            return _MISSING

    def _finish(self, value: Any) -> None:
        self._done = True
        if value is _MISSING or value is None:
            raise WorkflowError(f"Node '{self.node_name}' finished without producing an event")
        if not isinstance(value, Event):
            raise WorkflowError(
                f"Node '{self.node_name}' returned {type(value).__name__}, expected an Event"
            )
        self.terminal = value

    async def __anext__(self) -> Any:
        if not self._prepared:
            await self._prepare()
        if self._done:
            raise StopAsyncIteration

        if self._held is _MISSING:
            self._held = await self._advance()
            if self._held is _MISSING:
                self._finish(self._returned if self._returned is not None else _MISSING)
                raise StopAsyncIteration

        upcoming = await self._advance()
        if upcoming is _MISSING:
            last, self._held = self._held, _MISSING
            if self._returned is not None:
                self._finish(self._returned)
                return last
            self._finish(last)
            raise StopAsyncIteration

        current, self._held = self._held, upcoming
        return current


def as_node(obj: Union[Node, Callable[..., Any]]) -> Node:
    """Wrap plain callables in :class:`FunctionNode`."""
    if isinstance(obj, Node):
        return obj
    if callable(obj):
        return FunctionNode(obj)
    raise ConfigurationError(f"Cannot use {type(obj).__name__} as a workflow node")
