"""Middleware hooks wrapped around node invocations."""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from flowstate.core.events import Event
from flowstate.core.observer import (
    MIDDLEWARE_AFTER_END,
    MIDDLEWARE_AFTER_START,
    MIDDLEWARE_BEFORE_END,
    MIDDLEWARE_BEFORE_START,
)
from flowstate.core.state import WorkflowState
from flowstate.utils.errors import SkipRemainingMiddleware

logger = logging.getLogger(__name__)

Notify = Callable[[str, str, Any], Awaitable[None]]


class WorkflowMiddleware:
    """Base class for middleware.

    Override ``before`` and/or ``after``. Either hook may be a coroutine.
    ``before`` runs after the node has been bound to the current invocation,
    so it may call ``node.interrupt(...)``. Raising
    :class:`SkipRemainingMiddleware` from ``before`` ends the before chain for
    this invocation.
    """

    def before(self, node: Any, event: Event, state: WorkflowState) -> Any:
        return None

    def after(self, node: Any, result: Event, state: WorkflowState) -> Any:
        return None


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class MiddlewarePipeline:
    """Ordered global and per-node middleware.

    Global middleware runs first, then node-specific middleware, each in
    registration order.
    """

    def __init__(self):
        self._global: List[WorkflowMiddleware] = []
        self._by_node: Dict[str, List[WorkflowMiddleware]] = {}

    def add_global(self, middleware: Union[WorkflowMiddleware, Iterable[WorkflowMiddleware]]) -> None:
        if isinstance(middleware, WorkflowMiddleware):
            middleware = [middleware]
        self._global.extend(middleware)

    def add(
        self,
        node_names: Union[str, Iterable[str]],
        middleware: Union[WorkflowMiddleware, Iterable[WorkflowMiddleware]],
    ) -> None:
        if isinstance(node_names, str):
            node_names = [node_names]
        if isinstance(middleware, WorkflowMiddleware):
            middleware = [middleware]
        middleware = list(middleware)
        for name in node_names:
            self._by_node.setdefault(name, []).extend(middleware)

    def for_node(self, node_name: str) -> List[WorkflowMiddleware]:
        return self._global + self._by_node.get(node_name, [])

    def node_names(self) -> List[str]:
        return list(self._by_node)

    async def run_before(
        self, node: Any, event: Event, state: WorkflowState, notify: Optional[Notify] = None
    ) -> None:
        """Run the before hooks for ``node``.

        Args:
            node: Node about to be invoked
            event: Event delivered to it
            state: Live workflow state
            notify: Called as ``notify(name, node_name, data)`` around each hook
        """
        for middleware in self.for_node(node.name):
            if notify is not None:
                await notify(MIDDLEWARE_BEFORE_START, node.name, {"middleware": middleware, "event": event})
            try:
                await _maybe_await(middleware.before(node, event, state))
            except SkipRemainingMiddleware as e:
                logger.debug(
                    "%s skipped remaining middleware for %s: %s",
                    type(middleware).__name__,
                    node.name,
                    e,
                )
                if notify is not None:
                    await notify(MIDDLEWARE_BEFORE_END, node.name, {"middleware": middleware})
                break
            if notify is not None:
                await notify(MIDDLEWARE_BEFORE_END, node.name, {"middleware": middleware})

    async def run_after(
        self, node: Any, result: Event, state: WorkflowState, notify: Optional[Notify] = None
    ) -> None:
        for middleware in self.for_node(node.name):
            if notify is not None:
                await notify(MIDDLEWARE_AFTER_START, node.name, {"middleware": middleware, "event": result})
            await _maybe_await(middleware.after(node, result, state))
            if notify is not None:
                await notify(MIDDLEWARE_AFTER_END, node.name, {"middleware": middleware})
