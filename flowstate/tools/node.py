"""Tool node and tool approval middleware."""

import json
import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from flowstate.core.events import Event
from flowstate.core.state import WorkflowState
from flowstate.interrupts import Action, ApprovalRequest, InterruptRequest
from flowstate.middleware import WorkflowMiddleware
from flowstate.nodes.base import Node
from flowstate.tools.events import ToolCall, ToolCallsEvent, ToolResult, ToolResultsEvent
from flowstate.tools.executors import AsyncToolExecutor, ToolExecutor
from flowstate.utils.errors import SkipRemainingMiddleware, WorkflowError

logger = logging.getLogger(__name__)

Tools = Union[Mapping[str, Callable[..., Any]], Iterable[Callable[..., Any]]]


class ToolNode(Node):
    """Run a batch of tool calls concurrently.

    Consumes :class:`ToolCallsEvent` and produces one :class:`ToolResultsEvent`
    with a result for every requested call. The tools never see the workflow
    state; when ``result_key`` is set, successful outputs are stored there
    after the batch has finished.

    Example:
        >>> def get_weather(city: str) -> str:
        ...     return f"Sunny in {city}"
        >>> node = ToolNode([get_weather], executor=ThreadToolExecutor())
    """

    accepts = ToolCallsEvent
    produces = [ToolResultsEvent]

    def __init__(
        self,
        tools: Tools,
        executor: Optional[ToolExecutor] = None,
        name: Optional[str] = None,
        result_key: Optional[str] = None,
    ):
        super().__init__(name)
        if isinstance(tools, Mapping):
            self.tools: Dict[str, Callable[..., Any]] = dict(tools)
        else:
            self.tools = {func.__name__: func for func in tools}
        self.executor = executor or AsyncToolExecutor()
        self.result_key = result_key
        self._rejections: Dict[str, str] = {}

    def reject(self, call_id: str, reason: str = "Rejected by user") -> None:
        """Replace one call of the current batch with a rejection result."""
        self._rejections[call_id] = reason

    async def __call__(self, event: ToolCallsEvent, state: WorkflowState) -> ToolResultsEvent:
        try:
            runnable = [call for call in event.calls if call.id not in self._rejections]
            executed = await self.executor.execute(runnable, self.tools)

            results: Dict[str, ToolResult] = {}
            for call in event.calls:
                if call.id in self._rejections:
                    results[call.id] = ToolResult.failure(
                        call, self._rejections[call.id], "ToolRejectedError"
                    )
                else:
                    results[call.id] = executed[call.id]
        finally:
            self._rejections.clear()

        result_event = ToolResultsEvent(results=results)
        if result_event.has_errors:
            logger.info("Tool batch finished with %d failed calls", len(result_event.failed))
        if self.result_key:
            state.set(self.result_key, result_event.outputs())
        return result_event


def _describe_call(call: ToolCall) -> str:
    try:
        arguments = json.dumps(call.arguments, sort_keys=True)
    except TypeError:
        arguments = repr(call.arguments)
    return f"{call.name}({arguments})"


class ToolApprovalMiddleware(WorkflowMiddleware):
    """Ask a human to approve tool calls before a ToolNode runs them.

    The first pass interrupts with an :class:`ApprovalRequest` holding one
    :class:`Action` per guarded call. Resume with the same request, decisions
    filled in. Calls whose action is rejected (or left pending) are replaced
    by rejection results and the remaining ``before`` hooks are skipped.

    Args:
        tools: Names of the tools that need approval (all tools if None)
        message: Message shown with the approval request
    """

    def __init__(self, tools: Optional[Iterable[str]] = None, message: Optional[str] = None):
        self.tools = set(tools) if tools is not None else None
        self.message = message

    def _requires_approval(self, call: ToolCall) -> bool:
        return self.tools is None or call.name in self.tools

    def before(self, node: Any, event: Event, state: WorkflowState) -> None:
        if not isinstance(node, ToolNode) or not isinstance(event, ToolCallsEvent):
            return

        guarded = [call for call in event.calls if self._requires_approval(call)]
        if not guarded:
            return

        request = ApprovalRequest(
            actions=[
                Action(id=call.id, name=call.name, description=_describe_call(call))
                for call in guarded
            ]
        )
        if self.message:
            request.message = self.message

        decision = node.interrupt(request)
        if not isinstance(decision, InterruptRequest):
            raise WorkflowError(
                f"Tool approval expects an InterruptRequest as feedback, got {type(decision).__name__}"
            )

        for call in guarded:
            action = decision.get_action(call.id)
            if action is None or action.is_rejected or action.is_pending:
                reason = (action.feedback if action is not None else None) or "Rejected by user"
                node.reject(call.id, reason)
                logger.info("Tool call %s (%s) rejected", call.id, call.name)

        raise SkipRemainingMiddleware("Tool approval resolved")
