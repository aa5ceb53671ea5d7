"""Parallel Tools Example - concurrent tool calls with approval.

Architecture:
============

    [Plan] ──ToolCallsEvent──► [ToolNode] ──ToolResultsEvent──► [Report]
                                   ▲
                      ToolApprovalMiddleware
                   (interrupts for "send_email")

Independent tool calls run in separate processes. Calls to guarded tools are
held back until a human approves them; rejected calls come back as
``ToolRejectedError`` results instead of running.
"""

import asyncio
import time

from flowstate import (
    MemoryPersistence,
    Node,
    ProcessToolExecutor,
    StartEvent,
    StopEvent,
    ToolApprovalMiddleware,
    ToolCall,
    ToolCallsEvent,
    ToolExecutorConfig,
    ToolNode,
    ToolResultsEvent,
    Workflow,
    WorkflowInterrupt,
    WorkflowState,
)


# =============================================================================
# Tool Functions (module level so worker processes can import them)
# =============================================================================


def lookup_weather(city: str) -> str:
    time.sleep(0.5)
    return f"Sunny in {city}"


def convert_currency(amount: float, rate: float) -> float:
    time.sleep(0.5)
    return round(amount * rate, 2)


def send_email(to: str, body: str) -> str:
    return f"sent to {to}"


# =============================================================================
# Nodes
# =============================================================================


class Plan(Node):
    def __call__(self, event: StartEvent, state: WorkflowState) -> ToolCallsEvent:
        return ToolCallsEvent(
            calls=[
                ToolCall(id="weather", name="lookup_weather", arguments={"city": "Lisbon"}),
                ToolCall(id="fx", name="convert_currency", arguments={"amount": 120, "rate": 0.92}),
                ToolCall(id="email", name="send_email", arguments={"to": "ops@example.com", "body": "hi"}),
            ]
        )


class Report(Node):
    def __call__(self, event: ToolResultsEvent, state: WorkflowState) -> StopEvent:
        for call_id, result in event.results.items():
            status = result.output if result.ok else f"{result.error_type}: {result.error}"
            print(f"  {call_id:8} {status}")
        return StopEvent(event.outputs())


async def main():
    tools = ToolNode(
        [lookup_weather, convert_currency, send_email],
        executor=ProcessToolExecutor(ToolExecutorConfig(timeout=10)),
    )
    workflow = Workflow(persistence=MemoryPersistence(), workflow_id="tools-demo")
    workflow.add_nodes([Plan(), tools, Report()])
    workflow.add_middleware("ToolNode", ToolApprovalMiddleware(tools=["send_email"]))

    try:
        await workflow.start().run()
    except WorkflowInterrupt as interrupt:
        request = interrupt.request
        for action in request.actions:
            print(f"Approval needed: {action.description}")
        request.get_action("email").reject("Not during the demo")

        handler = workflow.start(resume=True, feedback=request)
        await handler.run()
        print(f"Outputs: {handler.result}")


if __name__ == "__main__":
    asyncio.run(main())
