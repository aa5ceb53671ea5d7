"""Tests for the middleware pipeline.

Tests cover:
- Global and node-specific ordering of before/after hooks
- SkipRemainingMiddleware semantics
- After hooks seeing the terminal event of streaming nodes
- Node errors bypassing hooks
- Async hooks and interrupts raised from hooks
"""

import asyncio

import pytest

from flowstate import (
    MiddlewarePipeline,
    SkipRemainingMiddleware,
    Workflow,
    WorkflowInterrupt,
    WorkflowMiddleware,
)

from stubs import AsyncNode, FailingNode, NodeForSecond, NodeOne, NodeTwo, SecondEvent


class Recorder(WorkflowMiddleware):
    """Appends '<label>:<phase>:<node>' entries to state['log']."""

    def __init__(self, label: str):
        self.label = label

    def before(self, node, event, state):
        state.append("log", f"{self.label}:before:{node.name}")

    def after(self, node, result, state):
        state.append("log", f"{self.label}:after:{node.name}")


class Skipper(Recorder):
    def before(self, node, event, state):
        super().before(node, event, state)
        raise SkipRemainingMiddleware("enough")


class AsyncRecorder(WorkflowMiddleware):
    async def before(self, node, event, state):
        await asyncio.sleep(0)
        state.append("async_log", f"before:{node.name}")

    async def after(self, node, result, state):
        await asyncio.sleep(0)
        state.append("async_log", f"after:{type(result).__name__}")


class ResultCapture(WorkflowMiddleware):
    def after(self, node, result, state):
        state.set(f"result_of_{node.name}", result)


class Gate(WorkflowMiddleware):
    """Asks for permission before the node runs."""

    def before(self, node, event, state):
        state.set("gate_answer", node.interrupt(f"allow {node.name}?"))


def linear_workflow(**kwargs) -> Workflow:
    return Workflow(**kwargs).add_nodes([NodeOne(), AsyncNode(), NodeForSecond()])


# =============================================================================
# Ordering Tests
# =============================================================================


class TestMiddlewareOrdering:
    """Tests for hook ordering."""

    @pytest.mark.asyncio
    async def test_global_runs_around_every_node(self):
        """Test global middleware wraps each invocation."""
        workflow = linear_workflow().add_global_middleware(Recorder("g"))
        final = await workflow.start().run()

        assert final["log"] == [
            "g:before:NodeOne",
            "g:after:NodeOne",
            "g:before:AsyncNode",
            "g:after:AsyncNode",
            "g:before:NodeForSecond",
            "g:after:NodeForSecond",
        ]

    @pytest.mark.asyncio
    async def test_global_then_node_specific(self):
        """Test registration order within each group, globals first."""
        workflow = linear_workflow()
        workflow.add_middleware("AsyncNode", [Recorder("n1"), Recorder("n2")])
        workflow.add_global_middleware([Recorder("g1"), Recorder("g2")])

        final = await workflow.start().run()
        async_entries = [entry for entry in final["log"] if entry.endswith(":AsyncNode")]

        assert async_entries == [
            "g1:before:AsyncNode",
            "g2:before:AsyncNode",
            "n1:before:AsyncNode",
            "n2:before:AsyncNode",
            "g1:after:AsyncNode",
            "g2:after:AsyncNode",
            "n1:after:AsyncNode",
            "n2:after:AsyncNode",
        ]

    @pytest.mark.asyncio
    async def test_middleware_for_several_nodes(self):
        """Test one middleware can target several nodes by name."""
        workflow = linear_workflow().add_middleware(["NodeOne", "NodeForSecond"], Recorder("m"))
        final = await workflow.start().run()

        assert final["log"] == [
            "m:before:NodeOne",
            "m:after:NodeOne",
            "m:before:NodeForSecond",
            "m:after:NodeForSecond",
        ]

    def test_pipeline_for_node(self):
        """Test the pipeline's per-node view."""
        pipeline = MiddlewarePipeline()
        first, second, third = Recorder("a"), Recorder("b"), Recorder("c")
        pipeline.add_global(first)
        pipeline.add("NodeOne", second)
        pipeline.add(["NodeOne", "NodeTwo"], third)

        assert pipeline.for_node("NodeOne") == [first, second, third]
        assert pipeline.for_node("NodeTwo") == [first, third]
        assert pipeline.for_node("Other") == [first]
        assert pipeline.node_names() == ["NodeOne", "NodeTwo"]


# =============================================================================
# Skip Tests
# =============================================================================


class TestSkipRemaining:
    """Tests for SkipRemainingMiddleware."""

    @pytest.mark.asyncio
    async def test_skip_stops_before_chain_only(self):
        """Test later before hooks are skipped but every after hook runs."""
        workflow = linear_workflow()
        workflow.add_middleware("AsyncNode", [Recorder("first"), Skipper("skip"), Recorder("last")])

        final = await workflow.start().run()

        assert final["log"] == [
            "first:before:AsyncNode",
            "skip:before:AsyncNode",
            "first:after:AsyncNode",
            "skip:after:AsyncNode",
            "last:after:AsyncNode",
        ]
        assert final["final_second_message"] == "async: First event"

    @pytest.mark.asyncio
    async def test_skip_is_per_invocation(self):
        """Test a skip on one node does not affect the next node."""
        workflow = linear_workflow()
        workflow.add_global_middleware([Skipper("skip"), Recorder("after_skip")])

        final = await workflow.start().run()
        befores = [entry for entry in final["log"] if ":before:" in entry]

        assert befores == [
            "skip:before:NodeOne",
            "skip:before:AsyncNode",
            "skip:before:NodeForSecond",
        ]
        assert len([entry for entry in final["log"] if entry.startswith("after_skip:after")]) == 3


# =============================================================================
# Hook Behaviour Tests
# =============================================================================


class TestHookBehaviour:
    """Tests for what hooks see and when they run."""

    @pytest.mark.asyncio
    async def test_after_sees_streaming_terminal(self):
        """Test after hooks run once the stream is drained, with the terminal."""
        workflow = Workflow().add_nodes([NodeOne(), NodeTwo(), NodeForSecond()])
        workflow.add_middleware("NodeTwo", ResultCapture())

        final = await workflow.start().run()

        assert final["result_of_NodeTwo"] == SecondEvent(message="Second complete")

    @pytest.mark.asyncio
    async def test_async_hooks(self):
        """Test coroutine hooks are awaited."""
        workflow = linear_workflow().add_middleware("NodeForSecond", AsyncRecorder())
        final = await workflow.start().run()

        assert final["async_log"] == ["before:NodeForSecond", "after:StopEvent"]

    @pytest.mark.asyncio
    async def test_node_error_bypasses_after_hooks(self):
        """Test node errors propagate and after hooks do not run."""
        workflow = Workflow().add_nodes([NodeOne(), FailingNode(), NodeForSecond()])
        workflow.add_middleware("FailingNode", Recorder("m"))

        with pytest.raises(ValueError, match="boom"):
            await workflow.start().run()

        assert workflow.state["log"] == ["m:before:FailingNode"]

    @pytest.mark.asyncio
    async def test_before_hook_error_propagates(self):
        """Test errors raised by hooks are not swallowed."""

        class Broken(WorkflowMiddleware):
            def before(self, node, event, state):
                raise RuntimeError("hook failed")

        workflow = linear_workflow().add_global_middleware(Broken())

        with pytest.raises(RuntimeError, match="hook failed"):
            await workflow.start().run()
        assert "node_one_ran" not in workflow.state

    @pytest.mark.asyncio
    async def test_interrupt_from_before_hook(self, memory_backend):
        """Test a hook can suspend the run and receive the resume feedback."""
        workflow = linear_workflow(persistence=memory_backend, workflow_id="gated")
        workflow.add_middleware("AsyncNode", Gate())

        with pytest.raises(WorkflowInterrupt) as exc_info:
            await workflow.start().run()

        assert exc_info.value.current_node == "AsyncNode"
        assert exc_info.value.request == "allow AsyncNode?"
        assert "final_second_message" not in workflow.state

        final = await workflow.start(resume=True, feedback="yes").run()

        assert final["gate_answer"] == "yes"
        assert final["final_second_message"] == "async: First event"
