"""Tests for workflow lifecycle observers.

Tests cover:
- Event order for completed, suspended, resumed and failed runs
- Middleware hook events
- Custom events published by nodes
- Per-workflow scoping of listeners on a shared emitter
- Async listeners and failing listeners
"""

import asyncio
from typing import Iterator

import pytest

from flowstate import (
    EventEmitter,
    LifecycleEvent,
    Node,
    SkipRemainingMiddleware,
    StopEvent,
    Workflow,
    WorkflowInterrupt,
    WorkflowMiddleware,
    WorkflowState,
)

from stubs import (
    AsyncNode,
    FailingNode,
    FirstEvent,
    InterruptableNode,
    NodeForSecond,
    NodeOne,
    SecondEvent,
)


class ProgressNode(Node):
    """Publishes progress while streaming."""

    def __call__(self, event: FirstEvent, state: WorkflowState) -> Iterator[SecondEvent]:
        self.emit("progress", 1)
        yield SecondEvent(message="chunk")
        self.emit("progress", 2)
        yield SecondEvent(message="done")


class AnnouncingInterruptNode(Node):
    def __call__(self, event: FirstEvent, state: WorkflowState) -> SecondEvent:
        self.emit("asking", {"question": "ok?"})
        answer = self.interrupt("ok?")
        return SecondEvent(message=str(answer))


class Noop(WorkflowMiddleware):
    pass


class Skip(WorkflowMiddleware):
    def before(self, node, event, state):
        raise SkipRemainingMiddleware()


def recorder():
    """Return (seen, listener) where listener appends every event to seen."""
    seen = []
    return seen, seen.append


def trace(seen):
    return [(event.name, event.node) for event in seen]


# =============================================================================
# Run Lifecycle
# =============================================================================


class TestRunLifecycle:
    """Tests for the order of lifecycle events."""

    @pytest.mark.asyncio
    async def test_completed_run(self):
        """Test start, one start/end pair per node, then end."""
        seen, listener = recorder()
        workflow = Workflow().add_nodes([NodeOne(), AsyncNode(), NodeForSecond()])
        workflow.observe(listener)

        await workflow.start().run()

        assert trace(seen) == [
            ("workflow-start", None),
            ("workflow-node-start", "NodeOne"),
            ("workflow-node-end", "NodeOne"),
            ("workflow-node-start", "AsyncNode"),
            ("workflow-node-end", "AsyncNode"),
            ("workflow-node-start", "NodeForSecond"),
            ("workflow-node-end", "NodeForSecond"),
            ("workflow-end", None),
        ]
        assert all(event.workflow_id == workflow.workflow_id for event in seen)
        assert isinstance(seen[1].data, type(workflow.start_event))
        assert seen[-2].data == StopEvent("async: First event")
        assert seen[-1].data is workflow.state

    @pytest.mark.asyncio
    async def test_suspended_run(self, memory_backend):
        """Test a suspension reports a non-critical error after the snapshot is saved."""
        saved_at_error = []

        async def listener(event: LifecycleEvent):
            if event.name == "error":
                saved_at_error.append(await memory_backend.exists(event.workflow_id))

        seen, record = recorder()
        workflow = Workflow(persistence=memory_backend, workflow_id="observed")
        workflow.add_nodes([NodeOne(), InterruptableNode(), NodeForSecond()])
        workflow.observe(record).observe(listener)

        with pytest.raises(WorkflowInterrupt):
            await workflow.start().run()

        assert trace(seen) == [
            ("workflow-start", None),
            ("workflow-node-start", "NodeOne"),
            ("workflow-node-end", "NodeOne"),
            ("workflow-node-start", "InterruptableNode"),
            ("error", "InterruptableNode"),
            ("workflow-end", None),
        ]
        assert seen[4].data["critical"] is False
        assert isinstance(seen[4].data["error"], WorkflowInterrupt)
        assert saved_at_error == [True]

    @pytest.mark.asyncio
    async def test_resumed_run(self, memory_backend):
        """Test a resume starts with workflow-resume at the suspended node."""
        workflow = Workflow(persistence=memory_backend, workflow_id="observed")
        workflow.add_nodes([NodeOne(), InterruptableNode(), NodeForSecond()])
        with pytest.raises(WorkflowInterrupt):
            await workflow.start().run()

        seen, listener = recorder()
        workflow.observe(listener)
        await workflow.start(resume=True, feedback="yes").run()

        assert trace(seen) == [
            ("workflow-resume", None),
            ("workflow-node-start", "InterruptableNode"),
            ("workflow-node-end", "InterruptableNode"),
            ("workflow-node-start", "NodeForSecond"),
            ("workflow-node-end", "NodeForSecond"),
            ("workflow-end", None),
        ]

    @pytest.mark.asyncio
    async def test_failed_run(self):
        """Test a node error is reported as critical and still ends the run."""
        seen, listener = recorder()
        workflow = Workflow().add_nodes([NodeOne(), FailingNode(), NodeForSecond()])
        workflow.observe(listener)

        with pytest.raises(ValueError, match="boom"):
            await workflow.start().run()

        assert trace(seen) == [
            ("workflow-start", None),
            ("workflow-node-start", "NodeOne"),
            ("workflow-node-end", "NodeOne"),
            ("workflow-node-start", "FailingNode"),
            ("error", None),
            ("workflow-end", None),
        ]
        assert seen[4].data["critical"] is True
        assert isinstance(seen[4].data["error"], ValueError)

    @pytest.mark.asyncio
    async def test_execute_reports_suspension_too(self, memory_backend):
        """Test execute() publishes the same events as run()."""
        seen, listener = recorder()
        workflow = Workflow(persistence=memory_backend, workflow_id="observed")
        workflow.add_nodes([NodeOne(), InterruptableNode(), NodeForSecond()]).observe(listener)

        outcome = await workflow.start().execute()

        assert outcome.suspended
        assert [event.name for event in seen][-2:] == ["error", "workflow-end"]


# =============================================================================
# Middleware Events
# =============================================================================


class TestMiddlewareEvents:
    """Tests for events around middleware hooks."""

    @pytest.mark.asyncio
    async def test_hooks_are_bracketed(self):
        """Test before/after hooks each publish a start and end event."""
        seen, listener = recorder()
        middleware = Noop()
        workflow = Workflow().add_nodes([NodeOne(), AsyncNode(), NodeForSecond()])
        workflow.add_middleware("AsyncNode", middleware).observe(listener)

        await workflow.start().run()

        around_async = [
            event.name for event in seen if event.node == "AsyncNode"
        ]
        assert around_async == [
            "workflow-node-start",
            "middleware-before-start",
            "middleware-before-end",
            "middleware-after-start",
            "middleware-after-end",
            "workflow-node-end",
        ]
        before_start = next(e for e in seen if e.name == "middleware-before-start")
        assert before_start.data["middleware"] is middleware
        assert before_start.data["event"] == FirstEvent(message="First event")

    @pytest.mark.asyncio
    async def test_skipped_hooks_publish_nothing(self):
        """Test hooks after a skip do not appear."""
        seen, listener = recorder()
        skipper, skipped = Skip(), Noop()
        workflow = Workflow().add_nodes([NodeOne(), AsyncNode(), NodeForSecond()])
        workflow.add_middleware("AsyncNode", [skipper, skipped]).observe(listener)

        await workflow.start().run()

        before = [
            event.data["middleware"]
            for event in seen
            if event.name in ("middleware-before-start", "middleware-before-end")
        ]
        assert before == [skipper, skipper]


# =============================================================================
# Node Events
# =============================================================================


class TestNodeEmit:
    """Tests for custom events published with Node.emit."""

    @pytest.mark.asyncio
    async def test_streaming_node_progress(self):
        """Test custom events arrive in order between node start and end."""
        seen, listener = recorder()
        workflow = Workflow().add_nodes([NodeOne(), ProgressNode(), NodeForSecond()])
        workflow.observe(listener)

        await workflow.start().run()

        names = [event.name for event in seen if event.node == "ProgressNode"]
        assert names == ["workflow-node-start", "progress", "progress", "workflow-node-end"]
        assert [event.data for event in seen if event.name == "progress"] == [1, 2]

    @pytest.mark.asyncio
    async def test_emit_before_interrupt_is_delivered(self, memory_backend):
        """Test events published before an interrupt come before the error."""
        seen, listener = recorder()
        workflow = Workflow(persistence=memory_backend, workflow_id="asking")
        workflow.add_nodes([NodeOne(), AnnouncingInterruptNode(), NodeForSecond()]).observe(listener)

        with pytest.raises(WorkflowInterrupt):
            await workflow.start().run()

        assert [event.name for event in seen][-3:] == ["asking", "error", "workflow-end"]
        assert seen[-3].data == {"question": "ok?"}

    def test_emit_outside_a_run_is_queued(self):
        """Test emit only queues; the engine delivers."""
        node = ProgressNode()
        node.emit("early", 1)

        assert node.drain_emitted() == [("early", 1)]
        assert node.drain_emitted() == []


# =============================================================================
# Listener Scoping
# =============================================================================


class TestListenerScoping:
    """Tests for listeners on shared emitters."""

    @pytest.mark.asyncio
    async def test_observers_only_see_their_workflow(self, memory_backend):
        """Test two workflows sharing an emitter keep their observers apart."""
        emitter = EventEmitter()
        everything, global_listener = recorder()
        emitter.on(global_listener)

        first_seen, first_listener = recorder()
        second_seen, second_listener = recorder()
        first = Workflow(persistence=memory_backend, workflow_id="first", emitter=emitter)
        second = Workflow(persistence=memory_backend, workflow_id="second", emitter=emitter)
        for workflow in (first, second):
            workflow.add_nodes([NodeOne(), AsyncNode(), NodeForSecond()])
        first.observe(first_listener)
        second.observe(second_listener)

        await asyncio.gather(first.start().run(), second.start().run())

        assert {event.workflow_id for event in first_seen} == {"first"}
        assert {event.workflow_id for event in second_seen} == {"second"}
        assert len(everything) == len(first_seen) + len(second_seen)

    @pytest.mark.asyncio
    async def test_changing_workflow_id_keeps_observers(self, memory_backend):
        """Test set_persistence moves observers to the new id."""
        seen, listener = recorder()
        workflow = Workflow().add_nodes([NodeOne(), AsyncNode(), NodeForSecond()]).observe(listener)
        workflow.set_persistence(memory_backend, workflow_id="renamed")

        await workflow.start().run()

        assert seen
        assert {event.workflow_id for event in seen} == {"renamed"}

    def test_off_and_clear(self):
        """Test listeners can be removed individually or by scope."""
        emitter = EventEmitter()
        a, b, c = (lambda e: None), (lambda e: None), (lambda e: None)
        emitter.on(a, workflow_id="one")
        emitter.on(b, workflow_id="two")
        emitter.on(c)

        assert emitter.listeners("one") == [a, c]
        emitter.off(a)
        assert emitter.listeners("one") == [c]
        emitter.clear("two")
        assert emitter.listeners() == [c]
        emitter.clear()
        assert emitter.listeners() == []


# =============================================================================
# Listener Behaviour
# =============================================================================


class TestListenerBehaviour:
    """Tests for how listeners are called."""

    @pytest.mark.asyncio
    async def test_async_listener(self):
        """Test coroutine listeners are awaited."""
        names = []

        async def listener(event):
            await asyncio.sleep(0)
            names.append(event.name)

        workflow = Workflow().add_nodes([NodeOne(), AsyncNode(), NodeForSecond()]).observe(listener)
        await workflow.start().run()

        assert names[0] == "workflow-start"
        assert names[-1] == "workflow-end"

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_the_run(self, caplog):
        """Test listener errors are logged and later listeners still run."""
        seen, listener = recorder()

        def broken(event):
            raise RuntimeError("listener bug")

        workflow = Workflow().add_nodes([NodeOne(), AsyncNode(), NodeForSecond()])
        workflow.observe(broken).observe(listener)

        final = await workflow.start().run()

        assert final["node_one_ran"] is True
        assert seen[-1].name == "workflow-end"
        assert "Error in lifecycle listener" in caplog.text
