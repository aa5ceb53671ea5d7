"""Tests for value serialization and interrupt records.

Tests cover:
- Primitive, container and model round trips
- Nested events keeping their concrete type
- Error handling for unsupported values
- WorkflowInterrupt to_dict/from_dict
"""

import json
from datetime import datetime

import pytest

from flowstate import (
    Action,
    ApprovalRequest,
    InterruptRequest,
    MergeEvent,
    SerializationError,
    StopEvent,
    WorkflowInterrupt,
    WorkflowState,
)
from flowstate.serialization import dump_value, from_json, import_class, load_value, to_json

from stubs import (
    BranchAEvent,
    BranchBEvent,
    CustomState,
    FirstEvent,
    NestedEvent,
    SecondEvent,
    TaggedEvent,
)


# =============================================================================
# Value Tests
# =============================================================================


class TestDumpLoad:
    """Tests for dump_value/load_value."""

    def test_plain_json_values_pass_through(self):
        """Test JSON-native values are unchanged."""
        value = {"a": [1, 2.5, "x", None, True], "b": {"c": "d"}}
        assert dump_value(value) == value
        assert load_value(dump_value(value)) == value

    def test_event_envelope(self):
        """Test events are wrapped with their type tag."""
        dumped = dump_value(FirstEvent(message="hi"))

        assert dumped == {"__event__": FirstEvent.type_tag(), "data": {"message": "hi"}}
        assert load_value(dumped) == FirstEvent(message="hi")

    def test_nested_event_keeps_subclass(self):
        """Test an event inside another event is restored as its subclass."""
        event = NestedEvent(inner=FirstEvent(message="inner"), tags=["x"])
        restored = from_json(to_json(event))

        assert isinstance(restored, NestedEvent)
        assert isinstance(restored.inner, FirstEvent)
        assert restored == event

    def test_merge_event_contributions(self):
        """Test MergeEvent contributions survive with their types."""
        merged = MergeEvent(
            events={"BranchA": BranchAEvent(value="a"), "BranchB": BranchBEvent(value="b")}
        )
        restored = from_json(to_json(merged))

        assert isinstance(restored["BranchA"], BranchAEvent)
        assert restored.node_names() == ["BranchA", "BranchB"]

    def test_custom_tag(self):
        """Test events with a custom tag are resolved through the registry."""
        restored = from_json(to_json(TaggedEvent(payload="p")))
        assert restored == TaggedEvent(payload="p")

    def test_stop_event_result(self):
        """Test StopEvent results of any serializable shape."""
        restored = from_json(to_json(StopEvent(result={"items": [SecondEvent(message="s")]})))
        assert restored.result["items"][0] == SecondEvent(message="s")

    def test_tuples_and_datetimes(self):
        """Test values JSON would lose the type of."""
        when = datetime(2024, 5, 1, 12, 30)
        restored = from_json(to_json({"pair": (1, "two"), "when": when}))

        assert restored == {"pair": (1, "two"), "when": when}

    def test_dict_with_reserved_key(self):
        """Test user dicts that look like envelopes are escaped."""
        value = {"__event__": "not really", "data": 1}
        assert from_json(to_json(value)) == value

    def test_pydantic_models(self):
        """Test non-event models use their import path."""
        request = ApprovalRequest(actions=[Action(id="1", name="search").approve("ok")])
        restored = from_json(to_json(request))

        assert isinstance(restored, ApprovalRequest)
        assert restored.get_action("1").is_approved
        assert restored.get_action("1").feedback == "ok"

    def test_output_is_json(self):
        """Test the dumped form is plain JSON."""
        text = to_json({"event": FirstEvent(message="x"), "n": (1,)})
        assert isinstance(json.loads(text), dict)


class TestSerializationErrors:
    """Tests for unsupported values."""

    def test_unsupported_type(self):
        """Test arbitrary objects are rejected."""
        with pytest.raises(SerializationError, match="Cannot serialize"):
            dump_value({"value": object()})

    def test_non_string_keys(self):
        """Test dictionaries must have string keys."""
        with pytest.raises(SerializationError, match="keys must be strings"):
            dump_value({1: "one"})

    def test_unknown_event_tag(self):
        """Test unknown tags raise instead of returning raw data."""
        with pytest.raises(SerializationError):
            load_value({"__event__": "no.such.tag", "data": {}})

    def test_unknown_module(self):
        """Test missing modules are reported."""
        with pytest.raises(SerializationError, match="Cannot import module"):
            import_class("flowstate_missing_module:Thing")

    def test_invalid_json(self):
        """Test malformed JSON raises SerializationError."""
        with pytest.raises(SerializationError):
            from_json("{not json")


# =============================================================================
# Interrupt Record Tests
# =============================================================================


class TestInterruptRecord:
    """Tests for WorkflowInterrupt serialization."""

    def test_round_trip(self):
        """Test every field survives to_dict/from_dict through JSON."""
        state = WorkflowState({"topic": "billing", "history": [FirstEvent(message="a")]})
        original = WorkflowInterrupt(
            request=InterruptRequest(message="Approve?"),
            current_node="InterruptableNode",
            event=FirstEvent(message="First event"),
            state=state,
            workflow_id="wf-1",
            node_checkpoints={"token": "token-1"},
            pending=[("BranchA", SecondEvent(message="queued"))],
            merge_buffers={"Joiner": {"BranchB": BranchBEvent(value="b")}},
        )

        restored = WorkflowInterrupt.from_dict(json.loads(json.dumps(original.to_dict())))

        assert restored.workflow_id == "wf-1"
        assert restored.current_node == "InterruptableNode"
        assert restored.event == FirstEvent(message="First event")
        assert restored.state == state
        assert isinstance(restored.state["history"][0], FirstEvent)
        assert restored.request.message == "Approve?"
        assert restored.node_checkpoints == {"token": "token-1"}
        assert restored.pending == [("BranchA", SecondEvent(message="queued"))]
        assert restored.merge_buffers == {"Joiner": {"BranchB": BranchBEvent(value="b")}}
        assert restored.created_at == original.created_at
        assert restored.feedback is None

    def test_record_keys(self):
        """Test the persisted record layout."""
        record = WorkflowInterrupt(current_node="N", event=FirstEvent(), workflow_id="w").to_dict()

        for key in ("workflow_id", "current_node", "event", "state", "feedback", "created_at"):
            assert key in record

    def test_state_subclass_restored(self):
        """Test custom WorkflowState subclasses come back as themselves."""
        interrupt = WorkflowInterrupt(current_node="N", state=CustomState({"counter": 3}))
        restored = WorkflowInterrupt.from_dict(interrupt.to_dict())

        assert isinstance(restored.state, CustomState)
        assert restored.state.counter() == 3

    def test_message_includes_node_and_request(self):
        """Test the exception message is informative."""
        interrupt = WorkflowInterrupt(
            request=InterruptRequest(message="Approve?"), current_node="Reviewer"
        )
        assert str(interrupt) == "Workflow interrupted at node 'Reviewer': Approve?"
