"""
Unit tests for flow graph and execution state models.
"""
from datetime import timedelta

import pytest

from chatflow.models import (
    ExecutionState,
    ExecutionStatus,
    FlowGraph,
    FlowNode,
    WaitKind,
    WaitState,
    utcnow,
)


class TestFlowGraph:
    """Tests for graph indexing and edge resolution."""

    def test_next_node_by_branch(self, condition_flow_dict):
        """Edges are resolved by their source handle."""
        graph = FlowGraph(id="f", **condition_flow_dict)
        assert graph.next_node_id("check", "B") == "say_b"
        assert graph.next_node_id("check", "missing") is None

    def test_single_edge_fallback(self):
        """The default branch falls back to a node's only edge."""
        graph = FlowGraph(
            id="f",
            nodes=[{"id": "a", "type": "trigger"}, {"id": "b", "type": "end"}],
            edges=[{"id": "e", "source": "a", "target": "b", "sourceHandle": "out"}]
        )
        assert graph.next_node_id("a") == "b"

    def test_null_handle_is_default(self):
        """A null source handle means the default branch."""
        graph = FlowGraph(
            id="f",
            nodes=[{"id": "a", "type": "trigger"}, {"id": "b", "type": "end"}],
            edges=[{"id": "e", "source": "a", "target": "b", "sourceHandle": None}]
        )
        assert graph.edges[0].source_handle == "default"

    def test_from_rows(self):
        """Graphs load from flows / flow_nodes / flow_edges rows."""
        graph = FlowGraph.from_rows(
            {
                "id": 7,
                "name": "Promo",
                "whatsapp_config_id": "ch",
                "is_active": True,
                "is_published": True,
                "trigger_type": "keyword",
                "trigger_value": "promo",
                "priority": 3,
            },
            [
                {"id": "n1", "node_type": "trigger", "config": None},
                {"id": "n2", "node_type": "sendText", "config": {"message": "hi"}},
            ],
            [{"id": "e1", "source_node_id": "n1", "target_node_id": "n2", "source_handle": None}]
        )
        assert graph.id == "7"
        assert graph.channel_id == "ch"
        assert graph.trigger_keywords() == ["promo"]
        assert graph.get_trigger_node().id == "n1"
        assert graph.next_node_id("n1") == "n2"

    def test_parse_config_uses_aliases(self):
        """Node configs accept the editor's camelCase keys."""
        node = FlowNode(id="w", type="waitForReply", config={"variableName": "email", "timeoutSeconds": 60})
        config = node.parse_config()
        assert config.variable_name == "email"
        assert config.timeout_seconds == 60

    def test_parse_config_unknown_type(self):
        """Unknown node types cannot be parsed."""
        with pytest.raises(ValueError):
            FlowNode(id="x", type="teleport").parse_config()


class TestExecutionState:
    """Tests for the persisted execution cursor."""

    def test_record_round_trip(self):
        """A waiting state survives serialization to its stored record."""
        state = ExecutionState(conversation_id="c", channel_id="ch", flow_id="f", variables={"a": {"b": 1}})
        state.suspend(WaitState(kind=WaitKind.REPLY, node_id="ask", variable_name="name"))

        restored = ExecutionState.from_record(state.to_record())
        assert restored.status == ExecutionStatus.WAITING
        assert restored.current_node_id == "ask"
        assert restored.wait.variable_name == "name"
        assert restored.variables == {"a": {"b": 1}}

    def test_finish_requires_terminal_status(self):
        """finish() only accepts terminal statuses."""
        state = ExecutionState(conversation_id="c", channel_id="ch", flow_id="f")
        with pytest.raises(ValueError):
            state.finish(ExecutionStatus.WAITING)
        state.finish(ExecutionStatus.COMPLETED)
        assert state.is_terminal
        assert state.wait is None

    def test_wait_expiry(self):
        """A wait with expires_at in the past is expired."""
        wait = WaitState(node_id="ask", expires_at=utcnow() - timedelta(seconds=1))
        assert wait.is_expired()
        assert not WaitState(node_id="ask").is_expired()
