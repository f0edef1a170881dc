"""
Unit tests for FlowValidator.
"""
from chatflow.flow.validator import FlowValidator
from chatflow.models import FlowGraph
from tests.helpers import build_flow


def codes(graph: FlowGraph):
    return {error.code for error in FlowValidator.validate(graph)}


class TestFlowValidator:
    """Tests for graph validation."""

    def test_valid_flow(self, greeting_flow):
        """A well-formed flow has no errors."""
        assert FlowValidator.is_valid(greeting_flow)
        assert FlowValidator.validate(greeting_flow) == []

    def test_missing_trigger(self):
        """A flow must have a trigger node."""
        graph = build_flow("f", [{"id": "a", "type": "sendText", "config": {"message": "x"}}], [])
        assert "MISSING_TRIGGER" in codes(graph)
        assert not FlowValidator.is_valid(graph)

    def test_unknown_node_type(self):
        """Unknown node types are rejected."""
        nodes = [{"id": "t", "type": "trigger"}, {"id": "x", "type": "teleport"}]
        graph = build_flow("f", nodes, [{"id": "e", "source": "t", "target": "x"}])
        assert "INVALID_NODE_TYPE" in codes(graph)

    def test_invalid_config(self):
        """Configs that do not match their node type are rejected."""
        nodes = [
            {"id": "t", "type": "trigger"},
            {"id": "d", "type": "delay", "config": {"delaySeconds": "soon"}},
        ]
        graph = build_flow("f", nodes, [{"id": "e", "source": "t", "target": "d"}])
        assert "INVALID_CONFIG" in codes(graph)

    def test_dangling_edge(self):
        """Edges must point at existing nodes."""
        nodes = [{"id": "t", "type": "trigger"}]
        graph = build_flow("f", nodes, [{"id": "e", "source": "t", "target": "ghost"}])
        assert "DANGLING_EDGE" in codes(graph)

    def test_condition_without_default_branch(self, condition_flow_dict):
        """A condition node needs an edge on its default handle."""
        edges = [e for e in condition_flow_dict["edges"] if e.get("sourceHandle") != "C"]
        graph = build_flow("f", condition_flow_dict["nodes"], edges)
        assert "MISSING_DEFAULT_BRANCH" in codes(graph)

    def test_condition_with_default_branch(self, condition_flow_dict):
        """The complete condition flow validates."""
        graph = build_flow("f", condition_flow_dict["nodes"], condition_flow_dict["edges"])
        assert FlowValidator.is_valid(graph)

    def test_unreachable_node_is_warning(self):
        """Unreachable nodes are reported as warnings only."""
        nodes = [{"id": "t", "type": "trigger"}, {"id": "lost", "type": "sendText", "config": {"message": "x"}}]
        graph = build_flow("f", nodes, [])
        errors = FlowValidator.validate(graph)
        assert [e.code for e in errors] == ["UNREACHABLE_NODE"]
        assert errors[0].severity == "warning"
        assert FlowValidator.is_valid(graph)
