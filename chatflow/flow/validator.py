"""
Flow Validator - structural checks run before a graph reaches the engine
"""
import logging
from datetime import datetime
from typing import List, Dict, Any, Optional, Set

from pydantic import ValidationError

from ..models.flow import FlowGraph, NodeType, NODE_CONFIG_MODELS, ConditionConfig

logger = logging.getLogger(__name__)


class FlowValidationError:
    """Represents a validation error"""

    def __init__(
        self,
        code: str,
        message: str,
        node_id: Optional[str] = None,
        severity: str = "error"  # error, warning
    ):
        self.code = code
        self.message = message
        self.node_id = node_id
        self.severity = severity
        self.timestamp = datetime.now()

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "node_id": self.node_id,
            "severity": self.severity,
            "timestamp": self.timestamp.isoformat()
        }

    def __str__(self) -> str:
        node_info = f" [Node: {self.node_id}]" if self.node_id else ""
        return f"[{self.severity.upper()}] {self.code}: {self.message}{node_info}"


class FlowValidator:
    """
    Validates a FlowGraph.

    Errors: missing trigger, unknown node type, config not matching its
    type, dangling edge, condition node without its default branch.
    Warnings: nodes unreachable from the trigger.
    """

    @classmethod
    def validate(cls, graph: FlowGraph) -> List[FlowValidationError]:
        errors: List[FlowValidationError] = []
        node_ids = {node.id for node in graph.nodes}

        # 1. Entry node
        triggers = [node for node in graph.nodes if node.type == NodeType.TRIGGER.value]
        if not triggers:
            errors.append(FlowValidationError("MISSING_TRIGGER", "Flow has no trigger node"))
        elif len(triggers) > 1:
            errors.append(FlowValidationError(
                "MULTIPLE_TRIGGERS",
                f"Flow has {len(triggers)} trigger nodes; the first one is used",
                severity="warning"
            ))

        # 2. Nodes
        for node in graph.nodes:
            if node.type not in NODE_CONFIG_MODELS:
                errors.append(FlowValidationError(
                    "INVALID_NODE_TYPE",
                    f"Invalid node type: {node.type}",
                    node.id
                ))
                continue
            try:
                config = node.parse_config()
            except ValidationError as e:
                errors.append(FlowValidationError(
                    "INVALID_CONFIG",
                    f"Config does not match '{node.type}': {e.error_count()} error(s)",
                    node.id
                ))
                continue

            if isinstance(config, ConditionConfig):
                errors.extend(cls._validate_condition(graph, node.id, config))

        # 3. Edges
        for edge in graph.edges:
            for end, node_id in (("source", edge.source), ("target", edge.target)):
                if node_id not in node_ids:
                    errors.append(FlowValidationError(
                        "DANGLING_EDGE",
                        f"Edge {edge.id} {end} '{node_id}' not found in nodes"
                    ))

        # 4. Reachability
        if triggers:
            errors.extend(cls._detect_unreachable(graph, triggers[0].id))

        if errors:
            for error in errors:
                if error.is_error:
                    logger.error(f"Flow {graph.id}: {error}")
                else:
                    logger.warning(f"Flow {graph.id}: {error}")

        return errors

    @classmethod
    def is_valid(cls, graph: FlowGraph) -> bool:
        return not any(error.is_error for error in cls.validate(graph))

    @classmethod
    def _validate_condition(
        cls,
        graph: FlowGraph,
        node_id: str,
        config: ConditionConfig
    ) -> List[FlowValidationError]:
        handles = [edge.source_handle for edge in graph.outgoing_edges(node_id)]
        if handles.count(config.default_handle) != 1:
            return [FlowValidationError(
                "MISSING_DEFAULT_BRANCH",
                f"Condition needs exactly one edge on default branch '{config.default_handle}'",
                node_id
            )]
        return []

    @classmethod
    def _detect_unreachable(cls, graph: FlowGraph, start_id: str) -> List[FlowValidationError]:
        seen: Set[str] = set()
        stack = [start_id]
        while stack:
            node_id = stack.pop()
            if node_id in seen:
                continue
            seen.add(node_id)
            stack.extend(edge.target for edge in graph.outgoing_edges(node_id))

        return [
            FlowValidationError(
                "UNREACHABLE_NODE",
                "Node cannot be reached from the trigger",
                node.id,
                severity="warning"
            )
            for node in graph.nodes
            if node.id not in seen
        ]


# Singleton
flow_validator = FlowValidator()
