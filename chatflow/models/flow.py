"""
Flow graph models - authored nodes, edges and trigger descriptor
"""
from enum import Enum
from datetime import datetime
from typing import Optional, Any, List, Dict, Type
from pydantic import BaseModel, Field, PrivateAttr, field_validator


DEFAULT_BRANCH = "default"


class NodeType(str, Enum):
    """Node types produced by the flow editor"""
    TRIGGER = "trigger"
    SEND_TEXT = "sendText"
    SEND_IMAGE = "sendImage"
    SEND_BUTTONS = "sendButtons"
    SEND_LIST = "sendList"
    WAIT_FOR_REPLY = "waitForReply"
    CONDITION = "condition"
    SET_VARIABLE = "setVariable"
    API_CALL = "apiCall"
    DELAY = "delay"
    LOOP = "loop"
    END = "end"


class TriggerType(str, Enum):
    """How a flow is selected for a new conversation"""
    KEYWORD = "keyword"
    ANY_MESSAGE = "any_message"


class ReplyType(str, Enum):
    """Expected content type for WAIT_FOR_REPLY nodes"""
    TEXT = "text"
    BUTTON = "button"
    LIST = "list"
    IMAGE = "image"
    ANY = "any"


class LoopType(str, Enum):
    COUNT = "count"
    WHILE = "while"
    FOREACH = "foreach"


class ValueType(str, Enum):
    """Source of a SET_VARIABLE assignment"""
    STATIC = "static"
    EXPRESSION = "expression"
    FROM_VARIABLE = "from_variable"


class EndType(str, Enum):
    COMPLETE = "complete"
    ERROR = "error"


# ============ NODE CONFIGURATIONS ============

class _ConfigModel(BaseModel):
    """Base for node configs - accepts camelCase keys from the editor"""

    model_config = {"extra": "allow", "populate_by_name": True}


class TriggerConfig(_ConfigModel):
    keywords: List[str] = Field(default_factory=list)
    case_sensitive: bool = Field(default=False, alias="caseSensitive")


class SendTextConfig(_ConfigModel):
    message: str = ""


class SendImageConfig(_ConfigModel):
    image_url: str = Field(default="", alias="imageUrl")
    caption: Optional[str] = None


class ButtonItem(_ConfigModel):
    id: str
    title: str


class SendButtonsConfig(_ConfigModel):
    body_text: str = Field(default="", alias="bodyText")
    header_text: Optional[str] = Field(default=None, alias="headerText")
    footer_text: Optional[str] = Field(default=None, alias="footerText")
    buttons: List[ButtonItem] = Field(default_factory=list)


class ListRow(_ConfigModel):
    id: str
    title: str
    description: Optional[str] = None


class ListSection(_ConfigModel):
    title: Optional[str] = None
    rows: List[ListRow] = Field(default_factory=list)


class SendListConfig(_ConfigModel):
    body_text: str = Field(default="", alias="bodyText")
    button_text: str = Field(default="Options", alias="buttonText")
    header_text: Optional[str] = Field(default=None, alias="headerText")
    footer_text: Optional[str] = Field(default=None, alias="footerText")
    sections: List[ListSection] = Field(default_factory=list)


class WaitForReplyConfig(_ConfigModel):
    variable_name: str = Field(default="user_input", alias="variableName")
    expected_type: ReplyType = Field(default=ReplyType.TEXT, alias="expectedType")
    timeout_seconds: Optional[int] = Field(default=None, alias="timeoutSeconds")


class ConditionRule(_ConfigModel):
    variable: str = ""
    operator: str = "equals"
    value: Optional[Any] = None
    output_handle: str = Field(default="true", alias="outputHandle")


class ConditionConfig(_ConfigModel):
    conditions: List[ConditionRule] = Field(default_factory=list)
    default_handle: str = Field(default="false", alias="defaultHandle")


class VariableAssignment(_ConfigModel):
    variable_name: str = Field(alias="variableName")
    value_type: ValueType = Field(default=ValueType.STATIC, alias="valueType")
    value: Optional[Any] = None


class SetVariableConfig(_ConfigModel):
    assignments: List[VariableAssignment] = Field(default_factory=list)


class ResponseMapping(_ConfigModel):
    json_path: str = Field(alias="jsonPath")
    variable_name: str = Field(alias="variableName")


class ApiCallConfig(_ConfigModel):
    method: str = "GET"
    url: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Any] = None  # JSON string template or object
    response_mapping: List[ResponseMapping] = Field(default_factory=list, alias="responseMapping")
    timeout_ms: Optional[int] = Field(default=None, alias="timeoutMs")


class DelayConfig(_ConfigModel):
    delay_seconds: int = Field(default=5, ge=0, alias="delaySeconds")


class LoopConfig(_ConfigModel):
    loop_type: LoopType = Field(default=LoopType.COUNT, alias="loopType")
    max_iterations: int = Field(default=10, ge=0, alias="maxIterations")
    collection: Optional[str] = None
    item_variable: str = Field(default="item", alias="itemVariable")
    condition: Optional[ConditionRule] = None  # continuation rule for "while"


class EndConfig(_ConfigModel):
    end_type: EndType = Field(default=EndType.COMPLETE, alias="endType")
    message: Optional[str] = None


NODE_CONFIG_MODELS: Dict[str, Type[_ConfigModel]] = {
    NodeType.TRIGGER.value: TriggerConfig,
    NodeType.SEND_TEXT.value: SendTextConfig,
    NodeType.SEND_IMAGE.value: SendImageConfig,
    NodeType.SEND_BUTTONS.value: SendButtonsConfig,
    NodeType.SEND_LIST.value: SendListConfig,
    NodeType.WAIT_FOR_REPLY.value: WaitForReplyConfig,
    NodeType.CONDITION.value: ConditionConfig,
    NodeType.SET_VARIABLE.value: SetVariableConfig,
    NodeType.API_CALL.value: ApiCallConfig,
    NodeType.DELAY.value: DelayConfig,
    NodeType.LOOP.value: LoopConfig,
    NodeType.END.value: EndConfig,
}


# ============ GRAPH ============

class FlowNode(BaseModel):
    """One step of a flow; config shape depends on type"""

    model_config = {"extra": "allow"}

    id: str
    type: str
    label: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("config", mode="before")
    @classmethod
    def _none_config(cls, value: Any) -> Any:
        return value or {}

    def parse_config(self) -> _ConfigModel:
        """
        Parse the raw config into the model registered for this node type.

        Raises:
            ValueError: unknown node type or config not matching the type
        """
        model = NODE_CONFIG_MODELS.get(self.type)
        if model is None:
            raise ValueError(f"Unknown node type: {self.type}")
        return model.model_validate(self.config)


class FlowEdge(BaseModel):
    """Directed transition; source_handle selects the branch"""

    model_config = {"extra": "allow", "populate_by_name": True}

    id: str
    source: str
    target: str
    source_handle: str = Field(default=DEFAULT_BRANCH, alias="sourceHandle")

    @field_validator("source_handle", mode="before")
    @classmethod
    def _default_handle(cls, value: Any) -> Any:
        return value or DEFAULT_BRANCH


class TriggerSpec(BaseModel):
    type: TriggerType = TriggerType.ANY_MESSAGE
    value: Optional[str] = None


class FlowGraph(BaseModel):
    """
    In-memory representation of one authored flow.

    Nodes are indexed by id and edges by source node once at construction;
    the engine treats the graph as read-only.
    """

    model_config = {"extra": "allow"}

    id: str
    name: str = ""
    channel_id: Optional[str] = None
    is_active: bool = False
    is_published: bool = False
    trigger: TriggerSpec = Field(default_factory=TriggerSpec)
    priority: int = 0
    updated_at: Optional[datetime] = None
    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)

    _nodes_by_id: Dict[str, FlowNode] = PrivateAttr(default_factory=dict)
    _edges_by_source: Dict[str, List[FlowEdge]] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._nodes_by_id = {node.id: node for node in self.nodes}
        edges_by_source: Dict[str, List[FlowEdge]] = {}
        for edge in self.edges:
            edges_by_source.setdefault(edge.source, []).append(edge)
        self._edges_by_source = edges_by_source

    def get_node(self, node_id: Optional[str]) -> Optional[FlowNode]:
        """Get a node by ID"""
        if node_id is None:
            return None
        return self._nodes_by_id.get(node_id)

    def get_trigger_node(self) -> Optional[FlowNode]:
        """Get the entry (trigger) node"""
        for node in self.nodes:
            if node.type == NodeType.TRIGGER.value:
                return node
        return None

    def outgoing_edges(self, node_id: str) -> List[FlowEdge]:
        return list(self._edges_by_source.get(node_id, []))

    def next_node_id(self, node_id: str, branch: str = DEFAULT_BRANCH) -> Optional[str]:
        """
        Resolve the target of the edge leaving node_id on the given branch.

        A single-output node may have its only edge stored under any handle,
        so the default branch falls back to the sole outgoing edge.
        """
        edges = self._edges_by_source.get(node_id, [])
        for edge in edges:
            if edge.source_handle == branch:
                return edge.target
        if branch == DEFAULT_BRANCH and len(edges) == 1:
            return edges[0].target
        return None

    def trigger_keywords(self) -> List[str]:
        """Keywords from the flow trigger value (comma separated) and the trigger node"""
        keywords: List[str] = []
        if self.trigger.value:
            keywords.extend(k.strip() for k in self.trigger.value.split(","))
        trigger_node = self.get_trigger_node()
        if trigger_node:
            keywords.extend(
                str(k).strip() for k in trigger_node.config.get("keywords") or []
            )
        return [k for k in keywords if k]

    def is_case_sensitive(self) -> bool:
        trigger_node = self.get_trigger_node()
        if not trigger_node:
            return False
        return bool(trigger_node.config.get("caseSensitive", False))

    @classmethod
    def from_rows(
        cls,
        flow_row: Dict[str, Any],
        node_rows: List[Dict[str, Any]],
        edge_rows: List[Dict[str, Any]]
    ) -> "FlowGraph":
        """Build a graph from flows / flow_nodes / flow_edges table rows"""
        return cls(
            id=str(flow_row["id"]),
            name=flow_row.get("name") or "",
            channel_id=flow_row.get("whatsapp_config_id"),
            is_active=bool(flow_row.get("is_active")),
            is_published=bool(flow_row.get("is_published")),
            trigger=TriggerSpec(
                type=flow_row.get("trigger_type") or TriggerType.ANY_MESSAGE.value,
                value=flow_row.get("trigger_value")
            ),
            priority=flow_row.get("priority") or 0,
            updated_at=flow_row.get("updated_at"),
            nodes=[
                FlowNode(
                    id=str(row["id"]),
                    type=row["node_type"],
                    label=row.get("label") or "",
                    config=row.get("config") or {}
                )
                for row in node_rows
            ],
            edges=[
                FlowEdge(
                    id=str(row["id"]),
                    source=str(row["source_node_id"]),
                    target=str(row["target_node_id"]),
                    source_handle=row.get("source_handle")
                )
                for row in edge_rows
            ]
        )
