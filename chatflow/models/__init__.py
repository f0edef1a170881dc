from .flow import (
    # Enums
    NodeType,
    TriggerType,
    ReplyType,
    LoopType,
    ValueType,
    EndType,
    DEFAULT_BRANCH,

    # Node configurations
    TriggerConfig,
    SendTextConfig,
    SendImageConfig,
    ButtonItem,
    SendButtonsConfig,
    ListRow,
    ListSection,
    SendListConfig,
    WaitForReplyConfig,
    ConditionRule,
    ConditionConfig,
    VariableAssignment,
    SetVariableConfig,
    ResponseMapping,
    ApiCallConfig,
    DelayConfig,
    LoopConfig,
    EndConfig,
    NODE_CONFIG_MODELS,

    # Graph
    FlowNode,
    FlowEdge,
    TriggerSpec,
    FlowGraph,
)
from .execution import ExecutionStatus, ExecutionState, WaitKind, WaitState, utcnow
from .schedule import ScheduledResume, ResumeStatus
from .channel import ChannelConfig
from .webhook import (
    InboundContent,
    ContactMeta,
    InboundMessage,
    WebhookPayload,
    extract_message_content,
    parse_webhook,
)

__all__ = [
    # Flow - Enums
    "NodeType", "TriggerType", "ReplyType", "LoopType", "ValueType", "EndType",
    "DEFAULT_BRANCH",

    # Flow - Node configurations
    "TriggerConfig", "SendTextConfig", "SendImageConfig", "ButtonItem",
    "SendButtonsConfig", "ListRow", "ListSection", "SendListConfig",
    "WaitForReplyConfig", "ConditionRule", "ConditionConfig",
    "VariableAssignment", "SetVariableConfig", "ResponseMapping",
    "ApiCallConfig", "DelayConfig", "LoopConfig", "EndConfig",
    "NODE_CONFIG_MODELS",

    # Flow - Graph
    "FlowNode", "FlowEdge", "TriggerSpec", "FlowGraph",

    # Execution
    "ExecutionStatus", "ExecutionState", "WaitKind", "WaitState", "utcnow",
    "ScheduledResume", "ResumeStatus",

    # Channel
    "ChannelConfig",

    # Webhook
    "InboundContent", "ContactMeta", "InboundMessage", "WebhookPayload",
    "extract_message_content", "parse_webhook",
]
