"""
Execution context - what a node handler may touch besides its config and scope
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from ..models.channel import ChannelConfig
from ..models.execution import ExecutionState
from ..models.flow import FlowGraph, FlowNode
from ..models.webhook import InboundContent
from ..services.contracts import MessagingGateway

logger = logging.getLogger(__name__)


@dataclass
class ExecutionContext:
    """
    Per-pass engine context handed to node handlers.

    Owned by the stepping pass holding the conversation's lease; nothing
    here is shared across conversations.
    """

    state: ExecutionState
    graph: FlowGraph
    channel: ChannelConfig
    gateway: MessagingGateway
    node: Optional[FlowNode] = None
    inbound: Optional[InboundContent] = None
    http_client: Optional[httpx.AsyncClient] = None
    api_default_timeout_ms: int = 5000
    api_max_timeout_ms: int = 30000

    @property
    def recipient_id(self) -> str:
        return self.state.conversation_id

    @property
    def node_id(self) -> Optional[str]:
        return self.node.id if self.node else None

    def api_timeout_seconds(self, timeout_ms: Optional[int]) -> float:
        """Node timeout clamped to the configured maximum"""
        requested = timeout_ms if timeout_ms and timeout_ms > 0 else self.api_default_timeout_ms
        return min(requested, self.api_max_timeout_ms) / 1000.0

    def log_delivery(self, action: str, result: dict) -> None:
        if result.get("success"):
            logger.info(
                f"{action} delivered to {self.recipient_id} "
                f"(node={self.node_id}, message_id={result.get('message_id')})"
            )
        else:
            logger.error(
                f"{action} failed for {self.recipient_id} "
                f"(node={self.node_id}): {result.get('error')}"
            )
