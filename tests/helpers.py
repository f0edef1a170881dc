"""
Test helpers shared across unit and integration tests.
"""
from typing import Dict, Any, List, Optional
from unittest.mock import AsyncMock

from chatflow.models import FlowGraph, InboundContent

CHANNEL_ID = "channel-1"
SENDER_ID = "5511999990000"


class FakeGateway:
    """Messaging gateway spy; every send succeeds"""

    def __init__(self):
        ok = {"success": True, "message_id": "wamid.out"}
        self.send_text = AsyncMock(return_value=ok)
        self.send_image = AsyncMock(return_value=ok)
        self.send_buttons = AsyncMock(return_value=ok)
        self.send_list = AsyncMock(return_value=ok)
        self.mark_as_read = AsyncMock(return_value={"success": True})

    def sent_texts(self) -> List[str]:
        return [call.args[1] for call in self.send_text.await_args_list]


def text(body: str) -> InboundContent:
    return InboundContent(type="text", text=body)


def build_flow(
    flow_id: str,
    nodes: List[Dict[str, Any]],
    edges: List[Dict[str, Any]],
    trigger_type: str = "any_message",
    trigger_value: Optional[str] = None,
    priority: int = 0,
    channel_id: str = CHANNEL_ID
) -> FlowGraph:
    return FlowGraph(
        id=flow_id,
        name=flow_id,
        channel_id=channel_id,
        is_active=True,
        is_published=True,
        trigger={"type": trigger_type, "value": trigger_value},
        priority=priority,
        nodes=nodes,
        edges=edges
    )
