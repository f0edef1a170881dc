"""
Trigger matching - picks the flow that starts a new conversation
"""
import logging
from typing import Iterable, List, Optional

from ..models.flow import FlowGraph, TriggerType

logger = logging.getLogger(__name__)


def _updated_ts(flow: FlowGraph) -> float:
    if flow.updated_at is None:
        return float("-inf")
    return flow.updated_at.timestamp()


class TriggerMatcher:
    """
    Selects the first matching flow among active, published candidates.

    Candidates are ordered by descending priority, ties broken by the most
    recently updated flow.
    """

    def order(self, flows: Iterable[FlowGraph]) -> List[FlowGraph]:
        candidates = [flow for flow in flows if flow.is_active and flow.is_published]
        return sorted(candidates, key=lambda f: (f.priority, _updated_ts(f)), reverse=True)

    def matches(self, flow: FlowGraph, message_text: Optional[str]) -> bool:
        if flow.trigger.type == TriggerType.ANY_MESSAGE:
            return True

        text = (message_text or "").strip()
        if not text:
            return False

        keywords = flow.trigger_keywords()
        if flow.is_case_sensitive():
            return text in keywords
        lowered = text.lower()
        return any(lowered == keyword.lower() for keyword in keywords)

    def match(self, flows: Iterable[FlowGraph], message_text: Optional[str]) -> Optional[FlowGraph]:
        for flow in self.order(flows):
            if self.matches(flow, message_text):
                logger.info(f"Trigger matched flow {flow.id} ({flow.name or 'unnamed'})")
                return flow

        logger.info(f"No flow trigger matched message: {message_text!r}")
        return None


# Singleton
trigger_matcher = TriggerMatcher()
