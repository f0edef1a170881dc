"""
Collaborator contracts consumed by the execution engine.

Supabase-backed implementations live in services/database.py, in-memory
ones in services/memory_store.py.
"""
from datetime import datetime
from typing import Optional, Any, Dict, List, Protocol

from ..models.flow import FlowGraph
from ..models.channel import ChannelConfig
from ..models.execution import ExecutionState
from ..models.schedule import ScheduledResume, ResumeStatus


class MessagingGateway(Protocol):
    """Outbound chat messages; every call returns a delivery result dict"""

    async def send_text(self, to: str, message: str) -> Dict[str, Any]: ...

    async def send_image(self, to: str, image_url: str, caption: Optional[str] = None) -> Dict[str, Any]: ...

    async def send_buttons(
        self,
        to: str,
        body_text: str,
        buttons: List[Dict[str, str]],
        header_text: Optional[str] = None,
        footer_text: Optional[str] = None
    ) -> Dict[str, Any]: ...

    async def send_list(
        self,
        to: str,
        body_text: str,
        button_text: str,
        sections: List[Dict[str, Any]],
        header_text: Optional[str] = None,
        footer_text: Optional[str] = None
    ) -> Dict[str, Any]: ...

    async def mark_as_read(self, message_id: str) -> Dict[str, Any]: ...


class ChannelRepository(Protocol):
    async def get_channel(self, channel_id: str) -> Optional[ChannelConfig]: ...


class GraphRepository(Protocol):
    async def get_flow(self, flow_id: str) -> Optional[FlowGraph]: ...

    async def list_active_flows(self, channel_id: str) -> List[FlowGraph]:
        """Active and published flows, highest priority first"""
        ...


class ExecutionStateRepository(Protocol):
    async def get(self, conversation_id: str, channel_id: str) -> Optional[ExecutionState]: ...

    async def put(self, state: ExecutionState) -> ExecutionState:
        """
        Versioned write. Raises ConcurrencyConflict when the stored version
        differs from state.version; bumps state.version on success.
        """
        ...

    async def delete(self, conversation_id: str, channel_id: str) -> bool: ...

    async def mark_errored(self, conversation_id: str, channel_id: str, error: str) -> None:
        """Finalize a stored row as errored without reading it back"""
        ...

    async def acquire_lease(
        self,
        conversation_id: str,
        channel_id: str,
        owner: str,
        ttl_seconds: float
    ) -> bool: ...

    async def renew_lease(
        self,
        conversation_id: str,
        channel_id: str,
        owner: str,
        ttl_seconds: float
    ) -> bool:
        """Extend a lease still held by owner; False once another owner took it"""
        ...

    async def release_lease(self, conversation_id: str, channel_id: str, owner: str) -> None: ...


class ProcessedMessageRepository(Protocol):
    async def has(self, message_id: str) -> bool: ...

    async def put(self, message_id: str) -> bool:
        """Record the id; False when it was already recorded"""
        ...


class ResumeScheduler(Protocol):
    async def schedule_resume(self, resume: ScheduledResume) -> None: ...

    async def due_resumes(self, now: Optional[datetime] = None, limit: int = 50) -> List[ScheduledResume]: ...

    async def mark_resume(
        self,
        resume_id: str,
        status: ResumeStatus,
        error: Optional[str] = None
    ) -> None: ...
