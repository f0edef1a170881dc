"""
Execution state models - the durable per-conversation cursor
"""
from enum import Enum
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStatus(str, Enum):
    """Status of a flow execution"""
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.ERRORED)


class WaitKind(str, Enum):
    """What a waiting execution is suspended on"""
    REPLY = "reply"
    DELAY = "delay"


class WaitState(BaseModel):
    """Suspension details persisted with a waiting execution"""
    kind: WaitKind = WaitKind.REPLY
    node_id: str
    variable_name: Optional[str] = None
    expected_type: Optional[str] = None
    expires_at: Optional[datetime] = None
    resume_at: Optional[datetime] = None
    resume_id: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at


class ExecutionState(BaseModel):
    """
    Durable cursor and variable scope for one conversation.

    Keyed by (conversation_id, channel_id). `version` is bumped by the
    state repository on every successful write and is used for
    compare-and-set updates.
    """

    conversation_id: str
    channel_id: str
    flow_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    current_node_id: Optional[str] = None
    wait: Optional[WaitState] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    loop_counters: Dict[str, int] = Field(default_factory=dict)
    version: int = 0
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str]:
        return (self.conversation_id, self.channel_id)

    @property
    def is_waiting(self) -> bool:
        return self.status == ExecutionStatus.WAITING

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def suspend(self, wait: WaitState) -> None:
        """Park the execution on a wait/delay node"""
        self.status = ExecutionStatus.WAITING
        self.current_node_id = wait.node_id
        self.wait = wait
        self.updated_at = utcnow()

    def resume(self) -> WaitState:
        """Clear the wait and return what it was waiting on"""
        if self.wait is None:
            raise ValueError("Execution is not waiting")
        wait = self.wait
        self.wait = None
        self.status = ExecutionStatus.RUNNING
        self.updated_at = utcnow()
        return wait

    def finish(self, status: ExecutionStatus, error: Optional[str] = None) -> None:
        """Finalize the execution; no further resumption is possible"""
        if not status.is_terminal:
            raise ValueError(f"Not a terminal status: {status.value}")
        self.status = status
        self.error = error
        self.wait = None
        self.current_node_id = None
        self.updated_at = utcnow()

    def to_record(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible row"""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "ExecutionState":
        """Create state from a stored row"""
        return cls.model_validate(data)

    def __str__(self) -> str:
        return (
            f"ExecutionState(conversation={self.conversation_id}, "
            f"channel={self.channel_id}, flow={self.flow_id}, "
            f"node={self.current_node_id}, status={self.status.value})"
        )
