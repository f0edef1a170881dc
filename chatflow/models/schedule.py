"""
Scheduled resume model - continuation requested by DELAY nodes
"""
from enum import Enum
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from .execution import utcnow


class ResumeStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class ScheduledResume(BaseModel):
    """A request to re-invoke the engine for one conversation later"""
    id: str
    conversation_id: str
    channel_id: str
    node_id: str
    run_at: datetime
    status: ResumeStatus = ResumeStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    error: Optional[str] = None

    def is_due(self, now: Optional[datetime] = None) -> bool:
        return self.status == ResumeStatus.PENDING and self.run_at <= (now or utcnow())
