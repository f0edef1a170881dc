"""
In-memory repositories - used by tests and STORAGE_BACKEND=memory.

Stored states are round-tripped through their record form so that a
read never hands back the object a stepping pass is mutating.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, List, Tuple, Iterable

from ..flow.errors import ConcurrencyConflict, CorruptStateError
from ..models.channel import ChannelConfig
from ..models.execution import ExecutionState, utcnow
from ..models.flow import FlowGraph
from ..models.schedule import ScheduledResume, ResumeStatus

logger = logging.getLogger(__name__)

Key = Tuple[str, str]


class InMemoryChannelRepository:
    def __init__(self, channels: Optional[Iterable[ChannelConfig]] = None):
        self._channels: Dict[str, ChannelConfig] = {c.id: c for c in channels or []}

    def add(self, channel: ChannelConfig) -> None:
        self._channels[channel.id] = channel

    async def get_channel(self, channel_id: str) -> Optional[ChannelConfig]:
        return self._channels.get(channel_id)


class InMemoryGraphRepository:
    def __init__(self, flows: Optional[Iterable[FlowGraph]] = None):
        self._flows: Dict[str, FlowGraph] = {f.id: f for f in flows or []}

    def add(self, flow: FlowGraph) -> None:
        self._flows[flow.id] = flow

    async def get_flow(self, flow_id: str) -> Optional[FlowGraph]:
        return self._flows.get(flow_id)

    async def list_active_flows(self, channel_id: str) -> List[FlowGraph]:
        flows = [
            flow for flow in self._flows.values()
            if flow.channel_id == channel_id and flow.is_active and flow.is_published
        ]
        return sorted(flows, key=lambda f: f.priority, reverse=True)


class InMemoryExecutionStateRepository:
    """Versioned state store with time-bounded leases"""

    def __init__(self):
        self._records: Dict[Key, dict] = {}
        self._leases: Dict[Key, Tuple[str, datetime]] = {}
        self._lock = asyncio.Lock()

    async def get(self, conversation_id: str, channel_id: str) -> Optional[ExecutionState]:
        record = self._records.get((conversation_id, channel_id))
        if record is None:
            return None
        try:
            return ExecutionState.from_record(record)
        except ValueError as e:
            raise CorruptStateError(f"Corrupt execution state for {(conversation_id, channel_id)}: {e}") from e

    async def put(self, state: ExecutionState) -> ExecutionState:
        async with self._lock:
            current = self._records.get(state.key)
            if state.version == 0:
                if current is not None and current.get("status") not in ("completed", "errored"):
                    raise ConcurrencyConflict(f"Active execution already exists for {state.key}")
            elif current is None or current["version"] != state.version:
                raise ConcurrencyConflict(
                    f"Stale write for {state.key}: version {state.version}, "
                    f"stored {current['version'] if current else None}"
                )

            state.version += 1
            state.updated_at = utcnow()
            self._records[state.key] = state.to_record()
            return state

    async def delete(self, conversation_id: str, channel_id: str) -> bool:
        async with self._lock:
            return self._records.pop((conversation_id, channel_id), None) is not None

    async def mark_errored(self, conversation_id: str, channel_id: str, error: str) -> None:
        async with self._lock:
            record = self._records.get((conversation_id, channel_id))
            if record is not None:
                record.update({"status": "errored", "error": error, "wait": None})

    async def acquire_lease(
        self,
        conversation_id: str,
        channel_id: str,
        owner: str,
        ttl_seconds: float
    ) -> bool:
        key = (conversation_id, channel_id)
        now = utcnow()
        async with self._lock:
            lease = self._leases.get(key)
            if lease is not None and lease[0] != owner and lease[1] > now:
                return False
            self._leases[key] = (owner, now + timedelta(seconds=ttl_seconds))
            return True

    async def renew_lease(
        self,
        conversation_id: str,
        channel_id: str,
        owner: str,
        ttl_seconds: float
    ) -> bool:
        key = (conversation_id, channel_id)
        async with self._lock:
            lease = self._leases.get(key)
            if lease is None or lease[0] != owner:
                return False
            self._leases[key] = (owner, utcnow() + timedelta(seconds=ttl_seconds))
            return True

    async def release_lease(self, conversation_id: str, channel_id: str, owner: str) -> None:
        key = (conversation_id, channel_id)
        async with self._lock:
            lease = self._leases.get(key)
            if lease is not None and lease[0] == owner:
                del self._leases[key]

    def records(self) -> Dict[Key, dict]:
        """Raw stored records, as they would sit in a database"""
        return dict(self._records)

    def load_records(self, records: Dict[Key, dict]) -> None:
        self._records = {key: dict(record) for key, record in records.items()}


class InMemoryProcessedMessageRepository:
    def __init__(self):
        self._ids: set[str] = set()
        self._lock = asyncio.Lock()

    async def has(self, message_id: str) -> bool:
        return message_id in self._ids

    async def put(self, message_id: str) -> bool:
        async with self._lock:
            if message_id in self._ids:
                return False
            self._ids.add(message_id)
            return True


class InMemoryResumeScheduler:
    def __init__(self):
        self._resumes: Dict[str, ScheduledResume] = {}
        self._lock = asyncio.Lock()

    async def schedule_resume(self, resume: ScheduledResume) -> None:
        async with self._lock:
            self._resumes[resume.id] = resume
        logger.info(f"Resume {resume.id} scheduled for {resume.run_at.isoformat()}")

    async def due_resumes(self, now: Optional[datetime] = None, limit: int = 50) -> List[ScheduledResume]:
        now = now or utcnow()
        due = [r for r in self._resumes.values() if r.is_due(now)]
        return sorted(due, key=lambda r: r.run_at)[:limit]

    async def mark_resume(
        self,
        resume_id: str,
        status: ResumeStatus,
        error: Optional[str] = None
    ) -> None:
        async with self._lock:
            resume = self._resumes.get(resume_id)
            if resume is not None:
                resume.status = status
                resume.error = error

    def pending(self) -> List[ScheduledResume]:
        return [r for r in self._resumes.values() if r.status == ResumeStatus.PENDING]
