"""
Database service - Supabase-backed repositories
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, Any, Dict, List

from ..core.supabase_client import supabase
from ..flow.errors import ConcurrencyConflict, CorruptStateError, StateStoreError
from ..flow.validator import FlowValidator
from ..models.channel import ChannelConfig
from ..models.execution import ExecutionState, utcnow
from ..models.flow import FlowGraph
from ..models.schedule import ScheduledResume, ResumeStatus

logger = logging.getLogger(__name__)

# Table names
CHANNELS_TABLE = "whatsapp_configs"
FLOWS_TABLE = "flows"
FLOW_NODES_TABLE = "flow_nodes"
FLOW_EDGES_TABLE = "flow_edges"
PROCESSED_MESSAGES_TABLE = "processed_messages"
EXECUTIONS_TABLE = "flow_executions"
LEASES_TABLE = "execution_leases"
SCHEDULED_RESUMES_TABLE = "scheduled_resumes"

TERMINAL_STATUSES = ("completed", "errored")


class SupabaseChannelRepository:
    def __init__(self, client: Any = None):
        self.client = client or supabase

    async def get_channel(self, channel_id: str) -> Optional[ChannelConfig]:
        """Get channel credentials by ID"""
        response = self.client.table(CHANNELS_TABLE).select("*").eq("id", channel_id).limit(1).execute()
        if response.data and len(response.data) > 0:
            return ChannelConfig(**response.data[0])
        return None


class SupabaseGraphRepository:
    """Loads flows with their nodes and edges; invalid graphs are skipped"""

    def __init__(self, client: Any = None, validator: Optional[FlowValidator] = None):
        self.client = client or supabase
        self.validator = validator or FlowValidator()

    def _load_graph(self, flow_row: Dict[str, Any]) -> FlowGraph:
        nodes = self.client.table(FLOW_NODES_TABLE).select("*").eq("flow_id", flow_row["id"]).execute()
        edges = self.client.table(FLOW_EDGES_TABLE).select("*").eq("flow_id", flow_row["id"]).execute()
        return FlowGraph.from_rows(flow_row, nodes.data or [], edges.data or [])

    async def get_flow(self, flow_id: str) -> Optional[FlowGraph]:
        """Get one flow's full node/edge set"""
        response = self.client.table(FLOWS_TABLE).select("*").eq("id", flow_id).limit(1).execute()
        if not response.data:
            return None
        return self._load_graph(response.data[0])

    async def list_active_flows(self, channel_id: str) -> List[FlowGraph]:
        """Active + published flows for a channel, highest priority first"""
        response = (
            self.client.table(FLOWS_TABLE)
            .select("*")
            .eq("whatsapp_config_id", channel_id)
            .eq("is_active", True)
            .eq("is_published", True)
            .order("priority", desc=True)
            .order("updated_at", desc=True)
            .execute()
        )

        flows: List[FlowGraph] = []
        for row in response.data or []:
            graph = self._load_graph(row)
            if not self.validator.is_valid(graph):
                logger.error(f"Skipping invalid flow {graph.id} ({graph.name}) on channel {channel_id}")
                continue
            flows.append(graph)
        return flows


class SupabaseExecutionStateRepository:
    """
    Execution state rows keyed by (conversation_id, channel_id).

    Writes are compare-and-set on the `version` column; leases live in a
    separate table and expire on their own.
    """

    def __init__(self, client: Any = None):
        self.client = client or supabase

    def _execute(self, query: Any, action: str) -> Any:
        try:
            return query.execute()
        except Exception as e:
            raise StateStoreError(f"State store {action} failed: {e}") from e

    async def get(self, conversation_id: str, channel_id: str) -> Optional[ExecutionState]:
        response = self._execute(
            self.client.table(EXECUTIONS_TABLE)
            .select("*")
            .eq("conversation_id", conversation_id)
            .eq("channel_id", channel_id)
            .limit(1),
            "get"
        )
        if not response.data:
            return None

        try:
            return ExecutionState.from_record(response.data[0])
        except ValueError as e:
            raise CorruptStateError(
                f"Corrupt execution state for ({conversation_id}, {channel_id}): {e}"
            ) from e

    async def put(self, state: ExecutionState) -> ExecutionState:
        record = state.to_record()
        record["version"] = state.version + 1
        record["updated_at"] = utcnow().isoformat()

        if state.version == 0:
            existing = self._execute(
                self.client.table(EXECUTIONS_TABLE)
                .select("status")
                .eq("conversation_id", state.conversation_id)
                .eq("channel_id", state.channel_id)
                .limit(1),
                "put"
            )
            if existing.data and existing.data[0].get("status") not in TERMINAL_STATUSES:
                raise ConcurrencyConflict(f"Active execution already exists for {state.key}")

            self._execute(
                self.client.table(EXECUTIONS_TABLE).upsert(record, on_conflict="conversation_id,channel_id"),
                "put"
            )
        else:
            response = self._execute(
                self.client.table(EXECUTIONS_TABLE)
                .update(record)
                .eq("conversation_id", state.conversation_id)
                .eq("channel_id", state.channel_id)
                .eq("version", state.version),
                "put"
            )
            if not response.data:
                raise ConcurrencyConflict(f"Stale write for {state.key} at version {state.version}")

        state.version = record["version"]
        return state

    async def delete(self, conversation_id: str, channel_id: str) -> bool:
        response = self._execute(
            self.client.table(EXECUTIONS_TABLE)
            .delete()
            .eq("conversation_id", conversation_id)
            .eq("channel_id", channel_id),
            "delete"
        )
        return bool(response.data)

    async def mark_errored(self, conversation_id: str, channel_id: str, error: str) -> None:
        self._execute(
            self.client.table(EXECUTIONS_TABLE)
            .update({"status": "errored", "error": error, "wait": None, "updated_at": utcnow().isoformat()})
            .eq("conversation_id", conversation_id)
            .eq("channel_id", channel_id),
            "mark_errored"
        )

    async def acquire_lease(
        self,
        conversation_id: str,
        channel_id: str,
        owner: str,
        ttl_seconds: float
    ) -> bool:
        now = utcnow()
        lease = {
            "conversation_id": conversation_id,
            "channel_id": channel_id,
            "owner": owner,
            "expires_at": (now + timedelta(seconds=ttl_seconds)).isoformat()
        }

        # Fresh lease
        response = self._execute(
            self.client.table(LEASES_TABLE).upsert(
                lease,
                on_conflict="conversation_id,channel_id",
                ignore_duplicates=True
            ),
            "acquire_lease"
        )
        if response.data:
            return True

        # Take over an expired one
        response = self._execute(
            self.client.table(LEASES_TABLE)
            .update({"owner": owner, "expires_at": lease["expires_at"]})
            .eq("conversation_id", conversation_id)
            .eq("channel_id", channel_id)
            .lt("expires_at", now.isoformat()),
            "acquire_lease"
        )
        return bool(response.data)

    async def renew_lease(
        self,
        conversation_id: str,
        channel_id: str,
        owner: str,
        ttl_seconds: float
    ) -> bool:
        expires_at = (utcnow() + timedelta(seconds=ttl_seconds)).isoformat()
        response = self._execute(
            self.client.table(LEASES_TABLE)
            .update({"expires_at": expires_at})
            .eq("conversation_id", conversation_id)
            .eq("channel_id", channel_id)
            .eq("owner", owner),
            "renew_lease"
        )
        return bool(response.data)

    async def release_lease(self, conversation_id: str, channel_id: str, owner: str) -> None:
        self._execute(
            self.client.table(LEASES_TABLE)
            .delete()
            .eq("conversation_id", conversation_id)
            .eq("channel_id", channel_id)
            .eq("owner", owner),
            "release_lease"
        )


class SupabaseProcessedMessageRepository:
    def __init__(self, client: Any = None):
        self.client = client or supabase

    async def has(self, message_id: str) -> bool:
        response = (
            self.client.table(PROCESSED_MESSAGES_TABLE)
            .select("message_id")
            .eq("message_id", message_id)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    async def put(self, message_id: str) -> bool:
        response = (
            self.client.table(PROCESSED_MESSAGES_TABLE)
            .upsert(
                {"message_id": message_id, "processed_at": utcnow().isoformat()},
                on_conflict="message_id",
                ignore_duplicates=True
            )
            .execute()
        )
        return bool(response.data)


class SupabaseResumeScheduler:
    def __init__(self, client: Any = None):
        self.client = client or supabase

    async def schedule_resume(self, resume: ScheduledResume) -> None:
        self.client.table(SCHEDULED_RESUMES_TABLE).insert(resume.model_dump(mode="json")).execute()
        logger.info(f"Resume {resume.id} scheduled for {resume.run_at.isoformat()}")

    async def due_resumes(self, now: Optional[datetime] = None, limit: int = 50) -> List[ScheduledResume]:
        now = now or utcnow()
        response = (
            self.client.table(SCHEDULED_RESUMES_TABLE)
            .select("*")
            .eq("status", ResumeStatus.PENDING.value)
            .lte("run_at", now.isoformat())
            .order("run_at")
            .limit(limit)
            .execute()
        )
        return [ScheduledResume(**row) for row in response.data or []]

    async def mark_resume(
        self,
        resume_id: str,
        status: ResumeStatus,
        error: Optional[str] = None
    ) -> None:
        self.client.table(SCHEDULED_RESUMES_TABLE).update({
            "status": status.value,
            "error": error
        }).eq("id", resume_id).execute()
