"""
Execution Engine - resumable, per-conversation flow interpreter.

One call to handle_inbound_message is one stepping pass:

    idempotency check -> lease -> resume waiting execution or match a trigger
    -> step node by node until wait / delay / terminate -> persist -> release

Handlers run strictly one after another. The only awaits inside a pass are
outbound calls (messaging, apiCall), each bounded by its own timeout.
"""
import uuid
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from enum import Enum
from typing import Optional, Any, AsyncIterator, Callable, Dict

import httpx

from ..core.config import Settings, settings as default_settings
from ..models.channel import ChannelConfig
from ..models.execution import ExecutionState, ExecutionStatus, WaitKind, WaitState, utcnow
from ..models.flow import FlowGraph, DEFAULT_BRANCH
from ..models.schedule import ScheduledResume
from ..models.webhook import InboundContent, ContactMeta
from ..services.contracts import (
    MessagingGateway,
    ChannelRepository,
    GraphRepository,
    ExecutionStateRepository,
    ProcessedMessageRepository,
    ResumeScheduler,
)
from ..services.whatsapp import create_whatsapp_service
from .context import ExecutionContext
from .errors import (
    ConcurrencyConflict,
    CorruptStateError,
    ExecutionFault,
    RuntimeNodeError,
    StateStoreError,
)
from .handlers import get_handler, bind_reply
from .result import NodeTransition, TransitionType, ERROR_BRANCH, advance
from .trigger import TriggerMatcher

logger = logging.getLogger(__name__)


class InboundOutcome(str, Enum):
    """What a single engine invocation did"""
    STARTED = "started"
    RESUMED = "resumed"
    DUPLICATE = "duplicate"
    NO_MATCH = "no_match"
    CHANNEL_NOT_FOUND = "channel_not_found"
    CONFLICT = "conflict"
    IGNORED = "ignored"
    FAILED = "failed"


class LeaseHandle:
    """A held conversation lease, kept alive in the background while a pass runs"""

    def __init__(self, conversation_id: str, channel_id: str, owner: str):
        self.conversation_id = conversation_id
        self.channel_id = channel_id
        self.owner = owner
        self.lost = False

    def ensure_held(self) -> None:
        if self.lost:
            raise ConcurrencyConflict(
                f"Lease on ({self.conversation_id}, {self.channel_id}) lost by {self.owner}"
            )


class ExecutionEngine:
    """
    Drives flow executions for all conversations of all channels.

    Holds no per-conversation state of its own: everything a pass mutates
    lives in the ExecutionState it loaded under the conversation's lease.
    """

    def __init__(
        self,
        channels: ChannelRepository,
        graphs: GraphRepository,
        states: ExecutionStateRepository,
        processed: ProcessedMessageRepository,
        scheduler: ResumeScheduler,
        gateway_factory: Callable[[ChannelConfig], MessagingGateway] = create_whatsapp_service,
        http_client: Optional[httpx.AsyncClient] = None,
        matcher: Optional[TriggerMatcher] = None,
        settings: Optional[Settings] = None
    ):
        self.channels = channels
        self.graphs = graphs
        self.states = states
        self.processed = processed
        self.scheduler = scheduler
        self.gateway_factory = gateway_factory
        self.http_client = http_client
        self.matcher = matcher or TriggerMatcher()

        config = settings or default_settings
        self.max_steps = config.ENGINE_MAX_STEPS
        self.lease_seconds = config.ENGINE_LEASE_SECONDS
        self.api_default_timeout_ms = config.API_CALL_DEFAULT_TIMEOUT_MS
        self.api_max_timeout_ms = config.API_CALL_MAX_TIMEOUT_MS

        self.instance_id = uuid.uuid4().hex[:12]

    # ==================== Entry points ====================

    async def handle_inbound_message(
        self,
        channel_id: str,
        sender_id: str,
        message_id: str,
        content: InboundContent,
        contact: Optional[ContactMeta] = None
    ) -> InboundOutcome:
        """
        Process one inbound message. Never raises.

        Every failure is logged and reported as an InboundOutcome so the
        transport can always acknowledge the delivery.
        """
        try:
            return await self._handle_inbound(channel_id, sender_id, message_id, content, contact)
        except Exception as e:
            logger.exception(f"Error handling message {message_id} on channel {channel_id}: {e}")
            return InboundOutcome.FAILED

    async def handle_scheduled_resume(self, resume: ScheduledResume) -> InboundOutcome:
        """Continue an execution parked on a delay node. Never raises."""
        try:
            return await self._handle_resume(resume)
        except Exception as e:
            logger.exception(f"Error handling resume {resume.id}: {e}")
            return InboundOutcome.FAILED

    # ==================== Inbound ====================

    async def _handle_inbound(
        self,
        channel_id: str,
        sender_id: str,
        message_id: str,
        content: InboundContent,
        contact: Optional[ContactMeta]
    ) -> InboundOutcome:
        if await self.processed.has(message_id) or not await self.processed.put(message_id):
            logger.info(f"Duplicate message {message_id} ignored")
            return InboundOutcome.DUPLICATE

        channel = await self.load_channel(channel_id)
        if channel is None:
            return InboundOutcome.CHANNEL_NOT_FOUND

        gateway = self.gateway_factory(channel)
        await self._mark_as_read(gateway, message_id)

        conversation_id = sender_id
        async with self._lease(conversation_id, channel_id) as lease:
            if lease is None:
                logger.warning(
                    f"Conversation {conversation_id} on channel {channel_id} is busy, "
                    f"dropping message {message_id}"
                )
                return InboundOutcome.CONFLICT

            seed = self._contact_scope(sender_id, content, contact)

            try:
                state = await self.find_waiting_execution(conversation_id, channel_id)
            except StateStoreError as e:
                # Stored row is left as is; the next message retries the read
                logger.error(f"Could not load execution for {conversation_id} on channel {channel_id}: {e}")
                return InboundOutcome.FAILED

            if state is not None:
                return await self._resume_waiting(state, channel, gateway, content, seed, lease)

            flow = await self.find_matching_flow(channel_id, content.text)
            if flow is None:
                return InboundOutcome.NO_MATCH

            state = self.start_execution(conversation_id, channel_id, flow, seed)
            trigger = flow.get_trigger_node()
            await self.execute(state, flow, channel, gateway, start_after=trigger.id, inbound=content, lease=lease)
            return InboundOutcome.STARTED

    async def _resume_waiting(
        self,
        state: ExecutionState,
        channel: ChannelConfig,
        gateway: MessagingGateway,
        content: InboundContent,
        seed: Dict[str, Any],
        lease: Optional[LeaseHandle] = None
    ) -> InboundOutcome:
        if state.wait is not None and state.wait.kind == WaitKind.DELAY:
            logger.info(f"{state} is in a delay, dropping inbound message")
            return InboundOutcome.IGNORED

        graph = await self.graphs.get_flow(state.flow_id)
        if graph is None:
            logger.error(f"Flow {state.flow_id} no longer exists, finalizing {state}")
            state.finish(ExecutionStatus.ERRORED, "flow_not_found")
            await self._save(state)
            return InboundOutcome.FAILED

        wait = state.resume()
        state.variables.update(seed)
        bind_reply(state.variables, wait.variable_name, wait.expected_type, content)
        logger.info(f"Resuming {state} after node {wait.node_id}")

        await self.execute(state, graph, channel, gateway, start_after=wait.node_id, inbound=content, lease=lease)
        return InboundOutcome.RESUMED

    # ==================== Scheduled resume ====================

    async def _handle_resume(self, resume: ScheduledResume) -> InboundOutcome:
        """
        The resume id is recorded only once the lease is held and the
        resume still matches the stored wait, so a contended resume stays
        retryable.
        """
        if await self.processed.has(resume.id):
            logger.info(f"Duplicate resume {resume.id} ignored")
            return InboundOutcome.DUPLICATE

        channel = await self.load_channel(resume.channel_id)
        if channel is None:
            return InboundOutcome.CHANNEL_NOT_FOUND

        async with self._lease(resume.conversation_id, resume.channel_id) as lease:
            if lease is None:
                logger.warning(f"Conversation {resume.conversation_id} is busy, deferring resume {resume.id}")
                return InboundOutcome.CONFLICT

            state = await self.states.get(resume.conversation_id, resume.channel_id)
            wait = state.wait if state is not None else None
            if (
                state is None
                or not state.is_waiting
                or wait is None
                or wait.kind != WaitKind.DELAY
                or wait.node_id != resume.node_id
                or (wait.resume_id is not None and wait.resume_id != resume.id)
            ):
                logger.info(f"Resume {resume.id} no longer matches a waiting execution")
                return InboundOutcome.IGNORED

            if not await self.processed.put(resume.id):
                logger.info(f"Duplicate resume {resume.id} ignored")
                return InboundOutcome.DUPLICATE

            graph = await self.graphs.get_flow(state.flow_id)
            if graph is None:
                logger.error(f"Flow {state.flow_id} no longer exists, finalizing {state}")
                state.finish(ExecutionStatus.ERRORED, "flow_not_found")
                await self._save(state)
                return InboundOutcome.FAILED

            state.resume()
            logger.info(f"Resuming {state} after delay node {resume.node_id}")
            gateway = self.gateway_factory(channel)
            await self.execute(state, graph, channel, gateway, start_after=resume.node_id, lease=lease)
            return InboundOutcome.RESUMED

    # ==================== Lookup ====================

    async def load_channel(self, channel_id: str) -> Optional[ChannelConfig]:
        channel = await self.channels.get_channel(channel_id)
        if channel is None:
            logger.warning(f"Channel not found: {channel_id}")
            return None
        if not channel.is_active:
            logger.warning(f"Channel {channel_id} is inactive")
            return None
        return channel

    async def find_waiting_execution(self, conversation_id: str, channel_id: str) -> Optional[ExecutionState]:
        """
        Return the waiting execution for this key, if any.

        A reply wait past its expiry is finalized as errored. A row left
        "running" can only come from a pass that died mid-way (we hold the
        lease), so it is finalized too. An unreadable row is finalized as
        errored in place so a new execution can replace it.
        """
        try:
            state = await self.states.get(conversation_id, channel_id)
        except CorruptStateError as e:
            logger.error(f"Finalizing unreadable execution for {conversation_id} on channel {channel_id}: {e}")
            await self.states.mark_errored(conversation_id, channel_id, "corrupt_state")
            return None

        if state is None or state.is_terminal:
            return None

        if state.status == ExecutionStatus.RUNNING:
            logger.warning(f"Finalizing interrupted {state}")
            state.finish(ExecutionStatus.ERRORED, "interrupted")
            await self._save(state)
            return None

        if state.wait is not None and state.wait.kind == WaitKind.REPLY and state.wait.is_expired():
            logger.info(f"Wait expired for {state}")
            state.finish(ExecutionStatus.ERRORED, "wait_timeout")
            await self._save(state)
            return None

        return state

    async def find_matching_flow(self, channel_id: str, message_text: Optional[str]) -> Optional[FlowGraph]:
        flows = await self.graphs.list_active_flows(channel_id)
        return self.matcher.match(flows, message_text)

    def start_execution(
        self,
        conversation_id: str,
        channel_id: str,
        flow: FlowGraph,
        variables: Optional[Dict[str, Any]] = None
    ) -> ExecutionState:
        trigger = flow.get_trigger_node()
        if trigger is None:
            raise ExecutionFault(f"Flow {flow.id} has no trigger node")

        state = ExecutionState(
            conversation_id=conversation_id,
            channel_id=channel_id,
            flow_id=flow.id,
            current_node_id=trigger.id,
            variables=dict(variables or {})
        )
        logger.info(f"Starting {state}")
        return state

    # ==================== Stepping ====================

    async def execute(
        self,
        state: ExecutionState,
        graph: FlowGraph,
        channel: ChannelConfig,
        gateway: MessagingGateway,
        start_after: str,
        inbound: Optional[InboundContent] = None,
        lease: Optional[LeaseHandle] = None
    ) -> ExecutionState:
        """
        Step from the edge leaving `start_after` and persist the outcome.

        Faults finalize the execution as errored; they are logged here and
        never reach the caller. A pass whose lease was lost stops before the
        next step and persists nothing: the conversation belongs to the new
        lease holder.
        """
        ctx = ExecutionContext(
            state=state,
            graph=graph,
            channel=channel,
            gateway=gateway,
            inbound=inbound,
            http_client=self.http_client,
            api_default_timeout_ms=self.api_default_timeout_ms,
            api_max_timeout_ms=self.api_max_timeout_ms
        )

        try:
            await self._run_steps(ctx, graph.next_node_id(start_after, DEFAULT_BRANCH), lease)
            if lease is not None:
                lease.ensure_held()
        except ConcurrencyConflict as e:
            logger.warning(f"Abandoning pass for {state}: {e}")
            return state
        except ExecutionFault as e:
            logger.error(f"Execution fault in {state}: {e}")
            state.finish(ExecutionStatus.ERRORED, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error in {state}: {e}")
            state.finish(ExecutionStatus.ERRORED, f"unexpected: {e}")

        if not await self._save(state):
            return state

        if state.is_waiting and state.wait is not None and state.wait.kind == WaitKind.DELAY:
            await self._schedule_resume(state)

        return state

    async def _run_steps(
        self,
        ctx: ExecutionContext,
        node_id: Optional[str],
        lease: Optional[LeaseHandle] = None
    ) -> None:
        state, graph = ctx.state, ctx.graph
        steps = 0

        while node_id is not None:
            if lease is not None:
                lease.ensure_held()

            steps += 1
            if steps > self.max_steps:
                raise ExecutionFault(f"Step budget of {self.max_steps} exceeded at node {node_id}")

            node = graph.get_node(node_id)
            if node is None:
                raise ExecutionFault(f"Node not found: {node_id}")

            handler = get_handler(node.type)
            if handler is None:
                raise ExecutionFault(f"No handler for node type: {node.type}")

            try:
                config = node.parse_config()
            except ValueError as e:
                raise ExecutionFault(f"Invalid config on node {node.id}: {e}") from e

            state.current_node_id = node.id
            ctx.node = node

            try:
                transition = await handler(config, state.variables, ctx)
            except RuntimeNodeError as e:
                logger.warning(f"Node {node.id} ({node.type}) failed: {e}")
                transition = advance(ERROR_BRANCH, error=str(e))

            logger.debug(f"Node {node.id} ({node.type}) -> {transition.type.value}:{transition.branch}")

            if transition.type == TransitionType.ADVANCE:
                next_id = graph.next_node_id(node.id, transition.branch)
                if next_id is None and transition.error:
                    raise ExecutionFault(f"Node {node.id} failed with no error branch: {transition.error}")
                node_id = next_id
                continue

            self._apply_suspension_or_end(state, node.id, transition)
            return

        # Chosen branch had no outgoing edge
        state.finish(ExecutionStatus.COMPLETED)
        logger.info(f"Completed {state.flow_id} for {state.conversation_id}")

    def _apply_suspension_or_end(self, state: ExecutionState, node_id: str, transition: NodeTransition) -> None:
        now = utcnow()

        if transition.type == TransitionType.WAIT:
            expires_at = None
            if transition.timeout_seconds:
                expires_at = now + timedelta(seconds=transition.timeout_seconds)
            state.suspend(WaitState(
                kind=WaitKind.REPLY,
                node_id=node_id,
                variable_name=transition.variable_name,
                expected_type=transition.expected_type,
                expires_at=expires_at
            ))
            logger.info(f"Waiting for reply: {state}")

        elif transition.type == TransitionType.DELAY:
            state.suspend(WaitState(
                kind=WaitKind.DELAY,
                node_id=node_id,
                resume_at=now + timedelta(seconds=transition.delay_seconds),
                resume_id=f"resume-{uuid.uuid4().hex}"
            ))
            logger.info(f"Delaying {transition.delay_seconds}s: {state}")

        else:
            state.finish(transition.status or ExecutionStatus.COMPLETED, transition.error)
            logger.info(f"Terminated {state.flow_id} for {state.conversation_id}: {state.status.value}")

    # ==================== Helpers ====================

    async def _save(self, state: ExecutionState) -> bool:
        try:
            await self.states.put(state)
            return True
        except ConcurrencyConflict as e:
            logger.warning(f"Lost write for {state}: {e}")
        except ExecutionFault as e:
            logger.error(f"Could not persist {state}: {e}")
        return False

    async def _schedule_resume(self, state: ExecutionState) -> None:
        wait = state.wait
        resume = ScheduledResume(
            id=wait.resume_id,
            conversation_id=state.conversation_id,
            channel_id=state.channel_id,
            node_id=wait.node_id,
            run_at=wait.resume_at
        )
        try:
            await self.scheduler.schedule_resume(resume)
        except Exception as e:
            logger.exception(f"Could not schedule resume for {state}: {e}")
            state.finish(ExecutionStatus.ERRORED, "schedule_failed")
            await self._save(state)

    async def _mark_as_read(self, gateway: MessagingGateway, message_id: str) -> None:
        result = await gateway.mark_as_read(message_id)
        if not result.get("success"):
            logger.warning(f"Could not mark {message_id} as read: {result.get('error')}")

    @asynccontextmanager
    async def _lease(self, conversation_id: str, channel_id: str) -> AsyncIterator[Optional[LeaseHandle]]:
        """Yield the held lease, or None when another pass holds it"""
        owner = f"{self.instance_id}:{uuid.uuid4().hex[:8]}"
        if not await self.states.acquire_lease(conversation_id, channel_id, owner, self.lease_seconds):
            yield None
            return

        lease = LeaseHandle(conversation_id, channel_id, owner)
        heartbeat = asyncio.create_task(self._keep_lease(lease))
        try:
            yield lease
        finally:
            heartbeat.cancel()
            try:
                await heartbeat
            except asyncio.CancelledError:
                pass
            await self.states.release_lease(conversation_id, channel_id, owner)

    async def _keep_lease(self, lease: LeaseHandle) -> None:
        """Renew every third of the TTL; flag the lease lost on the first failed renewal"""
        interval = self.lease_seconds / 3
        while True:
            await asyncio.sleep(interval)
            try:
                renewed = await self.states.renew_lease(
                    lease.conversation_id, lease.channel_id, lease.owner, self.lease_seconds
                )
            except Exception as e:
                logger.error(f"Lease renewal failed for {lease.conversation_id}: {e}")
                renewed = False

            if not renewed:
                logger.warning(f"Lease on {lease.conversation_id} lost by {lease.owner}")
                lease.lost = True
                return

    @staticmethod
    def _contact_scope(
        sender_id: str,
        content: InboundContent,
        contact: Optional[ContactMeta]
    ) -> Dict[str, Any]:
        contact = contact or ContactMeta()
        return {
            "customer_phone": sender_id,
            "customer_name": contact.name or sender_id,
            "customer_wa_id": contact.wa_id or sender_id,
            "last_message": content.to_scope()
        }


def create_execution_engine(
    settings: Optional[Settings] = None,
    **overrides: Any
) -> ExecutionEngine:
    """
    Factory function to create an ExecutionEngine.

    STORAGE_BACKEND selects Supabase or in-memory repositories; any
    collaborator can be overridden by keyword.
    """
    config = settings or default_settings

    if config.STORAGE_BACKEND == "memory":
        from ..services.memory_store import (
            InMemoryChannelRepository,
            InMemoryGraphRepository,
            InMemoryExecutionStateRepository,
            InMemoryProcessedMessageRepository,
            InMemoryResumeScheduler,
        )
        repositories = {
            "channels": InMemoryChannelRepository(),
            "graphs": InMemoryGraphRepository(),
            "states": InMemoryExecutionStateRepository(),
            "processed": InMemoryProcessedMessageRepository(),
            "scheduler": InMemoryResumeScheduler(),
        }
    else:
        from ..services.database import (
            SupabaseChannelRepository,
            SupabaseGraphRepository,
            SupabaseExecutionStateRepository,
            SupabaseProcessedMessageRepository,
            SupabaseResumeScheduler,
        )
        repositories = {
            "channels": SupabaseChannelRepository(),
            "graphs": SupabaseGraphRepository(),
            "states": SupabaseExecutionStateRepository(),
            "processed": SupabaseProcessedMessageRepository(),
            "scheduler": SupabaseResumeScheduler(),
        }

    repositories.update(overrides)
    logger.info(f"Execution engine using {config.STORAGE_BACKEND} storage")
    return ExecutionEngine(settings=config, **repositories)
