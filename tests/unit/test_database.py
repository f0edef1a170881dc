"""
Unit tests for the Supabase repositories, against a scripted query builder.
"""
from types import SimpleNamespace

import pytest

from chatflow.flow.errors import ConcurrencyConflict, CorruptStateError, StateStoreError
from chatflow.models import ExecutionState, ExecutionStatus
from chatflow.services.database import (
    SupabaseExecutionStateRepository,
    SupabaseGraphRepository,
    SupabaseProcessedMessageRepository,
)


class FakeQuery:
    """Chainable query builder; execute() pops the next scripted response"""

    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.calls = []

    def __getattr__(self, name):
        def method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return method

    def execute(self):
        self.client.executed.append(self)
        result = self.client.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return SimpleNamespace(data=result)


class FakeClient:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.executed = []

    def table(self, name):
        return FakeQuery(self, name)


def new_state(**kwargs):
    return ExecutionState(conversation_id="c", channel_id="ch", flow_id="f", **kwargs)


class TestSupabaseExecutionStateRepository:
    """Tests for versioned writes and leases"""

    async def test_get_missing(self):
        """No row means no execution."""
        repo = SupabaseExecutionStateRepository(client=FakeClient([]))
        assert await repo.get("c", "ch") is None

    async def test_get_corrupt_row(self):
        """An unreadable row raises CorruptStateError."""
        repo = SupabaseExecutionStateRepository(client=FakeClient([{"status": "???"}]))
        with pytest.raises(CorruptStateError):
            await repo.get("c", "ch")

    async def test_query_failure_wrapped(self):
        """Client errors surface as StateStoreError, distinct from a corrupt row."""
        repo = SupabaseExecutionStateRepository(client=FakeClient(RuntimeError("boom")))
        with pytest.raises(StateStoreError) as exc_info:
            await repo.get("c", "ch")
        assert not isinstance(exc_info.value, CorruptStateError)

    async def test_mark_errored(self):
        """A row is finalized in place, without reading it back."""
        client = FakeClient([{"conversation_id": "c"}])
        repo = SupabaseExecutionStateRepository(client=client)

        await repo.mark_errored("c", "ch", "corrupt_state")

        update = client.executed[0]
        assert update.calls[0][0] == "update"
        assert update.calls[0][1][0]["status"] == "errored"
        assert ("eq", ("channel_id", "ch"), {}) in update.calls

    async def test_insert_new_state(self):
        """A new state is upserted and its version bumped."""
        client = FakeClient([], [{"conversation_id": "c"}])
        repo = SupabaseExecutionStateRepository(client=client)

        state = await repo.put(new_state())

        assert state.version == 1
        upsert = client.executed[1]
        assert upsert.calls[0][0] == "upsert"
        assert upsert.calls[0][1][0]["version"] == 1

    async def test_insert_over_active_execution(self):
        """A new state never overwrites a non-terminal one."""
        repo = SupabaseExecutionStateRepository(client=FakeClient([{"status": "waiting"}]))
        with pytest.raises(ConcurrencyConflict):
            await repo.put(new_state())

    async def test_insert_over_terminal_execution(self):
        """A finished execution can be replaced."""
        client = FakeClient([{"status": "completed"}], [{"conversation_id": "c"}])
        repo = SupabaseExecutionStateRepository(client=client)

        assert (await repo.put(new_state())).version == 1

    async def test_update_filters_on_version(self):
        """Updates are compare-and-set on the stored version."""
        client = FakeClient([{"conversation_id": "c"}])
        repo = SupabaseExecutionStateRepository(client=client)
        state = new_state(version=3, status=ExecutionStatus.RUNNING)

        await repo.put(state)

        assert ("eq", ("version", 3), {}) in client.executed[0].calls
        assert state.version == 4

    async def test_stale_update(self):
        """An update matching no row is a conflict."""
        repo = SupabaseExecutionStateRepository(client=FakeClient([]))
        with pytest.raises(ConcurrencyConflict):
            await repo.put(new_state(version=2))

    async def test_fresh_lease(self):
        """Inserting a lease row acquires it."""
        repo = SupabaseExecutionStateRepository(client=FakeClient([{"owner": "a"}]))
        assert await repo.acquire_lease("c", "ch", "a", 30) is True

    async def test_held_lease(self):
        """A live lease held by someone else cannot be taken."""
        repo = SupabaseExecutionStateRepository(client=FakeClient([], []))
        assert await repo.acquire_lease("c", "ch", "b", 30) is False

    async def test_expired_lease_taken_over(self):
        """An expired lease is taken over."""
        client = FakeClient([], [{"owner": "b"}])
        repo = SupabaseExecutionStateRepository(client=client)

        assert await repo.acquire_lease("c", "ch", "b", 30) is True
        assert client.executed[1].calls[-1][0] == "lt"

    async def test_renew_lease_filters_on_owner(self):
        """Renewal only touches a lease row still owned by the caller."""
        client = FakeClient([{"owner": "a"}])
        repo = SupabaseExecutionStateRepository(client=client)

        assert await repo.renew_lease("c", "ch", "a", 30) is True
        assert ("eq", ("owner", "a"), {}) in client.executed[0].calls

    async def test_renew_lost_lease(self):
        """Renewal of a lease taken over by another owner reports False."""
        repo = SupabaseExecutionStateRepository(client=FakeClient([]))
        assert await repo.renew_lease("c", "ch", "a", 30) is False


class TestSupabaseProcessedMessageRepository:
    """Tests for the idempotency record"""

    async def test_first_put(self):
        """The first insert reports the id as new."""
        repo = SupabaseProcessedMessageRepository(client=FakeClient([{"message_id": "m"}]))
        assert await repo.put("m") is True

    async def test_duplicate_put(self):
        """An ignored duplicate reports the id as seen."""
        repo = SupabaseProcessedMessageRepository(client=FakeClient([]))
        assert await repo.put("m") is False


class TestSupabaseGraphRepository:
    """Tests for loading flow graphs"""

    def flow_row(self, flow_id):
        return {
            "id": flow_id,
            "name": flow_id,
            "whatsapp_config_id": "ch",
            "is_active": True,
            "is_published": True,
            "trigger_type": "any_message",
        }

    async def test_invalid_flow_skipped(self):
        """Flows failing validation never reach the engine."""
        nodes_ok = [
            {"id": "t", "flow_id": "good", "node_type": "trigger", "config": {}},
            {"id": "s", "flow_id": "good", "node_type": "sendText", "config": {"message": "hi"}},
        ]
        edges_ok = [{"id": "e", "flow_id": "good", "source_node_id": "t", "target_node_id": "s"}]
        nodes_bad = [{"id": "s", "flow_id": "bad", "node_type": "sendText", "config": {"message": "hi"}}]
        client = FakeClient(
            [self.flow_row("good"), self.flow_row("bad")],
            nodes_ok, edges_ok,
            nodes_bad, [],
        )
        repo = SupabaseGraphRepository(client=client)

        flows = await repo.list_active_flows("ch")

        assert [flow.id for flow in flows] == ["good"]

    async def test_missing_flow(self):
        """Unknown flow ids return None."""
        repo = SupabaseGraphRepository(client=FakeClient([]))
        assert await repo.get_flow("nope") is None
