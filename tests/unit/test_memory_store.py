"""
Unit tests for the in-memory repositories (versioned writes and leases).
"""
import asyncio

import pytest

from chatflow.flow.errors import ConcurrencyConflict, CorruptStateError
from chatflow.models import ExecutionState, ExecutionStatus, ResumeStatus, ScheduledResume, utcnow


def new_state(**kwargs):
    return ExecutionState(**{"conversation_id": "c", "channel_id": "ch", "flow_id": "f", **kwargs})


class TestVersionedWrites:
    """Tests for compare-and-set state writes."""

    async def test_put_bumps_version(self, states):
        """Each successful write bumps the version."""
        state = await states.put(new_state())
        assert state.version == 1
        state = await states.put(state)
        assert state.version == 2
        assert (await states.get("c", "ch")).version == 2

    async def test_stale_write_conflicts(self, states):
        """Writing from an outdated copy raises ConcurrencyConflict."""
        await states.put(new_state())
        first = await states.get("c", "ch")
        second = await states.get("c", "ch")

        await states.put(first)
        with pytest.raises(ConcurrencyConflict):
            await states.put(second)

    async def test_new_execution_over_active_conflicts(self, states):
        """A new execution cannot replace an active one."""
        await states.put(new_state())
        with pytest.raises(ConcurrencyConflict):
            await states.put(new_state())

    async def test_new_execution_replaces_finished(self, states):
        """A finished execution may be replaced by a new one."""
        state = new_state()
        state.finish(ExecutionStatus.COMPLETED)
        await states.put(state)

        replacement = await states.put(new_state(flow_id="other"))
        assert replacement.version == 1
        assert (await states.get("c", "ch")).flow_id == "other"

    async def test_reads_are_copies(self, states):
        """Mutating a read does not touch the stored record."""
        await states.put(new_state())
        state = await states.get("c", "ch")
        state.variables["x"] = 1
        assert (await states.get("c", "ch")).variables == {}

    async def test_corrupt_record(self, states):
        """An unreadable record raises CorruptStateError."""
        states.load_records({("c", "ch"): {"conversation_id": "c", "status": "bogus"}})
        with pytest.raises(CorruptStateError):
            await states.get("c", "ch")

    async def test_mark_errored_unblocks_new_execution(self, states):
        """A corrupt record finalized as errored can be replaced by a new execution."""
        states.load_records({("c", "ch"): {"conversation_id": "c", "status": "bogus"}})

        await states.mark_errored("c", "ch", "corrupt_state")

        assert states.records()[("c", "ch")]["status"] == "errored"
        assert (await states.put(new_state())).version == 1

    async def test_delete(self, states):
        await states.put(new_state())
        assert await states.delete("c", "ch")
        assert await states.get("c", "ch") is None


class TestLeases:
    """Tests for time-bounded leases."""

    async def test_exclusive(self, states):
        """A held lease blocks other owners."""
        assert await states.acquire_lease("c", "ch", "one", 30)
        assert not await states.acquire_lease("c", "ch", "two", 30)

    async def test_release(self, states):
        """A released lease can be taken by another owner."""
        await states.acquire_lease("c", "ch", "one", 30)
        await states.release_lease("c", "ch", "one")
        assert await states.acquire_lease("c", "ch", "two", 30)

    async def test_release_by_other_owner_ignored(self, states):
        """Only the holder can release a lease."""
        await states.acquire_lease("c", "ch", "one", 30)
        await states.release_lease("c", "ch", "two")
        assert not await states.acquire_lease("c", "ch", "two", 30)

    async def test_expired_lease_taken_over(self, states):
        """An expired lease does not lock the conversation."""
        await states.acquire_lease("c", "ch", "crashed", 0.01)
        await asyncio.sleep(0.05)
        assert await states.acquire_lease("c", "ch", "next", 30)

    async def test_keys_are_independent(self, states):
        """Leases on different conversations do not interfere."""
        assert await states.acquire_lease("c1", "ch", "one", 30)
        assert await states.acquire_lease("c2", "ch", "two", 30)

    async def test_renew_by_holder(self, states):
        """The holder extends its lease past the original expiry."""
        await states.acquire_lease("c", "ch", "one", 0.05)
        assert await states.renew_lease("c", "ch", "one", 30)
        await asyncio.sleep(0.1)
        assert not await states.acquire_lease("c", "ch", "two", 30)

    async def test_renew_after_takeover_fails(self, states):
        """A lease taken over by another owner can no longer be renewed."""
        await states.acquire_lease("c", "ch", "slow", 0.01)
        await asyncio.sleep(0.05)
        await states.acquire_lease("c", "ch", "next", 30)

        assert not await states.renew_lease("c", "ch", "slow", 30)


class TestProcessedMessagesAndResumes:
    """Tests for idempotency records and the resume scheduler."""

    async def test_processed_put_once(self, processed):
        assert not await processed.has("m1")
        assert await processed.put("m1")
        assert not await processed.put("m1")
        assert await processed.has("m1")

    async def test_due_resumes(self, scheduler):
        """Only pending resumes whose time has come are due."""
        now = utcnow()
        due = ScheduledResume(id="r1", conversation_id="c", channel_id="ch", node_id="d", run_at=now)
        later = ScheduledResume(id="r2", conversation_id="c", channel_id="ch", node_id="d",
                                run_at=now.replace(year=now.year + 1))
        await scheduler.schedule_resume(due)
        await scheduler.schedule_resume(later)

        assert [r.id for r in await scheduler.due_resumes(now)] == ["r1"]

        await scheduler.mark_resume("r1", ResumeStatus.DONE)
        assert await scheduler.due_resumes(now) == []
