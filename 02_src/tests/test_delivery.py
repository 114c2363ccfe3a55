"""Tests for DeliveryTracker."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from agent_sync.errors import InvalidStateTransition, TransientStoreError, ValidationError
from agent_sync.models import JOB_STATUS_CHANNEL, DeliveryState, JobStatus


@pytest.fixture
async def message_id(message_log):
    return await message_log.submit_message("alice", "please review", ["bob", "carol"])


class TestMarkReceived:
    """Tests for mark_received()."""

    async def test_creates_received_record(self, delivery, message_id):
        """Test first call creates a received record."""
        record = await delivery.mark_received(message_id, "bob")
        assert record.state == DeliveryState.RECEIVED
        assert record.received_at is not None

    async def test_idempotent(self, delivery, message_id):
        """Test repeated calls leave the record unchanged."""
        first = await delivery.mark_received(message_id, "bob")
        second = await delivery.mark_received(message_id, "bob")
        assert second.state == first.state
        assert second.received_at == first.received_at

    async def test_returns_current_record_after_progress(self, delivery, message_id):
        """Test a processed record is returned as-is, never reset."""
        await delivery.mark_received(message_id, "bob")
        await delivery.mark_routed(message_id, "bob")
        await delivery.mark_responded(message_id, "bob")
        record = await delivery.mark_received(message_id, "bob")
        assert record.state == DeliveryState.RESPONDED

    async def test_unknown_message(self, delivery):
        """Test a missing message raises ValidationError."""
        with pytest.raises(ValidationError):
            await delivery.mark_received(999, "bob")

    async def test_recipients_independent(self, delivery, message_id):
        """Test each recipient has its own record."""
        await delivery.mark_received(message_id, "bob")
        await delivery.mark_received(message_id, "carol")
        await delivery.mark_routed(message_id, "bob")
        records = {r.recipient: r.state for r in await delivery.list_for_message(message_id)}
        assert records == {"bob": DeliveryState.ROUTED, "carol": DeliveryState.RECEIVED}


class TestTransitions:
    """Tests for routed/responded/failed transitions."""

    async def test_happy_path(self, delivery, message_id):
        """Test received -> routed -> responded with timestamps."""
        await delivery.mark_received(message_id, "bob")
        routed = await delivery.mark_routed(message_id, "bob")
        responded = await delivery.mark_responded(message_id, "bob")
        assert routed.routed_at is not None
        assert responded.state == DeliveryState.RESPONDED
        assert responded.responded_at >= responded.routed_at >= responded.received_at

    async def test_routed_without_record(self, delivery, message_id):
        """Test routing an absent record is rejected."""
        with pytest.raises(InvalidStateTransition) as exc_info:
            await delivery.mark_routed(message_id, "bob")
        assert exc_info.value.current is None

    async def test_responded_requires_routed(self, delivery, message_id):
        """Test received -> responded is not allowed."""
        await delivery.mark_received(message_id, "bob")
        with pytest.raises(InvalidStateTransition):
            await delivery.mark_responded(message_id, "bob")

    async def test_failed_from_received_and_routed(self, delivery, message_id):
        """Test failure is allowed before and after routing."""
        await delivery.mark_received(message_id, "bob")
        await delivery.mark_received(message_id, "carol")
        await delivery.mark_routed(message_id, "carol")

        bob = await delivery.mark_failed(message_id, "bob", "no handler")
        carol = await delivery.mark_failed(message_id, "carol", "timeout")
        assert bob.state == DeliveryState.FAILED
        assert bob.error_message == "no handler"
        assert carol.error_message == "timeout"

    async def test_terminal_states_not_overwritten(self, delivery, message_id):
        """Test responded cannot become failed and failed cannot be routed."""
        await delivery.mark_received(message_id, "bob")
        await delivery.mark_routed(message_id, "bob")
        await delivery.mark_responded(message_id, "bob")
        with pytest.raises(InvalidStateTransition) as exc_info:
            await delivery.mark_failed(message_id, "bob", "late error")
        assert exc_info.value.current == "responded"

        await delivery.mark_received(message_id, "carol")
        await delivery.mark_failed(message_id, "carol", "boom")
        with pytest.raises(InvalidStateTransition):
            await delivery.mark_routed(message_id, "carol")

    async def test_concurrent_routing_has_one_winner(self, delivery, message_id):
        """Test only one of two concurrent mark_routed calls succeeds."""
        await delivery.mark_received(message_id, "bob")
        results = await asyncio.gather(
            delivery.mark_routed(message_id, "bob"),
            delivery.mark_routed(message_id, "bob"),
            return_exceptions=True,
        )
        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, InvalidStateTransition)]
        assert len(successes) == 1
        assert len(failures) == 1


class TestStalled:
    """Tests for list_stalled()."""

    async def test_routed_records_older_than(self, delivery, message_id):
        """Test stalled routed records are reported."""
        await delivery.mark_received(message_id, "bob")
        await delivery.mark_routed(message_id, "bob")
        later = datetime.now(timezone.utc) + timedelta(seconds=5)
        stalled = await delivery.list_stalled(later)
        assert [(r.message_id, r.recipient) for r in stalled] == [(message_id, "bob")]


class TestJobLinkage:
    """Tests for delivery transitions driving linked jobs."""

    async def test_routed_starts_and_responded_completes(
        self, delivery, jobs, message_log, message_id
    ):
        """Test the (message, owner) job follows the delivery record."""
        job_id = await jobs.create_job(
            owner="bob", requester="alice", notify_list=["alice"], message_id=message_id
        )
        await delivery.mark_received(message_id, "bob")
        await delivery.mark_routed(message_id, "bob")
        assert (await jobs.get_job(job_id)).status == JobStatus.IN_PROGRESS

        await delivery.mark_responded(message_id, "bob")
        job = await jobs.get_job(job_id)
        assert job.status == JobStatus.COMPLETED

        notices = await message_log.list_pending("alice")
        assert len(notices) == 1
        assert notices[0].reply_to == message_id
        assert notices[0].sender == "bob"

    async def test_other_recipient_does_not_touch_job(self, delivery, jobs, message_id):
        """Test only the owner's record is linked."""
        job_id = await jobs.create_job(owner="bob", message_id=message_id)
        await delivery.mark_received(message_id, "carol")
        await delivery.mark_routed(message_id, "carol")
        assert (await jobs.get_job(job_id)).status == JobStatus.PENDING

    async def test_failed_delivery_leaves_job(self, delivery, jobs, message_id):
        """Test a failed delivery does not change the job."""
        job_id = await jobs.create_job(owner="bob", message_id=message_id)
        await delivery.mark_received(message_id, "bob")
        await delivery.mark_routed(message_id, "bob")
        await delivery.mark_failed(message_id, "bob", "crashed")
        assert (await jobs.get_job(job_id)).status == JobStatus.IN_PROGRESS

    async def test_job_completion_failure_keeps_response(
        self, delivery, jobs, storage, message_log, message_id, monkeypatch
    ):
        """Test a storage outage while completing the job does not fail the response."""
        job_id = await jobs.create_job(
            owner="bob", requester="alice", notify_list=["alice"], message_id=message_id
        )
        await delivery.mark_received(message_id, "bob")
        await delivery.mark_routed(message_id, "bob")

        async def unavailable(db, draft, created_at):
            raise TransientStoreError("database is locked")

        monkeypatch.setattr(storage, "_insert_message_row", unavailable)
        record = await delivery.mark_responded(message_id, "bob")
        assert record.state == DeliveryState.RESPONDED
        assert (await jobs.get_job(job_id)).status == JobStatus.IN_PROGRESS

        monkeypatch.undo()
        await jobs.complete_job(job_id)
        notices = [
            m for m in await message_log.list_pending("alice") if m.channel == JOB_STATUS_CHANNEL
        ]
        assert len(notices) == 1


class TestResponseStats:
    """Tests for response_stats()."""

    async def test_only_responded_records_counted(self, delivery, message_id):
        """Test per-agent counts cover responded records only."""
        for name in ("bob", "carol"):
            await delivery.mark_received(message_id, name)
            await delivery.mark_routed(message_id, name)
        await delivery.mark_responded(message_id, "bob")

        stats = await delivery.response_stats()
        assert [(s.agent, s.responses) for s in stats] == [("bob", 1)]
        assert 0 <= stats[0].min_seconds <= stats[0].avg_seconds <= stats[0].max_seconds
