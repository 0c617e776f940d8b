"""
Unit Tests for JobQueue
Enqueue, delays, claiming, retries, cancellation and recovery
"""
from datetime import datetime, timedelta

import pytest

from salescaller.domain.exceptions import ConflictError, NotFoundError, ValidationError
from salescaller.domain.models.job import BackoffPolicy, JobOptions, JobStatus
from salescaller.domain.services.queue_service import JobQueue, LaneSettings

CALL_PAYLOAD = {"leadId": "lead-1", "userId": "user-1"}


class TestEnqueue:
    """Tests for the producer side"""

    @pytest.mark.asyncio
    async def test_enqueue_adds_waiting_job(self, queue):
        job = await queue.enqueue("calls", "make-call", CALL_PAYLOAD)

        assert job.status == "waiting"
        assert job.max_attempts == 3
        stats = await queue.get_queue_stats("calls")
        assert stats["waiting"] == 1
        assert (await queue.get_job(job.job_id)).payload == CALL_PAYLOAD

    @pytest.mark.asyncio
    async def test_enqueue_with_delay_is_not_claimable_yet(self, queue):
        job = await queue.enqueue("calls", "make-call", CALL_PAYLOAD, JobOptions(delay=60))

        assert job.status == "delayed"
        assert job.run_at > datetime.utcnow() + timedelta(seconds=50)
        assert await queue.promote_due_jobs("calls") == 0
        assert await queue.dequeue("calls") is None
        assert (await queue.get_queue_stats("calls"))["delayed"] == 1

    @pytest.mark.asyncio
    async def test_unknown_lane_rejected(self, queue):
        with pytest.raises(ValidationError, match="Unknown queue lane"):
            await queue.enqueue("sms", "make-call", CALL_PAYLOAD)

    @pytest.mark.asyncio
    async def test_job_type_must_match_lane(self, queue):
        with pytest.raises(ValidationError, match="cannot run on lane"):
            await queue.enqueue("exports", "make-call", CALL_PAYLOAD)

    @pytest.mark.asyncio
    async def test_options_override_lane_defaults(self, queue):
        job = await queue.enqueue(
            "calls", "make-call", CALL_PAYLOAD,
            JobOptions(max_attempts=5, backoff=BackoffPolicy(type="fixed", delay=9), job_id="fixed-id")
        )

        assert job.job_id == "fixed-id"
        assert job.max_attempts == 5
        assert job.backoff.delay == 9


class TestDequeue:
    """Tests for claiming jobs"""

    @pytest.mark.asyncio
    async def test_fifo_order_within_lane(self, queue):
        first = await queue.enqueue("calls", "make-call", CALL_PAYLOAD)
        second = await queue.enqueue("calls", "make-call", CALL_PAYLOAD)

        assert (await queue.dequeue("calls")).job_id == first.job_id
        assert (await queue.dequeue("calls")).job_id == second.job_id

    @pytest.mark.asyncio
    async def test_dequeue_marks_active_and_counts_attempt(self, queue):
        await queue.enqueue("calls", "make-call", CALL_PAYLOAD)

        job = await queue.dequeue("calls")

        assert job.status == "active"
        assert job.attempts_made == 1
        stats = await queue.get_queue_stats("calls")
        assert stats == {"waiting": 0, "active": 1, "completed": 0, "failed": 0, "delayed": 0}

    @pytest.mark.asyncio
    async def test_lanes_are_independent(self, queue):
        await queue.enqueue("exports", "export-data", {"type": "LEADS", "userId": "u1"})

        assert await queue.dequeue("calls") is None
        assert await queue.dequeue("exports") is not None

    @pytest.mark.asyncio
    async def test_due_delayed_job_is_promoted(self, queue, redis_client):
        job = await queue.enqueue("calls", "make-call", CALL_PAYLOAD, JobOptions(delay=60))
        # Pretend the delay elapsed
        redis_client.zsets["salescaller:queue:calls:delayed"][job.job_id] = 0

        assert await queue.promote_due_jobs("calls") == 1
        claimed = await queue.dequeue("calls")
        assert claimed.job_id == job.job_id


class TestOutcomes:
    """Tests for completion and failure handling"""

    @pytest.mark.asyncio
    async def test_complete_records_result(self, queue, redis_client):
        await queue.enqueue("calls", "make-call", CALL_PAYLOAD)
        job = await queue.dequeue("calls")

        await queue.complete(job, {"call_log_id": "c1"})

        stored = await queue.get_job(job.job_id)
        assert stored.status == "completed"
        assert stored.result == {"call_log_id": "c1"}
        assert (await queue.get_queue_stats("calls"))["completed"] == 1
        # Terminal records expire after the retention window
        assert redis_client.expiry[f"salescaller:job:{job.job_id}"] == queue.retention_seconds

    @pytest.mark.asyncio
    async def test_retryable_failure_is_delayed_with_backoff(self, redis_client):
        queue = JobQueue(redis_client=redis_client, lane_settings={
            "calls": LaneSettings(max_attempts=4, backoff=BackoffPolicy(type="exponential", delay=2)),
        })
        await queue.enqueue("calls", "make-call", CALL_PAYLOAD)

        delays = []
        for _ in range(3):
            job = await queue.dequeue("calls")
            job = await queue.fail(job, "ProviderError: timeout")
            assert job.status == "delayed"
            delays.append(job.retry_delays[-1])
            # Make it due again
            redis_client.zsets["salescaller:queue:calls:delayed"][job.job_id] = 0
            await queue.promote_due_jobs("calls")

        assert delays == [2, 4, 8]

    @pytest.mark.asyncio
    async def test_failure_after_last_attempt_is_terminal(self, queue):
        await queue.enqueue("calls", "make-call", CALL_PAYLOAD, JobOptions(max_attempts=1))
        job = await queue.dequeue("calls")

        job = await queue.fail(job, "ProviderError: rejected")

        assert job.status == "failed"
        assert job.error == "ProviderError: rejected"
        failed = await queue.list_failed("calls")
        assert [j.job_id for j in failed] == [job.job_id]

    @pytest.mark.asyncio
    async def test_non_retryable_failure_skips_remaining_attempts(self, queue):
        await queue.enqueue("calls", "make-call", CALL_PAYLOAD)
        job = await queue.dequeue("calls")

        job = await queue.fail(job, "ValidationError: bad payload", retryable=False)

        assert job.status == "failed"
        assert job.attempts_made == 1


class TestCancel:
    """Tests for cancellation"""

    @pytest.mark.asyncio
    async def test_cancel_waiting_job(self, queue):
        job = await queue.enqueue("calls", "make-call", CALL_PAYLOAD)

        cancelled = await queue.cancel(job.job_id)

        assert cancelled.status == "cancelled"
        assert await queue.dequeue("calls") is None

    @pytest.mark.asyncio
    async def test_cancel_delayed_job(self, queue):
        job = await queue.enqueue("calls", "make-call", CALL_PAYLOAD, JobOptions(delay=30))

        await queue.cancel(job.job_id)

        assert (await queue.get_queue_stats("calls"))["delayed"] == 0

    @pytest.mark.asyncio
    async def test_cancel_active_job_conflicts(self, queue):
        job = await queue.enqueue("calls", "make-call", CALL_PAYLOAD)
        await queue.dequeue("calls")

        with pytest.raises(ConflictError):
            await queue.cancel(job.job_id)

    @pytest.mark.asyncio
    async def test_cancel_unknown_job(self, queue):
        with pytest.raises(NotFoundError):
            await queue.cancel("missing")


class TestRecovery:
    """Tests for requeue and stalled job recovery"""

    @pytest.mark.asyncio
    async def test_requeue_keeps_attempt_number(self, queue):
        await queue.enqueue("calls", "make-call", CALL_PAYLOAD)
        job = await queue.dequeue("calls")

        await queue.requeue(job)
        again = await queue.dequeue("calls")

        assert again.job_id == job.job_id
        assert again.attempts_made == 1

    @pytest.mark.asyncio
    async def test_recover_stalled_moves_active_back(self, queue):
        await queue.enqueue("calls", "make-call", CALL_PAYLOAD)
        await queue.enqueue("calls", "make-call", CALL_PAYLOAD)
        await queue.dequeue("calls")
        await queue.dequeue("calls")

        recovered = await queue.recover_stalled("calls")

        assert recovered == 2
        stats = await queue.get_queue_stats("calls")
        assert stats["active"] == 0
        assert stats["waiting"] == 2
        job = await queue.dequeue("calls")
        assert job.attempts_made == 1

    @pytest.mark.asyncio
    async def test_get_all_stats_covers_every_lane(self, queue):
        stats = await queue.get_all_stats()

        assert set(stats) == {"calls", "messaging", "exports"}
