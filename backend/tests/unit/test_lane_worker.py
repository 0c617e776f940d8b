"""
Unit Tests for Lane Workers
Retry policy, error classification and the handler registry
"""
import asyncio

import pytest

from salescaller.domain.exceptions import ConflictError, NotFoundError, ProviderError, ValidationError
from salescaller.domain.models.job import JobOptions
from salescaller.workers.lane_worker import LaneWorker, WorkerPool
from salescaller.workers.registry import HandlerRegistry

CALL_PAYLOAD = {"leadId": "lead-1", "userId": "user-1"}


def make_worker(queue, handler, job_timeout=5.0):
    registry = HandlerRegistry()
    registry.register("make-call", handler)
    return LaneWorker("calls", queue, registry, job_timeout=job_timeout, poll_interval=0.01)


class TestHandlerRegistry:
    """Tests for HandlerRegistry"""

    def test_register_and_get(self):
        async def handler(payload, context):
            return {}

        registry = HandlerRegistry()
        registry.register("make-call", handler)

        assert registry.get("make-call") is handler
        assert registry.job_types() == ["make-call"]

    def test_unknown_job_type_raises(self):
        with pytest.raises(ValidationError, match="No handler registered"):
            HandlerRegistry().get("send-fax")


class TestRetryPolicy:
    """Tests for the worker's outcome decisions"""

    @pytest.mark.asyncio
    async def test_transient_failures_then_success_runs_once_successfully(self, queue):
        """A handler failing max_attempts-1 times then succeeding completes exactly once"""
        outcomes = []

        async def flaky(payload, context):
            outcomes.append(context.attempt)
            if context.attempt < 3:
                raise ProviderError("RETELL", "timeout")
            return {"ok": True}

        job = await queue.enqueue("calls", "make-call", CALL_PAYLOAD)
        worker = make_worker(queue, flaky)

        processed = await worker.run_pending()

        stored = await queue.get_job(job.job_id)
        assert processed == 3
        assert outcomes == [1, 2, 3]
        assert stored.status == "completed"
        assert stored.result == {"ok": True}
        assert stored.retry_delays == sorted(stored.retry_delays)
        assert len(stored.retry_delays) == 2
        assert worker.get_stats()["jobs_processed"] == 1
        assert worker.get_stats()["jobs_retried"] == 2

    @pytest.mark.asyncio
    async def test_exhausted_attempts_fail_permanently(self, queue):
        async def always_fails(payload, context):
            raise ProviderError("RETELL", "unavailable")

        job = await queue.enqueue("calls", "make-call", CALL_PAYLOAD)
        worker = make_worker(queue, always_fails)

        await worker.run_pending()

        stored = await queue.get_job(job.job_id)
        assert stored.status == "failed"
        assert stored.attempts_made == 3
        assert "unavailable" in stored.error
        assert worker.get_stats()["jobs_failed"] == 1

    @pytest.mark.asyncio
    async def test_not_found_is_discarded_not_retried(self, queue):
        calls = []

        async def missing_lead(payload, context):
            calls.append(context.attempt)
            raise NotFoundError("Lead lead-1 not found")

        job = await queue.enqueue("calls", "make-call", CALL_PAYLOAD)
        worker = make_worker(queue, missing_lead)

        await worker.run_pending()

        stored = await queue.get_job(job.job_id)
        assert calls == [1]
        assert stored.status == "completed"
        assert stored.result["status"] == "discarded"
        assert worker.get_stats()["jobs_discarded"] == 1

    @pytest.mark.asyncio
    async def test_validation_error_is_terminal(self, queue):
        calls = []

        async def bad_payload(payload, context):
            calls.append(context.attempt)
            raise ValidationError("Invalid CallJobPayload")

        job = await queue.enqueue("calls", "make-call", CALL_PAYLOAD)
        await make_worker(queue, bad_payload).run_pending()

        stored = await queue.get_job(job.job_id)
        assert calls == [1]
        assert stored.status == "failed"
        assert stored.error.startswith("ValidationError")

    @pytest.mark.asyncio
    async def test_conflict_is_terminal(self, queue):
        async def dnc(payload, context):
            raise ConflictError("Lead is DNC")

        job = await queue.enqueue("calls", "make-call", CALL_PAYLOAD)
        await make_worker(queue, dnc).run_pending()

        assert (await queue.get_job(job.job_id)).status == "failed"

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, queue):
        async def slow(payload, context):
            if context.attempt == 1:
                await asyncio.sleep(1)
            return {"attempt": context.attempt}

        job = await queue.enqueue("calls", "make-call", CALL_PAYLOAD)
        await make_worker(queue, slow, job_timeout=0.05).run_pending()

        stored = await queue.get_job(job.job_id)
        assert stored.status == "completed"
        assert stored.result == {"attempt": 2}

    @pytest.mark.asyncio
    async def test_idempotency_key_stable_per_attempt(self, queue):
        keys = []

        async def handler(payload, context):
            keys.append(context.idempotency_key)
            if context.attempt == 1:
                raise RuntimeError("crash")
            return {}

        job = await queue.enqueue("calls", "make-call", CALL_PAYLOAD)
        await make_worker(queue, handler).run_pending()

        assert keys == [f"{job.job_id}:1", f"{job.job_id}:2"]

    @pytest.mark.asyncio
    async def test_run_pending_respects_max_jobs(self, queue):
        async def ok(payload, context):
            return {}

        for _ in range(3):
            await queue.enqueue("calls", "make-call", CALL_PAYLOAD)

        assert await make_worker(queue, ok).run_pending(max_jobs=2) == 2
        assert (await queue.get_queue_stats("calls"))["waiting"] == 1

    @pytest.mark.asyncio
    async def test_delayed_job_not_run_early(self, queue):
        async def ok(payload, context):
            return {}

        await queue.enqueue("calls", "make-call", CALL_PAYLOAD, JobOptions(delay=60))

        assert await make_worker(queue, ok).run_pending() == 0


class TestWorkerLifecycle:
    """Tests for start / drain / shutdown"""

    @pytest.mark.asyncio
    async def test_started_worker_processes_and_drains(self, queue):
        done = asyncio.Event()

        async def handler(payload, context):
            done.set()
            return {"ok": True}

        job = await queue.enqueue("calls", "make-call", CALL_PAYLOAD)
        worker = make_worker(queue, handler)

        await worker.start()
        await asyncio.wait_for(done.wait(), timeout=2)
        await worker.shutdown(drain_timeout=1)

        assert worker.running is False
        assert (await queue.get_job(job.job_id)).status == "completed"

    @pytest.mark.asyncio
    async def test_pool_builds_one_worker_per_lane(self, queue):
        pool = WorkerPool(queue, HandlerRegistry(), poll_interval=0.01)

        assert set(pool.workers) == {"calls", "messaging", "exports"}
        await pool.start()
        await pool.shutdown()
        assert all(not stats["running"] for stats in pool.get_stats().values())
