"""
Job Queue Service
Redis-based durable job queue with lanes, delays and retry backoff
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from salescaller.domain.exceptions import ConflictError, NotFoundError, ValidationError
from salescaller.domain.models.job import (
    BackoffPolicy,
    Job,
    JobOptions,
    JobStatus,
    LANE_FOR_JOB_TYPE,
    Lane,
)

logger = logging.getLogger(__name__)


@dataclass
class LaneSettings:
    """Worker and retry defaults for one lane"""
    concurrency: int = 1
    timeout: float = 60.0
    max_attempts: int = 3
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "LaneSettings":
        return cls(
            concurrency=int(config.get("concurrency", 1)),
            timeout=float(config.get("timeout", 60)),
            max_attempts=int(config.get("max_attempts", 3)),
            backoff=BackoffPolicy(**(config.get("backoff") or {})),
        )


DEFAULT_LANE_SETTINGS: Dict[str, LaneSettings] = {
    Lane.CALLS.value: LaneSettings(concurrency=2, timeout=60, max_attempts=3,
                                   backoff=BackoffPolicy(type="exponential", delay=2)),
    Lane.MESSAGING.value: LaneSettings(concurrency=2, timeout=30, max_attempts=3,
                                       backoff=BackoffPolicy(type="exponential", delay=2)),
    Lane.EXPORTS.value: LaneSettings(concurrency=1, timeout=300, max_attempts=2,
                                     backoff=BackoffPolicy(type="fixed", delay=5)),
}


class JobQueue:
    """
    Redis-based job queue.

    Every lane owns a FIFO list of waiting job ids, a list of active ids,
    a sorted set of delayed ids scored by run time and capped history
    lists of completed and failed ids. The job itself is a JSON record
    under its own key so it can be queried and cancelled by id.

    Queue Keys:
    - {prefix}:queue:{lane}:waiting - FIFO list of job ids
    - {prefix}:queue:{lane}:active - Ids currently held by a worker
    - {prefix}:queue:{lane}:delayed - Sorted set, score = unix run time
    - {prefix}:queue:{lane}:completed / :failed - Recent terminal ids
    - {prefix}:job:{job_id} - Job record
    """

    def __init__(
        self,
        redis_client=None,
        redis_url: str = "redis://localhost:6379",
        lane_settings: Optional[Dict[str, LaneSettings]] = None,
        key_prefix: str = "salescaller",
        retention_seconds: int = 7 * 24 * 3600,
        history_limit: int = 1000
    ):
        """
        Initialize queue.

        Args:
            redis_client: Optional pre-configured Redis client
            redis_url: Used when no client is given
            lane_settings: Per-lane defaults, keyed by lane name
            key_prefix: Namespace for all Redis keys
            retention_seconds: How long terminal job records stay queryable
            history_limit: Max ids kept in each completed/failed list
        """
        self._redis = redis_client
        self._redis_url = redis_url
        self.lane_settings = {**DEFAULT_LANE_SETTINGS, **(lane_settings or {})}
        self.key_prefix = key_prefix
        self.retention_seconds = retention_seconds
        self.history_limit = history_limit
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize Redis connection if not provided."""
        if self._initialized:
            return

        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    self._redis_url,
                    encoding="utf-8",
                    decode_responses=True
                )
                await self._redis.ping()
                logger.info(f"JobQueue connected to Redis: {self._redis_url}")
            except Exception as e:
                logger.error(f"Failed to connect to Redis: {e}")
                raise

        self._initialized = True

    # ===== Keys =====

    def _lane_key(self, lane: str, name: str) -> str:
        return f"{self.key_prefix}:queue:{getattr(lane, 'value', lane)}:{name}"

    def _job_key(self, job_id: str) -> str:
        return f"{self.key_prefix}:job:{job_id}"

    async def _save(self, job: Job) -> None:
        ttl = self.retention_seconds if job.is_terminal else None
        await self._redis.set(self._job_key(job.job_id), job.to_redis(), ex=ttl)

    async def _record_history(self, job: Job, name: str) -> None:
        key = self._lane_key(job.lane, name)
        await self._redis.lpush(key, job.job_id)
        await self._redis.ltrim(key, 0, self.history_limit - 1)

    # ===== Producer side =====

    async def enqueue(
        self,
        lane: str,
        job_type: str,
        payload: Dict[str, Any],
        options: Optional[JobOptions] = None
    ) -> Job:
        """
        Enqueue a job. Never waits for it to run.

        Args:
            lane: Lane name (calls, messaging, exports)
            job_type: Registered job type (make-call, send-message, export-data)
            payload: JSON-serializable job payload
            options: delay / max_attempts / backoff overrides

        Returns:
            The stored Job

        Raises:
            ValidationError: Unknown lane, or job type not served by that lane
        """
        await self.initialize()
        options = options or JobOptions()

        lane = getattr(lane, "value", lane)
        job_type = getattr(job_type, "value", job_type)
        if lane not in self.lane_settings:
            raise ValidationError(f"Unknown queue lane: {lane}")
        expected_lane = LANE_FOR_JOB_TYPE.get(job_type)
        if expected_lane is None or expected_lane.value != lane:
            raise ValidationError(f"Job type {job_type} cannot run on lane {lane}")

        settings = self.lane_settings[lane]
        job = Job(
            lane=lane,
            job_type=job_type,
            payload=payload,
            max_attempts=options.max_attempts or settings.max_attempts,
            backoff=options.backoff or settings.backoff,
        )
        if options.job_id:
            job.job_id = options.job_id

        if options.delay > 0:
            job.status = JobStatus.DELAYED
            job.run_at = datetime.utcnow() + timedelta(seconds=options.delay)
            await self._save(job)
            await self._redis.zadd(
                self._lane_key(lane, "delayed"),
                {job.job_id: job.run_at.timestamp()}
            )
            logger.info(f"Enqueued delayed job {job.job_id} ({job_type}) on {lane} in {options.delay}s")
        else:
            await self._save(job)
            await self._redis.rpush(self._lane_key(lane, "waiting"), job.job_id)
            logger.info(f"Enqueued job {job.job_id} ({job_type}) on {lane}")

        return job

    # ===== Consumer side =====

    async def dequeue(self, lane: str) -> Optional[Job]:
        """
        Claim the next waiting job of a lane.

        The id moves from waiting to active in one LMOVE, so two workers
        never claim the same job.

        Returns:
            The claimed Job with attempts_made incremented, or None
        """
        await self.initialize()

        job_id = await self._redis.lmove(
            self._lane_key(lane, "waiting"),
            self._lane_key(lane, "active"),
            "LEFT",
            "RIGHT"
        )
        if not job_id:
            return None

        job = await self.get_job(job_id)
        if job is None or job.status == JobStatus.CANCELLED:
            # Record expired or cancelled in a race with the move
            await self._redis.lrem(self._lane_key(lane, "active"), 1, job_id)
            logger.warning(f"Dropped unclaimable job id {job_id} from {lane}")
            return None

        job.status = JobStatus.ACTIVE
        job.attempts_made += 1
        job.processed_at = datetime.utcnow()
        await self._save(job)

        logger.debug(f"Dequeued {job!r}")
        return job

    async def complete(self, job: Job, result: Optional[Dict[str, Any]] = None) -> Job:
        """Mark an active job completed with its result."""
        await self._redis.lrem(self._lane_key(job.lane, "active"), 1, job.job_id)

        job.status = JobStatus.COMPLETED
        job.result = result or {}
        job.error = None
        job.finished_at = datetime.utcnow()
        await self._save(job)
        await self._record_history(job, "completed")

        logger.debug(f"Job {job.job_id} completed")
        return job

    async def fail(self, job: Job, error: str, retryable: bool = True) -> Job:
        """
        Record a failed attempt.

        Retryable failures with attempts left are delayed by the job's
        backoff; everything else becomes terminal and lands in the lane's
        failed list.

        Returns:
            The updated Job (status delayed or failed)
        """
        await self._redis.lrem(self._lane_key(job.lane, "active"), 1, job.job_id)
        job.error = error

        if retryable and job.should_retry():
            delay = job.next_retry_delay()
            job.retry_delays.append(delay)
            job.status = JobStatus.DELAYED
            job.run_at = datetime.utcnow() + timedelta(seconds=delay)
            await self._save(job)
            await self._redis.zadd(
                self._lane_key(job.lane, "delayed"),
                {job.job_id: job.run_at.timestamp()}
            )
            logger.info(
                f"Scheduled retry for job {job.job_id} "
                f"(attempt {job.attempts_made + 1}/{job.max_attempts}) in {delay}s"
            )
            return job

        job.status = JobStatus.FAILED
        job.finished_at = datetime.utcnow()
        await self._save(job)
        await self._record_history(job, "failed")

        logger.error(
            f"Job {job.job_id} ({job.job_type}) failed permanently after "
            f"{job.attempts_made} attempt(s): {error}"
        )
        return job

    async def requeue(self, job: Job) -> Job:
        """
        Put an interrupted active job back at the head of its lane.

        The interrupted attempt is not counted, so the next delivery
        reuses the same attempt number and idempotency key.
        """
        await self._redis.lrem(self._lane_key(job.lane, "active"), 1, job.job_id)
        job.status = JobStatus.WAITING
        job.attempts_made = max(job.attempts_made - 1, 0)
        await self._save(job)
        await self._redis.lpush(self._lane_key(job.lane, "waiting"), job.job_id)
        logger.info(f"Re-queued interrupted job {job.job_id}")
        return job

    async def recover_stalled(self, lane: str) -> int:
        """
        Move jobs left active by a dead worker back to waiting.

        Only call while no worker of this lane is running.

        Returns:
            Number of jobs recovered
        """
        await self.initialize()
        count = 0
        while True:
            job_id = await self._redis.lmove(
                self._lane_key(lane, "active"),
                self._lane_key(lane, "waiting"),
                "RIGHT",
                "LEFT"
            )
            if not job_id:
                break
            job = await self.get_job(job_id)
            if job is not None:
                job.status = JobStatus.WAITING
                job.attempts_made = max(job.attempts_made - 1, 0)
                await self._save(job)
            count += 1

        if count > 0:
            logger.warning(f"Recovered {count} stalled job(s) on {lane}")
        return count

    async def promote_due_jobs(self, lane: str) -> int:
        """
        Move delayed jobs whose run time has passed to waiting.

        ZREM decides which caller promotes a job, so concurrent workers
        never enqueue it twice.

        Returns:
            Number of jobs moved
        """
        await self.initialize()
        now = datetime.utcnow().timestamp()
        delayed_key = self._lane_key(lane, "delayed")

        due_ids = await self._redis.zrangebyscore(delayed_key, 0, now)
        count = 0
        for job_id in due_ids:
            if not await self._redis.zrem(delayed_key, job_id):
                continue
            job = await self.get_job(job_id)
            if job is None:
                continue
            job.status = JobStatus.WAITING
            await self._save(job)
            await self._redis.rpush(self._lane_key(lane, "waiting"), job_id)
            count += 1

        if count > 0:
            logger.debug(f"Promoted {count} delayed job(s) on {lane}")
        return count

    # ===== Queries and control =====

    async def get_job(self, job_id: str) -> Optional[Job]:
        """Job record by id, or None when unknown or expired."""
        await self.initialize()
        data = await self._redis.get(self._job_key(job_id))
        return Job.from_redis(data) if data else None

    async def cancel(self, job_id: str) -> Job:
        """
        Cancel a job that has not been dequeued yet.

        Raises:
            NotFoundError: Unknown job id
            ConflictError: Job is active or already terminal
        """
        job = await self.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")

        removed = 0
        if job.status == JobStatus.WAITING:
            removed = await self._redis.lrem(self._lane_key(job.lane, "waiting"), 1, job_id)
        elif job.status == JobStatus.DELAYED:
            removed = await self._redis.zrem(self._lane_key(job.lane, "delayed"), job_id)

        if not removed:
            raise ConflictError(f"Job {job_id} is {job.status} and can no longer be cancelled")

        job.status = JobStatus.CANCELLED
        job.finished_at = datetime.utcnow()
        await self._save(job)
        logger.info(f"Cancelled job {job_id}")
        return job

    async def get_queue_stats(self, lane: str) -> Dict[str, int]:
        """Counts of waiting, active, completed, failed and delayed jobs in a lane."""
        await self.initialize()
        return {
            "waiting": await self._redis.llen(self._lane_key(lane, "waiting")),
            "active": await self._redis.llen(self._lane_key(lane, "active")),
            "completed": await self._redis.llen(self._lane_key(lane, "completed")),
            "failed": await self._redis.llen(self._lane_key(lane, "failed")),
            "delayed": await self._redis.zcard(self._lane_key(lane, "delayed")),
        }

    async def get_all_stats(self) -> Dict[str, Dict[str, int]]:
        return {lane: await self.get_queue_stats(lane) for lane in self.lane_settings}

    async def list_failed(self, lane: str, limit: int = 50) -> List[Job]:
        """Most recent terminal failures of a lane."""
        await self.initialize()
        ids = await self._redis.lrange(self._lane_key(lane, "failed"), 0, limit - 1)
        jobs = []
        for job_id in ids:
            job = await self.get_job(job_id)
            if job is not None:
                jobs.append(job)
        return jobs

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._initialized = False
