"""
Lane Worker
Background workers that execute queued jobs, one pool per lane

Run as separate process:
    python -m salescaller.workers.lane_worker
"""
import asyncio
import logging
import signal
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from salescaller.domain.exceptions import ConflictError, NotFoundError, ValidationError
from salescaller.domain.models.job import Job, JobContext, JobStatus
from salescaller.domain.services.queue_service import JobQueue, LaneSettings
from salescaller.workers.registry import HandlerRegistry

logger = logging.getLogger(__name__)


class LaneWorker:
    """
    Executes the jobs of one lane.

    Responsibilities:
    - Promote due delayed jobs and claim waiting ones
    - Run the registered handler under a per-job timeout
    - Decide between completion, retry and terminal failure

    Failure policy:
    - NotFoundError: the referenced entity is gone; the job is completed
      with a "discarded" result and a warning
    - ValidationError / ConflictError: terminal, never retried
    - ProviderError, timeouts and anything unexpected: retried with backoff
    """

    POLL_INTERVAL = 1.0  # Seconds between queue checks when empty
    MAX_CONSECUTIVE_ERRORS = 10

    def __init__(
        self,
        lane: str,
        queue: JobQueue,
        registry: HandlerRegistry,
        concurrency: int = 1,
        job_timeout: float = 60.0,
        poll_interval: Optional[float] = None
    ):
        self.lane = getattr(lane, "value", lane)
        self.queue = queue
        self.registry = registry
        self.concurrency = max(concurrency, 1)
        self.job_timeout = job_timeout
        self.poll_interval = poll_interval if poll_interval is not None else self.POLL_INTERVAL

        self.running = False
        self._tasks: List[asyncio.Task] = []

        # Stats
        self._jobs_processed = 0
        self._jobs_retried = 0
        self._jobs_failed = 0
        self._jobs_discarded = 0

    async def start(self) -> None:
        """Recover stalled jobs and start the consumer tasks."""
        await self.queue.recover_stalled(self.lane)

        self.running = True
        self._tasks = [
            asyncio.create_task(self._consume(slot), name=f"{self.lane}-worker-{slot}")
            for slot in range(self.concurrency)
        ]
        logger.info(f"Lane worker '{self.lane}' started with {self.concurrency} slot(s)")

    async def _consume(self, slot: int) -> None:
        """Consumer loop for one concurrency slot."""
        consecutive_errors = 0

        while self.running:
            try:
                await self.queue.promote_due_jobs(self.lane)

                job = await self.queue.dequeue(self.lane)
                if job:
                    await self.process_job(job)
                    consecutive_errors = 0
                else:
                    # No jobs available, wait before checking again
                    await asyncio.sleep(self.poll_interval)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                consecutive_errors += 1
                logger.error(
                    f"Worker {self.lane}/{slot} error ({consecutive_errors}): {e}",
                    exc_info=True
                )
                if consecutive_errors >= self.MAX_CONSECUTIVE_ERRORS:
                    logger.critical(f"Too many consecutive errors, stopping worker {self.lane}/{slot}")
                    break
                await asyncio.sleep(self.poll_interval)

    async def process_job(self, job: Job) -> Job:
        """
        Run one claimed job and record its outcome on the queue.

        Returns:
            The job after its outcome was recorded
        """
        context = JobContext(job_id=job.job_id, attempt=job.attempts_made, lane=self.lane)

        try:
            handler = self.registry.get(job.job_type)
            result = await asyncio.wait_for(
                handler(job.payload, context),
                timeout=self.job_timeout
            )

        except asyncio.CancelledError:
            # Shutdown interrupted the attempt; hand it to the next worker
            await self.queue.requeue(job)
            raise

        except NotFoundError as e:
            self._jobs_discarded += 1
            logger.warning(f"Discarding job {job.job_id} ({job.job_type}): {e}")
            return await self.queue.complete(job, {"status": "discarded", "reason": str(e)})

        except (ValidationError, ConflictError) as e:
            self._jobs_failed += 1
            logger.error(f"Job {job.job_id} ({job.job_type}) rejected: {e}")
            return await self.queue.fail(job, f"{type(e).__name__}: {e}", retryable=False)

        except asyncio.TimeoutError:
            return await self._record_failure(job, f"Timed out after {self.job_timeout}s")

        except Exception as e:
            logger.error(f"Job {job.job_id} ({job.job_type}) attempt {job.attempts_made} failed: {e}",
                         exc_info=True)
            return await self._record_failure(job, f"{type(e).__name__}: {e}")

        self._jobs_processed += 1
        return await self.queue.complete(job, result)

    async def _record_failure(self, job: Job, error: str) -> Job:
        job = await self.queue.fail(job, error, retryable=True)
        if job.status == JobStatus.FAILED:
            self._jobs_failed += 1
        else:
            self._jobs_retried += 1
        return job

    async def run_pending(self, max_jobs: Optional[int] = None) -> int:
        """
        Process jobs that are runnable right now, then return.

        Returns:
            Number of jobs processed
        """
        processed = 0
        while max_jobs is None or processed < max_jobs:
            await self.queue.promote_due_jobs(self.lane)
            job = await self.queue.dequeue(self.lane)
            if job is None:
                break
            await self.process_job(job)
            processed += 1
        return processed

    async def shutdown(self, drain_timeout: float = 30.0) -> None:
        """
        Stop claiming jobs, let in-flight jobs finish, then cancel.

        Jobs still running after drain_timeout are cancelled, which
        re-queues them.
        """
        self.running = False
        if not self._tasks:
            return

        _, pending = await asyncio.wait(self._tasks, timeout=drain_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Lane worker '{self.lane}' cancelled {len(pending)} slot(s) after drain timeout")

        self._tasks = []
        logger.info(f"Lane worker '{self.lane}' stopped")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "lane": self.lane,
            "running": self.running,
            "concurrency": self.concurrency,
            "jobs_processed": self._jobs_processed,
            "jobs_retried": self._jobs_retried,
            "jobs_failed": self._jobs_failed,
            "jobs_discarded": self._jobs_discarded,
        }


class WorkerPool:
    """All lane workers of one process"""

    def __init__(
        self,
        queue: JobQueue,
        registry: HandlerRegistry,
        lane_settings: Optional[Dict[str, LaneSettings]] = None,
        poll_interval: Optional[float] = None,
        drain_timeout: float = 30.0
    ):
        self.queue = queue
        self.drain_timeout = drain_timeout
        lane_settings = lane_settings or queue.lane_settings
        self.workers: Dict[str, LaneWorker] = {
            lane: LaneWorker(
                lane,
                queue,
                registry,
                concurrency=settings.concurrency,
                job_timeout=settings.timeout,
                poll_interval=poll_interval,
            )
            for lane, settings in lane_settings.items()
        }

    async def start(self) -> None:
        for worker in self.workers.values():
            await worker.start()

    async def shutdown(self) -> None:
        """Drain every lane concurrently."""
        await asyncio.gather(
            *(worker.shutdown(self.drain_timeout) for worker in self.workers.values())
        )

    def get_stats(self) -> Dict[str, Any]:
        return {lane: worker.get_stats() for lane, worker in self.workers.items()}


async def main():
    """Entry point for running the lane workers as a separate process."""
    from salescaller.container import build_container
    from salescaller.core.config import Settings
    from salescaller.core.logging_config import configure_logging

    load_dotenv()
    settings = Settings()
    configure_logging(settings.log_level)

    container = await build_container(settings)
    pool = container.worker_pool
    stop = asyncio.Event()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await pool.start()
    try:
        await stop.wait()
    finally:
        await pool.shutdown()
        await container.close()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
