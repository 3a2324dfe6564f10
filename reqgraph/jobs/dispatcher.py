"""
In-process job transport.

An ``asyncio.Queue`` of job ids consumed by a fixed pool of worker tasks.
Jobs run to completion once dequeued; there is no cancellation.
"""

import asyncio
from typing import Any, Optional

from reqgraph.jobs.handler import ExtractionJobHandler
from reqgraph.jobs.queue_counter import QueueDepthCounter
from reqgraph.jobs.tracker import JobTracker
from reqgraph.models import ExtractionJob, ExtractionJobInput
from reqgraph.utils.logging import get_logger

logger = get_logger(__name__)


class JobDispatcher:
    """Queue extraction jobs and run them on worker tasks."""

    def __init__(
        self,
        handler: ExtractionJobHandler,
        tracker: Optional[JobTracker] = None,
        counter: Optional[QueueDepthCounter] = None,
        worker_count: int = 1,
    ) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self.handler = handler
        self.tracker = tracker or handler.tracker
        self.counter = counter or QueueDepthCounter()
        self.worker_count = worker_count
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def submit(self, job_input: ExtractionJobInput) -> ExtractionJob:
        """Create a pending job and enqueue it."""
        job = self.tracker.create(job_input)
        self._queue.put_nowait(job.id)
        depth = self.counter.increment()
        logger.debug("Enqueued extraction job", extra={"job_id": job.id, "queue_depth": depth})
        return job

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(number), name=f"extraction-worker-{number}")
            for number in range(self.worker_count)
        ]
        logger.info(f"Started {self.worker_count} extraction worker(s)")

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the workers. Jobs still queued stay pending."""
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        logger.info("Stopped extraction workers")

    def queue_stats(self) -> dict[str, Any]:
        report = self.counter.reconcile(self._queue.qsize())
        return {
            "workers": len(self._workers),
            "queued": self._queue.qsize(),
            "counter": report.counter,
            "drift": report.drift,
            "checked_at": report.timestamp.isoformat(),
        }

    async def _worker(self, number: int) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                job = await self.handler.handle(job_id)
                logger.debug(
                    f"Worker {number} finished job",
                    extra={"job_id": job_id, "status": job.status.value},
                )
            except Exception:
                logger.exception("Worker failed to handle job", extra={"job_id": job_id})
            finally:
                self.counter.decrement()
                self._queue.task_done()
