"""
Job bookkeeping.

The tracker owns the job state machine; where jobs are kept is up to the
repository behind it. The in-memory repository serves single-process
deployments.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Optional

from reqgraph.models import ExtractionJob, ExtractionJobInput, JobStatus, RequirementGraph
from reqgraph.utils.errors import JobNotFoundError
from reqgraph.utils.logging import get_logger

logger = get_logger(__name__)


class JobRepository(ABC):
    """Storage for job records."""

    @abstractmethod
    def get(self, job_id: str) -> Optional[ExtractionJob]:
        """Return a snapshot of the job, or None if unknown."""
        pass

    @abstractmethod
    def list_all(self) -> list[ExtractionJob]:
        """Return snapshots of all jobs, oldest first."""
        pass

    @abstractmethod
    def save(self, job: ExtractionJob) -> None:
        """Insert or replace a job record."""
        pass


class InMemoryJobRepository(JobRepository):
    """Jobs in a dict guarded by a lock. Callers only ever see copies."""

    def __init__(self) -> None:
        self._jobs: dict[str, ExtractionJob] = {}
        self._lock = threading.Lock()

    def get(self, job_id: str) -> Optional[ExtractionJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def list_all(self) -> list[ExtractionJob]:
        with self._lock:
            jobs = [job.model_copy(deep=True) for job in self._jobs.values()]
        return sorted(jobs, key=lambda job: job.created_at)

    def save(self, job: ExtractionJob) -> None:
        with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)


class JobTracker:
    """Create jobs and move them through pending, processing, completed and failed."""

    def __init__(self, repository: Optional[JobRepository] = None) -> None:
        self.repository = repository or InMemoryJobRepository()
        self._lock = threading.Lock()

    def create(self, job_input: ExtractionJobInput) -> ExtractionJob:
        job = ExtractionJob(input=job_input)
        self.repository.save(job)
        logger.info(
            "Created extraction job",
            extra={"job_id": job.id, "project": job_input.project_name, "documents": len(job_input.document_paths)},
        )
        return job

    def get(self, job_id: str) -> ExtractionJob:
        """
        Return the job.

        Raises:
            JobNotFoundError: If the id is unknown
        """
        job = self.repository.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_all(self) -> list[ExtractionJob]:
        return self.repository.list_all()

    def mark_processing(self, job_id: str) -> ExtractionJob:
        return self._transition(job_id, JobStatus.PROCESSING)

    def mark_completed(
        self,
        job_id: str,
        result: RequirementGraph,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ExtractionJob:
        return self._transition(job_id, JobStatus.COMPLETED, result=result, metadata=metadata)

    def mark_failed(self, job_id: str, error_message: str) -> ExtractionJob:
        return self._transition(job_id, JobStatus.FAILED, error_message=error_message)

    def _transition(
        self,
        job_id: str,
        target: JobStatus,
        result: Optional[RequirementGraph] = None,
        metadata: Optional[dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> ExtractionJob:
        # Read-modify-write must not interleave for the same tracker
        with self._lock:
            job = self.get(job_id)
            previous = job.status
            job.transition_to(target)
            if result is not None:
                job.result = result
            if metadata:
                job.metadata.update(metadata)
            if error_message is not None:
                job.error_message = error_message
            self.repository.save(job)

        log = logger.warning if target == JobStatus.FAILED else logger.info
        log(
            f"Job {previous.value} -> {target.value}",
            extra={"job_id": job_id, "error": error_message} if error_message else {"job_id": job_id},
        )
        return job
