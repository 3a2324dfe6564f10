"""
Runs one extraction job end to end and records the outcome.
"""

from typing import Any

from reqgraph.document_processor.extractor import DocumentExtractor
from reqgraph.extraction.orchestrator import ExtractionOrchestrator
from reqgraph.jobs.tracker import JobTracker
from reqgraph.models import DocumentFailure, ExtractionJob, ExtractionResult
from reqgraph.utils.errors import ExtractionError, ReqGraphException
from reqgraph.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


class ExtractionJobHandler:
    """Extract documents, run the orchestrator and mark the job done or failed."""

    def __init__(
        self,
        tracker: JobTracker,
        extractor: DocumentExtractor,
        orchestrator: ExtractionOrchestrator,
    ) -> None:
        self.tracker = tracker
        self.extractor = extractor
        self.orchestrator = orchestrator

    async def handle(self, job_id: str) -> ExtractionJob:
        """
        Process a pending job.

        Failures never propagate: they end up in the job's error message.

        Returns:
            The job in its terminal state
        """
        with LogContext(job_id=job_id):
            job = self.tracker.mark_processing(job_id)
            job_input = job.input

            try:
                documents, failures = await self.extractor.extract_many(job_input.document_paths)
                if not documents:
                    raise ExtractionError(
                        "None of the documents could be extracted",
                        {"failures": [failure.error for failure in failures]},
                    )
                result = await self.orchestrator.extract(
                    documents,
                    job_input.project_name,
                    model=job_input.model,
                    options=job_input.options,
                )
            except ReqGraphException as e:
                logger.error(f"Extraction job failed: {e}")
                return self.tracker.mark_failed(job_id, str(e))
            except Exception as e:
                logger.exception("Unexpected error in extraction job")
                return self.tracker.mark_failed(job_id, f"Unexpected error: {str(e)}")

            return self.tracker.mark_completed(
                job_id,
                result.graph,
                self.build_metadata(result, len(documents), failures),
            )

    @staticmethod
    def build_metadata(
        result: ExtractionResult,
        documents_processed: int,
        failures: list[DocumentFailure],
    ) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "requirements_count": len(result.requirements),
            "documents_processed": documents_processed,
            "documents_failed": [failure.model_dump() for failure in failures],
            "chunks_succeeded": len(result.succeeded),
            "chunks_failed": len(result.failed),
            "chunk_errors": [
                {"chunk_index": chunk.chunk_index, "kind": chunk.error_kind, "error": chunk.error}
                for chunk in result.failed
            ],
            "token_stats": result.token_stats.model_dump(),
            "timings": dict(result.timings),
            "persisted": result.persisted,
        }
        if result.application_id:
            metadata["application_id"] = result.application_id
        if result.relationship_stats:
            metadata["relationships"] = result.relationship_stats.model_dump()
        return metadata
