"""
Custom exceptions for the requirements graph pipeline.

The hierarchy mirrors the failure units of the pipeline: a single document,
a single chunk, a single model response, a graph write and a job.
"""

from typing import Any, Optional, Sequence


class ReqGraphException(Exception):
    """Base exception for all reqgraph errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# Document Extraction Exceptions
# =============================================================================


class ExtractionError(ReqGraphException):
    """Text could not be extracted from a document."""

    pass


class UnsupportedDocumentError(ExtractionError):
    """The document format has no extractor."""

    def __init__(self, path: str, suffix: str) -> None:
        """Initialize with the offending path."""
        message = f"Unsupported document format '{suffix or '<none>'}' for '{path}'"
        super().__init__(message, {"path": path, "suffix": suffix})


class ChunkingError(ReqGraphException):
    """Error while tokenizing or chunking text."""

    pass


# =============================================================================
# Model Exceptions
# =============================================================================


class GenerationError(ReqGraphException):
    """A generation call failed or timed out."""

    pass


class EmbeddingGenerationError(ReqGraphException):
    """An embedding call failed or returned an unusable vector."""

    pass


class ModelNotAvailableError(ReqGraphException):
    """The requested generation or embedding model is not installed."""

    def __init__(
        self,
        model: str,
        available_models: Optional[Sequence[str]] = None,
        kind: str = "Embedding",
    ) -> None:
        """Initialize with the missing model and what is available instead."""
        available = list(available_models or [])
        message = (
            f"{kind} model '{model}' is not available. "
            f"Please install it with: ollama pull {model}"
        )
        if available:
            message += f". Available models: {', '.join(available)}"
        super().__init__(message, {"model": model, "available_models": available})
        self.model = model
        self.available_models = available


# =============================================================================
# Parsing Exceptions
# =============================================================================


class ParseError(ReqGraphException):
    """Model output did not parse as any expected format."""

    pass


class ToonDecodeError(ParseError):
    """Malformed TOON document."""

    def __init__(self, message: str, line_number: Optional[int] = None) -> None:
        """Initialize with the offending line."""
        details = {"line": line_number} if line_number is not None else None
        super().__init__(message, details)
        self.line_number = line_number


# =============================================================================
# Persistence Exceptions
# =============================================================================


class PersistenceError(ReqGraphException):
    """A graph write failed. Fatal to the job."""

    pass


class GraphDatabaseError(PersistenceError):
    """Base exception for graph database operations."""

    pass


class GraphConnectionError(GraphDatabaseError):
    """Failed to connect to the graph database."""

    pass


class GraphDatabaseNotInitializedError(GraphDatabaseError):
    """The store was used before initialize()."""

    pass


class GraphQueryError(GraphDatabaseError):
    """A graph query failed."""

    pass


# =============================================================================
# Job Exceptions
# =============================================================================


class JobError(ReqGraphException):
    """Base exception for job bookkeeping."""

    pass


class JobNotFoundError(JobError):
    """No job with the given id."""

    def __init__(self, job_id: str) -> None:
        """Initialize with job id."""
        super().__init__(f"Job '{job_id}' not found", {"job_id": job_id})
        self.job_id = job_id


class InvalidJobTransitionError(JobError):
    """A status change that the job state machine does not allow."""

    def __init__(self, job_id: str, current: str, target: str) -> None:
        """Initialize with both states."""
        message = f"Job '{job_id}' cannot move from '{current}' to '{target}'"
        super().__init__(message, {"job_id": job_id, "current": current, "target": target})


# =============================================================================
# Configuration Exceptions
# =============================================================================


class ConfigurationError(ReqGraphException):
    """Invalid or missing configuration."""

    pass
