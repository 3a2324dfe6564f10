"""Extraction jobs: state tracking, queue depth and dispatch."""

from reqgraph.jobs.dispatcher import JobDispatcher
from reqgraph.jobs.handler import ExtractionJobHandler
from reqgraph.jobs.queue_counter import QueueDepthCounter, QueueDepthReport
from reqgraph.jobs.tracker import InMemoryJobRepository, JobRepository, JobTracker

__all__ = [
    "ExtractionJobHandler",
    "InMemoryJobRepository",
    "JobDispatcher",
    "JobRepository",
    "JobTracker",
    "QueueDepthCounter",
    "QueueDepthReport",
]
