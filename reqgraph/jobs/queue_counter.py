"""
Approximate queue depth.

The counter goes up on enqueue and down when a job finishes, whatever the
outcome. It drifts from the transport's real backlog over time; comparing
the two is a diagnostic, not an error.
"""

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from pydantic import BaseModel, Field

from reqgraph.utils.logging import get_logger

logger = get_logger(__name__)


class QueueDepthReport(BaseModel):
    """Counter value next to what the transport reports."""

    counter: int
    transport_count: Optional[int] = None
    drift: Optional[int] = None
    supports_count: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class QueueDepthCounter:
    """Thread-safe non-negative counter of queued and running jobs."""

    def __init__(self, name: str = "extraction") -> None:
        self.name = name
        self._value = 0
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def decrement(self) -> int:
        with self._lock:
            if self._value == 0:
                logger.warning("Queue depth counter would go negative", extra={"queue": self.name})
                return 0
            self._value -= 1
            return self._value

    @contextmanager
    def track(self) -> Iterator[int]:
        """Count a unit of work for the duration of the block."""
        value = self.increment()
        try:
            yield value
        finally:
            self.decrement()

    def reconcile(self, transport_count: Optional[int] = None) -> QueueDepthReport:
        """
        Compare the counter with the transport's own count.

        Args:
            transport_count: Backlog reported by the transport, None if it cannot tell

        Returns:
            Report with the drift between the two
        """
        counter = self.value
        if transport_count is None:
            return QueueDepthReport(counter=counter)

        report = QueueDepthReport(
            counter=counter,
            transport_count=transport_count,
            drift=counter - transport_count,
            supports_count=True,
        )
        if report.drift:
            logger.debug(
                "Queue depth drift",
                extra={"queue": self.name, "counter": counter, "transport_count": transport_count, "drift": report.drift},
            )
        return report
