"""Periodic trigger that turns pending raw events into a processBatch request."""

from __future__ import annotations

import logging

from smarttime.pipeline.timers import RecurringTimer
from smarttime.storage.operations import OperationRepository, ProcessBatchRequest, write_operation
from smarttime.storage.queue import QueueRepository

logger = logging.getLogger(__name__)


class BatchProcessor:
    """Every *interval_seconds*, request aggregation if raw events are waiting."""

    def __init__(
        self,
        queue: QueueRepository,
        operations: OperationRepository,
        interval_seconds: float,
    ) -> None:
        self.queue = queue
        self.operations = operations
        self._timer = RecurringTimer(
            name="batch processor",
            interval_seconds=interval_seconds,
            callback=self.process,
        )

    def start(self) -> None:
        self._timer.start()

    def stop(self) -> None:
        self._timer.stop()

    def process(self) -> bool:
        """Enqueue ``processBatch`` when the raw queue is non-empty. Never raises."""
        try:
            if not self.queue.has_queue_files():
                return False
            logger.debug("Queue files detected, writing ProcessBatchRequest...")
            write_operation(self.operations, ProcessBatchRequest())
            return True
        except OSError as exc:
            logger.error("Error in batch processing: %s", exc)
            return False
