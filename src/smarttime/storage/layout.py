"""On-disk layout of a SmartTime root and the repositories living in it.

::

    queue/                   raw producer events
    queue_batch/             in-flight aggregation workspace
    queue_backup/            dead-lettered raw events
    operation_queue/         pending operation requests
    operation_queue_backup/  dead-lettered operation requests
    data/                    git working tree (batches/, reports/, projects.json)
    backup/                  bare mirror repository
"""

from __future__ import annotations

import logging

from smarttime.config import SmartTimeConfig
from smarttime.storage.batches import BatchRepository, CollectResult
from smarttime.storage.operations import OperationRepository
from smarttime.storage.queue import QueueRepository
from smarttime.storage.reports import ProjectRepository

logger = logging.getLogger(__name__)


class StorageManager:
    """Owns every file-backed repository under one configured root."""

    def __init__(self, config: SmartTimeConfig) -> None:
        self.config = config
        self.queue = QueueRepository(config.queue, config.queue_batch, config.queue_backup)
        self.operations = OperationRepository(config.operation_queue)
        self.batches = BatchRepository(config.data / "batches")
        self.projects = ProjectRepository(config.data)

    def initialize(self) -> None:
        """Create the root and every sub-directory. Raises ``OSError`` on failure."""
        if not self.config.root.exists():
            logger.info("Root directory does not exist, creating: %s", self.config.root)
        for directory in (
            self.config.queue,
            self.config.queue_batch,
            self.config.queue_backup,
            self.config.operation_queue,
            self.config.operation_queue_backup,
            self.config.data,
            self.config.data / "batches",
            self.config.data / "reports",
        ):
            directory.mkdir(parents=True, exist_ok=True)
        logger.info("Storage initialized at %s", self.config.root)

    def collect_batches(self) -> CollectResult:
        return self.batches.collect()
