"""File-backed storage for the SmartTime pipeline."""

from .batches import BatchRepository, CollectResult, TimeEntry, TimeReport
from .git import GitStore
from .layout import StorageManager
from .lock import FileLock
from .operations import (
    HousekeepingRequest,
    InvalidRequest,
    OperationRepository,
    OperationRequest,
    ProcessBatchRequest,
    ProjectChangeRequest,
    WriteFileRequest,
)
from .queue import QueueEntry, QueueRepository

__all__ = [
    "BatchRepository",
    "CollectResult",
    "FileLock",
    "GitStore",
    "HousekeepingRequest",
    "InvalidRequest",
    "OperationRepository",
    "OperationRequest",
    "ProcessBatchRequest",
    "ProjectChangeRequest",
    "QueueEntry",
    "QueueRepository",
    "StorageManager",
    "TimeEntry",
    "TimeReport",
    "WriteFileRequest",
]
