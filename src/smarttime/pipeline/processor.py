"""Operation queue processor.

Polls the operation mailbox, takes the store lock, and runs each pending
request in file-name order:

* success: the request file is deleted and its failure count dropped; the
  first successful non-housekeeping request of a day enqueues housekeeping,
  once per cycle.
* failure: the failure count goes up; at ``max_failures`` the request file
  moves to ``operation_queue_backup/``.

Failure counts are in-memory only and reset when the process restarts.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from typing_extensions import assert_never

from smarttime import notify
from smarttime.errors import InvalidRequestError
from smarttime.pipeline.timers import RecurringTimer
from smarttime.storage.batches import build_batch
from smarttime.storage.git import GitStore
from smarttime.storage.layout import StorageManager
from smarttime.storage.lock import FileLock
from smarttime.storage.operations import (
    HousekeepingRequest,
    InvalidRequest,
    OperationRequest,
    PendingOperation,
    ProcessBatchRequest,
    ProjectChangeRequest,
    WriteFileRequest,
    describe,
    write_operation,
)
from smarttime.storage.reports import write_body

logger = logging.getLogger(__name__)

DEFAULT_MAX_FAILURES = 5
LOCK_TIMEOUT_MS = 1000


@dataclass
class CycleResult:
    """What one ``process_queue`` call did."""

    processed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    dead_lettered: list[str] = field(default_factory=list)
    skipped: bool = False
    housekeeping_queued: bool = False


class OperationQueueProcessor:
    """Drains the operation mailbox into the versioned store."""

    def __init__(
        self,
        storage: StorageManager,
        store: GitStore,
        lock: Optional[FileLock] = None,
        max_failures: int = DEFAULT_MAX_FAILURES,
        interval_seconds: Optional[float] = None,
    ) -> None:
        self.storage = storage
        self.store = store
        self.lock = lock or FileLock(storage.config.data)
        self.max_failures = max_failures
        self._failure_counts: dict[str, int] = {}
        self._in_flight = threading.Lock()
        self._timer = RecurringTimer(
            name="operation queue processor",
            interval_seconds=interval_seconds or storage.config.queue_interval_seconds,
            callback=self.process_queue,
        )

    @property
    def failure_counts(self) -> dict[str, int]:
        return dict(self._failure_counts)

    def start(self) -> None:
        self._timer.start()

    def stop(self) -> None:
        self._timer.stop()

    # ── Cycle ─────────────────────────────────────────────────────

    def process_queue(self) -> CycleResult:
        """Run one processing cycle. Never raises.

        A call made while another cycle is running in this process returns
        immediately with ``skipped`` set.
        """
        result = CycleResult()
        if not self._in_flight.acquire(blocking=False):
            result.skipped = True
            return result

        try:
            operations = self.storage.operations.read_pending_operations()
            if not operations:
                return result

            logger.info("--- Processing %d operation request(s) ---", len(operations))
            if not self.lock.acquire(LOCK_TIMEOUT_MS):
                logger.info("Failed to acquire lock, skipping processing")
                result.skipped = True
                return result

            try:
                for pending in operations:
                    self._process_request(pending, result)
            finally:
                self.lock.release()

            logger.info("--- Operation queue processing completed ---")
        except Exception:
            logger.exception("Error processing operation queue")
        finally:
            self._in_flight.release()
        return result

    def _process_request(self, pending: PendingOperation, result: CycleResult) -> None:
        file_name, request = pending.file, pending.request
        try:
            self._dispatch(request)
        except Exception as exc:
            self._record_failure(file_name, exc, result)
            return

        self.storage.operations.delete_operation(file_name)
        self._failure_counts.pop(file_name, None)
        result.processed.append(file_name)
        logger.info("Operation request processed: %s (%s)", file_name, describe(request))

        if isinstance(request, HousekeepingRequest) or result.housekeeping_queued:
            return
        try:
            if self.store.is_first_operation_today():
                logger.info("First commit of the day, queuing housekeeping...")
                write_operation(self.storage.operations, HousekeepingRequest())
                result.housekeeping_queued = True
        except OSError as exc:
            logger.error("Could not queue housekeeping: %s", exc)

    def _record_failure(self, file_name: str, exc: Exception, result: CycleResult) -> None:
        count = self._failure_counts.get(file_name, 0) + 1
        self._failure_counts[file_name] = count
        result.failed.append(file_name)
        logger.warning(
            "Error processing operation request %s (attempt %d/%d): %s",
            file_name,
            count,
            self.max_failures,
            exc,
        )
        if count < self.max_failures:
            return

        dead_letter_dir = self.storage.config.operation_queue_backup
        if self.storage.operations.move_to_dead_letter(file_name, dead_letter_dir):
            self._failure_counts.pop(file_name, None)
            result.dead_lettered.append(file_name)
            notify.error(
                f"Operation request failed too many times and was moved to backup: {file_name}"
            )

    # ── Dispatch ──────────────────────────────────────────────────

    def _dispatch(self, request: OperationRequest) -> None:
        if isinstance(request, ProcessBatchRequest):
            self._process_batch()
        elif isinstance(request, WriteFileRequest):
            self._write_file(request)
        elif isinstance(request, ProjectChangeRequest):
            self._project_change(request)
        elif isinstance(request, HousekeepingRequest):
            self._housekeeping()
        elif isinstance(request, InvalidRequest):
            raise InvalidRequestError("Invalid request JSON")
        else:
            assert_never(request)

    def _process_batch(self) -> None:
        queue = self.storage.queue
        self.store.ensure()
        logger.info("Moving files from queue to batch...")
        queue.move_to_batch()
        if not queue.batch_files():
            logger.info("No batch files to process")
            return

        entries = queue.read_batch_files()
        if not entries:
            return

        batches = self.storage.batches
        batch_name = batches.save_batch(build_batch(entries))
        try:
            self.store.commit(f"processBatch: batches/{batch_name}")
        except Exception:
            # A retry must fold these events exactly once
            (batches.batches_dir / batch_name).unlink(missing_ok=True)
            queue.move_to_queue()
            raise

        logger.info("Deleting batch files...")
        queue.delete_batch_files()
        logger.info("Batch entry committed: %s", batch_name)

    def _write_file(self, request: WriteFileRequest) -> None:
        self.store.ensure()
        write_body(self.storage.config.data, request.file, request.body)
        self.store.commit(f"{request.type}: {request.file}")

    def _project_change(self, request: ProjectChangeRequest) -> None:
        self.store.ensure()
        projects = self.storage.projects
        if request.action == "addUnbound":
            if not request.project:
                raise InvalidRequestError("addUnbound requires a project")
            projects.add_unbound_project(request.project)
            details = request.project
        else:
            if not request.branch or not request.directory:
                raise InvalidRequestError(f"{request.action} requires branch and directory")
            if request.action == "delete":
                projects.delete_project(request.branch, request.directory)
            else:
                if not request.project:
                    raise InvalidRequestError(f"{request.action} requires a project")
                projects.add_or_update_project(request.branch, request.directory, request.project)
            details = f"{request.branch}/{request.directory}"
        self.store.commit(f"projectChange: {request.action} {details}")

    def _housekeeping(self) -> None:
        if not self.store.is_first_operation_today():
            logger.info("Housekeeping already done today, skipping")
            return

        collected = self.storage.collect_batches()
        if collected.collected:
            self.store.commit("housekeeping: batch collection")
        else:
            logger.info("No batch entries to collect during housekeeping")
        self.store.housekeeping()
