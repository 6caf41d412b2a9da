"""Raw event queue: one JSON file per "a file was touched" event.

Producers append entries to ``queue/``. Aggregation moves them into the
``queue_batch/`` workspace, folds them into a batch document and deletes
them; if the commit fails the workspace is moved back to ``queue/`` for a
retry. Individual entries that cannot be parsed go to ``queue_backup/``.
"""

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from smarttime.storage.files import epoch_millis, read_json, write_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueEntry:
    """One raw event recorded by the producer."""

    directory: str
    filename: str
    git_branch: Optional[str]
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "directory": self.directory,
            "filename": self.filename,
            "gitBranch": self.git_branch,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueueEntry":
        if not isinstance(data, dict):
            raise ValueError(f"queue entry must be an object, got {type(data).__name__}")
        branch = data.get("gitBranch")
        return cls(
            directory=str(data["directory"]),
            filename=str(data["filename"]),
            git_branch=str(branch) if branch else None,
            timestamp=int(data["timestamp"]),
        )


class QueueRepository:
    """Filesystem-backed raw event queue plus its batch/backup workspaces."""

    def __init__(self, queue_dir: Path, batch_dir: Path, backup_dir: Path) -> None:
        self.queue_dir = queue_dir
        self.batch_dir = batch_dir
        self.backup_dir = backup_dir

    def add_entry(
        self,
        workspace_root: str,
        relative_path: str,
        git_branch: Optional[str] = None,
        timestamp: Optional[int] = None,
    ) -> str:
        """Record one event and return the queue file name."""
        ts = timestamp if timestamp is not None else epoch_millis()
        digest = hashlib.sha256(f"{workspace_root}:{relative_path}:{ts}".encode("utf-8")).hexdigest()[:12]
        filename = f"{ts}_{digest}.json"

        entry = QueueEntry(
            directory=workspace_root,
            filename=relative_path,
            git_branch=git_branch or None,
            timestamp=ts,
        )
        write_json(self.queue_dir / filename, entry.to_dict())
        logger.debug("Queue entry created: %s", filename)
        return filename

    def has_queue_files(self) -> bool:
        return bool(self._list(self.queue_dir))

    def move_to_batch(self) -> list[str]:
        """Move every queued entry into the batch workspace."""
        moved = self._move_all(self.queue_dir, self.batch_dir)
        logger.info("Moved %d files from queue to batch", len(moved))
        return moved

    def move_to_queue(self) -> list[str]:
        """Return the batch workspace to the queue so it is retried."""
        moved = self._move_all(self.batch_dir, self.queue_dir)
        logger.info("Moved %d files from batch back to queue", len(moved))
        return moved

    def read_batch_files(self) -> list[QueueEntry]:
        """Parse every entry in the batch workspace.

        Unreadable files are moved to the backup directory so they are
        neither folded nor deleted.
        """
        entries: list[QueueEntry] = []
        for name in self._list(self.batch_dir):
            try:
                entries.append(QueueEntry.from_dict(read_json(self.batch_dir / name)))
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning("Error reading batch file %s: %s", name, exc)
                self._move_one(self.batch_dir, self.backup_dir, name)
        return entries

    def batch_files(self) -> list[str]:
        return self._list(self.batch_dir)

    def delete_batch_files(self) -> int:
        deleted = 0
        for name in self._list(self.batch_dir):
            try:
                (self.batch_dir / name).unlink()
                deleted += 1
            except OSError as exc:
                logger.error("Error deleting file %s: %s", name, exc)
        logger.info("Deleted %d files from batch", deleted)
        return deleted

    # ── Internal ──────────────────────────────────────────────────

    @staticmethod
    def _list(directory: Path) -> list[str]:
        try:
            return sorted(
                name for name in os.listdir(directory)
                if name.endswith(".json") and not name.startswith(".")
            )
        except FileNotFoundError:
            return []

    def _move_one(self, source: Path, target: Path, name: str) -> bool:
        target.mkdir(parents=True, exist_ok=True)
        try:
            os.replace(source / name, target / name)
        except OSError as exc:
            logger.error("Error moving file %s to %s: %s", name, target, exc)
            return False
        return True

    def _move_all(self, source: Path, target: Path) -> list[str]:
        return [name for name in self._list(source) if self._move_one(source, target, name)]
