"""Batch documents: time-bucketed aggregation of raw queue entries.

A batch document maps ``branch -> directory -> [{"File", "Timestamp"}]``.
It exists in two forms under ``data/batches/``:

* pending    ``batch_<epochMillis>_<suffix>.json``: one per aggregation cycle
* collected  ``YYYY/MM/DD.json``: one per UTC day, produced by ``collect()``

Merging is additive: lists are concatenated, never deduplicated. ``collect``
writes each day document with an atomic replace before deleting the pending
sources, so a crash can at worst fold the same pending file twice on the next
run; it can never lose one or leave a torn document behind.
"""

from __future__ import annotations

import logging
import os
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from smarttime.storage.files import epoch_millis, random_suffix, read_json, write_json
from smarttime.storage.queue import QueueEntry

logger = logging.getLogger(__name__)

BatchDocument = dict[str, dict[str, list[dict[str, Any]]]]

NO_BRANCH = "no-branch"
HIERARCHICAL_PREFIX = "hierarchical:"

_PENDING_RE = re.compile(r"^batch_(\d+)")


@dataclass(frozen=True)
class CollectResult:
    collected: bool
    files_processed: int


@dataclass
class FileDetail:
    file: str
    timestamp: int


@dataclass
class TimeEntry:
    """Files touched in one time bucket for one branch/directory pair."""

    key: str
    branch: str
    directory: str
    files: list[str] = field(default_factory=list)
    file_details: list[FileDetail] = field(default_factory=list)
    comment: str = ""
    project: str = ""
    assigned_branch: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "branch": self.branch,
            "directory": self.directory,
            "files": list(self.files),
            "fileDetails": [{"file": d.file, "timestamp": d.timestamp} for d in self.file_details],
            "comment": self.comment,
            "project": self.project,
            "assignedBranch": self.assigned_branch,
        }


@dataclass
class TimeReport:
    date: str
    entries: list[TimeEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date, "entries": [e.to_dict() for e in self.entries]}


def pending_timestamp(name: str) -> Optional[int]:
    """Creation time embedded in a pending batch file name, if it is one."""
    if not name.endswith(".json"):
        return None
    match = _PENDING_RE.match(name)
    return int(match.group(1)) if match else None


def build_batch(entries: Iterable[QueueEntry]) -> BatchDocument:
    """Group queue entries by branch, then directory, keeping entry order."""
    grouped: BatchDocument = {}
    for entry in entries:
        branch = entry.git_branch or NO_BRANCH
        grouped.setdefault(branch, {}).setdefault(entry.directory, []).append(
            {"File": entry.filename, "Timestamp": entry.timestamp}
        )
    return grouped


def merge_documents(target: BatchDocument, source: BatchDocument) -> BatchDocument:
    """Append every list in *source* onto *target* (in place) and return it."""
    for branch, directories in source.items():
        if not isinstance(directories, dict):
            continue
        for directory, files in directories.items():
            if not isinstance(files, list):
                continue
            target.setdefault(branch, {}).setdefault(directory, []).extend(files)
    return target


def time_key(moment: datetime, bucket_minutes: int) -> str:
    """``HH:MM`` of the bucket containing *moment* (minutes floored)."""
    minutes = (moment.minute // bucket_minutes) * bucket_minutes
    return f"{moment.hour:02d}:{minutes:02d}"


def _utc_day_path(root: Path, moment: datetime) -> Path:
    utc = moment.astimezone(timezone.utc)
    return root / f"{utc.year:04d}" / f"{utc.month:02d}" / f"{utc.day:02d}.json"


class BatchRepository:
    """Reads and writes batch documents under ``data/batches``."""

    def __init__(self, batches_dir: Path) -> None:
        self.batches_dir = batches_dir

    def new_batch_name(self) -> str:
        return f"batch_{epoch_millis()}_{random_suffix()}.json"

    def save_batch(self, document: BatchDocument, filename: Optional[str] = None) -> str:
        """Write a pending batch document and return its file name."""
        name = filename or self.new_batch_name()
        write_json(self.batches_dir / name, document)
        return name

    def pending_files(self) -> list[tuple[str, int]]:
        """``(name, timestamp)`` of each pending document, in name order."""
        try:
            names = sorted(os.listdir(self.batches_dir))
        except FileNotFoundError:
            return []
        pending: list[tuple[str, int]] = []
        for name in names:
            ts = pending_timestamp(name)
            if ts is not None and (self.batches_dir / name).is_file():
                pending.append((name, ts))
        return pending

    def read_document(self, path: Path) -> BatchDocument:
        data = read_json(path)
        if not isinstance(data, dict):
            raise ValueError(f"{path} is not a batch document")
        return data

    def collected_path(self, day: date) -> Path:
        return self.batches_dir / f"{day.year:04d}" / f"{day.month:02d}" / f"{day.day:02d}.json"

    # ── Collection ────────────────────────────────────────────────

    def collect(self, now: Optional[datetime] = None) -> CollectResult:
        """Fold pending documents from before today (UTC) into day documents."""
        current = now or datetime.now(timezone.utc)
        today_start = datetime.combine(current.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)
        cutoff_ms = int(today_start.timestamp() * 1000)

        stale = [(name, ts) for name, ts in self.pending_files() if ts < cutoff_ms]
        if not stale:
            return CollectResult(collected=False, files_processed=0)

        by_day: dict[date, list[str]] = defaultdict(list)
        for name, ts in stale:
            by_day[datetime.fromtimestamp(ts / 1000, tz=timezone.utc).date()].append(name)

        for day in sorted(by_day):
            files = by_day[day]
            merged: BatchDocument = {}
            for name in files:
                merge_documents(merged, self.read_document(self.batches_dir / name))

            target = self.collected_path(day)
            if target.exists():
                merge_documents(merged, self.read_document(target))

            write_json(target, merged)
            logger.info(
                "Collected %d batch file(s) into batches/%s",
                len(files),
                target.relative_to(self.batches_dir).as_posix(),
            )

        for name, _ in stale:
            (self.batches_dir / name).unlink()

        logger.info("Batch collection completed: %d file(s) processed", len(stale))
        return CollectResult(collected=True, files_processed=len(stale))

    # ── Report assembly ───────────────────────────────────────────

    def merge_into_report(
        self,
        report: TimeReport,
        day: date,
        bucket_minutes: int,
        processed: Optional[set[str]] = None,
    ) -> TimeReport:
        """Fold every batch event of the local *day* into *report*.

        When *processed* is given, sources recorded in it are skipped and the
        sources read by this call are added, so repeated calls only fold in
        what appeared since the previous one.
        """
        start = datetime.combine(day, time.min).astimezone()
        end = datetime.combine(day, time(23, 59, 59, 999000)).astimezone()
        start_ms = int(start.timestamp() * 1000)
        end_ms = int(end.timestamp() * 1000)

        try:
            for name, ts in self.pending_files():
                if processed is not None and name in processed:
                    continue
                if not start_ms <= ts <= end_ms:
                    continue
                document = self.read_document(self.batches_dir / name)
                self._fold(report, document, start_ms, end_ms, bucket_minutes)
                if processed is not None:
                    processed.add(name)

            for path in self._day_paths(start, end):
                key = f"{HIERARCHICAL_PREFIX}{path}"
                if processed is not None and key in processed:
                    continue
                if not path.exists():
                    continue
                self._fold(report, self.read_document(path), start_ms, end_ms, bucket_minutes)
                if processed is not None:
                    processed.add(key)
        except (OSError, ValueError) as exc:
            logger.error("Error merging batches into report: %s", exc)

        report.entries.sort(key=lambda e: e.key)
        return report

    def _day_paths(self, start: datetime, end: datetime) -> list[Path]:
        # A local day overlaps at most two UTC days
        paths: list[Path] = []
        for moment in (start, end):
            path = _utc_day_path(self.batches_dir, moment)
            if path not in paths:
                paths.append(path)
        return paths

    @staticmethod
    def _fold(
        report: TimeReport,
        document: BatchDocument,
        start_ms: int,
        end_ms: int,
        bucket_minutes: int,
    ) -> None:
        index = {(e.key, e.branch, e.directory): e for e in report.entries}
        for branch, directories in document.items():
            if not isinstance(directories, dict):
                continue
            for directory, files in directories.items():
                if not isinstance(files, list):
                    continue
                for item in files:
                    try:
                        file_name = str(item["File"])
                        ts = int(item["Timestamp"])
                    except (KeyError, TypeError, ValueError):
                        logger.debug("Skipping malformed batch item %r", item)
                        continue
                    if not start_ms <= ts <= end_ms:
                        continue

                    key = time_key(datetime.fromtimestamp(ts / 1000), bucket_minutes)
                    entry = index.get((key, branch, directory))
                    if entry is None:
                        entry = TimeEntry(key=key, branch=branch, directory=directory)
                        report.entries.append(entry)
                        index[(key, branch, directory)] = entry
                    if file_name not in entry.files:
                        entry.files.append(file_name)
                        entry.file_details.append(FileDetail(file=file_name, timestamp=ts))
