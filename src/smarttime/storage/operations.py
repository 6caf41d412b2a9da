"""Durable operation-request mailbox.

Every pending write intent is one JSON file in ``operation_queue/`` named
``<epochMillis>_<suffix>.json``. Sorting file names lexicographically gives
creation order for as long as epoch milliseconds keep 13 digits.

The request body is a tagged union discriminated by ``type``:

    {"type": "processBatch"}
    {"type": "timereport" | "projects" | "write", "file": "...", "body": {...}}
    {"type": "projectChange", "action": "add", "branch": ..., "directory": ..., "project": ...}
    {"type": "housekeeping"}
    {"type": "invalid"}          (synthesized for unreadable files)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from smarttime.storage.files import epoch_millis, random_suffix

logger = logging.getLogger(__name__)

WRITE_KINDS = ("timereport", "projects", "write")


class ProcessBatchRequest(BaseModel):
    """Fold the raw event queue into a new pending batch document."""

    model_config = ConfigDict(frozen=True)

    type: Literal["processBatch"] = "processBatch"


class WriteFileRequest(BaseModel):
    """Write ``body`` to ``file`` (relative to the data tree) and commit."""

    model_config = ConfigDict(frozen=True)

    type: Literal["timereport", "projects", "write"] = "write"
    file: str = Field(..., min_length=1)
    body: dict[str, Any]


class ProjectChangeRequest(BaseModel):
    """Apply one edit to ``projects.json`` and commit."""

    model_config = ConfigDict(frozen=True)

    type: Literal["projectChange"] = "projectChange"
    action: Literal["add", "update", "delete", "addUnbound"]
    branch: Optional[str] = None
    directory: Optional[str] = None
    project: Optional[str] = None


class HousekeepingRequest(BaseModel):
    """Run the once-a-day maintenance pass."""

    model_config = ConfigDict(frozen=True)

    type: Literal["housekeeping"] = "housekeeping"


class InvalidRequest(BaseModel):
    """Stand-in for a request file that could not be parsed."""

    model_config = ConfigDict(frozen=True)

    type: Literal["invalid"] = "invalid"


OperationRequest = Annotated[
    Union[
        ProcessBatchRequest,
        WriteFileRequest,
        ProjectChangeRequest,
        HousekeepingRequest,
        InvalidRequest,
    ],
    Field(discriminator="type"),
]

_REQUEST_ADAPTER: TypeAdapter[OperationRequest] = TypeAdapter(OperationRequest)


def parse_request(content: str | bytes) -> OperationRequest:
    """Decode a request file. Raises ``pydantic.ValidationError`` when malformed."""
    return _REQUEST_ADAPTER.validate_json(content)


def encode_request(request: OperationRequest) -> str:
    payload = {k: v for k, v in request.model_dump(mode="json").items() if v is not None}
    return json.dumps(payload, indent=2)


def describe(request: OperationRequest) -> str:
    """Short label for log lines: ``type`` or ``type - file``."""
    if isinstance(request, WriteFileRequest):
        return f"{request.type} - {request.file}"
    return request.type


@dataclass(frozen=True)
class PendingOperation:
    file: str
    request: OperationRequest


class OperationRepository:
    """One-file-per-request store under the operation-queue directory."""

    def __init__(self, queue_dir: Path) -> None:
        self.queue_dir = queue_dir

    def add_operation(self, request: OperationRequest) -> str:
        """Persist *request* and return its file name."""
        self.queue_dir.mkdir(parents=True, exist_ok=True)
        file_name = f"{epoch_millis()}_{random_suffix()}.json"
        path = self.queue_dir / file_name
        # Write under a dot-name first; the reader only picks up *.json
        tmp_path = self.queue_dir / f".{file_name}.tmp"
        tmp_path.write_text(encode_request(request), encoding="utf-8")
        os.replace(tmp_path, path)
        return file_name

    def list_files(self) -> list[str]:
        try:
            names = os.listdir(self.queue_dir)
        except FileNotFoundError:
            return []
        return sorted(n for n in names if n.endswith(".json") and not n.startswith("."))

    def has_pending_operations(self) -> bool:
        return bool(self.list_files())

    def read_pending_operations(self) -> list[PendingOperation]:
        """Return every pending request in queue order.

        A file that cannot be read or parsed comes back as ``InvalidRequest``
        so it follows the normal failure path instead of being skipped.
        """
        operations: list[PendingOperation] = []
        for file_name in self.list_files():
            path = self.queue_dir / file_name
            try:
                request = parse_request(path.read_bytes())
            except FileNotFoundError:
                # Consumed by another process since the listing
                continue
            except (OSError, ValidationError, ValueError) as exc:
                logger.warning("Error reading operation request %s: %s", file_name, exc)
                request = InvalidRequest()
            operations.append(PendingOperation(file=file_name, request=request))
        return operations

    def delete_operation(self, file_name: str) -> None:
        try:
            (self.queue_dir / file_name).unlink()
        except OSError as exc:
            logger.error("Error deleting operation request %s: %s", file_name, exc)

    def move_to_dead_letter(self, file_name: str, dead_letter_dir: Path) -> bool:
        """Relocate a request file, keeping its name. Returns False on failure."""
        dead_letter_dir.mkdir(parents=True, exist_ok=True)
        try:
            os.replace(self.queue_dir / file_name, dead_letter_dir / file_name)
        except OSError as exc:
            logger.error("Error moving request %s to backup: %s", file_name, exc)
            return False
        return True


def write_operation(repository: OperationRepository, request: OperationRequest) -> str:
    """Enqueue *request* and log it."""
    file_name = repository.add_operation(request)
    logger.info("Operation request created: %s (%s)", file_name, describe(request))
    return file_name
