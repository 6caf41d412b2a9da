"""Write targets inside the data tree: arbitrary request bodies and the project map."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from smarttime.errors import InvalidRequestError
from smarttime.storage.files import read_json, write_json
from smarttime.storage.git import HOUSEKEEPING_MARKER
from smarttime.storage.lock import GUARD_FILE_NAME, LOCK_FILE_NAME

logger = logging.getLogger(__name__)

PROJECTS_FILE = "projects.json"
UNBOUND_KEY = "_unbound"
RESERVED_NAMES = frozenset({LOCK_FILE_NAME, GUARD_FILE_NAME, HOUSEKEEPING_MARKER})


def resolve_data_path(data_dir: Path, relative_path: str) -> Path:
    """Resolve *relative_path* under *data_dir*, refusing escapes and git internals."""
    candidate = Path(relative_path)
    if candidate.is_absolute():
        raise InvalidRequestError(f"Write target must be relative: {relative_path}")
    root = data_dir.resolve()
    target = (root / candidate).resolve()
    if target == root or root not in target.parents:
        raise InvalidRequestError(f"Write target escapes the data directory: {relative_path}")
    first = target.relative_to(root).parts[0]
    if first == ".git":
        raise InvalidRequestError(f"Write target is inside .git: {relative_path}")
    if first in RESERVED_NAMES:
        raise InvalidRequestError(f"Write target is reserved for the store: {relative_path}")
    return target


def write_body(data_dir: Path, relative_path: str, body: dict[str, Any]) -> Path:
    target = resolve_data_path(data_dir, relative_path)
    write_json(target, body)
    return target


class ProjectRepository:
    """``projects.json``: ``{branch: {directory: project}, "_unbound": [project, ...]}``."""

    def __init__(self, data_dir: Path) -> None:
        self.path = data_dir / PROJECTS_FILE

    def read_projects(self) -> dict[str, Any]:
        try:
            parsed = read_json(self.path)
        except (OSError, json.JSONDecodeError):
            return {}
        if not isinstance(parsed, dict):
            return {}

        if UNBOUND_KEY in parsed and not isinstance(parsed[UNBOUND_KEY], list):
            logger.warning("projects.json _unbound is not an array, ignoring")
            del parsed[UNBOUND_KEY]

        for key, value in parsed.items():
            if key == UNBOUND_KEY:
                continue
            if not isinstance(value, dict):
                logger.warning("projects.json has unexpected format, treating as empty")
                return {}
        return parsed

    def save_projects(self, projects: dict[str, Any]) -> None:
        write_json(self.path, projects)

    def add_or_update_project(self, branch: str, directory: str, project: str) -> None:
        projects = self.read_projects()
        projects.setdefault(branch, {})[directory] = project
        self.save_projects(projects)

    def delete_project(self, branch: str, directory: str) -> None:
        projects = self.read_projects()
        mapping = projects.get(branch)
        if isinstance(mapping, dict) and directory in mapping:
            del mapping[directory]
            if not mapping:
                del projects[branch]
        self.save_projects(projects)

    def add_unbound_project(self, project: str) -> None:
        projects = self.read_projects()
        unbound = projects.setdefault(UNBOUND_KEY, [])
        if project not in unbound:
            unbound.append(project)
        self.save_projects(projects)
