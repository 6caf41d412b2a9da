"""Git-backed versioned store with self-healing and a bare backup replica.

Working repository states::

    Absent  --init-->            Healthy
    Healthy --probe fails-->     Broken
    Broken  --relocate + init--> Healthy

A broken working tree is moved aside to ``<data>_backup_<timestamp>`` and a
fresh repository is created in its place. The bare replica follows the same
cycle, relocating to ``<backup>_broken_<timestamp>``. After ``ensure()`` the
working repository always has a ``backup`` remote pointing at the replica.

All git invocations go through ``_run_git`` so callers only ever see
``GitCommandError`` for a failed subprocess.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Optional

from smarttime import notify
from smarttime.errors import CorruptStateError, GitCommandError
from smarttime.storage.lock import GUARD_FILE_NAME, LOCK_FILE_NAME

logger = logging.getLogger(__name__)

REMOTE_NAME = "backup"
HOUSEKEEPING_MARKER = ".last-housekeeping"
GITIGNORE_LINES = (LOCK_FILE_NAME, GUARD_FILE_NAME, HOUSEKEEPING_MARKER, "*.tmp")
DEFAULT_USER_NAME = "COFT SmartTime"
DEFAULT_USER_EMAIL = "smarttime@coft.local"


@dataclass
class _GitCommandResult:
    returncode: int
    stdout: str
    stderr: str


def _run_git(cwd: Path, args: list[str], *, check: bool = True, timeout: int = 120) -> _GitCommandResult:
    """Run ``git <args>`` in *cwd*.

    Raises:
        GitCommandError: non-zero exit when *check* is set, or git missing,
            or the command timed out (always).
    """
    try:
        completed = subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise GitCommandError(args, 127, "git executable not found on PATH") from exc
    except subprocess.TimeoutExpired as exc:
        raise GitCommandError(args, 124, f"git command timed out after {timeout}s") from exc

    result = _GitCommandResult(
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    if check and result.returncode != 0:
        raise GitCommandError(args, result.returncode, result.stderr or result.stdout)
    return result


def _timestamp() -> str:
    return datetime.now().strftime("%Y%m%d%H%M%S")


def _relocation_target(path: Path, infix: str) -> Path:
    base = path.with_name(f"{path.name}_{infix}_{_timestamp()}")
    target = base
    counter = 1
    while target.exists():
        target = base.with_name(f"{base.name}_{counter}")
        counter += 1
    return target


class GitStore:
    """The data directory as a git working tree, mirrored to a bare replica."""

    def __init__(
        self,
        data_dir: Path,
        backup_dir: Path,
        version: str,
        exporter: Optional[Callable[[], object]] = None,
        today: Callable[[], date] = date.today,
        user_name: str = DEFAULT_USER_NAME,
        user_email: str = DEFAULT_USER_EMAIL,
    ) -> None:
        self.data_dir = data_dir
        self.backup_dir = backup_dir
        self.version = version
        self.exporter = exporter
        self._today = today
        self.user_name = user_name
        self.user_email = user_email

    @property
    def marker_path(self) -> Path:
        return self.data_dir / HOUSEKEEPING_MARKER

    # ── State machine ─────────────────────────────────────────────

    def ensure(self) -> None:
        """Make both repositories healthy and wire the backup remote."""
        self._ensure_working()
        self._ensure_replica()
        self._ensure_remote()

    def is_working_healthy(self) -> bool:
        git_dir = self.data_dir / ".git"
        if not (git_dir / "HEAD").is_file():
            return False
        result = _run_git(self.data_dir, ["rev-parse", "--absolute-git-dir"], check=False)
        if result.returncode != 0:
            return False
        return Path(result.stdout.strip()).resolve() == git_dir.resolve()

    def is_replica_healthy(self) -> bool:
        if not (self.backup_dir / "HEAD").is_file():
            return False
        result = _run_git(
            self.backup_dir,
            ["--git-dir", str(self.backup_dir), "rev-parse", "--is-bare-repository"],
            check=False,
        )
        return result.returncode == 0 and result.stdout.strip() == "true"

    def _ensure_working(self) -> None:
        if not (self.data_dir / ".git").exists():
            self._init_working()
            return
        if self.is_working_healthy():
            return

        target = self._relocate(self.data_dir, "backup")
        notify.warn(
            f"Data repository at {self.data_dir} was corrupt; moved to {target} and reinitialized."
        )
        self._init_working()

    def _init_working(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        _run_git(self.data_dir, ["init"])
        _run_git(self.data_dir, ["config", "user.name", self.user_name])
        _run_git(self.data_dir, ["config", "user.email", self.user_email])
        _run_git(self.data_dir, ["config", "commit.gpgsign", "false"])
        (self.data_dir / ".gitignore").write_text("\n".join(GITIGNORE_LINES) + "\n", encoding="utf-8")
        logger.info("Git repository initialized at %s", self.data_dir)

    def _ensure_replica(self) -> None:
        if not self.backup_dir.exists() or not any(self.backup_dir.iterdir()):
            self._init_replica()
            return
        if self.is_replica_healthy():
            return

        target = self._relocate(self.backup_dir, "broken")
        notify.warn(
            f"Backup repository at {self.backup_dir} was corrupt; moved to {target} and reinitialized."
        )
        self._init_replica()

    def _init_replica(self) -> None:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        _run_git(self.backup_dir, ["init", "--bare", str(self.backup_dir)])
        logger.info("Backup repository initialized at %s", self.backup_dir)

    def _ensure_remote(self) -> None:
        wanted = str(self.backup_dir.resolve())
        current = _run_git(self.data_dir, ["remote", "get-url", REMOTE_NAME], check=False)
        if current.returncode != 0:
            _run_git(self.data_dir, ["remote", "add", REMOTE_NAME, wanted])
            logger.info("Added %s remote -> %s", REMOTE_NAME, wanted)
        elif current.stdout.strip() != wanted:
            _run_git(self.data_dir, ["remote", "set-url", REMOTE_NAME, wanted])
            logger.info("Repointed %s remote -> %s", REMOTE_NAME, wanted)

    def _relocate(self, path: Path, infix: str) -> Path:
        """Move a broken directory aside, keeping any held store lock in place."""
        target = _relocation_target(path, infix)
        try:
            os.replace(path, target)
        except OSError as exc:
            raise CorruptStateError(f"Could not move broken repository {path} aside: {exc}") from exc

        lock_file = target / LOCK_FILE_NAME
        if lock_file.exists():
            path.mkdir(parents=True, exist_ok=True)
            os.replace(lock_file, path / LOCK_FILE_NAME)
        return target

    # ── Commits and maintenance ───────────────────────────────────

    def commit(self, message: Optional[str] = None) -> bool:
        """Stage everything and commit. Returns False when there was nothing to commit."""
        self.ensure()
        _run_git(self.data_dir, ["add", "-A"])

        diff = _run_git(self.data_dir, ["diff", "--cached", "--quiet"], check=False)
        if diff.returncode == 0:
            logger.info("No changes to commit")
            return False
        if diff.returncode != 1:
            raise GitCommandError(["diff", "--cached", "--quiet"], diff.returncode, diff.stderr)

        commit_message = message or self.version
        _run_git(self.data_dir, ["commit", "--no-verify", "-m", commit_message])
        logger.info("Git commit created: %s", commit_message)
        return True

    def gc_and_push(self) -> bool:
        """Garbage-collect, then push to the replica. Returns whether the push worked."""
        self.ensure()
        _run_git(self.data_dir, ["gc", "--quiet"])
        try:
            _run_git(self.data_dir, ["push", "--all", REMOTE_NAME])
        except GitCommandError as exc:
            notify.warn(f"Backup push failed: {exc}")
            return False
        logger.info("Pushed all branches to %s", REMOTE_NAME)
        return True

    def housekeeping(self) -> None:
        """Daily maintenance: gc, backup push, export, then stamp the marker."""
        logger.info("Running housekeeping")
        self.gc_and_push()
        if self.exporter is not None:
            self.exporter()
        self.marker_path.write_text(self._today().isoformat(), encoding="utf-8")
        logger.info("Housekeeping completed")

    def last_housekeeping(self) -> Optional[str]:
        try:
            return self.marker_path.read_text(encoding="utf-8").strip() or None
        except OSError:
            return None

    def is_first_operation_today(self) -> bool:
        return self.last_housekeeping() != self._today().isoformat()

    def head_commit_count(self) -> int:
        """Number of commits reachable from HEAD (0 for an unborn branch)."""
        result = _run_git(self.data_dir, ["rev-list", "--count", "HEAD"], check=False)
        if result.returncode != 0:
            return 0
        return int(result.stdout.strip() or 0)
