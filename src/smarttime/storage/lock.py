"""Cross-process store lock.

A single ``.lock`` file inside the store root, created with
``O_CREAT | O_EXCL`` and holding the owner's PID. A lock whose owner is no
longer running is considered stale and is removed by the next contender.
Stale removal happens under a ``filelock`` guard (``.lock.guard``) and only
if the file still holds what the contender read, so a live lock created in
the meantime is never deleted.
There is no fairness: whichever process creates the file first wins.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import filelock

from smarttime.errors import LockTimeoutError

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = ".lock"
GUARD_FILE_NAME = ".lock.guard"
POLL_INTERVAL_SECONDS = 0.1
EMPTY_LOCK_GRACE_SECONDS = 1.0
GUARD_TIMEOUT_SECONDS = 1.0


def is_process_alive(pid: int) -> bool:
    """Check whether *pid* is running without sending it a real signal."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True
    except OSError:
        return True


class FileLock:
    """PID-file mutex over a store directory."""

    def __init__(self, lock_dir: Path) -> None:
        self.lock_file = Path(lock_dir) / LOCK_FILE_NAME
        self.guard_file = Path(lock_dir) / GUARD_FILE_NAME

    def acquire(self, timeout_ms: int = 1000) -> bool:
        """Try to take the lock until *timeout_ms* elapses.

        Returns:
            True when the lock file was created by this process.
        """
        deadline = time.monotonic() + timeout_ms / 1000
        while time.monotonic() < deadline:
            try:
                self.lock_file.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if self._clear_stale():
                    continue
                time.sleep(POLL_INTERVAL_SECONDS)
                continue
            except OSError as exc:
                logger.error("Error acquiring lock %s: %s", self.lock_file, exc)
                return False

            try:
                os.write(fd, str(os.getpid()).encode("ascii"))
            finally:
                os.close(fd)
            logger.debug("Lock acquired: %s", self.lock_file)
            return True

        logger.info("Failed to acquire lock within %dms", timeout_ms)
        return False

    def release(self) -> None:
        """Remove the lock file. Never raises."""
        try:
            self.lock_file.unlink()
            logger.debug("Lock released: %s", self.lock_file)
        except FileNotFoundError:
            logger.debug("Lock already released: %s", self.lock_file)
        except OSError as exc:
            logger.error("Error releasing lock %s: %s", self.lock_file, exc)

    def holder_pid(self) -> int | None:
        """PID recorded in the lock file, or None when absent/unreadable."""
        try:
            return int(self.lock_file.read_text(encoding="ascii").strip())
        except (OSError, ValueError):
            return None

    @contextmanager
    def held(self, timeout_ms: int = 1000) -> Iterator[None]:
        """Hold the lock for the duration of a ``with`` block.

        Raises:
            LockTimeoutError: the lock stayed busy for *timeout_ms*.
        """
        if not self.acquire(timeout_ms):
            raise LockTimeoutError(str(self.lock_file), timeout_ms)
        try:
            yield
        finally:
            self.release()

    def _clear_stale(self) -> bool:
        """Remove a stale or unreadable lock file.

        Returns True when the caller should retry the create immediately.
        """
        content = self._read_raw()
        if content is None:
            # Released between our create attempt and the read
            return True
        try:
            text = content.decode("ascii").strip()
            if not text and self._age_seconds() < EMPTY_LOCK_GRACE_SECONDS:
                # Owner created the file but has not written its PID yet
                return False
            pid = int(text)
        except (ValueError, UnicodeDecodeError):
            logger.info("Removing unreadable lock file %s", self.lock_file)
            return self._remove_if_unchanged(content)

        if is_process_alive(pid):
            return False

        logger.info("Removing stale lock held by dead process %d", pid)
        return self._remove_if_unchanged(content)

    def _remove_if_unchanged(self, expected: bytes) -> bool:
        """Unlink the lock file under the guard, only while it still reads *expected*."""
        guard = filelock.FileLock(str(self.guard_file), timeout=GUARD_TIMEOUT_SECONDS)
        try:
            with guard:
                if self._read_raw() != expected:
                    logger.debug("Lock file changed before stale removal, leaving it")
                    return True
                self.lock_file.unlink(missing_ok=True)
        except filelock.Timeout:
            logger.info("Stale lock guard busy: %s", self.guard_file)
            return False
        except OSError as exc:
            logger.error("Error removing stale lock %s: %s", self.lock_file, exc)
            return False
        return True

    def _read_raw(self) -> bytes | None:
        try:
            return self.lock_file.read_bytes()
        except FileNotFoundError:
            return None
        except OSError:
            return b""

    def _age_seconds(self) -> float:
        try:
            return time.time() - self.lock_file.stat().st_mtime
        except OSError:
            return 0.0
