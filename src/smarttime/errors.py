"""
Exception hierarchy for the SmartTime pipeline.

SmartTimeError
├── TransientIOError      file-system contention, failed git subprocess
│   └── GitCommandError   non-zero git exit (wraps argv, returncode, stderr)
├── CorruptStateError     store state that had to be (or could not be) repaired
├── InvalidRequestError   operation request that can never be processed
└── LockTimeoutError      store lock not acquired within the timeout
"""

from __future__ import annotations


class SmartTimeError(Exception):
    """Base class for all SmartTime exceptions."""


class TransientIOError(SmartTimeError):
    """A failure that is expected to go away on a later attempt."""


class GitCommandError(TransientIOError):
    """
    Raised when a git subprocess exits non-zero, times out, or is missing.

    Attributes
    ----------
    args_   : the git arguments (without the leading ``git``)
    returncode : process exit code (127 missing binary, 124 timeout)
    stderr  : captured standard error, stripped
    """

    def __init__(self, args: list[str], returncode: int, stderr: str) -> None:
        self.args_ = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = self.stderr.splitlines()[0] if self.stderr else "no output"
        super().__init__(f"git {' '.join(args)} failed ({returncode}): {detail}")


class CorruptStateError(SmartTimeError):
    """Raised when a store directory is broken and could not be repaired."""


class InvalidRequestError(SmartTimeError):
    """Raised when processing an operation request that is malformed."""


class LockTimeoutError(SmartTimeError):
    """Raised when the store lock is busy for longer than the timeout."""

    def __init__(self, lock_file: str, timeout_ms: int) -> None:
        self.lock_file = lock_file
        self.timeout_ms = timeout_ms
        super().__init__(f"Could not acquire {lock_file} within {timeout_ms}ms")
