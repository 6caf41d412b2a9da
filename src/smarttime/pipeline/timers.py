"""Recurring daemon timer driving one pipeline entry point.

Each tick runs the callback on a ``threading.Timer`` thread, then schedules
the next tick. Exceptions escaping the callback are logged and the timer
keeps going; the callbacks themselves are responsible for being
non-reentrant.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class RecurringTimer:
    """Calls *callback* every *interval_seconds* until stopped."""

    name: str
    interval_seconds: float
    callback: Callable[[], object]
    _timer: Optional[threading.Timer] = field(default=None, init=False, repr=False)
    _running: bool = field(default=False, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start ticking (idempotent)."""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._schedule()
        logger.info("Starting %s (%ss interval)", self.name, self.interval_seconds)

    def stop(self) -> None:
        """Cancel the pending tick (idempotent). A tick already running finishes."""
        with self._lock:
            was_running = self._running
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if was_running:
            logger.info("%s stopped", self.name)

    # ── Internal ──────────────────────────────────────────────────

    def _schedule(self) -> None:
        """Caller must hold _lock."""
        self._timer = threading.Timer(self.interval_seconds, self._on_timer)
        self._timer.name = f"smarttime-{self.name}"
        self._timer.daemon = True
        self._timer.start()

    def _on_timer(self) -> None:
        if not self._running:
            return
        try:
            self.callback()
        except Exception:
            logger.exception("Unhandled error in %s tick", self.name)
        with self._lock:
            if self._running:
                self._schedule()
