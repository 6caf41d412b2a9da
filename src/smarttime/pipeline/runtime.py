"""PipelineRuntime: wires storage, store and both timers together.

Usage:
    from smarttime.pipeline.runtime import get_runtime

    runtime = get_runtime()   # builds from ~/.smarttime/config.toml
    runtime.start()           # stopped automatically at process exit
"""

from __future__ import annotations

import atexit
import logging
from dataclasses import dataclass, field
from typing import Optional

from smarttime import __version__
from smarttime.config import SmartTimeConfig, load_config
from smarttime.pipeline.batch_processor import BatchProcessor
from smarttime.pipeline.processor import OperationQueueProcessor
from smarttime.storage.export import ReportExporter
from smarttime.storage.git import GitStore
from smarttime.storage.layout import StorageManager

logger = logging.getLogger(__name__)


def build_store(config: SmartTimeConfig) -> GitStore:
    exporter = ReportExporter(
        data_dir=config.data,
        export_dir=config.export_dir,
        export_age_days=config.export_age_days,
    )
    return GitStore(
        data_dir=config.data,
        backup_dir=config.backup,
        version=f"smarttime {__version__}",
        exporter=exporter,
    )


@dataclass
class PipelineRuntime:
    """Both recurring pipeline services for one SmartTime root.

    ``start()`` is idempotent and registers an atexit handler so timers are
    cancelled cleanly on interpreter shutdown.
    """

    config: SmartTimeConfig
    storage: StorageManager = field(init=False)
    store: GitStore = field(init=False)
    processor: OperationQueueProcessor = field(init=False)
    batch_processor: BatchProcessor = field(init=False)
    started: bool = field(default=False, init=False)
    _atexit_registered: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        self.storage = StorageManager(self.config)
        self.store = build_store(self.config)
        self.processor = OperationQueueProcessor(self.storage, self.store)
        self.batch_processor = BatchProcessor(
            self.storage.queue,
            self.storage.operations,
            interval_seconds=self.config.interval_seconds,
        )

    def start(self) -> None:
        if self.started:
            return
        self.storage.initialize()
        self.store.ensure()
        self.processor.start()
        self.batch_processor.start()
        self.started = True
        if not self._atexit_registered:
            atexit.register(self.stop)
            self._atexit_registered = True
        logger.info("SmartTime pipeline started for %s", self.config.root)

    def stop(self) -> None:
        if not self.started:
            return
        self.batch_processor.stop()
        self.processor.stop()
        self.started = False
        logger.info("SmartTime pipeline stopped")


# ── Singleton accessor ────────────────────────────────────────────

_runtime: Optional[PipelineRuntime] = None


def get_runtime(config: Optional[SmartTimeConfig] = None) -> PipelineRuntime:
    """Return the process-wide runtime, building it on first use."""
    global _runtime
    if _runtime is None:
        _runtime = PipelineRuntime(config or load_config())
    return _runtime


def reset_runtime() -> None:
    """Stop and forget the singleton (tests, config reloads)."""
    global _runtime
    if _runtime is not None:
        _runtime.stop()
    _runtime = None
