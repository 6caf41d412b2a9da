"""SmartTime configuration management.

Settings live in ``~/.smarttime/config.toml`` under a ``[smarttime]`` table::

    [smarttime]
    root = "/home/me/.coft.smarttime"
    interval_seconds = 60
    view_group_by_minutes = 15
    export_dir = ""
    export_age_days = 90

Invalid values are reported and replaced by their defaults; a missing file
means all defaults. ``SMARTTIME_ROOT`` overrides ``root``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

import toml  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

ROOT_ENV_VAR = "SMARTTIME_ROOT"

DEFAULT_INTERVAL_SECONDS = 60
DEFAULT_GROUP_BY_MINUTES = 15
DEFAULT_EXPORT_AGE_DAYS = 90
DEFAULT_QUEUE_INTERVAL_SECONDS = 10.0


def default_config_path() -> Path:
    return Path.home() / ".smarttime" / "config.toml"


def default_root() -> Path:
    return Path.home() / ".coft.smarttime"


def is_valid_path(value: str) -> bool:
    """Absolute, non-empty and free of NUL bytes."""
    if not value or "\0" in value:
        return False
    return os.path.isabs(value)


@dataclass
class SmartTimeConfig:
    """Resolved settings plus the on-disk layout derived from ``root``."""

    root: Path = field(default_factory=default_root)
    interval_seconds: int = DEFAULT_INTERVAL_SECONDS
    view_group_by_minutes: int = DEFAULT_GROUP_BY_MINUTES
    export_dir: Optional[Path] = None
    export_age_days: int = DEFAULT_EXPORT_AGE_DAYS
    queue_interval_seconds: float = DEFAULT_QUEUE_INTERVAL_SECONDS

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        if self.export_dir is not None:
            self.export_dir = Path(self.export_dir)

    @property
    def queue(self) -> Path:
        return self.root / "queue"

    @property
    def queue_batch(self) -> Path:
        return self.root / "queue_batch"

    @property
    def queue_backup(self) -> Path:
        return self.root / "queue_backup"

    @property
    def operation_queue(self) -> Path:
        return self.root / "operation_queue"

    @property
    def operation_queue_backup(self) -> Path:
        return self.root / "operation_queue_backup"

    @property
    def data(self) -> Path:
        return self.root / "data"

    @property
    def backup(self) -> Path:
        return self.root / "backup"

    def to_dict(self) -> dict[str, Any]:
        raw = asdict(self)
        raw["root"] = str(self.root)
        raw["export_dir"] = str(self.export_dir) if self.export_dir else ""
        return raw


def _validated(section: dict[str, Any]) -> SmartTimeConfig:
    config = SmartTimeConfig()

    root = section.get("root")
    if isinstance(root, str) and root:
        if is_valid_path(root):
            config.root = Path(root)
        else:
            logger.warning(
                "smarttime.root is not a valid path: %s. Using default: %s",
                root,
                config.root,
            )

    interval = section.get("interval_seconds", DEFAULT_INTERVAL_SECONDS)
    if isinstance(interval, int) and 60 <= interval <= 300:
        config.interval_seconds = interval
    else:
        logger.warning(
            "interval_seconds (%s) is out of range. Using default value: %d",
            interval,
            DEFAULT_INTERVAL_SECONDS,
        )

    group_by = section.get("view_group_by_minutes", DEFAULT_GROUP_BY_MINUTES)
    if isinstance(group_by, int) and 0 < group_by <= 60 and 60 % group_by == 0:
        config.view_group_by_minutes = group_by
    else:
        logger.warning(
            "view_group_by_minutes (%s) is invalid. Using default value: %d",
            group_by,
            DEFAULT_GROUP_BY_MINUTES,
        )

    export_dir = section.get("export_dir", "")
    if export_dir:
        if isinstance(export_dir, str) and is_valid_path(export_dir):
            config.export_dir = Path(export_dir)
        else:
            logger.warning(
                "smarttime.export_dir is not a valid path: %s. Export disabled.",
                export_dir,
            )

    age = section.get("export_age_days", DEFAULT_EXPORT_AGE_DAYS)
    if isinstance(age, int) and age >= 1:
        config.export_age_days = age
    else:
        logger.warning(
            "export_age_days (%s) is invalid. Using default value: %d",
            age,
            DEFAULT_EXPORT_AGE_DAYS,
        )

    tick = section.get("queue_interval_seconds", DEFAULT_QUEUE_INTERVAL_SECONDS)
    if isinstance(tick, (int, float)) and tick > 0:
        config.queue_interval_seconds = float(tick)

    return config


def load_config(path: Optional[Path] = None) -> SmartTimeConfig:
    """Load and validate settings from *path* (default ``~/.smarttime/config.toml``)."""
    config_file = path or default_config_path()
    section: dict[str, Any] = {}
    if config_file.exists():
        try:
            data = toml.load(config_file)
        except (toml.TomlDecodeError, OSError) as exc:
            logger.warning("Could not read %s (%s); using defaults", config_file, exc)
            data = {}
        candidate = data.get("smarttime") if isinstance(data, dict) else None
        if isinstance(candidate, dict):
            section = candidate

    config = _validated(section)

    env_root = os.environ.get(ROOT_ENV_VAR)
    if env_root:
        if is_valid_path(env_root):
            config.root = Path(env_root)
        else:
            logger.warning("%s is not a valid path: %s", ROOT_ENV_VAR, env_root)
    return config


def save_config(config: SmartTimeConfig, path: Optional[Path] = None) -> Path:
    """Write *config* back to disk, preserving unrelated tables."""
    config_file = path or default_config_path()
    config_file.parent.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {}
    if config_file.exists():
        data = toml.load(config_file)
    data["smarttime"] = config.to_dict()

    with open(config_file, "w", encoding="utf-8") as f:
        toml.dump(data, f)
    return config_file
