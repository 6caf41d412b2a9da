from __future__ import annotations

import shutil
from datetime import date
from pathlib import Path
from typing import Callable

import pytest

from smarttime.config import SmartTimeConfig
from smarttime.storage.git import GitStore, _run_git
from smarttime.storage.layout import StorageManager


def pytest_collection_modifyitems(config, items):
    if shutil.which("git") is not None:
        return
    skip_git = pytest.mark.skip(reason="git binary not available")
    for item in items:
        if "git" in item.keywords:
            item.add_marker(skip_git)


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep ~/.smarttime and global git config out of the tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.delenv("SMARTTIME_ROOT", raising=False)


@pytest.fixture()
def config(tmp_path: Path) -> SmartTimeConfig:
    return SmartTimeConfig(root=tmp_path / "smarttime", queue_interval_seconds=0.05)


@pytest.fixture()
def storage(config: SmartTimeConfig) -> StorageManager:
    manager = StorageManager(config)
    manager.initialize()
    return manager


@pytest.fixture()
def today() -> date:
    return date(2026, 2, 15)


@pytest.fixture()
def store(config: SmartTimeConfig, today: date) -> GitStore:
    return GitStore(
        data_dir=config.data,
        backup_dir=config.backup,
        version="smarttime test",
        today=lambda: today,
    )


@pytest.fixture()
def git_log() -> Callable[[Path], list[str]]:
    """Commit subjects on HEAD, newest first (empty for an unborn branch)."""

    def _log(repo: Path) -> list[str]:
        result = _run_git(repo, ["log", "--format=%s"], check=False)
        if result.returncode != 0:
            return []
        return [line for line in result.stdout.splitlines() if line]

    return _log
