"""Tests for write targets inside the data tree."""

from __future__ import annotations

import json

import pytest

from smarttime.errors import InvalidRequestError
from smarttime.storage.reports import (
    ProjectRepository,
    resolve_data_path,
    write_body,
)


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir()
    return path


class TestResolveDataPath:
    def test_nested_relative_path(self, data_dir):
        assert resolve_data_path(data_dir, "reports/2026/02/15.json") == (data_dir / "reports/2026/02/15.json").resolve()

    @pytest.mark.parametrize(
        "bad",
        [
            "/etc/passwd",
            "../outside.json",
            "reports/../../x.json",
            ".git/config",
            "reports/../.git/config",
            "./.git/HEAD",
            ".lock",
            "reports/../.lock.guard",
            ".last-housekeeping",
            ".",
        ],
    )
    def test_rejects_unsafe_targets(self, data_dir, bad):
        with pytest.raises(InvalidRequestError):
            resolve_data_path(data_dir, bad)

    def test_write_body_creates_parents(self, data_dir):
        target = write_body(data_dir, "reports/2026/02/15.json", {"date": "2026-02-15"})
        assert json.loads(target.read_text()) == {"date": "2026-02-15"}


class TestProjectRepository:
    def test_add_update_delete(self, data_dir):
        repo = ProjectRepository(data_dir)
        repo.add_or_update_project("main", "/p", "Alpha")
        repo.add_or_update_project("main", "/p", "Beta")
        repo.add_or_update_project("main", "/q", "Gamma")
        assert repo.read_projects() == {"main": {"/p": "Beta", "/q": "Gamma"}}

        repo.delete_project("main", "/p")
        repo.delete_project("main", "/q")
        assert repo.read_projects() == {}

    def test_add_unbound_is_unique(self, data_dir):
        repo = ProjectRepository(data_dir)
        repo.add_unbound_project("Misc")
        repo.add_unbound_project("Misc")
        assert repo.read_projects() == {"_unbound": ["Misc"]}

    def test_malformed_file_reads_as_empty(self, data_dir):
        (data_dir / "projects.json").write_text(json.dumps({"main": "not-a-map"}))
        assert ProjectRepository(data_dir).read_projects() == {}

    def test_bad_unbound_is_dropped(self, data_dir):
        (data_dir / "projects.json").write_text(json.dumps({"_unbound": "x", "main": {"/p": "A"}}))
        assert ProjectRepository(data_dir).read_projects() == {"main": {"/p": "A"}}
