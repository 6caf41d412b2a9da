"""Tests for the operation request mailbox."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from smarttime.storage.operations import (
    HousekeepingRequest,
    InvalidRequest,
    OperationRepository,
    ProcessBatchRequest,
    ProjectChangeRequest,
    WriteFileRequest,
    describe,
    encode_request,
    parse_request,
)


@pytest.fixture
def repo(tmp_path) -> OperationRepository:
    return OperationRepository(tmp_path / "operation_queue")


REQUESTS = [
    ProcessBatchRequest(),
    WriteFileRequest(type="timereport", file="reports/2026/02/15.json", body={"date": "2026-02-15", "entries": []}),
    ProjectChangeRequest(action="add", branch="main", directory="/p", project="Alpha"),
    ProjectChangeRequest(action="addUnbound", project="Beta"),
    HousekeepingRequest(),
]


class TestAddOperation:
    @pytest.mark.parametrize("request_", REQUESTS, ids=lambda r: r.type)
    def test_one_file_per_request_and_content_matches(self, repo, request_):
        name = repo.add_operation(request_)
        assert repo.list_files() == [name]
        assert parse_request((repo.queue_dir / name).read_text()) == request_

    def test_file_name_shape(self, repo):
        name = repo.add_operation(ProcessBatchRequest())
        stem, ext = name.rsplit(".", 1)
        millis, suffix = stem.split("_")
        assert ext == "json"
        assert millis.isdigit() and len(millis) == 13
        assert len(suffix) == 6

    def test_no_temp_files_left_behind(self, repo):
        repo.add_operation(HousekeepingRequest())
        assert [p.name for p in repo.queue_dir.iterdir() if p.name.startswith(".")] == []

    def test_none_fields_are_omitted(self, repo):
        name = repo.add_operation(ProjectChangeRequest(action="addUnbound", project="Beta"))
        raw = json.loads((repo.queue_dir / name).read_text())
        assert raw == {"type": "projectChange", "action": "addUnbound", "project": "Beta"}

    def test_nested_nulls_in_body_survive(self, repo):
        request = WriteFileRequest(file="x.json", body={"comment": None})
        name = repo.add_operation(request)
        assert json.loads((repo.queue_dir / name).read_text())["body"] == {"comment": None}


class TestReadPending:
    def test_empty_or_missing_directory(self, repo):
        assert repo.read_pending_operations() == []
        assert repo.has_pending_operations() is False

    def test_order_is_file_name_order(self, repo):
        repo.queue_dir.mkdir(parents=True)
        (repo.queue_dir / "1700000000002_bbbbbb.json").write_text('{"type": "housekeeping"}')
        (repo.queue_dir / "1700000000001_aaaaaa.json").write_text('{"type": "processBatch"}')
        pending = repo.read_pending_operations()
        assert [p.file for p in pending] == ["1700000000001_aaaaaa.json", "1700000000002_bbbbbb.json"]
        assert isinstance(pending[0].request, ProcessBatchRequest)

    def test_malformed_file_becomes_invalid(self, repo):
        repo.queue_dir.mkdir(parents=True)
        (repo.queue_dir / "1700000000001_aaaaaa.json").write_text("{not json")
        (repo.queue_dir / "1700000000002_bbbbbb.json").write_text('{"type": "teleport"}')
        pending = repo.read_pending_operations()
        assert [type(p.request) for p in pending] == [InvalidRequest, InvalidRequest]

    def test_temp_and_foreign_files_ignored(self, repo):
        repo.queue_dir.mkdir(parents=True)
        (repo.queue_dir / ".1700000000001_aaaaaa.json.tmp").write_text("{}")
        (repo.queue_dir / "notes.txt").write_text("hi")
        assert repo.read_pending_operations() == []


class TestDeleteAndDeadLetter:
    def test_delete_operation(self, repo):
        name = repo.add_operation(ProcessBatchRequest())
        repo.delete_operation(name)
        assert repo.has_pending_operations() is False

    def test_delete_missing_is_logged_not_raised(self, repo):
        repo.delete_operation("1700000000001_aaaaaa.json")

    def test_move_to_dead_letter_keeps_name(self, repo, tmp_path):
        name = repo.add_operation(ProcessBatchRequest())
        dead = tmp_path / "operation_queue_backup"
        assert repo.move_to_dead_letter(name, dead) is True
        assert (dead / name).exists()
        assert repo.list_files() == []

    def test_move_missing_returns_false(self, repo, tmp_path):
        assert repo.move_to_dead_letter("nope.json", tmp_path / "dead") is False


class TestRequestModels:
    def test_write_type_defaults_to_write(self):
        assert parse_request('{"type": "write", "file": "a.json", "body": {}}').type == "write"

    def test_write_requires_file(self):
        with pytest.raises(ValidationError):
            parse_request('{"type": "write", "file": "", "body": {}}')

    def test_unknown_action_rejected(self):
        with pytest.raises(ValidationError):
            ProjectChangeRequest(action="rename")

    def test_describe(self):
        assert describe(WriteFileRequest(type="projects", file="projects.json", body={})) == "projects - projects.json"
        assert describe(HousekeepingRequest()) == "housekeeping"

    def test_encode_is_indented_json(self):
        assert encode_request(ProcessBatchRequest()) == '{\n  "type": "processBatch"\n}'
