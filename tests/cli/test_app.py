"""CLI tests using typer's CliRunner."""

from __future__ import annotations

import json
from datetime import date, datetime, time

import pytest
from typer.testing import CliRunner

from smarttime import __version__
from smarttime.cli.app import app
from smarttime.storage.layout import StorageManager
from smarttime.storage.operations import ProjectChangeRequest, WriteFileRequest

runner = CliRunner()


@pytest.fixture
def invoke(config):
    def _invoke(*args: str):
        return runner.invoke(app, ["--root", str(config.root), *args])

    return _invoke


def _pending(config):
    return StorageManager(config).operations.read_pending_operations()


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


@pytest.mark.git
def test_init_creates_layout(invoke, config):
    result = invoke("init")
    assert result.exit_code == 0, result.output
    assert config.queue.is_dir()
    assert (config.data / ".git" / "HEAD").is_file()
    assert (config.backup / "HEAD").is_file()


@pytest.mark.git
def test_init_save_writes_config(config, tmp_path):
    config_path = tmp_path / "config.toml"
    result = runner.invoke(app, ["--config", str(config_path), "--root", str(config.root), "init", "--save"])
    assert result.exit_code == 0, result.output
    assert str(config.root) in config_path.read_text()


class TestProducers:
    def test_record_appends_queue_entry(self, invoke, config):
        result = invoke("record", "/work", "src/a.py", "--branch", "main", "--timestamp", "1771150000000")
        assert result.exit_code == 0, result.output
        files = list(config.queue.glob("*.json"))
        assert len(files) == 1
        assert json.loads(files[0].read_text())["gitBranch"] == "main"

    def test_write_with_inline_body(self, invoke, config):
        result = invoke("write", "reports/2026/02/15.json", "--type", "timereport", "--body", '{"date": "2026-02-15"}')
        assert result.exit_code == 0, result.output
        assert [p.request for p in _pending(config)] == [
            WriteFileRequest(type="timereport", file="reports/2026/02/15.json", body={"date": "2026-02-15"})
        ]

    def test_write_from_body_file(self, invoke, config, tmp_path):
        body_file = tmp_path / "body.json"
        body_file.write_text('{"main": {}}')
        result = invoke("write", "projects.json", "--type", "projects", "--body-file", str(body_file))
        assert result.exit_code == 0, result.output
        assert _pending(config)[0].request.body == {"main": {}}

    @pytest.mark.parametrize(
        "args",
        [
            ("x.json",),
            ("x.json", "--body", "[1, 2]"),
            ("x.json", "--body", "{broken"),
            ("x.json", "--body", "{}", "--type", "nonsense"),
        ],
    )
    def test_write_rejects_bad_input(self, invoke, config, args):
        result = invoke("write", *args)
        assert result.exit_code == 1
        assert _pending(config) == []

    def test_project_change(self, invoke, config):
        result = invoke("project", "add", "--branch", "main", "--directory", "/p", "--project", "Alpha")
        assert result.exit_code == 0, result.output
        assert [p.request for p in _pending(config)] == [
            ProjectChangeRequest(action="add", branch="main", directory="/p", project="Alpha")
        ]

    def test_project_change_rejects_unknown_action(self, invoke, config):
        assert invoke("project", "rename").exit_code == 1
        assert _pending(config) == []


@pytest.mark.git
class TestPipelineCommands:
    def test_process_with_batch(self, invoke, config):
        invoke("record", "/work", "a.py", "--branch", "main")
        result = invoke("process", "--batch")
        assert result.exit_code == 0, result.output
        assert "Processed 1" in result.stdout
        assert not list(config.queue.glob("*.json"))
        assert StorageManager(config).batches.pending_files()

    def test_collect_with_nothing_pending(self, invoke):
        invoke("init")
        result = invoke("collect")
        assert result.exit_code == 0, result.output
        assert "No batch files" in result.stdout

    def test_collect_old_batch(self, invoke, config):
        invoke("init")
        batches = config.data / "batches"
        (batches / "batch_1700000000000_aaaaaa.json").write_text(json.dumps({"main": {"/p": []}}))
        result = invoke("collect")
        assert result.exit_code == 0, result.output
        assert "Collected 1" in result.stdout
        assert (batches / "2023" / "11" / "14.json").exists()

    def test_status(self, invoke):
        invoke("init")
        result = invoke("status")
        assert result.exit_code == 0, result.output
        assert "Operation requests pending" in result.stdout
        assert "healthy" in result.stdout


class TestReport:
    def test_report_json(self, invoke, config):
        day = date(2026, 2, 15)
        ts = int(datetime.combine(day, time(9, 10)).astimezone().timestamp() * 1000)
        batches = config.data / "batches"
        batches.mkdir(parents=True)
        (batches / f"batch_{ts}_aaaaaa.json").write_text(
            json.dumps({"main": {"/p": [{"File": "a.py", "Timestamp": ts}]}})
        )

        result = invoke("report", "--date", "2026-02-15", "--json")

        assert result.exit_code == 0, result.output
        report = json.loads(result.stdout)
        assert report["date"] == "2026-02-15"
        assert [(e["key"], e["files"]) for e in report["entries"]] == [("09:00", ["a.py"])]

    def test_report_empty_day(self, invoke):
        result = invoke("report", "--date", "2026-02-15")
        assert result.exit_code == 0
        assert "No activity" in result.stdout

    def test_report_bad_date(self, invoke):
        assert invoke("report", "--date", "15/02/2026").exit_code == 1
