"""Tests for the CLI interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from ctxpack.cli import main


@pytest.fixture
def runner():
    return CliRunner()


class TestCLIInit:
    def test_init_basic(self, runner: CliRunner, tmp_path: Path, workspace_file: Path):
        result = runner.invoke(main, ["init", "--path", str(tmp_path)])
        assert result.exit_code == 0
        assert "Initializing" in result.output
        assert (tmp_path / ".ctxpack" / "config.json").exists()

    def test_init_custom_workspace_warns_when_missing(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(main, ["init", "--path", str(tmp_path), "--workspace", "other.json"])
        assert result.exit_code == 0
        assert "not found" in result.output
        saved = json.loads((tmp_path / ".ctxpack" / "config.json").read_text())
        assert saved["workspace_file"] == "other.json"

    def test_init_nonexistent_path(self, runner: CliRunner):
        result = runner.invoke(main, ["init", "--path", "/nonexistent/path"])
        assert result.exit_code != 0


class TestCLIContext:
    def test_context_json(self, runner: CliRunner, ctx_project: Path):
        result = runner.invoke(main, ["context", "PROJ-1", "--path", str(ctx_project), "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["source_item_id"] == "PROJ-1"
        assert {r["item"]["item_id"] for r in data["records"]} == {"PROJ-2", "PROJ-4"}
        assert data["summary"]["filtered_out"] == 1

    def test_context_table(self, runner: CliRunner, ctx_project: Path):
        result = runner.invoke(main, ["context", "PROJ-1", "--path", str(ctx_project)])
        assert result.exit_code == 0
        assert "PROJ-2" in result.output
        assert "Context Summary" in result.output

    def test_context_depth_one(self, runner: CliRunner, ctx_project: Path):
        result = runner.invoke(
            main, ["context", "PROJ-1", "--path", str(ctx_project), "--depth", "1", "--max-age", "120", "--json"]
        )
        data = json.loads(result.output)
        assert data["metadata"]["max_depth_reached"] == 1

    def test_context_unknown_item(self, runner: CliRunner, ctx_project: Path):
        result = runner.invoke(main, ["context", "NOPE-1", "--path", str(ctx_project)])
        assert result.exit_code == 0
        assert "not found" in result.output

    def test_context_missing_workspace(self, runner: CliRunner, tmp_path: Path):
        (tmp_path / ".ctxpack").mkdir()
        result = runner.invoke(main, ["context", "PROJ-1", "--path", str(tmp_path)])
        assert result.exit_code != 0
        assert "not found" in result.output


class TestCLIPackage:
    def test_package_json(self, runner: CliRunner, ctx_project: Path):
        result = runner.invoke(
            main, ["package", "PROJ-1", "--path", str(ctx_project), "--budget", "0", "--json"]
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["primary"]["item_id"] == "PROJ-1"
        assert data["relationship_summary"]["subtasks"] == 1
        assert len(data["context_images"]) == 1
        assert "trim" not in data

    def test_package_with_budget(self, runner: CliRunner, ctx_project: Path):
        result = runner.invoke(
            main, ["package", "PROJ-1", "--path", str(ctx_project), "--budget", "150", "--json"]
        )
        data = json.loads(result.output)
        assert data["trim"]["budget"] == 150
        assert data["context_images"] == []

    def test_package_unknown_item(self, runner: CliRunner, ctx_project: Path):
        result = runner.invoke(main, ["package", "NOPE-1", "--path", str(ctx_project)])
        assert result.exit_code != 0


class TestCLITrim:
    def _saved_package(self, runner: CliRunner, ctx_project: Path) -> Path:
        result = runner.invoke(
            main, ["package", "PROJ-1", "--path", str(ctx_project), "--budget", "0", "--json"]
        )
        path = ctx_project / "package.json"
        path.write_text(result.output)
        return path

    def test_trim_to_stdout(self, runner: CliRunner, ctx_project: Path):
        path = self._saved_package(runner, ctx_project)
        result = runner.invoke(main, ["trim", str(path), "--budget", "100"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["trim"]["budget"] == 100

    def test_trim_to_file(self, runner: CliRunner, ctx_project: Path):
        path = self._saved_package(runner, ctx_project)
        out = ctx_project / "trimmed.json"
        result = runner.invoke(main, ["trim", str(path), "--budget", "100", "--output", str(out)])
        assert result.exit_code == 0
        assert "Trimming" in result.output
        assert json.loads(out.read_text())["trim"]["budget"] == 100

    def test_trim_within_budget(self, runner: CliRunner, ctx_project: Path):
        path = self._saved_package(runner, ctx_project)
        out = ctx_project / "same.json"
        result = runner.invoke(main, ["trim", str(path), "--budget", "100000", "--output", str(out)])
        assert result.exit_code == 0
        assert "Already within budget" in result.output

    def test_trim_invalid_file(self, runner: CliRunner, tmp_path: Path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"related": []}))
        result = runner.invoke(main, ["trim", str(path), "--budget", "100"])
        assert result.exit_code != 0


class TestCLIConfig:
    def test_config_show(self, runner: CliRunner, ctx_project: Path):
        result = runner.invoke(main, ["config", "show", "--path", str(ctx_project)])
        assert result.exit_code == 0
        assert "max_related" in result.output

    def test_config_set_and_get(self, runner: CliRunner, ctx_project: Path):
        result = runner.invoke(main, ["config", "set", "context.max_related", "5", "--path", str(ctx_project)])
        assert result.exit_code == 0
        result = runner.invoke(main, ["config", "get", "context.max_related", "--path", str(ctx_project)])
        assert "context.max_related = 5" in result.output

    def test_config_unknown_key(self, runner: CliRunner, ctx_project: Path):
        result = runner.invoke(main, ["config", "get", "nope.key", "--path", str(ctx_project)])
        assert result.exit_code != 0

    def test_config_invalid_value(self, runner: CliRunner, ctx_project: Path):
        result = runner.invoke(
            main, ["config", "set", "trim.max_units", "lots", "--path", str(ctx_project)]
        )
        assert result.exit_code != 0


class TestCLIVersion:
    def test_version(self, runner: CliRunner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output
