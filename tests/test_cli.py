"""Tests for the CLI interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from ctxgraph.cli import main


@pytest.fixture
def runner():
    return CliRunner()


class TestCLIContext:
    def test_markdown(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(main, ["context", "Product Launch", "--db", str(index_db)])
        assert result.exit_code == 0, result.output
        assert "# Context: Product Launch" in result.stdout
        assert "## Product Launch [project]" in result.stdout

    def test_json(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(
            main, ["context", "proj0001", "--db", str(index_db), "--format", "json"]
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["meta"]["query"] == "Product Launch"
        assert data["meta"]["backend"] == "sqlite"
        assert data["nodes"][0]["id"] == "proj0001"
        assert "diagnostics" not in data

    def test_project_workspace(self, runner: CliRunner, tmp_project: Path):
        result = runner.invoke(main, ["context", "launch", "--path", str(tmp_project)])
        assert result.exit_code == 0, result.output
        assert "# Context: launch" in result.stdout

    def test_no_include_fields(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(
            main,
            ["context", "proj0001", "--db", str(index_db), "--format", "json",
             "--no-include-fields"],
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert all(node["fields"] is None for node in data["nodes"])

    def test_in_memory(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(
            main,
            ["context", "proj0001", "--db", str(index_db), "--format", "json", "--in-memory"],
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["meta"]["backend"] == "memory"

    def test_lens(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(
            main,
            ["context", "proj0001", "--db", str(index_db), "--format", "json",
             "--lens", "planning"],
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["meta"]["lens"] == "planning"
        assert data["nodes"][0]["fields"] == {"status": "active"}

    def test_no_matches(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(
            main, ["context", "zzz nothing", "--db", str(index_db), "--format", "json"]
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["nodes"] == []
        assert data["meta"]["tokens"]["used"] == 0
        assert "No matching nodes found" in result.stderr

    def test_no_matches_markdown(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(main, ["context", "zzz nothing", "--db", str(index_db)])
        assert result.exit_code == 0
        assert result.stdout.startswith("# Context: zzz nothing")

    def test_smallest_budget_stays_within_limit(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(
            main,
            ["context", "Product Launch", "--db", str(index_db), "--format", "json",
             "--max-tokens", "250"],
        )
        assert result.exit_code == 0, result.output
        tokens = json.loads(result.stdout)["meta"]["tokens"]
        assert tokens["used"] <= tokens["budget"] == 250

    @pytest.mark.parametrize(
        "args",
        [
            ["--depth", "0"],
            ["--depth", "6"],
            ["--max-tokens", "99"],
            ["--max-tokens", "249"],
            ["--lens", "bogus"],
            ["--format", "xml"],
        ],
    )
    def test_invalid_arguments(self, runner: CliRunner, index_db: Path, args):
        result = runner.invoke(main, ["context", "launch", "--db", str(index_db), *args])
        assert result.exit_code == 1

    def test_missing_database(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(main, ["context", "launch", "--db", str(tmp_path / "none.db")])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_no_project(self, runner: CliRunner):
        with runner.isolated_filesystem():
            result = runner.invoke(main, ["context", "launch"])
        assert result.exit_code == 1
        assert "No ctxgraph project found" in result.output

    def test_debug_shows_diagnostics(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(main, ["--debug", "context", "proj0001", "--db", str(index_db)])
        assert result.exit_code == 0, result.output
        assert "No skipped operations" in result.output

    def test_debug_from_env(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(
            main,
            ["context", "proj0001", "--db", str(index_db)],
            env={"CTXGRAPH_DEBUG": "1"},
        )
        assert result.exit_code == 0, result.output
        assert "No skipped operations" in result.output


class TestCLIRelated:
    def test_related(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(main, ["related", "proj0001", "--db", str(index_db)])
        assert result.exit_code == 0, result.output
        assert "Product Launch" in result.output
        assert "Launch Checklist" in result.output
        assert "Kickoff Meeting" in result.output

    def test_type_filter(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(
            main, ["related", "proj0001", "--db", str(index_db), "--type", "field"]
        )
        assert result.exit_code == 0, result.output
        assert "budg0001" in result.output
        assert "Kickoff Meeting" not in result.output

    def test_depth(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(
            main, ["related", "proj0001", "--db", str(index_db), "--depth", "2"]
        )
        assert result.exit_code == 0, result.output
        assert "Dana" in result.output

    def test_missing_node(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(main, ["related", "missing1", "--db", str(index_db)])
        assert result.exit_code == 1
        assert "Node not found" in result.output


class TestCLISearch:
    def test_search(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(main, ["search", "launch", "--db", str(index_db)])
        assert result.exit_code == 0, result.output
        assert "Launch Checklist" in result.output
        assert "Product Launch" in result.output

    def test_search_limit(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(main, ["search", "launch", "--db", str(index_db), "-n", "1"])
        assert result.exit_code == 0
        assert "budg0001" in result.output
        assert "Product Launch" not in result.output

    def test_search_no_results(self, runner: CliRunner, index_db: Path):
        result = runner.invoke(main, ["search", "zzzzz", "--db", str(index_db)])
        assert result.exit_code == 0
        assert "No matching nodes found" in result.output


class TestCLIStats:
    def test_stats(self, runner: CliRunner, tmp_project: Path):
        result = runner.invoke(main, ["stats", "--path", str(tmp_project)])
        assert result.exit_code == 0, result.output
        assert "Nodes" in result.output
        assert "child edges" in result.output

    def test_stats_no_index(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(main, ["stats", "--path", str(tmp_path)])
        assert result.exit_code == 1


class TestCLIInit:
    def test_init(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(
            main, ["init", "--path", str(tmp_path), "--db", str(tmp_path / "notes.db")]
        )
        assert result.exit_code == 0, result.output
        config = json.loads((tmp_path / ".ctxgraph" / "config.json").read_text())
        assert config["workspaces"]["default"]["db_path"] == str(tmp_path / "notes.db")

    def test_init_second_workspace(self, runner: CliRunner, tmp_path: Path):
        runner.invoke(main, ["init", "--path", str(tmp_path)])
        result = runner.invoke(
            main, ["init", "--path", str(tmp_path), "-w", "work", "--db", "/data/work.db"]
        )
        assert result.exit_code == 0, result.output
        config = json.loads((tmp_path / ".ctxgraph" / "config.json").read_text())
        assert set(config["workspaces"]) == {"default", "work"}
        assert config["default_workspace"] == "default"

    def test_init_nonexistent_path(self, runner: CliRunner):
        result = runner.invoke(main, ["init", "--path", "/nonexistent/path"])
        assert result.exit_code != 0


class TestCLIConfig:
    def test_config_show(self, runner: CliRunner, tmp_project: Path):
        result = runner.invoke(main, ["config", "show", "--path", str(tmp_project)])
        assert result.exit_code == 0
        assert "default_workspace" in result.output

    def test_config_set_and_get(self, runner: CliRunner, tmp_project: Path):
        result = runner.invoke(
            main, ["config", "set", "context.depth", "3", "--path", str(tmp_project)]
        )
        assert result.exit_code == 0, result.output
        result = runner.invoke(
            main, ["config", "get", "context.depth", "--path", str(tmp_project)]
        )
        assert result.exit_code == 0
        assert "context.depth = 3" in result.output

    def test_config_get_unknown(self, runner: CliRunner, tmp_project: Path):
        result = runner.invoke(main, ["config", "get", "nope.key", "--path", str(tmp_project)])
        assert result.exit_code == 1

    def test_config_set_invalid_value(self, runner: CliRunner, tmp_project: Path):
        result = runner.invoke(
            main, ["config", "set", "context.depth", "deep", "--path", str(tmp_project)]
        )
        assert result.exit_code == 1

    def test_unknown_workspace(self, runner: CliRunner, tmp_project: Path):
        result = runner.invoke(
            main, ["context", "launch", "--path", str(tmp_project), "-w", "nope"]
        )
        assert result.exit_code == 1
        assert "Unknown workspace" in result.output


class TestCLIServe:
    def test_generate_claude_config(self, runner: CliRunner, tmp_project: Path):
        result = runner.invoke(
            main, ["serve", "--path", str(tmp_project), "--generate-config", "claude"]
        )
        assert result.exit_code == 0, result.output
        config = json.loads(result.stdout)
        assert config["ctxgraph"]["cwd"] == str(tmp_project.resolve())

    def test_generate_cursor_config(self, runner: CliRunner, tmp_project: Path):
        result = runner.invoke(
            main, ["serve", "--path", str(tmp_project), "--generate-config", "cursor"]
        )
        assert result.exit_code == 0, result.output
        assert "ctxgraph" in json.loads(result.stdout)["mcpServers"]

    def test_no_project(self, runner: CliRunner):
        with runner.isolated_filesystem():
            result = runner.invoke(main, ["serve"])
        assert result.exit_code == 1
        assert "No ctxgraph project found" in result.output


class TestCLIVersion:
    def test_version(self, runner: CliRunner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output
