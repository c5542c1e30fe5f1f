"""Tests for the command line interface."""

import json
from pathlib import Path

import pytest
import toml
from typer.testing import CliRunner

from system_map_auditor import __version__
from system_map_auditor.cli import EXIT_FAILED, EXIT_PASSED, EXIT_USAGE, app
from system_map_auditor.config import LOCAL_CONFIG_NAME


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def invoke(runner: CliRunner, sample_project: Path):
    """Run the CLI against the sample project."""
    def _invoke(*args: str, root: Path = None):
        return runner.invoke(app, ["--root", str(root or sample_project), *args])
    return _invoke


def test_version(runner):
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"v{__version__}" in result.stdout


def test_missing_root(runner, temp_dir: Path):
    result = runner.invoke(app, ["--root", str(temp_dir / "nope"), "show-config"])
    assert result.exit_code == EXIT_USAGE


class TestAudit:
    def test_sample_passes(self, invoke):
        result = invoke("audit")
        assert result.exit_code == EXIT_PASSED
        assert "PASSED" in result.stdout

    def test_json_without_timing(self, invoke, sample_map_path: Path):
        result = invoke("audit", str(sample_map_path), "--json", "--no-timing")
        assert result.exit_code == EXIT_PASSED
        data = json.loads(result.stdout)
        assert data["passed"] is True
        assert data["summary"] == {"error": 0, "warning": 1, "info": 1}
        assert "executionTime" not in data["codebase"]["metrics"]

    def test_errors_exit_one(self, invoke, write_system_map):
        write_system_map(".system-maps/ghost.map.json", {
            "name": "ghost",
            "components": [{"name": "Ghost", "path": "src/components/Ghost.tsx"}],
        })
        result = invoke("audit")
        assert result.exit_code == EXIT_FAILED
        assert "FAILED" in result.stdout

    def test_no_maps(self, runner, temp_dir: Path):
        empty = temp_dir / "empty"
        empty.mkdir()
        result = runner.invoke(app, ["--root", str(empty), "audit"])
        assert result.exit_code == EXIT_USAGE


class TestCommands:
    def test_scan_json(self, invoke):
        result = invoke("scan", "--json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert list(data["apis"]) == ["GET /api/memories", "POST /api/memories/manual"]
        assert data["components"]["src/hooks/useCreateMemory.ts"]["type"] == "hook"
        assert data["skipped"] == []

    def test_scan_table(self, invoke):
        result = invoke("scan")
        assert result.exit_code == 0
        assert "regex extractor" in result.stdout

    def test_parse(self, invoke, sample_map_path: Path):
        result = invoke("parse", str(sample_map_path), "--json")
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {
            "name": "memories",
            "shape": "standard",
            "components": ["MemoryCard", "MemoryList"],
            "apis": ["GET /api/memories", "POST /api/memories/manual"],
            "flows": ["create-memory"],
            "features": [],
        }

    def test_parse_malformed(self, invoke, write_system_map):
        path = write_system_map("bad.map.json", {"apis": {}})
        assert invoke("parse", str(path)).exit_code == EXIT_USAGE

    def test_check_single_validator(self, invoke, sample_map_path: Path):
        result = invoke("check", str(sample_map_path), "--only", "components", "--json")
        assert result.exit_code == EXIT_PASSED
        assert json.loads(result.stdout)["metrics"]["checksPerformed"] == 5

    def test_check_unknown_validator(self, invoke, sample_map_path: Path):
        result = invoke("check", str(sample_map_path), "--only", "everything")
        assert result.exit_code == EXIT_USAGE

    def test_feature(self, invoke, sample_map_path: Path):
        result = invoke("feature", str(sample_map_path), "memories", "--json")
        assert result.exit_code == EXIT_PASSED
        data = json.loads(result.stdout)
        assert data["integration"]["overallStatus"] == "partially-integrated"

    def test_unknown_feature(self, invoke, sample_map_path: Path):
        assert invoke("feature", str(sample_map_path), "nope").exit_code == EXIT_USAGE


class TestConfigCommands:
    def test_show_config_toml(self, invoke):
        result = invoke("show-config")
        assert result.exit_code == 0
        assert toml.loads(result.stdout)["cache"]["invalidation_window"] == 20

    def test_show_config_json_with_local_file(self, invoke, sample_project: Path):
        (sample_project / LOCAL_CONFIG_NAME).write_text("[ui_refresh]\nthreshold = 0.5\n", encoding="utf-8")
        result = invoke("show-config", "--json")
        assert json.loads(result.stdout)["ui_refresh"]["threshold"] == 0.5

    def test_invalid_config_file(self, invoke, temp_dir: Path):
        bad = temp_dir / "bad.toml"
        bad.write_text("[apis]\nvalidate_schemas = 'yes'\n", encoding="utf-8")
        result = invoke("--config", str(bad), "show-config")
        assert result.exit_code == EXIT_USAGE

    def test_init_config(self, invoke, sample_project: Path):
        assert invoke("init-config").exit_code == 0
        written = toml.load(sample_project / LOCAL_CONFIG_NAME)
        assert written["dependencies"]["max_depth"] == 10
        assert invoke("init-config").exit_code == EXIT_USAGE
        assert invoke("init-config", "--force").exit_code == 0


class TestDetectCircular:
    def test_clean_project(self, invoke):
        result = invoke("detect-circular")
        assert result.exit_code == EXIT_PASSED
        assert "No circular dependencies" in result.stdout

    def test_cycle_exits_one(self, runner, write_project, temp_dir: Path):
        root = temp_dir / "cyclic"
        write_project({
            "src/a.ts": 'import { b } from "./b";\nexport const a = 1;\n',
            "src/b.ts": 'import { a } from "./a";\nexport const b = 2;\n',
        }, root=root)
        result = runner.invoke(app, ["--root", str(root), "detect-circular", "--json"])
        assert result.exit_code == EXIT_FAILED
        assert json.loads(result.stdout) == {"cycles": [["src/a.ts", "src/b.ts"]]}


class TestCriticalPaths:
    def test_within_default_limit(self, invoke):
        result = invoke("analyze-critical-paths")
        assert result.exit_code == EXIT_PASSED
        assert "Longest import chain has 2 files (limit 10)" in result.stdout

    def test_long_path_exits_one(self, invoke):
        result = invoke("analyze-critical-paths", "--max-length", "1", "--json")
        assert result.exit_code == EXIT_FAILED
        data = json.loads(result.stdout)
        assert data["maxLength"] == 1
        assert len(data["criticalPath"]) == 2
        assert data["longPaths"] == [data["criticalPath"]]


class TestSuggestOptimizations:
    def test_clean_project(self, invoke):
        result = invoke("suggest-optimizations")
        assert result.exit_code == EXIT_PASSED
        assert "No optimizations to suggest" in result.stdout

    def test_cycle_suggestion_json(self, runner, write_project, temp_dir: Path):
        root = temp_dir / "cyclic"
        write_project({
            "src/a.ts": 'import { b } from "./b";\nexport const a = 1;\n',
            "src/b.ts": 'import { a } from "./a";\nexport const b = 2;\n',
        }, root=root)
        result = runner.invoke(app, ["--root", str(root), "suggest-optimizations", "--json"])
        assert result.exit_code == EXIT_PASSED
        suggestions = json.loads(result.stdout)["suggestions"]
        assert [s["type"] for s in suggestions] == ["break-circular"]
        assert suggestions[0]["files"] == ["src/a.ts", "src/b.ts"]
