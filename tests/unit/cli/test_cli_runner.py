"""Tests for the CLI runner."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from qlserver.cli import main
from qlserver.cli.exit_codes import (
    EXIT_ENGINE_ERROR,
    EXIT_INCOMPATIBLE_VERSION,
    EXIT_INVALID_USAGE,
    EXIT_SUCCESS,
)
from qlserver.cli.runner import CLIRunner, get_version

FAKE_ENGINE = Path(__file__).parents[2] / "fixtures" / "fake_engine.py"


@pytest.fixture
def project(tmp_path: Path, monkeypatch) -> Path:
    """A project directory whose config launches the fake engine."""
    monkeypatch.setenv("QLSERVER_HOME", str(tmp_path / "home"))
    (tmp_path / ".qlserver.yml").write_text(
        "engine:\n"
        f"  path: {json.dumps(sys.executable)}\n"
        f"  server_args: [{json.dumps(str(FAKE_ENGINE))}]\n"
        "  timeout: 30\n"
        "  shutdown_grace: 2\n"
    )
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestGetVersion:
    """Tests for get_version function."""

    def test_get_version_from_metadata(self) -> None:
        """Test version retrieval from package metadata."""
        with patch("qlserver.cli.runner.version", return_value="1.2.3"):
            assert get_version() == "1.2.3"

    def test_get_version_fallback(self) -> None:
        """Test fallback to __version__ when metadata is missing."""
        from importlib.metadata import PackageNotFoundError

        with patch("qlserver.cli.runner.version", side_effect=PackageNotFoundError("qlserver")):
            from qlserver import __version__

            assert get_version() == __version__


class TestCLIRunner:
    """Tests for CLIRunner class."""

    def test_no_command_shows_help(self, capsys) -> None:
        """Test that running without a command prints help."""
        assert CLIRunner().run([]) == EXIT_SUCCESS
        assert "usage:" in capsys.readouterr().out.lower()

    def test_version_flag(self, capsys) -> None:
        """Test that --version prints the qlserver version."""
        assert CLIRunner().run(["--version"]) == EXIT_SUCCESS
        assert capsys.readouterr().out.strip()

    def test_ram(self, capsys) -> None:
        """Test that ram prints the heap flags as JSON."""
        assert main(["ram", "8192"]) == EXIT_SUCCESS
        assert json.loads(capsys.readouterr().out) == ["-J-Xmx4096M", "--off-heap-ram=4096"]

    def test_ram_invalid(self, capsys) -> None:
        """Test that an invalid budget is a usage error."""
        assert main(["ram", "0"]) == EXIT_INVALID_USAGE
        assert "positive" in capsys.readouterr().err

    def test_engine_version(self, project: Path, capsys) -> None:
        """Test printing the engine version."""
        assert main(["version"]) == EXIT_SUCCESS
        assert capsys.readouterr().out.strip() == "2.4.0"

    def test_engine_version_require_ok(self, project: Path, capsys) -> None:
        """Test version --require with a satisfied range."""
        assert main(["version", "--require", ">=2.0.0 <3"]) == EXIT_SUCCESS

    def test_engine_version_require_fails(self, project: Path, capsys) -> None:
        """Test version --require with an unsatisfied range."""
        assert main(["version", "--require", ">=3.0.0"]) == EXIT_INCOMPATIBLE_VERSION
        assert "does not satisfy" in capsys.readouterr().err

    def test_languages(self, project: Path, capsys) -> None:
        """Test printing the supported languages."""
        assert main(["languages"]) == EXIT_SUCCESS
        languages = json.loads(capsys.readouterr().out)
        assert {"cpp", "go", "javascript"} <= set(languages)

    def test_qlpacks_with_folders(self, project: Path, workspace: Path, capsys) -> None:
        """Test resolving packs from given folders."""
        assert main(["qlpacks", str(workspace)]) == EXIT_SUCCESS
        qlpacks = json.loads(capsys.readouterr().out)
        assert qlpacks["codeql-python"] == [str(workspace.resolve() / "python")]

    def test_query_languages(self, project: Path, workspace: Path, queries_dir: Path, capsys) -> None:
        """Test printing a query's languages."""
        query = queries_dir / "simple-javascript-query.ql"
        assert main(["query-languages", str(query), str(workspace)]) == EXIT_SUCCESS
        info = json.loads(capsys.readouterr().out)
        assert list(info["by_language"]) == ["javascript"]

    def test_library_path(self, project: Path, queries_dir: Path, capsys) -> None:
        """Test printing a query's library path."""
        query = queries_dir / "simple-cpp-query.ql"
        assert main(["library-path", str(query)]) == EXIT_SUCCESS
        setup = json.loads(capsys.readouterr().out)
        assert setup["relative_name"] == "simple-cpp-query.ql"

    def test_database(self, project: Path, capsys) -> None:
        """Test printing database metadata."""
        assert main(["database", str(project / "db")]) == EXIT_SUCCESS
        info = json.loads(capsys.readouterr().out)
        assert info["languages"] == ["javascript"]

    def test_configured_required_version_enforced(self, project: Path, capsys) -> None:
        """Test that a configured version range gates other commands."""
        with open(project / ".qlserver.yml", "a", encoding="utf-8") as f:
            f.write("required_version: '>=5.0.0'\n")
        assert main(["languages"]) == EXIT_INCOMPATIBLE_VERSION

    def test_missing_engine(self, tmp_path: Path, monkeypatch, capsys) -> None:
        """Test that a missing engine is an engine error."""
        monkeypatch.setenv("QLSERVER_HOME", str(tmp_path / "home"))
        monkeypatch.chdir(tmp_path)
        assert main(["--engine", str(tmp_path / "codeql"), "languages"]) == EXIT_ENGINE_ERROR
        assert "missing" in capsys.readouterr().err

    def test_invalid_config(self, tmp_path: Path, monkeypatch, capsys) -> None:
        """Test that an invalid config file is a usage error."""
        monkeypatch.setenv("QLSERVER_HOME", str(tmp_path / "home"))
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".qlserver.yml").write_text("engine:\n  ram: lots\n")
        assert main(["languages"]) == EXIT_INVALID_USAGE

    def test_invalid_ram_override(self, project: Path, capsys) -> None:
        """Test that --ram 0 is a usage error."""
        assert main(["--ram", "0", "languages"]) == EXIT_INVALID_USAGE

    def test_status(self, project: Path, capsys) -> None:
        """Test that status prints the engine version, channel state and config sources."""
        assert main(["status"]) == EXIT_SUCCESS

        status = json.loads(capsys.readouterr().out)
        assert status["engine_version"] == "2.4.0"
        assert status["channel"]["state"] == "running"
        assert status["channel"]["restarts"] == 0
        assert len(status["config_sources"]) == 1
        assert status["config_sources"][0].startswith("project:")
        assert status["config_sources"][0].endswith(".qlserver.yml")

    def test_status_skips_configured_version_check(self, project: Path, capsys) -> None:
        """Test that status still reports an engine outside the required range."""
        with open(project / ".qlserver.yml", "a", encoding="utf-8") as f:
            f.write("required_version: '>=5.0.0'\n")

        assert main(["status"]) == EXIT_SUCCESS
        assert json.loads(capsys.readouterr().out)["engine_version"] == "2.4.0"
