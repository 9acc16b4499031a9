"""Integration tests for CLI commands.

This module tests the Typer-based CLI interface: database preparation
and the token sub-commands, each run against a throwaway SQLite file.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from headless_pm.main import app


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a configuration file pointing the database at tmp_path."""
    path = tmp_path / "headless_pm.json"
    path.write_text(
        json.dumps(
            {
                "database": {"data_dir": str(tmp_path / "data")},
                "embedding": {"enabled": False},
                "logging": {"level": "WARNING"},
            }
        )
    )
    return path


class TestInitDb:
    def test_creates_database_file(self, cli_runner: CliRunner, config_file: Path, tmp_path: Path) -> None:
        result = cli_runner.invoke(app, ["--config", str(config_file), "init-db"])

        assert result.exit_code == 0
        assert "Database ready" in result.stdout
        assert (tmp_path / "data" / "db" / "projects.db").exists()

    def test_invalid_config(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        broken = tmp_path / "broken.json"
        broken.write_text(json.dumps({"server": {"port": "not-a-port"}}))

        result = cli_runner.invoke(app, ["--config", str(broken), "init-db"])

        assert result.exit_code == 1
        assert "Error loading configuration" in result.stdout


class TestTokenCLI:
    """token create / list / revoke."""

    def test_create_list_revoke(self, cli_runner: CliRunner, config_file: Path) -> None:
        created = cli_runner.invoke(
            app, ["--config", str(config_file), "token", "create", "ci", "--scopes", "read"]
        )
        assert created.exit_code == 0
        assert "Token created (shown once)" in created.stdout

        listed = cli_runner.invoke(app, ["--config", str(config_file), "token", "list"])
        assert listed.exit_code == 0
        assert "ci" in listed.stdout

        revoked = cli_runner.invoke(app, ["--config", str(config_file), "token", "revoke", "1"])
        assert revoked.exit_code == 0
        assert "Token 1 revoked" in revoked.stdout

    def test_list_empty(self, cli_runner: CliRunner, config_file: Path) -> None:
        cli_runner.invoke(app, ["--config", str(config_file), "init-db"])

        result = cli_runner.invoke(app, ["--config", str(config_file), "token", "list"])

        assert result.exit_code == 0
        assert "No tokens found" in result.stdout

    def test_revoke_missing(self, cli_runner: CliRunner, config_file: Path) -> None:
        cli_runner.invoke(app, ["--config", str(config_file), "init-db"])

        result = cli_runner.invoke(app, ["--config", str(config_file), "token", "revoke", "42"])

        assert result.exit_code == 1
        assert "Error" in result.stdout
