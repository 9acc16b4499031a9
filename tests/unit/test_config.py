"""Unit tests for configuration management.

Tests cover:
- Default configuration values
- JSON and TOML file loading
- Environment variable overrides (env wins over file values)
- Validation errors for invalid configurations
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from headless_pm.config import (
    DatabaseConfig,
    EmbeddingConfig,
    HeadlessPMConfig,
    LoggingConfig,
    ServerConfig,
    StorageConfig,
    load_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove configuration variables that would leak in from the host."""
    import os

    for key in list(os.environ):
        if key.startswith("HEADLESS_PM_") or key == "ADMIN_API_TOKEN":
            monkeypatch.delenv(key, raising=False)


class TestServerConfig:
    """Test ServerConfig defaults and validation."""

    def test_default_values(self) -> None:
        config = ServerConfig()
        assert config.host == "localhost"
        assert config.port == 8080
        assert config.cors_origins == ["*"]

    def test_port_validation(self) -> None:
        with pytest.raises(ValidationError):
            ServerConfig(port=0)
        with pytest.raises(ValidationError):
            ServerConfig(port=70000)


class TestDatabaseConfig:
    """Test DatabaseConfig paths."""

    def test_database_path_under_data_dir(self, tmp_path: Path) -> None:
        config = DatabaseConfig(data_dir=tmp_path)
        assert config.database_path == tmp_path / "db" / "projects.db"
        assert config.database_url == f"sqlite+aiosqlite:///{tmp_path / 'db' / 'projects.db'}"

    def test_explicit_url_wins(self) -> None:
        config = DatabaseConfig(url="sqlite+aiosqlite:///:memory:")
        assert config.database_url == "sqlite+aiosqlite:///:memory:"

    def test_default_delete_depth(self) -> None:
        assert DatabaseConfig().max_delete_depth == 64


class TestEmbeddingConfig:
    """Test EmbeddingConfig defaults and validation."""

    def test_default_values(self) -> None:
        config = EmbeddingConfig()
        assert config.provider == "local"
        assert config.enabled is True
        assert config.queue_capacity == 1024
        assert config.debounce_ms == 250
        assert config.timeout_seconds == 30

    def test_provider_case_insensitive(self) -> None:
        assert EmbeddingConfig(provider="Azure_OpenAI").provider == "azure_openai"

    def test_invalid_provider(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            EmbeddingConfig(provider="ollama")
        assert "Invalid embedding provider" in str(exc_info.value)


class TestLoggingConfig:
    """Test LoggingConfig validation."""

    def test_level_uppercased(self) -> None:
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_invalid_level(self) -> None:
        with pytest.raises(ValidationError):
            LoggingConfig(level="LOUD")

    def test_invalid_format(self) -> None:
        with pytest.raises(ValidationError):
            LoggingConfig(format="xml")


class TestHeadlessPMConfig:
    """Test root configuration and environment precedence."""

    def test_defaults(self) -> None:
        config = HeadlessPMConfig()
        assert config.admin_api_token is None
        assert config.mcp.enabled is True
        assert isinstance(config.storage, StorageConfig)

    def test_nested_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HEADLESS_PM_SERVER__PORT", "9090")
        config = HeadlessPMConfig()
        assert config.server.port == 9090

    def test_bare_admin_token_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ADMIN_API_TOKEN", "secret")
        assert HeadlessPMConfig().admin_api_token == "secret"

    def test_extra_fields_forbidden(self) -> None:
        with pytest.raises(ValidationError):
            HeadlessPMConfig(unknown_section={})


class TestLoadConfig:
    """Test load_config file handling."""

    def test_load_json(self, tmp_path: Path) -> None:
        path = tmp_path / "headless_pm.json"
        path.write_text(
            json.dumps(
                {
                    "server": {"port": 8181},
                    "database": {"data_dir": str(tmp_path / "data")},
                    "admin_api_token": "from-file",
                }
            )
        )
        config = load_config(path)
        assert config.server.port == 8181
        assert config.database.data_dir == tmp_path / "data"
        assert config.admin_api_token == "from-file"

    def test_load_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "headless_pm.toml"
        path.write_text('[embedding]\nprovider = "openai"\napi_key = "sk-test"\n')
        config = load_config(path)
        assert config.embedding.provider == "openai"
        assert config.embedding.api_key == "sk-test"

    def test_env_wins_over_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "headless_pm.json"
        path.write_text(json.dumps({"admin_api_token": "from-file"}))
        monkeypatch.setenv("ADMIN_API_TOKEN", "from-env")
        assert load_config(path).admin_api_token == "from-env"

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.json")

    def test_invalid_file(self, tmp_path: Path) -> None:
        path = tmp_path / "headless_pm.json"
        path.write_text(json.dumps({"server": {"port": "not-a-port"}}))
        with pytest.raises(ValueError, match="Invalid configuration"):
            load_config(path)

    def test_defaults_without_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        config = load_config()
        assert config.server.port == 8080
