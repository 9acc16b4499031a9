"""Configuration management for Headless PM.

This module defines the configuration schema using Pydantic settings,
supporting JSON or TOML files, environment variables, and programmatic
overrides.

Configuration loading priority (highest to lowest):
1. Environment variables (HEADLESS_PM_* prefix, plus bare ADMIN_API_TOKEN)
2. Values from the configuration file / constructor keyword arguments
3. Default values defined in this module

Example JSON configuration:
    {
        "server": {"host": "0.0.0.0", "port": 8080},
        "database": {"data_dir": "/var/lib/headless-pm"},
        "embedding": {"provider": "azure_openai", "endpoint": "https://x.openai.azure.com"}
    }

Example environment variable override:
    HEADLESS_PM_SERVER__PORT=9090
    HEADLESS_PM_EMBEDDING__PROVIDER=openai
    ADMIN_API_TOKEN=change-me
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import tomli
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


class ServerConfig(BaseSettings):
    """HTTP server configuration.

    Attributes:
        host: Bind host address
        port: Bind port number
        cors_origins: Allowed CORS origins
    """

    model_config = SettingsConfigDict(
        env_prefix="HEADLESS_PM_SERVER__",
        extra="forbid",
    )

    host: str = Field(default="localhost")
    port: int = Field(default=8080, ge=1, le=65535)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class DatabaseConfig(BaseSettings):
    """Embedded database configuration.

    Attributes:
        data_dir: Directory holding the ``db/projects.db`` file
        url: Optional explicit SQLAlchemy URL (overrides data_dir)
        echo: Enable SQL query logging
        max_delete_depth: Maximum subtask nesting followed by recursive deletes
    """

    model_config = SettingsConfigDict(
        env_prefix="HEADLESS_PM_DATABASE__",
        extra="forbid",
    )

    data_dir: Path = Field(default=Path("./data"))
    url: str | None = Field(default=None)
    echo: bool = Field(default=False)
    max_delete_depth: int = Field(default=64, ge=1, le=1024)

    @property
    def database_path(self) -> Path:
        """Path of the SQLite database file."""
        return self.data_dir / "db" / "projects.db"

    @property
    def database_url(self) -> str:
        """SQLAlchemy async URL for the configured database."""
        if self.url:
            return self.url
        return f"sqlite+aiosqlite:///{self.database_path}"


class StorageConfig(BaseSettings):
    """Attachment storage configuration.

    Attributes:
        upload_dir: Root directory for attachment blobs
        max_upload_mb: Largest accepted attachment in megabytes
    """

    model_config = SettingsConfigDict(
        env_prefix="HEADLESS_PM_STORAGE__",
        extra="forbid",
    )

    upload_dir: Path = Field(default=Path("./data/uploads"))
    max_upload_mb: int = Field(default=32, ge=1, le=1024)


class EmbeddingConfig(BaseSettings):
    """Embedding provider and worker configuration.

    Attributes:
        enabled: Start the background embedding worker
        provider: Provider name (local, openai, azure_openai)
        endpoint: Azure OpenAI resource endpoint
        api_key: API key for the remote provider
        deployment_name: Azure OpenAI embedding deployment
        model: OpenAI embedding model name
        dimension: Vector dimension produced by the provider
        workers: Accepted for compatibility; a single consumer is always used
        queue_capacity: Bounded job queue size (oldest jobs dropped on overflow)
        debounce_ms: Window during which repeated jobs coalesce
        timeout_seconds: Provider request timeout
    """

    model_config = SettingsConfigDict(
        env_prefix="HEADLESS_PM_EMBEDDING__",
        extra="forbid",
    )

    enabled: bool = Field(default=True)
    provider: str = Field(default="local")
    endpoint: str | None = Field(default=None)
    api_key: str | None = Field(default=None)
    deployment_name: str = Field(default="text-embedding-ada-002")
    model: str = Field(default="text-embedding-3-small")
    dimension: int = Field(default=384, ge=1, le=8192)
    workers: int = Field(default=1, ge=1, le=16)
    queue_capacity: int = Field(default=1024, ge=1, le=1_000_000)
    debounce_ms: int = Field(default=250, ge=0, le=60_000)
    timeout_seconds: int = Field(default=30, ge=1, le=300)

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        """Validate embedding provider is recognized."""
        valid_providers = {"local", "openai", "azure_openai"}
        v_lower = v.lower()
        if v_lower not in valid_providers:
            raise ValueError(
                f"Invalid embedding provider: {v}. Must be one of {valid_providers}"
            )
        return v_lower


class MCPConfig(BaseSettings):
    """MCP JSON-RPC surface configuration.

    Attributes:
        enabled: Mount the /mcp endpoints
    """

    model_config = SettingsConfigDict(
        env_prefix="HEADLESS_PM_MCP__",
        extra="forbid",
    )

    enabled: bool = Field(default=True)


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format (json or console)
        file: Optional log file path (None for stdout only)
        rotation_size_mb: Log file rotation size in megabytes
        retention_count: Number of rotated log files to keep
    """

    model_config = SettingsConfigDict(
        env_prefix="HEADLESS_PM_LOGGING__",
        extra="forbid",
    )

    level: str = Field(default="INFO")
    format: str = Field(default="json")
    file: Path | None = Field(default=None)
    rotation_size_mb: int = Field(default=50, ge=1, le=1000)
    retention_count: int = Field(default=10, ge=1, le=100)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level is recognized."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format is recognized."""
        valid_formats = {"json", "console"}
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid log format: {v}. Must be one of {valid_formats}")
        return v_lower


class HeadlessPMConfig(BaseSettings):
    """Root configuration for Headless PM.

    Aggregates all subsystem configurations. Environment variables take
    precedence over file values and constructor arguments so that a
    deployment can override a checked-in configuration file.

    Environment variable format for nested config:
        HEADLESS_PM_<SECTION>__<KEY>=value

    Example:
        HEADLESS_PM_DATABASE__DATA_DIR="/srv/pm"
        HEADLESS_PM_EMBEDDING__DIMENSION=1536
    """

    model_config = SettingsConfigDict(
        env_prefix="HEADLESS_PM_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    mcp: MCPConfig = Field(default_factory=MCPConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    admin_api_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "admin_api_token", "ADMIN_API_TOKEN", "HEADLESS_PM_ADMIN_API_TOKEN"
        ),
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Give environment variables priority over file/constructor values."""
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def _read_config_file(path: Path) -> dict[str, Any]:
    """Parse a JSON or TOML configuration file into a dict."""
    if path.suffix == ".toml":
        with open(path, "rb") as f:
            return tomli.load(f)
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError("top-level value must be an object")
    return data


def load_config(config_path: Path | None = None) -> HeadlessPMConfig:
    """Load configuration from a JSON/TOML file with environment overrides.

    Configuration search order (first found is used):
    1. config_path if explicitly provided
    2. ./headless_pm.json, then ./headless_pm.toml (current directory)
    3. ~/.config/headless_pm/config.json (user config directory)

    Args:
        config_path: Explicit path to a config file. If None, searches
                    default locations.

    Returns:
        HeadlessPMConfig: Fully resolved configuration instance.

    Raises:
        FileNotFoundError: If config_path is explicitly provided but doesn't exist.
        ValueError: If the file contains invalid configuration.

    Example:
        >>> config = load_config()
        >>> config = load_config(Path("deploy/headless_pm.json"))
    """
    file_data: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        selected_path: Path | None = config_path
    else:
        search_paths = [
            Path.cwd() / "headless_pm.json",
            Path.cwd() / "headless_pm.toml",
            Path.home() / ".config" / "headless_pm" / "config.json",
        ]
        selected_path = next((p for p in search_paths if p.exists()), None)

    try:
        if selected_path is not None:
            file_data = _read_config_file(selected_path)
        return HeadlessPMConfig(**file_data)
    except Exception as e:
        if selected_path:
            raise ValueError(f"Invalid configuration in {selected_path}: {e}") from e
        raise ValueError(f"Invalid configuration: {e}") from e
