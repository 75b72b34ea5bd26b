"""Configuration management for Review Portal.

This module defines the configuration schema using Pydantic settings,
supporting TOML files, environment variables, and programmatic overrides.

Configuration loading priority (highest to lowest):
1. Programmatic overrides and TOML file values (both reach the
   PortalConfig constructor as keyword arguments)
2. Environment variables (REVIEWPORTAL_* prefix), for keys not set above
3. Default values defined in this module

Example TOML configuration:
    [github]
    per_page = 50

    [agent]
    mode = "server"
    server_url = "http://localhost:4096"

Example environment variable override:
    REVIEWPORTAL_GITHUB__TOKEN="ghp_..."
    REVIEWPORTAL_POLLING__INTERVAL_SECONDS=120
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomli
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_STORE_ROOT = Path.home() / ".codereview-store"
DEFAULT_REVIEW_MODEL = "anthropic/claude-sonnet-4-20250514"
DEFAULT_TRIGGER_LABEL = "ai_codereview"


class DatabaseConfig(BaseSettings):
    """Database connection configuration.

    Attributes:
        url: SQLAlchemy database URL. When unset, a SQLite file inside the
             review store root is used.
        pool_size: Connections kept in the pool (ignored for SQLite)
        max_overflow: Connections beyond pool_size (ignored for SQLite)
        echo: Enable SQL query logging
    """

    model_config = SettingsConfigDict(
        env_prefix="REVIEWPORTAL_DATABASE__",
        extra="forbid",
    )

    url: str | None = Field(default=None, description="SQLAlchemy async URL")
    pool_size: int = Field(default=5, ge=1, le=100)
    max_overflow: int = Field(default=10, ge=0, le=100)
    echo: bool = Field(default=False)


class StoreConfig(BaseSettings):
    """Filesystem review store configuration.

    Attributes:
        root: Directory holding guideline documents, review artifacts and
              the default SQLite database.
    """

    model_config = SettingsConfigDict(
        env_prefix="REVIEWPORTAL_STORE__",
        extra="forbid",
    )

    root: Path = Field(default=DEFAULT_STORE_ROOT)

    @property
    def projects_dir(self) -> Path:
        return self.root / "projects"

    @property
    def reviews_dir(self) -> Path:
        return self.root / "reviews"


class GitHubConfig(BaseSettings):
    """GitHub REST API configuration.

    Attributes:
        token: Personal access token used for listing PRs, removing labels
               and posting reviews
        webhook_secret: Shared secret for X-Hub-Signature-256 verification
        api_url: Base URL of the REST API
        per_page: Page size for the open pull request scan
        timeout_seconds: HTTP request timeout
    """

    model_config = SettingsConfigDict(
        env_prefix="REVIEWPORTAL_GITHUB__",
        extra="forbid",
    )

    token: str | None = Field(default=None)
    webhook_secret: str | None = Field(default=None)
    api_url: str = Field(default="https://api.github.com")
    per_page: int = Field(default=30, ge=1, le=100)
    timeout_seconds: int = Field(default=30, ge=1, le=300)


class AgentConfig(BaseSettings):
    """External review agent configuration.

    Attributes:
        mode: "cli" spawns the agent executable, "server" talks to a running
              agent server over HTTP
        executable: Agent executable name or path
        review_command: Command that reviews one pull request
        init_command: Command that generates review guidelines for a repo
        server_url: Base URL of the agent server (server mode)
        timeout_seconds: Hard limit for one agent run, 0 disables it
        terminate_grace_seconds: Wait between terminate and kill
        stability_timeout_seconds: Server mode completes after this long
                                   without new messages
        poll_interval_seconds: Server mode message poll interval
        output_filename: Review artifact written by the agent
        summary_filename: Markdown summary written by the agent
    """

    model_config = SettingsConfigDict(
        env_prefix="REVIEWPORTAL_AGENT__",
        extra="forbid",
    )

    mode: str = Field(default="cli")
    executable: str = Field(default="opencode")
    review_command: str = Field(default="codereview")
    init_command: str = Field(default="codereview-int-deep")
    server_url: str = Field(default="http://localhost:4096")
    timeout_seconds: int = Field(default=1800, ge=0, le=86400)  # 30 min
    terminate_grace_seconds: float = Field(default=10.0, ge=0.0, le=300.0)
    stability_timeout_seconds: float = Field(default=60.0, ge=1.0, le=3600.0)
    poll_interval_seconds: float = Field(default=2.0, gt=0.0, le=60.0)
    output_filename: str = Field(default="review_comments.json")
    summary_filename: str = Field(default="review_summary.md")

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        """Validate agent mode is recognized."""
        valid_modes = {"cli", "server"}
        v_lower = v.lower()
        if v_lower not in valid_modes:
            raise ValueError(f"Invalid agent mode: {v}. Must be one of {valid_modes}")
        return v_lower


class PollingConfig(BaseSettings):
    """GitHub poller configuration.

    Attributes:
        interval_seconds: Delay between poll cycles
        start_on_boot: Start the poller when the web server starts
        stale_claim_seconds: Age after which a pending claim is considered
                             abandoned by a crashed process
    """

    model_config = SettingsConfigDict(
        env_prefix="REVIEWPORTAL_POLLING__",
        extra="forbid",
    )

    interval_seconds: int = Field(default=60, ge=5, le=86400)
    start_on_boot: bool = Field(default=False)
    stale_claim_seconds: int = Field(default=3600, ge=60, le=604800)


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
        env_prefix="REVIEWPORTAL_LOGGING__",
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


class WebConfig(BaseSettings):
    """HTTP server configuration.

    Attributes:
        host: Bind host address
        port: Bind port number
        cors_origins: Allowed CORS origins
    """

    model_config = SettingsConfigDict(
        env_prefix="REVIEWPORTAL_WEB__",
        extra="forbid",
    )

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001, ge=1, le=65535)
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class PortalConfig(BaseSettings):
    """Root configuration for Review Portal.

    Aggregates all subsystem configurations. Nested values can be set from
    the environment as REVIEWPORTAL_<SECTION>__<KEY>=value.
    """

    model_config = SettingsConfigDict(
        env_prefix="REVIEWPORTAL_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    web: WebConfig = Field(default_factory=WebConfig)

    @property
    def database_url(self) -> str:
        """Database URL, defaulting to a SQLite file in the store root."""
        if self.database.url:
            return self.database.url
        return f"sqlite+aiosqlite:///{self.store.root / 'codereview.db'}"


def load_config(config_path: Path | None = None) -> PortalConfig:
    """Load configuration from TOML file with environment variable overrides.

    Configuration search order (first found is used):
    1. config_path if explicitly provided
    2. ./reviewportal.toml (current directory)
    3. ~/.config/reviewportal/config.toml (user config directory)

    Args:
        config_path: Explicit path to TOML config file. If None, searches
                    default locations.

    Returns:
        PortalConfig: Fully resolved configuration instance.

    Raises:
        FileNotFoundError: If config_path is explicitly provided but doesn't exist.
        ValueError: If TOML file contains invalid configuration.
    """
    toml_data: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        selected_path: Path | None = config_path
    else:
        search_paths = [
            Path.cwd() / "reviewportal.toml",
            Path.home() / ".config" / "reviewportal" / "config.toml",
        ]
        selected_path = next((p for p in search_paths if p.exists()), None)

    if selected_path is not None:
        with open(selected_path, "rb") as f:
            toml_data = tomli.load(f)

    try:
        return PortalConfig(**toml_data)
    except Exception as e:
        if selected_path:
            raise ValueError(f"Invalid configuration in {selected_path}: {e}") from e
        raise ValueError(f"Invalid configuration: {e}") from e
