"""
Configuration management for prfinder.

Loads prfinder.yml from the data directory (default ~/.prfinder, or
$PRFINDER_HOME). Every section is optional; missing values fall back to
the dataclass defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


CONFIG_FILENAME = "prfinder.yml"
DB_FILENAME = "github_pr_finder.db"
HOME_ENV_VAR = "PRFINDER_HOME"


class ConfigError(Exception):
    """Invalid configuration file."""


def _optional_float(value: Any, name: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


@dataclass
class GitHubConfig:
    """GitHub API settings."""

    api_base: str = "https://api.github.com"
    user_agent: str = "github-pr-finder"
    timeout: float | None = None  # None = transport default


@dataclass
class DatabaseConfig:
    """Local store settings."""

    filename: str = DB_FILENAME


@dataclass
class SyncConfig:
    """Defaults for syncing and persisting PRs."""

    # PRs with more added+deleted lines than this are stored without a diff
    max_diff_changes: int = 2000


@dataclass
class ServerConfig:
    """HTTP API bind settings."""

    host: str = "127.0.0.1"
    port: int = 8421
    cors_origins: list[str] = field(
        default_factory=lambda: ["http://localhost:1420", "http://127.0.0.1:1420"]
    )


@dataclass
class PrfinderConfig:
    """Complete prfinder configuration."""

    data_dir: Path = field(default_factory=lambda: get_data_dir())
    github: GitHubConfig = field(default_factory=GitHubConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.database.filename

    @property
    def log_path(self) -> Path:
        return self.data_dir / "server.log"

    @classmethod
    def load(cls, data_dir: Path | None = None) -> "PrfinderConfig":
        """Load configuration from the data directory."""
        data_dir = data_dir or get_data_dir()
        config_path = data_dir / CONFIG_FILENAME
        if not config_path.exists():
            return cls(data_dir=data_dir)

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"{config_path} must contain a mapping")
        return cls._parse_main_config(data, data_dir)

    @classmethod
    def _parse_main_config(cls, data: dict[str, Any], data_dir: Path) -> "PrfinderConfig":
        config = cls(data_dir=data_dir)

        github_data = data.get("github") or {}
        config.github = GitHubConfig(
            api_base=str(github_data.get("api_base", config.github.api_base)).rstrip("/"),
            user_agent=github_data.get("user_agent", config.github.user_agent),
            timeout=_optional_float(github_data.get("timeout"), "github.timeout"),
        )

        database_data = data.get("database") or {}
        config.database = DatabaseConfig(
            filename=database_data.get("filename", DB_FILENAME),
        )

        sync_data = data.get("sync") or {}
        config.sync = SyncConfig(
            max_diff_changes=int(sync_data.get("max_diff_changes", 2000)),
        )

        server_data = data.get("server") or {}
        defaults = ServerConfig()
        config.server = ServerConfig(
            host=server_data.get("host", defaults.host),
            port=int(server_data.get("port", defaults.port)),
            cors_origins=list(server_data.get("cors_origins", defaults.cors_origins)),
        )

        return config


def get_data_dir() -> Path:
    """Get the prfinder data directory path."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser().resolve()
    return Path.home() / ".prfinder"


def ensure_data_dir(data_dir: Path | None = None) -> Path:
    """Ensure the data directory exists and return its path."""
    data_dir = data_dir or get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir
