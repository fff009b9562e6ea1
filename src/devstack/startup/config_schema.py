"""devstack configuration schema.

Pydantic-based validation for the two configuration sources of a run: the
process environment (tunables, toggles, paths) and the per-profile overlay
document (service ports, datastore credentials).
"""

from __future__ import annotations

from enum import StrEnum
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_HEALTH_CHECK_TIMEOUT = 120.0
DEFAULT_HEALTH_CHECK_INTERVAL = 2.0

# LOG_LEVEL is shared with the stack's services, which use these names.
LOG_LEVEL_ALIASES = {"WARN": "WARNING", "TRACE": "DEBUG", "FATAL": "CRITICAL"}


class LogLevel(StrEnum):
    """Valid log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StackSettings(BaseSettings):
    """Tunables for one startup run, overridable from the environment."""

    project_root: Path = Field(
        default_factory=Path.cwd,
        description="Directory holding the compose file and profile overlays",
        alias="DEVSTACK_PROJECT_ROOT",
    )
    compose_file: str = Field(
        default="docker-compose.yml",
        description="Compose file, relative to the project root",
        alias="DEVSTACK_COMPOSE_FILE",
    )
    seeds_dir: str = Field(
        default="infrastructure/database/seeds",
        description="Directory of seed SQL files, relative to the project root",
        alias="DEVSTACK_SEEDS_DIR",
    )
    probe_host: str = Field(
        default="localhost",
        description="Host used for port and health probes from the host machine",
        min_length=1,
        alias="DEVSTACK_PROBE_HOST",
    )

    # Health verification
    health_check_timeout: float = Field(
        default=DEFAULT_HEALTH_CHECK_TIMEOUT,
        description="Per-service health check timeout in seconds",
        gt=0,
        alias="HEALTH_CHECK_TIMEOUT",
    )
    health_check_interval: float = Field(
        default=DEFAULT_HEALTH_CHECK_INTERVAL,
        description="Seconds between health check attempts",
        gt=0,
        alias="HEALTH_CHECK_INTERVAL",
    )
    health_check_request_timeout: float = Field(
        default=5.0,
        description="Bound on a single probe (HTTP request, DB query)",
        gt=0,
        le=60,
        alias="HEALTH_CHECK_REQUEST_TIMEOUT",
    )
    startup_grace_period: float = Field(
        default=3.0,
        description="Seconds to wait after launch before the first probe",
        ge=0,
        alias="DEVSTACK_STARTUP_GRACE",
    )

    # Orchestration tool
    launch_timeout: float = Field(
        default=300.0,
        description="Bound on the detached compose up invocation",
        gt=0,
        alias="DEVSTACK_LAUNCH_TIMEOUT",
    )
    command_timeout: float = Field(
        default=15.0,
        description="Bound on short runtime commands (info, version, logs)",
        gt=0,
        alias="DEVSTACK_COMMAND_TIMEOUT",
    )

    # Failure diagnostics and seeding
    show_logs_on_failure: bool = Field(
        default=False,
        description="Show log excerpts for failing services without prompting",
        alias="SHOW_LOGS_ON_FAILURE",
    )
    log_tail_lines: int = Field(
        default=50,
        description="Number of log lines shown per failing service",
        ge=1,
        le=10000,
        alias="LOG_TAIL_LINES",
    )
    auto_seed_database: bool = Field(
        default=False,
        description="Seed an empty datastore after it becomes healthy",
        alias="AUTO_SEED_DATABASE",
    )

    log_level: LogLevel = Field(
        default=LogLevel.WARNING, description="Logging level", alias="LOG_LEVEL"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Accept the stack's own level names (``WARN``, ``TRACE``) in any case."""
        if isinstance(v, str):
            level = v.strip().upper()
            return LOG_LEVEL_ALIASES.get(level, level)
        return v

    @field_validator("health_check_interval")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        """Reject intervals too small to be a sensible poll cadence."""
        if v < 0.01:  # noqa: PLR2004
            msg = f"Health check interval too small: {v}s"
            raise ValueError(msg)
        return v

    @property
    def compose_path(self) -> Path:
        return self.project_root / self.compose_file

    @property
    def seeds_path(self) -> Path:
        return self.project_root / self.seeds_dir

    def with_overrides(self, **overrides: Any) -> StackSettings:
        """Return a copy with every non-None override applied and re-validated."""
        updates = {k: v for k, v in overrides.items() if v is not None}
        if not updates:
            return self
        data = self.model_dump()
        data.update(updates)
        return type(self).model_validate(data)

    def get_startup_summary(self) -> dict[str, Any]:
        """Get startup configuration summary."""
        return {
            "project_root": str(self.project_root),
            "compose_file": self.compose_file,
            "health_check_timeout": self.health_check_timeout,
            "health_check_interval": self.health_check_interval,
            "show_logs_on_failure": self.show_logs_on_failure,
            "auto_seed_database": self.auto_seed_database,
        }

    @classmethod
    def validate_from_env(cls) -> tuple[StackSettings | None, list[str]]:
        """Validate settings from environment variables.

        Returns:
            Tuple of (settings, errors). Settings is None if validation fails.
        """
        try:
            return cls(), []
        except ValidationError as e:
            return None, format_validation_errors(e)


class ProfileOverlay(BaseModel):
    """Typed view of a profile overlay document (``.env.<profile>``)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    profile: str | None = Field(default=None, alias="PROFILE")

    database_host: str = Field(alias="DATABASE_HOST", min_length=1)
    database_port: int = Field(alias="DATABASE_PORT", ge=1, le=65535)
    database_name: str = Field(alias="DATABASE_NAME", min_length=1)
    database_user: str = Field(alias="DATABASE_USER", min_length=1)
    database_password: str = Field(alias="DATABASE_PASSWORD", repr=False)

    backend_port: int = Field(alias="BACKEND_PORT", ge=1, le=65535)
    frontend_port: int | None = Field(
        default=None, alias="FRONTEND_PORT", ge=1, le=65535
    )

    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int | None = Field(default=None, alias="REDIS_PORT", ge=1, le=65535)
    redis_password: str = Field(default="", alias="REDIS_PASSWORD", repr=False)

    def port_for(self, variable: str) -> int | None:
        """Look up a port by its overlay variable name."""
        return {
            "DATABASE_PORT": self.database_port,
            "BACKEND_PORT": self.backend_port,
            "FRONTEND_PORT": self.frontend_port,
            "REDIS_PORT": self.redis_port,
        }.get(variable)


def format_validation_errors(error: ValidationError) -> list[str]:
    """Flatten a pydantic ValidationError into ``field: message`` lines."""
    errors = []
    for item in error.errors():
        field_path = ".".join(str(loc) for loc in item["loc"])
        errors.append(f"{field_path}: {item['msg']}")
    return errors
