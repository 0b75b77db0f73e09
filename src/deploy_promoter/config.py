"""
Promoter configuration.

Settings come from environment variables (``PROMOTER_*``) and an optional
``.env`` file; environments, collaborator commands and stage policies come
from a YAML file.
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class PromoterSettings(BaseSettings):
    """Process-level settings."""

    model_config = SettingsConfigDict(
        env_prefix="PROMOTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    service_name: str = Field(default="deploy-promoter", description="Name used in log records")
    config_file: Path = Field(default=Path("promoter.yaml"), description="YAML configuration")
    state_file: Path | None = Field(default=None, description="JSON state persistence file")
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: str = Field(default="console", description="'json' or 'console'")
    log_file: str | None = Field(default=None, description="Optional rotating log file")


class EnvironmentConfig(BaseModel):
    """One deployment target."""

    name: str = Field(..., min_length=1)
    rank: int = Field(..., ge=1)
    target_host: str = Field(..., min_length=1)
    health_check_url: str = Field(..., min_length=1)


class StagePolicy(BaseModel):
    """Timeout and bounded retry for a pipeline stage."""

    timeout_seconds: float = Field(default=600.0, gt=0)
    max_attempts: int = Field(default=3, ge=1, le=10)
    retry_backoff_seconds: float = Field(default=2.0, ge=0)


class StagePolicies(BaseModel):
    build: StagePolicy = Field(default_factory=lambda: StagePolicy(timeout_seconds=1800.0))
    migrate: StagePolicy = Field(default_factory=StagePolicy)
    deploy: StagePolicy = Field(default_factory=StagePolicy)
    rollback: StagePolicy = Field(default_factory=lambda: StagePolicy(max_attempts=1))


class HealthCheckPolicy(BaseModel):
    """Health polling bounds."""

    poll_interval_seconds: float = Field(default=5.0, gt=0)
    max_wait_seconds: float = Field(default=120.0, gt=0)
    probe_timeout_seconds: float = Field(default=5.0, gt=0)

    @model_validator(mode="after")
    def _interval_within_window(self) -> "HealthCheckPolicy":
        if self.poll_interval_seconds > self.max_wait_seconds:
            raise ValueError("poll_interval_seconds must not exceed max_wait_seconds")
        return self


class CommandConfig(BaseModel):
    """Argument templates for the shell collaborators.

    Templates may reference ``{revision_id}``, ``{artifact_ref}``,
    ``{target_host}``, ``{migration_version}`` and ``{environment}``.
    """

    working_dir: Path | None = None
    build: list[list[str]] = Field(
        default_factory=lambda: [
            ["npm", "install"],
            ["npx", "prisma", "generate"],
            ["npm", "run", "build"],
        ]
    )
    artifact_ref: str = "{revision_id}"
    migration_version: list[str] | None = None
    migrate: list[str] = Field(
        default_factory=lambda: [
            "ssh",
            "{target_host}",
            "cd ~/app && git fetch --all && git checkout --force {revision_id} "
            "&& npx prisma migrate deploy",
        ]
    )
    revert: list[str] = Field(
        default_factory=lambda: [
            "ssh",
            "{target_host}",
            "cd ~/app && npx prisma migrate resolve --rolled-back {migration_version}",
        ]
    )
    deploy: list[str] = Field(
        default_factory=lambda: [
            "ssh",
            "{target_host}",
            "cd ~/app && git fetch --all && git checkout --force {artifact_ref} "
            "&& npm ci && npm run build && pm2 reload ecosystem.config.js",
        ]
    )

    @field_validator("build")
    @classmethod
    def _non_empty_steps(cls, value: list[list[str]]) -> list[list[str]]:
        if any(not step for step in value):
            raise ValueError("build steps must not be empty")
        return value


class PromoterConfig(BaseModel):
    """Full orchestrator configuration."""

    environments: list[EnvironmentConfig]
    commands: CommandConfig = Field(default_factory=CommandConfig)
    stages: StagePolicies = Field(default_factory=StagePolicies)
    health: HealthCheckPolicy = Field(default_factory=HealthCheckPolicy)
    verify_rollback_health: bool = True

    @field_validator("environments")
    @classmethod
    def _unique_environments(cls, value: list[EnvironmentConfig]) -> list[EnvironmentConfig]:
        if not value:
            raise ValueError("at least one environment is required")
        names = [env.name for env in value]
        ranks = [env.rank for env in value]
        if len(set(names)) != len(names):
            raise ValueError("environment names must be unique")
        if len(set(ranks)) != len(ranks):
            raise ValueError("environment ranks must be unique")
        return value


def parse_config(data: dict[str, Any]) -> PromoterConfig:
    """Validate a raw configuration mapping."""
    try:
        return PromoterConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid promoter configuration: {e}", cause=e) from e


def load_config(path: Path) -> PromoterConfig:
    """Load and validate configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse {path}: {e}", cause=e) from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration root in {path} must be a mapping")

    config = parse_config(data)
    logger.info(f"Loaded configuration for {len(config.environments)} environments from {path}")
    return config
