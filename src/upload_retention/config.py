"""
Configuration for upload retention.

Settings come from three layers, later layers winning:

1. Defaults declared on ``Settings``
2. An optional YAML file (flat mapping of field names)
3. ``UR_*`` environment variables
"""

import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from upload_retention.backup.models import BackupPolicy
from upload_retention.core.exceptions import ConfigurationError
from upload_retention.retention.models import RetentionPolicy

ENV_PREFIX = "UR_"
_UNLIMITED = {"", "none", "off", "unlimited"}


class Settings(BaseModel):
    """Runtime settings shared by the CLI, scheduler and backup singleton."""

    model_config = ConfigDict(extra="forbid")

    uploads_dir: Path = Field(
        default=Path("public/uploads/excel"), description="Working upload directory"
    )
    backup_dir: Path | None = Field(
        default=None, description="Backup store (default: {uploads_dir}/.backups)"
    )
    max_age_days: float | None = Field(default=7, ge=0)
    max_files: int | None = Field(default=20, ge=0)
    keep_backups: bool = True
    max_backups_per_file: int = Field(default=3, ge=1)
    max_backup_age_days: float | None = Field(default=30, ge=0)
    cleanup_interval_hours: float = Field(default=24, gt=0)
    io_workers: int = Field(default=8, ge=1)
    log_level: str = "INFO"

    @field_validator("max_age_days", "max_files", "max_backup_age_days", mode="before")
    @classmethod
    def validate_unlimited(cls, v):
        """Map 'none'/'unlimited' to None (no limit)."""
        if isinstance(v, str) and v.strip().lower() in _UNLIMITED:
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level

    @property
    def resolved_backup_dir(self) -> Path:
        return self.backup_dir or self.uploads_dir / ".backups"

    def retention_policy(self, dry_run: bool = False, force_all: bool = False) -> RetentionPolicy:
        """
        Build the working directory retention policy.

        Args:
            dry_run: Plan without deleting
            force_all: Zero the age limit and file cap, leaving only the
                newest version of each document
        """
        if force_all:
            return RetentionPolicy(
                max_age=timedelta(0),
                max_files=0,
                keep_backups=self.keep_backups,
                dry_run=dry_run,
            )
        return RetentionPolicy(
            max_age=None if self.max_age_days is None else timedelta(days=self.max_age_days),
            max_files=self.max_files,
            keep_backups=self.keep_backups,
            dry_run=dry_run,
        )

    def backup_policy(self) -> BackupPolicy:
        """Build the backup store pruning policy."""
        return BackupPolicy(
            max_backups_per_file=self.max_backups_per_file,
            max_backup_age=(
                None
                if self.max_backup_age_days is None
                else timedelta(days=self.max_backup_age_days)
            ),
        )


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Collect UR_* variables that name a Settings field."""
    overrides: dict[str, Any] = {}
    for field_name in Settings.model_fields:
        key = f"{ENV_PREFIX}{field_name.upper()}"
        if key in env:
            overrides[field_name] = env[key]
    return overrides


def _read_config_file(config_file: Path) -> dict[str, Any]:
    try:
        content = config_file.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read configuration file: {e.strerror or e}",
            config_file=str(config_file),
        ) from e
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML: {e}", config_file=str(config_file)
        ) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            "Configuration file must contain a mapping", config_file=str(config_file)
        )
    return data


def load_settings(
    config_file: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """
    Load settings from defaults, an optional YAML file and the environment.

    Args:
        config_file: Optional YAML file
        env: Environment mapping (default: os.environ)

    Returns:
        Validated Settings

    Raises:
        ConfigurationError: If the file or any value is invalid
    """
    data: dict[str, Any] = {}
    if config_file is not None:
        data.update(_read_config_file(Path(config_file)))
    data.update(_env_overrides(os.environ if env is None else env))

    try:
        return Settings(**data)
    except ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise ConfigurationError(
            "Invalid settings",
            config_file=str(config_file) if config_file else None,
            details={"validation_errors": errors},
        ) from e
