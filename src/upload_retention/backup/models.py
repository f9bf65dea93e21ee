"""
Pydantic models for the backup store.

Defines the backup policy, backup records reconstructed from their JSON
sidecars, and the result envelopes returned by the backup manager.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from upload_retention.core.exceptions import MetadataCorruptError

SIDECAR_SUFFIX = ".json"
BACKUP_NAME_PATTERN = re.compile(r"^(\d+)_backup_(.+)$")
RESERVED_SIDECAR_KEYS = ("originalPath", "backupPath", "timestamp", "date")


def backup_name_for(original_name: str, timestamp: int) -> str:
    """Build the backup filename for an original base filename."""
    return f"{timestamp}_backup_{original_name}"


def original_name_of(backup_name: str) -> str | None:
    """Return the original base filename embedded in a backup name."""
    match = BACKUP_NAME_PATTERN.match(backup_name)
    return match.group(2) if match else None


def iso_date(timestamp_ms: int) -> str:
    """Render epoch milliseconds as an ISO8601 UTC string with a Z suffix."""
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class BackupPolicy(BaseModel):
    """Retention rules for the backup store, separate from RetentionPolicy."""

    max_backups_per_file: int = Field(
        default=3, ge=1, description="Backups kept per original filename"
    )
    max_backup_age: timedelta | None = Field(
        default=timedelta(days=30),
        description="Backups older than this are pruned regardless of rank",
    )

    @field_validator("max_backup_age", mode="before")
    @classmethod
    def validate_max_backup_age(cls, v):
        """Accept plain numbers as milliseconds."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return timedelta(milliseconds=v)
        return v

    @property
    def max_backup_age_ms(self) -> float:
        if self.max_backup_age is None:
            return float("inf")
        return self.max_backup_age.total_seconds() * 1000


class BackupRecord(BaseModel):
    """One preserved prior version of an original file."""

    name: str = Field(description="Backup filename inside the store")
    original_path: str = Field(min_length=1, description="Path the backup was taken from")
    backup_path: str = Field(description="Path of the backup copy")
    timestamp: int = Field(description="Creation time in epoch milliseconds")
    date: str = Field(description="ISO8601 creation time")
    size: int = Field(default=0, description="Size of the backup copy in bytes")
    metadata: dict[str, Any] = Field(
        default_factory=dict, description="Caller-supplied metadata"
    )

    def to_sidecar(self) -> dict[str, Any]:
        """Serialize to the sidecar JSON layout."""
        extra = {k: v for k, v in self.metadata.items() if k not in RESERVED_SIDECAR_KEYS}
        return {
            "originalPath": self.original_path,
            "backupPath": self.backup_path,
            "timestamp": self.timestamp,
            "date": self.date,
            **extra,
        }

    @classmethod
    def from_sidecar(cls, name: str, data: Any, size: int = 0) -> "BackupRecord":
        """
        Rebuild a record from parsed sidecar JSON.

        Raises:
            MetadataCorruptError: If the sidecar lacks required keys
        """
        if not isinstance(data, dict):
            raise MetadataCorruptError("Sidecar is not a JSON object", backup_name=name)
        try:
            return cls(
                name=name,
                original_path=data["originalPath"],
                backup_path=data["backupPath"],
                timestamp=data["timestamp"],
                date=data.get("date") or iso_date(int(data["timestamp"])),
                size=size,
                metadata={k: v for k, v in data.items() if k not in RESERVED_SIDECAR_KEYS},
            )
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise MetadataCorruptError(
                f"Sidecar is missing required fields: {e}", backup_name=name
            ) from e


class BackupResult(BaseModel):
    """Result of create_backup."""

    success: bool = Field(description="Whether the operation succeeded")
    skipped: bool = Field(default=False, description="True when there was nothing to back up")
    reason: str | None = Field(default=None, description="Why the backup was skipped")
    backup_path: str | None = Field(default=None, description="Path of the new backup")
    backup_name: str | None = Field(default=None, description="Filename of the new backup")
    pruned: int = Field(default=0, description="Older backups removed after creation")
    error: str | None = Field(default=None, description="Error message if failed")


class RestoreResult(BaseModel):
    """Result of restore_backup."""

    success: bool = Field(description="Whether the operation succeeded")
    restored_to: str | None = Field(default=None, description="Path the backup was copied to")
    metadata: dict[str, Any] | None = Field(default=None, description="Sidecar content")
    error: str | None = Field(default=None, description="Error message if failed")


class PruneResult(BaseModel):
    """Result of pruning the backups of one original file."""

    success: bool = Field(default=True)
    deleted: int = Field(default=0, description="Backups removed with their sidecars")
    failed: int = Field(default=0, description="Backups that could not be removed")
    errors: list[str] = Field(default_factory=list, description="Any errors encountered")
