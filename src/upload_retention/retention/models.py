"""
Pydantic models for upload retention.

Defines artifacts, artifact groups, the retention policy, per-artifact
decisions and the reconcile result envelope.
"""

import re
from datetime import timedelta
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

# {unixMillis}_{optionalHexHash}_{logicalName}
ARTIFACT_NAME_PATTERN = re.compile(r"^\d+_([a-f0-9]+_)?(.+)$")


def logical_key_for(name: str) -> str:
    """Strip the timestamp/hash prefix from an upload filename."""
    match = ARTIFACT_NAME_PATTERN.match(name)
    return match.group(2) if match else name


class DeletionReason(Enum):
    """Why an artifact was marked for deletion, in rule precedence order."""

    EXCEEDS_GLOBAL_CAP = "exceeds_global_cap"
    TOO_OLD = "too_old"
    EXCEEDS_GROUP_VERSION_CAP = "exceeds_group_version_cap"
    DUPLICATE_OF_NEWER_VERSION = "duplicate_of_newer_version"


class DecisionAction(Enum):
    """Outcome of evaluating one artifact."""

    KEEP = "keep"
    DELETE = "delete"


class Artifact(BaseModel):
    """A file in the watched upload directory."""

    name: str = Field(description="On-disk filename")
    path: Path = Field(description="Full path to the file")
    size: int = Field(ge=0, description="Size in bytes")
    modified_time: int = Field(description="Modification time in epoch milliseconds")
    age: int = Field(description="Milliseconds between scan time and modified_time")

    @property
    def logical_key(self) -> str:
        """Identity shared by all versions of the same uploaded document."""
        return logical_key_for(self.name)


class ArtifactGroup(BaseModel):
    """All artifacts sharing one logical key, newest first."""

    logical_key: str
    versions: list[Artifact] = Field(default_factory=list)

    def sort_versions(self) -> None:
        """Order versions newest first by modification time."""
        self.versions.sort(key=lambda a: a.modified_time, reverse=True)

    @property
    def total_size(self) -> int:
        return sum(v.size for v in self.versions)


class RetentionPolicy(BaseModel):
    """Declarative retention rules for the working upload directory."""

    max_age: timedelta | None = Field(
        default=timedelta(days=7),
        description="Versions older than this may be purged (None disables the age rule)",
    )
    max_files: int | None = Field(
        default=20,
        ge=0,
        description="Global cap on surviving artifacts (None disables the cap)",
    )
    keep_backups: bool = Field(
        default=True, description="Keep one previous version per logical key"
    )
    dry_run: bool = Field(
        default=False, description="Compute decisions without deleting"
    )

    @field_validator("max_age", mode="before")
    @classmethod
    def validate_max_age(cls, v):
        """Accept plain numbers as milliseconds."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return timedelta(milliseconds=v)
        return v

    @property
    def max_age_ms(self) -> float:
        """Age limit in milliseconds; infinity when disabled."""
        if self.max_age is None:
            return float("inf")
        return self.max_age.total_seconds() * 1000

    def versions_to_keep(self, group_size: int) -> int:
        """Number of versions kept for a group of the given size."""
        if self.keep_backups and group_size > 1:
            return 2
        return 1


class RetentionDecision(BaseModel):
    """Keep or delete decision for one artifact."""

    name: str
    path: Path
    logical_key: str
    size: int
    age: int
    version_index: int = Field(description="Position within the group, newest is 0")
    action: DecisionAction
    reason: DeletionReason | None = None

    @property
    def is_deletion(self) -> bool:
        return self.action == DecisionAction.DELETE


class ReconcileResult(BaseModel):
    """Result of reconciling one directory against a retention policy."""

    success: bool = Field(description="Whether the scan succeeded")
    error: str | None = Field(default=None, description="Scan-level error message")
    directory: str = Field(default="", description="Directory that was reconciled")
    total_files: int = Field(default=0, description="Artifacts found by the scan")
    unique_files: int = Field(default=0, description="Number of logical keys")
    backups_kept: int = Field(
        default=0, description="Kept versions that are a group's fallback copy"
    )
    kept: int = Field(default=0, description="Artifacts kept")
    deleted: int = Field(default=0, description="Artifacts actually deleted")
    failed: int = Field(default=0, description="Planned deletions that failed")
    failures: list[str] = Field(
        default_factory=list, description="Names of artifacts that could not be deleted"
    )
    freed_bytes: int = Field(default=0, description="Bytes freed by successful deletions")
    reclaimable_bytes: int = Field(
        default=0, description="Bytes held by every artifact planned for deletion"
    )
    dry_run: bool = Field(default=False)
    decisions: list[RetentionDecision] = Field(default_factory=list)

    def kept_names(self) -> list[str]:
        """Names of artifacts the plan keeps."""
        return [d.name for d in self.decisions if not d.is_deletion]

    def deletion_names(self) -> list[str]:
        """Names of artifacts the plan deletes."""
        return [d.name for d in self.decisions if d.is_deletion]

    @property
    def planned_deletions(self) -> int:
        return sum(1 for d in self.decisions if d.is_deletion)


def describe_reason(reason: DeletionReason, policy: RetentionPolicy, versions_to_keep: int = 1) -> str:
    """Render a human-readable explanation for a deletion reason."""
    if reason == DeletionReason.EXCEEDS_GLOBAL_CAP:
        return f"Exceeds max file limit ({policy.max_files})"
    if reason == DeletionReason.TOO_OLD:
        days = policy.max_age_ms / (24 * 60 * 60 * 1000)
        return f"File is older than {days:g} days"
    if reason == DeletionReason.EXCEEDS_GROUP_VERSION_CAP:
        plural = "s" if versions_to_keep > 1 else ""
        return f"Exceeds backup limit (keeping {versions_to_keep} version{plural})"
    return "Exact duplicate of newer version"
