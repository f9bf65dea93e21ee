"""
Upload Retention - working directory retention.

Groups uploaded artifacts by logical key and enforces age, count and
duplicate rules on them.
"""

from .models import (
    Artifact,
    ArtifactGroup,
    DecisionAction,
    DeletionReason,
    ReconcileResult,
    RetentionDecision,
    RetentionPolicy,
    describe_reason,
    logical_key_for,
)
from .duplicates import ContentHashDuplicateCheck, DuplicateCheck, SizeDuplicateCheck
from .scanner import KeepTally, RetentionScanner, group_artifacts, plan_group, plan_retention

__all__ = [
    # Models
    "Artifact",
    "ArtifactGroup",
    "DecisionAction",
    "DeletionReason",
    "ReconcileResult",
    "RetentionDecision",
    "RetentionPolicy",
    "describe_reason",
    "logical_key_for",
    # Duplicates
    "DuplicateCheck",
    "SizeDuplicateCheck",
    "ContentHashDuplicateCheck",
    # Scanner
    "KeepTally",
    "RetentionScanner",
    "group_artifacts",
    "plan_group",
    "plan_retention",
]
