"""
Upload Retention - backup store.

Snapshots files before they are overwritten, prunes the snapshots per
original filename, and restores them on request.
"""

from .models import (
    BackupPolicy,
    BackupRecord,
    BackupResult,
    PruneResult,
    RestoreResult,
    backup_name_for,
    original_name_of,
)
from .manager import BackupManager, get_backup_manager

__all__ = [
    # Models
    "BackupPolicy",
    "BackupRecord",
    "BackupResult",
    "PruneResult",
    "RestoreResult",
    "backup_name_for",
    "original_name_of",
    # Manager
    "BackupManager",
    "get_backup_manager",
]
