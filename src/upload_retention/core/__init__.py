"""
Upload Retention Core Module.

Provides the exception hierarchy and the filesystem port shared by the
retention scanner and the backup manager.
"""

__all__ = [
    # Exceptions
    "UploadRetentionError",
    "FilesystemError",
    "ArtifactNotFoundError",
    "ScanError",
    "MetadataCorruptError",
    "ConfigurationError",
    "format_exception",
    # Filesystem
    "FileStat",
    "Filesystem",
    "LocalFilesystem",
    "InMemoryFilesystem",
    "now_ms",
]

from upload_retention.core.exceptions import (
    ArtifactNotFoundError,
    ConfigurationError,
    FilesystemError,
    MetadataCorruptError,
    ScanError,
    UploadRetentionError,
    format_exception,
)
from upload_retention.core.filesystem import (
    FileStat,
    Filesystem,
    InMemoryFilesystem,
    LocalFilesystem,
    now_ms,
)
