"""
Upload Retention Exception Hierarchy.

Defines the exceptions raised by the filesystem port and the configuration
layer. The scanner and backup manager catch these at their public boundary
and convert them into result envelopes, so they never reach callers of
``reconcile``, ``create_backup`` or ``restore_backup``.
"""

from typing import Any


class UploadRetentionError(Exception):
    """
    Base exception for all upload retention errors.

    All custom exceptions inherit from this class, allowing
    generic catch blocks and consistent error handling.
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        """
        Initialize an UploadRetentionError.

        Args:
            message: Human-readable error message
            details: Optional structured data for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation with details."""
        base = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{base} ({details_str})"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class FilesystemError(UploadRetentionError):
    """
    Errors from a filesystem primitive.

    Raised by filesystem ports when:
    - A copy, unlink, read or write fails
    - A stat cannot be performed
    - A directory cannot be created
    """

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize a FilesystemError.

        Args:
            message: Human-readable error message
            path: Path the operation was applied to
            operation: Name of the primitive (copy, remove, stat, ...)
            details: Optional structured data for debugging
        """
        details = details or {}
        if path:
            details["path"] = path
        if operation:
            details["operation"] = operation

        super().__init__(message, details=details)
        self.path = path
        self.operation = operation


class ArtifactNotFoundError(FilesystemError):
    """
    Raised when a file vanished or never existed.

    Not-found is always tolerated by batch operations: it surfaces as a
    skipped result or a per-item failure count.
    """


class ScanError(UploadRetentionError):
    """Raised when an artifact directory cannot be listed."""

    def __init__(
        self,
        message: str,
        *,
        directory: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if directory:
            details["directory"] = directory
        super().__init__(message, details=details)
        self.directory = directory


class MetadataCorruptError(UploadRetentionError):
    """
    Raised when a backup sidecar is missing or unparsable.

    A backup without a valid sidecar is excluded from listings and
    cannot be restored.
    """

    def __init__(
        self,
        message: str,
        *,
        backup_name: str | None = None,
        sidecar_path: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if backup_name:
            details["backup_name"] = backup_name
        if sidecar_path:
            details["sidecar_path"] = sidecar_path
        super().__init__(message, details=details)
        self.backup_name = backup_name
        self.sidecar_path = sidecar_path


class ConfigurationError(UploadRetentionError):
    """
    Errors in configuration loading or validation.

    Raised when:
    - Configuration files are missing or malformed
    - Environment variables hold values of the wrong type
    - Configuration values are invalid
    """

    def __init__(
        self,
        message: str,
        *,
        config_file: str | None = None,
        env_var: str | None = None,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize a ConfigurationError.

        Args:
            message: Human-readable error message
            config_file: Path to configuration file if applicable
            env_var: Environment variable name if applicable
            config_key: Configuration key if applicable
            details: Optional structured data for debugging
        """
        details = details or {}
        if config_file:
            details["config_file"] = config_file
        if env_var:
            details["env_var"] = env_var
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, details=details)
        self.config_file = config_file
        self.env_var = env_var
        self.config_key = config_key


def format_exception(error: Exception) -> str:
    """
    Format an exception for user-friendly display.

    Args:
        error: The exception to format

    Returns:
        Formatted error message string
    """
    if isinstance(error, UploadRetentionError):
        return str(error)
    return f"{error.__class__.__name__}: {error}"
