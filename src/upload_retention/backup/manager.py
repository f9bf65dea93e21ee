"""
Backup manager for uploaded artifacts.

Before an upload overwrites an existing file the caller asks the manager for
a snapshot. Each snapshot lives in an isolated backup store as a pair:

- {backup_dir}/{unixMillis}_backup_{filename}        (copy of the file)
- {backup_dir}/{unixMillis}_backup_{filename}.json   (sidecar metadata)

A copy without its sidecar is not a valid backup. After every snapshot the
backups of the same original filename are pruned by rank and age according
to a BackupPolicy, independently of the working directory's retention.
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from upload_retention.core.exceptions import (
    ArtifactNotFoundError,
    FilesystemError,
    MetadataCorruptError,
    format_exception,
)
from upload_retention.core.filesystem import Filesystem, LocalFilesystem, now_ms

from .models import (
    RESERVED_SIDECAR_KEYS,
    SIDECAR_SUFFIX,
    BackupPolicy,
    BackupRecord,
    BackupResult,
    PruneResult,
    RestoreResult,
    backup_name_for,
    iso_date,
    original_name_of,
)

logger = logging.getLogger(__name__)


class BackupManager:
    """
    Snapshot, prune, list and restore backups of uploaded files.

    Every public method returns a result envelope or a plain value and
    never raises for filesystem failures.
    """

    DEFAULT_BACKUP_DIR = Path("public/uploads/excel/.backups")
    GITIGNORE_CONTENT = "*\n!.gitignore\n"

    def __init__(
        self,
        backup_dir: Path | str | None = None,
        policy: BackupPolicy | None = None,
        filesystem: Filesystem | None = None,
        clock: Callable[[], int] | None = None,
    ):
        """
        Initialize the backup manager.

        Args:
            backup_dir: Backup store directory (default: public/uploads/excel/.backups)
            policy: Pruning rules for the store
            filesystem: Filesystem port (default: LocalFilesystem)
            clock: Callable returning epoch milliseconds
        """
        self._backup_dir = Path(backup_dir) if backup_dir else self.DEFAULT_BACKUP_DIR
        self._policy = policy or BackupPolicy()
        self._fs = filesystem or LocalFilesystem()
        self._clock = clock or now_ms

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    @property
    def policy(self) -> BackupPolicy:
        return self._policy

    def _sidecar_path(self, backup_path: Path) -> Path:
        return backup_path.with_name(backup_path.name + SIDECAR_SUFFIX)

    def init(self) -> bool:
        """
        Ensure the backup store and its .gitignore exist.

        Returns:
            True if the store is usable, False otherwise
        """
        try:
            self._fs.make_dirs(self._backup_dir)
        except FilesystemError as e:
            logger.error(f"Failed to initialize backup directory {self._backup_dir}: {e}")
            return False

        try:
            self._fs.write_text(self._backup_dir / ".gitignore", self.GITIGNORE_CONTENT)
        except FilesystemError as e:
            logger.warning(f"Could not write .gitignore in {self._backup_dir}: {e}")
        return True

    def create_backup(
        self,
        original_path: Path | str,
        metadata: dict[str, Any] | None = None,
    ) -> BackupResult:
        """
        Snapshot a file before it is overwritten.

        Args:
            original_path: File about to be replaced
            metadata: Caller metadata stored in the sidecar (e.g. who triggered it)

        Returns:
            BackupResult; ``skipped`` is set when the original does not exist
        """
        original_path = Path(original_path)
        if not self._fs.exists(original_path):
            return BackupResult(
                success=True, skipped=True, reason="Original file does not exist"
            )

        file_name = original_path.name
        timestamp = self._clock()
        backup_path = self._backup_dir / backup_name_for(file_name, timestamp)
        while self._fs.exists(backup_path):
            timestamp += 1
            backup_path = self._backup_dir / backup_name_for(file_name, timestamp)

        caller_metadata = dict(metadata or {})
        try:
            record = BackupRecord(
                name=backup_path.name,
                original_path=str(original_path),
                backup_path=str(backup_path),
                timestamp=timestamp,
                date=iso_date(timestamp),
                metadata=caller_metadata,
            )
        except ValidationError as e:
            logger.error(f"Invalid backup metadata for {file_name}: {e}")
            return BackupResult(success=False, error=f"Invalid backup metadata: {e}")

        try:
            self._fs.copy_file(original_path, backup_path)
        except ArtifactNotFoundError as e:
            if not self._fs.exists(original_path):
                return BackupResult(
                    success=True, skipped=True, reason="Original file does not exist"
                )
            logger.error(f"Backup failed for {original_path}: {e}")
            return BackupResult(success=False, error=format_exception(e))
        except FilesystemError as e:
            logger.error(f"Backup failed for {original_path}: {e}")
            return BackupResult(success=False, error=format_exception(e))

        ignored = [k for k in caller_metadata if k in RESERVED_SIDECAR_KEYS]
        if ignored:
            logger.warning(f"Ignoring reserved metadata keys for {file_name}: {ignored}")

        try:
            self._fs.write_text(
                self._sidecar_path(backup_path),
                json.dumps(record.to_sidecar(), indent=2, default=str),
            )
        except FilesystemError as e:
            logger.error(f"Failed to write sidecar for {backup_path.name}: {e}")
            self._remove_quietly(backup_path)
            return BackupResult(success=False, error=format_exception(e))

        logger.info(f"Created backup: {backup_path.name}")

        prune = self.prune_backups(file_name)
        return BackupResult(
            success=True,
            backup_path=str(backup_path),
            backup_name=backup_path.name,
            pruned=prune.deleted,
        )

    def prune_backups(self, original_name: str) -> PruneResult:
        """
        Apply the backup policy to all backups of one original filename.

        Backups ranked at or beyond ``max_backups_per_file`` (newest first) and
        backups older than ``max_backup_age`` are removed with their sidecars.
        """
        result = PruneResult()
        try:
            names = self._fs.list_dir(self._backup_dir)
        except FilesystemError as e:
            logger.error(f"Failed to clean old backups in {self._backup_dir}: {e}")
            result.success = False
            result.errors.append(format_exception(e))
            return result

        now = self._clock()
        backups: list[tuple[int, int, Path]] = []
        for name in names:
            if name.endswith(SIDECAR_SUFFIX) or original_name_of(name) != original_name:
                continue
            path = self._backup_dir / name
            try:
                st = self._fs.stat(path)
            except FilesystemError as e:
                logger.debug(f"Skipping {name} while pruning: {e}")
                continue
            stamp = int(name.split("_", 1)[0])
            backups.append((st.modified_ms, stamp, path))

        backups.sort(reverse=True)
        max_age_ms = self._policy.max_backup_age_ms

        for rank, (modified_ms, _, path) in enumerate(backups):
            if rank < self._policy.max_backups_per_file and now - modified_ms <= max_age_ms:
                continue
            try:
                self._fs.remove(path)
            except ArtifactNotFoundError:
                pass
            except FilesystemError as e:
                result.failed += 1
                result.errors.append(format_exception(e))
                logger.warning(f"Failed to delete old backup {path.name}: {e}")
                continue
            try:
                self._fs.remove(self._sidecar_path(path))
            except ArtifactNotFoundError:
                pass
            except FilesystemError as e:
                result.errors.append(format_exception(e))
                logger.warning(f"Failed to delete sidecar of {path.name}: {e}")
            result.deleted += 1
            logger.info(f"Deleted old backup: {path.name}")

        return result

    def _load_sidecar(self, backup_name: str) -> Any:
        """
        Read and parse the sidecar of a backup.

        Raises:
            MetadataCorruptError: If the sidecar is missing, not UTF-8 or not JSON
            FilesystemError: If the sidecar cannot be read
        """
        sidecar_path = self._sidecar_path(self._backup_dir / backup_name)
        try:
            raw = self._fs.read_text(sidecar_path)
        except ArtifactNotFoundError as e:
            raise MetadataCorruptError(
                "Backup metadata is missing",
                backup_name=backup_name,
                sidecar_path=str(sidecar_path),
            ) from e
        except UnicodeDecodeError as e:
            raise MetadataCorruptError(
                f"Backup metadata is not valid UTF-8: {e}",
                backup_name=backup_name,
                sidecar_path=str(sidecar_path),
            ) from e
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise MetadataCorruptError(
                f"Backup metadata is not valid JSON: {e}",
                backup_name=backup_name,
                sidecar_path=str(sidecar_path),
            ) from e

    def read_record(self, backup_name: str) -> BackupRecord:
        """
        Load a backup record from its sidecar.

        Raises:
            MetadataCorruptError: If the sidecar is missing, unparsable or
                lacks valid required fields
            FilesystemError: If the sidecar cannot be read or the backup copy
                cannot be stat'ed
        """
        data = self._load_sidecar(backup_name)
        size = self._fs.stat(self._backup_dir / backup_name).size
        return BackupRecord.from_sidecar(backup_name, data, size=size)

    def restore_backup(
        self,
        backup_name: str,
        target_path: Path | str | None = None,
    ) -> RestoreResult:
        """
        Copy a backup back into place.

        Args:
            backup_name: Filename of the backup inside the store
            target_path: Destination (default: the sidecar's originalPath)

        Returns:
            RestoreResult; fails without copying when the sidecar is invalid
        """
        if not backup_name or Path(backup_name).name != backup_name:
            return RestoreResult(success=False, error=f"Invalid backup name: {backup_name!r}")

        try:
            metadata = self._load_sidecar(backup_name)
            record = BackupRecord.from_sidecar(backup_name, metadata)
        except (MetadataCorruptError, FilesystemError) as e:
            logger.error(f"Restore failed for {backup_name}: {e}")
            return RestoreResult(success=False, error=format_exception(e))

        backup_path = self._backup_dir / backup_name
        restore_path = Path(target_path) if target_path else Path(record.original_path)
        try:
            self._fs.copy_file(backup_path, restore_path)
        except FilesystemError as e:
            logger.error(f"Restore failed for {backup_name}: {e}")
            return RestoreResult(success=False, error=format_exception(e))

        logger.info(f"Restored backup {backup_name} to {restore_path}")
        return RestoreResult(success=True, restored_to=str(restore_path), metadata=metadata)

    def list_backups(self) -> list[BackupRecord]:
        """Return every valid backup, newest first."""
        try:
            names = self._fs.list_dir(self._backup_dir)
        except FilesystemError as e:
            logger.error(f"Failed to list backups in {self._backup_dir}: {e}")
            return []

        records: list[BackupRecord] = []
        for name in names:
            if name.startswith(".") or name.endswith(SIDECAR_SUFFIX):
                continue
            try:
                records.append(self.read_record(name))
            except (MetadataCorruptError, FilesystemError) as e:
                logger.debug(f"Skipping {name}: {e}")

        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records

    def _remove_quietly(self, path: Path) -> None:
        try:
            self._fs.remove(path)
        except FilesystemError as e:
            logger.warning(f"Could not remove orphaned backup copy {path.name}: {e}")


@lru_cache(maxsize=1)
def get_backup_manager() -> BackupManager:
    """
    Get the process-wide backup manager, configured from settings.

    A failed load is not cached, so the next call retries.

    Raises:
        ConfigurationError: If the UR_* settings are invalid
    """
    from upload_retention.config import load_settings

    settings = load_settings()
    manager = BackupManager(backup_dir=settings.resolved_backup_dir, policy=settings.backup_policy())
    if not manager.init():
        logger.warning(f"Backup store {manager.backup_dir} is not available")
    return manager
