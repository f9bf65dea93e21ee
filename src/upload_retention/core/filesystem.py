"""
Filesystem port.

Every directory access made by the retention scanner and the backup manager
goes through the narrow ``Filesystem`` interface defined here:

- ``LocalFilesystem`` performs real I/O with pathlib/shutil
- ``InMemoryFilesystem`` keeps files in a dict for tests and previews

Neither implementation caches directory state; the directory tree itself is
the only source of truth.
"""

import os
import shutil
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from upload_retention.core.exceptions import ArtifactNotFoundError, FilesystemError


def now_ms() -> int:
    """Return the current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class FileStat:
    """Result of a stat call."""

    size: int
    modified_ms: int
    is_file: bool = True


def _wrap_os_error(error: OSError, path: Path, operation: str) -> FilesystemError:
    """Convert an OSError into the matching FilesystemError subclass."""
    if isinstance(error, FileNotFoundError):
        return ArtifactNotFoundError(
            f"No such file or directory: {path}", path=str(path), operation=operation
        )
    return FilesystemError(
        f"{operation} failed: {error.strerror or error}",
        path=str(path),
        operation=operation,
    )


class Filesystem(ABC):
    """
    Abstract filesystem port.

    All methods raise ArtifactNotFoundError when the target is missing and
    FilesystemError for any other failure.
    """

    @abstractmethod
    def list_dir(self, directory: Path) -> list[str]:
        """Return the entry names of a directory (files and subdirectories)."""

    @abstractmethod
    def stat(self, path: Path) -> FileStat:
        """Return size and modification time of a path."""

    @abstractmethod
    def exists(self, path: Path) -> bool:
        """Return True if the path exists."""

    @abstractmethod
    def copy_file(self, source: Path, destination: Path) -> None:
        """Copy file content; the destination gets a fresh modification time."""

    @abstractmethod
    def remove(self, path: Path) -> None:
        """Delete a single file."""

    @abstractmethod
    def read_bytes(self, path: Path) -> bytes:
        """Read a whole file."""

    @abstractmethod
    def write_bytes(self, path: Path, data: bytes) -> None:
        """Create or replace a file."""

    @abstractmethod
    def make_dirs(self, path: Path) -> None:
        """Create a directory and its parents; no error if it exists."""

    def read_text(self, path: Path, encoding: str = "utf-8") -> str:
        """Read a whole file as text."""
        return self.read_bytes(path).decode(encoding)

    def write_text(self, path: Path, content: str, encoding: str = "utf-8") -> None:
        """Create or replace a text file."""
        self.write_bytes(path, content.encode(encoding))


class LocalFilesystem(Filesystem):
    """Filesystem port backed by the host filesystem."""

    def list_dir(self, directory: Path) -> list[str]:
        try:
            return sorted(os.listdir(directory))
        except OSError as e:
            raise _wrap_os_error(e, directory, "list_dir") from e

    def stat(self, path: Path) -> FileStat:
        try:
            st = os.stat(path)
        except OSError as e:
            raise _wrap_os_error(e, path, "stat") from e
        return FileStat(
            size=st.st_size,
            modified_ms=int(st.st_mtime * 1000),
            is_file=Path(path).is_file(),
        )

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def copy_file(self, source: Path, destination: Path) -> None:
        # copyfile, not copy2: backups are ranked by their own mtime
        try:
            shutil.copyfile(source, destination)
        except OSError as e:
            failed = source if not Path(source).exists() else destination
            raise _wrap_os_error(e, failed, "copy") from e

    def remove(self, path: Path) -> None:
        try:
            Path(path).unlink()
        except OSError as e:
            raise _wrap_os_error(e, path, "remove") from e

    def read_bytes(self, path: Path) -> bytes:
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise _wrap_os_error(e, path, "read") from e

    def write_bytes(self, path: Path, data: bytes) -> None:
        try:
            Path(path).write_bytes(data)
        except OSError as e:
            raise _wrap_os_error(e, path, "write") from e

    def make_dirs(self, path: Path) -> None:
        try:
            Path(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise _wrap_os_error(e, path, "make_dirs") from e


@dataclass
class _MemoryFile:
    data: bytes
    modified_ms: int


class InMemoryFilesystem(Filesystem):
    """
    Dict-backed filesystem port.

    Paths are normalised to strings. Writes require the parent directory to
    exist, like the host filesystem. Failures can be injected per operation
    and path with ``inject_failure``.
    """

    def __init__(self, clock: Callable[[], int] | None = None):
        """
        Initialize an empty in-memory filesystem.

        Args:
            clock: Callable returning epoch milliseconds, used as the
                modification time of written files (default: wall clock)
        """
        self._clock = clock or now_ms
        self._files: dict[str, _MemoryFile] = {}
        self._dirs: set[str] = {"/", "."}
        self._failures: dict[tuple[str, str], FilesystemError] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _key(path: Path | str) -> str:
        return os.path.normpath(str(path))

    def _parent_exists(self, key: str) -> bool:
        parent = os.path.dirname(key) or "."
        return parent in self._dirs

    def _check_failure(self, operation: str, path: Path | str) -> None:
        error = self._failures.get((operation, self._key(path)))
        if error is not None:
            raise error

    def inject_failure(
        self,
        operation: str,
        path: Path | str,
        error: FilesystemError | None = None,
    ) -> None:
        """Make every future ``operation`` on ``path`` raise ``error``."""
        key = self._key(path)
        self._failures[(operation, key)] = error or FilesystemError(
            f"{operation} failed: injected failure", path=key, operation=operation
        )

    def add_file(
        self,
        path: Path | str,
        data: bytes = b"",
        modified_ms: int | None = None,
    ) -> None:
        """Create a file, creating parent directories as needed."""
        key = self._key(path)
        with self._lock:
            self.make_dirs(Path(os.path.dirname(key) or "."))
            self._files[key] = _MemoryFile(
                data=data,
                modified_ms=self._clock() if modified_ms is None else modified_ms,
            )

    def set_modified(self, path: Path | str, modified_ms: int) -> None:
        """Set the modification time of an existing file."""
        key = self._key(path)
        with self._lock:
            if key not in self._files:
                raise ArtifactNotFoundError(
                    f"No such file or directory: {key}", path=key, operation="set_modified"
                )
            self._files[key].modified_ms = modified_ms

    def snapshot(self) -> dict[str, bytes]:
        """Return a copy of every file's content keyed by path."""
        with self._lock:
            return {key: entry.data for key, entry in self._files.items()}

    def list_dir(self, directory: Path) -> list[str]:
        self._check_failure("list_dir", directory)
        key = self._key(directory)
        with self._lock:
            if key not in self._dirs:
                raise ArtifactNotFoundError(
                    f"No such file or directory: {key}", path=key, operation="list_dir"
                )
            names = {
                os.path.basename(entry)
                for entry in [*self._files, *self._dirs]
                if entry != key and os.path.dirname(entry) == key
            }
        return sorted(names)

    def stat(self, path: Path) -> FileStat:
        self._check_failure("stat", path)
        key = self._key(path)
        with self._lock:
            entry = self._files.get(key)
            if entry is not None:
                return FileStat(size=len(entry.data), modified_ms=entry.modified_ms)
            if key in self._dirs:
                return FileStat(size=0, modified_ms=0, is_file=False)
        raise ArtifactNotFoundError(
            f"No such file or directory: {key}", path=key, operation="stat"
        )

    def exists(self, path: Path) -> bool:
        key = self._key(path)
        with self._lock:
            return key in self._files or key in self._dirs

    def copy_file(self, source: Path, destination: Path) -> None:
        self._check_failure("copy", source)
        self._check_failure("copy", destination)
        data = self.read_bytes(source)
        self.write_bytes(destination, data)

    def remove(self, path: Path) -> None:
        self._check_failure("remove", path)
        key = self._key(path)
        with self._lock:
            if self._files.pop(key, None) is None:
                raise ArtifactNotFoundError(
                    f"No such file or directory: {key}", path=key, operation="remove"
                )

    def read_bytes(self, path: Path) -> bytes:
        self._check_failure("read", path)
        key = self._key(path)
        with self._lock:
            entry = self._files.get(key)
            if entry is None:
                raise ArtifactNotFoundError(
                    f"No such file or directory: {key}", path=key, operation="read"
                )
            return entry.data

    def write_bytes(self, path: Path, data: bytes) -> None:
        self._check_failure("write", path)
        key = self._key(path)
        with self._lock:
            if not self._parent_exists(key):
                raise ArtifactNotFoundError(
                    f"No such file or directory: {key}", path=key, operation="write"
                )
            self._files[key] = _MemoryFile(data=bytes(data), modified_ms=self._clock())

    def make_dirs(self, path: Path) -> None:
        self._check_failure("make_dirs", path)
        key = self._key(path)
        with self._lock:
            if key in self._files:
                raise FilesystemError(
                    f"make_dirs failed: {key} is a file", path=key, operation="make_dirs"
                )
            while key not in self._dirs:
                self._dirs.add(key)
                key = os.path.dirname(key) or "."
