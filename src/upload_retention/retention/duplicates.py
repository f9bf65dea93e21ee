"""
Duplicate checks used by the retention scanner.

The scanner asks a ``DuplicateCheck`` whether an older version of a document
duplicates a newer version it already decided to keep. The default
``SizeDuplicateCheck`` only compares byte sizes: two different spreadsheets
that happen to have the same size are treated as duplicates, so it can
produce false positives. ``ContentHashDuplicateCheck`` compares SHA-256
digests instead and can be passed to the scanner without changing the
retention rules.
"""

import hashlib
import logging
from abc import ABC, abstractmethod

from upload_retention.core.exceptions import FilesystemError
from upload_retention.core.filesystem import Filesystem
from upload_retention.retention.models import Artifact

logger = logging.getLogger(__name__)


class DuplicateCheck(ABC):
    """Equality strategy for versions of the same logical key."""

    @abstractmethod
    def is_duplicate(self, candidate: Artifact, kept: Artifact) -> bool:
        """Return True if ``candidate`` duplicates the already-kept ``kept``."""


class SizeDuplicateCheck(DuplicateCheck):
    """Treat equal byte sizes as equal content."""

    def is_duplicate(self, candidate: Artifact, kept: Artifact) -> bool:
        return candidate.size == kept.size


class ContentHashDuplicateCheck(DuplicateCheck):
    """
    Compare SHA-256 digests of both files.

    Sizes are compared first so differing files are never read. If either
    file cannot be read the versions are treated as distinct, so an
    unreadable file is never deleted as a duplicate.
    """

    def __init__(self, filesystem: Filesystem):
        self._fs = filesystem

    def _digest(self, artifact: Artifact) -> str:
        return hashlib.sha256(self._fs.read_bytes(artifact.path)).hexdigest()

    def is_duplicate(self, candidate: Artifact, kept: Artifact) -> bool:
        if candidate.size != kept.size:
            return False
        try:
            return self._digest(candidate) == self._digest(kept)
        except FilesystemError as e:
            logger.warning(f"Could not hash {candidate.name} or {kept.name}: {e}")
            return False
