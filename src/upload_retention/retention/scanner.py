"""
Retention scanner for the working upload directory.

Scans a directory of uploaded artifacts, groups the files by logical key and
deletes the versions a RetentionPolicy does not allow to survive:

1. List and stat every entry, newest first
2. Group by logical key in that order (a group is discovered when its own
   newest member is reached)
3. Walk groups in discovery order and decide keep/delete per version,
   threading the global kept tally from group to group
4. Unless dry-running, delete every marked file independently
"""

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from upload_retention.core.exceptions import (
    ArtifactNotFoundError,
    FilesystemError,
    ScanError,
    format_exception,
)
from upload_retention.core.filesystem import Filesystem, LocalFilesystem, now_ms
from upload_retention.retention.duplicates import DuplicateCheck, SizeDuplicateCheck
from upload_retention.retention.models import (
    Artifact,
    ArtifactGroup,
    DecisionAction,
    DeletionReason,
    ReconcileResult,
    RetentionDecision,
    RetentionPolicy,
    describe_reason,
)

logger = logging.getLogger(__name__)

DEFAULT_IO_WORKERS = 8


@dataclass(frozen=True)
class KeepTally:
    """Running count of kept artifacts across all groups processed so far."""

    kept: int = 0

    def increment(self) -> "KeepTally":
        return KeepTally(kept=self.kept + 1)


def group_artifacts(artifacts: list[Artifact]) -> list[ArtifactGroup]:
    """
    Group artifacts by logical key.

    Artifacts must already be sorted newest first; groups are returned in
    the order their newest member appears.
    """
    groups: dict[str, ArtifactGroup] = {}
    for artifact in artifacts:
        key = artifact.logical_key
        if key not in groups:
            groups[key] = ArtifactGroup(logical_key=key)
        groups[key].versions.append(artifact)
    for group in groups.values():
        group.sort_versions()
    return list(groups.values())


def plan_group(
    group: ArtifactGroup,
    policy: RetentionPolicy,
    tally: KeepTally,
    duplicate_check: DuplicateCheck,
) -> tuple[list[RetentionDecision], KeepTally]:
    """
    Decide keep/delete for every version of one group.

    Args:
        group: Versions of one logical key, newest first
        policy: Retention rules
        tally: Global kept count before this group
        duplicate_check: Equality strategy for the duplicate rule

    Returns:
        Tuple of (decisions in version order, tally after this group)
    """
    versions_to_keep = policy.versions_to_keep(len(group.versions))
    max_age_ms = policy.max_age_ms
    kept_versions: list[Artifact] = []
    decisions: list[RetentionDecision] = []

    for index, artifact in enumerate(group.versions):
        reason: DeletionReason | None = None

        if policy.max_files is not None and tally.kept >= policy.max_files and index > 0:
            reason = DeletionReason.EXCEEDS_GLOBAL_CAP
        elif artifact.age > max_age_ms and index >= versions_to_keep:
            reason = DeletionReason.TOO_OLD
        elif len(kept_versions) >= versions_to_keep:
            reason = DeletionReason.EXCEEDS_GROUP_VERSION_CAP
        elif any(duplicate_check.is_duplicate(artifact, kept) for kept in kept_versions):
            reason = DeletionReason.DUPLICATE_OF_NEWER_VERSION

        if reason is None:
            kept_versions.append(artifact)
            tally = tally.increment()

        decisions.append(
            RetentionDecision(
                name=artifact.name,
                path=artifact.path,
                logical_key=group.logical_key,
                size=artifact.size,
                age=artifact.age,
                version_index=index,
                action=DecisionAction.DELETE if reason else DecisionAction.KEEP,
                reason=reason,
            )
        )

    return decisions, tally


def plan_retention(
    groups: list[ArtifactGroup],
    policy: RetentionPolicy,
    duplicate_check: DuplicateCheck | None = None,
) -> list[RetentionDecision]:
    """Plan decisions for all groups in discovery order."""
    check = duplicate_check or SizeDuplicateCheck()
    tally = KeepTally()
    decisions: list[RetentionDecision] = []
    for group in groups:
        group_decisions, tally = plan_group(group, policy, tally, check)
        decisions.extend(group_decisions)
    return decisions


class RetentionScanner:
    """
    Reconciles an upload directory against a RetentionPolicy.

    ``reconcile`` never raises: scan-level failures come back as
    ``ReconcileResult(success=False)`` and per-file deletion failures are
    counted in the result.
    """

    def __init__(
        self,
        filesystem: Filesystem | None = None,
        duplicate_check: DuplicateCheck | None = None,
        clock: Callable[[], int] | None = None,
        io_workers: int = DEFAULT_IO_WORKERS,
    ):
        """
        Initialize the scanner.

        Args:
            filesystem: Filesystem port (default: LocalFilesystem)
            duplicate_check: Duplicate strategy (default: size comparison)
            clock: Callable returning epoch milliseconds
            io_workers: Maximum concurrent stat/delete operations
        """
        self._fs = filesystem or LocalFilesystem()
        self._duplicate_check = duplicate_check or SizeDuplicateCheck()
        self._clock = clock or now_ms
        self._io_workers = max(1, io_workers)

    def scan(self, directory: Path | str) -> list[Artifact]:
        """
        Build artifacts for every regular file in a directory, newest first.

        Raises:
            ScanError: If the directory cannot be listed or an entry cannot
                be stat'ed for a reason other than having vanished
        """
        directory = Path(directory)
        try:
            names = self._fs.list_dir(directory)
        except FilesystemError as e:
            raise ScanError(f"Cannot read directory: {e.message}", directory=str(directory)) from e

        now = self._clock()

        def stat_entry(name: str) -> Artifact | None:
            path = directory / name
            try:
                st = self._fs.stat(path)
            except ArtifactNotFoundError:
                logger.debug(f"Skipping {name}: removed during scan")
                return None
            if not st.is_file:
                return None
            return Artifact(
                name=name,
                path=path,
                size=st.size,
                modified_time=st.modified_ms,
                age=now - st.modified_ms,
            )

        try:
            with ThreadPoolExecutor(max_workers=self._io_workers) as executor:
                entries = list(executor.map(stat_entry, names))
        except FilesystemError as e:
            raise ScanError(f"Cannot stat entry: {e.message}", directory=str(directory)) from e

        artifacts = [a for a in entries if a is not None]
        artifacts.sort(key=lambda a: a.modified_time, reverse=True)
        return artifacts

    def plan(self, artifacts: list[Artifact], policy: RetentionPolicy) -> list[RetentionDecision]:
        """Compute keep/delete decisions without touching the filesystem."""
        return plan_retention(group_artifacts(artifacts), policy, self._duplicate_check)

    def reconcile(
        self,
        directory: Path | str,
        policy: RetentionPolicy | None = None,
    ) -> ReconcileResult:
        """
        Apply a retention policy to a directory.

        Args:
            directory: Upload directory to reconcile
            policy: Retention rules (default: RetentionPolicy())

        Returns:
            ReconcileResult describing the plan and what was deleted
        """
        policy = policy or RetentionPolicy()
        directory = Path(directory)

        try:
            return self._reconcile(directory, policy)
        except ScanError as e:
            logger.error(f"Retention scan failed for {directory}: {e}")
            return ReconcileResult(
                success=False,
                error=e.message,
                directory=str(directory),
                dry_run=policy.dry_run,
            )
        except Exception as e:
            logger.exception(f"Unexpected error reconciling {directory}")
            return ReconcileResult(
                success=False,
                error=format_exception(e),
                directory=str(directory),
                dry_run=policy.dry_run,
            )

    def _reconcile(self, directory: Path, policy: RetentionPolicy) -> ReconcileResult:
        artifacts = self.scan(directory)
        groups = group_artifacts(artifacts)
        decisions = plan_retention(groups, policy, self._duplicate_check)
        to_delete = [d for d in decisions if d.is_deletion]
        kept = [d for d in decisions if not d.is_deletion]

        kept_per_key = Counter(d.logical_key for d in kept)

        result = ReconcileResult(
            success=True,
            directory=str(directory),
            total_files=len(artifacts),
            unique_files=len(groups),
            backups_kept=sum(1 for count in kept_per_key.values() if count > 1),
            kept=len(kept),
            reclaimable_bytes=sum(d.size for d in to_delete),
            dry_run=policy.dry_run,
            decisions=decisions,
        )

        logger.info(
            f"Cleanup summary for {directory}: total={result.total_files} "
            f"unique={result.unique_files} to_delete={len(to_delete)} "
            f"to_keep={result.kept} backups_kept={result.backups_kept} "
            f"total_size={sum(a.size for a in artifacts)} "
            f"size_to_delete={result.reclaimable_bytes} dry_run={policy.dry_run}"
        )
        group_sizes = {g.logical_key: len(g.versions) for g in groups}
        for decision in to_delete:
            logger.debug(
                f"{'Would delete' if policy.dry_run else 'Deleting'} {decision.name} "
                f"(age {decision.age // (60 * 60 * 1000)} hours): "
                + describe_reason(
                    decision.reason,  # type: ignore[arg-type]
                    policy,
                    policy.versions_to_keep(group_sizes[decision.logical_key]),
                )
            )

        if policy.dry_run or not to_delete:
            return result

        self._delete_planned(to_delete, result)
        return result

    def _delete_planned(self, to_delete: list[RetentionDecision], result: ReconcileResult) -> None:
        """Delete every planned file independently and tally the outcomes."""

        def delete_one(decision: RetentionDecision) -> str | None:
            try:
                self._fs.remove(decision.path)
                return None
            except FilesystemError as e:
                return format_exception(e)

        with ThreadPoolExecutor(max_workers=self._io_workers) as executor:
            outcomes = list(executor.map(delete_one, to_delete))

        for decision, error in zip(to_delete, outcomes):
            if error is None:
                result.deleted += 1
                result.freed_bytes += decision.size
            else:
                result.failed += 1
                result.failures.append(decision.name)
                logger.warning(f"Failed to delete {decision.name}: {error}")

        logger.info(f"Deleted {result.deleted} files, {result.failed} failures")
