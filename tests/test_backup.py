"""Tests for the backup manager and its sidecar records."""

import json
from datetime import timedelta
from pathlib import Path

import pytest

from upload_retention.backup import manager as manager_module
from upload_retention.backup.manager import BackupManager, get_backup_manager
from upload_retention.backup.models import (
    BackupPolicy,
    BackupRecord,
    backup_name_for,
    iso_date,
    original_name_of,
)
from upload_retention.core.exceptions import ConfigurationError, MetadataCorruptError
from upload_retention.core.filesystem import InMemoryFilesystem

from conftest import DAY_MS, FakeClock

UPLOADS = Path("/uploads")
STORE = Path("/uploads/.backups")


@pytest.fixture
def manager(memory_fs: InMemoryFilesystem, clock: FakeClock) -> BackupManager:
    """Provide an initialized manager over the in-memory filesystem."""
    mgr = BackupManager(backup_dir=STORE, filesystem=memory_fs, clock=clock)
    assert mgr.init() is True
    return mgr


def _store_files(fs: InMemoryFilesystem) -> list[str]:
    return [n for n in fs.list_dir(STORE) if n != ".gitignore"]


def _backups(fs: InMemoryFilesystem) -> list[str]:
    return [n for n in _store_files(fs) if not n.endswith(".json")]


# =============================================================================
# Model Tests
# =============================================================================


class TestBackupNames:
    """Tests for backup naming helpers."""

    def test_round_trip(self) -> None:
        """Test building and parsing a backup name."""
        name = backup_name_for("data.xlsx", 1700000000000)
        assert name == "1700000000000_backup_data.xlsx"
        assert original_name_of(name) == "data.xlsx"

    def test_non_backup_name(self) -> None:
        """Test that unrelated names have no original."""
        assert original_name_of("data.xlsx") is None
        assert original_name_of(".gitignore") is None

    def test_iso_date(self) -> None:
        """Test ISO rendering with milliseconds and Z suffix."""
        assert iso_date(1700000000123) == "2023-11-14T22:13:20.123Z"


class TestBackupRecord:
    """Tests for BackupRecord sidecar conversion."""

    def test_reserved_keys_win(self) -> None:
        """Test that caller metadata cannot override reserved keys."""
        record = BackupRecord(
            name="1_backup_a.xlsx",
            original_path="/uploads/a.xlsx",
            backup_path="/uploads/.backups/1_backup_a.xlsx",
            timestamp=1,
            date=iso_date(1),
            metadata={"originalPath": "/etc/passwd", "user": "alice"},
        )
        sidecar = record.to_sidecar()

        assert sidecar["originalPath"] == "/uploads/a.xlsx"
        assert sidecar["user"] == "alice"

    def test_from_sidecar_requires_fields(self) -> None:
        """Test that incomplete sidecars are rejected."""
        with pytest.raises(MetadataCorruptError):
            BackupRecord.from_sidecar("1_backup_a.xlsx", {"backupPath": "x"})
        with pytest.raises(MetadataCorruptError):
            BackupRecord.from_sidecar("1_backup_a.xlsx", ["not", "a", "dict"])

    def test_policy_numeric_age(self) -> None:
        """Test that a numeric max_backup_age is milliseconds."""
        policy = BackupPolicy(max_backup_age=DAY_MS)
        assert policy.max_backup_age == timedelta(days=1)
        assert BackupPolicy(max_backup_age=None).max_backup_age_ms == float("inf")


# =============================================================================
# Manager Tests
# =============================================================================


class TestInit:
    """Tests for BackupManager.init."""

    def test_creates_store_and_gitignore(self, manager: BackupManager, memory_fs) -> None:
        """Test that init creates the directory and its .gitignore."""
        assert memory_fs.read_text(STORE / ".gitignore") == "*\n!.gitignore\n"
        assert manager.init() is True

    def test_failure_returns_false(self, memory_fs: InMemoryFilesystem, clock) -> None:
        """Test that an uncreatable store reports False."""
        memory_fs.inject_failure("make_dirs", STORE)
        mgr = BackupManager(backup_dir=STORE, filesystem=memory_fs, clock=clock)
        assert mgr.init() is False


class TestCreateBackup:
    """Tests for BackupManager.create_backup."""

    def test_missing_original_is_skipped(self, manager: BackupManager, memory_fs) -> None:
        """Test that a missing original produces no store entries."""
        result = manager.create_backup(UPLOADS / "missing.xlsx")

        assert result.success is True
        assert result.skipped is True
        assert result.reason == "Original file does not exist"
        assert _store_files(memory_fs) == []

    def test_creates_copy_and_sidecar(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem, clock: FakeClock
    ) -> None:
        """Test the backup pair and its sidecar layout."""
        memory_fs.add_file(UPLOADS / "data.xlsx", b"v1")

        result = manager.create_backup(UPLOADS / "data.xlsx", {"user": "alice"})

        name = f"{clock.now}_backup_data.xlsx"
        assert result.success is True
        assert result.skipped is False
        assert result.backup_name == name
        assert result.backup_path == str(STORE / name)
        assert memory_fs.read_bytes(STORE / name) == b"v1"

        sidecar = json.loads(memory_fs.read_text(STORE / f"{name}.json"))
        assert sidecar == {
            "originalPath": str(UPLOADS / "data.xlsx"),
            "backupPath": str(STORE / name),
            "timestamp": clock.now,
            "date": iso_date(clock.now),
            "user": "alice",
        }

    def test_reserved_metadata_ignored(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem, clock: FakeClock
    ) -> None:
        """Test that caller metadata cannot redirect a restore."""
        memory_fs.add_file(UPLOADS / "data.xlsx", b"v1")

        result = manager.create_backup(
            UPLOADS / "data.xlsx", {"originalPath": "/etc/passwd", "timestamp": 0}
        )

        sidecar = json.loads(memory_fs.read_text(STORE / f"{result.backup_name}.json"))
        assert sidecar["originalPath"] == str(UPLOADS / "data.xlsx")
        assert sidecar["timestamp"] == clock.now

    def test_same_millisecond_backups_do_not_collide(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem
    ) -> None:
        """Test that two backups in the same millisecond both survive."""
        memory_fs.add_file(UPLOADS / "data.xlsx", b"v1")

        first = manager.create_backup(UPLOADS / "data.xlsx")
        second = manager.create_backup(UPLOADS / "data.xlsx")

        assert first.backup_name != second.backup_name
        assert len(_backups(memory_fs)) == 2

    def test_uninitialized_store_fails(
        self, memory_fs: InMemoryFilesystem, clock: FakeClock
    ) -> None:
        """Test that copying into a missing store is an error, not a skip."""
        memory_fs.add_file(UPLOADS / "data.xlsx", b"v1")
        mgr = BackupManager(backup_dir=Path("/elsewhere/store"), filesystem=memory_fs, clock=clock)

        result = mgr.create_backup(UPLOADS / "data.xlsx")

        assert result.success is False
        assert result.skipped is False
        assert result.error

    def test_invalid_metadata_fails_without_copy(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem
    ) -> None:
        """Test that metadata with non-string keys is rejected before copying."""
        memory_fs.add_file(UPLOADS / "data.xlsx", b"v1")

        result = manager.create_backup(UPLOADS / "data.xlsx", {1: "x"})

        assert result.success is False
        assert "Invalid backup metadata" in result.error
        assert _store_files(memory_fs) == []

    def test_sidecar_failure_removes_copy(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem, clock: FakeClock
    ) -> None:
        """Test that no copy is left behind without its sidecar."""
        memory_fs.add_file(UPLOADS / "data.xlsx", b"v1")
        name = f"{clock.now}_backup_data.xlsx"
        memory_fs.inject_failure("write", STORE / f"{name}.json")

        result = manager.create_backup(UPLOADS / "data.xlsx")

        assert result.success is False
        assert _store_files(memory_fs) == []


class TestPruneBackups:
    """Tests for per-file backup pruning."""

    @pytest.mark.parametrize("count", [1, 2, 3, 5])
    def test_keeps_at_most_max_per_file(
        self,
        manager: BackupManager,
        memory_fs: InMemoryFilesystem,
        clock: FakeClock,
        count: int,
    ) -> None:
        """Test that min(N, max_backups_per_file) backups remain."""
        memory_fs.add_file(UPLOADS / "data.xlsx", b"v")
        names = []
        for _ in range(count):
            names.append(manager.create_backup(UPLOADS / "data.xlsx").backup_name)
            clock.advance(1000)

        remaining = _backups(memory_fs)
        assert len(remaining) == min(count, 3)
        assert sorted(remaining) == sorted(names[-3:])
        assert len(_store_files(memory_fs)) == 2 * len(remaining)

    def test_prunes_by_age(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem, clock: FakeClock
    ) -> None:
        """Test that backups older than max_backup_age are removed."""
        memory_fs.add_file(UPLOADS / "data.xlsx", b"v")
        old = manager.create_backup(UPLOADS / "data.xlsx")
        clock.advance(31 * DAY_MS)

        new = manager.create_backup(UPLOADS / "data.xlsx")

        assert new.pruned == 1
        assert _backups(memory_fs) == [new.backup_name]
        assert not memory_fs.exists(STORE / f"{old.backup_name}.json")

    def test_other_files_untouched(
        self, memory_fs: InMemoryFilesystem, clock: FakeClock
    ) -> None:
        """Test that pruning only affects backups of the same original name."""
        mgr = BackupManager(
            backup_dir=STORE,
            policy=BackupPolicy(max_backups_per_file=1),
            filesystem=memory_fs,
            clock=clock,
        )
        mgr.init()
        memory_fs.add_file(UPLOADS / "a.xlsx", b"a")
        memory_fs.add_file(UPLOADS / "mydata.xlsx", b"m")
        memory_fs.add_file(UPLOADS / "data.xlsx", b"d")

        mgr.create_backup(UPLOADS / "a.xlsx")
        mgr.create_backup(UPLOADS / "mydata.xlsx")
        clock.advance(10)
        mgr.create_backup(UPLOADS / "data.xlsx")
        clock.advance(10)
        result = mgr.create_backup(UPLOADS / "data.xlsx")

        assert result.pruned == 1
        originals = sorted(original_name_of(n) for n in _backups(memory_fs))
        assert originals == ["a.xlsx", "data.xlsx", "mydata.xlsx"]

    def test_failed_removal_keeps_sidecar(
        self, memory_fs: InMemoryFilesystem, clock: FakeClock
    ) -> None:
        """Test that a sidecar is never orphaned from its surviving copy."""
        mgr = BackupManager(
            backup_dir=STORE,
            policy=BackupPolicy(max_backups_per_file=1),
            filesystem=memory_fs,
            clock=clock,
        )
        mgr.init()
        memory_fs.add_file(UPLOADS / "data.xlsx", b"d")
        first = mgr.create_backup(UPLOADS / "data.xlsx")
        memory_fs.inject_failure("remove", STORE / first.backup_name)
        clock.advance(10)

        mgr.create_backup(UPLOADS / "data.xlsx")
        result = mgr.prune_backups("data.xlsx")

        assert result.failed == 1
        assert memory_fs.exists(STORE / first.backup_name)
        assert memory_fs.exists(STORE / f"{first.backup_name}.json")


class TestRestoreBackup:
    """Tests for BackupManager.restore_backup."""

    def test_restores_original_content(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem, clock: FakeClock
    ) -> None:
        """Test that a restore brings back the bytes that were backed up."""
        memory_fs.add_file(UPLOADS / "data.xlsx", b"version one")
        backup = manager.create_backup(UPLOADS / "data.xlsx", {"user": "alice"})
        memory_fs.write_bytes(UPLOADS / "data.xlsx", b"version two")

        result = manager.restore_backup(backup.backup_name)

        assert result.success is True
        assert result.restored_to == str(UPLOADS / "data.xlsx")
        assert result.metadata["user"] == "alice"
        assert memory_fs.read_bytes(UPLOADS / "data.xlsx") == b"version one"

    def test_restore_to_target(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem
    ) -> None:
        """Test restoring to an explicit target path."""
        memory_fs.add_file(UPLOADS / "data.xlsx", b"version one")
        backup = manager.create_backup(UPLOADS / "data.xlsx")

        result = manager.restore_backup(backup.backup_name, UPLOADS / "copy.xlsx")

        assert result.success is True
        assert memory_fs.read_bytes(UPLOADS / "copy.xlsx") == b"version one"

    def test_missing_sidecar_fails(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem
    ) -> None:
        """Test that a backup without metadata is neither listed nor restorable."""
        memory_fs.add_file(UPLOADS / "data.xlsx", b"v1")
        backup = manager.create_backup(UPLOADS / "data.xlsx")
        memory_fs.remove(STORE / f"{backup.backup_name}.json")
        memory_fs.write_bytes(UPLOADS / "data.xlsx", b"v2")

        result = manager.restore_backup(backup.backup_name)

        assert result.success is False
        assert "metadata is missing" in result.error
        assert manager.list_backups() == []
        assert memory_fs.read_bytes(UPLOADS / "data.xlsx") == b"v2"

    def test_corrupt_sidecar_fails(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem
    ) -> None:
        """Test that unparsable metadata fails the restore."""
        memory_fs.add_file(UPLOADS / "data.xlsx", b"v1")
        backup = manager.create_backup(UPLOADS / "data.xlsx")
        memory_fs.write_text(STORE / f"{backup.backup_name}.json", "{not json")

        result = manager.restore_backup(backup.backup_name)

        assert result.success is False
        assert manager.list_backups() == []

    def test_sidecar_without_original_path_fails(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem
    ) -> None:
        """Test that a sidecar lacking originalPath cannot be restored."""
        memory_fs.add_file(UPLOADS / "data.xlsx", b"v1")
        backup = manager.create_backup(UPLOADS / "data.xlsx")
        memory_fs.write_text(STORE / f"{backup.backup_name}.json", json.dumps({"user": "x"}))

        result = manager.restore_backup(backup.backup_name)

        assert result.success is False
        assert "originalPath" in result.error

    def test_sidecar_with_wrong_types_fails(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem
    ) -> None:
        """Test that a non-string originalPath fails without copying."""
        memory_fs.add_file(UPLOADS / "data.xlsx", b"v1")
        backup = manager.create_backup(UPLOADS / "data.xlsx")
        memory_fs.write_text(
            STORE / f"{backup.backup_name}.json",
            json.dumps({"originalPath": 5, "backupPath": backup.backup_path, "timestamp": 1}),
        )
        memory_fs.write_bytes(UPLOADS / "data.xlsx", b"v2")

        result = manager.restore_backup(backup.backup_name)

        assert result.success is False
        assert result.error
        assert memory_fs.read_bytes(UPLOADS / "data.xlsx") == b"v2"

    def test_non_utf8_sidecar_fails(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem
    ) -> None:
        """Test that undecodable metadata fails the restore."""
        memory_fs.add_file(UPLOADS / "data.xlsx", b"v1")
        backup = manager.create_backup(UPLOADS / "data.xlsx")
        memory_fs.write_bytes(STORE / f"{backup.backup_name}.json", b"\xff\xfe garbage")

        result = manager.restore_backup(backup.backup_name)

        assert result.success is False
        assert "not valid UTF-8" in result.error

    @pytest.mark.parametrize("name", ["", "../data.xlsx", "sub/1_backup_data.xlsx"])
    def test_rejects_path_names(self, manager: BackupManager, name: str) -> None:
        """Test that names must be plain filenames inside the store."""
        result = manager.restore_backup(name)

        assert result.success is False
        assert "Invalid backup name" in result.error

    def test_local_round_trip(self, temp_dir: Path) -> None:
        """Test backup and restore against the real filesystem."""
        original = temp_dir / "data.xlsx"
        original.write_bytes(b"original bytes")
        mgr = BackupManager(backup_dir=temp_dir / ".backups")
        assert mgr.init() is True

        backup = mgr.create_backup(original, {"user": "alice"})
        original.write_bytes(b"overwritten")
        result = mgr.restore_backup(backup.backup_name)

        assert result.success is True
        assert original.read_bytes() == b"original bytes"
        assert (temp_dir / ".backups" / ".gitignore").read_text() == "*\n!.gitignore\n"


class TestListBackups:
    """Tests for BackupManager.list_backups."""

    def test_newest_first(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem, clock: FakeClock
    ) -> None:
        """Test ordering and record contents."""
        memory_fs.add_file(UPLOADS / "a.xlsx", b"aa")
        memory_fs.add_file(UPLOADS / "b.xlsx", b"bbb")
        manager.create_backup(UPLOADS / "a.xlsx")
        clock.advance(100)
        manager.create_backup(UPLOADS / "b.xlsx", {"user": "bob"})

        records = manager.list_backups()

        assert [r.original_path for r in records] == [
            str(UPLOADS / "b.xlsx"),
            str(UPLOADS / "a.xlsx"),
        ]
        assert records[0].size == 3
        assert records[0].metadata == {"user": "bob"}

    def test_unreadable_store_is_empty(
        self, memory_fs: InMemoryFilesystem, clock: FakeClock
    ) -> None:
        """Test that a missing store lists nothing."""
        mgr = BackupManager(backup_dir=Path("/missing"), filesystem=memory_fs, clock=clock)
        assert mgr.list_backups() == []

    def test_non_utf8_sidecar_skipped(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem, clock: FakeClock
    ) -> None:
        """Test that one undecodable sidecar does not hide the other backups."""
        memory_fs.add_file(UPLOADS / "a.xlsx", b"aa")
        memory_fs.add_file(UPLOADS / "b.xlsx", b"bb")
        good = manager.create_backup(UPLOADS / "a.xlsx")
        clock.advance(100)
        bad = manager.create_backup(UPLOADS / "b.xlsx")
        memory_fs.write_bytes(STORE / f"{bad.backup_name}.json", b"\xff\xfe garbage")

        records = manager.list_backups()

        assert [r.name for r in records] == [good.backup_name]

    def test_wrong_type_sidecar_skipped(
        self, manager: BackupManager, memory_fs: InMemoryFilesystem, clock: FakeClock
    ) -> None:
        """Test that a sidecar with mistyped fields is excluded."""
        memory_fs.add_file(UPLOADS / "a.xlsx", b"aa")
        memory_fs.add_file(UPLOADS / "b.xlsx", b"bb")
        good = manager.create_backup(UPLOADS / "a.xlsx")
        clock.advance(100)
        bad = manager.create_backup(UPLOADS / "b.xlsx")
        memory_fs.write_text(
            STORE / f"{bad.backup_name}.json",
            json.dumps({"originalPath": 5, "backupPath": bad.backup_path, "timestamp": 1}),
        )

        records = manager.list_backups()

        assert [r.name for r in records] == [good.backup_name]


class TestGetBackupManager:
    """Tests for the process-wide backup manager."""

    def test_singleton_uses_settings(self, temp_dir: Path, monkeypatch) -> None:
        """Test that the accessor builds one manager from UR_* settings."""
        store = temp_dir / "store"
        monkeypatch.setenv("UR_BACKUP_DIR", str(store))
        monkeypatch.setenv("UR_MAX_BACKUPS_PER_FILE", "5")
        get_backup_manager.cache_clear()
        try:
            first = get_backup_manager()
            second = manager_module.get_backup_manager()

            assert first is second
            assert first.backup_dir == store
            assert first.policy.max_backups_per_file == 5
            assert (store / ".gitignore").exists()
        finally:
            get_backup_manager.cache_clear()

    def test_invalid_settings_raise(self, monkeypatch) -> None:
        """Test that invalid settings surface as ConfigurationError."""
        monkeypatch.setenv("UR_MAX_BACKUPS_PER_FILE", "0")
        get_backup_manager.cache_clear()
        try:
            with pytest.raises(ConfigurationError):
                get_backup_manager()
        finally:
            get_backup_manager.cache_clear()
