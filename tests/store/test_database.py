"""Tests for the metadata database."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy.exc import IntegrityError

from framesync.core.config import DEFAULT_DEVICE_PATH
from framesync.core.types import ConnectionType, LogOperation, LogStatus, SourceType, SyncPolicy
from framesync.store.database import Database
from framesync.store.ledger import LedgerEntry, SyncedPhotoLedger


@pytest.fixture
def source(db: Database):
    """Create a local folder source."""
    return db.create_source("Holiday", SourceType.LOCAL_FOLDER, {"folder_path": "/photos"})


@pytest.fixture
def device(db: Database):
    """Create a USB device."""
    return db.create_device("Kitchen", "ABC123")


class TestDatabaseSetup:
    """Tests for database creation."""

    def test_creates_parent_directory(self, tmp_path: Path) -> None:
        """Should create missing parent directories of the file."""
        db = Database(tmp_path / "nested" / "dir" / "framesync.db")
        try:
            assert db.path.exists()
        finally:
            db.close()

    def test_reopen_keeps_data(self, tmp_path: Path) -> None:
        """Data should survive closing and reopening."""
        path = tmp_path / "framesync.db"
        db = Database(path)
        db.create_device("Kitchen", "ABC123")
        db.close()

        db = Database(path)
        try:
            assert [d.serial for d in db.list_devices()] == ["ABC123"]
        finally:
            db.close()


class TestDeviceOperations:
    """Tests for device records."""

    def test_create_device_defaults(self, db: Database) -> None:
        """Should default to USB and the Frameo media directory."""
        device = db.create_device("Kitchen", "ABC123")

        assert device.id is not None
        assert device.connection_type == ConnectionType.USB.value
        assert device.network_port == 5555
        assert device.device_path == DEFAULT_DEVICE_PATH
        assert device.is_active is True
        assert device.last_seen_at is None

    def test_create_device_strips_trailing_slash(self, db: Database) -> None:
        """Device path should be stored without a trailing slash."""
        device = db.create_device("Hall", "XYZ", device_path="/sdcard/frame/")
        assert device.device_path == "/sdcard/frame"

    def test_duplicate_serial_rejected(self, db: Database) -> None:
        """A serial can only be registered once."""
        db.create_device("Kitchen", "ABC123")
        with pytest.raises(IntegrityError):
            db.create_device("Other", "ABC123")

    def test_get_device_by_serial(self, db: Database, device) -> None:
        """Should find a device by serial."""
        found = db.get_device_by_serial("ABC123")
        assert found is not None
        assert found.id == device.id
        assert db.get_device_by_serial("nope") is None

    def test_list_devices_by_name(self, db: Database) -> None:
        """Should order devices by name."""
        db.create_device("Zeta", "1")
        db.create_device("Alpha", "2")
        assert [d.name for d in db.list_devices()] == ["Alpha", "Zeta"]

    def test_update_device(self, db: Database, device) -> None:
        """Should update allowed fields."""
        updated = db.update_device(
            device.id,
            name="Living room",
            connection_type="network",
            network_address="192.168.1.20",
        )
        assert updated is not None
        assert updated.name == "Living room"
        assert updated.connection_type == "network"
        assert updated.network_address == "192.168.1.20"

    def test_update_device_unknown_field(self, db: Database, device) -> None:
        """Should reject unknown fields."""
        with pytest.raises(ValueError, match="serial"):
            db.update_device(device.id, serial="other")

    def test_update_missing_device(self, db: Database) -> None:
        """Should return None for an unknown device."""
        assert db.update_device(999, name="x") is None

    def test_touch_device(self, db: Database, device) -> None:
        """Should set last_seen_at."""
        db.touch_device(device.id)
        assert db.get_device(device.id).last_seen_at is not None

    def test_delete_device_cascades(self, db: Database, device, source) -> None:
        """Deleting a device should remove its mappings and ledger rows."""
        mapping = db.create_mapping(source.id, device.id)
        ledger = SyncedPhotoLedger(db)
        ledger.record(LedgerEntry(mapping.id, "p1", "/x/a.jpeg", "a", 1))

        assert db.delete_device(device.id) is True

        assert db.get_mapping(mapping.id) is None
        assert ledger.count(mapping.id) == 0
        assert db.delete_device(device.id) is False


class TestSourceOperations:
    """Tests for source records and tokens."""

    def test_create_source_stores_config(self, db: Database, source) -> None:
        """Config should round-trip as a dict."""
        loaded = db.get_source(source.id)
        assert loaded.type == SourceType.LOCAL_FOLDER.value
        assert loaded.config == {"folder_path": "/photos"}

    def test_create_source_rejects_unknown_type(self, db: Database) -> None:
        """Should reject unsupported source types."""
        with pytest.raises(ValueError):
            db.create_source("Drive", "google_drive")

    def test_update_source(self, db: Database, source) -> None:
        """Should only update given fields."""
        updated = db.update_source(source.id, config={"folder_path": "/other"})
        assert updated.name == "Holiday"
        assert updated.config == {"folder_path": "/other"}

    def test_mark_source_synced(self, db: Database, source) -> None:
        """Should store the given timestamp."""
        when = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
        db.mark_source_synced(source.id, when)
        last = db.get_source(source.id).last_sync_at
        assert last.replace(tzinfo=UTC) == when

    def test_save_token_upserts(self, db: Database, source) -> None:
        """Saving twice should keep one token and the old refresh token."""
        expires = datetime.now(UTC) + timedelta(hours=1)
        db.save_token(source.id, "google", "access-1", refresh_token="refresh-1")
        db.save_token(source.id, "google", "access-2", expires_at=expires)

        token = db.get_token(source.id, "google")
        assert token.access_token == "access-2"
        assert token.refresh_token == "refresh-1"
        assert token.expires_at is not None

    def test_delete_source_removes_tokens(self, db: Database, source) -> None:
        """Deleting a source should delete its tokens."""
        db.save_token(source.id, "google", "access")
        assert db.delete_source(source.id) is True
        assert db.get_token(source.id, "google") is None


class TestMappingOperations:
    """Tests for mapping records."""

    def test_create_mapping_defaults(self, db: Database, source, device) -> None:
        """Should default to add_only without cap or schedule."""
        mapping = db.create_mapping(source.id, device.id)
        assert mapping.sync_policy is SyncPolicy.ADD_ONLY
        assert mapping.max_photos is None
        assert mapping.schedule is None
        assert mapping.is_active is True

    def test_create_mapping_rejects_non_positive_cap(self, db: Database, source, device) -> None:
        """max_photos must be at least 1."""
        with pytest.raises(ValueError, match="max_photos"):
            db.create_mapping(source.id, device.id, max_photos=0)

    def test_one_mapping_per_pair(self, db: Database, source, device) -> None:
        """Only one mapping may bind a source to a device."""
        db.create_mapping(source.id, device.id)
        with pytest.raises(IntegrityError):
            db.create_mapping(source.id, device.id, SyncPolicy.MIRROR)

    def test_mapping_requires_existing_rows(self, db: Database, source) -> None:
        """Foreign keys should be enforced."""
        with pytest.raises(IntegrityError):
            db.create_mapping(source.id, 999)

    def test_list_mappings_filters(self, db: Database, source, device) -> None:
        """Should filter by activity, source and device."""
        other_device = db.create_device("Hall", "XYZ")
        first = db.create_mapping(source.id, device.id)
        second = db.create_mapping(source.id, other_device.id)
        db.update_mapping(first.id, is_active=False)

        assert {m.id for m in db.list_mappings()} == {first.id, second.id}
        assert [m.id for m in db.list_mappings(active_only=True)] == [second.id]
        assert [m.id for m in db.list_mappings(device_id=device.id)] == [first.id]
        assert db.list_mappings(source_id=999) == []

    def test_update_mapping(self, db: Database, source, device) -> None:
        """Should update policy, cap and schedule."""
        mapping = db.create_mapping(source.id, device.id)
        updated = db.update_mapping(
            mapping.id, policy="mirror", max_photos=10, schedule="0 * * * *"
        )
        assert updated.sync_policy is SyncPolicy.MIRROR
        assert updated.max_photos == 10
        assert updated.schedule == "0 * * * *"

        cleared = db.update_mapping(mapping.id, schedule="")
        assert cleared.schedule is None

    def test_update_mapping_validates(self, db: Database, source, device) -> None:
        """Should reject unknown fields and bad caps."""
        mapping = db.create_mapping(source.id, device.id)
        with pytest.raises(ValueError):
            db.update_mapping(mapping.id, device_id=2)
        with pytest.raises(ValueError):
            db.update_mapping(mapping.id, max_photos=-1)

    def test_delete_mapping_keeps_logs(self, db: Database, source, device) -> None:
        """Run log rows should survive with the mapping reference cleared."""
        mapping = db.create_mapping(source.id, device.id)
        entry = db.log_sync(mapping.id, LogOperation.SYNC_START, LogStatus.IN_PROGRESS)

        assert db.delete_mapping(mapping.id) is True

        logs = db.get_sync_logs()
        assert [log.id for log in logs] == [entry.id]
        assert logs[0].mapping_id is None


class TestRunLog:
    """Tests for the run log."""

    def test_log_sync_details(self, db: Database) -> None:
        """Details should be stored as JSON."""
        entry = db.log_sync(None, "sync_complete", "success", "done", {"added": 2})
        assert entry.details == {"added": 2}
        assert entry.message == "done"

    def test_get_sync_logs_newest_first(self, db: Database, source, device) -> None:
        """Should return newest entries first, limited and filtered."""
        mapping = db.create_mapping(source.id, device.id)
        db.log_sync(mapping.id, LogOperation.SYNC_START, LogStatus.IN_PROGRESS)
        db.log_sync(mapping.id, LogOperation.SYNC_COMPLETE, LogStatus.SUCCESS)
        db.log_sync(None, LogOperation.ERROR, LogStatus.FAILURE)

        logs = db.get_sync_logs(mapping_id=mapping.id)
        assert [log.operation for log in logs] == ["sync_complete", "sync_start"]
        assert len(db.get_sync_logs(limit=1)) == 1

    def test_rejects_unknown_operation(self, db: Database) -> None:
        """Operation names are a closed set."""
        with pytest.raises(ValueError):
            db.log_sync(None, "reboot", "success")
