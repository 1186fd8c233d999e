"""Database using SQLAlchemy with SQLite.

This module provides:
- Device registration and management
- Photo source records and their OAuth tokens
- Sync mappings (source -> device under a policy)
- The append-only sync run log

Ledger rows (synced photos) are handled by ``framesync.store.ledger``.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, event, select
from sqlalchemy.orm import Session

from framesync.core.config import DEFAULT_DEVICE_PATH
from framesync.core.types import (
    ConnectionType,
    LogOperation,
    LogStatus,
    SourceType,
    SyncPolicy,
)
from framesync.store.models import (
    Base,
    Device,
    OAuthToken,
    Source,
    SyncLog,
    SyncMapping,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine


class Database:
    """SQLAlchemy database for framesync metadata.

    Uses SQLite with WAL mode so scheduler threads can read while a run writes.
    Every method opens its own short session; returned objects are detached.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # check_same_thread=False for access from scheduler threads
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        @event.listens_for(self._engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection: Any, _record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        # Create tables if they don't exist
        Base.metadata.create_all(self._engine)

    @property
    def path(self) -> Path:
        """Path of the SQLite file."""
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine)

    # === Device operations ===

    def create_device(
        self,
        name: str,
        serial: str,
        connection_type: ConnectionType | str = ConnectionType.USB,
        network_address: str | None = None,
        network_port: int | None = None,
        device_path: str | None = None,
    ) -> Device:
        """Register a new device.

        Args:
            name: Display name.
            serial: adb serial (``host:port`` for network devices).
            connection_type: USB or network.
            network_address: Host for network devices.
            network_port: Port for network devices (default 5555).
            device_path: Remote base directory for synced photos.

        Returns:
            Created Device object.

        Raises:
            IntegrityError: If the serial is already registered.
        """
        with self.session() as session:
            device = Device(
                name=name,
                serial=serial,
                connection_type=ConnectionType(connection_type).value,
                network_address=network_address,
                network_port=network_port or 5555,
                device_path=(device_path or DEFAULT_DEVICE_PATH).rstrip("/") or "/",
            )
            session.add(device)
            session.commit()
            session.refresh(device)
            session.expunge(device)
            return device

    def get_device(self, device_id: int) -> Device | None:
        """Get a device by ID."""
        with self.session() as session:
            device = session.get(Device, device_id)
            if device:
                session.expunge(device)
            return device

    def get_device_by_serial(self, serial: str) -> Device | None:
        """Get a device by adb serial."""
        with self.session() as session:
            stmt = select(Device).where(Device.serial == serial)
            device = session.execute(stmt).scalar_one_or_none()
            if device:
                session.expunge(device)
            return device

    def list_devices(self) -> list[Device]:
        """List all devices ordered by name."""
        with self.session() as session:
            stmt = select(Device).order_by(Device.name)
            devices = list(session.execute(stmt).scalars().all())
            for device in devices:
                session.expunge(device)
            return devices

    def update_device(self, device_id: int, **updates: Any) -> Device | None:
        """Update device settings.

        Args:
            device_id: Device ID.
            **updates: Any of name, connection_type, network_address,
                network_port, device_path, is_active.

        Returns:
            The updated device, or None if not found.

        Raises:
            ValueError: If an unknown field is given.
        """
        allowed = {
            "name",
            "connection_type",
            "network_address",
            "network_port",
            "device_path",
            "is_active",
        }
        unknown = set(updates) - allowed
        if unknown:
            raise ValueError(f"Unknown device fields: {', '.join(sorted(unknown))}")

        with self.session() as session:
            device = session.get(Device, device_id)
            if device is None:
                return None
            for key, value in updates.items():
                if key == "connection_type":
                    value = ConnectionType(value).value
                setattr(device, key, value)
            session.commit()
            session.refresh(device)
            session.expunge(device)
            return device

    def touch_device(self, device_id: int) -> None:
        """Record that a device was seen online."""
        with self.session() as session:
            device = session.get(Device, device_id)
            if device:
                device.last_seen_at = datetime.now(UTC)
                session.commit()

    def delete_device(self, device_id: int) -> bool:
        """Delete a device and, by cascade, its mappings and ledger rows."""
        with self.session() as session:
            device = session.get(Device, device_id)
            if device is None:
                return False
            session.delete(device)
            session.commit()
            return True

    # === Source operations ===

    def create_source(
        self,
        name: str,
        source_type: SourceType | str,
        config: dict[str, Any] | None = None,
    ) -> Source:
        """Create a photo source record.

        Args:
            name: Display name.
            source_type: Kind of source.
            config: Source-specific configuration (stored as JSON).

        Returns:
            Created Source object.
        """
        with self.session() as session:
            source = Source(
                name=name,
                type=SourceType(source_type).value,
                config_json=json.dumps(config or {}),
            )
            session.add(source)
            session.commit()
            session.refresh(source)
            session.expunge(source)
            return source

    def get_source(self, source_id: int) -> Source | None:
        """Get a source by ID."""
        with self.session() as session:
            source = session.get(Source, source_id)
            if source:
                session.expunge(source)
            return source

    def list_sources(self) -> list[Source]:
        """List all sources ordered by name."""
        with self.session() as session:
            stmt = select(Source).order_by(Source.name)
            sources = list(session.execute(stmt).scalars().all())
            for source in sources:
                session.expunge(source)
            return sources

    def update_source(
        self,
        source_id: int,
        name: str | None = None,
        config: dict[str, Any] | None = None,
        is_active: bool | None = None,
    ) -> Source | None:
        """Update a source record; None fields are left untouched."""
        with self.session() as session:
            source = session.get(Source, source_id)
            if source is None:
                return None
            if name is not None:
                source.name = name
            if config is not None:
                source.config_json = json.dumps(config)
            if is_active is not None:
                source.is_active = is_active
            session.commit()
            session.refresh(source)
            session.expunge(source)
            return source

    def mark_source_synced(self, source_id: int, when: datetime | None = None) -> None:
        """Set the last-synced timestamp of a source."""
        with self.session() as session:
            source = session.get(Source, source_id)
            if source:
                source.last_sync_at = when or datetime.now(UTC)
                session.commit()

    def delete_source(self, source_id: int) -> bool:
        """Delete a source and, by cascade, its mappings, tokens and ledger rows."""
        with self.session() as session:
            source = session.get(Source, source_id)
            if source is None:
                return False
            session.delete(source)
            session.commit()
            return True

    # === OAuth token operations ===

    def get_token(self, source_id: int, provider: str) -> OAuthToken | None:
        """Get the stored token of a source for a provider."""
        with self.session() as session:
            stmt = select(OAuthToken).where(
                OAuthToken.source_id == source_id,
                OAuthToken.provider == provider,
            )
            token = session.execute(stmt).scalar_one_or_none()
            if token:
                session.expunge(token)
            return token

    def save_token(
        self,
        source_id: int,
        provider: str,
        access_token: str,
        refresh_token: str | None = None,
        expires_at: datetime | None = None,
        token_type: str = "Bearer",
    ) -> OAuthToken:
        """Insert or replace the token of a source for a provider."""
        with self.session() as session:
            stmt = select(OAuthToken).where(
                OAuthToken.source_id == source_id,
                OAuthToken.provider == provider,
            )
            token = session.execute(stmt).scalar_one_or_none()
            if token is None:
                token = OAuthToken(source_id=source_id, provider=provider, access_token=access_token)
                session.add(token)
            token.access_token = access_token
            if refresh_token is not None:
                token.refresh_token = refresh_token
            token.expires_at = expires_at
            token.token_type = token_type
            session.commit()
            session.refresh(token)
            session.expunge(token)
            return token

    # === Mapping operations ===

    def create_mapping(
        self,
        source_id: int,
        device_id: int,
        policy: SyncPolicy | str = SyncPolicy.ADD_ONLY,
        max_photos: int | None = None,
        schedule: str | None = None,
    ) -> SyncMapping:
        """Create a sync mapping.

        Args:
            source_id: Source to pull photos from.
            device_id: Device to place photos on.
            policy: Reconciliation policy.
            max_photos: Optional cap on the number of photos kept on the device.
            schedule: Optional cron expression.

        Returns:
            Created SyncMapping.

        Raises:
            ValueError: If max_photos is not positive.
            IntegrityError: If a mapping for this source/device pair exists,
                or the source or device does not exist.
        """
        if max_photos is not None and max_photos < 1:
            raise ValueError("max_photos must be a positive integer")

        with self.session() as session:
            mapping = SyncMapping(
                source_id=source_id,
                device_id=device_id,
                policy=SyncPolicy(policy).value,
                max_photos=max_photos,
                schedule=schedule or None,
            )
            session.add(mapping)
            session.commit()
            session.refresh(mapping)
            session.expunge(mapping)
            return mapping

    def get_mapping(self, mapping_id: int) -> SyncMapping | None:
        """Get a mapping by ID."""
        with self.session() as session:
            mapping = session.get(SyncMapping, mapping_id)
            if mapping:
                session.expunge(mapping)
            return mapping

    def list_mappings(
        self,
        active_only: bool = False,
        source_id: int | None = None,
        device_id: int | None = None,
    ) -> list[SyncMapping]:
        """List mappings, newest first.

        Args:
            active_only: Only return active mappings.
            source_id: Only mappings pulling from this source.
            device_id: Only mappings targeting this device.
        """
        with self.session() as session:
            stmt = select(SyncMapping)
            if active_only:
                stmt = stmt.where(SyncMapping.is_active.is_(True))
            if source_id is not None:
                stmt = stmt.where(SyncMapping.source_id == source_id)
            if device_id is not None:
                stmt = stmt.where(SyncMapping.device_id == device_id)
            stmt = stmt.order_by(SyncMapping.created_at.desc(), SyncMapping.id.desc())
            mappings = list(session.execute(stmt).scalars().all())
            for mapping in mappings:
                session.expunge(mapping)
            return mappings

    def update_mapping(self, mapping_id: int, **updates: Any) -> SyncMapping | None:
        """Update a mapping.

        Args:
            mapping_id: Mapping ID.
            **updates: Any of policy, max_photos, schedule, is_active.

        Returns:
            The updated mapping, or None if not found.

        Raises:
            ValueError: If an unknown field or invalid value is given.
        """
        allowed = {"policy", "max_photos", "schedule", "is_active"}
        unknown = set(updates) - allowed
        if unknown:
            raise ValueError(f"Unknown mapping fields: {', '.join(sorted(unknown))}")
        if updates.get("max_photos") is not None and updates["max_photos"] < 1:
            raise ValueError("max_photos must be a positive integer")

        with self.session() as session:
            mapping = session.get(SyncMapping, mapping_id)
            if mapping is None:
                return None
            for key, value in updates.items():
                if key == "policy":
                    value = SyncPolicy(value).value
                elif key == "schedule":
                    value = value or None
                setattr(mapping, key, value)
            session.commit()
            session.refresh(mapping)
            session.expunge(mapping)
            return mapping

    def delete_mapping(self, mapping_id: int) -> bool:
        """Delete a mapping and, by cascade, its ledger rows.

        Run log rows are kept with their mapping reference cleared.
        """
        with self.session() as session:
            mapping = session.get(SyncMapping, mapping_id)
            if mapping is None:
                return False
            session.delete(mapping)
            session.commit()
            return True

    # === Run log operations ===

    def log_sync(
        self,
        mapping_id: int | None,
        operation: LogOperation | str,
        status: LogStatus | str,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> SyncLog:
        """Append an entry to the run log.

        Args:
            mapping_id: Mapping the entry belongs to (None if unknown).
            operation: What happened.
            status: Outcome.
            message: Human-readable summary.
            details: Structured payload, stored as JSON.

        Returns:
            Created SyncLog entry.
        """
        with self.session() as session:
            entry = SyncLog(
                mapping_id=mapping_id,
                operation=LogOperation(operation).value,
                status=LogStatus(status).value,
                message=message,
                details_json=json.dumps(details, default=str) if details is not None else None,
            )
            session.add(entry)
            session.commit()
            session.refresh(entry)
            session.expunge(entry)
            return entry

    def get_sync_logs(self, mapping_id: int | None = None, limit: int = 50) -> list[SyncLog]:
        """Get run log entries, newest first.

        Args:
            mapping_id: Only entries of this mapping.
            limit: Maximum number of entries.
        """
        with self.session() as session:
            stmt = select(SyncLog)
            if mapping_id is not None:
                stmt = stmt.where(SyncLog.mapping_id == mapping_id)
            stmt = stmt.order_by(SyncLog.created_at.desc(), SyncLog.id.desc()).limit(limit)
            entries = list(session.execute(stmt).scalars().all())
            for entry in entries:
                session.expunge(entry)
            return entries
