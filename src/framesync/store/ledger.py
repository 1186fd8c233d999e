"""Persistent record of which source photos are on which device.

One row per (mapping, source photo). Several rows may point at the same
device path when photos share processed content.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from framesync.store.models import SyncedPhoto, SyncMapping

if TYPE_CHECKING:
    from framesync.store.database import Database


class LedgerWriteError(Exception):
    """A ledger row could not be written or removed."""


@dataclass
class LedgerEntry:
    """Values for one ledger row."""

    mapping_id: int
    source_photo_id: str
    device_path: str
    file_hash: str
    file_size: int
    source_path: str | None = None
    synced_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class SyncedPhotoLedger:
    """Read and write ledger rows, one transaction per call."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self, mapping_id: int) -> list[SyncedPhoto]:
        """All ledger rows of a mapping in insertion order."""
        with self._db.session() as session:
            stmt = (
                select(SyncedPhoto)
                .where(SyncedPhoto.mapping_id == mapping_id)
                .order_by(SyncedPhoto.id)
            )
            rows = list(session.execute(stmt).scalars().all())
            for row in rows:
                session.expunge(row)
            return rows

    def record(self, entry: LedgerEntry) -> SyncedPhoto:
        """Insert or refresh the row for (mapping, source photo).

        Args:
            entry: Values to store.

        Returns:
            The stored row.

        Raises:
            LedgerWriteError: If the write fails.
        """
        try:
            with self._db.session() as session:
                stmt = select(SyncedPhoto).where(
                    SyncedPhoto.mapping_id == entry.mapping_id,
                    SyncedPhoto.source_photo_id == entry.source_photo_id,
                )
                row = session.execute(stmt).scalar_one_or_none()
                if row is None:
                    row = SyncedPhoto(
                        mapping_id=entry.mapping_id,
                        source_photo_id=entry.source_photo_id,
                    )
                    session.add(row)
                row.source_path = entry.source_path
                row.device_path = entry.device_path
                row.file_hash = entry.file_hash
                row.file_size = entry.file_size
                row.synced_at = entry.synced_at
                session.commit()
                session.refresh(row)
                session.expunge(row)
                return row
        except SQLAlchemyError as e:
            raise LedgerWriteError(
                f"Could not record {entry.source_photo_id} for mapping {entry.mapping_id}: {e}"
            ) from e

    def remove(self, mapping_id: int, source_photo_id: str) -> bool:
        """Remove one row.

        Returns:
            True if a row was removed, False if none existed.

        Raises:
            LedgerWriteError: If the delete fails.
        """
        try:
            with self._db.session() as session:
                result = session.execute(
                    delete(SyncedPhoto).where(
                        SyncedPhoto.mapping_id == mapping_id,
                        SyncedPhoto.source_photo_id == source_photo_id,
                    )
                )
                session.commit()
                return bool(result.rowcount)
        except SQLAlchemyError as e:
            raise LedgerWriteError(
                f"Could not remove {source_photo_id} from mapping {mapping_id}: {e}"
            ) from e

    def count(self, mapping_id: int) -> int:
        """Number of rows of a mapping."""
        with self._db.session() as session:
            stmt = select(func.count(SyncedPhoto.id)).where(SyncedPhoto.mapping_id == mapping_id)
            return int(session.execute(stmt).scalar_one())

    def references(self, mapping_id: int, device_path: str) -> int:
        """Number of rows of a mapping pointing at a device path."""
        with self._db.session() as session:
            stmt = select(func.count(SyncedPhoto.id)).where(
                SyncedPhoto.mapping_id == mapping_id,
                SyncedPhoto.device_path == device_path,
            )
            return int(session.execute(stmt).scalar_one())

    def device_references(
        self,
        device_id: int,
        device_path: str,
        exclude_mapping_id: int | None = None,
    ) -> int:
        """Number of rows of any mapping on a device pointing at a device path.

        Args:
            device_id: Device the mappings target.
            device_path: Remote path.
            exclude_mapping_id: Mapping whose rows are not counted.
        """
        with self._db.session() as session:
            stmt = (
                select(func.count(SyncedPhoto.id))
                .join(SyncMapping, SyncMapping.id == SyncedPhoto.mapping_id)
                .where(
                    SyncMapping.device_id == device_id,
                    SyncedPhoto.device_path == device_path,
                )
            )
            if exclude_mapping_id is not None:
                stmt = stmt.where(SyncedPhoto.mapping_id != exclude_mapping_id)
            return int(session.execute(stmt).scalar_one())
