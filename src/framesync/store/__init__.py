"""Persistence - SQLAlchemy models, database access and the synced-photo ledger."""

from framesync.store.database import Database
from framesync.store.ledger import LedgerEntry, LedgerWriteError, SyncedPhotoLedger
from framesync.store.models import (
    Base,
    Device,
    OAuthToken,
    Source,
    SyncedPhoto,
    SyncLog,
    SyncMapping,
)

__all__ = [
    # Database
    "Database",
    # Ledger
    "LedgerEntry",
    "LedgerWriteError",
    "SyncedPhotoLedger",
    # Models
    "Base",
    "Device",
    "OAuthToken",
    "Source",
    "SyncLog",
    "SyncMapping",
    "SyncedPhoto",
]
