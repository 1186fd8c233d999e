"""Photo sources - local folders and cloud libraries."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from framesync.core.types import SourceType
from framesync.sources.base import Album, PhotoSource, SourceError, SourcePhoto
from framesync.sources.google_photos import GooglePhotosSource
from framesync.sources.local import LocalFolderSource

if TYPE_CHECKING:
    from framesync.core.config import Settings
    from framesync.store.database import Database
    from framesync.store.models import Source


def create_source(
    record: Source,
    on_synced: Callable[[int], None] | None = None,
    *,
    db: Database | None = None,
    settings: Settings | None = None,
) -> PhotoSource:
    """Factory function to create a source from its database row.

    Args:
        record: Source row.
        on_synced: Called with the source id when a sync completes.
        db: Database holding OAuth tokens (cloud sources only).
        settings: Settings providing OAuth client credentials.

    Returns:
        Configured PhotoSource instance.

    Raises:
        SourceError: If the source type is unknown or cannot be built.
    """
    try:
        source_type = SourceType(record.type)
    except ValueError:
        raise SourceError(f"Unknown source type: {record.type}") from None

    if source_type is SourceType.LOCAL_FOLDER:
        return LocalFolderSource(record, on_synced)

    if source_type is SourceType.GOOGLE_PHOTOS:
        if db is None:
            raise SourceError("Google Photos sources need a database for their tokens")
        return GooglePhotosSource(
            record,
            on_synced,
            db=db,
            client_id=settings.google_client_id if settings else None,
            client_secret=settings.google_client_secret if settings else None,
        )

    raise SourceError(f"Unknown source type: {record.type}")


__all__ = [
    # Base
    "Album",
    "PhotoSource",
    "SourceError",
    "SourcePhoto",
    # Implementations
    "GooglePhotosSource",
    "LocalFolderSource",
    # Factory
    "create_source",
]
