"""Common interface for photo sources."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from framesync.core.types import SourceType

if TYPE_CHECKING:
    from framesync.store.models import Source


class SourceError(Exception):
    """A source could not be listed or a photo could not be fetched."""


@dataclass(frozen=True)
class SourcePhoto:
    """A photo as listed by a source.

    Attributes:
        id: Identifier, stable across listings of the same source.
        name: File name.
        path: Where the source reads the photo from (file path or URL).
        mime_type: MIME type reported by the source.
        size: Size in bytes, if known.
        width: Width in pixels, if known.
        height: Height in pixels, if known.
        created_at: Creation time, if known.
        content_hash: MD5 of the original bytes, if known.
    """

    id: str
    name: str
    path: str
    mime_type: str
    size: int | None = None
    width: int | None = None
    height: int | None = None
    created_at: datetime | None = None
    content_hash: str | None = None


@dataclass(frozen=True)
class Album:
    """A selectable group of photos (folder or cloud album)."""

    id: str
    name: str
    photo_count: int | None = None


class PhotoSource(ABC):
    """Base class for photo sources.

    A source wraps a ``Source`` row; its configuration is the row's JSON config.
    """

    def __init__(
        self,
        record: Source,
        on_synced: Callable[[int], None] | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            record: Source row.
            on_synced: Called with the source id by ``mark_synced``.
        """
        self._record = record
        self._on_synced = on_synced

    @property
    def id(self) -> int:
        return self._record.id

    @property
    def name(self) -> str:
        return self._record.name

    @property
    def type(self) -> SourceType:
        return SourceType(self._record.type)

    @property
    def config(self) -> dict[str, Any]:
        return self._record.config

    @abstractmethod
    def test_connection(self) -> bool:
        """Check that the source is reachable. Never raises."""

    @abstractmethod
    def list_albums(self) -> list[Album]:
        """List albums available for selection.

        Raises:
            SourceError: If the source cannot be read.
        """

    @abstractmethod
    def list_photos(self, album_id: str | None = None) -> list[SourcePhoto]:
        """List photos in a stable order.

        Args:
            album_id: Restrict to one album; the configured selection otherwise.

        Raises:
            SourceError: If the source cannot be read.
        """

    @abstractmethod
    def download(self, photo: SourcePhoto, dest_dir: Path) -> Path:
        """Fetch a photo into ``dest_dir``.

        Returns:
            Path of the local copy.

        Raises:
            SourceError: If the photo cannot be fetched.
        """

    def mark_synced(self) -> None:
        """Record that a sync of this source completed."""
        if self._on_synced is not None:
            self._on_synced(self.id)

    def close(self) -> None:
        """Release resources held by the source."""
