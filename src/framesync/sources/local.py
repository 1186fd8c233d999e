"""Photos from a folder on the local filesystem.

Config keys:
- folder_path: Root folder (required)
- recursive: Descend into subfolders (default False)
- include_extensions: Extensions to pick up (default: common image types)
- album_id: Subfolder to restrict to (default: the root)

Photos are listed by file name, files of a folder before its subfolders,
subfolders depth-first in name order. The photo id is its full path.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

from framesync.core.hashing import compute_file_hash
from framesync.sources.base import Album, PhotoSource, SourceError, SourcePhoto

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}


class LocalFolderSource(PhotoSource):
    """Source reading image files from a folder."""

    @property
    def folder_path(self) -> Path:
        folder = self.config.get("folder_path")
        if not folder:
            raise SourceError(f"Source {self.name} has no folder_path configured")
        return Path(folder).expanduser()

    @property
    def recursive(self) -> bool:
        return bool(self.config.get("recursive", False))

    @property
    def extensions(self) -> frozenset[str]:
        configured = self.config.get("include_extensions") or DEFAULT_EXTENSIONS
        return frozenset(
            ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in configured
        )

    def _is_photo(self, path: Path) -> bool:
        return path.suffix.lower() in self.extensions

    def test_connection(self) -> bool:
        """Check that the folder exists."""
        try:
            return self.folder_path.is_dir()
        except (SourceError, OSError):
            return False

    def list_albums(self) -> list[Album]:
        """The root folder and each direct subfolder."""
        root = self.folder_path
        if not root.is_dir():
            raise SourceError(f"Folder not found: {root}")

        albums = [Album(id="", name=root.name, photo_count=self._count_photos(root))]
        try:
            subdirs = sorted(entry for entry in root.iterdir() if entry.is_dir())
        except OSError as e:
            raise SourceError(f"Cannot read {root}: {e}") from e
        for subdir in subdirs:
            albums.append(
                Album(id=subdir.name, name=subdir.name, photo_count=self._count_photos(subdir))
            )
        return albums

    def list_photos(self, album_id: str | None = None) -> list[SourcePhoto]:
        """Scan the folder for image files."""
        album = album_id if album_id is not None else self.config.get("album_id")
        root = self.folder_path / album if album else self.folder_path
        if not root.is_dir():
            raise SourceError(f"Folder not found: {root}")

        photos = list(self._scan(root))
        logger.debug("Listed %d photos in %s", len(photos), root)
        return photos

    def _scan(self, directory: Path) -> Iterator[SourcePhoto]:
        try:
            entries = sorted(directory.iterdir(), key=lambda entry: entry.name)
        except OSError as e:
            raise SourceError(f"Cannot read {directory}: {e}") from e

        subdirs = []
        for entry in entries:
            if entry.is_dir():
                subdirs.append(entry)
            elif entry.is_file() and self._is_photo(entry):
                yield self._photo(entry)

        if self.recursive:
            for subdir in subdirs:
                yield from self._scan(subdir)

    def _photo(self, path: Path) -> SourcePhoto:
        try:
            stat = path.stat()
            content_hash = compute_file_hash(path)
        except OSError as e:
            raise SourceError(f"Cannot read {path}: {e}") from e
        return SourcePhoto(
            id=str(path),
            name=path.name,
            path=str(path),
            mime_type=MIME_TYPES.get(path.suffix.lower(), "image/jpeg"),
            size=stat.st_size,
            created_at=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
            content_hash=content_hash,
        )

    def _count_photos(self, directory: Path) -> int:
        try:
            return sum(1 for entry in directory.iterdir() if entry.is_file() and self._is_photo(entry))
        except OSError:
            return 0

    def download(self, photo: SourcePhoto, dest_dir: Path) -> Path:
        """Copy the file into ``dest_dir``."""
        target = Path(dest_dir) / Path(photo.path).name
        try:
            shutil.copyfile(photo.path, target)
        except OSError as e:
            raise SourceError(f"Cannot copy {photo.path}: {e}") from e
        return target
