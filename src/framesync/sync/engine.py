"""Reconciliation of one mapping: make a device hold a source's photos.

A run lists the source, pushes every photo the ledger does not know about
and, for mirror mappings, removes the photos that left the source.

Remote files are content addressed: a processed photo is stored at
``<device base>/<md5 of processed bytes>.<format>``. Pushing is skipped when
the device already holds a file with that hash, and photos with identical
processed bytes share one remote file with one ledger row each. A remote file
is only deleted once no ledger row of any mapping on the device points at it.

The ledger is trusted as the record of what is on the device. Files deleted
on the device by hand are not noticed: runs do not re-check the presence of
ledger entries, and such photos are only pushed again once their ledger row is
gone. Partial ledger state left by an interrupted run is safe because each run
starts from the ledger, not from memory.
"""

from __future__ import annotations

import logging
import tempfile
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from framesync.core.hashing import compute_file_hash
from framesync.core.types import LogOperation, LogStatus, SyncPolicy
from framesync.device.registry import DeviceRegistry
from framesync.device.transport import DeviceHandle, TransportError
from framesync.images.processor import ImageProcessor, ProcessingError, ProcessingOptions
from framesync.sources import create_source
from framesync.sources.base import PhotoSource, SourceError, SourcePhoto
from framesync.store.ledger import LedgerEntry, LedgerWriteError, SyncedPhotoLedger
from framesync.sync.retry import retry_with_backoff
from framesync.sync.types import PerPhotoError, RunResult, TerminalRunError

if TYPE_CHECKING:
    from framesync.core.config import Settings
    from framesync.device.transport import DeviceTransport
    from framesync.store.database import Database
    from framesync.store.models import SyncedPhoto, SyncMapping

logger = logging.getLogger(__name__)

SourceFactory = Callable[..., PhotoSource]
ProcessorFactory = Callable[[Path], ImageProcessor]


@dataclass
class _RunContext:
    """What a run resolved before touching the device."""

    mapping: SyncMapping
    source: PhotoSource
    handle: DeviceHandle


class SyncEngine:
    """Runs reconciliation for mappings, one photo at a time."""

    def __init__(
        self,
        db: Database,
        transport: DeviceTransport,
        *,
        ledger: SyncedPhotoLedger | None = None,
        processing_options: ProcessingOptions | None = None,
        temp_root: Path | None = None,
        source_factory: SourceFactory = create_source,
        processor_factory: ProcessorFactory = ImageProcessor,
        ready_timeout: float = 2.0,
        push_retries: int = 0,
        push_backoff: float = 1.0,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the sync engine.

        Args:
            db: Database with mappings, sources, devices and the run log.
            transport: Transport used to reach devices.
            ledger: Synced-photo ledger (built on ``db`` when None).
            processing_options: How photos are prepared for frames.
            temp_root: Directory for per-photo temporaries (system default when None).
            source_factory: Builds a PhotoSource from a source row.
            processor_factory: Builds an ImageProcessor writing into a directory.
            ready_timeout: Deadline in seconds for the device liveness probe.
            push_retries: Extra attempts for pushes failing with a transport error.
            push_backoff: Initial wait in seconds between push attempts.
            settings: Settings handed to the source factory.
        """
        self._db = db
        self._transport = transport
        self._ledger = ledger or SyncedPhotoLedger(db)
        self._registry = DeviceRegistry(db, transport)
        self._options = processing_options or ProcessingOptions()
        self._temp_root = Path(temp_root) if temp_root is not None else None
        self._source_factory = source_factory
        self._processor_factory = processor_factory
        self._ready_timeout = ready_timeout
        self._push_retries = push_retries
        self._push_backoff = push_backoff
        self._settings = settings

        if self._temp_root is not None:
            self._temp_root.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_settings(
        cls, db: Database, transport: DeviceTransport, settings: Settings
    ) -> SyncEngine:
        """Build an engine configured from settings."""
        return cls(
            db,
            transport,
            processing_options=ProcessingOptions.from_settings(settings),
            temp_root=settings.temp_path,
            ready_timeout=settings.ready_timeout,
            push_retries=settings.push_retries,
            settings=settings,
        )

    @property
    def ledger(self) -> SyncedPhotoLedger:
        return self._ledger

    def run(self, mapping_id: int) -> RunResult:
        """Reconcile one mapping.

        Per-photo failures are collected in ``errors`` and do not stop the
        run. Failures before any photo is handled (missing rows, device not
        ready, source listing) end the run without changes. Unexpected errors
        end the run too, keeping the counts of work already done.

        Args:
            mapping_id: Mapping to reconcile.

        Returns:
            RunResult with counts and errors; ``success`` is True when there
            were no errors.
        """
        result = RunResult(mapping_id=mapping_id)
        context: _RunContext | None = None
        # Run log rows reference the mapping, which must exist
        log_id: int | None = None
        logger.info("Starting sync of mapping %d", mapping_id)

        try:
            mapping = self._db.get_mapping(mapping_id)
            if mapping is not None:
                log_id = mapping.id
            context = self._resolve(mapping_id, mapping)
            self._log(
                mapping_id,
                LogOperation.SYNC_START,
                LogStatus.IN_PROGRESS,
                f"Sync started: {context.source.name} -> {context.handle.serial}",
            )
            self._preflight(context.handle)
            photos = self._list_photos(context)
            self._add_photos(context, photos, result)
            if context.mapping.sync_policy is SyncPolicy.MIRROR:
                self._remove_stale(context, {photo.id for photo in photos}, result)
            self._mark_synced(context, log_id, result)
        except TerminalRunError as e:
            logger.error("Sync of mapping %d aborted: %s", mapping_id, e)
            result.errors.append(str(e))
            self._log(
                log_id,
                LogOperation.ERROR,
                LogStatus.FAILURE,
                str(e),
                {"mapping_id": mapping_id},
            )
        except Exception as e:
            # Counts of work already done are still reported
            logger.exception("Sync of mapping %d failed", mapping_id)
            message = f"Sync failed: {e}"
            result.errors.append(message)
            self._log(
                log_id,
                LogOperation.ERROR,
                LogStatus.FAILURE,
                message,
                {"mapping_id": mapping_id},
            )
        finally:
            if context is not None:
                context.source.close()

        result.completed_at = datetime.now(UTC)
        result.success = not result.errors
        self._log(
            log_id,
            LogOperation.SYNC_COMPLETE,
            LogStatus.SUCCESS if result.success else LogStatus.FAILURE,
            f"Added {result.added}, removed {result.removed}, "
            f"skipped {result.skipped}, errors {len(result.errors)}",
            result.to_dict(),
        )
        logger.info(
            "Sync of mapping %d finished: added=%d removed=%d skipped=%d errors=%d",
            mapping_id,
            result.added,
            result.removed,
            result.skipped,
            len(result.errors),
        )
        return result

    # === Run steps ===

    def _resolve(self, mapping_id: int, mapping: SyncMapping | None) -> _RunContext:
        if mapping is None:
            raise TerminalRunError(f"Mapping {mapping_id} not found")

        record = self._db.get_source(mapping.source_id)
        if record is None:
            raise TerminalRunError(f"Source {mapping.source_id} not found")

        handle = self._registry.resolve(mapping.device_id)
        if handle is None:
            raise TerminalRunError(f"Device {mapping.device_id} not found")

        try:
            source = self._source_factory(
                record,
                on_synced=self._db.mark_source_synced,
                db=self._db,
                settings=self._settings,
            )
        except SourceError as e:
            raise TerminalRunError(f"Source {record.name}: {e}") from e

        return _RunContext(mapping=mapping, source=source, handle=handle)

    def _preflight(self, handle: DeviceHandle) -> None:
        if not self._transport.is_ready(handle, timeout=self._ready_timeout):
            raise TerminalRunError(f"Device {handle.serial} is not ready")
        try:
            self._transport.ensure_directory(handle, handle.base_path)
        except TransportError as e:
            raise TerminalRunError(
                f"Cannot create {handle.base_path} on {handle.serial}: {e}"
            ) from e

    def _list_photos(self, context: _RunContext) -> list[SourcePhoto]:
        try:
            photos = context.source.list_photos()
        except SourceError as e:
            raise TerminalRunError(f"Cannot list source {context.source.name}: {e}") from e

        max_photos = context.mapping.max_photos
        if max_photos is not None and len(photos) > max_photos:
            logger.info(
                "Source %s has %d photos, keeping the first %d",
                context.source.name,
                len(photos),
                max_photos,
            )
            photos = photos[:max_photos]
        return photos

    def _add_photos(
        self, context: _RunContext, photos: list[SourcePhoto], result: RunResult
    ) -> None:
        synced = {entry.source_photo_id for entry in self._ledger.get(context.mapping.id)}

        for photo in photos:
            if photo.id in synced:
                result.skipped += 1
                continue

            try:
                pushed = self._add_photo(context, photo)
            except PerPhotoError as e:
                result.errors.append(str(e))
                self._log(
                    context.mapping.id,
                    LogOperation.PHOTO_PUSH,
                    LogStatus.FAILURE,
                    str(e),
                    {"source_photo_id": photo.id},
                )
                continue

            synced.add(photo.id)
            if pushed:
                result.added += 1
            else:
                result.skipped += 1

    def _add_photo(self, context: _RunContext, photo: SourcePhoto) -> bool:
        """Deliver one photo.

        Returns:
            True if the photo was pushed, False if the device already had it.

        Raises:
            PerPhotoError: If any step fails.
        """
        handle = context.handle
        with tempfile.TemporaryDirectory(prefix="framesync-", dir=self._temp_root) as tmp:
            work_dir = Path(tmp)
            download_dir = work_dir / "download"
            download_dir.mkdir()
            processor = self._processor_factory(work_dir / "processed")
            processed_path: Path | None = None

            try:
                local_path = context.source.download(photo, download_dir)
                processed = processor.process(local_path, self._options)
                processed_path = processed.path
                file_hash = compute_file_hash(processed.path)
                remote_path = handle.remote_path(f"{file_hash}.{processed.format}")

                entry = LedgerEntry(
                    mapping_id=context.mapping.id,
                    source_photo_id=photo.id,
                    source_path=photo.path,
                    device_path=remote_path,
                    file_hash=file_hash,
                    file_size=processed.size,
                )

                if self._transport.remote_hash(handle, remote_path) == file_hash:
                    logger.debug("%s already on %s as %s", photo.name, handle.serial, remote_path)
                    self._ledger.record(entry)
                    return False

                transferred = retry_with_backoff(
                    lambda: self._transport.push_file(handle, processed.path, remote_path),
                    max_retries=self._push_retries,
                    initial_backoff=self._push_backoff,
                    retryable_exceptions=(TransportError,),
                )
                self._transport.notify_indexed(handle, remote_path)
            except (SourceError, ProcessingError, TransportError, OSError) as e:
                raise PerPhotoError(photo.name, str(e)) from e
            except LedgerWriteError as e:
                logger.error("Ledger write failed for %s: %s", photo.name, e)
                raise PerPhotoError(photo.name, str(e)) from e
            except Exception as e:
                logger.exception("Unexpected error while syncing %s", photo.name)
                raise PerPhotoError(photo.name, str(e) or type(e).__name__) from e
            finally:
                if processed_path is not None:
                    processor.cleanup(processed_path)

            try:
                self._ledger.record(entry)
            except LedgerWriteError as e:
                logger.error(
                    "Pushed %s to %s but could not record it, it will be pushed again: %s",
                    photo.name,
                    remote_path,
                    e,
                )
                raise PerPhotoError(photo.name, str(e)) from e

        logger.info("Pushed %s to %s (%d bytes)", photo.name, remote_path, transferred)
        self._log(
            context.mapping.id,
            LogOperation.PHOTO_PUSH,
            LogStatus.SUCCESS,
            f"Pushed {photo.name}",
            {"source_photo_id": photo.id, "device_path": remote_path, "bytes": transferred},
        )
        return True

    def _remove_stale(
        self, context: _RunContext, current_ids: set[str], result: RunResult
    ) -> None:
        """Remove photos that left the source (mirror mappings only)."""
        mapping = context.mapping
        entries = self._ledger.get(mapping.id)
        references = Counter(entry.device_path for entry in entries)

        for entry in entries:
            if entry.source_photo_id in current_ids:
                continue
            name = PurePosixPath(entry.source_path or entry.source_photo_id).name

            try:
                if self._is_shared(mapping, entry, references):
                    logger.debug("%s is still referenced, keeping the remote file", entry.device_path)
                    self._ledger.remove(mapping.id, entry.source_photo_id)
                elif self._transport.delete_file(context.handle, entry.device_path):
                    self._ledger.remove(mapping.id, entry.source_photo_id)
                    self._log(
                        mapping.id,
                        LogOperation.PHOTO_DELETE,
                        LogStatus.SUCCESS,
                        f"Deleted {name}",
                        {"source_photo_id": entry.source_photo_id, "device_path": entry.device_path},
                    )
                else:
                    message = f"{name}: failed to delete {entry.device_path}"
                    result.errors.append(message)
                    self._log(mapping.id, LogOperation.PHOTO_DELETE, LogStatus.FAILURE, message)
                    continue
            except LedgerWriteError as e:
                logger.error("Ledger write failed for %s: %s", name, e)
                result.errors.append(f"{name}: {e}")
                continue

            references[entry.device_path] -= 1
            result.removed += 1

    def _mark_synced(self, context: _RunContext, log_id: int | None, result: RunResult) -> None:
        try:
            context.source.mark_synced()
        except (SourceError, SQLAlchemyError) as e:
            logger.error("Could not record sync time of source %s: %s", context.source.name, e)
            message = f"{context.source.name}: could not record sync time: {e}"
            result.errors.append(message)
            self._log(log_id, LogOperation.ERROR, LogStatus.FAILURE, message)

    def _is_shared(
        self, mapping: SyncMapping, entry: SyncedPhoto, references: Counter[str]
    ) -> bool:
        if references[entry.device_path] > 1:
            return True
        return (
            self._ledger.device_references(
                mapping.device_id, entry.device_path, exclude_mapping_id=mapping.id
            )
            > 0
        )

    def _log(
        self,
        mapping_id: int | None,
        operation: LogOperation,
        status: LogStatus,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        try:
            self._db.log_sync(mapping_id, operation, status, message, details)
        except SQLAlchemyError as e:
            logger.warning("Could not write run log entry: %s", e)
