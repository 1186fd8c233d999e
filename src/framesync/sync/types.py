"""Shared types for sync runs.

This module provides:
- SyncError, TerminalRunError, PerPhotoError: Exception classes
- RunResult: Outcome of one reconciliation run
- MappingState, ScheduledTask: Scheduler views
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class SyncError(Exception):
    """Base exception for sync errors."""


class TerminalRunError(SyncError):
    """The run cannot proceed at all (missing mapping, unreachable device...)."""


class PerPhotoError(SyncError):
    """One photo could not be delivered; the run continues with the next.

    Attributes:
        photo_name: Name of the photo.
    """

    def __init__(self, photo_name: str, message: str) -> None:
        self.photo_name = photo_name
        super().__init__(f"{photo_name}: {message}")


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class RunResult:
    """Result of one reconciliation run of a mapping."""

    mapping_id: int
    success: bool = False
    added: int = 0
    removed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @property
    def duration(self) -> float | None:
        """Run time in seconds, once completed."""
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Serializable form, as stored in the run log."""
        return {
            "mapping_id": self.mapping_id,
            "success": self.success,
            "added": self.added,
            "removed": self.removed,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class MappingState(Enum):
    """Scheduling state of a mapping."""

    UNSCHEDULED = "unscheduled"
    SCHEDULED = "scheduled"
    RUNNING = "running"


@dataclass(frozen=True)
class ScheduledTask:
    """A mapping with a registered cron trigger."""

    mapping_id: int
    schedule: str
    next_run_at: datetime | None = None
