"""Sync module - reconciliation engine, scheduler and shared types."""

from framesync.sync.engine import SyncEngine
from framesync.sync.retry import retry_with_backoff
from framesync.sync.scheduler import SyncScheduler, parse_schedule
from framesync.sync.types import (
    MappingState,
    PerPhotoError,
    RunResult,
    ScheduledTask,
    SyncError,
    TerminalRunError,
)

__all__ = [
    # Engine
    "SyncEngine",
    # Scheduler
    "SyncScheduler",
    "parse_schedule",
    # Retry
    "retry_with_backoff",
    # Types
    "MappingState",
    "RunResult",
    "ScheduledTask",
    # Errors
    "PerPhotoError",
    "SyncError",
    "TerminalRunError",
]
