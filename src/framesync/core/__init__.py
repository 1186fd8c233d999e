"""Core module - configuration, hashing, logging setup and shared types."""

from framesync.core.config import DEFAULT_DEVICE_PATH, Settings
from framesync.core.hashing import HASH_ALGORITHM, compute_file_hash
from framesync.core.logs import setup_logging
from framesync.core.types import (
    ConnectionType,
    LogOperation,
    LogStatus,
    SourceType,
    SyncPolicy,
)

__all__ = [
    # Config
    "DEFAULT_DEVICE_PATH",
    "Settings",
    # Hashing
    "HASH_ALGORITHM",
    "compute_file_hash",
    # Logging
    "setup_logging",
    # Types
    "ConnectionType",
    "LogOperation",
    "LogStatus",
    "SourceType",
    "SyncPolicy",
]
