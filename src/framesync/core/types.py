"""Shared types for framesync.

This module defines the enums used across the store, engine and CLI.
"""

from __future__ import annotations

from enum import Enum


class SyncPolicy(str, Enum):
    """Reconciliation policy of a mapping.

    MIRROR removes photos from the device once they leave the source,
    ADD_ONLY never removes anything.
    """

    MIRROR = "mirror"
    ADD_ONLY = "add_only"


class SourceType(str, Enum):
    """Kinds of photo sources a mapping can pull from."""

    LOCAL_FOLDER = "local_folder"
    GOOGLE_PHOTOS = "google_photos"


class ConnectionType(str, Enum):
    """How a device is reached by adb."""

    USB = "usb"
    NETWORK = "network"


class LogOperation(str, Enum):
    """Operations recorded in the run log."""

    SYNC_START = "sync_start"
    SYNC_COMPLETE = "sync_complete"
    PHOTO_PUSH = "photo_push"
    PHOTO_DELETE = "photo_delete"
    ERROR = "error"


class LogStatus(str, Enum):
    """Status of a run log entry."""

    SUCCESS = "success"
    FAILURE = "failure"
    IN_PROGRESS = "in_progress"
