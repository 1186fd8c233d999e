"""Helpers shared by CLI commands."""

from __future__ import annotations

import sys
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import TypeVar

import click

from framesync.core.config import Settings
from framesync.device.transport import DeviceTransport, create_transport
from framesync.store.database import Database

F = TypeVar("F", bound=Callable[..., object])


def db_path_option(func: F) -> F:
    """Add the ``--db-path`` option to a command."""
    return click.option(
        "--db-path",
        type=click.Path(dir_okay=False),
        default=None,
        help="Path to database file (default: FRAMESYNC_DB_PATH or ./framesync.db).",
    )(func)


def load_settings(db_path: str | None = None) -> Settings:
    """Read settings from the environment, exiting on invalid values."""
    try:
        settings = Settings.from_env()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    if db_path:
        settings.db_path = Path(db_path)
    return settings


def open_database(settings: Settings) -> Database:
    return Database(settings.db_path)


def format_time(value: datetime | None) -> str:
    if value is None:
        return "never"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def format_bytes(size: int) -> str:
    """Format bytes as human-readable string."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"


def make_transport(settings: Settings) -> DeviceTransport:
    """Create the configured transport, exiting on an unknown kind."""
    try:
        return create_transport(settings)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
