"""Mapping commands for framesync CLI.

Commands:
- mappings list: List mappings
- mappings add: Map a source onto a device
- mappings delete: Delete a mapping and its ledger
- mappings ledger: Show the photos synced by a mapping
"""

from __future__ import annotations

import sys

import click
from sqlalchemy.exc import IntegrityError

from framesync.cli.common import (
    db_path_option,
    format_bytes,
    format_time,
    load_settings,
    open_database,
)
from framesync.core.types import SyncPolicy
from framesync.store.ledger import SyncedPhotoLedger
from framesync.sync.scheduler import parse_schedule


def _validate_schedule(
    ctx: click.Context, param: click.Parameter, value: str | None
) -> str | None:
    if not value:
        return None
    try:
        parse_schedule(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e
    return value


@click.group()
def mappings() -> None:
    """Manage source to device mappings."""


@mappings.command("list")
@db_path_option
def list_mappings(db_path: str | None) -> None:
    """List mappings with their ledger size."""
    settings = load_settings(db_path)
    db = open_database(settings)
    try:
        rows = db.list_mappings()
        ledger = SyncedPhotoLedger(db)
        counts = {mapping.id: ledger.count(mapping.id) for mapping in rows}
    finally:
        db.close()

    if not rows:
        click.echo("No mappings configured.")
        return
    for mapping in rows:
        status = "" if mapping.is_active else " (inactive)"
        cap = f", max {mapping.max_photos}" if mapping.max_photos else ""
        click.echo(
            f"#{mapping.id} source {mapping.source_id} -> device {mapping.device_id} "
            f"[{mapping.policy}{cap}]{status}"
        )
        click.echo(f"    Schedule: {mapping.schedule or 'manual'}")
        click.echo(f"    Synced photos: {counts[mapping.id]}")


@mappings.command("add")
@click.argument("source_id", type=int)
@click.argument("device_id", type=int)
@click.option(
    "--policy",
    type=click.Choice([policy.value for policy in SyncPolicy]),
    default=SyncPolicy.ADD_ONLY.value,
    show_default=True,
    help="mirror removes photos that leave the source; add_only never removes.",
)
@click.option("--max-photos", type=click.IntRange(min=1), default=None, help="Keep at most N photos.")
@click.option(
    "--schedule",
    callback=_validate_schedule,
    default=None,
    help='Cron expression, e.g. "0 * * * *" for hourly.',
)
@db_path_option
def add_mapping(
    source_id: int,
    device_id: int,
    policy: str,
    max_photos: int | None,
    schedule: str | None,
    db_path: str | None,
) -> None:
    """Sync SOURCE_ID onto DEVICE_ID."""
    settings = load_settings(db_path)
    db = open_database(settings)
    try:
        if db.get_source(source_id) is None:
            click.echo(f"Error: Source {source_id} not found.", err=True)
            sys.exit(1)
        if db.get_device(device_id) is None:
            click.echo(f"Error: Device {device_id} not found.", err=True)
            sys.exit(1)
        mapping = db.create_mapping(
            source_id, device_id, policy=policy, max_photos=max_photos, schedule=schedule
        )
    except IntegrityError:
        click.echo(
            f"Error: Source {source_id} is already mapped to device {device_id}.", err=True
        )
        sys.exit(1)
    finally:
        db.close()

    click.echo(f"Created mapping #{mapping.id} ({mapping.policy})")


@mappings.command("delete")
@click.argument("mapping_id", type=int)
@click.confirmation_option(prompt="Delete this mapping and its ledger?")
@db_path_option
def delete_mapping(mapping_id: int, db_path: str | None) -> None:
    """Delete a mapping; photos stay on the device."""
    settings = load_settings(db_path)
    db = open_database(settings)
    try:
        deleted = db.delete_mapping(mapping_id)
    finally:
        db.close()

    if not deleted:
        click.echo(f"Error: Mapping {mapping_id} not found.", err=True)
        sys.exit(1)
    click.echo(f"Deleted mapping #{mapping_id}.")


@mappings.command("ledger")
@click.argument("mapping_id", type=int)
@db_path_option
def show_ledger(mapping_id: int, db_path: str | None) -> None:
    """Show the photos a mapping has placed on its device."""
    settings = load_settings(db_path)
    db = open_database(settings)
    try:
        ledger = SyncedPhotoLedger(db)
        entries = ledger.get(mapping_id)
        references = {
            path: ledger.references(mapping_id, path)
            for path in {entry.device_path for entry in entries}
        }
    finally:
        db.close()

    if not entries:
        click.echo("No synced photos.")
        return
    for entry in entries:
        shared = references[entry.device_path]
        click.echo(f"{entry.source_path or entry.source_photo_id}")
        click.echo(
            f"    -> {entry.device_path} ({format_bytes(entry.file_size)}, "
            f"{format_time(entry.synced_at)})"
            + (f" shared by {shared} photos" if shared > 1 else "")
        )
