"""Source commands for framesync CLI.

Commands:
- sources list: List configured sources
- sources add-local: Add a local folder source
- sources test: Check that a source is reachable
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from framesync.cli.common import db_path_option, format_time, load_settings, open_database
from framesync.core.types import SourceType
from framesync.sources import SourceError, create_source


@click.group()
def sources() -> None:
    """Manage photo sources."""


@sources.command("list")
@db_path_option
def list_sources(db_path: str | None) -> None:
    """List configured sources."""
    settings = load_settings(db_path)
    db = open_database(settings)
    try:
        rows = db.list_sources()
    finally:
        db.close()

    if not rows:
        click.echo("No sources configured.")
        return
    for source in rows:
        status = "" if source.is_active else " (inactive)"
        click.echo(f"#{source.id} {source.name} [{source.type}]{status}")
        if source.type == SourceType.LOCAL_FOLDER.value:
            click.echo(f"    Folder: {source.config.get('folder_path')}")
        click.echo(f"    Last sync: {format_time(source.last_sync_at)}")


@sources.command("add-local")
@click.argument("name")
@click.argument("folder", type=click.Path(file_okay=False))
@click.option("--recursive", "-r", is_flag=True, help="Include subfolders.")
@click.option(
    "--ext",
    "extensions",
    multiple=True,
    help="File extension to include (repeatable, default: common image types).",
)
@click.option("--album", default=None, help="Subfolder to restrict the source to.")
@db_path_option
def add_local(
    name: str,
    folder: str,
    recursive: bool,
    extensions: tuple[str, ...],
    album: str | None,
    db_path: str | None,
) -> None:
    """Add a local FOLDER as a photo source."""
    folder_path = Path(folder).expanduser().resolve()
    if not folder_path.is_dir():
        click.echo(f"Warning: {folder_path} does not exist yet.", err=True)

    config: dict[str, object] = {"folder_path": str(folder_path), "recursive": recursive}
    if extensions:
        config["include_extensions"] = list(extensions)
    if album:
        config["album_id"] = album

    settings = load_settings(db_path)
    db = open_database(settings)
    try:
        source = db.create_source(name, SourceType.LOCAL_FOLDER, config)
    finally:
        db.close()
    click.echo(f"Added source #{source.id} ({source.name}) for {folder_path}")


@sources.command("test")
@click.argument("source_id", type=int)
@db_path_option
def test_source(source_id: int, db_path: str | None) -> None:
    """Check that a source is reachable and list its albums."""
    settings = load_settings(db_path)
    db = open_database(settings)
    try:
        record = db.get_source(source_id)
        if record is None:
            click.echo(f"Error: Source {source_id} not found.", err=True)
            sys.exit(1)

        try:
            source = create_source(record, db=db, settings=settings)
        except SourceError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        try:
            if not source.test_connection():
                click.echo(f"Source {record.name} is not reachable.", err=True)
                sys.exit(1)
            albums = source.list_albums()
        except SourceError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        finally:
            source.close()
    finally:
        db.close()

    click.echo(f"Source {record.name} is reachable.")
    for album in albums:
        count = f" ({album.photo_count} photos)" if album.photo_count is not None else ""
        click.echo(f"  {album.name or '(root)'}{count}")
