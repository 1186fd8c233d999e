"""Run log command for framesync CLI."""

from __future__ import annotations

import click

from framesync.cli.common import db_path_option, format_time, load_settings, open_database


@click.command()
@click.option("--mapping", "mapping_id", type=int, default=None, help="Only entries of this mapping.")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=50, show_default=True)
@db_path_option
def logs(mapping_id: int | None, limit: int, db_path: str | None) -> None:
    """Show the sync run log, newest first."""
    settings = load_settings(db_path)
    db = open_database(settings)
    try:
        entries = db.get_sync_logs(mapping_id=mapping_id, limit=limit)
    finally:
        db.close()

    if not entries:
        click.echo("No log entries.")
        return
    for entry in entries:
        mapping = f"#{entry.mapping_id}" if entry.mapping_id is not None else "-"
        click.echo(
            f"{format_time(entry.created_at)} {mapping} {entry.operation} "
            f"{entry.status}: {entry.message or ''}"
        )
