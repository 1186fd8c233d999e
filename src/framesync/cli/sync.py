"""Sync commands for framesync CLI.

Commands:
- serve: Run scheduled syncs until interrupted
- run: Run one mapping now
"""

from __future__ import annotations

import logging
import sys
import time

import click

from framesync.cli.common import db_path_option, load_settings, make_transport, open_database


@click.command()
@db_path_option
def serve(db_path: str | None) -> None:
    """Run scheduled syncs until interrupted."""
    from framesync.core.logs import setup_logging
    from framesync.sync.engine import SyncEngine
    from framesync.sync.scheduler import SyncScheduler

    settings = load_settings(db_path)
    setup_logging(settings.log_path, settings.log_level)

    db = open_database(settings)
    transport = make_transport(settings)
    engine = SyncEngine.from_settings(db, transport, settings)
    scheduler = SyncScheduler(db, engine, max_concurrent_runs=settings.max_concurrent_runs)

    scheduler.start()
    tasks = scheduler.get_scheduled_tasks()
    click.echo(f"Database: {settings.db_path}")
    click.echo(f"Transport: {transport.location}")
    click.echo(f"Scheduled mappings: {len(tasks)}")
    for task in tasks:
        click.echo(f"  #{task.mapping_id}: {task.schedule}")
    click.echo("Press Ctrl+C to stop.")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    finally:
        scheduler.stop(wait=False)
        db.close()


@click.command()
@click.argument("mapping_id", type=int)
@click.option("--verbose", "-v", is_flag=True, help="Show progress logs.")
@db_path_option
def run(mapping_id: int, verbose: bool, db_path: str | None) -> None:
    """Sync one mapping now.

    Exits with status 1 when the run reports errors.
    """
    from framesync.core.logs import setup_logging
    from framesync.sync.engine import SyncEngine

    settings = load_settings(db_path)
    setup_logging(None, logging.DEBUG if verbose else logging.WARNING)

    db = open_database(settings)
    try:
        transport = make_transport(settings)
        engine = SyncEngine.from_settings(db, transport, settings)
        result = engine.run(mapping_id)
    finally:
        db.close()

    click.echo(f"Mapping #{mapping_id}: {'success' if result.success else 'failed'}")
    click.echo(f"  Added:   {result.added}")
    click.echo(f"  Removed: {result.removed}")
    click.echo(f"  Skipped: {result.skipped}")
    if result.errors:
        click.echo(f"  Errors ({len(result.errors)}):")
        for error in result.errors:
            click.echo(f"    {error}")
    if not result.success:
        sys.exit(1)
