"""Command-line interface for framesync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- serve: Run scheduled syncs until interrupted
- run: Sync one mapping now
- devices: Manage photo frames
- sources: Manage photo sources
- mappings: Manage source to device mappings
- logs: Show the sync run log
"""

from __future__ import annotations

import click

from framesync.cli.devices import devices
from framesync.cli.logs import logs
from framesync.cli.mappings import mappings
from framesync.cli.sources import sources
from framesync.cli.sync import run, serve


@click.group()
@click.version_option(package_name="framesync")
def cli() -> None:
    """FrameSync - keep photo frames in sync with your photo sources."""


# Sync commands
cli.add_command(serve)
cli.add_command(run)

# Management commands
cli.add_command(devices)
cli.add_command(sources)
cli.add_command(mappings)
cli.add_command(logs)


def main() -> None:
    """Entry point for the CLI."""
    cli()
