"""Device commands for framesync CLI.

Commands:
- devices list: List registered devices
- devices add: Register a device
- devices status: Show live status of a device
- devices discover: List connected devices not yet registered
- devices connect: Connect a network device
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
    make_transport,
    open_database,
)
from framesync.core.types import ConnectionType
from framesync.device.registry import DeviceRegistry
from framesync.device.transport import TransportError


@click.group()
def devices() -> None:
    """Manage photo frames."""


@devices.command("list")
@db_path_option
def list_devices(db_path: str | None) -> None:
    """List registered devices."""
    settings = load_settings(db_path)
    db = open_database(settings)
    try:
        rows = db.list_devices()
    finally:
        db.close()

    if not rows:
        click.echo("No devices registered.")
        return
    for device in rows:
        status = "" if device.is_active else " (inactive)"
        click.echo(f"#{device.id} {device.name}{status}")
        click.echo(f"    Serial: {device.serial} ({device.connection_type})")
        click.echo(f"    Path: {device.device_path}")
        click.echo(f"    Last seen: {format_time(device.last_seen_at)}")


@devices.command("add")
@click.argument("name")
@click.argument("serial")
@click.option("--network-address", default=None, help="Host of a network device.")
@click.option("--network-port", type=int, default=None, help="Port of a network device (default: 5555).")
@click.option(
    "--device-path",
    default=None,
    help="Media directory on the device (default: detected, or /sdcard/frameo_files/media).",
)
@db_path_option
def add_device(
    name: str,
    serial: str,
    network_address: str | None,
    network_port: int | None,
    device_path: str | None,
    db_path: str | None,
) -> None:
    """Register a device by its adb SERIAL."""
    settings = load_settings(db_path)
    transport = make_transport(settings)
    db = open_database(settings)
    registry = DeviceRegistry(db, transport)
    connection_type = ConnectionType.NETWORK if network_address else ConnectionType.USB

    try:
        device = registry.register(
            name=name,
            serial=serial,
            connection_type=connection_type,
            network_address=network_address,
            network_port=network_port,
            device_path=device_path,
        )
    except IntegrityError:
        click.echo(f"Error: A device with serial {serial} is already registered.", err=True)
        sys.exit(1)
    finally:
        db.close()

    click.echo(f"Registered device #{device.id} ({device.name}) at {device.device_path}")


@devices.command("status")
@click.argument("device_id", type=int)
@db_path_option
def device_status(device_id: int, db_path: str | None) -> None:
    """Show whether a device is online, its storage and photo count."""
    settings = load_settings(db_path)
    transport = make_transport(settings)
    db = open_database(settings)
    try:
        status = DeviceRegistry(db, transport).status(device_id)
    finally:
        db.close()

    if status is None:
        click.echo(f"Error: Device {device_id} not found.", err=True)
        sys.exit(1)

    click.echo(f"#{status.device_id} {status.name} ({status.serial})")
    click.echo(f"  Online: {'yes' if status.online else 'no'}")
    if status.storage is not None:
        click.echo(
            f"  Storage: {format_bytes(status.storage.used)} used, "
            f"{format_bytes(status.storage.available)} free "
            f"of {format_bytes(status.storage.total)}"
        )
    if status.photo_count is not None:
        click.echo(f"  Photos: {status.photo_count}")


@devices.command("discover")
@click.option("--all", "include_registered", is_flag=True, help="Include registered devices.")
@db_path_option
def discover(include_registered: bool, db_path: str | None) -> None:
    """List devices visible to adb."""
    settings = load_settings(db_path)
    transport = make_transport(settings)
    db = open_database(settings)
    try:
        found = DeviceRegistry(db, transport).discover(include_registered=include_registered)
    except TransportError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        db.close()

    if not found:
        click.echo("No new devices found.")
        return
    for info in found:
        model = f" {info.model}" if info.model else ""
        click.echo(f"{info.serial}\t{info.state}{model}")


@devices.command("connect")
@click.argument("device_id", type=int)
@db_path_option
def connect(device_id: int, db_path: str | None) -> None:
    """Connect a registered network device."""
    settings = load_settings(db_path)
    transport = make_transport(settings)
    db = open_database(settings)
    try:
        connected = DeviceRegistry(db, transport).connect_network(device_id)
    except (ValueError, TransportError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        db.close()

    if not connected:
        click.echo(f"Could not connect device {device_id}.", err=True)
        sys.exit(1)
    click.echo(f"Device {device_id} connected.")
