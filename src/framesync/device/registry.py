"""Registered devices and their live status."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from framesync.core.config import DEFAULT_DEVICE_PATH
from framesync.core.types import ConnectionType
from framesync.device.transport import (
    DEFAULT_DEVICE_NETWORK_PORT,
    AdbDeviceInfo,
    DeviceHandle,
    DeviceTransport,
    StorageUsage,
    TransportError,
)

if TYPE_CHECKING:
    from framesync.store.database import Database
    from framesync.store.models import Device

logger = logging.getLogger(__name__)

# Where Frameo firmware versions keep their media, most common first
KNOWN_FRAME_PATHS = (
    "/sdcard/frameo_files/media",
    "/sdcard/DCIM/Frameo",
    "/sdcard/Frameo",
)

PHOTO_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".webp"})


@dataclass
class DeviceStatus:
    """Live view of a registered device."""

    device_id: int
    name: str
    serial: str
    online: bool
    storage: StorageUsage | None = None
    photo_count: int | None = None
    last_seen_at: datetime | None = None


def handle_for(device: Device) -> DeviceHandle:
    """Build a transport handle from a device row."""
    return DeviceHandle(
        serial=device.serial,
        base_path=device.device_path,
        connection_type=ConnectionType(device.connection_type),
        network_address=device.network_address,
        network_port=device.network_port,
    )


class DeviceRegistry:
    """Registers devices and resolves them into transport handles."""

    def __init__(self, db: Database, transport: DeviceTransport) -> None:
        self._db = db
        self._transport = transport

    @property
    def transport(self) -> DeviceTransport:
        return self._transport

    def resolve(self, device_id: int) -> DeviceHandle | None:
        """Handle for a registered device, or None if it does not exist."""
        device = self._db.get_device(device_id)
        if device is None:
            return None
        return handle_for(device)

    def detect_device_path(self, handle: DeviceHandle) -> str:
        """Find the frame's media directory.

        Probes the known locations in order and falls back to the default.
        """
        for candidate in KNOWN_FRAME_PATHS:
            try:
                if self._transport.exists(handle, candidate):
                    logger.info("Detected media directory %s on %s", candidate, handle.serial)
                    return candidate
            except TransportError as e:
                logger.warning("Could not probe %s on %s: %s", candidate, handle.serial, e)
                break
        return DEFAULT_DEVICE_PATH

    def register(
        self,
        name: str,
        serial: str,
        connection_type: ConnectionType | str = ConnectionType.USB,
        network_address: str | None = None,
        network_port: int | None = None,
        device_path: str | None = None,
    ) -> Device:
        """Register a device.

        When no ``device_path`` is given and the device is reachable, the
        media directory is detected on the device.

        Args:
            name: Display name.
            serial: adb serial.
            connection_type: USB or network.
            network_address: Host of a network device.
            network_port: Port of a network device.
            device_path: Remote base directory; detected when omitted.

        Returns:
            The created Device.
        """
        connection_type = ConnectionType(connection_type)
        if connection_type is ConnectionType.NETWORK and not network_address:
            raise ValueError("Network devices need a network address")

        if device_path is None:
            handle = DeviceHandle(serial=serial, base_path=DEFAULT_DEVICE_PATH)
            if self._transport.is_ready(handle):
                device_path = self.detect_device_path(handle)
            else:
                logger.info("Device %s is offline, using default path", serial)
                device_path = DEFAULT_DEVICE_PATH

        device = self._db.create_device(
            name=name,
            serial=serial,
            connection_type=connection_type,
            network_address=network_address,
            network_port=network_port or DEFAULT_DEVICE_NETWORK_PORT,
            device_path=device_path,
        )
        logger.info("Registered device %s (%s) at %s", device.name, device.serial, device.device_path)
        return device

    def status(self, device_id: int) -> DeviceStatus | None:
        """Query a device's liveness, storage and photo count.

        Returns:
            The status, or None if the device is not registered.
        """
        device = self._db.get_device(device_id)
        if device is None:
            return None

        handle = handle_for(device)
        status = DeviceStatus(
            device_id=device.id,
            name=device.name,
            serial=device.serial,
            online=self._transport.is_ready(handle),
            last_seen_at=device.last_seen_at,
        )
        if not status.online:
            return status

        self._db.touch_device(device.id)
        status.storage = self._transport.storage_usage(handle)
        try:
            files = self._transport.list_files(handle, handle.base_path)
        except TransportError as e:
            logger.warning("Could not list photos on %s: %s", device.serial, e)
        else:
            status.photo_count = sum(
                1 for name in files if any(name.lower().endswith(ext) for ext in PHOTO_EXTENSIONS)
            )
        return status

    def discover(self, include_registered: bool = False) -> list[AdbDeviceInfo]:
        """Devices visible to the transport.

        Args:
            include_registered: Also list devices already registered.
        """
        found = self._transport.list_devices()
        if include_registered:
            return found
        known = {device.serial for device in self._db.list_devices()}
        return [info for info in found if info.serial not in known]

    def connect_network(self, device_id: int) -> bool:
        """Connect a registered network device through the transport.

        Raises:
            ValueError: If the device does not exist or is not a network device.
        """
        device = self._db.get_device(device_id)
        if device is None:
            raise ValueError(f"Device {device_id} not found")
        if device.connection_type != ConnectionType.NETWORK.value or not device.network_address:
            raise ValueError(f"Device {device.name} is not a network device")

        connected = self._transport.connect(device.network_address, device.network_port)
        if connected:
            self._db.touch_device(device.id)
        return connected
