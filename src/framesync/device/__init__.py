"""Device access - transports and the device registry."""

from framesync.device.registry import DeviceRegistry, DeviceStatus, handle_for
from framesync.device.transport import (
    AdbDeviceInfo,
    AdbTransport,
    DeviceHandle,
    DeviceTransport,
    LocalDirTransport,
    StorageUsage,
    TransferError,
    TransportError,
    TransportTimeout,
    create_transport,
)

__all__ = [
    # Registry
    "DeviceRegistry",
    "DeviceStatus",
    "handle_for",
    # Transport
    "AdbDeviceInfo",
    "AdbTransport",
    "DeviceHandle",
    "DeviceTransport",
    "LocalDirTransport",
    "StorageUsage",
    "create_transport",
    # Errors
    "TransferError",
    "TransportError",
    "TransportTimeout",
]
