"""File transport to photo frames.

This module provides:
- Abstract interface for device file operations
- AdbTransport, driving the ``adb`` binary
- LocalDirTransport, mapping each device to a local directory (development/testing)

Logical absence is returned as a value (``None``, ``[]``); only transport
failures raise. Transports keep no state between calls.
"""

from __future__ import annotations

import logging
import re
import shlex
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from framesync.core.hashing import compute_file_hash
from framesync.core.types import ConnectionType

if TYPE_CHECKING:
    from framesync.core.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_ADB_PORT = 5037
DEFAULT_DEVICE_NETWORK_PORT = 5555
DEFAULT_READY_TIMEOUT = 2.0

MEDIA_SCANNER_ACTION = "android.intent.action.MEDIA_SCANNER_SCAN_FILE"

# Markers echoed by shell probes, so absence is told apart from failure
_MISSING = "__MISSING__"
_PRESENT = "__PRESENT__"
_ABSENT = "__ABSENT__"

_PUSH_BYTES_RE = re.compile(r"\((\d+) bytes")
_MD5_RE = re.compile(r"^[0-9a-fA-F]{32}$")


class TransportError(Exception):
    """A device command failed or the device could not be reached."""


class TransportTimeout(TransportError):
    """A device command did not finish in time."""


class TransferError(TransportError):
    """A file push failed."""


@dataclass(frozen=True)
class DeviceHandle:
    """Everything a transport needs to address one device."""

    serial: str
    base_path: str
    connection_type: ConnectionType = ConnectionType.USB
    network_address: str | None = None
    network_port: int = DEFAULT_DEVICE_NETWORK_PORT

    def remote_path(self, name: str) -> str:
        """Path of a file directly under the base directory."""
        return f"{self.base_path.rstrip('/')}/{name}"


@dataclass(frozen=True)
class StorageUsage:
    """Storage figures in bytes."""

    total: int
    used: int
    available: int


@dataclass(frozen=True)
class AdbDeviceInfo:
    """A device as reported by ``adb devices -l``."""

    serial: str
    state: str
    model: str | None = None
    product: str | None = None

    @property
    def online(self) -> bool:
        return self.state == "device"


class DeviceTransport(ABC):
    """Abstract interface for file operations on a device."""

    @property
    @abstractmethod
    def location(self) -> str:
        """Return a human-readable description of the transport."""

    @abstractmethod
    def list_files(self, handle: DeviceHandle, directory: str) -> list[str]:
        """List entry names in a remote directory.

        Returns:
            Entry names; an empty list if the directory does not exist.

        Raises:
            TransportError: If the device cannot be queried.
        """

    @abstractmethod
    def push_file(self, handle: DeviceHandle, local_path: Path, remote_path: str) -> int:
        """Copy a local file to the device.

        The parent directory of ``remote_path`` must already exist.

        Returns:
            Number of bytes transferred.

        Raises:
            TransferError: If the push fails.
        """

    @abstractmethod
    def remote_hash(self, handle: DeviceHandle, remote_path: str) -> str | None:
        """MD5 of a remote file as lowercase hex.

        Returns:
            The digest, or None if the file does not exist.

        Raises:
            TransportError: If the device cannot be queried.
        """

    @abstractmethod
    def delete_file(self, handle: DeviceHandle, remote_path: str) -> bool:
        """Delete a remote file.

        Returns:
            True if the file is confirmed absent afterwards (also when it was
            already gone), False on any failure.
        """

    @abstractmethod
    def exists(self, handle: DeviceHandle, remote_path: str) -> bool:
        """Check whether a remote file or directory exists.

        Raises:
            TransportError: If the device cannot be queried.
        """

    @abstractmethod
    def ensure_directory(self, handle: DeviceHandle, directory: str) -> None:
        """Create a remote directory and its parents if missing.

        Raises:
            TransportError: If the directory cannot be created.
        """

    @abstractmethod
    def is_ready(self, handle: DeviceHandle, timeout: float = DEFAULT_READY_TIMEOUT) -> bool:
        """Liveness probe bounded by ``timeout``. Never raises."""

    @abstractmethod
    def notify_indexed(self, handle: DeviceHandle, remote_path: str) -> None:
        """Ask the device to index a new file. Failures are only logged."""

    @abstractmethod
    def storage_usage(self, handle: DeviceHandle, path: str | None = None) -> StorageUsage | None:
        """Storage figures of the filesystem holding ``path`` (base path by default).

        Returns None if they cannot be determined.
        """

    @abstractmethod
    def list_devices(self) -> list[AdbDeviceInfo]:
        """Devices currently visible to the transport.

        Raises:
            TransportError: If the device list cannot be read.
        """

    @abstractmethod
    def connect(self, host: str, port: int = DEFAULT_DEVICE_NETWORK_PORT) -> bool:
        """Attach a network device. Returns True when connected."""

    @abstractmethod
    def disconnect(self, host: str, port: int = DEFAULT_DEVICE_NETWORK_PORT) -> bool:
        """Detach a network device. Returns True when disconnected."""


class AdbTransport(DeviceTransport):
    """Transport shelling out to the ``adb`` client.

    Every call goes through the adb server at ``host:port`` and is bounded by
    a timeout. Remote paths are shell-quoted.
    """

    def __init__(
        self,
        adb_binary: str = "adb",
        host: str = "localhost",
        port: int = DEFAULT_ADB_PORT,
        timeout: float = 30.0,
        push_timeout: float = 300.0,
    ) -> None:
        """Initialize the adb transport.

        Args:
            adb_binary: Name or path of the adb executable.
            host: Host of the adb server.
            port: Port of the adb server.
            timeout: Timeout in seconds for ordinary commands.
            push_timeout: Timeout in seconds for a file push.
        """
        self._adb = adb_binary
        self._host = host
        self._port = port
        self._timeout = timeout
        self._push_timeout = push_timeout

    @property
    def location(self) -> str:
        """Return the adb server address."""
        return f"adb server: {self._host}:{self._port}"

    def _run(self, args: list[str], timeout: float | None = None) -> subprocess.CompletedProcess[str]:
        """Run an adb command.

        Raises:
            TransportTimeout: If the command times out.
            TransportError: If adb cannot be started.
        """
        command = [self._adb, "-H", self._host, "-P", str(self._port), *args]
        try:
            return subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=timeout if timeout is not None else self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise TransportTimeout(f"adb {' '.join(args[:3])} timed out after {e.timeout}s") from e
        except OSError as e:
            raise TransportError(f"Cannot run {self._adb}: {e}") from e

    def _shell(self, handle: DeviceHandle, command: str, timeout: float | None = None) -> str:
        """Run a shell command on the device and return its stdout.

        Raises:
            TransportError: If adb reports an error.
        """
        result = self._run(["-s", handle.serial, "shell", command], timeout=timeout)
        if result.returncode != 0:
            message = (result.stderr or result.stdout).strip() or f"exit status {result.returncode}"
            raise TransportError(f"{handle.serial}: {message}")
        return result.stdout

    def list_files(self, handle: DeviceHandle, directory: str) -> list[str]:
        """List entry names in a remote directory."""
        quoted = shlex.quote(directory)
        output = self._shell(
            handle, f"if [ -d {quoted} ]; then ls -1 {quoted}; else echo {_MISSING}; fi"
        )
        lines = [line.strip() for line in output.splitlines() if line.strip()]
        if lines == [_MISSING]:
            return []
        return lines

    def push_file(self, handle: DeviceHandle, local_path: Path, remote_path: str) -> int:
        """Push a local file with ``adb push``."""
        local_path = Path(local_path)
        if not local_path.is_file():
            raise TransferError(f"Local file not found: {local_path}")

        try:
            result = self._run(
                ["-s", handle.serial, "push", str(local_path), remote_path],
                timeout=self._push_timeout,
            )
        except TransportError as e:
            raise TransferError(f"Push of {local_path.name} to {handle.serial} failed: {e}") from e

        if result.returncode != 0:
            message = (result.stderr or result.stdout).strip()
            raise TransferError(f"Push of {local_path.name} to {handle.serial} failed: {message}")

        match = _PUSH_BYTES_RE.search(result.stdout + result.stderr)
        if match:
            return int(match.group(1))
        return local_path.stat().st_size

    def remote_hash(self, handle: DeviceHandle, remote_path: str) -> str | None:
        """MD5 of a remote file via ``md5sum``."""
        quoted = shlex.quote(remote_path)
        output = self._shell(
            handle, f"if [ -f {quoted} ]; then md5sum {quoted}; else echo {_MISSING}; fi"
        ).strip()
        if output == _MISSING:
            return None

        digest = output.split()[0] if output else ""
        if not _MD5_RE.match(digest):
            raise TransportError(f"{handle.serial}: unexpected md5sum output: {output!r}")
        return digest.lower()

    def delete_file(self, handle: DeviceHandle, remote_path: str) -> bool:
        """Remove a remote file and confirm it is gone."""
        quoted = shlex.quote(remote_path)
        try:
            output = self._shell(
                handle,
                f"rm -f {quoted}; if [ -e {quoted} ]; then echo {_PRESENT}; else echo {_ABSENT}; fi",
            )
        except TransportError as e:
            logger.warning("Failed to delete %s on %s: %s", remote_path, handle.serial, e)
            return False

        if _ABSENT in output:
            return True
        logger.warning("File still present after delete: %s on %s", remote_path, handle.serial)
        return False

    def exists(self, handle: DeviceHandle, remote_path: str) -> bool:
        """Check a remote path with ``[ -e ]``."""
        quoted = shlex.quote(remote_path)
        output = self._shell(
            handle, f"if [ -e {quoted} ]; then echo {_PRESENT}; else echo {_ABSENT}; fi"
        )
        return _PRESENT in output

    def ensure_directory(self, handle: DeviceHandle, directory: str) -> None:
        """Create a remote directory with ``mkdir -p``."""
        self._shell(handle, f"mkdir -p {shlex.quote(directory)}")

    def is_ready(self, handle: DeviceHandle, timeout: float = DEFAULT_READY_TIMEOUT) -> bool:
        """Check that the device answers a trivial shell command in time."""
        try:
            return self._shell(handle, "echo ready", timeout=timeout).strip() == "ready"
        except TransportError as e:
            logger.debug("Device %s not ready: %s", handle.serial, e)
            return False

    def notify_indexed(self, handle: DeviceHandle, remote_path: str) -> None:
        """Broadcast a media scanner request for a pushed file."""
        uri = shlex.quote(f"file://{remote_path}")
        try:
            self._shell(handle, f"am broadcast -a {MEDIA_SCANNER_ACTION} -d {uri}")
        except TransportError as e:
            logger.warning("Media scan request failed for %s on %s: %s", remote_path, handle.serial, e)

    def storage_usage(self, handle: DeviceHandle, path: str | None = None) -> StorageUsage | None:
        """Read storage figures from ``df -k``."""
        target = shlex.quote(path or handle.base_path)
        try:
            output = self._shell(handle, f"df -k {target}")
        except TransportError as e:
            logger.debug("Could not read storage of %s: %s", handle.serial, e)
            return None
        return parse_df_output(output)

    def list_devices(self) -> list[AdbDeviceInfo]:
        """Parse ``adb devices -l``."""
        result = self._run(["devices", "-l"])
        if result.returncode != 0:
            raise TransportError(f"adb devices failed: {result.stderr.strip()}")
        return parse_devices_output(result.stdout)

    def connect(self, host: str, port: int = DEFAULT_DEVICE_NETWORK_PORT) -> bool:
        """Connect to a device over TCP/IP."""
        result = self._run(["connect", f"{host}:{port}"])
        output = (result.stdout + result.stderr).lower()
        connected = result.returncode == 0 and "connected to" in output
        if connected:
            logger.info("Connected to %s:%d", host, port)
        else:
            logger.warning("Could not connect to %s:%d: %s", host, port, output.strip())
        return connected

    def disconnect(self, host: str, port: int = DEFAULT_DEVICE_NETWORK_PORT) -> bool:
        """Disconnect a TCP/IP device."""
        result = self._run(["disconnect", f"{host}:{port}"])
        output = (result.stdout + result.stderr).lower()
        return result.returncode == 0 and "disconnected" in output


def parse_df_output(output: str) -> StorageUsage | None:
    """Parse the last line of ``df -k`` output into bytes."""
    lines = [line for line in output.splitlines() if line.strip()]
    if len(lines) < 2:
        return None
    fields = lines[-1].split()
    try:
        total, used, available = (int(value) * 1024 for value in fields[1:4])
    except (ValueError, IndexError):
        logger.debug("Unexpected df output: %r", output)
        return None
    return StorageUsage(total=total, used=used, available=available)


def parse_devices_output(output: str) -> list[AdbDeviceInfo]:
    """Parse the output of ``adb devices -l``."""
    devices: list[AdbDeviceInfo] = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("List of devices") or line.startswith("*"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        attrs = dict(part.split(":", 1) for part in parts[2:] if ":" in part)
        devices.append(
            AdbDeviceInfo(
                serial=parts[0],
                state=parts[1],
                model=attrs.get("model"),
                product=attrs.get("product"),
            )
        )
    return devices


class LocalDirTransport(DeviceTransport):
    """Transport writing into local directories, one per device serial.

    A device is ready when its directory exists under the root. Remote
    absolute paths are mapped below that directory.
    """

    def __init__(self, root: Path | str) -> None:
        """Initialize local transport.

        Args:
            root: Directory holding one subdirectory per device.
        """
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def location(self) -> str:
        """Return the local root path."""
        return f"Local directories: {self._root}"

    @property
    def root(self) -> Path:
        return self._root

    @staticmethod
    def _dir_name(serial: str) -> str:
        return serial.replace(":", "_").replace("/", "_")

    def device_dir(self, serial: str) -> Path:
        """Directory standing in for a device's filesystem."""
        return self._root / self._dir_name(serial)

    def local_path(self, handle: DeviceHandle, remote_path: str) -> Path:
        """Map a remote path to a local one.

        Raises:
            TransportError: If the path escapes the device directory.
        """
        parts = PurePosixPath(remote_path).parts
        relative = [part for part in parts if part not in ("/", "")]
        if ".." in relative:
            raise TransportError(f"Invalid remote path: {remote_path}")
        return self.device_dir(handle.serial).joinpath(*relative)

    def list_files(self, handle: DeviceHandle, directory: str) -> list[str]:
        """List entry names, sorted."""
        path = self.local_path(handle, directory)
        if not path.is_dir():
            return []
        try:
            return sorted(entry.name for entry in path.iterdir())
        except OSError as e:
            raise TransportError(f"Cannot list {directory}: {e}") from e

    def push_file(self, handle: DeviceHandle, local_path: Path, remote_path: str) -> int:
        """Copy a file into the device directory."""
        local_path = Path(local_path)
        target = self.local_path(handle, remote_path)
        if not local_path.is_file():
            raise TransferError(f"Local file not found: {local_path}")
        if not target.parent.is_dir():
            raise TransferError(f"Remote directory does not exist: {PurePosixPath(remote_path).parent}")
        try:
            shutil.copyfile(local_path, target)
        except OSError as e:
            raise TransferError(f"Push of {local_path.name} failed: {e}") from e
        return target.stat().st_size

    def remote_hash(self, handle: DeviceHandle, remote_path: str) -> str | None:
        """MD5 of the mapped file."""
        path = self.local_path(handle, remote_path)
        if not path.is_file():
            return None
        try:
            return compute_file_hash(path)
        except OSError as e:
            raise TransportError(f"Cannot read {remote_path}: {e}") from e

    def delete_file(self, handle: DeviceHandle, remote_path: str) -> bool:
        """Remove the mapped file."""
        try:
            path = self.local_path(handle, remote_path)
            path.unlink(missing_ok=True)
        except (OSError, TransportError) as e:
            logger.warning("Failed to delete %s on %s: %s", remote_path, handle.serial, e)
            return False
        return not path.exists()

    def exists(self, handle: DeviceHandle, remote_path: str) -> bool:
        return self.local_path(handle, remote_path).exists()

    def ensure_directory(self, handle: DeviceHandle, directory: str) -> None:
        """Create the mapped directory."""
        try:
            self.local_path(handle, directory).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TransportError(f"Cannot create {directory}: {e}") from e

    def is_ready(self, handle: DeviceHandle, timeout: float = DEFAULT_READY_TIMEOUT) -> bool:
        """A device is ready when its directory exists."""
        return self.device_dir(handle.serial).is_dir()

    def notify_indexed(self, handle: DeviceHandle, remote_path: str) -> None:
        logger.debug("Indexed %s on %s", remote_path, handle.serial)

    def storage_usage(self, handle: DeviceHandle, path: str | None = None) -> StorageUsage | None:
        """Disk usage of the filesystem holding the device directory."""
        try:
            usage = shutil.disk_usage(self.device_dir(handle.serial))
        except OSError:
            return None
        return StorageUsage(total=usage.total, used=usage.used, available=usage.free)

    def list_devices(self) -> list[AdbDeviceInfo]:
        """Every subdirectory of the root is an online device."""
        return [
            AdbDeviceInfo(serial=entry.name, state="device", model="local")
            for entry in sorted(self._root.iterdir())
            if entry.is_dir()
        ]

    def connect(self, host: str, port: int = DEFAULT_DEVICE_NETWORK_PORT) -> bool:
        """Create the directory of a network device."""
        self.device_dir(f"{host}:{port}").mkdir(parents=True, exist_ok=True)
        return True

    def disconnect(self, host: str, port: int = DEFAULT_DEVICE_NETWORK_PORT) -> bool:
        return True


def create_transport(settings: Settings) -> DeviceTransport:
    """Factory function to create a transport from configuration.

    Args:
        settings: Settings; ``transport`` is ``adb`` or ``local``.

    Returns:
        Configured DeviceTransport instance.

    Raises:
        ValueError: If the transport kind is unknown.
    """
    if settings.transport == "adb":
        return AdbTransport(
            adb_binary=settings.adb_binary,
            host=settings.adb_host,
            port=settings.adb_port,
            timeout=settings.adb_timeout,
            push_timeout=settings.push_timeout,
        )

    if settings.transport == "local":
        return LocalDirTransport(settings.local_device_root)

    raise ValueError(f"Unknown transport type: {settings.transport}")
