"""Runtime configuration for framesync.

Settings are read from ``FRAMESYNC_*`` environment variables, with defaults
suitable for a single-host installation next to an adb server.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

ENV_PREFIX = "FRAMESYNC_"

DEFAULT_DEVICE_PATH = "/sdcard/frameo_files/media"


def _env(name: str, default: str | None = None) -> str | None:
    return os.environ.get(ENV_PREFIX + name, default)


def _env_int(name: str, default: int | None) -> int | None:
    raw = _env(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None


@dataclass
class Settings:
    """Configuration for the sync service.

    Attributes:
        db_path: SQLite database holding devices, sources, mappings and the ledger.
        data_path: Working directory; processing temporaries live in ``data_path/temp``.
        log_path: Log file written next to stdout output.
        log_level: Level name for the ``framesync`` logger.
        transport: Device transport kind, ``adb`` or ``local``.
        local_device_root: Root directory used by the ``local`` transport.
        adb_binary: Path or name of the adb executable.
        adb_host: Host of the adb server.
        adb_port: Port of the adb server.
        adb_timeout: Timeout in seconds for ordinary adb commands.
        push_timeout: Timeout in seconds for a single file push.
        ready_timeout: Hard deadline in seconds for the liveness probe.
        push_retries: Extra attempts for a push failing with a transport error.
        max_concurrent_runs: Optional limit on parallel runs across mappings.
        max_width: Maximum width of processed images.
        max_height: Maximum height of processed images.
        quality: JPEG/WebP quality of processed images.
        image_format: Output format of processed images.
        google_client_id: OAuth client id used to refresh Google tokens.
        google_client_secret: OAuth client secret used to refresh Google tokens.
    """

    db_path: Path = field(default_factory=lambda: Path("framesync.db"))
    data_path: Path = field(default_factory=lambda: Path("data"))
    log_path: Path = field(default_factory=lambda: Path("framesync.log"))
    log_level: str = "INFO"
    transport: str = "adb"
    local_device_root: Path = field(default_factory=lambda: Path("devices"))
    adb_binary: str = "adb"
    adb_host: str = "localhost"
    adb_port: int = 5037
    adb_timeout: float = 30.0
    push_timeout: float = 300.0
    ready_timeout: float = 2.0
    push_retries: int = 2
    max_concurrent_runs: int | None = None
    max_width: int = 1920
    max_height: int = 1080
    quality: int = 85
    image_format: str = "jpeg"
    google_client_id: str | None = None
    google_client_secret: str | None = None

    def __post_init__(self) -> None:
        """Normalize paths and names."""
        self.db_path = Path(self.db_path)
        self.data_path = Path(self.data_path)
        self.log_path = Path(self.log_path)
        self.local_device_root = Path(self.local_device_root)
        self.log_level = self.log_level.upper()
        self.transport = self.transport.lower()
        self.image_format = self.image_format.lower()

    @property
    def temp_path(self) -> Path:
        """Directory for download and processing temporaries."""
        return self.data_path / "temp"

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from ``FRAMESYNC_*`` environment variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        defaults = cls()
        return cls(
            db_path=Path(_env("DB_PATH", str(defaults.db_path))),
            data_path=Path(_env("DATA_PATH", str(defaults.data_path))),
            log_path=Path(_env("LOG_PATH", str(defaults.log_path))),
            log_level=_env("LOG_LEVEL", defaults.log_level),
            transport=_env("TRANSPORT", defaults.transport),
            local_device_root=Path(_env("LOCAL_DEVICE_ROOT", str(defaults.local_device_root))),
            adb_binary=_env("ADB_BINARY", defaults.adb_binary),
            adb_host=_env("ADB_HOST", defaults.adb_host),
            adb_port=_env_int("ADB_PORT", defaults.adb_port),
            adb_timeout=_env_float("ADB_TIMEOUT", defaults.adb_timeout),
            push_timeout=_env_float("PUSH_TIMEOUT", defaults.push_timeout),
            ready_timeout=_env_float("READY_TIMEOUT", defaults.ready_timeout),
            push_retries=_env_int("PUSH_RETRIES", defaults.push_retries),
            max_concurrent_runs=_env_int("MAX_CONCURRENT_RUNS", None),
            max_width=_env_int("MAX_WIDTH", defaults.max_width),
            max_height=_env_int("MAX_HEIGHT", defaults.max_height),
            quality=_env_int("QUALITY", defaults.quality),
            image_format=_env("FORMAT", defaults.image_format),
            google_client_id=_env("GOOGLE_CLIENT_ID"),
            google_client_secret=_env("GOOGLE_CLIENT_SECRET"),
        )
