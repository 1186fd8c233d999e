"""FrameSync - photo synchronization to ADB-reachable photo frames."""

__version__ = "0.1.0"
