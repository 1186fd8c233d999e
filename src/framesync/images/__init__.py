"""Image processing for photo frames."""

from framesync.images.processor import (
    ImageMetadata,
    ImageProcessor,
    ProcessedImage,
    ProcessingError,
    ProcessingOptions,
)

__all__ = [
    "ImageMetadata",
    "ImageProcessor",
    "ProcessedImage",
    "ProcessingError",
    "ProcessingOptions",
]
