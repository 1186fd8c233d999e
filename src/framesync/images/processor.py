"""Image preparation for photo frames.

Images are auto-rotated from their EXIF orientation, shrunk to fit inside
the frame resolution (never enlarged) and re-encoded. Metadata is not carried
over, so the same input and options always produce the same bytes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from PIL import Image, ImageOps

if TYPE_CHECKING:
    from framesync.core.config import Settings

logger = logging.getLogger(__name__)

# Output format name -> Pillow encoder
OUTPUT_FORMATS = {
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
}


class ProcessingError(Exception):
    """An image could not be decoded or encoded."""


@dataclass(frozen=True)
class ProcessingOptions:
    """How to prepare images for a frame."""

    max_width: int = 1920
    max_height: int = 1080
    quality: int = 85
    format: str = "jpeg"
    auto_rotate: bool = True

    def __post_init__(self) -> None:
        if self.format not in OUTPUT_FORMATS:
            raise ValueError(
                f"Unsupported output format {self.format!r}, expected one of: "
                f"{', '.join(OUTPUT_FORMATS)}"
            )
        if self.max_width < 1 or self.max_height < 1:
            raise ValueError("max_width and max_height must be positive")
        if not 1 <= self.quality <= 100:
            raise ValueError("quality must be between 1 and 100")

    @property
    def extension(self) -> str:
        """File extension of processed images, without the dot."""
        return self.format

    @classmethod
    def from_settings(cls, settings: Settings) -> ProcessingOptions:
        return cls(
            max_width=settings.max_width,
            max_height=settings.max_height,
            quality=settings.quality,
            format=settings.image_format,
        )


@dataclass(frozen=True)
class ProcessedImage:
    """A processed image written to the processor's directory."""

    path: Path
    width: int
    height: int
    size: int
    format: str


@dataclass(frozen=True)
class ImageMetadata:
    """Basic facts about an image file."""

    width: int
    height: int
    format: str
    size: int


class ImageProcessor:
    """Writes processed copies of images into a working directory."""

    def __init__(self, temp_dir: Path | str) -> None:
        """Initialize the processor.

        Args:
            temp_dir: Directory receiving processed images.
        """
        self._temp_dir = Path(temp_dir)
        self._temp_dir.mkdir(parents=True, exist_ok=True)

    def process(self, path: Path, options: ProcessingOptions | None = None) -> ProcessedImage:
        """Process an image for display on a frame.

        Args:
            path: Input image.
            options: Processing options (defaults when None).

        Returns:
            The processed image, named ``<input stem>.<format>``.

        Raises:
            ProcessingError: If the image cannot be decoded or written.
        """
        options = options or ProcessingOptions()
        path = Path(path)
        output = self._temp_dir / f"{path.stem}.{options.extension}"

        try:
            with Image.open(path) as image:
                processed = ImageOps.exif_transpose(image) if options.auto_rotate else image
                if options.format == "jpeg":
                    processed = processed.convert("RGB")
                elif processed.mode not in ("RGB", "RGBA"):
                    processed = processed.convert("RGBA")
                processed.thumbnail((options.max_width, options.max_height), Image.Resampling.LANCZOS)

                save_kwargs: dict[str, object] = {"format": OUTPUT_FORMATS[options.format]}
                if options.format == "jpeg":
                    save_kwargs.update(optimize=True, quality=options.quality)
                elif options.format == "webp":
                    save_kwargs.update(quality=options.quality)
                else:
                    save_kwargs.update(optimize=True)
                processed.save(output, **save_kwargs)
                width, height = processed.size
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise ProcessingError(f"Cannot process {path.name}: {e}") from e

        result = ProcessedImage(
            path=output,
            width=width,
            height=height,
            size=output.stat().st_size,
            format=options.format,
        )
        logger.debug(
            "Processed %s -> %s (%dx%d, %d bytes)",
            path.name,
            output.name,
            result.width,
            result.height,
            result.size,
        )
        return result

    def metadata(self, path: Path) -> ImageMetadata:
        """Read dimensions and format without processing.

        Raises:
            ProcessingError: If the file is not a readable image.
        """
        path = Path(path)
        try:
            with Image.open(path) as image:
                width, height = image.size
                image_format = (image.format or "unknown").lower()
            size = path.stat().st_size
        except (OSError, ValueError) as e:
            raise ProcessingError(f"Cannot read {path.name}: {e}") from e
        return ImageMetadata(width=width, height=height, format=image_format, size=size)

    def cleanup(self, path: Path) -> None:
        """Delete a processed image; a missing file is ignored."""
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove %s: %s", path, e)
