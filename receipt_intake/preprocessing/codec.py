"""Image codecs used by the normalizer's compression ladder.

``PillowCodec`` is the primary encoder. ``RasterCodec`` decodes straight
into an OpenCV pixel buffer and re-encodes at a fixed quality; it is the
fallback for inputs the primary codec cannot handle.
"""

import io
from dataclasses import dataclass
from typing import Protocol

import cv2
import numpy as np
from PIL import Image, ImageOps

from receipt_intake.errors import CompressionError
from receipt_intake.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EncodedImage:
    """JPEG bytes produced by a codec, with their pixel dimensions."""

    data: bytes
    width: int
    height: int

    @property
    def byte_size(self) -> int:
        return len(self.data)


class ImageCodec(Protocol):
    """Re-encodes image bytes to fit a dimension and size target."""

    def encode(
        self,
        data: bytes,
        quality: float,
        max_dimension: int,
        size_budget_bytes: int,
    ) -> EncodedImage: ...


def scaled_dimensions(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Fit ``width`` x ``height`` inside ``max_dimension`` on the long edge.

    Aspect ratio is preserved and images are never upscaled.

    Args:
        width: Source width in pixels.
        height: Source height in pixels.
        max_dimension: Maximum allowed length of the longer edge.

    Returns:
        Target ``(width, height)``, each at least one pixel.
    """
    long_edge = max(width, height)
    if long_edge <= max_dimension:
        return width, height
    scale = max_dimension / long_edge
    return max(1, round(width * scale)), max(1, round(height * scale))


def _flatten(image: Image.Image) -> Image.Image:
    """Convert to RGB, compositing any transparency onto white."""
    if image.mode in ("RGBA", "LA") or (
        image.mode == "P" and "transparency" in image.info
    ):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


class PillowCodec:
    """JPEG re-encoder built on Pillow.

    Honors EXIF orientation, drops all metadata, and steps the quality
    down until the output fits the size target or ``min_quality`` is hit.

    Args:
        min_quality: Lowest quality the step-down loop may reach.
        quality_step: Amount subtracted from the quality per attempt.
    """

    def __init__(self, min_quality: float = 0.4, quality_step: float = 0.05) -> None:
        self.min_quality = min_quality
        self.quality_step = quality_step

    def encode(
        self,
        data: bytes,
        quality: float,
        max_dimension: int,
        size_budget_bytes: int,
    ) -> EncodedImage:
        try:
            with Image.open(io.BytesIO(data)) as source:
                image = ImageOps.exif_transpose(source)
                image = _flatten(image)
                target = scaled_dimensions(image.width, image.height, max_dimension)
                if target != image.size:
                    image = image.resize(target, Image.Resampling.LANCZOS)

                current = quality
                encoded = self._save(image, current)
                while (
                    len(encoded) > size_budget_bytes
                    and current - self.quality_step >= self.min_quality
                ):
                    current = round(current - self.quality_step, 2)
                    encoded = self._save(image, current)
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise CompressionError(f"Pillow could not encode image: {exc}") from exc

        logger.debug(
            "Pillow encoded %dx%d at quality %.2f -> %d bytes",
            image.width,
            image.height,
            current,
            len(encoded),
        )
        return EncodedImage(data=encoded, width=image.width, height=image.height)

    @staticmethod
    def _save(image: Image.Image, quality: float) -> bytes:
        buf = io.BytesIO()
        image.save(buf, format="JPEG", quality=int(quality * 100), optimize=True)
        return buf.getvalue()


class RasterCodec:
    """Fallback encoder that works on a raw OpenCV pixel buffer.

    Encodes once at the requested quality; the size target is ignored.
    """

    def encode(
        self,
        data: bytes,
        quality: float,
        max_dimension: int,
        size_budget_bytes: int,
    ) -> EncodedImage:
        buffer = np.frombuffer(data, dtype=np.uint8)
        if buffer.size == 0:
            raise CompressionError("Empty image buffer")

        pixels = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        if pixels is None:
            raise CompressionError("OpenCV could not decode image")

        height, width = pixels.shape[:2]
        new_width, new_height = scaled_dimensions(width, height, max_dimension)
        if (new_width, new_height) != (width, height):
            pixels = cv2.resize(
                pixels, (new_width, new_height), interpolation=cv2.INTER_AREA
            )

        ok, encoded = cv2.imencode(
            ".jpg", pixels, [cv2.IMWRITE_JPEG_QUALITY, int(quality * 100)]
        )
        if not ok:
            raise CompressionError("OpenCV could not encode JPEG")

        logger.debug(
            "Raster codec encoded %dx%d -> %d bytes",
            new_width,
            new_height,
            encoded.size,
        )
        return EncodedImage(data=encoded.tobytes(), width=new_width, height=new_height)
