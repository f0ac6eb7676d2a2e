"""Size-bounded image normalization for receipt storage.

Runs the configured compression ladder, falls back to the raster codec
when the primary codec fails, and as a last resort hands back the raw
bytes untouched so a compression problem never blocks expense entry.
"""

import io
from dataclasses import dataclass

from PIL import Image

from receipt_intake.utils.config import NormalizerConfig
from receipt_intake.utils.logger import get_logger

from .codec import EncodedImage, ImageCodec, PillowCodec, RasterCodec

logger = get_logger(__name__)


@dataclass(frozen=True)
class RawImage:
    """Photo bytes as supplied by the capture source."""

    data: bytes
    mime_type: str = "image/jpeg"


@dataclass(frozen=True)
class NormalizedImage:
    """Storage-ready image produced by the normalizer.

    ``passthrough`` is set when ``data`` is the raw input unchanged,
    either because every compression tier failed or because compressing
    would have grown the file.
    """

    data: bytes
    width: int
    height: int
    byte_size: int
    mime_type: str
    passthrough: bool = False


def _probe_dimensions(data: bytes) -> tuple[int, int]:
    """Read pixel dimensions from an image header, ``(0, 0)`` if unreadable."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.size
    except Exception:
        return 0, 0


def passthrough_image(raw: RawImage) -> NormalizedImage:
    """Wrap the raw bytes unchanged as a NormalizedImage."""
    width, height = _probe_dimensions(raw.data)
    return NormalizedImage(
        data=raw.data,
        width=width,
        height=height,
        byte_size=len(raw.data),
        mime_type=raw.mime_type,
        passthrough=True,
    )


class ImageNormalizer:
    """Recompresses raw photos to fit the configured size budget.

    Args:
        config: Normalizer configuration holding the compression ladder.
        codec: Primary codec. Defaults to :class:`PillowCodec`.
        fallback_codec: Codec used when the primary one raises.
            Defaults to :class:`RasterCodec`.
    """

    def __init__(
        self,
        config: NormalizerConfig,
        codec: ImageCodec | None = None,
        fallback_codec: ImageCodec | None = None,
    ) -> None:
        self.config = config
        self.codec = codec or PillowCodec(
            min_quality=config.min_quality, quality_step=config.quality_step
        )
        self.fallback_codec = fallback_codec or RasterCodec()

    def normalize(self, raw: RawImage) -> NormalizedImage:
        """Compress ``raw`` to the size budget, never raising.

        Args:
            raw: The captured photo.

        Returns:
            The compressed image, or the raw bytes wrapped as a
            passthrough image when no tier produced a usable result.
        """
        tiers = (("primary", self._run_passes), ("fallback", self._run_fallback))
        for tier, attempt in tiers:
            try:
                encoded = attempt(raw.data)
            except Exception as exc:
                logger.warning("%s compression tier failed: %s", tier.capitalize(), exc)
                continue

            if encoded.byte_size > len(raw.data):
                logger.info(
                    "Compressed output (%d bytes) larger than input (%d bytes), "
                    "keeping original",
                    encoded.byte_size,
                    len(raw.data),
                )
                return passthrough_image(raw)

            logger.info(
                "Normalized image via %s tier: %d -> %d bytes (%dx%d)",
                tier,
                len(raw.data),
                encoded.byte_size,
                encoded.width,
                encoded.height,
            )
            return NormalizedImage(
                data=encoded.data,
                width=encoded.width,
                height=encoded.height,
                byte_size=encoded.byte_size,
                mime_type="image/jpeg",
            )

        logger.warning("All compression tiers failed, returning original bytes")
        return passthrough_image(raw)

    def _run_passes(self, data: bytes) -> EncodedImage:
        """Apply the ladder, each later pass working on the previous output."""
        encoded: EncodedImage | None = None
        current = data
        for index, step in enumerate(self.config.passes):
            if encoded is not None and encoded.byte_size <= self.config.size_budget_bytes:
                break
            encoded = self.codec.encode(
                current,
                quality=step.quality,
                max_dimension=step.max_dimension,
                size_budget_bytes=step.size_budget_bytes,
            )
            logger.debug("Compression pass %d produced %d bytes", index + 1, encoded.byte_size)
            current = encoded.data

        if encoded is None:
            raise ValueError("No compression passes configured")
        return encoded

    def _run_fallback(self, data: bytes) -> EncodedImage:
        return self.fallback_codec.encode(
            data,
            quality=self.config.fallback_quality,
            max_dimension=self.config.fallback_max_dimension,
            size_budget_bytes=self.config.size_budget_bytes,
        )
