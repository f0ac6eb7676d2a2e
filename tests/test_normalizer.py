"""Tests for the image normalizer and its codecs."""

import io

import numpy as np
import pytest
from PIL import Image

from conftest import encode, make_receipt_image
from receipt_intake.errors import CompressionError
from receipt_intake.preprocessing.codec import (
    EncodedImage,
    PillowCodec,
    RasterCodec,
    scaled_dimensions,
)
from receipt_intake.preprocessing.normalizer import (
    ImageNormalizer,
    RawImage,
    passthrough_image,
)
from receipt_intake.utils.config import NormalizerConfig


class RecordingCodec:
    """Codec returning canned sizes and recording every call."""

    def __init__(self, sizes: list[int]) -> None:
        self.sizes = sizes
        self.calls: list[dict[str, object]] = []

    def encode(self, data, quality, max_dimension, size_budget_bytes):
        self.calls.append(
            {
                "data": data,
                "quality": quality,
                "max_dimension": max_dimension,
                "size_budget_bytes": size_budget_bytes,
            }
        )
        size = self.sizes[len(self.calls) - 1]
        return EncodedImage(data=b"x" * size, width=100, height=50)


class FailingCodec:
    """Codec that always fails."""

    def __init__(self) -> None:
        self.calls = 0

    def encode(self, data, quality, max_dimension, size_budget_bytes):
        self.calls += 1
        raise CompressionError("unsupported format")


class TestScaledDimensions:
    """Tests for aspect-preserving downscaling."""

    def test_landscape_fits_long_edge(self) -> None:
        assert scaled_dimensions(4000, 3000, 1920) == (1920, 1440)

    def test_portrait_fits_long_edge(self) -> None:
        assert scaled_dimensions(3000, 4000, 1600) == (1200, 1600)

    def test_never_upscales(self) -> None:
        assert scaled_dimensions(800, 600, 1920) == (800, 600)

    def test_extreme_ratio_keeps_one_pixel(self) -> None:
        assert scaled_dimensions(10000, 1, 100) == (100, 1)


class TestPillowCodec:
    """Tests for the primary Pillow encoder."""

    def test_resizes_and_encodes_jpeg(self, large_jpeg: bytes) -> None:
        encoded = PillowCodec().encode(
            large_jpeg, quality=0.85, max_dimension=1920, size_budget_bytes=400 * 1024
        )
        assert (encoded.width, encoded.height) == (1920, 1440)
        with Image.open(io.BytesIO(encoded.data)) as image:
            assert image.format == "JPEG"
            assert image.size == (1920, 1440)

    def test_flattens_transparency(self) -> None:
        rgba = Image.new("RGBA", (50, 40), (255, 0, 0, 0))
        encoded = PillowCodec().encode(
            encode(rgba, "PNG"), quality=0.85, max_dimension=1920, size_budget_bytes=10**6
        )
        with Image.open(io.BytesIO(encoded.data)) as image:
            assert image.mode == "RGB"
            assert image.getpixel((10, 10)) == pytest.approx((255, 255, 255), abs=3)

    def test_steps_quality_down_toward_budget(self) -> None:
        rng = np.random.default_rng(7)
        noise = Image.fromarray(rng.integers(0, 255, (600, 600, 3), dtype=np.uint8))
        data = encode(noise, "PNG")
        codec = PillowCodec(min_quality=0.4, quality_step=0.05)

        generous = codec.encode(data, quality=0.95, max_dimension=600, size_budget_bytes=10**7)
        tight = codec.encode(data, quality=0.95, max_dimension=600, size_budget_bytes=1)
        assert tight.byte_size < generous.byte_size

    def test_invalid_bytes_raise_compression_error(self) -> None:
        with pytest.raises(CompressionError):
            PillowCodec().encode(b"not an image", 0.85, 1920, 400 * 1024)


class TestRasterCodec:
    """Tests for the OpenCV fallback encoder."""

    def test_encodes_png_to_scaled_jpeg(self) -> None:
        data = encode(make_receipt_image(2000, 1000), "PNG")
        encoded = RasterCodec().encode(data, 0.85, 1600, 400 * 1024)
        assert (encoded.width, encoded.height) == (1600, 800)
        assert encoded.data[:2] == b"\xff\xd8"

    def test_undecodable_bytes_raise(self) -> None:
        with pytest.raises(CompressionError):
            RasterCodec().encode(b"\x00\x01\x02garbage", 0.85, 1600, 400 * 1024)

    def test_empty_buffer_raises(self) -> None:
        with pytest.raises(CompressionError):
            RasterCodec().encode(b"", 0.85, 1600, 400 * 1024)


class TestImageNormalizer:
    """Tests for the compression ladder."""

    def test_large_photo_fits_budget(self, large_jpeg: bytes) -> None:
        normalizer = ImageNormalizer(NormalizerConfig())
        result = normalizer.normalize(RawImage(large_jpeg))

        assert not result.passthrough
        assert result.byte_size <= 400 * 1024
        assert result.byte_size <= len(large_jpeg)
        assert max(result.width, result.height) <= 1920
        assert result.width / result.height == pytest.approx(4000 / 3000, rel=0.01)
        assert result.mime_type == "image/jpeg"

    def test_secondary_pass_runs_on_primary_output_when_over_budget(self) -> None:
        codec = RecordingCodec([500 * 1024, 200 * 1024])
        normalizer = ImageNormalizer(NormalizerConfig(), codec=codec, fallback_codec=FailingCodec())

        result = normalizer.normalize(RawImage(b"r" * (2 * 1024 * 1024)))

        assert len(codec.calls) == 2
        assert codec.calls[0]["quality"] == 0.85
        assert codec.calls[0]["max_dimension"] == 1920
        assert codec.calls[1]["quality"] == 0.75
        assert codec.calls[1]["max_dimension"] == 1600
        assert codec.calls[1]["data"] == b"x" * (500 * 1024)
        assert result.byte_size == 200 * 1024

    def test_secondary_pass_skipped_within_budget(self) -> None:
        codec = RecordingCodec([100 * 1024, 50 * 1024])
        normalizer = ImageNormalizer(NormalizerConfig(), codec=codec)

        result = normalizer.normalize(RawImage(b"r" * (1024 * 1024)))

        assert len(codec.calls) == 1
        assert result.byte_size == 100 * 1024

    def test_fallback_tier_used_when_primary_raises(self) -> None:
        fallback = RecordingCodec([10 * 1024])
        normalizer = ImageNormalizer(
            NormalizerConfig(), codec=FailingCodec(), fallback_codec=fallback
        )

        result = normalizer.normalize(RawImage(b"r" * (1024 * 1024)))

        assert len(fallback.calls) == 1
        assert fallback.calls[0]["quality"] == 0.85
        assert fallback.calls[0]["max_dimension"] == 1600
        assert result.byte_size == 10 * 1024
        assert not result.passthrough

    def test_fallback_not_used_when_primary_succeeds(self) -> None:
        fallback = FailingCodec()
        normalizer = ImageNormalizer(
            NormalizerConfig(), codec=RecordingCodec([1024]), fallback_codec=fallback
        )
        normalizer.normalize(RawImage(b"r" * 4096))
        assert fallback.calls == 0

    def test_identity_when_every_tier_fails(self, receipt_jpeg: bytes) -> None:
        normalizer = ImageNormalizer(
            NormalizerConfig(), codec=FailingCodec(), fallback_codec=FailingCodec()
        )

        result = normalizer.normalize(RawImage(receipt_jpeg))

        assert result.passthrough
        assert result.data == receipt_jpeg
        assert result.byte_size == len(receipt_jpeg)
        assert (result.width, result.height) == (400, 600)

    def test_larger_output_keeps_original(self) -> None:
        normalizer = ImageNormalizer(NormalizerConfig(), codec=RecordingCodec([5000]))
        result = normalizer.normalize(RawImage(b"r" * 1000, mime_type="image/png"))
        assert result.passthrough
        assert result.data == b"r" * 1000
        assert result.mime_type == "image/png"

    @pytest.mark.parametrize(
        "data",
        [b"", b"not an image at all", b"\xff\xd8\xff\xe0truncated jpeg", b"\x89PNG\r\n\x1a\n"],
    )
    def test_never_raises_on_malformed_input(self, data: bytes) -> None:
        result = ImageNormalizer(NormalizerConfig()).normalize(RawImage(data))
        assert result.byte_size <= len(data) or result.data == data
        assert result.passthrough
        assert result.data == data

    def test_output_never_larger_than_input(self, receipt_jpeg: bytes) -> None:
        result = ImageNormalizer(NormalizerConfig()).normalize(RawImage(receipt_jpeg))
        assert result.byte_size <= len(receipt_jpeg) or result.data == receipt_jpeg

    def test_unexpected_codec_error_is_absorbed(self) -> None:
        class ExplodingCodec:
            def encode(self, data, quality, max_dimension, size_budget_bytes):
                raise RuntimeError("boom")

        normalizer = ImageNormalizer(
            NormalizerConfig(), codec=ExplodingCodec(), fallback_codec=ExplodingCodec()
        )
        result = normalizer.normalize(RawImage(b"abc"))
        assert result.passthrough
        assert result.data == b"abc"


class TestPassthroughImage:
    """Tests for the identity wrapper."""

    def test_unreadable_dimensions_are_zero(self) -> None:
        image = passthrough_image(RawImage(b"junk", mime_type="image/heic"))
        assert (image.width, image.height) == (0, 0)
        assert image.mime_type == "image/heic"
        assert image.passthrough
