"""Shared test fixtures for the receipt intake test suite."""

import io
from decimal import Decimal
from pathlib import Path

import numpy as np
import pytest
from PIL import ExifTags, Image

from receipt_intake.extraction.field_parser import ParsedFields
from receipt_intake.location.resolver import LocationResolution
from receipt_intake.metadata.exif import CaptureMetadata, GeoPoint
from receipt_intake.ocr.tesseract_engine import RecognitionResult
from receipt_intake.pipeline import ExtractionResult
from receipt_intake.preprocessing.normalizer import NormalizedImage
from receipt_intake.utils.config import AppConfig


def make_receipt_image(width: int = 400, height: int = 600) -> Image.Image:
    """Create a white receipt-like image with dark text bars."""
    pixels = np.full((height, width, 3), 255, dtype=np.uint8)
    for row in range(40, height - 40, 60):
        pixels[row : row + 12, 30 : width - 30] = 20
    return Image.fromarray(pixels)


def encode(image: Image.Image, fmt: str = "JPEG", **kwargs: object) -> bytes:
    """Encode a Pillow image to bytes."""
    buf = io.BytesIO()
    image.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


def make_exif(
    latitude: tuple[float, float, float] | None = (40.0, 42.0, 46.08),
    longitude: tuple[float, float, float] | None = (74.0, 0.0, 21.6),
    date_time: str | None = "2024:03:14 09:00:00",
    date_time_original: str | None = "2024:03:14 08:59:00",
) -> Image.Exif:
    """Build EXIF tags; the default GPS point is (40.7128, -74.0060)."""
    exif = Image.Exif()
    exif[ExifTags.Base.Make] = "Apple"
    exif[ExifTags.Base.Model] = "iPhone 15"
    if date_time:
        exif[ExifTags.Base.DateTime] = date_time
    if date_time_original:
        exif[ExifTags.IFD.Exif] = {ExifTags.Base.DateTimeOriginal: date_time_original}

    gps: dict[int, object] = {}
    if latitude is not None:
        gps[ExifTags.GPS.GPSLatitudeRef] = "N"
        gps[ExifTags.GPS.GPSLatitude] = latitude
    if longitude is not None:
        gps[ExifTags.GPS.GPSLongitudeRef] = "W"
        gps[ExifTags.GPS.GPSLongitude] = longitude
    if gps:
        exif[ExifTags.IFD.GPSInfo] = gps
    return exif


@pytest.fixture
def receipt_jpeg() -> bytes:
    """A small receipt photo without EXIF metadata."""
    return encode(make_receipt_image(), quality=95)


@pytest.fixture
def exif_jpeg() -> bytes:
    """A receipt photo carrying GPS, timestamp, and camera tags."""
    return encode(make_receipt_image(), quality=95, exif=make_exif())


@pytest.fixture
def large_jpeg() -> bytes:
    """A 4000x3000 gradient photo well above the default size budget."""
    x = np.linspace(0, 255, 4000, dtype=np.float32)
    y = np.linspace(0, 255, 3000, dtype=np.float32)
    red = np.tile(x, (3000, 1))
    green = np.tile(y[:, None], (1, 4000))
    blue = (red + green) / 2
    pixels = np.stack([red, green, blue], axis=-1).astype(np.uint8)
    return encode(Image.fromarray(pixels), quality=98)


@pytest.fixture
def app_config() -> AppConfig:
    """Default application configuration with short timeouts."""
    config = AppConfig()
    config.location.live_timeout = 0.5
    config.location.resolve_timeout = 2.0
    config.ocr.timeout = 5.0
    return config


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


def make_extraction_result(degraded_stages: tuple[str, ...] = ()) -> ExtractionResult:
    """Build an assembled result for a parsed coffee-shop receipt."""
    lines = ["STARBUCKS", "03/14/2024", "Total $4.75"]
    point = GeoPoint(40.7128, -74.0060)
    return ExtractionResult(
        image=NormalizedImage(
            data=b"\xff\xd8normalized", width=400, height=600, byte_size=12, mime_type="image/jpeg"
        ),
        metadata=CaptureMetadata(gps=point, captured_at="2024:03:14 08:59:00", camera_make="Apple"),
        location=LocationResolution(point=point, display_name="New York, NY", source="exif"),
        recognition=RecognitionResult(
            success=True, text="\n".join(lines), lines=tuple(lines), confidence=91.25
        ),
        fields=ParsedFields(
            amount=Decimal("4.75"),
            date="03/14/2024",
            normalized_date="2024-03-14",
            merchant_name="STARBUCKS",
        ),
        degraded_stages=degraded_stages,
    )
