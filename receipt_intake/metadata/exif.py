"""Capture metadata extraction from embedded EXIF tags.

Must run on the original photo bytes: the normalizer strips all
metadata from the storage copy.
"""

import io
import math
from dataclasses import dataclass

from PIL import ExifTags, Image

from receipt_intake.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""

    latitude: float
    longitude: float


@dataclass(frozen=True)
class CaptureMetadata:
    """Capture conditions read from the photo. Every field is optional."""

    gps: GeoPoint | None = None
    captured_at: str | None = None
    camera_make: str | None = None
    camera_model: str | None = None


def _to_degrees(value: object) -> float:
    """Convert an EXIF GPS coordinate (DMS rationals or a scalar) to degrees."""
    if isinstance(value, (tuple, list)):
        parts = [float(v) for v in value]
        if not parts or len(parts) > 3:
            raise ValueError(f"Unexpected GPS component count: {len(parts)}")
        degrees = parts[0]
        if len(parts) > 1:
            degrees += parts[1] / 60.0
        if len(parts) > 2:
            degrees += parts[2] / 3600.0
    else:
        degrees = float(value)  # type: ignore[arg-type]

    if not math.isfinite(degrees):
        raise ValueError("GPS component is not a finite number")
    return degrees


def _ref(value: object) -> str:
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    return str(value or "").strip("\x00 ").upper()


def _text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    text = str(value).strip("\x00 \t\r\n")
    return text or None


def _read_gps(exif: Image.Exif) -> GeoPoint | None:
    try:
        gps_ifd = exif.get_ifd(ExifTags.IFD.GPSInfo)
        if not gps_ifd:
            return None
        raw_lat = gps_ifd.get(ExifTags.GPS.GPSLatitude)
        raw_lon = gps_ifd.get(ExifTags.GPS.GPSLongitude)
        if raw_lat is None or raw_lon is None:
            return None

        latitude = _to_degrees(raw_lat)
        longitude = _to_degrees(raw_lon)
        if _ref(gps_ifd.get(ExifTags.GPS.GPSLatitudeRef)) == "S":
            latitude = -latitude
        if _ref(gps_ifd.get(ExifTags.GPS.GPSLongitudeRef)) == "W":
            longitude = -longitude

        if abs(latitude) > 90 or abs(longitude) > 180:
            raise ValueError(f"GPS point out of range: {latitude}, {longitude}")
        return GeoPoint(latitude=latitude, longitude=longitude)
    except Exception as exc:
        logger.debug("Ignoring unreadable GPS tags: %s", exc)
        return None


def _read_timestamp(exif: Image.Exif) -> str | None:
    try:
        original = exif.get_ifd(ExifTags.IFD.Exif).get(ExifTags.Base.DateTimeOriginal)
        captured = _text(original)
        if captured:
            return captured
    except Exception as exc:
        logger.debug("Ignoring unreadable DateTimeOriginal: %s", exc)

    try:
        return _text(exif.get(ExifTags.Base.DateTime))
    except Exception as exc:
        logger.debug("Ignoring unreadable DateTime: %s", exc)
        return None


def _read_tag(exif: Image.Exif, tag: int) -> str | None:
    try:
        return _text(exif.get(tag))
    except Exception as exc:
        logger.debug("Ignoring unreadable tag %#x: %s", tag, exc)
        return None


def extract_metadata(data: bytes) -> CaptureMetadata:
    """Read GPS, capture time, and device tags from original image bytes.

    Each tag is parsed independently; a tag that cannot be read is left
    as ``None`` and never invalidates the others.

    Args:
        data: Original, un-normalized image bytes.

    Returns:
        Capture metadata, all fields ``None`` when nothing is readable.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            exif = image.getexif()
            metadata = CaptureMetadata(
                gps=_read_gps(exif),
                captured_at=_read_timestamp(exif),
                camera_make=_read_tag(exif, ExifTags.Base.Make),
                camera_model=_read_tag(exif, ExifTags.Base.Model),
            )
    except Exception as exc:
        logger.warning("Could not read EXIF metadata: %s", exc)
        return CaptureMetadata()

    logger.debug("Extracted capture metadata: %s", metadata)
    return metadata
