"""Tests for EXIF capture metadata extraction."""

import pytest

from conftest import encode, make_exif, make_receipt_image
from receipt_intake.metadata.exif import CaptureMetadata, GeoPoint, extract_metadata


class TestExtractMetadata:
    """Tests for extract_metadata."""

    def test_reads_all_tags(self, exif_jpeg: bytes) -> None:
        metadata = extract_metadata(exif_jpeg)

        assert metadata.gps is not None
        assert metadata.gps.latitude == pytest.approx(40.7128, abs=1e-4)
        assert metadata.gps.longitude == pytest.approx(-74.0060, abs=1e-4)
        assert metadata.camera_make == "Apple"
        assert metadata.camera_model == "iPhone 15"

    def test_prefers_original_capture_time(self, exif_jpeg: bytes) -> None:
        assert extract_metadata(exif_jpeg).captured_at == "2024:03:14 08:59:00"

    def test_falls_back_to_file_time(self) -> None:
        data = encode(make_receipt_image(), exif=make_exif(date_time_original=None))
        assert extract_metadata(data).captured_at == "2024:03:14 09:00:00"

    def test_gps_requires_both_components(self) -> None:
        data = encode(make_receipt_image(), exif=make_exif(longitude=None))
        metadata = extract_metadata(data)
        assert metadata.gps is None
        assert metadata.camera_make == "Apple"
        assert metadata.captured_at is not None

    def test_no_exif_gives_empty_record(self, receipt_jpeg: bytes) -> None:
        assert extract_metadata(receipt_jpeg) == CaptureMetadata()

    def test_png_without_metadata(self) -> None:
        assert extract_metadata(encode(make_receipt_image(), "PNG")) == CaptureMetadata()

    @pytest.mark.parametrize("data", [b"", b"garbage bytes", b"\xff\xd8\xff"])
    def test_unreadable_bytes_give_empty_record(self, data: bytes) -> None:
        assert extract_metadata(data) == CaptureMetadata()


class TestGeoPoint:
    """Tests for the GeoPoint value type."""

    def test_is_hashable_value(self) -> None:
        assert GeoPoint(1.0, 2.0) == GeoPoint(latitude=1.0, longitude=2.0)
        assert len({GeoPoint(1.0, 2.0), GeoPoint(1.0, 2.0)}) == 1
