"""Pydantic request/response schemas for the FastAPI endpoints."""

from decimal import Decimal

from pydantic import BaseModel


class ParsedFieldsResponse(BaseModel):
    """Response schema for the parsed expense fields."""

    amount: Decimal | None = None
    date: str | None = None
    normalized_date: str | None = None
    merchant_name: str | None = None


class LocationResponse(BaseModel):
    """Response schema for the resolved location."""

    display_name: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    source: str | None = None


class GeoPointResponse(BaseModel):
    """Response schema for a latitude/longitude pair."""

    latitude: float
    longitude: float


class MetadataResponse(BaseModel):
    """Response schema for capture metadata read from the photo."""

    gps: GeoPointResponse | None = None
    captured_at: str | None = None
    camera_make: str | None = None
    camera_model: str | None = None


class RecognitionResponse(BaseModel):
    """Response schema for the text recognition outcome."""

    success: bool
    text: str
    lines: list[str]
    confidence: float
    error: str | None = None


class ImageResponse(BaseModel):
    """Response schema describing the normalized image."""

    width: int
    height: int
    byte_size: int
    mime_type: str
    passthrough: bool
    data: str | None = None


class ExtractionResponse(BaseModel):
    """Response schema for a receipt extraction request."""

    success: bool
    receipt_id: str
    stage: str
    fields: ParsedFieldsResponse
    location: LocationResponse
    metadata: MetadataResponse
    recognition: RecognitionResponse
    image: ImageResponse
    degraded_stages: list[str]
    processing_time_ms: float


class BatchItemResponse(BaseModel):
    """Response schema for a single item in a batch extraction."""

    filename: str
    result: ExtractionResponse | None = None
    error: str | None = None


class BatchExtractionResponse(BaseModel):
    """Response schema for batch extraction of multiple receipts."""

    success: bool
    total_receipts: int
    successful: int
    failed: int
    results: list[BatchItemResponse]


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    tesseract_available: bool
