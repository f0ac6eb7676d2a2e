"""FastAPI application for the receipt intake API.

Provides REST endpoints for single and batch receipt extraction and a
health check.
"""

import shutil
import time
import uuid
from typing import Annotated

from fastapi import FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from receipt_intake import __version__
from receipt_intake.pipeline import ReceiptPipeline
from receipt_intake.preprocessing.normalizer import RawImage
from receipt_intake.utils.config import load_config
from receipt_intake.utils.logger import get_logger

from .schemas import (
    BatchExtractionResponse,
    BatchItemResponse,
    ExtractionResponse,
    HealthResponse,
)

logger = get_logger(__name__)

app = FastAPI(
    title="Receipt Intake API",
    description="Turn receipt photos into pre-filled expense data",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_pipeline() -> ReceiptPipeline:
    """Build a receipt pipeline from the current configuration."""
    return ReceiptPipeline(load_config())


_BINARY_CONTENT_TYPE = "application/octet-stream"


def _is_supported_upload(content_type: str | None) -> bool:
    """Accept any image/* upload, plus untyped binary bodies."""
    if not content_type:
        return True
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type.startswith("image/") or media_type == _BINARY_CONTENT_TYPE


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Return system health status."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        tesseract_available=shutil.which("tesseract") is not None,
    )


@app.post("/extract", response_model=ExtractionResponse)
async def extract_receipt(
    file: Annotated[UploadFile, File(...)],
    include_image: Annotated[bool, Query()] = False,
) -> ExtractionResponse:
    """Extract expense fields from an uploaded receipt photo.

    Args:
        file: Uploaded receipt image.
        include_image: Whether to return the normalized image as base64.

    Returns:
        Parsed fields, location, metadata, recognition output, and the
        normalized image description.
    """
    start_time = time.time()

    if not _is_supported_upload(file.content_type):
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type: {file.content_type}",
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    try:
        pipeline = _get_pipeline()
        result = await pipeline.process(
            RawImage(data=content, mime_type=file.content_type or "application/octet-stream")
        )
    except Exception as exc:
        logger.error("Extraction failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    processing_time = (time.time() - start_time) * 1000
    return ExtractionResponse(
        success=True,
        receipt_id=str(uuid.uuid4()),
        processing_time_ms=processing_time,
        **result.to_dict(include_image=include_image),
    )


@app.post("/extract/batch", response_model=BatchExtractionResponse)
async def extract_batch(
    files: Annotated[list[UploadFile], File(...)],
) -> BatchExtractionResponse:
    """Extract expense fields from multiple receipt photos.

    Args:
        files: List of uploaded receipt images.

    Returns:
        Batch extraction results with per-file outcomes.
    """
    results: list[BatchItemResponse] = []
    successful = 0

    for file in files:
        try:
            result = await extract_receipt(file)
            results.append(
                BatchItemResponse(filename=file.filename or "unknown", result=result)
            )
            successful += 1
        except HTTPException as exc:
            results.append(
                BatchItemResponse(filename=file.filename or "unknown", error=exc.detail)
            )

    return BatchExtractionResponse(
        success=successful > 0,
        total_receipts=len(files),
        successful=successful,
        failed=len(files) - successful,
        results=results,
    )
