"""Receipt capture pipeline orchestrator.

Runs two concurrent branches per capture and joins them into a single
:class:`ExtractionResult`::

    normalize -> recognize -> parse
    extract metadata -> resolve location

Every stage runs inside its own failure boundary, so the pipeline always
assembles a result; stages that fail leave their fields empty.
"""

import asyncio
import base64
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum
from typing import Any, TypeVar

from receipt_intake.extraction.field_parser import ParsedFields, parse_fields
from receipt_intake.location.provider import (
    CachedLocationProvider,
    LocationProvider,
    NullLocationProvider,
    StaticLocationProvider,
)
from receipt_intake.location.resolver import LocationResolution, LocationResolver
from receipt_intake.metadata.exif import CaptureMetadata, GeoPoint, extract_metadata
from receipt_intake.ocr.tesseract_engine import RecognitionResult
from receipt_intake.ocr.worker import RecognitionWorker
from receipt_intake.preprocessing.normalizer import (
    ImageNormalizer,
    NormalizedImage,
    RawImage,
    passthrough_image,
)
from receipt_intake.utils.config import AppConfig, LocationConfig
from receipt_intake.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class PipelineStage(StrEnum):
    """Stages a capture moves through."""

    RECEIVED = "received"
    NORMALIZING = "normalizing"
    METADATA_EXTRACTING = "metadata_extracting"
    RECOGNIZING = "recognizing"
    LOCATION_RESOLVING = "location_resolving"
    PARSING = "parsing"
    ASSEMBLED = "assembled"


ProgressCallback = Callable[[PipelineStage], None]


@dataclass(frozen=True)
class ExtractionResult:
    """Everything the pipeline learned about one captured receipt.

    ``degraded_stages`` lists the stages that fell back to an empty or
    identity value because they failed.
    """

    image: NormalizedImage
    metadata: CaptureMetadata
    location: LocationResolution
    recognition: RecognitionResult
    fields: ParsedFields
    stage: PipelineStage = PipelineStage.ASSEMBLED
    degraded_stages: tuple[str, ...] = ()

    @property
    def amount(self) -> Decimal | None:
        return self.fields.amount

    @property
    def date(self) -> str | None:
        return self.fields.date

    @property
    def merchant_name(self) -> str | None:
        return self.fields.merchant_name

    @property
    def location_name(self) -> str | None:
        return self.location.display_name

    def to_dict(self, include_image: bool = False) -> dict[str, Any]:
        """Render the result as JSON-compatible data.

        Args:
            include_image: Whether to embed the normalized image as base64.

        Returns:
            Nested dictionary of the result.
        """
        gps = self.metadata.gps
        point = self.location.point
        data: dict[str, Any] = {
            "stage": self.stage.value,
            "fields": {
                "amount": str(self.fields.amount) if self.fields.amount is not None else None,
                "date": self.fields.date,
                "normalized_date": self.fields.normalized_date,
                "merchant_name": self.fields.merchant_name,
            },
            "location": {
                "display_name": self.location.display_name,
                "latitude": point.latitude if point else None,
                "longitude": point.longitude if point else None,
                "source": self.location.source,
            },
            "metadata": {
                "gps": (
                    {"latitude": gps.latitude, "longitude": gps.longitude} if gps else None
                ),
                "captured_at": self.metadata.captured_at,
                "camera_make": self.metadata.camera_make,
                "camera_model": self.metadata.camera_model,
            },
            "recognition": {
                "success": self.recognition.success,
                "text": self.recognition.text,
                "lines": list(self.recognition.lines),
                "confidence": self.recognition.confidence,
                "error": self.recognition.error,
            },
            "image": {
                "width": self.image.width,
                "height": self.image.height,
                "byte_size": self.image.byte_size,
                "mime_type": self.image.mime_type,
                "passthrough": self.image.passthrough,
            },
            "degraded_stages": list(self.degraded_stages),
        }
        if include_image:
            data["image"]["data"] = base64.b64encode(self.image.data).decode("ascii")
        return data


def build_location_provider(config: LocationConfig) -> LocationProvider:
    """Create the live location provider described by ``config``.

    A configured static point is served through a cache; without one the
    deployment has no live location capability.
    """
    if config.static_latitude is not None and config.static_longitude is not None:
        point = GeoPoint(latitude=config.static_latitude, longitude=config.static_longitude)
        return CachedLocationProvider(StaticLocationProvider(point))
    return NullLocationProvider()


class ReceiptPipeline:
    """Turns a raw receipt photo into an :class:`ExtractionResult`.

    Args:
        config: Application configuration.
        normalizer: Image normalizer. Built from ``config`` if omitted.
        worker: Recognition worker. Built from ``config`` if omitted.
        resolver: Location resolver. Built from ``config`` if omitted.
        progress_callback: Called with each stage as it starts.
    """

    def __init__(
        self,
        config: AppConfig,
        normalizer: ImageNormalizer | None = None,
        worker: RecognitionWorker | None = None,
        resolver: LocationResolver | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        self.config = config
        self.normalizer = normalizer or ImageNormalizer(config.normalizer)
        self.worker = worker or RecognitionWorker(config.ocr)
        self.resolver = resolver or LocationResolver(
            config.location, provider=build_location_provider(config.location)
        )
        self.progress_callback = progress_callback

    async def process(self, raw: RawImage) -> ExtractionResult:
        """Run every stage for one capture and assemble the result.

        Never raises for stage failures. Cancelling the call cancels both
        branches, which terminates the recognition worker and closes any
        pending location or geocoding request.

        Args:
            raw: The captured photo.

        Returns:
            The assembled extraction result.
        """
        degraded: list[str] = []
        self._report(PipelineStage.RECEIVED)
        logger.info("Processing receipt image (%d bytes, %s)", len(raw.data), raw.mime_type)

        (image, recognition, fields), (metadata, location) = await asyncio.gather(
            self._recognition_branch(raw, degraded),
            self._location_branch(raw, degraded),
        )

        self._report(PipelineStage.ASSEMBLED)
        if degraded:
            logger.warning("Receipt assembled with degraded stages: %s", ", ".join(degraded))
        return ExtractionResult(
            image=image,
            metadata=metadata,
            location=location,
            recognition=recognition,
            fields=fields,
            degraded_stages=tuple(degraded),
        )

    def process_sync(self, raw: RawImage) -> ExtractionResult:
        """Blocking wrapper around :meth:`process`."""
        return asyncio.run(self.process(raw))

    async def _recognition_branch(
        self, raw: RawImage, degraded: list[str]
    ) -> tuple[NormalizedImage, RecognitionResult, ParsedFields]:
        image = await self._run_stage(
            PipelineStage.NORMALIZING,
            degraded,
            lambda: asyncio.to_thread(self.normalizer.normalize, raw),
            lambda exc: passthrough_image(raw),
        )
        if image.passthrough and PipelineStage.NORMALIZING.value not in degraded:
            degraded.append(PipelineStage.NORMALIZING.value)

        recognition = await self._run_stage(
            PipelineStage.RECOGNIZING,
            degraded,
            lambda: self.worker.recognize(image),
            lambda exc: RecognitionResult.failure(str(exc)),
        )
        if not recognition.success and PipelineStage.RECOGNIZING.value not in degraded:
            degraded.append(PipelineStage.RECOGNIZING.value)

        text = ""
        if recognition.success:
            text = recognition.text if recognition.text.strip() else "\n".join(recognition.lines)
        fields = await self._run_stage(
            PipelineStage.PARSING,
            degraded,
            lambda: self._parse(text),
            lambda exc: ParsedFields(),
        )
        return image, recognition, fields

    async def _location_branch(
        self, raw: RawImage, degraded: list[str]
    ) -> tuple[CaptureMetadata, LocationResolution]:
        metadata = await self._run_stage(
            PipelineStage.METADATA_EXTRACTING,
            degraded,
            lambda: asyncio.to_thread(extract_metadata, raw.data),
            lambda exc: CaptureMetadata(),
        )
        location = await self._run_stage(
            PipelineStage.LOCATION_RESOLVING,
            degraded,
            lambda: self.resolver.resolve(metadata),
            lambda exc: LocationResolution(),
        )
        return metadata, location

    @staticmethod
    async def _parse(text: str) -> ParsedFields:
        return parse_fields(text)

    async def _run_stage(
        self,
        stage: PipelineStage,
        degraded: list[str],
        action: Callable[[], Awaitable[T]],
        fallback: Callable[[Exception], T],
    ) -> T:
        self._report(stage)
        try:
            return await action()
        except Exception as exc:
            logger.warning("Stage %s failed, continuing without it: %s", stage.value, exc)
            degraded.append(stage.value)
            return fallback(exc)

    def _report(self, stage: PipelineStage) -> None:
        logger.debug("Pipeline stage: %s", stage.value)
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(stage)
        except Exception as exc:
            logger.warning("Progress callback failed at %s: %s", stage.value, exc)
