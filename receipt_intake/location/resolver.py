"""Best-effort location resolution for a captured receipt.

Embedded GPS is preferred. Without it, the live location provider is
asked once, with a bounded wait. Either way the point is reverse
geocoded into a display name. Every failure ends in an empty result.
"""

import asyncio
from dataclasses import dataclass

from receipt_intake.metadata.exif import CaptureMetadata, GeoPoint
from receipt_intake.utils.config import LocationConfig
from receipt_intake.utils.logger import get_logger

from .geocoder import ReverseGeocoder
from .provider import LocationProvider, LocationRequest, NullLocationProvider

logger = get_logger(__name__)


@dataclass(frozen=True)
class LocationResolution:
    """Outcome of location resolution.

    Attributes:
        point: Coordinates that were used, if any were obtained.
        display_name: Human-readable place name, if geocoding succeeded.
        source: ``"exif"`` or ``"live"``, matching where ``point`` came from.
    """

    point: GeoPoint | None = None
    display_name: str | None = None
    source: str | None = None


class LocationResolver:
    """Resolves capture metadata into a place name.

    Args:
        config: Location configuration (timeouts, cache age).
        geocoder: Reverse geocoder. Defaults to one built from ``config``.
        provider: Live location provider. Defaults to
            :class:`NullLocationProvider`.
    """

    def __init__(
        self,
        config: LocationConfig,
        geocoder: ReverseGeocoder | None = None,
        provider: LocationProvider | None = None,
    ) -> None:
        self.config = config
        self.geocoder = geocoder or ReverseGeocoder(config)
        self.provider = provider or NullLocationProvider()

    async def resolve(self, metadata: CaptureMetadata) -> LocationResolution:
        """Resolve a location, finishing within ``config.resolve_timeout``.

        Args:
            metadata: Capture metadata from the original photo.

        Returns:
            The resolution; empty when nothing could be determined.
        """
        try:
            return await asyncio.wait_for(
                self._resolve(metadata), timeout=self.config.resolve_timeout
            )
        except TimeoutError:
            logger.warning(
                "Location resolution timed out after %.1fs", self.config.resolve_timeout
            )
        except Exception as exc:
            logger.warning("Location resolution failed: %s", exc)
        return LocationResolution()

    async def _resolve(self, metadata: CaptureMetadata) -> LocationResolution:
        if metadata.gps is not None:
            point, source = metadata.gps, "exif"
        else:
            point, source = await self._live_point(), "live"
            if point is None:
                return LocationResolution()

        display_name = await self.geocoder.reverse(point)
        logger.info("Resolved %s location: %s", source, display_name or "<unnamed>")
        return LocationResolution(point=point, display_name=display_name, source=source)

    async def _live_point(self) -> GeoPoint | None:
        request = LocationRequest(
            timeout=self.config.live_timeout,
            high_accuracy=self.config.live_high_accuracy,
            max_age=self.config.live_max_age,
        )
        try:
            return await asyncio.wait_for(
                self.provider.locate(request), timeout=request.timeout
            )
        except PermissionError:
            logger.info("Live location permission denied")
        except TimeoutError:
            logger.warning("Live location timed out after %.1fs", request.timeout)
        except Exception as exc:
            logger.warning("Live location lookup failed: %s", exc)
        return None
