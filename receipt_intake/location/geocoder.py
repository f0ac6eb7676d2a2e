"""Reverse geocoding against a Nominatim-compatible HTTP endpoint."""

import httpx

from receipt_intake.metadata.exif import GeoPoint
from receipt_intake.utils.config import LocationConfig
from receipt_intake.utils.logger import get_logger

logger = get_logger(__name__)


class ReverseGeocoder:
    """Turns coordinates into a human-readable place name.

    A fresh ``httpx.AsyncClient`` is opened per lookup so that a
    cancelled lookup releases its connection immediately.

    Args:
        config: Location configuration (endpoint, user agent, timeout).
        transport: Optional httpx transport, used to stub the service.
    """

    def __init__(
        self,
        config: LocationConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport

    async def reverse(self, point: GeoPoint) -> str | None:
        """Look up the display name for ``point``.

        Args:
            point: Coordinates to resolve.

        Returns:
            The service's ``display_name``, or ``None`` on any network,
            HTTP, or payload problem.
        """
        params = {
            "format": "json",
            "lat": f"{point.latitude}",
            "lon": f"{point.longitude}",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.config.geocode_timeout,
                headers={"User-Agent": self.config.user_agent},
                transport=self._transport,
            ) as client:
                response = await client.get(self.config.geocode_url, params=params)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "Reverse geocoding failed for (%.5f, %.5f): %s",
                point.latitude,
                point.longitude,
                exc,
            )
            return None

        name = payload.get("display_name") if isinstance(payload, dict) else None
        if not isinstance(name, str) or not name.strip():
            logger.info("Reverse geocoding returned no display name")
            return None
        return name.strip()
