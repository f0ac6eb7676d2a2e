"""Live location capabilities injected into the location resolver.

A non-interactive deployment uses :class:`NullLocationProvider`; a fixed
site can use :class:`StaticLocationProvider`. Any provider can be wrapped
in :class:`CachedLocationProvider` to reuse a recent fix.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from receipt_intake.metadata.exif import GeoPoint
from receipt_intake.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class LocationRequest:
    """Parameters of a live location query.

    Attributes:
        timeout: Seconds to wait for a fix.
        high_accuracy: Whether to ask for a precise (slower) fix.
        max_age: Seconds a previously obtained fix may be reused.
    """

    timeout: float = 5.0
    high_accuracy: bool = False
    max_age: float = 60.0


class LocationProvider(Protocol):
    """Source of the device's current position.

    Returns ``None`` when no fix is available. May raise
    ``PermissionError`` when location access is denied.
    """

    async def locate(self, request: LocationRequest) -> GeoPoint | None: ...


class NullLocationProvider:
    """Provider for deployments without a location capability."""

    async def locate(self, request: LocationRequest) -> GeoPoint | None:
        return None


class StaticLocationProvider:
    """Always reports the same configured point."""

    def __init__(self, point: GeoPoint) -> None:
        self.point = point

    async def locate(self, request: LocationRequest) -> GeoPoint | None:
        return self.point


class CachedLocationProvider:
    """Reuses the last fix while it is younger than ``request.max_age``.

    Args:
        inner: Provider queried on a cache miss.
        clock: Monotonic time source, in seconds.
    """

    def __init__(
        self,
        inner: LocationProvider,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.inner = inner
        self._clock = clock
        self._cached: GeoPoint | None = None
        self._cached_at = 0.0

    async def locate(self, request: LocationRequest) -> GeoPoint | None:
        now = self._clock()
        if self._cached is not None and now - self._cached_at <= request.max_age:
            logger.debug("Reusing cached location fix from %.1fs ago", now - self._cached_at)
            return self._cached

        point = await self.inner.locate(request)
        if point is not None:
            self._cached = point
            self._cached_at = self._clock()
        return point
