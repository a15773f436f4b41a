"""
Geolocation seam for verification layer 1.

A LocationProvider wraps whatever sensor the client platform offers. Platform
failures are raised as GeolocationFailure and translated here into the
pipeline's own sensor errors.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from .errors import (
    SensorError,
    UnsupportedPlatform,
    PermissionDenied,
    LocationUnavailable,
)
from .geo import Coordinates

logger = logging.getLogger(__name__)

FAILURE_UNSUPPORTED = "unsupported"
FAILURE_PERMISSION_DENIED = "permission_denied"
FAILURE_TIMEOUT = "timeout"
FAILURE_UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float
    accuracy_m: Optional[float] = None

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.latitude, self.longitude)


class GeolocationFailure(Exception):
    """Raised by providers; `kind` is one of the FAILURE_* constants."""

    def __init__(self, kind: str, message: str = ""):
        self.kind = kind
        super().__init__(message or kind)


class LocationProvider(Protocol):
    async def current_position(self, high_accuracy: bool = True) -> Position:
        ...


def map_failure(failure: GeolocationFailure) -> SensorError:
    if failure.kind == FAILURE_UNSUPPORTED:
        return UnsupportedPlatform()
    if failure.kind == FAILURE_PERMISSION_DENIED:
        return PermissionDenied()
    return LocationUnavailable()


async def acquire_position(provider: Optional[LocationProvider], timeout_s: float) -> Position:
    """
    Ask the provider for a fresh high-accuracy fix, bounded by `timeout_s`.

    Raises:
        SensorError: unsupported platform, denied permission, timeout or any
            other sensor failure
    """
    if provider is None:
        raise UnsupportedPlatform()
    try:
        return await asyncio.wait_for(provider.current_position(high_accuracy=True), timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.warning(f"Location request timed out after {timeout_s}s")
        raise LocationUnavailable()
    except GeolocationFailure as e:
        logger.warning(f"Location request failed: {e.kind}")
        raise map_failure(e) from e


class FixedLocationProvider:
    """Provider for a position the client already resolved (HTTP submissions)."""

    def __init__(self, position: Position):
        self.position = position

    async def current_position(self, high_accuracy: bool = True) -> Position:
        return self.position
