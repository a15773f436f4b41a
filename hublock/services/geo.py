"""
Geographic utility functions and the hub geofence check.
"""
import math
import logging
from dataclasses import dataclass
from math import radians, sin, cos, asin, sqrt
from typing import Any, Optional

from ..core.config import settings
from .errors import MissingCoordinates, OutOfRange

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000.0

# Candidate (lat, lon) field pairs on a hub, in order of preference.
# `coordinates` is the current structured field; the flat ones are legacy.
_HUB_COORDINATE_FIELDS = (
    ("coordinates.latitude", "coordinates.longitude"),
    ("lat", "lng"),
    ("lat", "long"),
)


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class ProximityResult:
    passed: bool
    distance_m: float
    radius_m: float


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two lat/lng points in meters using Haversine formula.

    Args:
        lat1, lon1: First point coordinates
        lat2, lon2: Second point coordinates

    Returns:
        Distance in meters
    """
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)

    a = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon / 2) ** 2
    # float drift can push `a` just above 1 near antipodes
    c = 2 * asin(sqrt(min(1.0, a)))

    return EARTH_RADIUS_M * c


def _lookup(source: Any, dotted: str) -> Any:
    value = source
    for part in dotted.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    return value


def _as_finite(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_hub_coordinates(hub: Any) -> Optional[Coordinates]:
    """
    Resolve a hub's location from whichever field spelling it was stored with.

    Accepts a Hub model or a plain mapping. Returns the first candidate pair
    where both values are finite numbers (numeric strings count), else None.
    """
    if hub is None:
        return None
    for lat_field, lon_field in _HUB_COORDINATE_FIELDS:
        lat = _as_finite(_lookup(hub, lat_field))
        lon = _as_finite(_lookup(hub, lon_field))
        if lat is not None and lon is not None:
            return Coordinates(lat, lon)
    return None


@dataclass(frozen=True)
class GeofencePolicy:
    """
    Two named radii; the environment flag picks one. Callers never hard-code
    a radius of their own.
    """
    dev_radius_m: float = 20000.0
    prod_radius_m: float = 100.0
    use_dev_radius: bool = False

    @property
    def radius_m(self) -> float:
        return self.dev_radius_m if self.use_dev_radius else self.prod_radius_m

    @classmethod
    def from_settings(cls, config=None) -> "GeofencePolicy":
        config = config or settings
        return cls(
            dev_radius_m=config.GEOFENCE_DEV_RADIUS_M,
            prod_radius_m=config.GEOFENCE_PROD_RADIUS_M,
            use_dev_radius=config.use_dev_geofence,
        )


def check_proximity(
    user: Coordinates,
    hub: Optional[Coordinates],
    policy: GeofencePolicy,
) -> ProximityResult:
    """
    Compare the user's position with the hub. Boundary is inclusive.

    Raises:
        MissingCoordinates: hub location did not resolve
    """
    if hub is None:
        raise MissingCoordinates()

    distance = haversine_m(user.latitude, user.longitude, hub.latitude, hub.longitude)
    radius = policy.radius_m
    passed = distance <= radius

    logger.info(
        f"Geofence check: distance={round(distance)}m radius={round(radius)}m "
        f"mode={'dev' if policy.use_dev_radius else 'prod'} passed={passed}"
    )
    return ProximityResult(passed=passed, distance_m=distance, radius_m=radius)


def require_proximity(
    user: Coordinates,
    hub: Optional[Coordinates],
    policy: GeofencePolicy,
) -> ProximityResult:
    """check_proximity, raising OutOfRange when the user is too far away."""
    result = check_proximity(user, hub, policy)
    if not result.passed:
        raise OutOfRange(result.distance_m, result.radius_m)
    return result
