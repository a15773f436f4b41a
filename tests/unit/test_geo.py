"""
Unit tests for the hub geofence: haversine distance, coordinate
normalization and the radius policy.
"""
import math

import pytest

from hublock.services.errors import MissingCoordinates, OutOfRange
from hublock.services.geo import (
    Coordinates,
    GeofencePolicy,
    check_proximity,
    haversine_m,
    normalize_hub_coordinates,
    require_proximity,
)

POINTS = [
    (12.9716, 77.5946),
    (12.9352, 77.6245),
    (-33.8688, 151.2093),
    (51.5074, -0.1278),
    (0.0, 0.0),
    (89.9, 179.9),
]


class TestHaversine:

    @pytest.mark.parametrize("a", POINTS)
    @pytest.mark.parametrize("b", POINTS)
    def test_symmetric(self, a, b):
        assert haversine_m(*a, *b) == pytest.approx(haversine_m(*b, *a))

    @pytest.mark.parametrize("a", POINTS)
    def test_zero_for_same_point(self, a):
        assert haversine_m(*a, *a) == 0

    def test_one_degree_of_latitude(self):
        expected = 6371000.0 * math.pi / 180
        assert haversine_m(0.0, 0.0, 1.0, 0.0) == pytest.approx(expected)

    def test_antipodes_do_not_blow_up(self):
        assert haversine_m(0.0, 0.0, 0.0, 180.0) == pytest.approx(6371000.0 * math.pi)


class TestNormalizeHubCoordinates:

    def test_structured_field_preferred(self):
        hub = {"coordinates": {"latitude": 1.5, "longitude": 2.5}, "lat": 9, "lng": 9}
        assert normalize_hub_coordinates(hub) == Coordinates(1.5, 2.5)

    def test_lat_lng_fallback(self):
        assert normalize_hub_coordinates({"lat": 12.9, "lng": 77.6}) == Coordinates(12.9, 77.6)

    def test_lat_long_fallback(self):
        assert normalize_hub_coordinates({"lat": 12.9, "long": 77.6}) == Coordinates(12.9, 77.6)

    def test_numeric_strings_accepted(self):
        hub = {"coordinates": {"latitude": "12.97", "longitude": " 77.59 "}}
        assert normalize_hub_coordinates(hub) == Coordinates(12.97, 77.59)

    def test_invalid_structured_pair_falls_through(self):
        hub = {"coordinates": {"latitude": "north", "longitude": 1.0}, "lat": 3.0, "lng": 4.0}
        assert normalize_hub_coordinates(hub) == Coordinates(3.0, 4.0)

    @pytest.mark.parametrize("hub", [
        None,
        {},
        {"coordinates": None},
        {"coordinates": {"latitude": None, "longitude": None}},
        {"lat": float("nan"), "lng": 1.0},
        {"lat": 1.0, "lng": float("inf")},
        {"lat": True, "lng": 1.0},
        {"lat": 1.0},
    ])
    def test_unresolvable(self, hub):
        assert normalize_hub_coordinates(hub) is None

    def test_hub_model(self):
        from hublock.models import Hub
        hub = Hub(name="Legacy", lat=10.0, lng=20.0)
        assert normalize_hub_coordinates(hub) == Coordinates(10.0, 20.0)


class TestGeofencePolicy:

    def test_radius_selection(self):
        assert GeofencePolicy(use_dev_radius=True).radius_m == 20000.0
        assert GeofencePolicy(use_dev_radius=False).radius_m == 100.0

    def test_from_settings_uses_strict_radius_outside_dev(self):
        # tests run with ENV=test
        assert GeofencePolicy.from_settings().radius_m == 100.0


class TestCheckProximity:

    HUB = Coordinates(12.9716, 77.5946)

    def test_same_point_passes(self):
        result = check_proximity(self.HUB, self.HUB, GeofencePolicy())
        assert result.passed
        assert result.distance_m == 0

    def test_boundary_is_inclusive(self):
        user = Coordinates(12.9726, 77.5946)
        distance = haversine_m(user.latitude, user.longitude, self.HUB.latitude, self.HUB.longitude)
        policy = GeofencePolicy(prod_radius_m=distance)
        assert check_proximity(user, self.HUB, policy).passed

    def test_just_outside_fails(self):
        user = Coordinates(12.9726, 77.5946)
        distance = haversine_m(user.latitude, user.longitude, self.HUB.latitude, self.HUB.longitude)
        policy = GeofencePolicy(prod_radius_m=distance - 0.01)
        assert not check_proximity(user, self.HUB, policy).passed

    def test_dev_radius_widens(self):
        user = Coordinates(13.0, 77.6)  # ~3km away
        assert not check_proximity(user, self.HUB, GeofencePolicy()).passed
        assert check_proximity(user, self.HUB, GeofencePolicy(use_dev_radius=True)).passed

    def test_missing_hub_is_distinct_from_out_of_range(self):
        with pytest.raises(MissingCoordinates):
            check_proximity(self.HUB, None, GeofencePolicy())

    def test_require_proximity_reports_distance(self):
        user = Coordinates(13.0, 77.6)
        with pytest.raises(OutOfRange) as exc_info:
            require_proximity(user, self.HUB, GeofencePolicy())
        assert exc_info.value.distance_m > 100
        assert exc_info.value.radius_m == 100.0
        assert "Need within 100m" in exc_info.value.message
