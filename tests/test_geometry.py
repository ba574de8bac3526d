import math

import numpy as np
import pytest

from peakalign.errors import InvalidGeometryError
from peakalign.geometry import (
    angular_difference,
    bearing,
    distance,
    elevation_angle,
    replace_position,
    with_derived_geometry,
)
from peakalign.models import MOUNT_FUJI, ObserverLocation, TargetPeak


def make_location(latitude, longitude, elevation_m=0.0, location_id=1):
    return ObserverLocation(
        id=location_id,
        name="test",
        latitude=latitude,
        longitude=longitude,
        elevation_m=elevation_m,
    )


def test_bearing_due_south():
    """Test that an observer due north of the summit looks south."""
    observer = make_location(35.6, MOUNT_FUJI.longitude)

    assert bearing(observer, MOUNT_FUJI) == pytest.approx(180.0, abs=1e-9)


def test_bearing_range():
    """Test that bearings stay within [0, 360) in every direction."""
    offsets = [(0.1, 0), (-0.1, 0), (0, 0.1), (0, -0.1), (0.1, 0.1), (-0.1, -0.1)]
    for d_lat, d_lon in offsets:
        observer = make_location(
            MOUNT_FUJI.latitude + d_lat, MOUNT_FUJI.longitude + d_lon
        )
        result = bearing(observer, MOUNT_FUJI)
        assert 0.0 <= result < 360.0


def test_tokyo_geometry(tokyo):
    """Test derived geometry for Tokyo Station against known values."""
    assert tokyo.bearing_deg == pytest.approx(249.3, abs=1.0)
    assert tokyo.distance_m == pytest.approx(100_000, rel=0.1)
    assert 1.0 < tokyo.elevation_angle_deg < 2.5


def test_distance_haversine():
    """Test that one degree of latitude is about 111.2 km."""
    target = TargetPeak("p", 10.0, 20.0, 0.0)
    observer = make_location(11.0, 20.0)

    assert distance(observer, target) == pytest.approx(111_195, rel=1e-3)


def test_distance_symmetric():
    """Test that distance does not depend on direction."""
    a = TargetPeak("a", 35.0, 139.0, 0.0)
    b = TargetPeak("b", 36.0, 140.5, 0.0)

    assert distance(a, b) == pytest.approx(distance(b, a))


def test_elevation_angle_flat_close():
    """Test that close targets follow plain trigonometry."""
    target = TargetPeak("p", 0.0, 0.0, 1001.7)
    observer = make_location(0.0, 0.01)
    d = distance(observer, target)

    expected = math.degrees(math.atan2(1000.0, d))
    assert elevation_angle(observer, target) == pytest.approx(expected, abs=0.01)


def test_elevation_angle_curvature_drop():
    """Test that Earth curvature lowers the apparent summit."""
    target = TargetPeak("p", 0.0, 0.0, 1.7)
    observer = make_location(0.0, 1.0)

    # Equal heights: the summit sits below the horizon line by the drop
    assert elevation_angle(observer, target) < 0


def test_elevation_angle_can_be_negative():
    """Test that high observers look down on the summit."""
    observer = make_location(35.0, 138.0, elevation_m=5000.0)

    assert elevation_angle(observer, MOUNT_FUJI) < 0


def test_angular_difference_wraparound():
    """Test that wraparound at north is handled."""
    assert angular_difference(350, 10) == pytest.approx(20.0)
    assert angular_difference(10, 350) == pytest.approx(20.0)
    assert angular_difference(0, 180) == pytest.approx(180.0)
    assert angular_difference(-90, 270) == pytest.approx(0.0)


def test_angular_difference_arrays():
    """Test that numpy arrays are supported element-wise."""
    result = angular_difference(np.array([359.5, 0.5, 90.0]), 0.0)

    np.testing.assert_allclose(result, [0.5, 0.5, 90.0])


def test_invalid_latitude():
    """Test that out-of-range latitude raises InvalidGeometryError."""
    with pytest.raises(InvalidGeometryError, match="latitude"):
        bearing(make_location(91.0, 0.0), MOUNT_FUJI)


def test_invalid_longitude():
    """Test that out-of-range longitude raises InvalidGeometryError."""
    with pytest.raises(InvalidGeometryError, match="longitude"):
        distance(make_location(0.0, 181.0), MOUNT_FUJI)


def test_non_finite_coordinates():
    """Test that NaN coordinates are rejected."""
    with pytest.raises(InvalidGeometryError, match="finite"):
        elevation_angle(make_location(float("nan"), 0.0), MOUNT_FUJI)


def test_coincident_observer():
    """Test that an observer on the summit is rejected."""
    observer = make_location(MOUNT_FUJI.latitude, MOUNT_FUJI.longitude)

    with pytest.raises(InvalidGeometryError, match="coincides"):
        bearing(observer, MOUNT_FUJI)


def test_antipodal_observer():
    """Test that the antipode is rejected."""
    observer = make_location(-MOUNT_FUJI.latitude, MOUNT_FUJI.longitude - 180.0)

    with pytest.raises(InvalidGeometryError, match="antipodal"):
        bearing(observer, MOUNT_FUJI)


def test_with_derived_geometry_sets_all_fields():
    """Test that the derived triple is computed together."""
    location = make_location(35.0, 139.0)
    assert not location.has_derived_geometry

    derived = with_derived_geometry(location, MOUNT_FUJI)

    assert derived.has_derived_geometry
    assert derived.bearing_deg == bearing(location, MOUNT_FUJI)
    assert derived.elevation_angle_deg == elevation_angle(location, MOUNT_FUJI)
    assert derived.distance_m == distance(location, MOUNT_FUJI)


def test_replace_position_refreshes_geometry(tokyo):
    """Test that moving a location recomputes its derived fields."""
    moved = replace_position(tokyo, MOUNT_FUJI, latitude=35.9)

    assert moved.latitude == 35.9
    assert moved.longitude == tokyo.longitude
    assert moved.bearing_deg != tokyo.bearing_deg
    assert moved.distance_m != tokyo.distance_m


def test_geometry_deterministic(tokyo):
    """Test that identical inputs give identical geometry."""
    again = with_derived_geometry(tokyo, MOUNT_FUJI)

    assert again == tokyo
