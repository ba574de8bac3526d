import functools

import pytest

from peakalign.ephemeris import LowPrecisionPositionProvider
from peakalign.geometry import with_derived_geometry
from peakalign.models import MOUNT_FUJI, EventType, ObserverLocation, SubType
from peakalign.search import (
    FeasibilityFilter,
    reference_scan,
    required_declination_range,
)
from peakalign.search.days import iter_days
from peakalign.search.feasibility import window_sub_types

MAX_ERROR = 2.0
YEAR = 2025


# (latitude, longitude, elevation_m) of observers around the peak.
SITES = {
    # East-northeast, long and shallow line of sight.
    "tokyo": (35.6812, 139.7671, 40.0),
    # East-southeast, low coastal observer.
    "enoshima": (35.2996, 139.4805, 60.0),
    # East-northeast at the foot, steep line of sight.
    "yamanakako": (35.4167, 138.8667, 1000.0),
    # West-southwest, the peak rises to the east.
    "tanukiko": (35.3370, 138.5830, 650.0),
    # North, the peak stands due south.
    "kawaguchiko": (35.5167, 138.7500, 830.0),
}


def site_location(name):
    latitude, longitude, elevation_m = SITES[name]
    return with_derived_geometry(
        ObserverLocation(1, name, latitude, longitude, elevation_m), MOUNT_FUJI
    )


@functools.lru_cache(maxsize=None)
def scan_year(name):
    """Brute-force reference results and filter verdicts for a whole year."""
    provider = LowPrecisionPositionProvider()
    location = site_location(name)
    feasibility = FeasibilityFilter(location, MAX_ERROR)

    rows = []
    for day in iter_days(YEAR, YEAR):
        for body in (EventType.SUN, EventType.MOON):
            found = reference_scan(provider, location, day, body, step_seconds=60)
            admitted = feasibility.candidate_sub_types(body, day)
            rows.append((day, body, found, admitted))
    return tuple(rows)


@pytest.fixture(scope="module")
def year_scan():
    return scan_year("tokyo")


@pytest.fixture(scope="module", params=sorted(SITES))
def site_scan(request):
    return scan_year(request.param)


def test_never_rejects_reference_alignment(site_scan):
    """Test that every day with a brute-force alignment is admitted."""
    missed = [
        (day, body, sub_type)
        for day, body, found, admitted in site_scan
        for sub_type in found
        if sub_type not in admitted
    ]

    assert missed == []


def test_reference_finds_alignments(year_scan):
    """Test that the year contains sun and moon alignments for Tokyo."""
    sun_days = [row for row in year_scan if row[1] == EventType.SUN and row[2]]
    moon_days = [row for row in year_scan if row[1] == EventType.MOON and row[2]]

    assert len(sun_days) > 0
    assert len(moon_days) > 0


def test_filter_skips_most_sun_days(year_scan):
    """Test that the filter prunes days on which the sun is out of reach."""
    admitted = [row for row in year_scan if row[1] == EventType.SUN and row[3]]

    assert len(admitted) < 120


def test_tokyo_sub_types(year_scan):
    """Test that Tokyo only searches setting windows (peak to the west)."""
    admitted = {sub for row in year_scan for sub in row[3]}

    assert admitted == {SubType.SETTING}


def test_tanukiko_sub_types():
    """Test that an observer west of the peak only searches rising windows."""
    scan = scan_year("tanukiko")
    admitted = {sub for row in scan for sub in row[3]}

    assert admitted == {SubType.RISING}


def test_impossible_geometry_rejected_for_year():
    """Test that a steep southern line of sight is never reached."""
    location = with_derived_geometry(
        ObserverLocation(2, "north", 35.6, MOUNT_FUJI.longitude, 0.0), MOUNT_FUJI
    )
    feasibility = FeasibilityFilter(location, MAX_ERROR)

    assert not feasibility.is_possible(EventType.SUN)
    assert not feasibility.is_possible(EventType.MOON)
    first_day = next(iter_days(YEAR, YEAR))
    assert feasibility.candidate_sub_types(EventType.SUN, first_day) == ()


def test_required_declination_due_south():
    """Test the declination needed to stand due south at altitude h."""
    low, high = required_declination_range(35.0, 180.0, 10.0, 0.5, EventType.SUN)

    # Due south: dec = h - (90 - lat)
    assert low < 10.0 - 55.0 < high
    assert high - low < 3.0


def test_moon_range_wider_than_sun():
    """Test that lunar parallax widens the required interval."""
    sun = required_declination_range(35.0, 250.0, 1.5, 2.0, EventType.SUN)
    moon = required_declination_range(35.0, 250.0, 1.5, 2.0, EventType.MOON)

    assert moon[0] == pytest.approx(sun[0])
    assert moon[1] > sun[1]


class TestWindowSubTypes:
    """Tests for window selection from the bearing."""

    def test_east(self):
        assert window_sub_types(90.0, 2.0) == (SubType.RISING,)

    def test_west(self):
        assert window_sub_types(247.0, 2.0) == (SubType.SETTING,)

    def test_south_straddles(self):
        assert window_sub_types(179.5, 2.0) == (SubType.RISING, SubType.SETTING)

    def test_north_straddles(self):
        assert window_sub_types(359.0, 2.0) == (SubType.RISING, SubType.SETTING)


def test_requires_derived_geometry():
    """Test that a location without geometry is rejected."""
    with pytest.raises(ValueError, match="derived geometry"):
        FeasibilityFilter(ObserverLocation(3, "bare", 35.0, 139.0, 0.0), MAX_ERROR)
