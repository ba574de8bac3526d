"""Declination-based pre-screen of days on which an alignment is possible.

A body can only stand at azimuth A and geometric altitude h for an observer
at latitude phi if its declination d satisfies

    sin d = sin(phi) sin(h) + cos(phi) cos(h) cos(A)

so the admissible error box around (bearing, elevation angle) maps to an
interval of declinations. Days whose declination range misses that interval
are skipped without querying the position provider.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta

import numpy as np

from ..ephemeris.lowprecision import (
    MOON_MAX_DECLINATION_DEG,
    SUN_MAX_DECLINATION_DEG,
    julian_day,
    lunar_declination,
    solar_declination,
)
from ..models import EventType, ObserverLocation, SubType
from .days import local_day_window

logger = logging.getLogger(__name__)

# Apparent altitude sits above geometric altitude by at most this much near
# the horizon.
REFRACTION_PAD_DEG = 0.9
# Topocentric lunar altitude sits below geocentric altitude by up to the
# horizontal parallax.
MOON_PARALLAX_PAD_DEG = 1.05
# Topocentric azimuth shift from parallax on an ellipsoidal Earth.
AZIMUTH_PAD_DEG = 0.1

# Error of the low-precision declination model plus motion between samples.
SUN_DECLINATION_MARGIN_DEG = 0.5
MOON_DECLINATION_MARGIN_DEG = 1.5

DAY_SAMPLE_HOURS = 6
GRID_POINTS = 41

_MAX_DECLINATION = {
    EventType.SUN: SUN_MAX_DECLINATION_DEG,
    EventType.MOON: MOON_MAX_DECLINATION_DEG,
}
_DECLINATION_MARGIN = {
    EventType.SUN: SUN_DECLINATION_MARGIN_DEG,
    EventType.MOON: MOON_DECLINATION_MARGIN_DEG,
}
_DECLINATION_MODEL = {
    EventType.SUN: solar_declination,
    EventType.MOON: lunar_declination,
}


def _azimuth_grid(bearing: float, tolerance: float) -> np.ndarray:
    low = bearing - tolerance
    high = bearing + tolerance
    grid = np.linspace(low, high, GRID_POINTS)
    # cos(A) peaks at north and south; include them when inside the box
    extremes = [
        a for a in (0.0, 180.0, 360.0, -180.0, 540.0) if low <= a <= high
    ]
    return np.concatenate([grid, np.asarray(extremes, dtype=float)])


def _altitude_bounds(body: EventType, elevation_angle: float, tolerance: float):
    low = elevation_angle - tolerance - REFRACTION_PAD_DEG
    high = elevation_angle + tolerance
    if body == EventType.MOON:
        high += MOON_PARALLAX_PAD_DEG
    return max(-90.0, low), min(90.0, high)


def required_declination_range(
    latitude: float,
    bearing: float,
    elevation_angle: float,
    tolerance: float,
    body: EventType,
) -> tuple[float, float]:
    """Declination interval that puts ``body`` inside the error box.

    Args:
        latitude: Observer latitude in degrees
        bearing: Azimuth of the target peak in degrees
        elevation_angle: Elevation angle of the target peak in degrees
        tolerance: Half-width of the box in both azimuth and elevation
        body: Sun or moon; the moon's box extends upward by its parallax

    Returns:
        Tuple of (min_declination_deg, max_declination_deg)
    """
    azimuths = _azimuth_grid(bearing, tolerance + AZIMUTH_PAD_DEG)
    alt_low, alt_high = _altitude_bounds(body, elevation_angle, tolerance)
    altitudes = np.linspace(alt_low, alt_high, GRID_POINTS)

    az, alt = np.meshgrid(np.radians(azimuths), np.radians(altitudes))
    phi = np.radians(latitude)
    sin_dec = np.sin(phi) * np.sin(alt) + np.cos(phi) * np.cos(alt) * np.cos(az)
    declination = np.degrees(np.arcsin(np.clip(sin_dec, -1.0, 1.0)))

    # Grid spacing is well under a degree; a small pad covers curvature between nodes.
    return float(declination.min()) - 0.05, float(declination.max()) + 0.05


def window_sub_types(bearing: float, tolerance: float) -> tuple[SubType, ...]:
    """Sub-types whose azimuth half (east [0, 180), west [180, 360)) the
    error box around ``bearing`` touches."""
    azimuths = np.mod(_azimuth_grid(bearing, tolerance + AZIMUTH_PAD_DEG), 360.0)
    sub_types = []
    if np.any(azimuths < 180.0):
        sub_types.append(SubType.RISING)
    if np.any(azimuths >= 180.0):
        sub_types.append(SubType.SETTING)
    return tuple(sub_types)


@dataclass(frozen=True)
class BodyWindow:
    body: EventType
    min_declination_deg: float
    max_declination_deg: float
    sub_types: tuple[SubType, ...]
    possible: bool


class FeasibilityFilter:
    """Decides per (day, body) whether a fine search is worth running.

    The filter may admit days with no alignment, but never rejects a day on
    which one exists within ``max_error_deg``.
    """

    def __init__(self, location: ObserverLocation, max_error_deg: float):
        if not location.has_derived_geometry:
            raise ValueError(f"location {location.id} has no derived geometry")
        self.location = location
        self.max_error_deg = max_error_deg
        self._windows = {
            body: self._body_window(body) for body in (EventType.SUN, EventType.MOON)
        }

    def _body_window(self, body: EventType) -> BodyWindow:
        low, high = required_declination_range(
            self.location.latitude,
            self.location.bearing_deg,
            self.location.elevation_angle_deg,
            self.max_error_deg,
            body,
        )
        extreme = _MAX_DECLINATION[body] + _DECLINATION_MARGIN[body]
        possible = high >= -extreme and low <= extreme
        if not possible:
            logger.debug(
                "%s never reaches declination [%.2f, %.2f] for location %s",
                body.value,
                low,
                high,
                self.location.id,
            )
        return BodyWindow(
            body=body,
            min_declination_deg=low,
            max_declination_deg=high,
            sub_types=window_sub_types(self.location.bearing_deg, self.max_error_deg),
            possible=possible,
        )

    def is_possible(self, body: EventType) -> bool:
        """Year-level check: False when the body can never reach the box."""
        return self._windows[body].possible

    def day_declination_range(self, body: EventType, day: date) -> tuple[float, float]:
        start, _ = local_day_window(day, self.location.longitude)
        samples = [
            start + timedelta(hours=h) for h in range(0, 25, DAY_SAMPLE_HOURS)
        ]
        declinations = _DECLINATION_MODEL[body](julian_day(samples))
        margin = _DECLINATION_MARGIN[body]
        return float(declinations.min()) - margin, float(declinations.max()) + margin

    def candidate_sub_types(self, body: EventType, day: date) -> tuple[SubType, ...]:
        """Sub-types to search for ``body`` on ``day``; empty means skip."""
        window = self._windows[body]
        if not window.possible:
            return ()
        low, high = self.day_declination_range(body, day)
        if high < window.min_declination_deg or low > window.max_declination_deg:
            return ()
        return window.sub_types
