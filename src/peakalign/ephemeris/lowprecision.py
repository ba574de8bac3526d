"""Low-precision analytic sun and moon ephemeris.

Solar coordinates follow the Astronomical Almanac low-precision formulae
(about 0.01 deg); lunar coordinates use the Almanac's truncated lunar series
(about 0.3 deg in longitude, 0.2 deg in latitude). Everything is vectorised
over numpy arrays of Julian days so that a whole day of samples costs a
handful of array operations.
"""

from datetime import datetime
from typing import Sequence

import numpy as np

from ..models.event import EventType
from ..models.position import CelestialPosition, PositionSeries
from .provider import to_utc

J2000 = 2451545.0
UNIX_EPOCH_JD = 2440587.5

SUN_MAX_DECLINATION_DEG = 23.45
MOON_MAX_DECLINATION_DEG = 28.72


def julian_day(instants) -> np.ndarray:
    """Convert datetimes (or one datetime) to Julian days in UT."""
    if isinstance(instants, datetime):
        instants = [instants]
    seconds = np.array([to_utc(moment).timestamp() for moment in instants])
    return UNIX_EPOCH_JD + seconds / 86400.0


def _sind(x):
    return np.sin(np.radians(x))


def _cosd(x):
    return np.cos(np.radians(x))


def _obliquity(n):
    return 23.439 - 0.0000004 * n


def solar_coordinates(jd) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Geocentric solar right ascension, declination and ecliptic longitude.

    Args:
        jd: Julian day(s) in UT

    Returns:
        Tuple of (ra_deg, dec_deg, ecliptic_longitude_deg)
    """
    n = np.asarray(jd, dtype=float) - J2000
    mean_longitude = 280.460 + 0.9856474 * n
    mean_anomaly = 357.528 + 0.9856003 * n
    longitude = np.mod(
        mean_longitude
        + 1.915 * _sind(mean_anomaly)
        + 0.020 * _sind(2 * mean_anomaly),
        360.0,
    )
    epsilon = _obliquity(n)

    ra = np.degrees(
        np.arctan2(_cosd(epsilon) * _sind(longitude), _cosd(longitude))
    )
    dec = np.degrees(np.arcsin(_sind(epsilon) * _sind(longitude)))
    return np.mod(ra, 360.0), dec, longitude


def lunar_coordinates(
    jd,
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Geocentric lunar coordinates.

    Returns:
        Tuple of (ra_deg, dec_deg, ecliptic_longitude_deg,
        ecliptic_latitude_deg, horizontal_parallax_deg)
    """
    n = np.asarray(jd, dtype=float) - J2000
    t = n / 36525.0

    longitude = np.mod(
        218.32
        + 481267.881 * t
        + 6.29 * _sind(135.0 + 477198.87 * t)
        - 1.27 * _sind(259.3 - 413335.36 * t)
        + 0.66 * _sind(235.7 + 890534.22 * t)
        + 0.21 * _sind(269.9 + 954397.74 * t)
        - 0.19 * _sind(357.5 + 35999.05 * t)
        - 0.11 * _sind(186.5 + 966404.03 * t),
        360.0,
    )
    latitude = (
        5.13 * _sind(93.3 + 483202.02 * t)
        + 0.28 * _sind(228.2 + 960400.89 * t)
        - 0.28 * _sind(318.3 + 6003.15 * t)
        - 0.17 * _sind(217.6 - 407332.21 * t)
    )
    parallax = (
        0.9508
        + 0.0518 * _cosd(135.0 + 477198.87 * t)
        + 0.0095 * _cosd(259.3 - 413335.36 * t)
        + 0.0078 * _cosd(235.7 + 890534.22 * t)
        + 0.0028 * _cosd(269.9 + 954397.74 * t)
    )

    epsilon = _obliquity(n)
    sin_dec = _sind(latitude) * _cosd(epsilon) + _cosd(latitude) * _sind(
        epsilon
    ) * _sind(longitude)
    dec = np.degrees(np.arcsin(np.clip(sin_dec, -1.0, 1.0)))
    ra = np.degrees(
        np.arctan2(
            _sind(longitude) * _cosd(epsilon)
            - np.tan(np.radians(latitude)) * _sind(epsilon),
            _cosd(longitude),
        )
    )
    return np.mod(ra, 360.0), dec, longitude, latitude, parallax


def solar_declination(jd) -> np.ndarray:
    return solar_coordinates(jd)[1]


def lunar_declination(jd) -> np.ndarray:
    return lunar_coordinates(jd)[1]


def local_sidereal_deg(jd, longitude_deg: float) -> np.ndarray:
    """Local mean sidereal time in degrees."""
    n = np.asarray(jd, dtype=float) - J2000
    t = n / 36525.0
    gmst = 280.46061837 + 360.98564736629 * n + 0.000387933 * t * t
    return np.mod(gmst + longitude_deg, 360.0)


def horizontal(ra_deg, dec_deg, jd, latitude_deg: float, longitude_deg: float):
    """Convert equatorial coordinates to (azimuth, altitude) in degrees.

    Azimuth is measured clockwise from north.
    """
    hour_angle = local_sidereal_deg(jd, longitude_deg) - ra_deg
    sin_alt = _sind(latitude_deg) * _sind(dec_deg) + _cosd(latitude_deg) * _cosd(
        dec_deg
    ) * _cosd(hour_angle)
    altitude = np.degrees(np.arcsin(np.clip(sin_alt, -1.0, 1.0)))
    azimuth = np.degrees(
        np.arctan2(
            -_cosd(dec_deg) * _sind(hour_angle),
            _sind(dec_deg) * _cosd(latitude_deg)
            - _cosd(dec_deg) * _sind(latitude_deg) * _cosd(hour_angle),
        )
    )
    return np.mod(azimuth, 360.0), altitude


def bennett_refraction(altitude_deg) -> np.ndarray:
    """Standard-atmosphere refraction in degrees for apparent altitudes."""
    altitude = np.asarray(altitude_deg, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        refraction = (1.0 / 60.0) / np.tan(
            np.radians(altitude + 7.31 / (altitude + 4.4))
        )
    return np.where((altitude >= -1.0) & (altitude <= 89.9), refraction, 0.0)


def moon_phase(jd) -> tuple[np.ndarray, np.ndarray]:
    """Moon phase angle (0 new, 180 full) and illuminated fraction."""
    _, _, sun_longitude = solar_coordinates(jd)
    _, _, moon_longitude, moon_latitude, _ = lunar_coordinates(jd)
    phase = np.mod(moon_longitude - sun_longitude, 360.0)
    cos_elongation = _cosd(moon_latitude) * _cosd(phase)
    illumination = (1.0 - cos_elongation) / 2.0
    return phase, illumination


class LowPrecisionPositionProvider:
    """Offline provider built on the analytic series above."""

    def position_of(
        self, body: EventType, instant: datetime, observer
    ) -> CelestialPosition:
        return self.positions_of(body, [instant], observer).at(0)

    def positions_of(
        self, body: EventType, instants: Sequence[datetime], observer
    ) -> PositionSeries:
        jd = julian_day(instants)
        return self.positions_at_jd(body, jd, observer)

    def positions_at_jd(
        self, body: EventType, jd: np.ndarray, observer
    ) -> PositionSeries:
        if body == EventType.SUN:
            ra, dec, _ = solar_coordinates(jd)
            azimuth, altitude = horizontal(
                ra, dec, jd, observer.latitude, observer.longitude
            )
            altitude = altitude + bennett_refraction(altitude)
            return PositionSeries(azimuth_deg=azimuth, elevation_deg=altitude)

        if body == EventType.MOON:
            ra, dec, _, _, parallax = lunar_coordinates(jd)
            azimuth, altitude = horizontal(
                ra, dec, jd, observer.latitude, observer.longitude
            )
            altitude = altitude - parallax * _cosd(altitude)
            altitude = altitude + bennett_refraction(altitude)
            phase, illumination = moon_phase(jd)
            return PositionSeries(
                azimuth_deg=azimuth,
                elevation_deg=altitude,
                moon_phase_deg=phase,
                moon_illumination=illumination,
            )

        raise ValueError(f"Unknown body: {body}")
