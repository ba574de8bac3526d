import dataclasses
import logging
import math

import numpy as np

from peakalign.errors import InvalidGeometryError
from peakalign.models import ObserverLocation, TargetPeak

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000.0
EYE_HEIGHT_M = 1.7
TERRESTRIAL_REFRACTION = 0.13
MIN_SEPARATION_M = 1.0


def _validate_point(latitude: float, longitude: float, label: str) -> None:
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise InvalidGeometryError(f"{label} coordinates must be finite")
    if not -90.0 <= latitude <= 90.0:
        raise InvalidGeometryError(f"{label} latitude {latitude} outside [-90, 90]")
    if not -180.0 <= longitude <= 180.0:
        raise InvalidGeometryError(
            f"{label} longitude {longitude} outside [-180, 180]"
        )


def _validate_pair(observer, target) -> None:
    _validate_point(observer.latitude, observer.longitude, "observer")
    _validate_point(target.latitude, target.longitude, "target")

    separation = _central_angle(observer, target)
    if separation * EARTH_RADIUS_M < MIN_SEPARATION_M:
        raise InvalidGeometryError("observer coincides with the target")
    if (math.pi - separation) * EARTH_RADIUS_M < MIN_SEPARATION_M:
        raise InvalidGeometryError("observer is antipodal to the target")


def _central_angle(observer, target) -> float:
    lat1 = math.radians(observer.latitude)
    lat2 = math.radians(target.latitude)
    delta_lat = lat2 - lat1
    delta_lon = math.radians(target.longitude - observer.longitude)

    a = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(delta_lon / 2) ** 2
    )
    a = min(1.0, max(0.0, a))
    return 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def bearing(observer, target) -> float:
    """Initial great-circle bearing from observer to target.

    Args:
        observer: Object with ``latitude`` and ``longitude`` in degrees
        target: Object with ``latitude`` and ``longitude`` in degrees

    Returns:
        Bearing in degrees clockwise from north, in [0, 360)

    Raises:
        InvalidGeometryError: If the pair is degenerate or out of range
    """
    _validate_pair(observer, target)

    lat1 = math.radians(observer.latitude)
    lat2 = math.radians(target.latitude)
    delta_lon = math.radians(target.longitude - observer.longitude)

    y = math.sin(delta_lon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(
        delta_lon
    )

    result = math.degrees(math.atan2(y, x)) % 360.0
    # -0.0 % 360 can round up to exactly 360.0
    return 0.0 if result >= 360.0 else result


def distance(observer, target) -> float:
    """Haversine great-circle distance in meters."""
    _validate_pair(observer, target)
    return EARTH_RADIUS_M * _central_angle(observer, target)


def elevation_angle(observer, target) -> float:
    """Apparent angle of the target summit above the observer's horizon.

    The height difference between the summit and the observer's eye is
    reduced by the Earth curvature drop over the ground distance, of which
    13% is given back by terrestrial refraction.

    Args:
        observer: Object with ``latitude``, ``longitude`` and ``elevation_m``
        target: Object with ``latitude``, ``longitude`` and ``elevation_m``

    Returns:
        Elevation angle in degrees, negative when the summit sits below
        the observer's horizon line
    """
    ground_distance = distance(observer, target)

    eye_height = observer.elevation_m + EYE_HEIGHT_M
    height_difference = target.elevation_m - eye_height

    curvature_drop = ground_distance**2 / (2 * EARTH_RADIUS_M)
    apparent_drop = curvature_drop * (1.0 - TERRESTRIAL_REFRACTION)

    return math.degrees(math.atan2(height_difference - apparent_drop, ground_distance))


def angular_difference(a, b):
    """Smallest angle between two azimuths, in [0, 180].

    Accepts scalars or numpy arrays. ``angular_difference(350, 10) == 20``.
    """
    delta = np.asarray(a, dtype=float) - np.asarray(b, dtype=float)
    diff = np.abs(np.mod(delta, 360.0))
    result = np.minimum(diff, 360.0 - diff)
    if np.ndim(result) == 0:
        return float(result)
    return result


def with_derived_geometry(
    location: ObserverLocation, target: TargetPeak
) -> ObserverLocation:
    """Return a copy of ``location`` with bearing, elevation angle and
    distance recomputed together against ``target``."""
    derived = dataclasses.replace(
        location,
        bearing_deg=bearing(location, target),
        elevation_angle_deg=elevation_angle(location, target),
        distance_m=distance(location, target),
    )
    logger.debug(
        "Derived geometry for location %s: bearing=%.4f elevation=%.4f distance=%.0f",
        location.id,
        derived.bearing_deg,
        derived.elevation_angle_deg,
        derived.distance_m,
    )
    return derived


def replace_position(
    location: ObserverLocation,
    target: TargetPeak,
    *,
    latitude: float | None = None,
    longitude: float | None = None,
    elevation_m: float | None = None,
) -> ObserverLocation:
    """Move a location and refresh its derived geometry in one step."""
    moved = dataclasses.replace(
        location,
        latitude=location.latitude if latitude is None else latitude,
        longitude=location.longitude if longitude is None else longitude,
        elevation_m=location.elevation_m if elevation_m is None else elevation_m,
    )
    return with_derived_geometry(moved, target)
