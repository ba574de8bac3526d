from .calculator import (
    EARTH_RADIUS_M,
    angular_difference,
    bearing,
    distance,
    elevation_angle,
    replace_position,
    with_derived_geometry,
)

__all__ = [
    "EARTH_RADIUS_M",
    "angular_difference",
    "bearing",
    "distance",
    "elevation_angle",
    "replace_position",
    "with_derived_geometry",
]
