from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TargetPeak:
    name: str
    latitude: float
    longitude: float
    elevation_m: float


# Summit crater centre.
MOUNT_FUJI = TargetPeak(
    name="Mount Fuji",
    latitude=35.3628,
    longitude=138.730781,
    elevation_m=3776.0,
)


@dataclass(frozen=True)
class ObserverLocation:
    id: int
    name: str
    latitude: float
    longitude: float
    elevation_m: float
    bearing_deg: Optional[float] = None
    elevation_angle_deg: Optional[float] = None
    distance_m: Optional[float] = None

    @property
    def has_derived_geometry(self) -> bool:
        return (
            self.bearing_deg is not None
            and self.elevation_angle_deg is not None
            and self.distance_m is not None
        )
