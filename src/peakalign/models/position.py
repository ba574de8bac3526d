from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass(frozen=True)
class CelestialPosition:
    azimuth_deg: float
    elevation_deg: float
    moon_phase_deg: Optional[float] = None
    moon_illumination: Optional[float] = None


@dataclass
class PositionSeries:
    azimuth_deg: np.ndarray
    elevation_deg: np.ndarray
    moon_phase_deg: Optional[np.ndarray] = None
    moon_illumination: Optional[np.ndarray] = None

    def __post_init__(self):
        if len(self.azimuth_deg) != len(self.elevation_deg):
            raise ValueError("azimuth and elevation must have same length")

    def __len__(self) -> int:
        return len(self.azimuth_deg)

    def at(self, index: int) -> CelestialPosition:
        phase = None
        illumination = None
        if self.moon_phase_deg is not None:
            phase = float(self.moon_phase_deg[index])
        if self.moon_illumination is not None:
            illumination = float(self.moon_illumination[index])
        return CelestialPosition(
            azimuth_deg=float(self.azimuth_deg[index]),
            elevation_deg=float(self.elevation_deg[index]),
            moon_phase_deg=phase,
            moon_illumination=illumination,
        )
