from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional


class EventType(str, Enum):
    SUN = "sun"
    MOON = "moon"


class SubType(str, Enum):
    RISING = "rising"
    SETTING = "setting"


class AccuracyClass(str, Enum):
    PERFECT = "perfect"
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"


@dataclass(frozen=True)
class AlignmentEvent:
    location_id: int
    date: date
    event_type: EventType
    sub_type: SubType
    time: datetime
    azimuth_deg: float
    elevation_deg: float
    azimuth_error_deg: float
    elevation_error_deg: float
    error_deg: float
    accuracy: AccuracyClass
    quality_score: float
    moon_phase_deg: Optional[float] = None
    moon_illumination: Optional[float] = None

    @property
    def key(self) -> tuple[int, date, EventType, SubType]:
        """Uniqueness key for materialized events."""
        return (self.location_id, self.date, self.event_type, self.sub_type)

    def to_dict(self) -> dict:
        """JSON-ready representation."""
        return {
            "location_id": self.location_id,
            "date": self.date.isoformat(),
            "event_type": self.event_type.value,
            "sub_type": self.sub_type.value,
            "time": self.time.isoformat(),
            "azimuth_deg": self.azimuth_deg,
            "elevation_deg": self.elevation_deg,
            "azimuth_error_deg": self.azimuth_error_deg,
            "elevation_error_deg": self.elevation_error_deg,
            "error_deg": self.error_deg,
            "accuracy": self.accuracy.value,
            "quality_score": self.quality_score,
            "moon_phase_deg": self.moon_phase_deg,
            "moon_illumination": self.moon_illumination,
        }
