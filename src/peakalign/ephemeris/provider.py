from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol, Sequence

from ..models.event import EventType
from ..models.position import CelestialPosition, PositionSeries

if TYPE_CHECKING:
    from ..config import EphemerisConfig


class CelestialPositionProvider(Protocol):
    """Ephemeris oracle returning topocentric sun and moon positions.

    ``observer`` is any object exposing ``latitude``, ``longitude`` (degrees)
    and ``elevation_m``.
    """

    def position_of(
        self, body: EventType, instant: datetime, observer
    ) -> CelestialPosition: ...

    def positions_of(
        self, body: EventType, instants: Sequence[datetime], observer
    ) -> PositionSeries: ...


def to_utc(moment: datetime) -> datetime:
    """Return an aware UTC datetime, treating naive input as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def get_provider(config: "EphemerisConfig") -> CelestialPositionProvider:
    """Build the position provider named in ``config``.

    Raises:
        ValueError: If the provider name is not recognized
    """
    name = config.provider.lower()

    if name == "lowprecision":
        from .lowprecision import LowPrecisionPositionProvider

        return LowPrecisionPositionProvider()

    if name == "skyfield":
        from .skyfield_provider import SkyfieldPositionProvider

        return SkyfieldPositionProvider(
            ephemeris_file=config.ephemeris_file, data_dir=config.data_dir
        )

    raise ValueError(f"Unknown position provider: {config.provider}")
