import logging
import warnings
from datetime import datetime
from typing import Optional, Sequence

import numpy as np
from skyfield import almanac
from skyfield.api import Loader, load, wgs84
from skyfield.errors import EphemerisRangeError

from ..errors import ProviderLookupError
from ..models.event import EventType
from ..models.position import CelestialPosition, PositionSeries
from .provider import to_utc

logger = logging.getLogger(__name__)

# Refraction conditions applied to apparent altitudes.
TEMPERATURE_C = 10.0
PRESSURE_MBAR = 1010.0


class SkyfieldPositionProvider:
    """Topocentric sun and moon positions from a JPL ephemeris via skyfield."""

    def __init__(
        self, ephemeris_file: str = "de421.bsp", data_dir: Optional[str] = None
    ):
        """Load the ephemeris, downloading it into ``data_dir`` if needed.

        Args:
            ephemeris_file: SPK kernel name or path (e.g. "de421.bsp")
            data_dir: Directory used by skyfield's loader cache

        Raises:
            ProviderLookupError: If the ephemeris cannot be loaded
        """
        loader = Loader(data_dir) if data_dir else load
        try:
            self._ephemeris = loader(ephemeris_file)
        except (OSError, ValueError) as e:
            raise ProviderLookupError(
                "ephemeris", f"cannot load {ephemeris_file}: {e}"
            ) from e

        self._timescale = loader.timescale()
        self._earth = self._ephemeris["earth"]
        self._targets = {
            EventType.SUN: self._ephemeris["sun"],
            EventType.MOON: self._ephemeris["moon"],
        }
        logger.info("Loaded ephemeris %s", ephemeris_file)

    def position_of(
        self, body: EventType, instant: datetime, observer
    ) -> CelestialPosition:
        return self.positions_of(body, [instant], observer).at(0)

    def positions_of(
        self, body: EventType, instants: Sequence[datetime], observer
    ) -> PositionSeries:
        target = self._targets.get(body)
        if target is None:
            raise ValueError(f"Unknown body: {body}")

        t = self._timescale.from_datetimes([to_utc(moment) for moment in instants])
        topos = self._earth + wgs84.latlon(
            observer.latitude, observer.longitude, elevation_m=observer.elevation_m
        )

        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                apparent = topos.at(t).observe(target).apparent()
            alt, az, _ = apparent.altaz(
                temperature_C=TEMPERATURE_C, pressure_mbar=PRESSURE_MBAR
            )
            series = PositionSeries(
                azimuth_deg=np.atleast_1d(az.degrees),
                elevation_deg=np.atleast_1d(alt.degrees),
            )
            if body == EventType.MOON:
                series.moon_phase_deg = np.atleast_1d(
                    almanac.moon_phase(self._ephemeris, t).degrees
                )
                series.moon_illumination = np.atleast_1d(
                    almanac.fraction_illuminated(self._ephemeris, "moon", t)
                )
        except EphemerisRangeError as e:
            raise ProviderLookupError(body.value, str(e)) from e

        return series
