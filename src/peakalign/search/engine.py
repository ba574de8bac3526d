import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Optional

import numpy as np

from ..config import SearchConfig
from ..ephemeris.provider import CelestialPositionProvider
from ..errors import JobCancelledError, ProviderLookupError
from ..geometry import angular_difference
from ..models import AlignmentEvent, EventType, ObserverLocation, SubType
from ..models.position import PositionSeries
from .accuracy import classify, quality_score
from .days import count_days, iter_days, local_day_window, sample_times
from .feasibility import FeasibilityFilter

logger = logging.getLogger(__name__)

DEFAULT_BODIES = (EventType.SUN, EventType.MOON)


@dataclass(frozen=True)
class DayFailure:
    day: date
    body: EventType
    message: str


@dataclass
class SearchResult:
    events: list[AlignmentEvent] = field(default_factory=list)
    days_total: int = 0
    days_evaluated: int = 0
    days_skipped: int = 0
    failed_days: list[DayFailure] = field(default_factory=list)

    @property
    def warnings(self) -> list[str]:
        return [
            f"{failure.day.isoformat()} {failure.body.value}: {failure.message}"
            for failure in self.failed_days
        ]

    def summary(self) -> dict:
        """Plain-dict summary stored as the job result."""
        return {
            "events": len(self.events),
            "days_total": self.days_total,
            "days_evaluated": self.days_evaluated,
            "days_skipped": self.days_skipped,
            "failed_days": len(self.failed_days),
            "warnings": self.warnings,
        }


@dataclass(frozen=True)
class _Candidate:
    time: datetime
    index: int
    azimuth_error: float
    elevation_error: float

    @property
    def error(self) -> float:
        return self.azimuth_error + self.elevation_error


def _window_mask(azimuth: np.ndarray, sub_type: SubType) -> np.ndarray:
    rising = azimuth < 180.0
    return rising if sub_type == SubType.RISING else ~rising


def _errors(series: PositionSeries, location: ObserverLocation):
    azimuth_error = angular_difference(series.azimuth_deg, location.bearing_deg)
    elevation_error = np.abs(series.elevation_deg - location.elevation_angle_deg)
    return np.atleast_1d(azimuth_error), np.atleast_1d(elevation_error)


def _local_minima(errors: np.ndarray, mask: np.ndarray, limit: float) -> list[int]:
    """Indices of masked samples that are no worse than their masked
    neighbours and within ``limit``."""
    minima = []
    for i in np.flatnonzero(mask & (errors <= limit)):
        if i > 0 and mask[i - 1] and errors[i - 1] < errors[i]:
            continue
        if i + 1 < len(errors) and mask[i + 1] and errors[i + 1] < errors[i]:
            continue
        minima.append(int(i))
    return minima


def _best_sample(
    times: list[datetime],
    azimuth_error: np.ndarray,
    elevation_error: np.ndarray,
    mask: np.ndarray,
) -> Optional[_Candidate]:
    if not mask.any():
        return None
    total = np.where(mask, azimuth_error + elevation_error, np.inf)
    # argmin returns the first (earliest) index on ties
    i = int(np.argmin(total))
    return _Candidate(times[i], i, float(azimuth_error[i]), float(elevation_error[i]))


class AlignmentSearchEngine:
    """Finds sun and moon alignments with a target peak over whole years."""

    def __init__(
        self,
        provider: CelestialPositionProvider,
        config: Optional[SearchConfig] = None,
    ):
        self.provider = provider
        self.config = config or SearchConfig()

    def search(
        self,
        location: ObserverLocation,
        year_start: int,
        year_end: int,
        *,
        bodies: Iterable[EventType] = DEFAULT_BODIES,
        cancel_check: Optional[Callable[[], bool]] = None,
        progress: Optional[Callable[[int, int], None]] = None,
        job_id: Optional[str] = None,
    ) -> "SearchResult":
        """Search every local day of ``year_start``..``year_end`` inclusive.

        Args:
            location: Observer with derived geometry
            year_start: First calendar year
            year_end: Last calendar year
            bodies: Bodies to search for
            cancel_check: Polled between days; a true result aborts the search
            progress: Called with (days_done, days_total) after each day
            job_id: Job identifier reported on cancellation

        Returns:
            SearchResult with events ordered by date, body and sub-type

        Raises:
            ValueError: If the year range is inverted or geometry is missing
            JobCancelledError: If ``cancel_check`` requested cancellation
            ProviderLookupError: If every attempted (day, body) evaluation failed
        """
        if year_end < year_start:
            raise ValueError(f"year_end {year_end} is before year_start {year_start}")
        if not location.has_derived_geometry:
            raise ValueError(f"location {location.id} has no derived geometry")

        bodies = tuple(bodies)
        feasibility = FeasibilityFilter(location, self.config.max_error_deg)
        result = SearchResult(days_total=count_days(year_start, year_end))
        attempts = 0

        logger.info(
            "Searching location %s for %d-%d (%s)",
            location.id,
            year_start,
            year_end,
            ", ".join(body.value for body in bodies),
        )

        for done, day in enumerate(iter_days(year_start, year_end), start=1):
            if cancel_check is not None and cancel_check():
                raise JobCancelledError(job_id or f"search-{location.id}")

            evaluated = False
            for body in bodies:
                sub_types = feasibility.candidate_sub_types(body, day)
                if not sub_types:
                    continue
                evaluated = True
                attempts += 1
                try:
                    events = self._search_day_with_retries(
                        location, day, body, sub_types
                    )
                except ProviderLookupError as e:
                    logger.warning(
                        "Skipping %s %s for location %s: %s",
                        day.isoformat(),
                        body.value,
                        location.id,
                        e.message,
                    )
                    result.failed_days.append(DayFailure(day, body, e.message))
                    continue
                result.events.extend(events)

            if evaluated:
                result.days_evaluated += 1
            else:
                result.days_skipped += 1

            if progress is not None:
                progress(done, result.days_total)

        if attempts and len(result.failed_days) == attempts:
            raise ProviderLookupError(
                "all bodies",
                f"all {attempts} day evaluations failed for location {location.id}; "
                f"last: {result.failed_days[-1].message}",
            )

        logger.info(
            "Location %s: %d events, %d days evaluated, %d skipped, %d failed",
            location.id,
            len(result.events),
            result.days_evaluated,
            result.days_skipped,
            len(result.failed_days),
        )
        return result

    def _search_day_with_retries(
        self,
        location: ObserverLocation,
        day: date,
        body: EventType,
        sub_types: tuple[SubType, ...],
    ) -> list[AlignmentEvent]:
        attempt = 0
        while True:
            try:
                return self.search_day(location, day, body, sub_types)
            except ProviderLookupError as e:
                if attempt >= self.config.provider_retries:
                    raise
                attempt += 1
                logger.debug(
                    "Retrying %s %s after provider error: %s",
                    day.isoformat(),
                    body.value,
                    e.message,
                )

    def search_day(
        self,
        location: ObserverLocation,
        day: date,
        body: EventType,
        sub_types: Iterable[SubType] = (SubType.RISING, SubType.SETTING),
    ) -> list[AlignmentEvent]:
        """Fine search of one local day for one body, without pre-screening."""
        config = self.config
        start, end = local_day_window(day, location.longitude)
        times = sample_times(start, end, config.coarse_step_seconds)
        series = self.provider.positions_of(body, times, location)
        azimuth_error, elevation_error = _errors(series, location)
        errors = azimuth_error + elevation_error
        limit = config.max_error_deg + config.coarse_slack_deg

        events = []
        for sub_type in sub_types:
            mask = _window_mask(np.atleast_1d(series.azimuth_deg), sub_type)
            best = None
            for index in _local_minima(errors, mask, limit):
                refined = self._refine(
                    location, body, sub_type, times[index], start, end
                )
                if refined is None:
                    continue
                candidate = refined[0]
                if best is None or (candidate.error, candidate.time) < (
                    best[0].error,
                    best[0].time,
                ):
                    best = refined
            if best is None:
                continue

            refined, position = best
            if refined.error > config.max_error_deg:
                continue
            event = self._build_event(location, day, body, sub_type, refined, position)
            if event is not None:
                events.append(event)
        return events

    def _refine(
        self,
        location: ObserverLocation,
        body: EventType,
        sub_type: SubType,
        center: datetime,
        day_start: datetime,
        day_end: datetime,
    ):
        config = self.config
        found = None
        for span, step in (
            (config.coarse_step_seconds, config.fine_step_seconds),
            (config.fine_step_seconds, config.final_step_seconds),
        ):
            low = max(day_start, center - timedelta(seconds=span))
            high = min(day_end, center + timedelta(seconds=span + step))
            times = sample_times(low, high, step)
            series = self.provider.positions_of(body, times, location)
            azimuth_error, elevation_error = _errors(series, location)
            mask = _window_mask(np.atleast_1d(series.azimuth_deg), sub_type)
            candidate = _best_sample(times, azimuth_error, elevation_error, mask)
            if candidate is None:
                return None
            center = candidate.time
            found = (candidate, series.at(candidate.index))
        return found

    def _build_event(
        self,
        location: ObserverLocation,
        day: date,
        body: EventType,
        sub_type: SubType,
        candidate: _Candidate,
        position,
    ) -> Optional[AlignmentEvent]:
        config = self.config
        accuracy = classify(candidate.error, config.thresholds)
        if accuracy is None:
            return None

        if body == EventType.MOON:
            illumination = position.moon_illumination
            if illumination is not None and illumination < config.min_moon_illumination:
                logger.debug(
                    "Discarding moon alignment on %s: illumination %.3f",
                    day.isoformat(),
                    illumination,
                )
                return None

        return AlignmentEvent(
            location_id=location.id,
            date=day,
            event_type=body,
            sub_type=sub_type,
            time=candidate.time,
            azimuth_deg=position.azimuth_deg,
            elevation_deg=position.elevation_deg,
            azimuth_error_deg=candidate.azimuth_error,
            elevation_error_deg=candidate.elevation_error,
            error_deg=candidate.error,
            accuracy=accuracy,
            quality_score=quality_score(
                candidate.azimuth_error,
                candidate.elevation_error,
                location.elevation_angle_deg,
                config.thresholds,
                config.quality,
            ),
            moon_phase_deg=position.moon_phase_deg,
            moon_illumination=position.moon_illumination,
        )


def reference_scan(
    provider: CelestialPositionProvider,
    location: ObserverLocation,
    day: date,
    body: EventType,
    step_seconds: int = 1,
    config: Optional[SearchConfig] = None,
) -> dict[SubType, tuple[datetime, float]]:
    """Brute-force scan of a whole local day with no pre-screening.

    Returns:
        Mapping of sub-type to (time, combined error) of the best sample in
        that window, for windows whose best error is within the fair bound
    """
    config = config or SearchConfig()
    start, end = local_day_window(day, location.longitude)
    times = sample_times(start, end, step_seconds)
    series = provider.positions_of(body, times, location)
    azimuth_error, elevation_error = _errors(series, location)

    found = {}
    for sub_type in (SubType.RISING, SubType.SETTING):
        mask = _window_mask(np.atleast_1d(series.azimuth_deg), sub_type)
        best = _best_sample(times, azimuth_error, elevation_error, mask)
        if best is not None and best.error <= config.max_error_deg:
            found[sub_type] = (best.time, best.error)
    return found
