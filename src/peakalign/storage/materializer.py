import logging
from datetime import date
from typing import Iterable

from ..errors import PeakAlignError, PersistenceError
from ..models import AlignmentEvent
from .port import AlignmentStore

logger = logging.getLogger(__name__)


def best_per_key(events: Iterable[AlignmentEvent]) -> list[AlignmentEvent]:
    """Keep the lowest-error (then earliest) event per
    (location, date, body, sub-type)."""
    best: dict[tuple, AlignmentEvent] = {}
    for event in events:
        current = best.get(event.key)
        if current is None or (event.error_deg, event.time) < (
            current.error_deg,
            current.time,
        ):
            best[event.key] = event
    return sorted(
        best.values(),
        key=lambda e: (e.date, e.event_type.value, e.sub_type.value),
    )


class EventMaterializer:
    """Writes a location's events for a year range with replace semantics."""

    def __init__(self, store: AlignmentStore):
        self.store = store

    def materialize(
        self,
        location_id: int,
        year_start: int,
        year_end: int,
        events: Iterable[AlignmentEvent],
    ) -> int:
        """Replace every stored event of ``location_id`` in the year range.

        Returns:
            Number of events written

        Raises:
            PersistenceError: If the store rejects the write
        """
        start = date(year_start, 1, 1)
        end = date(year_end, 12, 31)
        selected = [
            event
            for event in best_per_key(events)
            if event.location_id == location_id and start <= event.date <= end
        ]

        try:
            written = self.store.save_alignment_events(
                location_id, start, end, selected
            )
        except PeakAlignError:
            raise
        except Exception as e:
            raise PersistenceError("save_alignment_events", str(e)) from e

        logger.info(
            "Materialized %d events for location %s (%d-%d)",
            written,
            location_id,
            year_start,
            year_end,
        )
        return written
