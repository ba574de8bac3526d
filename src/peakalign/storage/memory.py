import copy
import dataclasses
import threading
from datetime import date
from typing import Iterable, Optional

from ..errors import LocationNotFoundError
from ..models import AlignmentEvent, ComputationJob, ObserverLocation


def _sort_key(event: AlignmentEvent):
    return (event.date, event.event_type.value, event.sub_type.value)


class InMemoryStore:
    """Dict-backed store, safe to share between worker threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self._locations: dict[int, ObserverLocation] = {}
        self._events: dict[int, list[AlignmentEvent]] = {}
        self._jobs: dict[str, ComputationJob] = {}
        self._next_location_id = 1

    def load_location(self, location_id: int) -> ObserverLocation:
        with self._lock:
            try:
                return self._locations[location_id]
            except KeyError:
                raise LocationNotFoundError(location_id)

    def save_location(self, location: ObserverLocation) -> ObserverLocation:
        """Insert or update; a location with id 0 is assigned a new id."""
        with self._lock:
            if not location.id:
                location = dataclasses.replace(location, id=self._next_location_id)
            self._next_location_id = max(self._next_location_id, location.id + 1)
            self._locations[location.id] = location
            return location

    def list_location_ids(self) -> list[int]:
        with self._lock:
            return sorted(self._locations)

    def save_alignment_events(
        self,
        location_id: int,
        start: date,
        end: date,
        events: Iterable[AlignmentEvent],
    ) -> int:
        events = list(events)
        with self._lock:
            kept = [
                event
                for event in self._events.get(location_id, [])
                if not start <= event.date <= end
            ]
            kept.extend(events)
            self._events[location_id] = sorted(kept, key=_sort_key)
        return len(events)

    def load_alignment_events(
        self,
        location_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[AlignmentEvent]:
        with self._lock:
            return [
                event
                for event in self._events.get(location_id, [])
                if (start is None or event.date >= start)
                and (end is None or event.date <= end)
            ]

    def delete_events_before(self, cutoff: date) -> int:
        deleted = 0
        with self._lock:
            for location_id, events in self._events.items():
                kept = [event for event in events if event.date >= cutoff]
                deleted += len(events) - len(kept)
                self._events[location_id] = kept
        return deleted

    def count_events(self, location_id: int, year: int) -> int:
        with self._lock:
            return sum(
                1
                for event in self._events.get(location_id, [])
                if event.date.year == year
            )

    def load_job_record(self, job_id: str) -> Optional[ComputationJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    def save_job_record(self, job: ComputationJob) -> None:
        with self._lock:
            self._jobs[job.id] = copy.deepcopy(job)

    def list_job_records(self) -> list[ComputationJob]:
        with self._lock:
            return [copy.deepcopy(job) for job in self._jobs.values()]

    def delete_job_record(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)
