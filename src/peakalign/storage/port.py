from datetime import date
from typing import Iterable, Optional, Protocol

from ..models import AlignmentEvent, ComputationJob, ObserverLocation


class AlignmentStore(Protocol):
    """Persistence port for locations, alignment events and job records."""

    def load_location(self, location_id: int) -> ObserverLocation: ...

    def save_location(self, location: ObserverLocation) -> ObserverLocation: ...

    def list_location_ids(self) -> list[int]: ...

    def save_alignment_events(
        self,
        location_id: int,
        start: date,
        end: date,
        events: Iterable[AlignmentEvent],
    ) -> int: ...

    def load_alignment_events(
        self,
        location_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[AlignmentEvent]: ...

    def delete_events_before(self, cutoff: date) -> int: ...

    def count_events(self, location_id: int, year: int) -> int: ...

    def load_job_record(self, job_id: str) -> Optional[ComputationJob]: ...

    def save_job_record(self, job: ComputationJob) -> None: ...

    def list_job_records(self) -> list[ComputationJob]: ...

    def delete_job_record(self, job_id: str) -> None: ...
