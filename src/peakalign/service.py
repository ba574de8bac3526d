"""Library entry points for enqueueing work and writing locations."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .errors import PeakAlignError
from .geometry import with_derived_geometry
from .jobs.queue import JobQueue, new_job_id
from .models import (
    MOUNT_FUJI,
    ComputationJob,
    JobKind,
    JobPriority,
    JobStatus,
    ObserverLocation,
    QueueStats,
    TargetPeak,
)
from .storage.port import AlignmentStore

logger = logging.getLogger(__name__)

MAINTENANCE_KINDS = (
    "clean_failed_jobs",
    "archive_events",
    "yearly_generation",
    "health_check",
)


@dataclass(frozen=True)
class EnqueueResult:
    job_id: str
    created: bool


@dataclass(frozen=True)
class LocationWriteResult:
    """Outcome of a location write: the write itself always succeeded;
    the follow-up recompute either has a job or an error."""

    location: ObserverLocation
    enqueue: Optional[EnqueueResult] = None
    enqueue_error: Optional[str] = None

    @property
    def recompute_scheduled(self) -> bool:
        return self.enqueue is not None


class AlignmentService:
    def __init__(
        self,
        store: AlignmentStore,
        queue: JobQueue,
        target: TargetPeak = MOUNT_FUJI,
        default_years: int = 2,
    ):
        if default_years < 1:
            raise ValueError("default_years must be at least 1")
        self.store = store
        self.queue = queue
        self.target = target
        self.default_years = default_years

    def enqueue_location_recompute(
        self,
        location_id: int,
        year_start: int,
        year_end: int,
        priority: JobPriority = JobPriority.LOW,
    ) -> EnqueueResult:
        """Queue a recompute of ``location_id`` for a range of years.

        Raises:
            ValueError: If ``year_end`` is before ``year_start``
        """
        if year_end < year_start:
            raise ValueError(f"year_end {year_end} is before year_start {year_start}")
        job = ComputationJob.location_recompute(
            new_job_id(), location_id, year_start, year_end, priority
        )
        job_id, created = self.queue.enqueue(job)
        return EnqueueResult(job_id, created)

    def enqueue_maintenance(
        self,
        kind: str,
        params: Optional[dict[str, Any]] = None,
        priority: JobPriority = JobPriority.LOW,
        dedup_key: Optional[str] = None,
    ) -> EnqueueResult:
        if kind not in MAINTENANCE_KINDS:
            raise ValueError(
                f"Unknown maintenance kind '{kind}'. "
                f"Available: {', '.join(MAINTENANCE_KINDS)}"
            )
        job = ComputationJob.maintenance(
            new_job_id(), kind, params, priority, dedup_key=dedup_key
        )
        job_id, created = self.queue.enqueue(job)
        return EnqueueResult(job_id, created)

    def save_location(
        self,
        location: ObserverLocation,
        *,
        years: Optional[tuple[int, int]] = None,
        priority: JobPriority = JobPriority.MEDIUM,
    ) -> LocationWriteResult:
        """Persist ``location`` and queue a recompute of its events.

        Derived geometry is recomputed before the write. The recompute covers
        ``years`` or, by default, the current year and the following ones.

        Raises:
            InvalidGeometryError: If the location cannot see the target
            PersistenceError: If the write fails; nothing is enqueued then
        """
        saved = self.store.save_location(with_derived_geometry(location, self.target))
        logger.info("Saved location %s (%s)", saved.id, saved.name)

        if years is None:
            current = self.queue.clock().year
            years = (current, current + self.default_years - 1)

        try:
            enqueue = self.enqueue_location_recompute(
                saved.id, years[0], years[1], priority
            )
        except (PeakAlignError, ValueError) as e:
            message = getattr(e, "message", None) or str(e)
            logger.error(
                "Location %s saved but recompute was not queued: %s", saved.id, message
            )
            return LocationWriteResult(location=saved, enqueue_error=message)

        return LocationWriteResult(location=saved, enqueue=enqueue)

    def get_job(self, job_id: str) -> ComputationJob:
        return self.queue.get(job_id)

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        kind: Optional[JobKind] = None,
        location_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[ComputationJob]:
        return self.queue.list_jobs(
            status=status, kind=kind, location_id=location_id, limit=limit
        )

    def get_queue_stats(self) -> QueueStats:
        return self.queue.stats()

    def cancel_job(self, job_id: str) -> bool:
        return self.queue.cancel(job_id)

    def retry_job(self, job_id: str) -> str:
        return self.queue.retry(job_id)
