import logging
from datetime import date
from typing import Any, Callable, Optional

from ..errors import InvalidGeometryError, JobCancelledError, PersistenceError
from ..geometry import with_derived_geometry
from ..models import (
    MOUNT_FUJI,
    ComputationJob,
    JobKind,
    JobPriority,
    JobStatus,
    TargetPeak,
)
from ..search.engine import AlignmentSearchEngine
from ..storage.materializer import EventMaterializer
from ..storage.port import AlignmentStore
from .queue import JobQueue, new_job_id

logger = logging.getLogger(__name__)

# Failures that rerunning cannot fix.
NON_RETRYABLE_ERRORS = (InvalidGeometryError, JobCancelledError)

DEFAULT_FAILED_RETENTION_DAYS = 7
DEFAULT_ARCHIVE_KEEP_YEARS = 3

# Report progress at most every this many days.
PROGRESS_EVERY_DAYS = 10


class JobRunner:
    """Executes one claimed job and records its outcome on the queue."""

    def __init__(
        self,
        store: AlignmentStore,
        engine: AlignmentSearchEngine,
        materializer: EventMaterializer,
        queue: JobQueue,
        *,
        target: TargetPeak = MOUNT_FUJI,
        failed_retention_days: int = DEFAULT_FAILED_RETENTION_DAYS,
    ):
        self.store = store
        self.engine = engine
        self.materializer = materializer
        self.queue = queue
        self.target = target
        self.failed_retention_days = failed_retention_days
        self.maintenance_handlers: dict[
            str, Callable[[ComputationJob], dict[str, Any]]
        ] = {
            "clean_failed_jobs": self._clean_failed_jobs,
            "archive_events": self._archive_events,
            "yearly_generation": self._yearly_generation,
            "health_check": self._health_check,
        }

    def run(self, job: ComputationJob) -> JobStatus:
        """Execute ``job`` and complete or fail it on the queue.

        Returns:
            The job's status after the run
        """
        try:
            result = self.execute(job)
        except NON_RETRYABLE_ERRORS as e:
            return self.queue.fail(job.id, e, retryable=False)
        except Exception as e:
            logger.exception("Job %s raised", job.id)
            return self.queue.fail(job.id, e, retryable=True)

        try:
            self.queue.complete(job.id, result)
        except PersistenceError as e:
            logger.error("Could not save result of job %s: %s", job.id, e)
            return self.queue.fail(job.id, e, retryable=True)
        return JobStatus.SUCCEEDED

    def execute(self, job: ComputationJob) -> dict[str, Any]:
        """Run the handler for ``job`` and return its result summary."""
        if job.kind == JobKind.LOCATION_RECOMPUTE:
            return self._location_recompute(job)

        handler = self.maintenance_handlers.get(job.maintenance_kind)
        if handler is None:
            raise ValueError(f"No handler for maintenance kind {job.maintenance_kind}")
        return handler(job)

    def _current_year(self) -> int:
        return self.queue.clock().year

    def _location_recompute(self, job: ComputationJob) -> dict[str, Any]:
        location = self.store.load_location(job.location_id)
        derived = with_derived_geometry(location, self.target)
        if derived != location:
            logger.info("Updating derived geometry of location %s", location.id)
            location = self.store.save_location(derived)

        def cancel_check() -> bool:
            return self.queue.is_cancel_requested(job.id)

        def progress(done: int, total: int) -> None:
            if done % PROGRESS_EVERY_DAYS == 0 or done == total:
                self.queue.update_progress(job.id, done / total)

        result = self.engine.search(
            location,
            job.year_start,
            job.year_end,
            cancel_check=cancel_check,
            progress=progress,
            job_id=job.id,
        )
        written = self.materializer.materialize(
            location.id, job.year_start, job.year_end, result.events
        )

        summary = result.summary()
        summary["location_id"] = location.id
        summary["written"] = written
        return summary

    def _clean_failed_jobs(self, job: ComputationJob) -> dict[str, Any]:
        days = int(job.params.get("days", self.failed_retention_days))
        return {"removed": self.queue.clean_failed_older_than(days)}

    def _archive_events(self, job: ComputationJob) -> dict[str, Any]:
        keep_years = int(job.params.get("keep_years", DEFAULT_ARCHIVE_KEEP_YEARS))
        cutoff = date(self._current_year() - keep_years, 1, 1)
        deleted = self.store.delete_events_before(cutoff)
        logger.info("Archived %d events dated before %s", deleted, cutoff)
        return {"deleted": deleted, "cutoff": cutoff.isoformat()}

    def _enqueue_recompute(
        self, location_id: int, year: int, priority: JobPriority
    ) -> bool:
        _, created = self.queue.enqueue(
            ComputationJob.location_recompute(
                new_job_id(), location_id, year, year, priority
            )
        )
        return created

    def _yearly_generation(self, job: ComputationJob) -> dict[str, Any]:
        year = int(job.params.get("year", self._current_year() + 1))
        location_ids = self.store.list_location_ids()
        enqueued = sum(
            self._enqueue_recompute(location_id, year, JobPriority.LOW)
            for location_id in location_ids
        )
        return {"year": year, "locations": len(location_ids), "enqueued": enqueued}

    def _health_check(self, job: ComputationJob) -> dict[str, Any]:
        year = int(job.params.get("year", self._current_year()))
        repair = _as_bool(job.params.get("repair", False))
        location_ids = self.store.list_location_ids()
        missing = [
            location_id
            for location_id in location_ids
            if self.store.count_events(location_id, year) == 0
        ]
        if missing:
            logger.warning(
                "%d of %d locations have no events for %d",
                len(missing),
                len(location_ids),
                year,
            )

        enqueued = 0
        if repair:
            enqueued = sum(
                self._enqueue_recompute(location_id, year, JobPriority.MEDIUM)
                for location_id in missing
            )
        return {
            "year": year,
            "locations": len(location_ids),
            "missing": missing,
            "enqueued": enqueued,
        }


def _as_bool(value: Optional[object]) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)
