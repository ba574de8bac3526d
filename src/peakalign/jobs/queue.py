import copy
import heapq
import itertools
import logging
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from ..errors import JobNotFoundError
from ..models import ComputationJob, JobKind, JobStatus, QueueStats
from ..storage.port import AlignmentStore

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "cancelled"

DEFAULT_RETRY_BACKOFF_SECONDS = 30.0
DEFAULT_MAX_BACKOFF_SECONDS = 600.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return uuid.uuid4().hex


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _enqueued_order(job: ComputationJob) -> datetime:
    return job.enqueued_at or _EPOCH


class JobQueue:
    """Priority queue of computation jobs with dedup and bounded retries.

    Every mutation happens under one condition variable. A transition is
    applied to a copy of the job record, written to the store, and only then
    made current, so a failed write leaves the queue as it was. A restarted
    process sees the same jobs. Callers only ever receive copies of job
    records.

    Retryable failures are requeued after an exponential backoff of
    ``retry_backoff_seconds * 2 ** (retry - 1)``, capped at
    ``max_backoff_seconds``.
    """

    def __init__(
        self,
        store: AlignmentStore,
        *,
        max_retries: int = 3,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        max_backoff_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if retry_backoff_seconds < 0 or max_backoff_seconds < 0:
            raise ValueError("retry backoff cannot be negative")
        self.store = store
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.clock = clock
        self._cond = threading.Condition()
        self._jobs: dict[str, ComputationJob] = {}
        self._pending: dict[str, str] = {}
        self._heap: list[tuple[int, datetime, int, str]] = []
        self._delayed: list[tuple[datetime, int, str]] = []
        self._heap_entry: dict[str, int] = {}
        self._sequence = itertools.count()
        self._reload()

    def _reload(self) -> None:
        records = sorted(self.store.list_job_records(), key=_enqueued_order)
        for job in records:
            if job.enqueued_at is None:
                job.enqueued_at = self.clock()
            if job.status == JobStatus.RUNNING:
                logger.warning("Recovering job %s left running", job.id)
                job.status = JobStatus.QUEUED
                job.started_at = None
                job.cancel_requested = False
                self.store.save_job_record(job)
            self._jobs[job.id] = job
            if job.status == JobStatus.QUEUED:
                self._pending[job.dedup_key] = job.id
                self._push(job)
        if records:
            logger.info(
                "Reloaded %d jobs (%d queued)", len(records), len(self._pending)
            )

    def backoff_delay(self, retry_count: int) -> timedelta:
        """Wait imposed before retry number ``retry_count`` (1-based)."""
        seconds = self.retry_backoff_seconds * 2 ** max(0, retry_count - 1)
        return timedelta(seconds=min(self.max_backoff_seconds, seconds))

    def _push(self, job: ComputationJob) -> None:
        sequence = next(self._sequence)
        self._heap_entry[job.id] = sequence
        if job.not_before is not None and job.not_before > self.clock():
            heapq.heappush(self._delayed, (job.not_before, sequence, job.id))
            return
        heapq.heappush(
            self._heap, (job.priority.rank, job.enqueued_at, sequence, job.id)
        )

    def _promote_due(self) -> None:
        now = self.clock()
        while self._delayed and self._delayed[0][0] <= now:
            _, sequence, job_id = heapq.heappop(self._delayed)
            job = self._jobs.get(job_id)
            if job is None or self._heap_entry.get(job_id) != sequence:
                continue
            heapq.heappush(
                self._heap, (job.priority.rank, job.enqueued_at, sequence, job_id)
            )

    def _seconds_until_due(self) -> Optional[float]:
        while self._delayed:
            not_before, sequence, job_id = self._delayed[0]
            if self._heap_entry.get(job_id) == sequence:
                return max(0.0, (not_before - self.clock()).total_seconds())
            heapq.heappop(self._delayed)
        return None

    def _commit(self, job: ComputationJob) -> None:
        """Persist ``job``, then make it the current record."""
        self.store.save_job_record(job)
        self._jobs[job.id] = job

    def _claim(self) -> Optional[ComputationJob]:
        self._promote_due()
        while self._heap:
            _, _, sequence, job_id = heapq.heappop(self._heap)
            current = self._jobs.get(job_id)
            if current is None or self._heap_entry.get(job_id) != sequence:
                continue
            del self._heap_entry[job_id]
            if current.status != JobStatus.QUEUED:
                continue

            job = copy.deepcopy(current)
            job.status = JobStatus.RUNNING
            job.started_at = self.clock()
            job.progress = 0.0
            job.not_before = None
            try:
                self._commit(job)
            except Exception:
                self._push(current)
                raise
            logger.info("Job %s started (%s)", job.id, job.dedup_key)
            return copy.deepcopy(job)
        return None

    def _get(self, job_id: str) -> ComputationJob:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise JobNotFoundError(job_id)

    def _running_copy(self, job_id: str, action: str) -> ComputationJob:
        job = self._get(job_id)
        if job.status != JobStatus.RUNNING:
            raise ValueError(f"Cannot {action} job {job_id}: it is {job.status.value}")
        return copy.deepcopy(job)

    def _release(self, job: ComputationJob) -> None:
        if self._pending.get(job.dedup_key) == job.id:
            del self._pending[job.dedup_key]

    def enqueue(self, job: ComputationJob) -> tuple[str, bool]:
        """Add ``job`` unless an equivalent one is already queued or running.

        Returns:
            Tuple of (job_id, created); ``job_id`` is the existing job's id
            when ``created`` is False

        Raises:
            PersistenceError: If the job record cannot be written
        """
        with self._cond:
            existing = self._pending.get(job.dedup_key)
            if existing is not None:
                logger.debug("Job %s deduplicated onto %s", job.dedup_key, existing)
                return existing, False

            job = copy.deepcopy(job)
            if job.id in self._jobs:
                raise ValueError(f"Job id already used: {job.id}")
            job.status = JobStatus.QUEUED
            job.enqueued_at = self.clock()
            job.not_before = None
            self._commit(job)
            self._pending[job.dedup_key] = job.id
            self._push(job)
            self._cond.notify()

        logger.info(
            "Job %s enqueued (%s, priority %s)",
            job.id,
            job.dedup_key,
            job.priority.value,
        )
        return job.id, True

    def dequeue(self) -> Optional[ComputationJob]:
        """Claim the next due job, or return None when nothing is due.

        Raises:
            PersistenceError: If the claim cannot be written; the job stays
                queued
        """
        with self._cond:
            return self._claim()

    def wait_for_job(self, timeout: Optional[float] = None) -> Optional[ComputationJob]:
        """Block until a job can be claimed or ``timeout`` seconds pass."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                job = self._claim()
                if job is not None:
                    return job
                wait = self._seconds_until_due()
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def complete(self, job_id: str, result: Optional[dict[str, Any]] = None) -> None:
        """Mark a running job succeeded.

        Raises:
            ValueError: If the job is not running
            PersistenceError: If the record cannot be written; the job
                stays running
        """
        with self._cond:
            job = self._running_copy(job_id, "complete")
            job.status = JobStatus.SUCCEEDED
            job.finished_at = self.clock()
            job.progress = 1.0
            job.result = copy.deepcopy(result)
            job.last_error = None
            self._commit(job)
            self._release(job)
            self._cond.notify_all()
        logger.info("Job %s succeeded", job_id)

    def fail(self, job_id: str, error, *, retryable: bool = True) -> JobStatus:
        """Record a failed run of a running job.

        A retryable failure below ``max_retries`` requeues the job at its
        priority with ``retry_count`` incremented, due after the backoff;
        otherwise the job stays failed.

        Returns:
            The job's new status

        Raises:
            ValueError: If the job is not running
        """
        message = getattr(error, "message", None) or str(error)
        with self._cond:
            job = self._running_copy(job_id, "fail")
            job.last_error = message
            job.started_at = None
            if (
                retryable
                and not job.cancel_requested
                and job.retry_count < self.max_retries
            ):
                now = self.clock()
                job.retry_count += 1
                job.status = JobStatus.QUEUED
                job.enqueued_at = now
                job.not_before = now + self.backoff_delay(job.retry_count)
                job.progress = 0.0
                self._commit(job)
                self._push(job)
                self._cond.notify()
                logger.warning(
                    "Job %s failed, retry %d/%d after %s: %s",
                    job_id,
                    job.retry_count,
                    self.max_retries,
                    job.not_before.isoformat(),
                    message,
                )
                return job.status

            job.status = JobStatus.FAILED
            job.finished_at = self.clock()
            self._commit(job)
            self._release(job)
            self._cond.notify_all()
        logger.error("Job %s failed: %s", job_id, message)
        return JobStatus.FAILED

    def retry(self, job_id: str) -> str:
        """Manually requeue a failed job, due at once.

        Returns:
            ``job_id``, or the id of an equivalent job already pending

        Raises:
            JobNotFoundError: If the job is unknown
            ValueError: If the job is not failed
        """
        with self._cond:
            current = self._get(job_id)
            if current.status != JobStatus.FAILED:
                raise ValueError(f"Job {job_id} is {current.status.value}, not failed")
            existing = self._pending.get(current.dedup_key)
            if existing is not None:
                return existing

            job = copy.deepcopy(current)
            job.status = JobStatus.QUEUED
            job.retry_count += 1
            job.enqueued_at = self.clock()
            job.not_before = None
            job.finished_at = None
            job.cancel_requested = False
            job.progress = 0.0
            self._commit(job)
            self._pending[job.dedup_key] = job.id
            self._push(job)
            self._cond.notify()
        logger.info("Job %s requeued manually", job_id)
        return job_id

    def cancel(self, job_id: str) -> bool:
        """Cancel a queued job, or flag a running one for cancellation.

        Returns:
            False when the job had already finished
        """
        with self._cond:
            job = copy.deepcopy(self._get(job_id))
            if job.status == JobStatus.QUEUED:
                job.status = JobStatus.FAILED
                job.last_error = CANCELLED_MESSAGE
                job.finished_at = self.clock()
                job.not_before = None
                self._commit(job)
                self._heap_entry.pop(job.id, None)
                self._release(job)
                self._cond.notify_all()
            elif job.status == JobStatus.RUNNING:
                job.cancel_requested = True
                self._commit(job)
            else:
                return False
        logger.info("Job %s cancellation requested", job_id)
        return True

    def is_cancel_requested(self, job_id: str) -> bool:
        with self._cond:
            return self._get(job_id).cancel_requested

    def update_progress(self, job_id: str, fraction: float) -> None:
        with self._cond:
            job = copy.deepcopy(self._get(job_id))
            job.progress = min(1.0, max(0.0, float(fraction)))
            self._commit(job)

    def stats(self) -> QueueStats:
        with self._cond:
            counts = {status: 0 for status in JobStatus}
            for job in self._jobs.values():
                counts[job.status] += 1
        return QueueStats(
            queued=counts[JobStatus.QUEUED],
            running=counts[JobStatus.RUNNING],
            succeeded=counts[JobStatus.SUCCEEDED],
            failed=counts[JobStatus.FAILED],
        )

    def clean_failed_older_than(self, days: int) -> int:
        """Delete failed jobs that finished more than ``days`` days ago."""
        cutoff = self.clock() - timedelta(days=days)
        removed = 0
        with self._cond:
            stale = [
                job.id
                for job in self._jobs.values()
                if job.status == JobStatus.FAILED
                and job.finished_at is not None
                and job.finished_at < cutoff
            ]
            for job_id in stale:
                self.store.delete_job_record(job_id)
                del self._jobs[job_id]
                removed += 1
        if removed:
            logger.info("Removed %d failed jobs older than %d days", removed, days)
        return removed

    def get(self, job_id: str) -> ComputationJob:
        with self._cond:
            return copy.deepcopy(self._get(job_id))

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        kind: Optional[JobKind] = None,
        location_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[ComputationJob]:
        """Copies of matching jobs, newest first."""
        with self._cond:
            jobs = [
                copy.deepcopy(job)
                for job in self._jobs.values()
                if (status is None or job.status == status)
                and (kind is None or job.kind == kind)
                and (location_id is None or job.location_id == location_id)
            ]
        jobs.sort(key=_enqueued_order, reverse=True)
        return jobs[:limit] if limit is not None else jobs
