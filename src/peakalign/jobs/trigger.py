"""Calendar-driven enqueueing of maintenance jobs."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any, Callable, Optional

from ..errors import PeakAlignError
from ..models import JobKind, JobPriority
from .queue import utcnow

if TYPE_CHECKING:
    from ..service import AlignmentService, EnqueueResult

logger = logging.getLogger(__name__)

YEARLY = "yearly"
MONTHLY = "monthly"
WEEKLY = "weekly"
DAILY = "daily"


@dataclass(frozen=True)
class ScheduleEntry:
    """One recurring maintenance job.

    ``month`` and ``day`` apply to yearly entries, ``day`` to monthly ones
    and ``weekday`` (0 = Monday) to weekly ones. Times are UTC.
    """

    name: str
    period: str
    kind: str
    params: Callable[[datetime], dict[str, Any]] = field(default=lambda now: {})
    priority: JobPriority = JobPriority.LOW
    month: int = 1
    day: int = 1
    weekday: int = 0
    hour: int = 0
    minute: int = 0

    def slot(self, now: datetime) -> tuple[str, datetime]:
        """Return (period key, start instant) of the slot in ``now``'s period."""
        if self.period == YEARLY:
            key = f"{now.year}"
            day = date(now.year, self.month, self.day)
        elif self.period == MONTHLY:
            key = f"{now.year}-{now.month:02d}"
            day = date(now.year, now.month, self.day)
        elif self.period == WEEKLY:
            iso_year, iso_week, _ = now.isocalendar()
            key = f"{iso_year}-W{iso_week:02d}"
            day = now.date() - timedelta(days=now.weekday() - self.weekday)
        elif self.period == DAILY:
            key = now.date().isoformat()
            day = now.date()
        else:
            raise ValueError(f"Unknown schedule period: {self.period}")
        return key, datetime.combine(
            day, time(self.hour, self.minute), tzinfo=now.tzinfo
        )

    def dedup_key(self, period_key: str) -> str:
        return f"schedule:{self.name}:{period_key}"


DEFAULT_SCHEDULE = (
    ScheduleEntry(
        name="yearly-calculation",
        period=YEARLY,
        kind="yearly_generation",
        params=lambda now: {"year": now.year + 1},
        month=12,
        day=1,
        hour=2,
    ),
    ScheduleEntry(
        name="yearly-preparation",
        period=YEARLY,
        kind="health_check",
        params=lambda now: {"year": now.year + 1, "repair": True},
        priority=JobPriority.MEDIUM,
        month=12,
        day=15,
        hour=1,
    ),
    ScheduleEntry(
        name="new-year-verification",
        period=YEARLY,
        kind="health_check",
        params=lambda now: {"year": now.year, "repair": True},
        priority=JobPriority.MEDIUM,
        month=1,
        day=2,
        hour=1,
    ),
    ScheduleEntry(
        name="yearly-archive",
        period=YEARLY,
        kind="archive_events",
        params=lambda now: {"keep_years": 3},
        month=3,
        day=1,
        hour=2,
    ),
    ScheduleEntry(
        name="current-year-supplement",
        period=MONTHLY,
        kind="health_check",
        params=lambda now: {"year": now.year, "repair": True},
        priority=JobPriority.MEDIUM,
        day=1,
        hour=3,
    ),
    ScheduleEntry(
        name="system-health-check",
        period=DAILY,
        kind="health_check",
        params=lambda now: {"year": now.year},
        hour=1,
    ),
    ScheduleEntry(
        name="failed-job-cleanup",
        period=WEEKLY,
        kind="clean_failed_jobs",
        params=lambda now: {"days": 7},
        weekday=6,
        hour=4,
    ),
)


class PeriodicTrigger:
    """Enqueues each schedule entry at most once per period."""

    def __init__(
        self,
        service: "AlignmentService",
        schedule: tuple[ScheduleEntry, ...] = DEFAULT_SCHEDULE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.service = service
        self.schedule = schedule
        self.clock = clock
        self._fired: dict[str, str] = {}

    def _already_enqueued(self, dedup_key: str) -> bool:
        return any(
            job.dedup_key == dedup_key
            for job in self.service.list_jobs(kind=JobKind.MAINTENANCE)
        )

    def tick(self, now: Optional[datetime] = None) -> list["EnqueueResult"]:
        """Enqueue every entry whose slot in the current period has arrived.

        Returns:
            Results of the enqueues made by this tick
        """
        now = now or self.clock()
        results = []
        for entry in self.schedule:
            period_key, slot = entry.slot(now)
            if now < slot or self._fired.get(entry.name) == period_key:
                continue

            dedup_key = entry.dedup_key(period_key)
            if self._already_enqueued(dedup_key):
                self._fired[entry.name] = period_key
                continue

            result = self.service.enqueue_maintenance(
                entry.kind,
                entry.params(now),
                priority=entry.priority,
                dedup_key=dedup_key,
            )
            self._fired[entry.name] = period_key
            logger.info(
                "Scheduled %s for %s (job %s)", entry.name, period_key, result.job_id
            )
            results.append(result)
        return results

    def run(self, stop_event: threading.Event, interval: float = 60.0) -> None:
        """Call ``tick`` every ``interval`` seconds until ``stop_event`` is set."""
        while not stop_event.is_set():
            try:
                self.tick()
            except PeakAlignError as e:
                logger.error("Scheduled enqueue failed, retrying next tick: %s", e)
            stop_event.wait(interval)
