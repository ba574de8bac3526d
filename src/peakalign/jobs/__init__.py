from .pool import WorkerPool
from .queue import JobQueue, new_job_id
from .runner import JobRunner
from .trigger import DEFAULT_SCHEDULE, PeriodicTrigger, ScheduleEntry

__all__ = [
    "DEFAULT_SCHEDULE",
    "JobQueue",
    "JobRunner",
    "PeriodicTrigger",
    "ScheduleEntry",
    "WorkerPool",
    "new_job_id",
]
