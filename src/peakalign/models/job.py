from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


class JobPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort rank, lower runs first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {JobPriority.HIGH: 0, JobPriority.MEDIUM: 1, JobPriority.LOW: 2}


class JobKind(str, Enum):
    LOCATION_RECOMPUTE = "location_recompute"
    MAINTENANCE = "maintenance"


@dataclass
class ComputationJob:
    id: str
    kind: JobKind
    dedup_key: str
    priority: JobPriority = JobPriority.LOW
    location_id: Optional[int] = None
    year_start: Optional[int] = None
    year_end: Optional[int] = None
    maintenance_kind: Optional[str] = None
    params: dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.QUEUED
    retry_count: int = 0
    last_error: Optional[str] = None
    progress: float = 0.0
    result: Optional[dict[str, Any]] = None
    enqueued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    cancel_requested: bool = False
    # Earliest instant a retried job may be claimed again.
    not_before: Optional[datetime] = None

    @classmethod
    def location_recompute(
        cls,
        job_id: str,
        location_id: int,
        year_start: int,
        year_end: int,
        priority: JobPriority = JobPriority.LOW,
    ) -> "ComputationJob":
        return cls(
            id=job_id,
            kind=JobKind.LOCATION_RECOMPUTE,
            dedup_key=f"recompute:{location_id}:{year_start}-{year_end}",
            priority=priority,
            location_id=location_id,
            year_start=year_start,
            year_end=year_end,
        )

    @classmethod
    def maintenance(
        cls,
        job_id: str,
        kind: str,
        params: Optional[dict[str, Any]] = None,
        priority: JobPriority = JobPriority.LOW,
        dedup_key: Optional[str] = None,
    ) -> "ComputationJob":
        params = dict(params or {})
        if dedup_key is None:
            rendered = ",".join(f"{k}={params[k]}" for k in sorted(params))
            dedup_key = f"maintenance:{kind}:{rendered}"
        return cls(
            id=job_id,
            kind=JobKind.MAINTENANCE,
            dedup_key=dedup_key,
            priority=priority,
            maintenance_kind=kind,
            params=params,
        )


@dataclass(frozen=True)
class QueueStats:
    queued: int
    running: int
    succeeded: int
    failed: int

    @property
    def total(self) -> int:
        return self.queued + self.running + self.succeeded + self.failed
