from .location import MOUNT_FUJI, ObserverLocation, TargetPeak
from .event import AccuracyClass, AlignmentEvent, EventType, SubType
from .job import ComputationJob, JobKind, JobPriority, JobStatus, QueueStats
from .position import CelestialPosition, PositionSeries

__all__ = [
    "MOUNT_FUJI",
    "ObserverLocation",
    "TargetPeak",
    "AccuracyClass",
    "AlignmentEvent",
    "EventType",
    "SubType",
    "ComputationJob",
    "JobKind",
    "JobPriority",
    "JobStatus",
    "QueueStats",
    "CelestialPosition",
    "PositionSeries",
]
