from datetime import datetime, timedelta, timezone

import pytest

from peakalign.ephemeris import LowPrecisionPositionProvider
from peakalign.errors import PersistenceError
from peakalign.geometry import with_derived_geometry
from peakalign.jobs import JobQueue
from peakalign.models import MOUNT_FUJI, ObserverLocation
from peakalign.storage import InMemoryStore


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start=datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class FlakyStore(InMemoryStore):
    """In-memory store whose next job writes fail.

    ``failures`` writes are rejected, counting only records whose status is
    ``status`` when one is given.
    """

    def __init__(self, failures=0, status=None):
        super().__init__()
        self.failures = failures
        self.status = status

    def save_job_record(self, job):
        if self.failures and (self.status is None or job.status == self.status):
            self.failures -= 1
            raise PersistenceError("save_job_record", "database is locked")
        super().save_job_record(job)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def flaky_store():
    """Factory for stores that reject job writes."""
    return FlakyStore


@pytest.fixture
def queue(store, clock):
    return JobQueue(store, max_retries=3, clock=clock)


@pytest.fixture
def provider():
    return LowPrecisionPositionProvider()


@pytest.fixture
def tokyo():
    """Tokyo Station, about 100 km east-northeast of the summit."""
    return with_derived_geometry(
        ObserverLocation(
            id=1,
            name="Tokyo Station",
            latitude=35.6812,
            longitude=139.7671,
            elevation_m=40.0,
        ),
        MOUNT_FUJI,
    )
