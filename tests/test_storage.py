import sqlite3
from datetime import date, datetime, timezone

import pytest

from peakalign.errors import LocationNotFoundError, PersistenceError
from peakalign.models import (
    AccuracyClass,
    AlignmentEvent,
    ComputationJob,
    EventType,
    JobPriority,
    JobStatus,
    ObserverLocation,
    SubType,
)
from peakalign.storage import EventMaterializer, InMemoryStore, SQLiteStore


def make_event(day, error=0.4, location_id=1, body=EventType.SUN, sub=SubType.SETTING):
    return AlignmentEvent(
        location_id=location_id,
        date=day,
        event_type=body,
        sub_type=sub,
        time=datetime(day.year, day.month, day.day, 8, 0, tzinfo=timezone.utc),
        azimuth_deg=249.0,
        elevation_deg=1.7,
        azimuth_error_deg=error / 2,
        elevation_error_deg=error / 2,
        error_deg=error,
        accuracy=AccuracyClass.PERFECT,
        quality_score=90.0,
        moon_phase_deg=120.0 if body == EventType.MOON else None,
        moon_illumination=0.75 if body == EventType.MOON else None,
    )


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryStore()
        return
    store = SQLiteStore(str(tmp_path / "peakalign.sqlite"))
    yield store
    store.close()


@pytest.fixture
def location(any_store):
    return any_store.save_location(
        ObserverLocation(
            0, "Tokyo Station", 35.6812, 139.7671, 40.0, 249.4, 1.74, 100_100.0
        )
    )


class TestLocations:
    """Location round trips on both stores."""

    def test_new_location_gets_id(self, any_store, location):
        """Test that id 0 is replaced by an assigned id."""
        assert location.id > 0
        assert any_store.load_location(location.id) == location
        assert any_store.list_location_ids() == [location.id]

    def test_update_keeps_id(self, any_store, location):
        """Test that saving an existing id updates in place."""
        moved = ObserverLocation(location.id, "moved", 35.7, 139.7, 10.0)
        any_store.save_location(moved)

        assert any_store.load_location(location.id) == moved
        assert any_store.list_location_ids() == [location.id]

    def test_missing_location(self, any_store):
        """Test that unknown ids raise LocationNotFoundError."""
        with pytest.raises(LocationNotFoundError) as exc_info:
            any_store.load_location(999)

        assert isinstance(exc_info.value, PersistenceError)
        assert exc_info.value.location_id == 999


class TestEvents:
    """Alignment event persistence on both stores."""

    def test_round_trip(self, any_store, location):
        """Test that events come back unchanged and ordered."""
        events = [
            make_event(date(2025, 11, 13), location_id=location.id),
            make_event(date(2025, 1, 28), location_id=location.id, body=EventType.MOON),
        ]
        any_store.save_alignment_events(
            location.id, date(2025, 1, 1), date(2025, 12, 31), events
        )

        loaded = any_store.load_alignment_events(location.id)

        assert loaded == sorted(events, key=lambda e: e.date)
        assert loaded[0].moon_illumination == 0.75

    def test_replace_within_range_only(self, any_store, location):
        """Test that a save replaces exactly its date range."""
        old_2025 = make_event(date(2025, 2, 1), location_id=location.id)
        old_2026 = make_event(date(2026, 2, 1), location_id=location.id)
        any_store.save_alignment_events(
            location.id, date(2025, 1, 1), date(2026, 12, 31), [old_2025, old_2026]
        )

        new_2025 = make_event(date(2025, 11, 1), location_id=location.id)
        any_store.save_alignment_events(
            location.id, date(2025, 1, 1), date(2025, 12, 31), [new_2025]
        )

        assert any_store.load_alignment_events(location.id) == [new_2025, old_2026]

    def test_load_by_range(self, any_store, location):
        """Test date filtering on load."""
        events = [
            make_event(date(2025, m, 1), location_id=location.id) for m in (1, 6, 12)
        ]
        any_store.save_alignment_events(
            location.id, date(2025, 1, 1), date(2025, 12, 31), events
        )

        loaded = any_store.load_alignment_events(
            location.id, date(2025, 2, 1), date(2025, 12, 1)
        )

        assert [e.date.month for e in loaded] == [6, 12]

    def test_delete_before_and_count(self, any_store, location):
        """Test archiving and per-year counts."""
        events = [
            make_event(date(2021, 5, 1), location_id=location.id),
            make_event(date(2025, 5, 1), location_id=location.id),
            make_event(date(2025, 6, 1), location_id=location.id),
        ]
        any_store.save_alignment_events(
            location.id, date(2021, 1, 1), date(2025, 12, 31), events
        )

        assert any_store.count_events(location.id, 2025) == 2
        assert any_store.delete_events_before(date(2022, 1, 1)) == 1
        assert any_store.count_events(location.id, 2021) == 0
        assert any_store.count_events(location.id, 2025) == 2


class TestJobRecords:
    """Job record persistence on both stores."""

    def test_round_trip(self, any_store):
        """Test that every job field survives a save."""
        job = ComputationJob.maintenance(
            "job-1", "health_check", {"year": 2025, "repair": True}, JobPriority.MEDIUM
        )
        job.status = JobStatus.FAILED
        job.retry_count = 3
        job.last_error = "boom"
        job.progress = 0.5
        job.result = {"warnings": ["a"]}
        job.enqueued_at = datetime(2025, 1, 1, tzinfo=timezone.utc)
        job.finished_at = datetime(2025, 1, 2, tzinfo=timezone.utc)
        job.cancel_requested = True
        job.not_before = datetime(2025, 1, 1, 0, 5, tzinfo=timezone.utc)

        any_store.save_job_record(job)

        assert any_store.load_job_record("job-1") == job
        assert any_store.list_job_records() == [job]

    def test_delete(self, any_store):
        """Test that deleted records are gone."""
        any_store.save_job_record(
            ComputationJob.location_recompute("job-2", 1, 2025, 2025)
        )
        any_store.delete_job_record("job-2")

        assert any_store.load_job_record("job-2") is None
        assert any_store.list_job_records() == []


class TestMaterializer:
    """Tests for the event materializer."""

    def test_keeps_best_per_key(self, store):
        """Test that duplicates collapse to the lowest error."""
        day = date(2025, 11, 13)
        events = [make_event(day, error=1.2), make_event(day, error=0.4)]

        written = EventMaterializer(store).materialize(1, 2025, 2025, events)

        assert written == 1
        assert store.load_alignment_events(1)[0].error_deg == 0.4

    def test_rerun_is_idempotent(self, store):
        """Test that materializing twice leaves one copy."""
        events = [make_event(date(2025, 11, 13)), make_event(date(2025, 1, 28))]
        materializer = EventMaterializer(store)

        materializer.materialize(1, 2025, 2025, events)
        materializer.materialize(1, 2025, 2025, events)

        assert len(store.load_alignment_events(1)) == 2

    def test_recompute_supersedes(self, store):
        """Test that a new run replaces events that no longer occur."""
        materializer = EventMaterializer(store)
        materializer.materialize(1, 2025, 2025, [make_event(date(2025, 11, 13))])

        materializer.materialize(1, 2025, 2025, [make_event(date(2025, 11, 20))])

        assert [e.date for e in store.load_alignment_events(1)] == [date(2025, 11, 20)]

    def test_other_locations_untouched(self, store):
        """Test that other locations keep their events."""
        materializer = EventMaterializer(store)
        other = make_event(date(2025, 3, 1), location_id=2)
        materializer.materialize(2, 2025, 2025, [other])

        materializer.materialize(1, 2025, 2025, [])

        assert len(store.load_alignment_events(2)) == 1

    def test_store_failure_surfaces(self, store):
        """Test that unexpected store errors become PersistenceError."""

        class BrokenStore(InMemoryStore):
            def save_alignment_events(self, *args, **kwargs):
                raise RuntimeError("disk full")

        with pytest.raises(PersistenceError, match="disk full"):
            EventMaterializer(BrokenStore()).materialize(1, 2025, 2025, [])


def test_sqlite_persists_across_connections(tmp_path):
    """Test that a reopened database sees earlier writes."""
    path = str(tmp_path / "db.sqlite")
    first = SQLiteStore(path)
    saved = first.save_location(ObserverLocation(0, "a", 35.0, 139.0, 0.0))
    first.close()

    second = SQLiteStore(path)

    assert second.load_location(saved.id) == saved
    second.close()


def test_sqlite_unopenable_path(tmp_path):
    """Test that an unusable path raises PersistenceError."""
    blocker = tmp_path / "file"
    blocker.write_text("x")

    with pytest.raises(PersistenceError):
        SQLiteStore(str(blocker / "db.sqlite"))


def test_sqlite_adds_retry_column_to_old_database(tmp_path):
    """Test that a jobs table created without not_before is upgraded."""
    path = str(tmp_path / "old.sqlite")
    con = sqlite3.connect(path)
    con.execute(
        "CREATE TABLE jobs (id TEXT PRIMARY KEY, kind TEXT NOT NULL, "
        "dedup_key TEXT NOT NULL, priority TEXT NOT NULL, location_id INTEGER, "
        "year_start INTEGER, year_end INTEGER, maintenance_kind TEXT, "
        "params TEXT NOT NULL, status TEXT NOT NULL, "
        "retry_count INTEGER NOT NULL DEFAULT 0, last_error TEXT, "
        "progress REAL NOT NULL DEFAULT 0, result TEXT, enqueued_at TEXT, "
        "started_at TEXT, finished_at TEXT, "
        "cancel_requested INTEGER NOT NULL DEFAULT 0)"
    )
    con.commit()
    con.close()

    store = SQLiteStore(path)
    job = ComputationJob.location_recompute("job-3", 1, 2025, 2025)
    job.not_before = datetime(2025, 6, 1, 12, 0, 30, tzinfo=timezone.utc)
    store.save_job_record(job)

    assert store.load_job_record("job-3") == job
    store.close()

