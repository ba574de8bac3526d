import dataclasses
import json
import logging
import sqlite3
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Optional

from ..errors import LocationNotFoundError, PersistenceError
from ..models import (
    AccuracyClass,
    AlignmentEvent,
    ComputationJob,
    EventType,
    JobKind,
    JobPriority,
    JobStatus,
    ObserverLocation,
    SubType,
)

logger = logging.getLogger(__name__)

DDL = """
CREATE TABLE IF NOT EXISTS locations (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  latitude REAL NOT NULL,
  longitude REAL NOT NULL,
  elevation_m REAL NOT NULL,
  bearing_deg REAL,
  elevation_angle_deg REAL,
  distance_m REAL
);
CREATE TABLE IF NOT EXISTS alignment_events (
  location_id INTEGER NOT NULL REFERENCES locations(id) ON DELETE CASCADE,
  date TEXT NOT NULL,
  event_type TEXT NOT NULL,
  sub_type TEXT NOT NULL,
  time TEXT NOT NULL,
  azimuth_deg REAL NOT NULL,
  elevation_deg REAL NOT NULL,
  azimuth_error_deg REAL NOT NULL,
  elevation_error_deg REAL NOT NULL,
  error_deg REAL NOT NULL,
  accuracy TEXT NOT NULL,
  quality_score REAL NOT NULL,
  moon_phase_deg REAL,
  moon_illumination REAL,
  PRIMARY KEY (location_id, date, event_type, sub_type)
);
CREATE INDEX IF NOT EXISTS ix_events_date ON alignment_events(date);
CREATE TABLE IF NOT EXISTS jobs (
  id TEXT PRIMARY KEY,
  kind TEXT NOT NULL,
  dedup_key TEXT NOT NULL,
  priority TEXT NOT NULL,
  location_id INTEGER,
  year_start INTEGER,
  year_end INTEGER,
  maintenance_kind TEXT,
  params TEXT NOT NULL,
  status TEXT NOT NULL,
  retry_count INTEGER NOT NULL DEFAULT 0,
  last_error TEXT,
  progress REAL NOT NULL DEFAULT 0,
  result TEXT,
  enqueued_at TEXT,
  started_at TEXT,
  finished_at TEXT,
  cancel_requested INTEGER NOT NULL DEFAULT 0,
  not_before TEXT
);
CREATE INDEX IF NOT EXISTS ix_jobs_status ON jobs(status);
"""

_EVENT_COLUMNS = [field.name for field in dataclasses.fields(AlignmentEvent)]
_JOB_COLUMNS = [field.name for field in dataclasses.fields(ComputationJob)]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


def _event_row(event: AlignmentEvent) -> tuple:
    return (
        event.location_id,
        event.date.isoformat(),
        event.event_type.value,
        event.sub_type.value,
        event.time.isoformat(),
        event.azimuth_deg,
        event.elevation_deg,
        event.azimuth_error_deg,
        event.elevation_error_deg,
        event.error_deg,
        event.accuracy.value,
        event.quality_score,
        event.moon_phase_deg,
        event.moon_illumination,
    )


def _event_from_row(row: sqlite3.Row) -> AlignmentEvent:
    return AlignmentEvent(
        location_id=row["location_id"],
        date=date.fromisoformat(row["date"]),
        event_type=EventType(row["event_type"]),
        sub_type=SubType(row["sub_type"]),
        time=datetime.fromisoformat(row["time"]),
        azimuth_deg=row["azimuth_deg"],
        elevation_deg=row["elevation_deg"],
        azimuth_error_deg=row["azimuth_error_deg"],
        elevation_error_deg=row["elevation_error_deg"],
        error_deg=row["error_deg"],
        accuracy=AccuracyClass(row["accuracy"]),
        quality_score=row["quality_score"],
        moon_phase_deg=row["moon_phase_deg"],
        moon_illumination=row["moon_illumination"],
    )


def _job_row(job: ComputationJob) -> tuple:
    return (
        job.id,
        job.kind.value,
        job.dedup_key,
        job.priority.value,
        job.location_id,
        job.year_start,
        job.year_end,
        job.maintenance_kind,
        json.dumps(job.params),
        job.status.value,
        job.retry_count,
        job.last_error,
        job.progress,
        json.dumps(job.result) if job.result is not None else None,
        _iso(job.enqueued_at),
        _iso(job.started_at),
        _iso(job.finished_at),
        int(job.cancel_requested),
        _iso(job.not_before),
    )


def _job_from_row(row: sqlite3.Row) -> ComputationJob:
    return ComputationJob(
        id=row["id"],
        kind=JobKind(row["kind"]),
        dedup_key=row["dedup_key"],
        priority=JobPriority(row["priority"]),
        location_id=row["location_id"],
        year_start=row["year_start"],
        year_end=row["year_end"],
        maintenance_kind=row["maintenance_kind"],
        params=json.loads(row["params"]),
        status=JobStatus(row["status"]),
        retry_count=row["retry_count"],
        last_error=row["last_error"],
        progress=row["progress"],
        result=json.loads(row["result"]) if row["result"] is not None else None,
        enqueued_at=_parse_datetime(row["enqueued_at"]),
        started_at=_parse_datetime(row["started_at"]),
        finished_at=_parse_datetime(row["finished_at"]),
        cancel_requested=bool(row["cancel_requested"]),
        not_before=_parse_datetime(row["not_before"]),
    )


def _location_from_row(row: sqlite3.Row) -> ObserverLocation:
    return ObserverLocation(
        id=row["id"],
        name=row["name"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        elevation_m=row["elevation_m"],
        bearing_deg=row["bearing_deg"],
        elevation_angle_deg=row["elevation_angle_deg"],
        distance_m=row["distance_m"],
    )


class SQLiteStore:
    """SQLite-backed store sharing one connection between threads."""

    def __init__(self, path: str = "peakalign.sqlite"):
        """Open (creating if needed) the database at ``path``.

        Raises:
            PersistenceError: If the database cannot be opened
        """
        self.path = path
        self._lock = threading.RLock()
        try:
            if path != ":memory:":
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            self._con = sqlite3.connect(path, check_same_thread=False)
            self._con.row_factory = sqlite3.Row
            self._con.execute("PRAGMA journal_mode=WAL")
            self._con.execute("PRAGMA foreign_keys=ON")
            self._con.executescript(DDL)
            info = self._con.execute("PRAGMA table_info(jobs)").fetchall()
            columns = [row["name"] for row in info]
            if "not_before" not in columns:
                self._con.execute("ALTER TABLE jobs ADD COLUMN not_before TEXT")
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError("open", f"{path}: {e}") from e
        logger.debug("Opened store at %s", path)

    def close(self) -> None:
        with self._lock:
            self._con.close()

    def _execute(self, operation: str, sql: str, params=()) -> sqlite3.Cursor:
        with self._lock:
            try:
                with self._con:
                    return self._con.execute(sql, params)
            except sqlite3.Error as e:
                raise PersistenceError(operation, str(e)) from e

    def _query(self, operation: str, sql: str, params=()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._con.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(operation, str(e)) from e

    # Locations

    def load_location(self, location_id: int) -> ObserverLocation:
        rows = self._query(
            "load_location", "SELECT * FROM locations WHERE id=?", (location_id,)
        )
        if not rows:
            raise LocationNotFoundError(location_id)
        return _location_from_row(rows[0])

    def save_location(self, location: ObserverLocation) -> ObserverLocation:
        """Insert or update; a location with id 0 is assigned a new id."""
        values = (
            location.name,
            location.latitude,
            location.longitude,
            location.elevation_m,
            location.bearing_deg,
            location.elevation_angle_deg,
            location.distance_m,
        )
        if not location.id:
            cursor = self._execute(
                "save_location",
                "INSERT INTO locations(name,latitude,longitude,elevation_m,"
                "bearing_deg,elevation_angle_deg,distance_m) VALUES (?,?,?,?,?,?,?)",
                values,
            )
            return dataclasses.replace(location, id=cursor.lastrowid)

        self._execute(
            "save_location",
            "INSERT INTO locations(id,name,latitude,longitude,elevation_m,"
            "bearing_deg,elevation_angle_deg,distance_m) VALUES (?,?,?,?,?,?,?,?) "
            "ON CONFLICT(id) DO UPDATE SET name=excluded.name,"
            "latitude=excluded.latitude,longitude=excluded.longitude,"
            "elevation_m=excluded.elevation_m,bearing_deg=excluded.bearing_deg,"
            "elevation_angle_deg=excluded.elevation_angle_deg,"
            "distance_m=excluded.distance_m",
            (location.id, *values),
        )
        return location

    def list_location_ids(self) -> list[int]:
        rows = self._query("list_location_ids", "SELECT id FROM locations ORDER BY id")
        return [row["id"] for row in rows]

    # Alignment events

    def save_alignment_events(
        self,
        location_id: int,
        start: date,
        end: date,
        events: Iterable[AlignmentEvent],
    ) -> int:
        """Replace every event of ``location_id`` dated within [start, end]."""
        rows = [_event_row(event) for event in events]
        placeholders = ",".join("?" * len(_EVENT_COLUMNS))
        with self._lock:
            try:
                with self._con:
                    self._con.execute(
                        "DELETE FROM alignment_events "
                        "WHERE location_id=? AND date BETWEEN ? AND ?",
                        (location_id, start.isoformat(), end.isoformat()),
                    )
                    self._con.executemany(
                        f"INSERT INTO alignment_events({','.join(_EVENT_COLUMNS)}) "
                        f"VALUES ({placeholders})",
                        rows,
                    )
            except sqlite3.Error as e:
                raise PersistenceError("save_alignment_events", str(e)) from e
        return len(rows)

    def load_alignment_events(
        self,
        location_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[AlignmentEvent]:
        sql = "SELECT * FROM alignment_events WHERE location_id=?"
        params: list = [location_id]
        if start is not None:
            sql += " AND date >= ?"
            params.append(start.isoformat())
        if end is not None:
            sql += " AND date <= ?"
            params.append(end.isoformat())
        sql += " ORDER BY date, event_type, sub_type"
        return [
            _event_from_row(row)
            for row in self._query("load_alignment_events", sql, params)
        ]

    def delete_events_before(self, cutoff: date) -> int:
        cursor = self._execute(
            "delete_events_before",
            "DELETE FROM alignment_events WHERE date < ?",
            (cutoff.isoformat(),),
        )
        return cursor.rowcount

    def count_events(self, location_id: int, year: int) -> int:
        rows = self._query(
            "count_events",
            "SELECT COUNT(*) AS n FROM alignment_events "
            "WHERE location_id=? AND date BETWEEN ? AND ?",
            (location_id, f"{year:04d}-01-01", f"{year:04d}-12-31"),
        )
        return rows[0]["n"]

    # Job records

    def load_job_record(self, job_id: str) -> Optional[ComputationJob]:
        rows = self._query(
            "load_job_record", "SELECT * FROM jobs WHERE id=?", (job_id,)
        )
        return _job_from_row(rows[0]) if rows else None

    def save_job_record(self, job: ComputationJob) -> None:
        placeholders = ",".join("?" * len(_JOB_COLUMNS))
        self._execute(
            "save_job_record",
            f"INSERT OR REPLACE INTO jobs({','.join(_JOB_COLUMNS)}) "
            f"VALUES ({placeholders})",
            _job_row(job),
        )

    def list_job_records(self) -> list[ComputationJob]:
        rows = self._query("list_job_records", "SELECT * FROM jobs")
        return [_job_from_row(row) for row in rows]

    def delete_job_record(self, job_id: str) -> None:
        self._execute("delete_job_record", "DELETE FROM jobs WHERE id=?", (job_id,))
