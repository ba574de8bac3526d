import argparse
import dataclasses
import json
import logging
import sys
import threading
import time
from dataclasses import dataclass
from itertools import cycle
from typing import Optional

from . import __version__
from .config import Settings
from .ephemeris import get_provider
from .errors import PeakAlignError, handle_error
from .geometry import with_derived_geometry
from .jobs import JobQueue, JobRunner, PeriodicTrigger, WorkerPool
from .models import (
    MOUNT_FUJI,
    EventType,
    JobPriority,
    JobStatus,
    ObserverLocation,
)
from .search import AlignmentSearchEngine
from .service import MAINTENANCE_KINDS, AlignmentService
from .storage import EventMaterializer, SQLiteStore

logger = logging.getLogger(__name__)

BODY_CHOICES = {
    "sun": (EventType.SUN,),
    "moon": (EventType.MOON,),
    "both": (EventType.SUN, EventType.MOON),
}


class Spinner:
    """Simple terminal spinner for long-running operations."""

    def __init__(self, message: str):
        self.message = message
        self._stop_event = threading.Event()
        self._spinner_thread = None
        self._chars = cycle(["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"])

    def _spin(self):
        while not self._stop_event.is_set():
            char = next(self._chars)
            sys.stderr.write(f"\r{self.message} {char} ")
            sys.stderr.flush()
            time.sleep(0.1)

    def start(self):
        if not sys.stderr.isatty():
            return
        self._stop_event.clear()
        self._spinner_thread = threading.Thread(target=self._spin, daemon=True)
        self._spinner_thread.start()

    def stop(self):
        if self._spinner_thread:
            self._stop_event.set()
            self._spinner_thread.join()
            self._spinner_thread = None
            sys.stderr.write("\r" + " " * (len(self.message) + 3) + "\r")
            sys.stderr.flush()


@dataclass
class Runtime:
    """Components wired against one database."""

    settings: Settings
    store: SQLiteStore
    queue: JobQueue
    service: AlignmentService

    def worker_pool(self, concurrency: Optional[int] = None) -> WorkerPool:
        engine = AlignmentSearchEngine(
            get_provider(self.settings.ephemeris), self.settings.search
        )
        runner = JobRunner(
            self.store,
            engine,
            EventMaterializer(self.store),
            self.queue,
            failed_retention_days=self.settings.queue.failed_retention_days,
        )
        return WorkerPool(
            self.queue,
            runner,
            concurrency=concurrency or self.settings.worker.concurrency,
            poll_interval=self.settings.worker.poll_interval_seconds,
        )


def open_runtime(settings: Settings, db: Optional[str] = None) -> Runtime:
    store = SQLiteStore(db or settings.database_path)
    queue = JobQueue(
        store,
        max_retries=settings.queue.max_retries,
        retry_backoff_seconds=settings.queue.retry_backoff_seconds,
        max_backoff_seconds=settings.queue.max_backoff_seconds,
    )
    return Runtime(settings, store, queue, AlignmentService(store, queue))


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="peakalign",
        description="Precompute sun and moon alignments with Mount Fuji.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--provider",
        choices=["skyfield", "lowprecision"],
        default=None,
        help="Position provider (default: PEAKALIGN_PROVIDER or skyfield)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    db_parent = argparse.ArgumentParser(add_help=False)
    db_parent.add_argument(
        "--db", default=None, help="SQLite database path (default: PEAKALIGN_DB)"
    )

    compute = subparsers.add_parser(
        "compute", help="Search alignments for coordinates without the queue"
    )
    compute.add_argument("--lat", type=float, required=True, help="Latitude in degrees")
    compute.add_argument(
        "--lon", type=float, required=True, help="Longitude in degrees"
    )
    compute.add_argument(
        "--elevation", type=float, default=0.0, help="Ground elevation in meters"
    )
    compute.add_argument("--year", type=int, required=True, help="First year")
    compute.add_argument("--year-end", type=int, default=None, help="Last year")
    compute.add_argument(
        "--body", choices=list(BODY_CHOICES), default="both", help="Bodies to search"
    )
    compute.add_argument("--json", action="store_true", help="Print events as JSON")

    enqueue = subparsers.add_parser(
        "enqueue", parents=[db_parent], help="Queue a location recompute"
    )
    enqueue.add_argument("--location-id", type=int, required=True)
    enqueue.add_argument("--year", type=int, required=True)
    enqueue.add_argument("--year-end", type=int, default=None)
    enqueue.add_argument(
        "--priority",
        choices=[p.value for p in JobPriority],
        default=JobPriority.MEDIUM.value,
    )

    add_location = subparsers.add_parser(
        "add-location", parents=[db_parent], help="Save a location and queue its events"
    )
    add_location.add_argument("--name", required=True)
    add_location.add_argument("--lat", type=float, required=True)
    add_location.add_argument("--lon", type=float, required=True)
    add_location.add_argument("--elevation", type=float, default=0.0)

    maintenance = subparsers.add_parser(
        "maintenance", parents=[db_parent], help="Queue a maintenance job"
    )
    maintenance.add_argument("kind", choices=MAINTENANCE_KINDS)
    maintenance.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Job parameter (repeatable)",
    )

    work = subparsers.add_parser(
        "work", parents=[db_parent], help="Run queued jobs until the queue is idle"
    )
    work.add_argument("--concurrency", type=int, default=None)

    subparsers.add_parser(
        "tick", parents=[db_parent], help="Enqueue scheduled maintenance that is due"
    )
    subparsers.add_parser("stats", parents=[db_parent], help="Show queue counts")

    jobs = subparsers.add_parser("jobs", parents=[db_parent], help="List jobs")
    jobs.add_argument("--status", choices=[s.value for s in JobStatus], default=None)
    jobs.add_argument("--limit", type=int, default=20)

    for name, help_text in (
        ("cancel", "Cancel a job"),
        ("retry", "Requeue a failed job"),
    ):
        command = subparsers.add_parser(name, parents=[db_parent], help=help_text)
        command.add_argument("job_id")

    return parser.parse_args(argv)


def _parse_params(pairs: list[str]) -> dict:
    params = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Parameter '{pair}' is not KEY=VALUE")
        try:
            params[key] = json.loads(value)
        except json.JSONDecodeError:
            params[key] = value
    return params


def print_event(event) -> None:
    line = (
        f"{event.date.isoformat()}  {event.event_type.value:<4}"
        f" {event.sub_type.value:<7}"
        f"  {event.time.strftime('%H:%M:%S')}Z  az {event.azimuth_deg:7.3f}"
        f"  el {event.elevation_deg:6.3f}  err {event.error_deg:.3f}"
        f"  {event.accuracy.value:<9} {event.quality_score:5.1f}"
    )
    if event.moon_illumination is not None:
        line += f"  illum {event.moon_illumination:.2f}"
    print(line)


def print_job(job) -> None:
    target = (
        f"location {job.location_id} {job.year_start}-{job.year_end}"
        if job.location_id is not None
        else f"{job.maintenance_kind} {job.params}"
    )
    line = (
        f"{job.id}  {job.status.value:<9} {job.priority.value:<6} "
        f"retries {job.retry_count}  {job.progress:4.0%}  {target}"
    )
    if job.last_error:
        line += f"  error: {job.last_error}"
    print(line)


def compute_command(args, settings: Settings) -> int:
    location = with_derived_geometry(
        ObserverLocation(
            id=0,
            name="cli",
            latitude=args.lat,
            longitude=args.lon,
            elevation_m=args.elevation,
        ),
        MOUNT_FUJI,
    )
    year_end = args.year_end if args.year_end is not None else args.year
    engine = AlignmentSearchEngine(get_provider(settings.ephemeris), settings.search)

    if not args.json:
        print(f"Observer: {location.latitude:.6f}°, {location.longitude:.6f}°")
        print(f"  Bearing to {MOUNT_FUJI.name}: {location.bearing_deg:.3f}°")
        print(f"  Elevation angle: {location.elevation_angle_deg:.3f}°")
        print(f"  Distance: {location.distance_m / 1000:.1f} km")
        print()

    spinner = Spinner(f"Searching {args.year}-{year_end}")
    spinner.start()
    try:
        result = engine.search(
            location, args.year, year_end, bodies=BODY_CHOICES[args.body]
        )
    finally:
        spinner.stop()

    if args.json:
        print(
            json.dumps(
                {
                    "summary": result.summary(),
                    "events": [event.to_dict() for event in result.events],
                },
                indent=2,
            )
        )
        return 0

    for event in result.events:
        print_event(event)
    print()
    print(
        f"{len(result.events)} events, {result.days_evaluated} days evaluated, "
        f"{result.days_skipped} skipped"
    )
    for warning in result.warnings:
        print(f"Warning: {warning}")
    return 0


def queue_command(args, settings: Settings) -> int:
    runtime = open_runtime(settings, args.db)
    service = runtime.service

    if args.command == "enqueue":
        year_end = args.year_end if args.year_end is not None else args.year
        result = service.enqueue_location_recompute(
            args.location_id, args.year, year_end, JobPriority(args.priority)
        )
        state = "created" if result.created else "already pending"
        print(f"Job {result.job_id} ({state})")

    elif args.command == "add-location":
        written = service.save_location(
            ObserverLocation(
                id=0,
                name=args.name,
                latitude=args.lat,
                longitude=args.lon,
                elevation_m=args.elevation,
            )
        )
        location = written.location
        print(f"Saved location {location.id} ({location.name})")
        print(f"  Bearing: {location.bearing_deg:.3f}°")
        print(f"  Elevation angle: {location.elevation_angle_deg:.3f}°")
        print(f"  Distance: {location.distance_m / 1000:.1f} km")
        if written.enqueue_error is not None:
            print(f"Recompute not queued: {written.enqueue_error}", file=sys.stderr)
            return 1
        print(f"Recompute job {written.enqueue.job_id}")

    elif args.command == "maintenance":
        result = service.enqueue_maintenance(args.kind, _parse_params(args.param))
        state = "created" if result.created else "already pending"
        print(f"Job {result.job_id} ({state})")

    elif args.command == "work":
        pool = runtime.worker_pool(args.concurrency)
        spinner = Spinner("Working")
        spinner.start()
        try:
            processed = pool.run_until_idle()
        finally:
            spinner.stop()
        stats = service.get_queue_stats()
        print(
            f"Processed {processed} job runs: {stats.succeeded} succeeded, "
            f"{stats.failed} failed, {stats.queued} queued"
        )

    elif args.command == "tick":
        results = PeriodicTrigger(service).tick()
        for result in results:
            print(f"Job {result.job_id}")
        print(f"{len(results)} scheduled jobs enqueued")

    elif args.command == "stats":
        stats = service.get_queue_stats()
        for field in dataclasses.fields(stats):
            print(f"{field.name:<10} {getattr(stats, field.name)}")
        print(f"{'total':<10} {stats.total}")

    elif args.command == "jobs":
        status = JobStatus(args.status) if args.status else None
        for job in service.list_jobs(status=status, limit=args.limit):
            print_job(job)

    elif args.command == "cancel":
        if service.cancel_job(args.job_id):
            print(f"Job {args.job_id} cancelled")
        else:
            print(f"Job {args.job_id} already finished")

    elif args.command == "retry":
        print(f"Job {service.retry_job(args.job_id)} queued")

    return 0


def run_cli(argv=None) -> int:
    """Run the CLI and return its exit code."""
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = Settings.from_env()
        if args.provider:
            settings = dataclasses.replace(
                settings,
                ephemeris=dataclasses.replace(
                    settings.ephemeris, provider=args.provider
                ),
            )

        if args.command == "compute":
            return compute_command(args, settings)
        return queue_command(args, settings)

    except (PeakAlignError, ValueError) as e:
        return handle_error(e, f"running '{args.command}'")


def main():
    """CLI entry point."""
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
