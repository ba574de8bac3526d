"""Runtime configuration with ``PEAKALIGN_*`` environment overrides."""

import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional

from .errors import ConfigurationError


@dataclass(frozen=True)
class AccuracyThresholds:
    """Upper bounds of combined angular error (degrees) per accuracy class."""

    perfect: float = 0.5
    excellent: float = 1.0
    good: float = 1.5
    fair: float = 2.0

    def __post_init__(self):
        bounds = [self.perfect, self.excellent, self.good, self.fair]
        if bounds[0] <= 0 or any(a >= b for a, b in zip(bounds, bounds[1:])):
            raise ValueError(
                "accuracy thresholds must be positive and strictly increasing"
            )


@dataclass(frozen=True)
class QualityWeights:
    azimuth_weight: float = 2.0
    elevation_weight: float = 1.0
    penalty_per_degree: float = 5.0
    penalty_free_elevation_deg: float = 2.0


@dataclass(frozen=True)
class SearchConfig:
    coarse_step_seconds: int = 300
    fine_step_seconds: int = 10
    final_step_seconds: int = 1
    coarse_slack_deg: float = 1.5
    thresholds: AccuracyThresholds = field(default_factory=AccuracyThresholds)
    quality: QualityWeights = field(default_factory=QualityWeights)
    min_moon_illumination: float = 0.1
    provider_retries: int = 1

    def __post_init__(self):
        if not (
            0 < self.final_step_seconds
            <= self.fine_step_seconds
            <= self.coarse_step_seconds
        ):
            raise ValueError("search steps must satisfy 0 < final <= fine <= coarse")
        if self.provider_retries < 0:
            raise ValueError("provider_retries cannot be negative")

    @property
    def max_error_deg(self) -> float:
        """Largest admissible combined error; anything looser is discarded."""
        return self.thresholds.fair


@dataclass(frozen=True)
class QueueConfig:
    max_retries: int = 3
    failed_retention_days: int = 7
    retry_backoff_seconds: float = 30.0
    max_backoff_seconds: float = 600.0


@dataclass(frozen=True)
class WorkerConfig:
    concurrency: int = 2
    poll_interval_seconds: float = 1.0


@dataclass(frozen=True)
class EphemerisConfig:
    provider: str = "skyfield"
    ephemeris_file: str = "de421.bsp"
    data_dir: Optional[str] = None


@dataclass(frozen=True)
class Settings:
    search: SearchConfig = field(default_factory=SearchConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    ephemeris: EphemerisConfig = field(default_factory=EphemerisConfig)
    database_path: str = "peakalign.sqlite"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``PEAKALIGN_*`` environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Raises:
            ConfigurationError: If a variable cannot be parsed
        """
        env = os.environ if environ is None else environ
        settings = cls()

        search = settings.search
        if "PEAKALIGN_COARSE_STEP" in env:
            coarse = _parse_int(env, "PEAKALIGN_COARSE_STEP", minimum=1)
            if coarse < search.fine_step_seconds:
                raise ConfigurationError(
                    "PEAKALIGN_COARSE_STEP",
                    env["PEAKALIGN_COARSE_STEP"],
                    f"an integer >= {search.fine_step_seconds} (the fine step)",
                )
            search = replace(search, coarse_step_seconds=coarse)
        if "PEAKALIGN_MIN_MOON_ILLUMINATION" in env:
            search = replace(
                search,
                min_moon_illumination=_parse_float(
                    env, "PEAKALIGN_MIN_MOON_ILLUMINATION"
                ),
            )

        queue = settings.queue
        if "PEAKALIGN_MAX_RETRIES" in env:
            queue = replace(
                queue, max_retries=_parse_int(env, "PEAKALIGN_MAX_RETRIES", minimum=0)
            )
        if "PEAKALIGN_FAILED_RETENTION_DAYS" in env:
            queue = replace(
                queue,
                failed_retention_days=_parse_int(
                    env, "PEAKALIGN_FAILED_RETENTION_DAYS", minimum=0
                ),
            )
        if "PEAKALIGN_RETRY_BACKOFF" in env:
            queue = replace(
                queue,
                retry_backoff_seconds=_parse_float(
                    env, "PEAKALIGN_RETRY_BACKOFF", minimum=0.0
                ),
            )

        worker = settings.worker
        if "PEAKALIGN_CONCURRENCY" in env:
            worker = replace(
                worker, concurrency=_parse_int(env, "PEAKALIGN_CONCURRENCY", minimum=1)
            )

        ephemeris = settings.ephemeris
        if "PEAKALIGN_PROVIDER" in env:
            provider = env["PEAKALIGN_PROVIDER"].strip().lower()
            if provider not in ("skyfield", "lowprecision"):
                raise ConfigurationError(
                    "PEAKALIGN_PROVIDER", provider, "'skyfield' or 'lowprecision'"
                )
            ephemeris = replace(ephemeris, provider=provider)
        if "PEAKALIGN_EPHEMERIS" in env:
            ephemeris = replace(ephemeris, ephemeris_file=env["PEAKALIGN_EPHEMERIS"])
        if "PEAKALIGN_DATA_DIR" in env:
            ephemeris = replace(ephemeris, data_dir=env["PEAKALIGN_DATA_DIR"])

        return cls(
            search=search,
            queue=queue,
            worker=worker,
            ephemeris=ephemeris,
            database_path=env.get("PEAKALIGN_DB", settings.database_path),
        )


def _parse_int(env: Mapping[str, str], name: str, minimum: int) -> int:
    raw = env[name]
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(name, raw, "an integer")
    if value < minimum:
        raise ConfigurationError(name, raw, f"an integer >= {minimum}")
    return value


def _parse_float(
    env: Mapping[str, str], name: str, minimum: Optional[float] = None
) -> float:
    raw = env[name]
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(name, raw, "a number")
    if minimum is not None and value < minimum:
        raise ConfigurationError(name, raw, f"a number >= {minimum:g}")
    return value
