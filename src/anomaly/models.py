"""
Data models and configuration for the page-view anomaly evaluator.
"""

import json
import math
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from .errors import ConfigurationError

EVENT_DETAIL_TYPES = {
    "alarm": "anomaly.page_view.alarm",
    "ok": "anomaly.page_view.ok",
}

STATUS_BACKENDS = ("postgres", "redis")


class AnomalyStatus(Enum):
    """Persisted per-site decision"""

    OK = "ok"
    ALARM = "alarm"


def truncate_to_hour(ts: datetime) -> datetime:
    """Truncate a timestamp to the start of its UTC hour (naive means UTC)"""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).replace(minute=0, second=0, microsecond=0)


def evaluation_target_hour(now: datetime) -> datetime:
    """The most recently closed hour at tick time ``now``"""
    return truncate_to_hour(now) - timedelta(hours=1)


@dataclass(frozen=True)
class HourBucket:
    """One site's traffic for one UTC hour"""

    site: str
    hour: datetime

    def __post_init__(self):
        object.__setattr__(self, "hour", truncate_to_hour(self.hour))


@dataclass(frozen=True)
class AnomalyEvent:
    """A site's anomaly status transition, as published on the event bus"""

    site: str
    detail_type: str  # "alarm" or "ok"
    evaluated_bucket: datetime
    observed_views: int
    baseline: float
    threshold: float
    emitted_at: datetime

    def __post_init__(self):
        if self.detail_type not in EVENT_DETAIL_TYPES:
            raise ValueError(f"Unknown detail type '{self.detail_type}'")

    @property
    def bus_detail_type(self) -> str:
        return EVENT_DETAIL_TYPES[self.detail_type]

    def to_detail(self) -> dict[str, Any]:
        """Flat record carried in the envelope's ``detail`` field"""
        detail = asdict(self)
        detail["evaluated_bucket"] = self.evaluated_bucket.isoformat()
        detail["emitted_at"] = self.emitted_at.isoformat()
        return detail

    def to_envelope(self, source: str) -> dict[str, Any]:
        """Wrap the event for the bus, tagged with this pipeline's source id"""
        return {
            "source": source,
            "detail-type": self.bus_detail_type,
            "time": self.emitted_at.isoformat(),
            "detail": self.to_detail(),
        }

    @classmethod
    def from_detail(cls, detail: dict[str, Any]) -> "AnomalyEvent":
        """Rebuild an event from its flat record

        Raises:
            ValueError: If a field is missing or has the wrong shape
        """
        try:
            return cls(
                site=str(detail["site"]),
                detail_type=str(detail["detail_type"]),
                evaluated_bucket=datetime.fromisoformat(detail["evaluated_bucket"]),
                observed_views=int(detail["observed_views"]),
                baseline=float(detail["baseline"]),
                threshold=float(detail["threshold"]),
                emitted_at=datetime.fromisoformat(detail["emitted_at"]),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed anomaly event detail: {e}") from e

    def to_json(self, source: str) -> str:
        return json.dumps(self.to_envelope(source))


@dataclass
class EvaluationReport:
    """Outcome of one evaluator tick"""

    target_hour: datetime
    events: list[AnomalyEvent] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)  # site -> reason
    publish_failures: list[str] = field(default_factory=list)  # sites
    evaluated: int = 0

    @property
    def published(self) -> int:
        return len(self.events) - len(self.publish_failures)

    @property
    def success(self) -> bool:
        return not self.publish_failures


def parse_sites(raw: str | list[str] | None) -> list[str]:
    """Parse the SITES setting (a JSON array of strings)

    Raises:
        ConfigurationError: If the value is missing or not a list of strings
    """
    if raw is None or raw == "":
        raise ConfigurationError("SITES is required")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"SITES must be a JSON array of strings: {e}") from e
    if not isinstance(raw, list) or not all(isinstance(s, str) for s in raw):
        raise ConfigurationError("SITES must be a JSON array of strings")
    return list(raw)


def parse_int(raw: str | int | None, name: str, default: int | None = None) -> int:
    """Parse an integer setting, falling back to ``default`` when unset"""
    if raw is None or raw == "":
        if default is None:
            raise ConfigurationError(f"{name} is required")
        return default
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'") from e


def parse_float(raw: str | float | None, name: str, default: float | None = None) -> float:
    """Parse a numeric setting, falling back to ``default`` when unset"""
    if raw is None or raw == "":
        if default is None:
            raise ConfigurationError(f"{name} is required")
        return default
    try:
        return float(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'") from e


def parse_bool(raw: str | bool | None, name: str, default: bool) -> bool:
    """Parse a "true"/"false" style setting"""
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        return raw
    value = raw.strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    raise ConfigurationError(f"{name} must be true or false, got '{raw}'")


@dataclass
class EvaluatorConfig:
    """Configuration for the anomaly evaluator

    Validated on construction; an invalid config raises ConfigurationError so the
    process fails before any tick can run.
    """

    sites: list[str]
    event_bus_source: str

    # Detection settings
    evaluation_window: int = 7  # comparable days
    breaching_multiplier: float = 0.5
    minimum_views: int = 10

    # Kafka settings (event bus)
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_event_topic: str = "anomaly-events"
    publish_timeout_seconds: float = 10.0

    # PostgreSQL settings
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_database: str = "analytics_db"
    postgres_user: str = "analytics"
    postgres_password: str = "analytics_password"
    aggregate_table: str = "page_views_hourly"
    query_timeout_ms: int = 30000

    # Status store
    status_backend: str = "postgres"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str | None = None

    # Scheduling
    schedule_minute: int = 20

    def __post_init__(self):
        errors = []

        if not self.sites:
            errors.append("sites must not be empty")
        elif any(not isinstance(s, str) or not s.strip() for s in self.sites):
            errors.append("sites must be non-empty strings")
        elif len(set(self.sites)) != len(self.sites):
            errors.append("sites must not contain duplicates")

        if not self.event_bus_source or not self.event_bus_source.strip():
            errors.append("event_bus_source must not be empty")

        if not _is_int(self.evaluation_window) or self.evaluation_window <= 0:
            errors.append("evaluation_window must be a positive integer")
        if not _is_number(self.breaching_multiplier) or self.breaching_multiplier <= 0:
            errors.append("breaching_multiplier must be a positive number")
        if not _is_int(self.minimum_views) or self.minimum_views < 0:
            errors.append("minimum_views must be a non-negative integer")

        if not self.aggregate_table.replace("_", "").replace(".", "").isalnum():
            errors.append("aggregate_table must be a plain table name")
        if not _is_int(self.query_timeout_ms) or self.query_timeout_ms <= 0:
            errors.append("query_timeout_ms must be a positive integer")
        if self.publish_timeout_seconds <= 0:
            errors.append("publish_timeout_seconds must be positive")

        if self.status_backend not in STATUS_BACKENDS:
            errors.append(f"status_backend must be one of {', '.join(STATUS_BACKENDS)}")

        if not _is_int(self.schedule_minute) or not 0 <= self.schedule_minute <= 59:
            errors.append("schedule_minute must be between 0 and 59")

        if errors:
            raise ConfigurationError("Invalid evaluator configuration: " + "; ".join(errors))


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return _is_int(value) or (isinstance(value, float) and math.isfinite(value))
