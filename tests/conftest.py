"""
Pytest configuration and shared fixtures.
"""

from datetime import UTC, datetime, timedelta

import pandas as pd
import pytest

from src.alerts.models import AlertPolicy, AlertWorkerConfig
from src.anomaly.errors import PublishFailure, StatusStoreError
from src.anomaly.models import AnomalyStatus, EvaluatorConfig, truncate_to_hour
from src.anomaly.status import StatusStore


class FakeAggregates:
    """In-memory stand-in for AggregateDatabase"""

    def __init__(self):
        self.counts: dict[tuple[str, datetime], int] = {}
        self.closed = False

    def set(self, site: str, hour: datetime, views: int):
        self.counts[(site, truncate_to_hour(hour))] = views

    def seed_history(self, site: str, target_hour: datetime, values: list[int]):
        """values[0] is the day before target_hour, values[1] two days before, ..."""
        for offset, views in enumerate(values, start=1):
            self.set(site, target_hour - timedelta(days=offset), views)

    def check_health(self) -> bool:
        return True

    def get_view_count(self, site: str, hour: datetime) -> int | None:
        return self.counts.get((site, truncate_to_hour(hour)))

    def get_view_counts(self, site: str, hours: list[datetime]) -> pd.DataFrame:
        rows = [
            (truncate_to_hour(h), self.counts[(site, truncate_to_hour(h))])
            for h in hours
            if (site, truncate_to_hour(h)) in self.counts
        ]
        return pd.DataFrame(rows, columns=["hour_bucket", "views"])

    def close(self):
        self.closed = True


class FakeStatusStore(StatusStore):
    """In-memory StatusStore with switchable failures"""

    def __init__(self):
        self.statuses: dict[str, AnomalyStatus] = {}
        self.unreadable: set[str] = set()
        self.unwritable: set[str] = set()
        self.writes: list[tuple[str, AnomalyStatus, datetime]] = []

    def load_status(self, site: str) -> AnomalyStatus:
        if site in self.unreadable:
            raise StatusStoreError(f"cannot read {site}")
        return self.statuses.get(site, AnomalyStatus.OK)

    def save_status(self, site: str, status: AnomalyStatus, evaluated_hour: datetime) -> bool:
        if site in self.unwritable:
            return False
        self.statuses[site] = status
        self.writes.append((site, status, evaluated_hour))
        return True

    def delete_status(self, site: str) -> bool:
        self.statuses.pop(site, None)
        return True


class FakePublisher:
    """Records published events; fails for sites listed in ``failing``"""

    def __init__(self):
        self.published = []
        self.failing: set[str] = set()
        self.closed = False

    def publish(self, event):
        if event.site in self.failing:
            raise PublishFailure(f"broker rejected {event.site}")
        self.published.append(event)

    def close(self):
        self.closed = True


# Evaluator fixtures
@pytest.fixture
def evaluator_config():
    """Evaluator configuration matching the reference scenarios."""
    return EvaluatorConfig(
        sites=["blog"],
        event_bus_source="analytics-test",
        evaluation_window=3,
        breaching_multiplier=0.5,
        minimum_views=10,
        kafka_bootstrap_servers="localhost:9092",
        kafka_event_topic="test-anomaly-events",
        postgres_database="test_db",
        postgres_user="test_user",
        postgres_password="test_password",
    )


@pytest.fixture
def aggregates():
    return FakeAggregates()


@pytest.fixture
def status_store():
    return FakeStatusStore()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def tick():
    """A tick at 20 past the hour; evaluates 2025-10-02 12:00 UTC."""
    return datetime(2025, 10, 2, 13, 20, tzinfo=UTC)


# Worker fixtures
@pytest.fixture
def worker_config():
    """Alert worker configuration notifying on both transitions."""
    return AlertWorkerConfig(
        event_bus_source="analytics-test",
        policy=AlertPolicy(notify_on_alarm=True, notify_on_ok=True, channel_ref="test-alerts"),
        kafka_bootstrap_servers="localhost:9092",
        kafka_event_topic="test-anomaly-events",
        kafka_group_id="test-group",
        redelivery_backoff_seconds=0,
    )
