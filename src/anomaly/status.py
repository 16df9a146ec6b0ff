"""
Durable per-site anomaly status.

Only the evaluator reads or writes these records, one run at a time, so a
last-writer-wins store is enough. Two backends are available:
- PostgreSQL: one row per site in ``anomaly_status``
- Redis: one key per site, ``anomaly:status:<site>``, without expiry
"""

import json
from abc import ABC, abstractmethod
from datetime import UTC, datetime

import redis
import structlog

from src.core.database import PostgresConnection

from .errors import ConfigurationError, StatusStoreError
from .models import AnomalyStatus, EvaluatorConfig

logger = structlog.get_logger(__name__)


class StatusStore(ABC):
    """Keyed store of the last decision made for each site"""

    @abstractmethod
    def load_status(self, site: str) -> AnomalyStatus:
        """Current status of ``site``; OK when the site was never evaluated

        Raises:
            StatusStoreError: If the backend could not be read
        """

    @abstractmethod
    def save_status(self, site: str, status: AnomalyStatus, evaluated_hour: datetime) -> bool:
        """Persist a new status. Returns False if the write failed."""

    @abstractmethod
    def delete_status(self, site: str) -> bool:
        """Forget a site that was removed from the configuration"""

    def close(self):
        """Release backend resources"""


class PostgresStatusStore(PostgresConnection, StatusStore):
    """Status records in PostgreSQL"""

    def __init__(self, config: EvaluatorConfig):
        super().__init__(
            host=config.postgres_host,
            port=config.postgres_port,
            database=config.postgres_database,
            user=config.postgres_user,
            password=config.postgres_password,
            statement_timeout_ms=config.query_timeout_ms,
        )
        self.ensure_table_exists()

    def ensure_table_exists(self) -> bool:
        """Create anomaly_status table if it doesn't exist"""
        query = """
            CREATE TABLE IF NOT EXISTS anomaly_status (
                site VARCHAR(255) PRIMARY KEY,
                status VARCHAR(10) NOT NULL,
                evaluated_bucket TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """
        created = self.execute_query(query)
        if created:
            logger.info("Ensured anomaly_status table exists")
        return created

    def load_status(self, site: str) -> AnomalyStatus:
        query = "SELECT status FROM anomaly_status WHERE site = %s"
        try:
            row = self.fetch_one(query, (site,))
        except Exception as e:
            raise StatusStoreError(f"Failed to load status for '{site}': {e}") from e

        if row is None:
            return AnomalyStatus.OK
        return _decode_status(site, row[0])

    def save_status(self, site: str, status: AnomalyStatus, evaluated_hour: datetime) -> bool:
        query = """
            INSERT INTO anomaly_status (site, status, evaluated_bucket, updated_at)
            VALUES (%(site)s, %(status)s, %(evaluated_bucket)s, %(updated_at)s)
            ON CONFLICT (site)
            DO UPDATE SET
                status = EXCLUDED.status,
                evaluated_bucket = EXCLUDED.evaluated_bucket,
                updated_at = EXCLUDED.updated_at
        """
        params = {
            "site": site,
            "status": status.value,
            "evaluated_bucket": evaluated_hour,
            "updated_at": datetime.now(UTC),
        }
        try:
            with self.get_cursor() as cursor:
                cursor.execute(query, params)
            logger.debug("Status saved", site=site, status=status.value)
            return True
        except Exception as e:
            logger.error("Failed to save status", site=site, status=status.value, error=str(e))
            return False

    def delete_status(self, site: str) -> bool:
        return self.execute_query("DELETE FROM anomaly_status WHERE site = %(site)s", {"site": site})


class RedisStatusStore(StatusStore):
    """Status records in Redis"""

    def __init__(self, config: EvaluatorConfig):
        try:
            self.redis = redis.Redis(
                host=config.redis_host,
                port=config.redis_port,
                db=config.redis_db,
                password=config.redis_password,
                decode_responses=True,
                socket_timeout=config.query_timeout_ms / 1000,
                socket_connect_timeout=config.query_timeout_ms / 1000,
            )
            self.redis.ping()
            logger.info("Redis status store initialized", host=config.redis_host, port=config.redis_port)
        except Exception as e:
            logger.error("Failed to initialize Redis", error=str(e))
            raise

    def load_status(self, site: str) -> AnomalyStatus:
        key = self._make_key(site)
        try:
            data = self.redis.get(key)
        except Exception as e:
            raise StatusStoreError(f"Failed to load status for '{site}': {e}") from e

        if data is None:
            return AnomalyStatus.OK
        try:
            record = json.loads(data)
        except json.JSONDecodeError as e:
            raise StatusStoreError(f"Corrupt status record for '{site}'") from e
        return _decode_status(site, record.get("status"))

    def save_status(self, site: str, status: AnomalyStatus, evaluated_hour: datetime) -> bool:
        key = self._make_key(site)
        record = {
            "status": status.value,
            "evaluated_bucket": evaluated_hour.isoformat(),
            "updated_at": datetime.now(UTC).isoformat(),
        }
        try:
            self.redis.set(key, json.dumps(record))
            logger.debug("Status saved to Redis", key=key, status=status.value)
            return True
        except Exception as e:
            logger.error("Failed to save status to Redis", key=key, error=str(e))
            return False

    def delete_status(self, site: str) -> bool:
        key = self._make_key(site)
        try:
            self.redis.delete(key)
            return True
        except Exception as e:
            logger.error("Failed to delete status from Redis", key=key, error=str(e))
            return False

    def close(self):
        self.redis.close()

    def _make_key(self, site: str) -> str:
        """Generate Redis key"""
        return f"anomaly:status:{site}"


def _decode_status(site: str, value) -> AnomalyStatus:
    try:
        return AnomalyStatus(value)
    except ValueError as e:
        raise StatusStoreError(f"Unknown status '{value}' stored for '{site}'") from e


STORE_REGISTRY = {
    "postgres": PostgresStatusStore,
    "redis": RedisStatusStore,
}


def build_status_store(config: EvaluatorConfig) -> StatusStore:
    """Factory for the configured status backend

    Raises:
        ConfigurationError: If the backend is not registered
    """
    if config.status_backend not in STORE_REGISTRY:
        available = ", ".join(STORE_REGISTRY.keys())
        raise ConfigurationError(
            f"Unknown status backend '{config.status_backend}'. Available backends: {available}"
        )
    return STORE_REGISTRY[config.status_backend](config)
