"""
PostgreSQL connection shared by the aggregate reader and the status store.

Each connection can carry a server-side statement_timeout so that no single
query can hold up an evaluation run.
"""

from contextlib import contextmanager
from typing import Any

import psycopg2
import structlog

logger = structlog.get_logger(__name__)

CONNECT_TIMEOUT_SECONDS = 10


class PostgresConnection:
    """Base class for PostgreSQL connection management"""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        statement_timeout_ms: int | None = None,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.statement_timeout_ms = statement_timeout_ms
        self.connection = None
        self._connect()

    def _connect(self):
        params: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "connect_timeout": CONNECT_TIMEOUT_SECONDS,
        }
        if self.statement_timeout_ms:
            params["options"] = f"-c statement_timeout={int(self.statement_timeout_ms)}"

        try:
            self.connection = psycopg2.connect(**params)
        except Exception as e:
            logger.error("PostgreSQL connection failed", host=self.host, error=str(e))
            raise

        logger.info(
            "Connected to PostgreSQL",
            host=self.host,
            database=self.database,
            statement_timeout_ms=self.statement_timeout_ms,
        )

    @contextmanager
    def get_cursor(self):
        """Cursor that commits on success and rolls back on any error"""
        cursor = self.connection.cursor()
        try:
            yield cursor
            self.connection.commit()
        except Exception as e:
            self.connection.rollback()
            logger.error("Transaction rolled back", error=str(e))
            raise
        finally:
            cursor.close()

    def fetch_one(self, query: str, params: tuple | dict[str, Any] | None = None) -> tuple | None:
        """First row of a query, or None. Errors propagate to the caller."""
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            return cursor.fetchone()

    def execute_query(self, query: str, params: dict[str, Any] | None = None) -> bool:
        """Run a statement; False if it failed"""
        try:
            with self.get_cursor() as cursor:
                cursor.execute(query, params or {})
            return True
        except Exception as e:
            logger.error("Statement failed", error=str(e), query=query)
            return False

    def check_health(self) -> bool:
        try:
            row = self.fetch_one("SELECT 1")
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return False
        return row is not None and row[0] == 1

    def close(self):
        if self.connection:
            self.connection.close()
            logger.info("PostgreSQL connection closed", host=self.host)
