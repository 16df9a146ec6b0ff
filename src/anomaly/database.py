"""
Read-only PostgreSQL access to the hourly page-view aggregates.

The aggregate table is written by the ingestion side of the platform:
    page_views_hourly(site TEXT, hour_bucket TIMESTAMPTZ, views BIGINT,
                      PRIMARY KEY (site, hour_bucket))
"""

from datetime import datetime

import pandas as pd
import structlog

from src.core.database import PostgresConnection

from .models import EvaluatorConfig, truncate_to_hour

logger = structlog.get_logger(__name__)


class AggregateDatabase(PostgresConnection):
    """Hourly view-count queries for the evaluator and baseline calculator

    Every query is bounded by the connection's statement_timeout. A failed or
    timed-out query is logged and reported as missing data, never raised.
    """

    def __init__(self, config: EvaluatorConfig):
        super().__init__(
            host=config.postgres_host,
            port=config.postgres_port,
            database=config.postgres_database,
            user=config.postgres_user,
            password=config.postgres_password,
            statement_timeout_ms=config.query_timeout_ms,
        )
        self.table = config.aggregate_table

    def get_view_count(self, site: str, hour: datetime) -> int | None:
        """View count for one site and hour

        Returns:
            The count, or None if the hour has no row or the query failed
        """
        hour = truncate_to_hour(hour)
        query = f"""
            SELECT views
            FROM {self.table}
            WHERE site = %s
              AND hour_bucket = %s
        """

        try:
            row = self.fetch_one(query, (site, hour))
        except Exception as e:
            logger.warning(
                "Failed to query view count",
                site=site,
                hour=hour.isoformat(),
                error=str(e),
            )
            return None

        if row is None or row[0] is None:
            logger.debug("No view count for hour", site=site, hour=hour.isoformat())
            return None

        views = int(row[0])
        if views < 0:
            logger.warning("Negative view count ignored", site=site, hour=hour.isoformat())
            return None
        return views

    def get_view_counts(self, site: str, hours: list[datetime]) -> pd.DataFrame:
        """View counts for a set of hours of one site

        Args:
            site: Site identifier
            hours: Hours to fetch (truncated to the hour)

        Returns:
            DataFrame with columns ['hour_bucket', 'views'], one row per hour found.
            Empty if nothing was found or the query failed.
        """
        if not hours:
            return pd.DataFrame(columns=["hour_bucket", "views"])

        query = f"""
            SELECT hour_bucket, views
            FROM {self.table}
            WHERE site = %s
              AND hour_bucket = ANY(%s)
              AND views IS NOT NULL
              AND views >= 0
            ORDER BY hour_bucket
        """

        try:
            with self.get_cursor() as cursor:
                cursor.execute(query, (site, [truncate_to_hour(h) for h in hours]))
                columns = [desc[0] for desc in cursor.description]
                rows = cursor.fetchall()

                df = pd.DataFrame(rows, columns=columns)
                logger.debug(
                    "Queried comparable hours",
                    site=site,
                    requested=len(hours),
                    rows=len(df),
                )
                return df

        except Exception as e:
            logger.warning(
                "Failed to query comparable hours",
                site=site,
                requested=len(hours),
                error=str(e),
            )
            return pd.DataFrame(columns=["hour_bucket", "views"])
