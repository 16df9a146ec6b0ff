"""
Baseline calculator.

The baseline for a site and hour is the mean view count of the same UTC
hour-of-day on each of the ``window`` preceding days. Comparing an hour only
with the same hour on other days removes the daily traffic cycle. Day-of-week
alignment is not applied.
"""

from datetime import datetime, timedelta
from typing import Protocol

import pandas as pd
import structlog

from .models import truncate_to_hour

logger = structlog.get_logger(__name__)


class AggregateReader(Protocol):
    """What the calculator needs from the aggregate store"""

    def get_view_counts(self, site: str, hours: list[datetime]) -> pd.DataFrame: ...


def comparable_hours(target_hour: datetime, window: int) -> list[datetime]:
    """Same hour-of-day on each of the ``window`` days before ``target_hour``, newest first"""
    target_hour = truncate_to_hour(target_hour)
    return [target_hour - timedelta(days=offset) for offset in range(1, window + 1)]


class BaselineCalculator:
    """Derives expected traffic from comparable historical hours"""

    def __init__(self, reader: AggregateReader):
        self.reader = reader

    def compute_baseline(self, site: str, target_hour: datetime, window: int) -> float | None:
        """Mean views over the ``window`` comparable hours before ``target_hour``

        Args:
            site: Site identifier
            target_hour: Hour being evaluated
            window: Number of comparable hours required

        Returns:
            The baseline, or None when any comparable hour is missing or the
            reader failed. Missing hours are never skipped or filled in.
        """
        if window <= 0:
            raise ValueError("window must be positive")

        hours = comparable_hours(target_hour, window)
        df = self.reader.get_view_counts(site, hours)

        if df is None or df.empty:
            logger.debug("No comparable history", site=site, required=window)
            return None

        requested = pd.DatetimeIndex(pd.to_datetime(hours, utc=True))
        stamps = pd.to_datetime(df["hour_bucket"], utc=True)
        df = df.assign(hour_bucket=stamps)
        # Negative counts are corrupt rows and count as missing samples
        df = df[df["views"].notna() & (df["views"] >= 0)]
        df = df[df["views"].notna() & (df["views"] >= 0)]
        df = df[df["hour_bucket"].isin(requested)].drop_duplicates(subset="hour_bucket")

        missing = requested.difference(pd.DatetimeIndex(df["hour_bucket"]))
        if len(missing) > 0:
            logger.debug(
                "Insufficient comparable history",
                site=site,
                found=len(df),
                required=window,
                first_missing=missing[0].isoformat(),
            )
            return None

        baseline = float(df["views"].astype(float).mean())
        logger.debug(
            "Baseline computed",
            site=site,
            target_hour=truncate_to_hour(target_hour).isoformat(),
            window=window,
            baseline=round(baseline, 2),
        )
        return baseline
