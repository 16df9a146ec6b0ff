"""
Scheduled anomaly evaluator.

Once per tick, decides OK or ALARM for every configured site and emits an
event only when a site's decision differs from its persisted status. Runs are
never retried; the next tick re-evaluates.
"""

import time
from datetime import UTC, datetime

import structlog

from .baseline import BaselineCalculator
from .database import AggregateDatabase
from .errors import (
    BaselineUndefined,
    DataUnavailable,
    PublishFailure,
    SiteSkipped,
    StatusStoreError,
    StatusWriteFailed,
)
from .models import (
    AnomalyEvent,
    AnomalyStatus,
    EvaluationReport,
    EvaluatorConfig,
    HourBucket,
    evaluation_target_hour,
)
from .publisher import EventPublisher
from .status import build_status_store

logger = structlog.get_logger(__name__)


def decide(
    observed_views: int,
    baseline: float,
    breaching_multiplier: float,
    minimum_views: int,
) -> tuple[AnomalyStatus, float]:
    """Decide a site's status for one hour

    Sites below ``minimum_views`` are always OK. Otherwise traffic strictly
    below ``baseline * breaching_multiplier`` is an ALARM.

    Returns:
        The decision and the threshold it was measured against
    """
    threshold = baseline * breaching_multiplier
    if observed_views < minimum_views:
        return AnomalyStatus.OK, threshold
    if observed_views < threshold:
        return AnomalyStatus.ALARM, threshold
    return AnomalyStatus.OK, threshold


class AnomalyEvaluator:
    """Evaluates all configured sites against their traffic baseline"""

    def __init__(self, config: EvaluatorConfig):
        self.config = config

        # Initialize aggregate reader
        self.db = AggregateDatabase(config)
        if not self.db.check_health():
            raise RuntimeError("Database health check failed")

        self.calculator = BaselineCalculator(self.db)
        self.store = build_status_store(config)
        self.publisher = EventPublisher(config)

        self.stats = {
            "runs": 0,
            "sites_evaluated": 0,
            "events_emitted": 0,
            "events_published": 0,
            "sites_skipped": 0,
            "publish_failures": 0,
        }

        logger.info(
            "Evaluator initialized",
            sites=len(config.sites),
            evaluation_window=config.evaluation_window,
            breaching_multiplier=config.breaching_multiplier,
            minimum_views=config.minimum_views,
            status_backend=config.status_backend,
        )

    def run_evaluation(self, now: datetime | None = None) -> list[AnomalyEvent]:
        """Evaluate every site for the hour that closed before ``now``

        Returns:
            The transition events emitted by this run
        """
        return self.run(now).events

    def run(self, now: datetime | None = None) -> EvaluationReport:
        """Evaluate every site, then publish the accumulated events

        Args:
            now: Tick time. Defaults to the current time.

        Returns:
            EvaluationReport with emitted events, skipped sites and publish failures
        """
        now = now or datetime.now(UTC)
        target_hour = evaluation_target_hour(now)
        report = EvaluationReport(target_hour=target_hour)
        start_time = time.time()

        logger.info("Starting evaluation run", target_hour=target_hour.isoformat())

        for site in self.config.sites:
            try:
                event = self.evaluate_site(site, target_hour)
                report.evaluated += 1
                if event is not None:
                    report.events.append(event)
            except StatusStoreError as e:
                report.skipped[site] = e.reason
                logger.warning("Site skipped", site=site, reason=e.reason, error=str(e))
            except SiteSkipped as e:
                report.skipped[site] = e.reason
                logger.info("Site skipped", site=site, reason=e.reason, detail=str(e))
            except Exception as e:
                report.skipped[site] = "error"
                logger.error("Site evaluation failed", site=site, error=str(e), exc_info=True)

        self._publish_all(report)

        elapsed = time.time() - start_time
        self._update_stats(report)

        logger.info(
            "Evaluation run completed",
            target_hour=target_hour.isoformat(),
            sites=len(self.config.sites),
            evaluated=report.evaluated,
            skipped=len(report.skipped),
            events=len(report.events),
            published=report.published,
            publish_failures=len(report.publish_failures),
            elapsed_sec=round(elapsed, 1),
        )
        logger.info(
            "Evaluation run audit",
            audit=True,
            success=report.success,
            target_hour=target_hour.isoformat(),
            failed_sites=report.publish_failures,
        )
        return report

    def evaluate_site(self, site: str, target_hour: datetime) -> AnomalyEvent | None:
        """Evaluate one site for one hour

        Returns:
            An AnomalyEvent if the site's status changed and was persisted, else None

        Raises:
            DataUnavailable: If the hour's view count is missing
            BaselineUndefined: If there is not enough comparable history
            StatusStoreError: If the persisted status could not be read
        """
        bucket = HourBucket(site, target_hour)
        observed_views = self.db.get_view_count(bucket.site, bucket.hour)
        if observed_views is None:
            raise DataUnavailable(f"No view count for {bucket.hour.isoformat()}")

        baseline = self.calculator.compute_baseline(
            site, target_hour, self.config.evaluation_window
        )
        if baseline is None:
            raise BaselineUndefined(
                f"Fewer than {self.config.evaluation_window} comparable hours"
            )

        decision, threshold = decide(
            observed_views,
            baseline,
            self.config.breaching_multiplier,
            self.config.minimum_views,
        )

        current = self.store.load_status(site)

        logger.debug(
            "Site evaluated",
            site=site,
            observed_views=observed_views,
            baseline=round(baseline, 2),
            threshold=round(threshold, 2),
            decision=decision.value,
            current=current.value,
        )

        if decision == current:
            return None

        # No event without a persisted status
        if not self.store.save_status(site, decision, target_hour):
            raise StatusWriteFailed(f"Failed to persist {decision.value} status")

        logger.info(
            "Status transition",
            site=site,
            previous=current.value,
            status=decision.value,
            observed_views=observed_views,
            baseline=round(baseline, 2),
            threshold=round(threshold, 2),
        )

        return AnomalyEvent(
            site=site,
            detail_type=decision.value,
            evaluated_bucket=target_hour,
            observed_views=observed_views,
            baseline=baseline,
            threshold=threshold,
            emitted_at=datetime.now(UTC),
        )

    def forget_site(self, site: str) -> bool:
        """Drop the persisted status of a site that is no longer evaluated"""
        deleted = self.store.delete_status(site)
        logger.info("Site status forgotten", site=site, deleted=deleted)
        return deleted

    def _publish_all(self, report: EvaluationReport):
        """Publish each event independently; failures are logged, not raised"""
        for event in report.events:
            try:
                self.publisher.publish(event)
            except PublishFailure as e:
                report.publish_failures.append(event.site)
                logger.error(
                    "Event publish failed",
                    site=event.site,
                    detail_type=event.bus_detail_type,
                    evaluated_bucket=event.evaluated_bucket.isoformat(),
                    error=str(e),
                )
            except Exception as e:
                report.publish_failures.append(event.site)
                logger.error(
                    "Unexpected publish error",
                    site=event.site,
                    detail_type=event.bus_detail_type,
                    error=str(e),
                    exc_info=True,
                )

    def _update_stats(self, report: EvaluationReport):
        self.stats["runs"] += 1
        self.stats["sites_evaluated"] += report.evaluated
        self.stats["events_emitted"] += len(report.events)
        self.stats["events_published"] += report.published
        self.stats["sites_skipped"] += len(report.skipped)
        self.stats["publish_failures"] += len(report.publish_failures)

    def close(self):
        """Clean up resources"""
        self.publisher.close()
        self.store.close()
        self.db.close()
        logger.info("Evaluator closed")

