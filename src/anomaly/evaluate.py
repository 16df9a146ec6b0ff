"""
CLI for the page-view anomaly evaluator.

Usage:
    python -m src.anomaly.evaluate [options]
"""

import argparse
import os
import sys
import time
from datetime import UTC, datetime, timedelta

import structlog

from src.core.logger import level_from_name, setup_logging

from .errors import ConfigurationError
from .evaluator import AnomalyEvaluator
from .models import (
    EvaluationReport,
    EvaluatorConfig,
    parse_float,
    parse_int,
    parse_sites,
)

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def parse_arguments(argv: list[str] | None = None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description="Hourly page-view anomaly evaluator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
        Examples:
        # Evaluate the last closed hour once (e.g. from cron at minute 20)
        python -m src.anomaly.evaluate --sites '["blog", "shop"]' --source analytics-prod

        # Re-evaluate a given tick
        python -m src.anomaly.evaluate --now 2025-10-02T13:20:00Z

        # Run forever, one tick per hour at minute 20
        python -m src.anomaly.evaluate --schedule
        """,
    )

    # Detection settings
    parser.add_argument(
        "--sites",
        default=os.getenv("SITES"),
        help="JSON array of site identifiers (default: SITES env var)",
    )
    parser.add_argument(
        "--evaluation-window",
        default=os.getenv("EVALUATION_WINDOW"),
        help="Number of preceding days compared at the same hour (default: 7)",
    )
    parser.add_argument(
        "--breaching-multiplier",
        default=os.getenv("BREACHING_MULTIPLIER"),
        help="Fraction of the baseline below which traffic is anomalous (default: 0.5)",
    )
    parser.add_argument(
        "--minimum-views",
        default=os.getenv("MINIMUM_VIEWS"),
        help="Views below which a site is never alarmed (default: 10)",
    )

    # Event bus settings
    parser.add_argument(
        "--source",
        default=os.getenv("EVENT_BUS_SOURCE"),
        help="Source tag of this pipeline's events (default: EVENT_BUS_SOURCE env var)",
    )
    parser.add_argument(
        "--kafka-servers",
        default=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
        help="Kafka bootstrap servers (default: localhost:9092)",
    )
    parser.add_argument(
        "--topic",
        default=os.getenv("KAFKA_EVENT_TOPIC", "anomaly-events"),
        help="Event bus topic (default: anomaly-events)",
    )

    # PostgreSQL settings
    parser.add_argument(
        "--postgres-host",
        default=os.getenv("POSTGRES_HOST", "localhost"),
        help="PostgreSQL host",
    )
    parser.add_argument(
        "--postgres-port",
        default=os.getenv("POSTGRES_PORT", "5432"),
        help="PostgreSQL port",
    )
    parser.add_argument(
        "--postgres-db",
        default=os.getenv("POSTGRES_DB", "analytics_db"),
        help="PostgreSQL database",
    )
    parser.add_argument(
        "--postgres-user",
        default=os.getenv("POSTGRES_USER", "analytics"),
        help="PostgreSQL user",
    )
    parser.add_argument(
        "--postgres-password",
        default=os.getenv("POSTGRES_PASSWORD", "analytics_password"),
        help="PostgreSQL password",
    )
    parser.add_argument(
        "--aggregate-table",
        default=os.getenv("AGGREGATE_TABLE", "page_views_hourly"),
        help="Hourly aggregate table (default: page_views_hourly)",
    )
    parser.add_argument(
        "--query-timeout-ms",
        default=os.getenv("QUERY_TIMEOUT_MS"),
        help="Per-query timeout in milliseconds (default: 30000)",
    )

    # Status store
    parser.add_argument(
        "--status-backend",
        choices=["postgres", "redis"],
        default=os.getenv("STATUS_BACKEND", "postgres"),
        help="Where site statuses are persisted (default: postgres)",
    )
    parser.add_argument(
        "--redis-host",
        default=os.getenv("REDIS_HOST", "localhost"),
        help="Redis host (default: localhost or REDIS_HOST env var)",
    )
    parser.add_argument(
        "--redis-port",
        default=os.getenv("REDIS_PORT", "6379"),
        help="Redis port (default: 6379)",
    )

    # Scheduling
    parser.add_argument(
        "--schedule",
        action="store_true",
        help="Run forever, one tick per hour (default: run once)",
    )
    parser.add_argument(
        "--schedule-minute",
        default=os.getenv("SCHEDULE_MINUTE"),
        help="Minute past the hour at which scheduled ticks run (default: 20)",
    )
    parser.add_argument(
        "--now",
        help="Tick time for a one-off run, ISO-8601 (default: current time)",
    )
    parser.add_argument(
        "--forget",
        metavar="SITE",
        nargs="+",
        help="Delete the persisted status of removed sites, then exit",
    )

    # Logging
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def build_config(args) -> EvaluatorConfig:
    """Build and validate configuration from arguments

    Raises:
        ConfigurationError: If a setting is missing or malformed
    """
    if not args.source:
        raise ConfigurationError("EVENT_BUS_SOURCE is required")

    return EvaluatorConfig(
        sites=parse_sites(args.sites),
        event_bus_source=args.source,
        evaluation_window=parse_int(args.evaluation_window, "EVALUATION_WINDOW", 7),
        breaching_multiplier=parse_float(args.breaching_multiplier, "BREACHING_MULTIPLIER", 0.5),
        minimum_views=parse_int(args.minimum_views, "MINIMUM_VIEWS", 10),
        kafka_bootstrap_servers=args.kafka_servers,
        kafka_event_topic=args.topic,
        postgres_host=args.postgres_host,
        postgres_port=parse_int(args.postgres_port, "POSTGRES_PORT", 5432),
        postgres_database=args.postgres_db,
        postgres_user=args.postgres_user,
        postgres_password=args.postgres_password,
        aggregate_table=args.aggregate_table,
        query_timeout_ms=parse_int(args.query_timeout_ms, "QUERY_TIMEOUT_MS", 30000),
        status_backend=args.status_backend,
        redis_host=args.redis_host,
        redis_port=parse_int(args.redis_port, "REDIS_PORT", 6379),
        redis_password=os.getenv("REDIS_PASSWORD") or None,
        schedule_minute=parse_int(args.schedule_minute, "SCHEDULE_MINUTE", 20),
    )


def parse_tick_time(raw: str | None) -> datetime | None:
    """Parse the --now option"""
    if not raw:
        return None
    try:
        ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as e:
        raise ConfigurationError(f"--now must be an ISO-8601 timestamp, got '{raw}'") from e
    return ts if ts.tzinfo else ts.replace(tzinfo=UTC)


def seconds_until_next_tick(now: datetime, minute: int) -> float:
    """Seconds from ``now`` until the next ``minute`` past the hour"""
    tick = now.replace(minute=minute, second=0, microsecond=0)
    if tick <= now:
        tick += timedelta(hours=1)
    return (tick - now).total_seconds()


def evaluate_once(config: EvaluatorConfig, now: datetime | None = None) -> EvaluationReport:
    """Run a single evaluation tick"""
    evaluator = AnomalyEvaluator(config)
    try:
        return evaluator.run(now)
    finally:
        evaluator.close()


def evaluate_scheduled(config: EvaluatorConfig):
    """Run one tick per hour, forever

    Ticks run strictly one after another. A failed tick is logged and never
    retried; the next hour evaluates again.
    """
    logger.info("Starting scheduled evaluation", minute=config.schedule_minute)

    iteration = 0
    while True:
        sleep_seconds = seconds_until_next_tick(datetime.now(UTC), config.schedule_minute)
        logger.info("Sleeping until next tick", sleep_seconds=round(sleep_seconds))
        time.sleep(sleep_seconds)

        iteration += 1
        try:
            report = evaluate_once(config)
            logger.info(
                "Tick completed",
                iteration=iteration,
                events=len(report.events),
                publish_failures=len(report.publish_failures),
            )
        except Exception as e:
            logger.error("Tick failed", iteration=iteration, error=str(e), exc_info=True)


def forget_sites(config: EvaluatorConfig, sites: list[str]) -> bool:
    """Delete persisted statuses of sites that were removed"""
    evaluator = AnomalyEvaluator(config)
    try:
        return all([evaluator.forget_site(site) for site in sites])
    finally:
        evaluator.close()


def main(argv: list[str] | None = None):
    """Main entry point"""
    args = parse_arguments(argv)

    setup_logging(level=level_from_name(args.log_level))

    try:
        config = build_config(args)
        now = parse_tick_time(args.now)
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        return EXIT_CONFIG_ERROR

    logger.info("Starting anomaly evaluator", sites=config.sites, source=config.event_bus_source)

    try:
        if args.forget:
            return EXIT_OK if forget_sites(config, args.forget) else EXIT_FAILURE

        if args.schedule:
            evaluate_scheduled(config)
            return EXIT_OK

        report = evaluate_once(config, now)
        if not report.success:
            logger.error("Evaluation completed with publish failures", sites=report.publish_failures)
            return EXIT_FAILURE

        logger.info("Evaluation completed successfully", events=len(report.events))
        return EXIT_OK

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_OK

    except Exception as e:
        logger.error("Evaluation failed", error=str(e), exc_info=True)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
