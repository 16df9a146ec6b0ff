"""
Alert Worker - CLI Entry Point
Consumes anomaly events from the event bus and sends notifications

Usage:
    python -m src.alerts.consume [options]
"""

import argparse
import os
import sys

import structlog

from src.anomaly.errors import ConfigurationError
from src.anomaly.models import parse_bool, parse_float
from src.core.logger import level_from_name, setup_logging

from .models import AlertPolicy, AlertWorkerConfig
from .worker import AlertWorker

logger = structlog.get_logger(__name__)


def parse_arguments(argv: list[str] | None = None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description="Alert worker for page-view anomaly events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
        Examples:
        # Notify a webhook on alarms and recoveries
        python -m src.alerts.consume --source analytics-prod --channel https://hooks.example.com/alerts

        # Alarms only, to a Kafka topic
        python -m src.alerts.consume --source analytics-prod --channel alerts --alert-on-ok false

        # Using environment variables
        export EVENT_BUS_SOURCE=analytics-prod
        export ALERT_CHANNEL=https://hooks.example.com/alerts
        python -m src.alerts.consume
        """,
    )

    # Event bus settings
    parser.add_argument(
        "--source",
        default=os.getenv("EVENT_BUS_SOURCE"),
        help="Source tag of the evaluator's events (default: EVENT_BUS_SOURCE env var)",
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
    parser.add_argument(
        "--group-id",
        default=os.getenv("KAFKA_GROUP_ID", "anomaly-alert-worker"),
        help="Kafka consumer group ID (default: anomaly-alert-worker)",
    )
    parser.add_argument(
        "--offset-reset",
        choices=["earliest", "latest"],
        default="earliest",
        help="Auto offset reset (default: earliest)",
    )

    # Alert policy
    parser.add_argument(
        "--channel",
        default=os.getenv("ALERT_CHANNEL"),
        help="Webhook URL or Kafka topic for notifications (default: ALERT_CHANNEL env var)",
    )
    parser.add_argument(
        "--alert-on-alarm",
        default=os.getenv("ALERT_ON_ALARM"),
        help="Notify when a site enters ALARM, true/false (default: true)",
    )
    parser.add_argument(
        "--alert-on-ok",
        default=os.getenv("ALERT_ON_OK"),
        help="Notify when a site returns to OK, true/false (default: true)",
    )
    parser.add_argument(
        "--webhook-timeout",
        default=os.getenv("WEBHOOK_TIMEOUT_SECONDS"),
        help="Webhook request timeout in seconds (default: 10)",
    )

    parser.add_argument(
        "--redelivery-backoff",
        default=os.getenv("REDELIVERY_BACKOFF_SECONDS"),
        help="Seconds to wait before a failed notification is delivered again (default: 5)",
    )

    # Runtime settings
    parser.add_argument(
        "--duration",
        type=int,
        help="Run for N seconds then stop (default: infinite)",
    )

    # Logging
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def build_config(args) -> AlertWorkerConfig:
    """Build and validate configuration from arguments

    Raises:
        ConfigurationError: If a setting is missing or malformed
    """
    if not args.source:
        raise ConfigurationError("EVENT_BUS_SOURCE is required")
    if not args.channel:
        raise ConfigurationError("ALERT_CHANNEL is required")

    policy = AlertPolicy(
        notify_on_alarm=parse_bool(args.alert_on_alarm, "ALERT_ON_ALARM", True),
        notify_on_ok=parse_bool(args.alert_on_ok, "ALERT_ON_OK", True),
        channel_ref=args.channel,
    )
    return AlertWorkerConfig(
        event_bus_source=args.source,
        policy=policy,
        kafka_bootstrap_servers=args.kafka_servers,
        kafka_event_topic=args.topic,
        kafka_group_id=args.group_id,
        kafka_auto_offset_reset=args.offset_reset,
        webhook_timeout_seconds=parse_float(args.webhook_timeout, "WEBHOOK_TIMEOUT_SECONDS", 10.0),
        redelivery_backoff_seconds=parse_float(
            args.redelivery_backoff, "REDELIVERY_BACKOFF_SECONDS", 5.0
        ),
    )


def main(argv: list[str] | None = None):
    """Main entry point"""
    args = parse_arguments(argv)

    setup_logging(level=level_from_name(args.log_level))

    try:
        config = build_config(args)
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        return 2

    logger.info("Starting alert worker", source=config.event_bus_source)

    try:
        worker = AlertWorker(config)
        worker.run(duration_seconds=args.duration)

        logger.info("Worker completed successfully")
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0

    except Exception as e:
        logger.error("Worker failed", error=str(e), exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
