"""
Alert worker.

Consumes anomaly transition events from the event bus and turns the ones
allowed by the alert policy into notifications. Each event is handled on its
own payload only: events may arrive late, out of order or more than once.
"""

import json
import time
from typing import Any

import structlog
from kafka import KafkaConsumer, TopicPartition

from src.anomaly.errors import NotificationFailure
from src.anomaly.models import EVENT_DETAIL_TYPES, AnomalyEvent

from .channels import build_channel
from .models import AlertWorkerConfig

logger = structlog.get_logger(__name__)

ANOMALY_DETAIL_TYPES = set(EVENT_DETAIL_TYPES.values())

# on_event outcomes
SENT = "sent"
IGNORED = "ignored"
MALFORMED = "malformed"
SUPPRESSED = "suppressed"
FAILED = "failed"


def format_alert(event: AnomalyEvent) -> tuple[str, str]:
    """Human-readable subject and body for an anomaly event"""
    hour = event.evaluated_bucket.isoformat()
    if event.detail_type == "alarm":
        subject = f"[ALARM] Low traffic on {event.site}"
        summary = f"Page views for site '{event.site}' are anomalously low."
    else:
        subject = f"[OK] Traffic recovered on {event.site}"
        summary = f"Page views for site '{event.site}' are back to normal."

    message = "\n".join(
        [
            summary,
            f"Hour: {hour}",
            f"Observed views: {event.observed_views}",
            f"Baseline: {event.baseline:.2f}",
            f"Threshold: {event.threshold:.2f}",
        ]
    )
    return subject, message


class AlertWorker:
    """Event bus consumer that notifies on anomaly transitions"""

    def __init__(self, config: AlertWorkerConfig):
        self.config = config
        self.policy = config.policy

        self.channel = build_channel(config)

        try:
            self.consumer = KafkaConsumer(
                config.kafka_event_topic,
                bootstrap_servers=config.kafka_bootstrap_servers,
                group_id=config.kafka_group_id,
                auto_offset_reset=config.kafka_auto_offset_reset,
                enable_auto_commit=False,
                max_poll_records=config.max_poll_records,
                value_deserializer=_deserialize,
            )
            logger.info(
                "Kafka consumer initialized",
                bootstrap_servers=config.kafka_bootstrap_servers,
                topic=config.kafka_event_topic,
                group_id=config.kafka_group_id,
            )
        except Exception as e:
            logger.error("Failed to initialize Kafka consumer", error=str(e))
            raise

        self.stats = {
            "total_consumed": 0,
            "ignored": 0,
            "parse_errors": 0,
            "suppressed": 0,
            "notifications_sent": 0,
            "notification_failures": 0,
            "redeliveries": 0,
        }

        logger.info(
            "Alert worker initialized",
            source=config.event_bus_source,
            channel=self.channel.channel_name,
            notify_on_alarm=self.policy.notify_on_alarm,
            notify_on_ok=self.policy.notify_on_ok,
        )

    def run(self, duration_seconds: int = None):
        """Run the worker

        Offsets are committed after each handled message. When the channel
        fails, the offset is not committed and the partition is rewound to the
        message, so the bus delivers it again.

        Args:
            duration_seconds: Optional duration in seconds. If None, runs indefinitely.
        """
        logger.info(
            "Starting alert worker",
            topic=self.config.kafka_event_topic,
            duration=duration_seconds if duration_seconds else "indefinite",
        )

        start_time = time.time()

        try:
            for message in self.consumer:
                self.stats["total_consumed"] += 1

                if self.on_event(message.value) == FAILED:
                    self._redeliver(message)
                else:
                    self.consumer.commit()

                elapsed = time.time() - start_time
                if duration_seconds and elapsed >= duration_seconds:
                    logger.info("Duration limit reached", duration_seconds=duration_seconds)
                    break

        except KeyboardInterrupt:
            logger.info("Received interrupt signal, stopping worker")

        except Exception as e:
            logger.error("Worker error", error=str(e), exc_info=True)
            raise

        finally:
            self.close()

            elapsed = time.time() - start_time
            logger.info(
                "Alert worker stopped",
                elapsed_sec=round(elapsed, 1),
                **self.stats,
            )

    def on_event(self, envelope: Any) -> str:
        """Handle one delivered envelope

        Returns:
            One of SENT, IGNORED, MALFORMED, SUPPRESSED or FAILED. Only FAILED
            leaves the message for the bus to deliver again.
        """
        if not self._is_anomaly_event(envelope):
            self.stats["ignored"] += 1
            return IGNORED

        try:
            event = AnomalyEvent.from_detail(envelope["detail"])
            if event.bus_detail_type != envelope["detail-type"]:
                raise ValueError("detail-type does not match the event detail")
        except (KeyError, ValueError, TypeError) as e:
            logger.error("Failed to parse anomaly event", error=str(e), envelope=envelope)
            self.stats["parse_errors"] += 1
            self._audit(envelope.get("detail"), MALFORMED)
            return MALFORMED

        if not self.policy.allows(event.detail_type):
            logger.debug(
                "Notification suppressed by policy",
                site=event.site,
                detail_type=event.detail_type,
            )
            self.stats["suppressed"] += 1
            self._audit(event.to_detail(), SUPPRESSED)
            return SUPPRESSED

        subject, message = format_alert(event)
        try:
            self.channel.send(subject, message, event.to_detail())
        except NotificationFailure as e:
            self.stats["notification_failures"] += 1
            logger.error(
                "Notification failed",
                channel=self.channel.channel_name,
                site=event.site,
                detail_type=event.detail_type,
                error=str(e),
            )
            self._audit(event.to_detail(), FAILED)
            return FAILED
        except Exception as e:
            self.stats["notification_failures"] += 1
            logger.error(
                "Notification channel unexpected error",
                channel=self.channel.channel_name,
                site=event.site,
                error=str(e),
                exc_info=True,
            )
            self._audit(event.to_detail(), FAILED)
            return FAILED

        self.stats["notifications_sent"] += 1
        logger.info(
            "Notification sent",
            channel=self.channel.channel_name,
            site=event.site,
            detail_type=event.detail_type,
            evaluated_bucket=event.evaluated_bucket.isoformat(),
        )
        self._audit(event.to_detail(), SENT)
        return SENT

    def _audit(self, detail: Any, outcome: str):
        """One audit line per anomaly event handled; success=False needs attention"""
        detail = detail if isinstance(detail, dict) else {}
        logger.info(
            "Alert worker audit",
            audit=True,
            success=outcome in (SENT, SUPPRESSED),
            outcome=outcome,
            site=detail.get("site"),
            detail_type=detail.get("detail_type"),
            evaluated_bucket=detail.get("evaluated_bucket"),
        )

    def _redeliver(self, message):
        """Rewind the partition so the bus delivers ``message`` again"""
        self.stats["redeliveries"] += 1
        if self.config.redelivery_backoff_seconds > 0:
            time.sleep(self.config.redelivery_backoff_seconds)
        self.consumer.seek(TopicPartition(message.topic, message.partition), message.offset)
        logger.warning(
            "Message left uncommitted for redelivery",
            topic=message.topic,
            partition=message.partition,
            offset=message.offset,
        )

    def _is_anomaly_event(self, envelope: Any) -> bool:
        """Only this pipeline's anomaly events; everything else on the bus is ignored"""
        if not isinstance(envelope, dict):
            return False
        return (
            envelope.get("source") == self.config.event_bus_source
            and envelope.get("detail-type") in ANOMALY_DETAIL_TYPES
        )

    def close(self):
        """Clean up resources"""
        self.consumer.close()
        self.channel.close()


def _deserialize(raw: bytes | None) -> Any:
    """Decode a bus message; null or undecodable values become None and are ignored"""
    if raw is None:
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Undecodable message on event bus")
        return None
