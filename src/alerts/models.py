"""
Configuration for the alert worker.
"""

from dataclasses import dataclass, field

from src.anomaly.errors import ConfigurationError


@dataclass(frozen=True)
class AlertPolicy:
    """Which transitions are notified, and where"""

    notify_on_alarm: bool = True
    notify_on_ok: bool = True
    channel_ref: str = ""  # http(s) URL for a webhook, otherwise a Kafka topic

    def allows(self, detail_type: str) -> bool:
        """Whether an event of ``detail_type`` ("alarm" or "ok") is notified"""
        if detail_type == "alarm":
            return self.notify_on_alarm
        if detail_type == "ok":
            return self.notify_on_ok
        return False


@dataclass
class AlertWorkerConfig:
    """Configuration for the alert worker"""

    event_bus_source: str
    policy: AlertPolicy = field(default_factory=AlertPolicy)

    # Kafka settings (event bus)
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_event_topic: str = "anomaly-events"
    kafka_group_id: str = "anomaly-alert-worker"
    kafka_auto_offset_reset: str = "earliest"
    max_poll_records: int = 100

    # Channel settings
    webhook_timeout_seconds: float = 10.0
    webhook_headers: dict[str, str] = field(default_factory=dict)
    publish_timeout_seconds: float = 10.0

    # Pause before rewinding to a message whose notification failed
    redelivery_backoff_seconds: float = 5.0

    def __post_init__(self):
        errors = []
        if not self.event_bus_source or not self.event_bus_source.strip():
            errors.append("event_bus_source must not be empty")
        if not self.policy.channel_ref or not self.policy.channel_ref.strip():
            errors.append("channel_ref must not be empty")
        if self.kafka_auto_offset_reset not in ("earliest", "latest"):
            errors.append("kafka_auto_offset_reset must be earliest or latest")
        if self.webhook_timeout_seconds <= 0 or self.publish_timeout_seconds <= 0:
            errors.append("timeouts must be positive")
        if self.redelivery_backoff_seconds < 0:
            errors.append("redelivery_backoff_seconds must not be negative")
        if errors:
            raise ConfigurationError("Invalid alert worker configuration: " + "; ".join(errors))

    @property
    def uses_webhook(self) -> bool:
        return self.policy.channel_ref.startswith(("http://", "https://"))
