"""
Notification channels for formatted alerts.

A channel delivers one message per call and never retries; redelivery of the
underlying event by the bus is the only retry path.
"""

import json
from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog
from kafka import KafkaProducer
from kafka.errors import KafkaError

from src.anomaly.errors import NotificationFailure

from .models import AlertWorkerConfig

logger = structlog.get_logger(__name__)


class NotificationChannel(ABC):
    """Abstract base class for all notification channels"""

    @property
    @abstractmethod
    def channel_name(self) -> str:
        """Channel identifier used in logs"""

    @abstractmethod
    def send(self, subject: str, message: str, payload: dict[str, Any]) -> None:
        """Deliver one alert

        Args:
            subject: Short summary line
            message: Human-readable alert body
            payload: The event's flat record, for machine consumers

        Raises:
            NotificationFailure: If the channel did not accept the alert
        """

    def close(self):
        """Release channel resources"""


class WebhookChannel(NotificationChannel):
    """Delivers alerts by POSTing a JSON body to a URL"""

    def __init__(self, url: str, headers: dict[str, str] | None = None, timeout: float = 10.0):
        if not url:
            raise ValueError("Webhook url must not be empty")
        self.url = url
        self.client = httpx.Client(
            timeout=timeout,
            headers={"Content-Type": "application/json", **(headers or {})},
        )

    @property
    def channel_name(self) -> str:
        return "webhook"

    def send(self, subject: str, message: str, payload: dict[str, Any]) -> None:
        body = {"subject": subject, "message": message, "event": payload}
        try:
            response = self.client.post(self.url, json=body)
        except httpx.TimeoutException as e:
            raise NotificationFailure(f"Webhook request timed out: {self.url}") from e
        except httpx.HTTPError as e:
            raise NotificationFailure(f"Webhook request failed: {e}") from e

        if not response.is_success:
            raise NotificationFailure(
                f"Webhook returned {response.status_code}: {response.text[:200]}"
            )

    def close(self):
        self.client.close()


class KafkaTopicChannel(NotificationChannel):
    """Delivers alerts as JSON messages on a Kafka topic"""

    def __init__(self, bootstrap_servers: str, topic: str, timeout: float = 10.0):
        self.topic = topic
        self.timeout = timeout
        try:
            self.producer = KafkaProducer(
                bootstrap_servers=bootstrap_servers,
                key_serializer=lambda k: k.encode("utf-8"),
                value_serializer=lambda v: json.dumps(v).encode("utf-8"),
                retries=0,
            )
            logger.info("Alert topic producer initialized", topic=topic)
        except Exception as e:
            logger.error("Failed to initialize alert topic producer", error=str(e))
            raise

    @property
    def channel_name(self) -> str:
        return f"kafka:{self.topic}"

    def send(self, subject: str, message: str, payload: dict[str, Any]) -> None:
        value = {"subject": subject, "message": message, "event": payload}
        try:
            future = self.producer.send(self.topic, key=str(payload.get("site", "")), value=value)
            future.get(timeout=self.timeout)
        except KafkaError as e:
            raise NotificationFailure(f"Failed to publish alert to '{self.topic}': {e}") from e

    def close(self):
        self.producer.close()


def build_channel(config: AlertWorkerConfig) -> NotificationChannel:
    """Channel for the policy's channel_ref: a webhook URL or a Kafka topic name"""
    if config.uses_webhook:
        return WebhookChannel(
            config.policy.channel_ref,
            headers=config.webhook_headers,
            timeout=config.webhook_timeout_seconds,
        )
    return KafkaTopicChannel(
        config.kafka_bootstrap_servers,
        config.policy.channel_ref,
        timeout=config.publish_timeout_seconds,
    )
