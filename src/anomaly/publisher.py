"""
Kafka producer for anomaly transition events.
"""

import json

import structlog
from kafka import KafkaProducer
from kafka.errors import KafkaError

from .errors import PublishFailure
from .models import AnomalyEvent, EvaluatorConfig

logger = structlog.get_logger(__name__)


class EventPublisher:
    """Publishes AnomalyEvents to the shared event bus topic

    Each publish waits for the broker acknowledgement so a failure surfaces on
    the event it belongs to.
    """

    def __init__(self, config: EvaluatorConfig):
        self.source = config.event_bus_source
        self.topic = config.kafka_event_topic
        self.timeout = config.publish_timeout_seconds

        try:
            self.producer = KafkaProducer(
                bootstrap_servers=config.kafka_bootstrap_servers,
                key_serializer=lambda k: k.encode("utf-8"),
                value_serializer=lambda v: json.dumps(v).encode("utf-8"),
                acks="all",
                # Redelivery is the consumer side's job; never duplicate here
                retries=0,
            )
            logger.info(
                "Kafka producer initialized",
                bootstrap_servers=config.kafka_bootstrap_servers,
                topic=self.topic,
                source=self.source,
            )
        except Exception as e:
            logger.error("Failed to initialize Kafka producer", error=str(e))
            raise

    def publish(self, event: AnomalyEvent) -> None:
        """Publish one event and wait for the acknowledgement

        Raises:
            PublishFailure: If the broker rejected the event or did not answer in time
        """
        envelope = event.to_envelope(self.source)
        try:
            future = self.producer.send(self.topic, key=event.site, value=envelope)
            metadata = future.get(timeout=self.timeout)
        except KafkaError as e:
            raise PublishFailure(f"Failed to publish {event.bus_detail_type} for '{event.site}': {e}") from e

        logger.info(
            "Event published",
            site=event.site,
            detail_type=event.bus_detail_type,
            partition=metadata.partition,
            offset=metadata.offset,
        )

    def close(self):
        """Flush pending sends and close the producer"""
        try:
            self.producer.flush(timeout=self.timeout)
        finally:
            self.producer.close()
            logger.info("Kafka producer closed")
