"""
Kafka producer for order events
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from confluent_kafka import Producer
from fulfillment.config import settings

logger = logging.getLogger(__name__)


def order_event_payload(order) -> Dict[str, Any]:
    return {
        "orderId": str(order.id),
        "orderNumber": order.order_number,
        "userId": order.user_id,
        "status": order.status,
        "totalAmount": str(order.total),
        "currency": order.currency,
        "email": order.email,
    }


class OrderEventProducer:
    """Kafka producer for order lifecycle events"""

    def __init__(self):
        self.bootstrap_servers = settings.kafka_bootstrap_servers
        self.events_topic = settings.kafka_order_events_topic

        self.producer = Producer({
            'bootstrap.servers': self.bootstrap_servers,
            'client.id': settings.app_name,
        })

    def _publish_event(self, event_type: str, payload: Dict[str, Any], key: Optional[str] = None):
        """Internal method to publish event to Kafka"""
        event = {
            "type": event_type,
            "eventId": str(uuid.uuid4()),
            "createdAt": datetime.now(timezone.utc).isoformat(),
            **payload
        }

        try:
            # Keyed by order so every event of one order lands on the same partition
            kafka_key = key or event.get("orderId") or str(uuid.uuid4())

            self.producer.produce(
                self.events_topic,
                key=kafka_key,
                value=json.dumps(event).encode('utf-8'),
                callback=self._delivery_callback
            )

            self.producer.poll(0)

            logger.info(f"Published {event_type} event to {self.events_topic}")
        except Exception as e:
            logger.error(f"Failed to publish {event_type} event: {e}", exc_info=True)
            raise

    def _delivery_callback(self, err, msg):
        """Callback for message delivery"""
        if err:
            logger.error(f"Message delivery failed: {err}")
        else:
            logger.debug(f"Message delivered to {msg.topic()} [{msg.partition()}]")

    def notify(self, event_type: str, order):
        """Publish ORDER_<event_type> for an order"""
        self._publish_event(f"ORDER_{event_type}", order_event_payload(order), key=str(order.id))

    def flush(self, timeout: float = 5.0):
        """Flush pending messages"""
        self.producer.flush(timeout)


# Lazy initialization - only create producer when first used
_event_producer_instance = None
_producer_initialization_failed = False


class NoOpEventProducer:
    """No-op producer that does nothing when Kafka is unavailable"""
    def notify(self, *args, **kwargs):
        pass

    def flush(self, *args, **kwargs):
        pass


_noop_producer = NoOpEventProducer()


def get_event_producer():
    """Get or create the global event producer instance (lazy initialization)"""
    global _event_producer_instance, _producer_initialization_failed

    if _producer_initialization_failed:
        return _noop_producer

    if _event_producer_instance is None:
        try:
            _event_producer_instance = OrderEventProducer()
            logger.info(f"Initialized Kafka producer for {_event_producer_instance.bootstrap_servers}")
        except Exception as e:
            logger.warning(f"Failed to initialize Kafka producer: {e}. Events will not be published.")
            _producer_initialization_failed = True
            return _noop_producer
    return _event_producer_instance


class EventProducerProxy:
    """Notification sink for the order lifecycle.

    Never raises: a failed publish must not affect an order that is already
    committed.
    """
    def notify(self, event_type: str, order):
        producer = get_event_producer()
        if producer:
            try:
                producer.notify(event_type, order)
            except Exception as e:
                logger.warning(f"Failed to publish ORDER_{event_type} event for order {order.id}: {e}")

    def flush(self):
        producer = get_event_producer()
        if producer:
            try:
                producer.flush()
            except Exception as e:
                logger.warning(f"Failed to flush Kafka producer: {e}")


event_producer = EventProducerProxy()
