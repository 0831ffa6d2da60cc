import json
import uuid
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from fulfillment.kafka import producer as producer_module
from fulfillment.kafka.producer import EventProducerProxy, OrderEventProducer


def make_order():
    return SimpleNamespace(
        id=uuid.uuid4(),
        order_number="ORD-2026-000042",
        user_id=None,
        status="PAID",
        total=Decimal("19.99"),
        currency="EUR",
        email="guest@example.com",
    )


@patch("fulfillment.kafka.producer.Producer")
def test_notify_publishes_keyed_order_event(mock_producer_cls):
    order = make_order()

    OrderEventProducer().notify("PAID", order)

    kafka = mock_producer_cls.return_value
    kafka.produce.assert_called_once()
    args, kwargs = kafka.produce.call_args
    assert args[0] == "orders.events"
    assert kwargs["key"] == str(order.id)
    event = json.loads(kwargs["value"].decode("utf-8"))
    assert event["type"] == "ORDER_PAID"
    assert event["orderId"] == str(order.id)
    assert event["orderNumber"] == "ORD-2026-000042"
    assert event["totalAmount"] == "19.99"
    assert "eventId" in event
    kafka.poll.assert_called_once_with(0)


@patch("fulfillment.kafka.producer.Producer")
def test_publish_failure_propagates_from_producer(mock_producer_cls):
    mock_producer_cls.return_value.produce.side_effect = BufferError("queue full")

    with pytest.raises(BufferError):
        OrderEventProducer().notify("CANCELLED", make_order())


def test_proxy_swallows_publish_failures(monkeypatch):
    failing = MagicMock()
    failing.notify.side_effect = RuntimeError("broker down")
    failing.flush.side_effect = RuntimeError("broker down")
    monkeypatch.setattr(producer_module, "get_event_producer", lambda: failing)

    proxy = EventProducerProxy()
    proxy.notify("PAID", make_order())
    proxy.flush()

    failing.notify.assert_called_once()
    failing.flush.assert_called_once()


def test_unavailable_kafka_falls_back_to_noop(monkeypatch):
    monkeypatch.setattr(producer_module, "_event_producer_instance", None)
    monkeypatch.setattr(producer_module, "_producer_initialization_failed", False)

    with patch("fulfillment.kafka.producer.Producer", side_effect=RuntimeError("no broker")):
        assert producer_module.get_event_producer() is producer_module._noop_producer

    # Stays disabled without retrying the connection
    assert producer_module.get_event_producer() is producer_module._noop_producer
