import uuid
from decimal import Decimal

import pytest

from fulfillment.db.database import unit_of_work
from fulfillment.errors import InvalidTransition, OrderNotFound
from fulfillment.models.order import OrderStatus
from fulfillment.models.payment import Payment, PaymentStatus
from fulfillment.services.order_lifecycle import OrderLifecycle, PaymentConfirmation
from fulfillment.services.payment_store import PaymentStore

from conftest import RecordingCache, RecordingNotifier


def confirmation(reference="cs_test_1"):
    return PaymentConfirmation(
        provider="stripe",
        reference=reference,
        payment_intent_id="pi_test_1",
        amount=Decimal("20.00"),
        currency="EUR",
    )


def payments_for(session_factory, order_id):
    with unit_of_work(session_factory) as db:
        return PaymentStore(db).list_for_order(order_id)


def test_mark_paid_confirms_sale_and_records_payment(session_factory, lifecycle, place_order, read_stock, notifier):
    order = place_order(quantity=2, available=5)
    variant_id = order.items[0].variant_id

    result = lifecycle.mark_paid(order.id, confirmation())

    assert result.applied
    assert result.previous_status == OrderStatus.PENDING
    assert result.order.status == OrderStatus.PAID.value
    assert result.order.paid_at is not None
    assert read_stock(variant_id) == (3, 0)
    payments = payments_for(session_factory, order.id)
    assert [(p.status, p.provider_reference) for p in payments] == [(PaymentStatus.SUCCESS.value, "cs_test_1")]
    assert notifier.events == [("PAID", order.id)]


def test_mark_paid_twice_confirms_stock_once(session_factory, lifecycle, place_order, read_stock, notifier):
    order = place_order(quantity=2, available=5)
    variant_id = order.items[0].variant_id

    first = lifecycle.mark_paid(order.id, confirmation())
    second = lifecycle.mark_paid(order.id, confirmation())

    assert first.applied and not second.applied
    assert second.order.status == OrderStatus.PAID.value
    assert read_stock(variant_id) == (3, 0)
    assert len(payments_for(session_factory, order.id)) == 1
    assert notifier.events == [("PAID", order.id)]


def test_mark_paid_updates_existing_pending_payment(session_factory, lifecycle, place_order):
    order = place_order()
    with unit_of_work(session_factory) as db:
        PaymentStore(db).create(order.id, "stripe", "cs_test_1", order.total, "EUR")

    lifecycle.mark_paid(order.id, confirmation())

    [payment] = payments_for(session_factory, order.id)
    assert payment.status == PaymentStatus.SUCCESS.value
    assert payment.payment_intent_id == "pi_test_1"


def test_cancel_releases_stock(lifecycle, place_order, read_stock, notifier):
    order = place_order(quantity=3, available=5)
    variant_id = order.items[0].variant_id

    result = lifecycle.cancel(order.id, reason="expired")

    assert result.applied
    assert result.order.status == OrderStatus.CANCELLED.value
    assert result.order.cancellation_reason == "expired"
    assert read_stock(variant_id) == (5, 0)
    assert notifier.events == [("CANCELLED", order.id)]


def test_cancel_after_paid_is_a_no_op(lifecycle, place_order, read_stock):
    order = place_order(quantity=2, available=5)
    variant_id = order.items[0].variant_id
    lifecycle.mark_paid(order.id, confirmation())

    result = lifecycle.cancel(order.id, reason="payment_session_expired")

    assert not result.applied
    assert result.order.status == OrderStatus.PAID.value
    assert read_stock(variant_id) == (3, 0)


def test_cancel_twice_releases_once(lifecycle, place_order, read_stock):
    order = place_order(quantity=2, available=5)
    variant_id = order.items[0].variant_id

    lifecycle.cancel(order.id, reason="expired")
    second = lifecycle.cancel(order.id, reason="expired")

    assert not second.applied
    assert read_stock(variant_id) == (5, 0)


def test_paid_on_cancelled_order_is_a_no_op(lifecycle, place_order, read_stock):
    order = place_order(quantity=1, available=5)
    variant_id = order.items[0].variant_id
    lifecycle.cancel(order.id, reason="expired")

    result = lifecycle.mark_paid(order.id, confirmation())

    assert not result.applied
    assert result.order.status == OrderStatus.CANCELLED.value
    assert read_stock(variant_id) == (5, 0)


def test_cancel_marks_expired_session_payment_failed(session_factory, lifecycle, place_order):
    order = place_order()
    with unit_of_work(session_factory) as db:
        PaymentStore(db).create(order.id, "stripe", "cs_test_9", order.total, "EUR")

    lifecycle.cancel(order.id, reason="payment_session_expired", failed_payment_reference="cs_test_9")

    [payment] = payments_for(session_factory, order.id)
    assert payment.status == PaymentStatus.FAILED.value


def test_admin_walks_order_through_fulfilment(lifecycle, place_order, notifier):
    order = place_order()

    lifecycle.update_status(order.id, "PAID")
    shipped = lifecycle.mark_shipped(order.id)
    delivered = lifecycle.mark_delivered(order.id)

    assert shipped.order.shipped_at is not None
    assert delivered.order.status == OrderStatus.DELIVERED.value
    assert [event for event, _ in notifier.events] == ["PAID", "SHIPPED", "DELIVERED"]


def test_admin_cannot_skip_or_reverse_states(lifecycle, place_order):
    order = place_order()

    with pytest.raises(InvalidTransition):
        lifecycle.mark_shipped(order.id)

    lifecycle.mark_paid(order.id)
    with pytest.raises(InvalidTransition) as exc_info:
        lifecycle.update_status(order.id, OrderStatus.CANCELLED)
    assert exc_info.value.current == "PAID"


def test_admin_update_to_current_status_is_a_no_op(lifecycle, place_order):
    order = place_order()

    result = lifecycle.update_status(order.id, "PENDING")

    assert not result.applied


def test_unknown_order_raises(lifecycle):
    with pytest.raises(OrderNotFound):
        lifecycle.mark_paid(uuid.uuid4())


def test_side_effect_failures_do_not_undo_transition(session_factory, place_order, read_stock):
    lifecycle = OrderLifecycle(
        session_factory=session_factory,
        notifier=RecordingNotifier(fail=True),
        cache=RecordingCache(fail=True),
    )
    order = place_order(quantity=1, available=2)

    result = lifecycle.mark_paid(order.id)

    assert result.applied
    assert result.order.status == OrderStatus.PAID.value
    assert read_stock(order.items[0].variant_id) == (1, 0)


def test_transition_invalidates_order_and_stock_keys(lifecycle, place_order, cache):
    order = place_order(user_id="user-7")
    variant_id = order.items[0].variant_id

    lifecycle.cancel(order.id, reason="customer_cancelled")

    assert cache.keys == [
        f"order:{order.id}",
        f"stock:variant:{variant_id}",
        "orders:user:user-7:*",
    ]
