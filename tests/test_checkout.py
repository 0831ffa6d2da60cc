import uuid
from decimal import Decimal

import pytest

from fulfillment.db.database import unit_of_work
from fulfillment.errors import EmptyCart, InsufficientStock
from fulfillment.models.cart import CartItem
from fulfillment.models.order import Order, OrderItem, OrderStatus
from fulfillment.schemas.order import CheckoutRequest
from fulfillment.services.cart_provider import CartLine, CartProvider
from fulfillment.services.checkout_service import CheckoutService

from conftest import address


def count(session_factory, model):
    with unit_of_work(session_factory) as db:
        return db.query(model).count()


def test_checkout_reserves_stock_and_creates_pending_order(session_factory, stock, read_stock, make_cart, checkout_service):
    variant_id = stock(5)
    cart_id = make_cart([(variant_id, 2, "12.50")])

    order = checkout_service.checkout(CheckoutRequest(cart_id=cart_id, shipping_address=address()))

    assert order.status == OrderStatus.PENDING.value
    assert order.user_id is None
    assert order.total == Decimal("25.00")
    assert order.subtotal == Decimal("25.00")
    assert order.currency == "EUR"
    assert len(order.items) == 1
    assert order.items[0].quantity == 2
    assert order.items[0].unit_price == Decimal("12.50")
    assert order.items[0].attributes == {"size": "M"}
    assert read_stock(variant_id) == (3, 2)


def test_checkout_clears_the_cart(session_factory, stock, make_cart, checkout_service):
    cart_id = make_cart([(stock(5), 1, "3.00")])

    checkout_service.checkout(CheckoutRequest(cart_id=cart_id, shipping_address=address()))

    assert count(session_factory, CartItem) == 0


def test_checkout_total_includes_shipping_tax_and_discount(stock, make_cart, checkout_service):
    cart_id = make_cart([(stock(5), 3, "10.00")])

    order = checkout_service.checkout(CheckoutRequest(
        cart_id=cart_id,
        user_id="user-1",
        shipping_address=address(),
        shipping_method="express",
        shipping_cost=Decimal("4.99"),
        tax=Decimal("6.30"),
        discount=Decimal("5.00"),
    ))

    assert order.total == Decimal("36.29")
    assert order.user_id == "user-1"
    assert order.shipping_method == "express"


def test_order_numbers_are_sequential(place_order):
    first = place_order()
    second = place_order()

    prefix, year, first_seq = first.order_number.split("-")
    assert prefix == "ORD"
    assert len(first_seq) == 6
    assert int(second.order_number.split("-")[2]) == int(first_seq) + 1


def test_failed_second_line_rolls_back_everything(session_factory, stock, read_stock, make_cart, checkout_service):
    plenty = stock(5)
    scarce = stock(1)
    cart_id = make_cart([(plenty, 2, "5.00"), (scarce, 3, "5.00")])

    with pytest.raises(InsufficientStock) as exc_info:
        checkout_service.checkout(CheckoutRequest(cart_id=cart_id, shipping_address=address()))

    assert exc_info.value.variant_id == scarce
    assert exc_info.value.shortfall == 2
    assert read_stock(plenty) == (5, 0)
    assert read_stock(scarce) == (1, 0)
    assert count(session_factory, Order) == 0
    assert count(session_factory, OrderItem) == 0
    assert count(session_factory, CartItem) == 2


def test_empty_cart_is_rejected(make_cart, checkout_service):
    cart_id = make_cart([])

    with pytest.raises(EmptyCart):
        checkout_service.checkout(CheckoutRequest(cart_id=cart_id, shipping_address=address()))


def test_failure_after_reservation_leaves_no_partial_state(session_factory, stock, read_stock):
    variant_id = stock(4)

    class ExplodingCart(CartProvider):
        def __init__(self, db):
            self.db = db

        def list_items(self, cart_id):
            return [CartLine(variant_id=variant_id, quantity=1, unit_price=Decimal("9.99"), product_name="Mug")]

        def clear(self, cart_id):
            raise RuntimeError("cart service unavailable")

    service = CheckoutService(session_factory=session_factory, cart_provider_factory=ExplodingCart, currency="EUR")

    with pytest.raises(RuntimeError):
        service.checkout(CheckoutRequest(cart_id=uuid.uuid4(), shipping_address=address()))

    assert read_stock(variant_id) == (4, 0)
    assert count(session_factory, Order) == 0
