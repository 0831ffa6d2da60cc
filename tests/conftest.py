import json
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import fulfillment.models  # noqa: F401
from fulfillment.db.database import Base, unit_of_work
from fulfillment.errors import SignatureVerificationError
from fulfillment.models.cart import Cart, CartItem
from fulfillment.models.inventory import InventoryRecord
from fulfillment.schemas.order import AddressSnapshot, CheckoutRequest
from fulfillment.services.checkout_service import CheckoutService
from fulfillment.services.order_lifecycle import OrderLifecycle
from fulfillment.services.payment_providers.base import CheckoutSession, PaymentProvider
from fulfillment.services.payment_providers.stripe_provider import StripePaymentProvider

GUEST_EMAIL = "guest@example.com"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


class RecordingNotifier:
    def __init__(self, fail=False):
        self.events = []
        self.fail = fail

    def notify(self, event_type, order):
        self.events.append((event_type, order.id))
        if self.fail:
            raise RuntimeError("broker down")


class RecordingCache:
    def __init__(self, fail=False):
        self.keys = []
        self.fail = fail

    def invalidate(self, key):
        self.keys.append(key)
        if self.fail:
            raise RuntimeError("cache down")


class FakePaymentProvider(PaymentProvider):
    """Accepts the signature "valid" and parses bodies the way Stripe sends them"""

    name = "stripe"

    def __init__(self):
        self.sessions = []

    def create_checkout_session(self, order):
        from datetime import datetime, timedelta, timezone
        session = CheckoutSession(
            session_id=f"cs_test_{len(self.sessions) + 1}",
            redirect_url="https://checkout.example/pay",
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=30),
        )
        self.sessions.append((order.id, session))
        return session

    def verify_and_parse_event(self, raw_body, signature):
        if signature != "valid":
            raise SignatureVerificationError("bad signature")
        return StripePaymentProvider.parse_event(json.loads(raw_body))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def cache():
    return RecordingCache()


@pytest.fixture
def lifecycle(session_factory, notifier, cache):
    return OrderLifecycle(session_factory=session_factory, notifier=notifier, cache=cache)


@pytest.fixture
def checkout_service(session_factory):
    return CheckoutService(session_factory=session_factory, currency="EUR")


@pytest.fixture
def stock(session_factory):
    """Create a variant with the given available stock and return its id"""
    def _stock(available, reserved=0, variant_id=None):
        variant_id = variant_id or uuid.uuid4()
        with unit_of_work(session_factory) as db:
            db.add(InventoryRecord(variant_id=variant_id, available_stock=available, reserved_stock=reserved))
        return variant_id
    return _stock


@pytest.fixture
def read_stock(session_factory):
    def _read(variant_id):
        with unit_of_work(session_factory) as db:
            record = db.get(InventoryRecord, variant_id)
            return record.available_stock, record.reserved_stock
    return _read


@pytest.fixture
def make_cart(session_factory):
    """Create a cart from (variant_id, quantity, unit_price) tuples and return its id"""
    def _make_cart(lines, user_id=None):
        cart = Cart(user_id=user_id)
        with unit_of_work(session_factory) as db:
            db.add(cart)
            db.flush()
            for variant_id, quantity, unit_price in lines:
                db.add(CartItem(
                    cart_id=cart.id,
                    variant_id=variant_id,
                    quantity=quantity,
                    unit_price=Decimal(unit_price),
                    product_name=f"Product {str(variant_id)[:8]}",
                    attributes={"size": "M"},
                ))
        return cart.id
    return _make_cart


def address(email=GUEST_EMAIL):
    return AddressSnapshot(
        full_name="Ada Lovelace",
        email=email,
        line1="12 Analytical Row",
        city="London",
        postal_code="N1 9GU",
        country="GB",
    )


@pytest.fixture
def place_order(stock, make_cart, checkout_service):
    """Stock a variant, fill a cart and check it out; returns the order"""
    def _place_order(quantity=1, unit_price="10.00", available=10, user_id=None, email=GUEST_EMAIL, variant_id=None):
        variant_id = variant_id or stock(available)
        cart_id = make_cart([(variant_id, quantity, unit_price)], user_id=user_id)
        return checkout_service.checkout(CheckoutRequest(
            cart_id=cart_id,
            user_id=user_id,
            shipping_address=address(email),
        ))
    return _place_order
