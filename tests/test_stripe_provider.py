import hashlib
import hmac
import json
import time
import uuid
from decimal import Decimal
from types import SimpleNamespace
from urllib.parse import parse_qs

import httpx
import pytest

from fulfillment.errors import PaymentProviderError, SignatureVerificationError
from fulfillment.services.payment_providers.stripe_provider import StripePaymentProvider

WEBHOOK_SECRET = "whsec_test_secret"


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    timestamp = timestamp or int(time.time())
    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def make_provider(handler=None):
    transport = httpx.MockTransport(handler) if handler else None
    return StripePaymentProvider(
        secret_key="sk_test_123",
        webhook_secret=WEBHOOK_SECRET,
        api_base="https://stripe.test",
        timeout=2.0,
        transport=transport,
    )


def make_order():
    return SimpleNamespace(
        id=uuid.uuid4(),
        order_number="ORD-2026-000001",
        currency="EUR",
        total=Decimal("25.50"),
        email="guest@example.com",
    )


EVENT = {
    "id": "evt_1",
    "type": "checkout.session.completed",
    "data": {
        "object": {
            "id": "cs_test_1",
            "object": "checkout.session",
            "amount_total": 2550,
            "currency": "eur",
            "payment_intent": "pi_1",
            "metadata": {"orderId": "7b0c8f7e-1f7a-4c55-9b8e-3d1f0f0a2b11"},
        }
    },
}


def test_valid_signature_is_parsed():
    payload = json.dumps(EVENT)

    event = make_provider().verify_and_parse_event(payload.encode("utf-8"), sign(payload))

    assert event.type == "checkout.session.completed"
    assert event.order_id == "7b0c8f7e-1f7a-4c55-9b8e-3d1f0f0a2b11"
    assert event.reference == "cs_test_1"
    assert event.payment_intent_id == "pi_1"
    assert event.amount == Decimal("25.50")
    assert event.currency == "EUR"


def test_tampered_payload_is_rejected():
    payload = json.dumps(EVENT)
    signature = sign(payload)
    tampered = payload.replace("2550", "1")

    with pytest.raises(SignatureVerificationError):
        make_provider().verify_and_parse_event(tampered.encode("utf-8"), signature)


def test_wrong_secret_is_rejected():
    payload = json.dumps(EVENT)

    with pytest.raises(SignatureVerificationError):
        make_provider().verify_and_parse_event(payload.encode("utf-8"), sign(payload, secret="whsec_other"))


def test_stale_timestamp_is_rejected():
    payload = json.dumps(EVENT)

    with pytest.raises(SignatureVerificationError):
        make_provider().verify_and_parse_event(
            payload.encode("utf-8"),
            sign(payload, timestamp=int(time.time()) - 3600)
        )


def test_missing_signature_is_rejected():
    with pytest.raises(SignatureVerificationError):
        make_provider().verify_and_parse_event(json.dumps(EVENT).encode("utf-8"), None)


def test_payment_intent_event_uses_object_id_as_intent():
    event = StripePaymentProvider.parse_event({
        "id": "evt_2",
        "type": "payment_intent.payment_failed",
        "data": {"object": {"id": "pi_9", "object": "payment_intent", "amount": 999, "currency": "eur"}},
    })

    assert event.payment_intent_id == "pi_9"
    assert event.reference is None
    assert event.amount == Decimal("9.99")


def test_create_session_posts_form_and_parses_response():
    order = make_order()
    captured = {}

    def handler(request: httpx.Request):
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["form"] = parse_qs(request.content.decode("utf-8"))
        return httpx.Response(200, json={
            "id": "cs_test_abc",
            "url": "https://checkout.stripe.com/c/pay/cs_test_abc",
            "expires_at": 1893456000,
            "payment_intent": None,
        })

    session = make_provider(handler).create_checkout_session(order)

    assert captured["url"] == "https://stripe.test/v1/checkout/sessions"
    assert captured["auth"] == "Bearer sk_test_123"
    assert captured["form"]["metadata[orderId]"] == [str(order.id)]
    assert captured["form"]["line_items[0][price_data][unit_amount]"] == ["2550"]
    assert captured["form"]["line_items[0][price_data][currency]"] == ["eur"]
    assert captured["form"]["customer_email"] == ["guest@example.com"]
    assert session.session_id == "cs_test_abc"
    assert session.redirect_url.endswith("cs_test_abc")
    assert session.expires_at.year == 2030


def test_timeout_is_reported_as_unknown_outcome():
    calls = []

    def handler(request: httpx.Request):
        calls.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(PaymentProviderError) as exc_info:
        make_provider(handler).create_checkout_session(make_order())

    assert exc_info.value.timed_out
    assert len(calls) == 1


def test_provider_rejection_carries_status():
    def handler(request: httpx.Request):
        return httpx.Response(400, json={"error": {"message": "Invalid currency"}})

    with pytest.raises(PaymentProviderError) as exc_info:
        make_provider(handler).create_checkout_session(make_order())

    assert exc_info.value.provider_status == 400
    assert not exc_info.value.timed_out
    assert "Invalid currency" in exc_info.value.message


def test_non_utf8_body_is_rejected_before_verification():
    body = b'{"id": "evt_1", "type": "x", "note": "\xff\xfe"}'

    with pytest.raises(SignatureVerificationError):
        make_provider().verify_and_parse_event(body, "t=1,v1=deadbeef")


def test_signed_payload_that_is_not_an_object_parses_as_untyped_event():
    payload = json.dumps(["not", "an", "object"])

    event = make_provider().verify_and_parse_event(payload.encode("utf-8"), sign(payload))

    assert event.type == ""
    assert event.order_id is None


def test_malformed_event_data_is_tolerated():
    event = StripePaymentProvider.parse_event({
        "id": "evt_3",
        "type": ["checkout.session.completed"],
        "data": {"object": "cs_test_1"},
    })

    assert event.type == ""
    assert event.reference is None
    assert event.amount is None
