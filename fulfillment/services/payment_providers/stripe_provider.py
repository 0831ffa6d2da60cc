"""
Stripe Checkout implementation of PaymentProvider
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import httpx
import stripe

from fulfillment.config import settings
from fulfillment.errors import PaymentProviderError, SignatureVerificationError
from fulfillment.services.payment_providers.base import PaymentProvider, CheckoutSession, ProviderEvent

logger = logging.getLogger(__name__)

SESSION_OBJECTS = {"checkout.session"}


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1")))


def from_minor_units(amount: Optional[int]) -> Optional[Decimal]:
    if amount is None:
        return None
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("error", {}).get("message") or response.text
    except ValueError:
        return response.text


class StripePaymentProvider(PaymentProvider):
    """Hosted Stripe Checkout.

    Sessions are created with a plain form-encoded POST through httpx so the
    timeout is ours, and a timeout is reported as an unknown outcome rather
    than retried. Webhook signatures are checked with the stripe library.
    """

    name = "stripe"

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.secret_key = secret_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.api_base = (api_base or settings.stripe_api_base).rstrip('/')
        self.timeout = timeout or settings.payment_provider_timeout_seconds
        self.tolerance = settings.webhook_tolerance_seconds
        self.client = httpx.Client(timeout=self.timeout, transport=transport)

    def _get_headers(self):
        return {"Authorization": f"Bearer {self.secret_key}"}

    def create_checkout_session(self, order) -> CheckoutSession:
        if not self.secret_key:
            raise PaymentProviderError("Stripe is not configured (missing STRIPE_SECRET_KEY)")

        expires_at = datetime.now(timezone.utc) + timedelta(minutes=settings.payment_session_expiry_minutes)
        order_id = str(order.id)
        form = {
            "mode": "payment",
            "client_reference_id": order_id,
            "success_url": settings.checkout_success_url,
            "cancel_url": settings.checkout_cancel_url,
            "expires_at": str(int(expires_at.timestamp())),
            "metadata[orderId]": order_id,
            "metadata[orderNumber]": order.order_number,
            # Copied onto the payment intent so payment_intent.* events can be traced back
            "payment_intent_data[metadata][orderId]": order_id,
            "line_items[0][quantity]": "1",
            "line_items[0][price_data][currency]": order.currency.lower(),
            "line_items[0][price_data][unit_amount]": str(to_minor_units(order.total)),
            "line_items[0][price_data][product_data][name]": f"Order {order.order_number}",
        }
        if order.email:
            form["customer_email"] = order.email

        try:
            response = self.client.post(
                f"{self.api_base}/v1/checkout/sessions",
                data=form,
                headers=self._get_headers(),
            )
        except httpx.TimeoutException as e:
            logger.error(f"Stripe session creation for order {order.order_number} timed out; outcome unknown: {e}")
            raise PaymentProviderError(
                f"Payment provider timed out creating a session for order {order.order_number}",
                timed_out=True
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Stripe session creation for order {order.order_number} failed: {e}")
            raise PaymentProviderError(f"Payment provider unreachable: {e}") from e

        if response.status_code >= 400:
            message = _error_message(response)
            logger.error(f"Stripe rejected session for order {order.order_number} ({response.status_code}): {message}")
            raise PaymentProviderError(
                f"Payment provider rejected the session: {message}",
                provider_status=response.status_code
            )

        data = response.json()
        session_expiry = data.get("expires_at")
        return CheckoutSession(
            session_id=data["id"],
            redirect_url=data["url"],
            expires_at=datetime.fromtimestamp(session_expiry, tz=timezone.utc) if session_expiry else expires_at,
            payment_intent_id=data.get("payment_intent"),
        )

    def verify_and_parse_event(self, raw_body: bytes, signature: str) -> ProviderEvent:
        if not signature:
            raise SignatureVerificationError("Missing Stripe-Signature header")
        if not self.webhook_secret:
            raise SignatureVerificationError("Webhook secret is not configured")

        try:
            payload = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
        except UnicodeDecodeError as e:
            raise SignatureVerificationError("Webhook payload is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(payload, signature, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise SignatureVerificationError(f"Invalid webhook signature: {e}") from e

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise SignatureVerificationError(f"Signed payload is not valid JSON: {e}") from e

        return self.parse_event(event)

    @staticmethod
    def parse_event(event) -> ProviderEvent:
        if not isinstance(event, dict):
            # Signed but not an event; acknowledged and ignored
            return ProviderEvent(id=None, type="")

        obj = _as_dict(_as_dict(event.get("data")).get("object"))
        metadata = _as_dict(obj.get("metadata"))
        is_session = obj.get("object") in SESSION_OBJECTS
        amount = obj.get("amount_total") if is_session else obj.get("amount")
        currency = obj.get("currency")
        event_type = event.get("type")

        return ProviderEvent(
            id=event.get("id"),
            type=event_type if isinstance(event_type, str) else "",
            order_id=metadata.get("orderId") or (obj.get("client_reference_id") if is_session else None),
            reference=obj.get("id") if is_session else None,
            payment_intent_id=obj.get("payment_intent") if is_session else obj.get("id"),
            payment_status=obj.get("payment_status") if is_session else None,
            amount=from_minor_units(amount) if isinstance(amount, int) else None,
            currency=currency.upper() if isinstance(currency, str) else None,
            raw=event,
        )
