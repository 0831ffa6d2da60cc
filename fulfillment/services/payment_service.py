from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID
import logging

from sqlalchemy.exc import IntegrityError

from fulfillment.db.database import unit_of_work
from fulfillment.errors import (
    OrderNotFound, OrderNotPayable, SignatureVerificationError, VerificationFailed
)
from fulfillment.models.order import OrderStatus
from fulfillment.services.order_lifecycle import OrderLifecycle, PaymentConfirmation
from fulfillment.services.order_store import OrderStore
from fulfillment.services.payment_store import PaymentStore
from fulfillment.services.payment_providers.base import PaymentProvider, ProviderEvent

logger = logging.getLogger(__name__)

# Webhook outcomes, returned for logging and tests; all of them are acknowledged
APPLIED = "applied"
NO_OP = "no_op"
IGNORED = "ignored"
ORDER_MISSING = "order_missing"

PAID_SESSION_STATES = {"paid", "no_payment_required"}


@dataclass
class CheckoutSessionResult:
    order_id: UUID
    session_id: str
    redirect_url: str
    expires_at: datetime


class PaymentService:
    """Starts hosted payments for PENDING orders"""

    def __init__(self, provider: PaymentProvider, session_factory=None):
        self.provider = provider
        self.session_factory = session_factory

    def create_checkout_session(self, order_id: UUID, user: Optional[dict] = None) -> CheckoutSessionResult:
        with unit_of_work(self.session_factory) as db:
            order = OrderStore(db).get(order_id)
            if order is None:
                raise OrderNotFound(order_id)
            if order.user_id is not None and (user is None or user.get("user_id") != order.user_id):
                raise VerificationFailed("Order belongs to another account")
            if order.status != OrderStatus.PENDING.value:
                raise OrderNotPayable(order.id, order.status)

        # No transaction is open while waiting on the provider
        session = self.provider.create_checkout_session(order)

        try:
            with unit_of_work(self.session_factory) as db:
                store = PaymentStore(db)
                # The webhook may already have recorded this session
                if store.get_by_reference(session.session_id) is None:
                    store.create(
                        order_id=order.id,
                        provider=self.provider.name,
                        provider_reference=session.session_id,
                        amount=order.total,
                        currency=order.currency,
                        payment_intent_id=session.payment_intent_id,
                        details={"expiresAt": session.expires_at.isoformat()},
                    )
        except IntegrityError:
            logger.info(f"Payment for session {session.session_id} was recorded concurrently by its webhook")

        logger.info(f"Created {self.provider.name} session {session.session_id} for order {order.order_number}")
        return CheckoutSessionResult(
            order_id=order.id,
            session_id=session.session_id,
            redirect_url=session.redirect_url,
            expires_at=session.expires_at,
        )


class PaymentReconciler:
    """Applies verified provider events to orders.

    Every event type maps onto an idempotent lifecycle call, so the provider
    can redeliver as often as it likes. Anything that is validly signed but
    cannot be acted on is logged and acknowledged; only a bad signature or a
    storage failure is reported back as an error.
    """

    def __init__(self, provider: PaymentProvider, lifecycle: OrderLifecycle, session_factory=None):
        self.provider = provider
        self.lifecycle = lifecycle
        self.session_factory = session_factory
        self._handlers = {
            "checkout.session.completed": self._handle_session_completed,
            "checkout.session.async_payment_succeeded": self._handle_session_completed,
            "checkout.session.expired": self._handle_session_expired,
            "payment_intent.payment_failed": self._handle_payment_failed,
        }

    def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> str:
        try:
            event = self.provider.verify_and_parse_event(raw_body, signature)
        except SignatureVerificationError as e:
            logger.error(f"Rejected payment webhook: {e.message}")
            raise

        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info(f"Ignoring payment event {event.id} of type {event.type}")
            return IGNORED

        logger.info(f"Processing payment event {event.id} ({event.type})")
        return handler(event)

    def _resolve_order_id(self, event: ProviderEvent) -> Optional[UUID]:
        if not event.order_id:
            logger.warning(f"Payment event {event.id} ({event.type}) carries no orderId metadata")
            return None
        try:
            return UUID(str(event.order_id))
        except ValueError:
            logger.warning(f"Payment event {event.id} has malformed orderId {event.order_id!r}")
            return None

    def _handle_session_completed(self, event: ProviderEvent) -> str:
        if event.payment_status and event.payment_status not in PAID_SESSION_STATES:
            # Delayed payment methods complete the session before the money arrives
            logger.info(f"Session {event.reference} completed with payment_status={event.payment_status}, waiting")
            return NO_OP

        order_id = self._resolve_order_id(event)
        if order_id is None:
            return ORDER_MISSING

        confirmation = PaymentConfirmation(
            provider=self.provider.name,
            reference=event.reference or event.id,
            payment_intent_id=event.payment_intent_id,
            amount=event.amount,
            currency=event.currency,
            details={"eventId": event.id, "eventType": event.type},
        )
        try:
            result = self.lifecycle.mark_paid(order_id, confirmation)
        except OrderNotFound:
            logger.warning(f"Payment event {event.id} references unknown order {order_id}")
            return ORDER_MISSING
        return APPLIED if result.applied else NO_OP

    def _handle_session_expired(self, event: ProviderEvent) -> str:
        order_id = self._resolve_order_id(event)
        if order_id is None:
            return ORDER_MISSING
        try:
            result = self.lifecycle.cancel(
                order_id,
                reason="payment_session_expired",
                failed_payment_reference=event.reference,
            )
        except OrderNotFound:
            logger.warning(f"Payment event {event.id} references unknown order {order_id}")
            return ORDER_MISSING
        return APPLIED if result.applied else NO_OP

    def _handle_payment_failed(self, event: ProviderEvent) -> str:
        if not event.payment_intent_id:
            return IGNORED
        with unit_of_work(self.session_factory) as db:
            updated = PaymentStore(db).mark_failed_by_intent(event.payment_intent_id)
        if updated:
            logger.info(f"Marked payment {event.payment_intent_id} as FAILED")
            return APPLIED
        logger.info(f"No pending payment for intent {event.payment_intent_id}")
        return NO_OP
