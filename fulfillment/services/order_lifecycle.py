"""
Order state machine.

Every transition runs in one unit of work: lock the order row, check the
current status, apply a conditional status UPDATE and, only if that UPDATE
hit the row, the stock and payment side effects that belong to it. A
duplicate webhook or an overlapping sweeper run therefore finds the order
already moved on and does nothing.

Notifications and cache invalidation happen after the commit and can never
undo it.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
import logging

from fulfillment.db.database import unit_of_work
from fulfillment.errors import InvalidTransition, OrderNotFound
from fulfillment.models.order import Order, OrderStatus, ALLOWED_TRANSITIONS
from fulfillment.models.payment import PaymentStatus
from fulfillment.services.inventory_ledger import InventoryLedger
from fulfillment.services.order_store import OrderStore
from fulfillment.services.payment_store import PaymentStore
from fulfillment.services import cache as cache_keys

logger = logging.getLogger(__name__)


@dataclass
class PaymentConfirmation:
    """What the payment provider told us about a completed payment"""
    provider: str
    reference: str
    payment_intent_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    details: dict = field(default_factory=dict)


@dataclass
class TransitionResult:
    order: Order
    applied: bool
    previous_status: OrderStatus


class OrderLifecycle:
    def __init__(self, session_factory=None, notifier=None, cache=None):
        self.session_factory = session_factory
        self.notifier = notifier
        self.cache = cache

    # Idempotent entry points used by payment reconciliation and the sweeper

    def mark_paid(self, order_id: UUID, confirmation: Optional[PaymentConfirmation] = None) -> TransitionResult:
        return self._transition(order_id, OrderStatus.PAID, strict=False, confirmation=confirmation)

    def cancel(
        self,
        order_id: UUID,
        reason: str,
        nowait: bool = False,
        failed_payment_reference: Optional[str] = None,
    ) -> TransitionResult:
        """Cancel a PENDING order and release its stock; no-op in any other status"""
        return self._transition(
            order_id,
            OrderStatus.CANCELLED,
            strict=False,
            reason=reason,
            nowait=nowait,
            failed_payment_reference=failed_payment_reference,
        )

    # Admin entry points

    def mark_shipped(self, order_id: UUID) -> TransitionResult:
        return self.update_status(order_id, OrderStatus.SHIPPED)

    def mark_delivered(self, order_id: UUID) -> TransitionResult:
        return self.update_status(order_id, OrderStatus.DELIVERED)

    def update_status(self, order_id: UUID, target, reason: Optional[str] = None) -> TransitionResult:
        """Manual status change. Raises InvalidTransition for an edge the state machine does not have."""
        return self._transition(order_id, OrderStatus(target), strict=True, reason=reason or "admin")

    def _transition(
        self,
        order_id: UUID,
        target: OrderStatus,
        strict: bool,
        reason: Optional[str] = None,
        nowait: bool = False,
        confirmation: Optional[PaymentConfirmation] = None,
        failed_payment_reference: Optional[str] = None,
    ) -> TransitionResult:
        with unit_of_work(self.session_factory) as db:
            store = OrderStore(db)
            order = store.get_for_update(order_id, nowait=nowait)
            if order is None:
                raise OrderNotFound(order_id)

            current = OrderStatus(order.status)
            if current == target:
                logger.info(f"Order {order.order_number} already {target.value}, nothing to do")
                return TransitionResult(order, False, current)

            if target not in ALLOWED_TRANSITIONS[current]:
                if strict:
                    raise InvalidTransition(order.id, current.value, target.value)
                if target == OrderStatus.PAID and current == OrderStatus.CANCELLED:
                    # Money arrived for an order whose stock was already released
                    reference = confirmation.reference if confirmation else None
                    logger.warning(
                        f"Payment completed for cancelled order {order.order_number} "
                        f"(reference {reference}); manual refund required"
                    )
                else:
                    logger.info(f"Order {order.order_number} is {current.value}, skipping {target.value}")
                return TransitionResult(order, False, current)

            if not store.transition(order.id, current, target, reason=reason):
                logger.info(f"Order {order.order_number} changed status concurrently, skipping {target.value}")
                return TransitionResult(order, False, current)

            moved_variants = self._apply_side_effects(db, order, target, confirmation, failed_payment_reference)
            order = store.get(order.id)

        logger.info(f"Order {order.order_number} moved {current.value} -> {target.value}")
        self._after_commit(order, target, moved_variants)
        return TransitionResult(order, True, current)

    def _apply_side_effects(self, db, order, target, confirmation, failed_payment_reference) -> List[UUID]:
        ledger = InventoryLedger(db)

        if target == OrderStatus.PAID:
            if confirmation is not None:
                self._record_successful_payment(db, order, confirmation)
            for item in order.items:
                ledger.confirm_sale(item.variant_id, item.quantity)
            return [item.variant_id for item in order.items]

        if target == OrderStatus.CANCELLED:
            for item in order.items:
                ledger.release(item.variant_id, item.quantity)
            if failed_payment_reference:
                PaymentStore(db).mark_by_reference(failed_payment_reference, PaymentStatus.FAILED)
            return [item.variant_id for item in order.items]

        return []

    def _record_successful_payment(self, db, order, confirmation: PaymentConfirmation):
        payments = PaymentStore(db)
        payment = payments.get_by_reference(confirmation.reference)
        if payment is None:
            # Session created outside this service; keep a record of the money anyway
            payments.create(
                order_id=order.id,
                provider=confirmation.provider,
                provider_reference=confirmation.reference,
                amount=confirmation.amount if confirmation.amount is not None else order.total,
                currency=confirmation.currency or order.currency,
                status=PaymentStatus.SUCCESS,
                payment_intent_id=confirmation.payment_intent_id,
                details=confirmation.details,
            )
            return
        payment.status = PaymentStatus.SUCCESS.value
        if confirmation.payment_intent_id:
            payment.payment_intent_id = confirmation.payment_intent_id
        payment.details = {**(payment.details or {}), **confirmation.details}
        db.flush()

    def _after_commit(self, order: Order, target: OrderStatus, moved_variants: List[UUID]):
        if self.notifier is not None:
            try:
                self.notifier.notify(target.value, order)
            except Exception as e:
                logger.warning(f"Notification {target.value} for order {order.order_number} failed: {e}")

        if self.cache is not None:
            keys = [cache_keys.ORDER_KEY.format(order_id=order.id)]
            keys += [cache_keys.STOCK_KEY.format(variant_id=variant_id) for variant_id in moved_variants]
            if order.user_id:
                keys.append(cache_keys.USER_ORDERS_PATTERN.format(user_id=order.user_id))
            invalidate_all(self.cache, keys)


def invalidate_all(cache, keys):
    for key in keys:
        try:
            cache.invalidate(key)
        except Exception as e:
            logger.warning(f"Cache invalidation for {key} failed: {e}")
