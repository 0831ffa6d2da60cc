from typing import List, Optional
from uuid import UUID
import logging

from fulfillment.db.database import unit_of_work
from fulfillment.errors import InvalidTransition, OrderNotFound, VerificationFailed
from fulfillment.models.order import Order, OrderStatus
from fulfillment.services.order_lifecycle import OrderLifecycle, TransitionResult
from fulfillment.services.order_store import OrderStore
from fulfillment.services.ownership_service import emails_match

logger = logging.getLogger(__name__)


class OrderService:
    """Customer-facing order reads and the customer cancel"""

    def __init__(self, lifecycle: OrderLifecycle, session_factory=None):
        self.lifecycle = lifecycle
        self.session_factory = session_factory

    def get_order(self, order_id: UUID, user_id: Optional[str] = None, is_admin: bool = False) -> Order:
        """Get an order owned by user_id. Someone else's order is reported as not found."""
        with unit_of_work(self.session_factory) as db:
            order = OrderStore(db).get(order_id)
        if order is None or (not is_admin and (order.user_id is None or order.user_id != user_id)):
            raise OrderNotFound(order_id)
        return order

    def list_user_orders(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Order]:
        with unit_of_work(self.session_factory) as db:
            return OrderStore(db).list_by_user(user_id, limit=limit, offset=offset)

    def get_guest_order(self, order_id: UUID, email: str) -> Order:
        with unit_of_work(self.session_factory) as db:
            order = OrderStore(db).find_guest_order(order_id)
        return self._verify_guest(order, email, order_id)

    def track_guest_order(self, order_number: str, email: str) -> Order:
        with unit_of_work(self.session_factory) as db:
            order = OrderStore(db).find_guest_order_by_number(order_number)
        return self._verify_guest(order, email, order_number)

    @staticmethod
    def _verify_guest(order: Optional[Order], email: str, order_ref) -> Order:
        # Wrong email and missing order look the same to the caller
        if order is None or not emails_match(email, order.email):
            raise OrderNotFound(order_ref)
        return order

    def cancel_pending_order(
        self,
        order_id: UUID,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        """Customer cancel of an unpaid order.

        Account holders cancel their own orders; guests prove the checkout
        email. A paid order cannot be cancelled here, that needs a refund.
        """
        with unit_of_work(self.session_factory) as db:
            order = OrderStore(db).get(order_id)
        if order is None:
            raise OrderNotFound(order_id)

        if order.user_id is not None:
            if order.user_id != user_id:
                raise OrderNotFound(order_id)
        elif not emails_match(email, order.email):
            raise VerificationFailed("Email does not match the order")

        if order.status not in (OrderStatus.PENDING.value, OrderStatus.CANCELLED.value):
            raise InvalidTransition(order.id, order.status, OrderStatus.CANCELLED.value)

        result = self.lifecycle.cancel(order.id, reason=reason or "customer_cancelled")
        if not result.applied and result.previous_status != OrderStatus.CANCELLED:
            # Paid between the read above and the locked cancel
            raise InvalidTransition(order.id, result.previous_status.value, OrderStatus.CANCELLED.value)
        return result
