"""
Guest order claims: attaching an order placed without an account to the
account of the person who placed it.
"""
from typing import List, Optional
from uuid import UUID
import hmac
import logging

from fulfillment.db.database import unit_of_work
from fulfillment.errors import AlreadyClaimed, FulfillmentError, OrderNotFound, VerificationFailed
from fulfillment.models.order import Order
from fulfillment.services import cache as cache_keys
from fulfillment.services.order_lifecycle import invalidate_all
from fulfillment.services.order_store import OrderStore

logger = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def emails_match(provided: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison of two emails after normalization"""
    return hmac.compare_digest(
        normalize_email(provided).encode("utf-8"),
        normalize_email(expected).encode("utf-8"),
    )


class OwnershipService:
    def __init__(self, session_factory=None, cache=None):
        self.session_factory = session_factory
        self.cache = cache

    def claim_order(self, order_id: UUID, new_user_id: str, verification_email: str) -> Order:
        """Attach a guest order to new_user_id once the caller proves the checkout email.

        The order row stays locked from the ownership check to the commit. The
        write itself is conditional on the order still being a guest order, so
        it can never overwrite an existing owner.
        """
        with unit_of_work(self.session_factory) as db:
            store = OrderStore(db)
            order = store.get_for_update(order_id)
            if order is None:
                raise OrderNotFound(order_id)
            if order.user_id is not None:
                raise AlreadyClaimed(order.id)
            if not emails_match(verification_email, order.email):
                raise VerificationFailed("Email does not match the order")
            if not store.assign_owner(order.id, new_user_id):
                raise AlreadyClaimed(order.id)
            order = store.get(order.id)

        logger.info(f"Order {order.order_number} claimed by user {new_user_id}")
        self._invalidate(order)
        return order

    def auto_claim_guest_orders(self, new_user_id: str, email: str) -> List[str]:
        """Claim every guest order placed with email, one transaction per order.

        Used right after an account is created or verified. Orders that fail to
        claim are logged and left as guest orders.
        """
        with unit_of_work(self.session_factory) as db:
            candidate_ids = [order.id for order in OrderStore(db).list_guest_orders_by_email(email)]

        claimed = []
        for order_id in candidate_ids:
            try:
                order = self.claim_order(order_id, new_user_id, email)
            except FulfillmentError as e:
                logger.info(f"Skipped auto-claim of order {order_id}: {e.message}")
                continue
            claimed.append(order.order_number)

        if claimed:
            logger.info(f"Auto-claimed {len(claimed)} guest orders for user {new_user_id}")
        return claimed

    def _invalidate(self, order: Order):
        if self.cache is None:
            return
        invalidate_all(self.cache, [
            cache_keys.ORDER_KEY.format(order_id=order.id),
            cache_keys.USER_ORDERS_PATTERN.format(user_id=order.user_id),
        ])
