from sqlalchemy.orm import Session
from sqlalchemy import func
from typing import List, Optional
from uuid import UUID
from datetime import datetime
from decimal import Decimal
import logging

from fulfillment.models.order import (
    Order, OrderItem, OrderNumberCounter, OrderStatus, STATUS_TIMESTAMPS
)
from fulfillment.models.inventory import utcnow

logger = logging.getLogger(__name__)

ORDER_COUNTER = "orders"


class OrderStore:
    """Data access for orders and their line items.

    Status changes go through transition(), a conditional UPDATE on the
    expected current status. Guest lookups go through guest_orders(), which
    owns the `user_id IS NULL` predicate; no other query should filter guest
    orders on its own.
    """

    def __init__(self, db: Session):
        self.db = db

    # Guest barrier

    @staticmethod
    def guest_predicate():
        return Order.user_id.is_(None)

    def guest_orders(self):
        """Query over orders that are not attached to any account"""
        return self.db.query(Order).filter(self.guest_predicate())

    def find_guest_order(self, order_id: UUID) -> Optional[Order]:
        return self.guest_orders().filter(Order.id == order_id).first()

    def find_guest_order_by_number(self, order_number: str) -> Optional[Order]:
        return self.guest_orders().filter(Order.order_number == order_number).first()

    def list_guest_orders_by_email(self, email: str) -> List[Order]:
        snapshot_email = func.lower(Order.shipping_address["email"].as_string())
        return self.guest_orders().filter(
            snapshot_email == email.strip().lower()
        ).order_by(Order.created_at.asc()).all()

    def assign_owner(self, order_id: UUID, user_id: str) -> bool:
        """Attach a guest order to an account. False when it is no longer a guest order."""
        updated = self.db.query(Order).filter(
            Order.id == order_id,
            self.guest_predicate()
        ).update(
            {Order.user_id: user_id, Order.updated_at: utcnow()},
            synchronize_session=False
        )
        return updated == 1

    # Reads

    def get(self, order_id: UUID) -> Optional[Order]:
        return self.db.query(Order).filter(Order.id == order_id).populate_existing().first()

    def get_for_update(self, order_id: UUID, nowait: bool = False) -> Optional[Order]:
        """Load an order holding its row lock until the unit of work ends.

        With nowait the database refuses instead of waiting when another
        transaction holds the lock; SQLAlchemy raises OperationalError.
        """
        return self.db.query(Order).filter(
            Order.id == order_id
        ).with_for_update(nowait=nowait).populate_existing().first()

    def list_by_user(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Order]:
        return self.db.query(Order).filter(
            Order.user_id == user_id
        ).order_by(Order.created_at.desc()).offset(offset).limit(limit).all()

    def find_expired_pending(self, cutoff: datetime, limit: Optional[int] = None) -> List[UUID]:
        """Ids of PENDING orders created before cutoff, oldest first"""
        query = self.db.query(Order.id).filter(
            Order.status == OrderStatus.PENDING.value,
            Order.created_at < cutoff
        ).order_by(Order.created_at.asc())
        if limit:
            query = query.limit(limit)
        return [row.id for row in query.all()]

    # Writes

    def next_order_number(self, now: Optional[datetime] = None) -> str:
        """Draw the next ORD-<year>-<seq> number from the locked counter row"""
        now = now or utcnow()
        counter = self.db.query(OrderNumberCounter).filter(
            OrderNumberCounter.name == ORDER_COUNTER
        ).with_for_update().populate_existing().first()
        if counter is None:
            counter = OrderNumberCounter(name=ORDER_COUNTER, value=0)
            self.db.add(counter)
        counter.value += 1
        self.db.flush()
        return f"ORD-{now.year}-{counter.value:06d}"

    def create(
        self,
        *,
        order_number: str,
        user_id: Optional[str],
        currency: str,
        subtotal: Decimal,
        shipping_cost: Decimal,
        tax: Decimal,
        discount: Decimal,
        total: Decimal,
        shipping_address: dict,
        billing_address: Optional[dict],
        shipping_method: Optional[str],
        items: List[dict],
    ) -> Order:
        order = Order(
            order_number=order_number,
            user_id=user_id,
            status=OrderStatus.PENDING.value,
            currency=currency,
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            tax=tax,
            discount=discount,
            total=total,
            shipping_address=shipping_address,
            billing_address=billing_address,
            shipping_method=shipping_method,
        )
        order.items = [OrderItem(**item) for item in items]
        self.db.add(order)
        self.db.flush()
        return order

    def transition(
        self,
        order_id: UUID,
        expected: OrderStatus,
        target: OrderStatus,
        reason: Optional[str] = None,
    ) -> bool:
        """Move an order from expected to target status.

        Returns False without touching the row when the order is no longer in
        the expected status, so the caller can skip the side effects that
        belong to the transition.
        """
        now = utcnow()
        values = {Order.status: target.value, Order.updated_at: now}
        stamp = STATUS_TIMESTAMPS.get(target)
        if stamp:
            values[getattr(Order, stamp)] = now
        if reason and target == OrderStatus.CANCELLED:
            values[Order.cancellation_reason] = reason

        updated = self.db.query(Order).filter(
            Order.id == order_id,
            Order.status == expected.value
        ).update(values, synchronize_session=False)
        return updated == 1
