from sqlalchemy import Column, String, Text, Integer, Numeric, DateTime, ForeignKey, CheckConstraint, Index, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship, validates
import enum
import uuid
from fulfillment.db.database import Base
from fulfillment.models.inventory import utcnow

JSONType = JSON().with_variant(JSONB, "postgresql")


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


# Edges of the order state machine. PAID -> CANCELLED needs a refund flow
# and is not allowed here.
ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.SHIPPED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

# Column stamped when an order enters each status
STATUS_TIMESTAMPS = {
    OrderStatus.PAID: "paid_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


class Order(Base):
    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number = Column(String(32), nullable=False, unique=True)
    user_id = Column(Text)  # NULL = guest order
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    currency = Column(String(3), nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    shipping_cost = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False)
    shipping_method = Column(String(50))
    shipping_address = Column(JSONType, nullable=False)  # snapshot, carries the contact email
    billing_address = Column(JSONType)
    cancellation_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)
    paid_at = Column(DateTime(timezone=True))
    shipped_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'PAID', 'SHIPPED', 'DELIVERED', 'CANCELLED')",
            name="order_status_valid"
        ),
        CheckConstraint("total >= 0", name="order_total_non_negative"),
        Index("idx_orders_user", "user_id"),
        Index("idx_orders_status_created", "status", "created_at"),
    )

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.created_at",
    )
    payments = relationship("Payment", back_populates="order", lazy="select")

    @property
    def email(self):
        return (self.shipping_address or {}).get("email")

    @validates("user_id")
    def validate_user_id(self, key, value):
        # Claiming is one-way: an owned order never goes back to being a guest order.
        if value is None and self.user_id is not None:
            raise ValueError(f"Order {self.id} is owned by an account and cannot be detached")
        return value


class OrderItem(Base):
    """Line item with product data snapshotted at checkout time"""
    __tablename__ = "order_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    variant_id = Column(Uuid, nullable=False)
    product_name = Column(Text, nullable=False)
    attributes = Column(JSONType)
    unit_price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="order_item_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="order_item_price_non_negative"),
        Index("idx_order_items_order", "order_id"),
    )

    order = relationship("Order", back_populates="items")


class OrderNumberCounter(Base):
    """Sequence row for human-readable order numbers, locked while incremented"""
    __tablename__ = "order_number_counters"

    name = Column(String(50), primary_key=True)
    value = Column(Integer, nullable=False, default=0)
