from sqlalchemy import Column, String, Text, Numeric, DateTime, ForeignKey, CheckConstraint, Index, Uuid
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
import uuid
from fulfillment.db.database import Base
from fulfillment.models.inventory import utcnow
from fulfillment.models.order import JSONType


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Payment(Base):
    """One payment attempt for an order. provider_reference is the provider's
    checkout session id and doubles as the idempotency key for its events."""
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id"), nullable=False)
    provider = Column(String(30), nullable=False)
    provider_reference = Column(Text, nullable=False, unique=True)
    payment_intent_id = Column(Text)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    details = Column(JSONType)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('PENDING', 'SUCCESS', 'FAILED')", name="payment_status_valid"),
        Index("idx_payments_order", "order_id"),
        Index("idx_payments_intent", "payment_intent_id"),
    )

    order = relationship("Order", back_populates="payments")
