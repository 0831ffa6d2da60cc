from sqlalchemy import Column, Text, Integer, Numeric, DateTime, ForeignKey, CheckConstraint, Uuid
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import uuid
from fulfillment.db.database import Base
from fulfillment.models.inventory import utcnow
from fulfillment.models.order import JSONType


class Cart(Base):
    __tablename__ = "carts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan")


class CartItem(Base):
    """Cart line. Price and product data are copied in from the catalog when the item is added."""
    __tablename__ = "cart_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    cart_id = Column(Uuid, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False)
    variant_id = Column(Uuid, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    product_name = Column(Text, nullable=False)
    attributes = Column(JSONType)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="cart_item_quantity_positive"),
    )

    cart = relationship("Cart", back_populates="items")
