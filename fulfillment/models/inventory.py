from sqlalchemy import Column, Integer, DateTime, CheckConstraint, Uuid
from sqlalchemy.sql import func
from datetime import datetime, timezone
from fulfillment.db.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class InventoryRecord(Base):
    """Stock counters for one sellable variant.

    available_stock is what can still be sold, reserved_stock is held for
    orders waiting on payment. Rows are only ever written through
    InventoryLedger and are never deleted.
    """
    __tablename__ = "inventory"

    # Soft reference to the catalog variant; no foreign key on purpose.
    variant_id = Column(Uuid, primary_key=True)
    available_stock = Column(Integer, nullable=False, default=0)
    reserved_stock = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("available_stock >= 0", name="available_stock_non_negative"),
        CheckConstraint("reserved_stock >= 0", name="reserved_stock_non_negative"),
    )
