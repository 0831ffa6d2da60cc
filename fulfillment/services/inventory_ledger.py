from sqlalchemy.orm import Session
from sqlalchemy import case
from typing import List, Optional
from uuid import UUID
import logging

from fulfillment.models.inventory import InventoryRecord
from fulfillment.errors import InsufficientStock, NegativeStockError

logger = logging.getLogger(__name__)


class InventoryLedger:
    """Per-variant stock counters.

    Every mutation is a single UPDATE guarded by a WHERE clause, so the row
    lock the database takes for the statement is what linearizes concurrent
    callers on the same variant. Nothing is read into memory, modified and
    written back. The ledger never commits; it runs inside the caller's unit
    of work so a checkout or cancellation can roll all of its stock moves
    back together.
    """

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _check_quantity(quantity: int):
        if quantity <= 0:
            raise ValueError(f"Quantity must be positive, got {quantity}")

    def get(self, variant_id: UUID) -> Optional[InventoryRecord]:
        return self.db.query(InventoryRecord).filter(
            InventoryRecord.variant_id == variant_id
        ).populate_existing().first()

    def _available(self, variant_id: UUID) -> int:
        available = self.db.query(InventoryRecord.available_stock).filter(
            InventoryRecord.variant_id == variant_id
        ).scalar()
        return available or 0

    def reserve(self, variant_id: UUID, quantity: int):
        """Move quantity from available to reserved, or raise InsufficientStock"""
        self._check_quantity(quantity)
        updated = self.db.query(InventoryRecord).filter(
            InventoryRecord.variant_id == variant_id,
            InventoryRecord.available_stock >= quantity
        ).update(
            {
                InventoryRecord.available_stock: InventoryRecord.available_stock - quantity,
                InventoryRecord.reserved_stock: InventoryRecord.reserved_stock + quantity,
            },
            synchronize_session=False
        )
        if updated == 0:
            # Either the variant was never stocked or another caller got there first
            raise InsufficientStock(variant_id, quantity, self._available(variant_id))
        logger.debug(f"Reserved {quantity} of variant {variant_id}")

    def release(self, variant_id: UUID, quantity: int):
        """Return reserved units to availability.

        reserved_stock is floored at zero rather than going negative. The
        ledger does not deduplicate: the order status check in front of it
        guarantees one release per order.
        """
        self._check_quantity(quantity)
        updated = self.db.query(InventoryRecord).filter(
            InventoryRecord.variant_id == variant_id
        ).update(
            {
                InventoryRecord.available_stock: InventoryRecord.available_stock + quantity,
                InventoryRecord.reserved_stock: case(
                    (InventoryRecord.reserved_stock >= quantity, InventoryRecord.reserved_stock - quantity),
                    else_=0
                ),
            },
            synchronize_session=False
        )
        if updated == 0:
            logger.error(f"Cannot release {quantity} units: no inventory record for variant {variant_id}")
            raise NegativeStockError(variant_id, f"No inventory record for variant {variant_id}")
        logger.debug(f"Released {quantity} of variant {variant_id}")

    def confirm_sale(self, variant_id: UUID, quantity: int):
        """Drop sold units from reserved_stock. available_stock already went down at reserve time."""
        self._check_quantity(quantity)
        updated = self.db.query(InventoryRecord).filter(
            InventoryRecord.variant_id == variant_id,
            InventoryRecord.reserved_stock >= quantity
        ).update(
            {InventoryRecord.reserved_stock: InventoryRecord.reserved_stock - quantity},
            synchronize_session=False
        )
        if updated == 0:
            record = self.get(variant_id)
            reserved = record.reserved_stock if record else None
            logger.error(
                f"Cannot confirm sale of {quantity} units for variant {variant_id}: "
                f"reserved_stock is {reserved}"
            )
            raise NegativeStockError(
                variant_id,
                f"Confirming {quantity} units of variant {variant_id} would make reserved stock negative"
            )
        logger.debug(f"Confirmed sale of {quantity} of variant {variant_id}")

    def adjust_stock(self, variant_id: UUID, delta: int) -> InventoryRecord:
        """Manual correction of available stock (goods received, shrinkage).

        Creates the record at zero the first time a variant is stocked.
        """
        record = self.db.query(InventoryRecord).filter(
            InventoryRecord.variant_id == variant_id
        ).with_for_update().populate_existing().first()

        if record is None:
            record = InventoryRecord(variant_id=variant_id, available_stock=0, reserved_stock=0)
            self.db.add(record)

        new_available = record.available_stock + delta
        if new_available < 0:
            logger.error(
                f"Rejected stock adjustment of {delta} for variant {variant_id}: "
                f"available_stock would be {new_available}"
            )
            raise NegativeStockError(
                variant_id,
                f"Adjustment of {delta} would leave variant {variant_id} with {new_available} units"
            )

        record.available_stock = new_available
        self.db.flush()
        logger.info(f"Adjusted stock of variant {variant_id} by {delta} (available: {new_available})")
        return record

    def find_low_stock(self, threshold: int) -> List[InventoryRecord]:
        return self.db.query(InventoryRecord).filter(
            InventoryRecord.available_stock <= threshold
        ).order_by(InventoryRecord.available_stock.asc()).all()
