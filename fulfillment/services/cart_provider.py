"""
Cart collaborators for checkout
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List
from uuid import UUID
from sqlalchemy.orm import Session

from fulfillment.models.cart import CartItem


@dataclass
class CartLine:
    variant_id: UUID
    quantity: int
    unit_price: Decimal
    product_name: str
    attributes: dict = field(default_factory=dict)


class CartProvider(ABC):
    """Source of the lines a checkout turns into an order.

    Implementations run inside the checkout's unit of work: clear() must not
    be visible to anyone if the checkout rolls back.
    """

    @abstractmethod
    def list_items(self, cart_id: UUID) -> List[CartLine]:
        """
        List the lines of a cart.

        Returns:
            Lines with price and product snapshots, empty list for an empty or unknown cart
        """
        pass

    @abstractmethod
    def clear(self, cart_id: UUID):
        """Remove every line from the cart"""
        pass


class SqlCartProvider(CartProvider):
    """Cart rows stored alongside orders, read and cleared on the checkout session"""

    def __init__(self, db: Session):
        self.db = db

    def list_items(self, cart_id: UUID) -> List[CartLine]:
        rows = self.db.query(CartItem).filter(
            CartItem.cart_id == cart_id
        ).order_by(CartItem.created_at.asc()).all()
        return [
            CartLine(
                variant_id=row.variant_id,
                quantity=row.quantity,
                unit_price=Decimal(row.unit_price),
                product_name=row.product_name,
                attributes=row.attributes or {},
            )
            for row in rows
        ]

    def clear(self, cart_id: UUID):
        self.db.query(CartItem).filter(CartItem.cart_id == cart_id).delete(synchronize_session=False)
