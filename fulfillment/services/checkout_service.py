from decimal import Decimal
from typing import Optional
import logging

from fulfillment.config import settings
from fulfillment.db.database import unit_of_work
from fulfillment.errors import EmptyCart, InsufficientStock
from fulfillment.models.order import Order
from fulfillment.schemas.order import CheckoutRequest
from fulfillment.services.cart_provider import SqlCartProvider
from fulfillment.services.inventory_ledger import InventoryLedger
from fulfillment.services.order_store import OrderStore

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class CheckoutService:
    """Turns a cart into a PENDING order.

    Reservations, the order header, its items and clearing the cart share one
    transaction. If any line cannot be reserved the whole checkout rolls back,
    including reservations already made for earlier lines.
    """

    def __init__(self, session_factory=None, cart_provider_factory=SqlCartProvider, currency: Optional[str] = None):
        self.session_factory = session_factory
        self.cart_provider_factory = cart_provider_factory
        self.currency = currency or settings.currency

    def checkout(self, request: CheckoutRequest) -> Order:
        try:
            with unit_of_work(self.session_factory) as db:
                cart = self.cart_provider_factory(db)
                lines = cart.list_items(request.cart_id)
                if not lines:
                    raise EmptyCart(f"Cart {request.cart_id} has no items")

                # Same lock order for every checkout so two multi-item carts cannot deadlock
                ledger = InventoryLedger(db)
                for line in sorted(lines, key=lambda l: str(l.variant_id)):
                    ledger.reserve(line.variant_id, line.quantity)

                subtotal = sum((line.unit_price * line.quantity for line in lines), Decimal("0"))
                total = subtotal + request.shipping_cost + request.tax - request.discount
                total = max(total, Decimal("0")).quantize(CENTS)

                store = OrderStore(db)
                order = store.create(
                    order_number=store.next_order_number(),
                    user_id=request.user_id,
                    currency=self.currency,
                    subtotal=subtotal.quantize(CENTS),
                    shipping_cost=request.shipping_cost,
                    tax=request.tax,
                    discount=request.discount,
                    total=total,
                    shipping_address=request.shipping_address.model_dump(),
                    billing_address=request.billing_address.model_dump() if request.billing_address else None,
                    shipping_method=request.shipping_method,
                    items=[
                        {
                            "variant_id": line.variant_id,
                            "product_name": line.product_name,
                            "attributes": line.attributes,
                            "unit_price": line.unit_price,
                            "quantity": line.quantity,
                        }
                        for line in lines
                    ],
                )
                cart.clear(request.cart_id)
        except InsufficientStock as e:
            logger.info(f"Checkout of cart {request.cart_id} rejected: {e.message}")
            raise

        kind = "guest" if request.user_id is None else f"user {request.user_id}"
        logger.info(f"Created order {order.order_number} ({kind}, {len(order.items)} items, total {order.total})")
        return order
