# Package exports - these allow cleaner imports like:
# from fulfillment.models import Order, InventoryRecord
# Used by alembic/env.py so every table is registered on Base.metadata
from fulfillment.models.inventory import InventoryRecord
from fulfillment.models.order import Order, OrderItem, OrderNumberCounter, OrderStatus
from fulfillment.models.payment import Payment, PaymentStatus
from fulfillment.models.cart import Cart, CartItem
