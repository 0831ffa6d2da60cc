# Package exports - these allow cleaner imports like:
# from fulfillment.schemas import CheckoutRequest, OrderResponse
from fulfillment.schemas.order import (
    AddressSnapshot, CheckoutRequest, CheckoutBody, OrderResponse, OrderItemResponse,
    ClaimRequest, CancelRequest, StatusUpdateRequest
)
from fulfillment.schemas.inventory import StockAdjustmentRequest, InventoryResponse, SweepResponse
from fulfillment.schemas.payment import CheckoutSessionResponse, WebhookAck
