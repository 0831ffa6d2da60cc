"""
Error taxonomy for the order/inventory/payment engine.

Every failure the engine surfaces is one of the classes below. Each carries
the HTTP status the API layer answers with and a stable machine-readable code.
"""
from typing import Optional
from uuid import UUID


class FulfillmentError(Exception):
    """Base class for all engine errors"""

    status_code = 500
    code = "fulfillment_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class InsufficientStock(FulfillmentError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, variant_id: UUID, requested: int, available: int):
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for variant {variant_id}: requested {requested}, "
            f"available {available} (short by {self.shortfall})"
        )

    @property
    def shortfall(self) -> int:
        return self.requested - self.available

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "variant_id": str(self.variant_id),
            "requested": self.requested,
            "available": self.available,
        }


class EmptyCart(FulfillmentError):
    status_code = 422
    code = "empty_cart"


class OrderNotFound(FulfillmentError):
    status_code = 404
    code = "order_not_found"

    def __init__(self, order_ref):
        self.order_ref = order_ref
        super().__init__(f"Order not found: {order_ref}")


class AlreadyClaimed(FulfillmentError):
    status_code = 409
    code = "already_claimed"

    def __init__(self, order_id: UUID):
        self.order_id = order_id
        super().__init__(f"Order {order_id} is already attached to an account")


class VerificationFailed(FulfillmentError):
    status_code = 403
    code = "verification_failed"


class InvalidTransition(FulfillmentError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, order_id: UUID, current: str, target: str):
        self.order_id = order_id
        self.current = current
        self.target = target
        super().__init__(f"Order {order_id} cannot move from {current} to {target}")


class OrderNotPayable(FulfillmentError):
    status_code = 409
    code = "order_not_payable"

    def __init__(self, order_id: UUID, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is {status} and cannot be paid")


class SignatureVerificationError(FulfillmentError):
    status_code = 400
    code = "invalid_signature"


class NegativeStockError(FulfillmentError):
    status_code = 500
    code = "negative_stock"

    def __init__(self, variant_id: UUID, message: str):
        self.variant_id = variant_id
        super().__init__(message)


class TransientStorageError(FulfillmentError):
    status_code = 503
    code = "storage_unavailable"


class PaymentProviderError(FulfillmentError):
    status_code = 502
    code = "payment_provider_error"

    def __init__(self, message: str, timed_out: bool = False, provider_status: Optional[int] = None):
        self.timed_out = timed_out
        self.provider_status = provider_status
        super().__init__(message)


class VariantNotStocked(FulfillmentError):
    status_code = 404
    code = "variant_not_stocked"
