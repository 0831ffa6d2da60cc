from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
from uuid import UUID

from fulfillment.auth.dependencies import get_current_user, get_optional_user, require_admin
from fulfillment.schemas.order import (
    CheckoutBody, CheckoutRequest, OrderResponse, ClaimRequest, CancelRequest, StatusUpdateRequest
)
from fulfillment.services import (
    get_checkout_service, get_order_service, get_ownership_service, get_order_lifecycle
)
from fulfillment.services.checkout_service import CheckoutService
from fulfillment.services.order_lifecycle import OrderLifecycle
from fulfillment.services.order_service import OrderService
from fulfillment.services.ownership_service import OwnershipService

router = APIRouter(
    prefix="/orders",
    tags=["Orders"]
)


@router.post(
    "/checkout",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order from a cart",
    description="""
    Reserve stock for every cart line and create a PENDING order. Guests may
    check out without a token; the shipping email is then the only way to
    look the order up or claim it later.

    Fails with 409 and the short variant when stock is insufficient, in
    which case nothing is reserved and the cart is left as it was.
    """,
    responses={
        409: {"description": "Insufficient stock for one of the cart lines"},
        422: {"description": "Cart is empty"},
    }
)
def checkout(
    body: CheckoutBody,
    current_user: Optional[dict] = Depends(get_optional_user),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    request = CheckoutRequest(
        **body.model_dump(),
        user_id=current_user["user_id"] if current_user else None
    )
    return checkout_service.checkout(request)


@router.get(
    "",
    response_model=List[OrderResponse],
    summary="List my orders"
)
def list_my_orders(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    return order_service.list_user_orders(current_user["user_id"], limit=limit, offset=offset)


@router.get(
    "/track",
    response_model=OrderResponse,
    summary="Track a guest order by order number"
)
def track_guest_order(
    order_number: str = Query(..., min_length=1),
    email: str = Query(..., min_length=3),
    order_service: OrderService = Depends(get_order_service)
):
    return order_service.track_guest_order(order_number, email)


@router.get(
    "/guest/{order_id}",
    response_model=OrderResponse,
    summary="Get a guest order",
    description="Guest orders only. The email must match the one given at checkout."
)
def get_guest_order(
    order_id: UUID,
    email: str = Query(..., min_length=3),
    order_service: OrderService = Depends(get_order_service)
):
    return order_service.get_guest_order(order_id, email)


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get one of my orders"
)
def get_order(
    order_id: UUID,
    current_user: dict = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    return order_service.get_order(
        order_id,
        user_id=current_user["user_id"],
        is_admin=current_user.get("account_type") == "ADMIN"
    )


@router.post(
    "/{order_id}/claim",
    response_model=OrderResponse,
    summary="Attach a guest order to my account",
    responses={
        403: {"description": "Email does not match the order"},
        409: {"description": "Order already belongs to an account"},
    }
)
def claim_order(
    order_id: UUID,
    body: ClaimRequest,
    current_user: dict = Depends(get_current_user),
    ownership_service: OwnershipService = Depends(get_ownership_service)
):
    return ownership_service.claim_order(order_id, current_user["user_id"], body.email)


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel an unpaid order"
)
def cancel_order(
    order_id: UUID,
    body: CancelRequest,
    current_user: Optional[dict] = Depends(get_optional_user),
    order_service: OrderService = Depends(get_order_service)
):
    result = order_service.cancel_pending_order(
        order_id,
        user_id=current_user["user_id"] if current_user else None,
        email=body.email,
        reason=body.reason
    )
    return result.order


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Change order status (admin)",
    description="Moves an order along PENDING -> PAID -> SHIPPED -> DELIVERED, or cancels a PENDING order."
)
def update_order_status(
    order_id: UUID,
    body: StatusUpdateRequest,
    current_user: dict = Depends(require_admin),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle)
):
    result = lifecycle.update_status(order_id, body.status, reason=body.reason)
    return result.order
