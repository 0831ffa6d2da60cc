from fastapi import APIRouter, Depends, Header, Request
from starlette.concurrency import run_in_threadpool
from typing import Optional
from uuid import UUID

from fulfillment.auth.dependencies import get_optional_user
from fulfillment.schemas.payment import CheckoutSessionResponse, WebhookAck
from fulfillment.services import get_payment_service, get_payment_reconciler
from fulfillment.services.payment_service import PaymentService, PaymentReconciler

router = APIRouter(
    prefix="/payments",
    tags=["Payments"]
)


@router.post(
    "/webhook",
    response_model=WebhookAck,
    summary="Payment provider webhook",
    description="""
    Receives Stripe events. The raw body is verified against the
    `Stripe-Signature` header before anything in it is trusted.

    Every validly signed event is acknowledged, including ones that do not
    apply to any order, so the provider stops redelivering them.
    """,
    responses={400: {"description": "Invalid signature"}}
)
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler)
):
    raw_body = await request.body()
    # Reconciliation is blocking database work
    await run_in_threadpool(reconciler.handle_webhook, raw_body, stripe_signature)
    return WebhookAck(received=True)


@router.post(
    "/{order_id}/session",
    response_model=CheckoutSessionResponse,
    summary="Start payment for an order",
    responses={
        409: {"description": "Order is not PENDING"},
        502: {"description": "Payment provider failed or timed out"},
    }
)
def create_checkout_session(
    order_id: UUID,
    current_user: Optional[dict] = Depends(get_optional_user),
    payment_service: PaymentService = Depends(get_payment_service)
):
    session = payment_service.create_checkout_session(order_id, user=current_user)
    return CheckoutSessionResponse(
        order_id=session.order_id,
        session_id=session.session_id,
        redirect_url=session.redirect_url,
        expires_at=session.expires_at,
    )
