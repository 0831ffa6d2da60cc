from fastapi import APIRouter, Depends
from uuid import UUID

from fulfillment.auth.dependencies import require_admin
from fulfillment.db.database import get_session_factory, unit_of_work
from fulfillment.errors import VariantNotStocked
from fulfillment.schemas.inventory import StockAdjustmentRequest, InventoryResponse, SweepResponse
from fulfillment.services import get_expiration_sweeper, get_order_lifecycle
from fulfillment.services.cache import STOCK_KEY
from fulfillment.services.expiration_sweeper import ExpirationSweeper
from fulfillment.services.inventory_ledger import InventoryLedger
from fulfillment.services.order_lifecycle import OrderLifecycle, invalidate_all

router = APIRouter(
    prefix="/inventory",
    tags=["Inventory"]
)


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Expire stale unpaid orders now (admin)"
)
def run_sweep(
    current_user: dict = Depends(require_admin),
    sweeper: ExpirationSweeper = Depends(get_expiration_sweeper)
):
    result = sweeper.sweep()
    return SweepResponse(
        candidates=result.candidates,
        cancelled=result.cancelled,
        skipped=result.skipped,
        failed=result.failed,
        failures=[{"order_id": order_id, "error": error} for order_id, error in result.failures],
    )


@router.get(
    "/{variant_id}",
    response_model=InventoryResponse,
    summary="Get stock levels for a variant"
)
def get_stock(
    variant_id: UUID,
    session_factory=Depends(get_session_factory)
):
    with unit_of_work(session_factory) as db:
        record = InventoryLedger(db).get(variant_id)
    if record is None:
        raise VariantNotStocked(f"Variant {variant_id} has never been stocked")
    return record


@router.post(
    "/{variant_id}",
    response_model=InventoryResponse,
    summary="Adjust available stock (admin)",
    description="Adds received units or writes off lost ones. The result can never go below zero.",
    responses={500: {"description": "Adjustment would make stock negative"}}
)
def adjust_stock(
    variant_id: UUID,
    body: StockAdjustmentRequest,
    current_user: dict = Depends(require_admin),
    session_factory=Depends(get_session_factory),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle)
):
    with unit_of_work(session_factory) as db:
        record = InventoryLedger(db).adjust_stock(variant_id, body.delta)
    if lifecycle.cache is not None:
        invalidate_all(lifecycle.cache, [STOCK_KEY.format(variant_id=variant_id)])
    return record
