from pydantic import BaseModel, Field
from typing import List
from uuid import UUID
from datetime import datetime


class StockAdjustmentRequest(BaseModel):
    delta: int = Field(..., description="Units to add (positive) or write off (negative)", example=25)


class InventoryResponse(BaseModel):
    variant_id: UUID
    available_stock: int
    reserved_stock: int
    updated_at: datetime

    class Config:
        from_attributes = True


class SweepFailure(BaseModel):
    order_id: UUID
    error: str


class SweepResponse(BaseModel):
    candidates: int
    cancelled: int
    skipped: int
    failed: int
    failures: List[SweepFailure] = []
