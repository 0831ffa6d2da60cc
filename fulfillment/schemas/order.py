from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime
from decimal import Decimal

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class AddressSnapshot(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=200, description="Recipient name", example="Ada Lovelace")
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=254, description="Contact email, also used to verify guest orders", example="ada@example.com")
    phone: Optional[str] = Field(None, max_length=40, description="Contact phone")
    line1: str = Field(..., min_length=1, max_length=200, example="12 Analytical Row")
    line2: Optional[str] = Field(None, max_length=200)
    city: str = Field(..., min_length=1, max_length=100, example="London")
    postal_code: str = Field(..., min_length=1, max_length=20, example="N1 9GU")
    country: str = Field(..., pattern="^[A-Z]{2}$", description="ISO 3166-1 alpha-2 country code", example="GB")

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class CheckoutRequest(BaseModel):
    cart_id: UUID = Field(..., description="Cart to turn into an order")
    user_id: Optional[str] = Field(None, description="Authenticated account, None for guest checkout")
    shipping_address: AddressSnapshot
    billing_address: Optional[AddressSnapshot] = None
    shipping_method: Optional[str] = Field(None, max_length=50, example="standard")
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2, description="Pre-computed shipping cost")
    tax: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2, description="Pre-computed tax")
    discount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2, description="Pre-computed discount")


class CheckoutBody(BaseModel):
    """Checkout request as sent by clients; the account comes from the token, not the body"""
    cart_id: UUID
    shipping_address: AddressSnapshot
    billing_address: Optional[AddressSnapshot] = None
    shipping_method: Optional[str] = Field(None, max_length=50)
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    tax: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    discount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)


class OrderItemResponse(BaseModel):
    id: UUID
    variant_id: UUID
    product_name: str
    attributes: Optional[Dict[str, Any]] = None
    unit_price: Decimal
    quantity: int

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: UUID = Field(..., description="Order UUID")
    order_number: str = Field(..., description="Human-readable order number", example="ORD-2026-000042")
    user_id: Optional[str] = Field(None, description="Owning account, null for guest orders")
    status: str = Field(..., description="Order status", example="PENDING")
    currency: str
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    shipping_method: Optional[str] = None
    shipping_address: Dict[str, Any]
    billing_address: Optional[Dict[str, Any]] = None
    items: List[OrderItemResponse] = []
    created_at: datetime
    updated_at: datetime
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ClaimRequest(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN, description="Email used at guest checkout")


class CancelRequest(BaseModel):
    email: Optional[str] = Field(None, description="Required for guest orders")
    reason: Optional[str] = Field(None, max_length=500)


class StatusUpdateRequest(BaseModel):
    status: str = Field(..., pattern="^(PAID|SHIPPED|DELIVERED|CANCELLED)$", example="SHIPPED")
    reason: Optional[str] = Field(None, max_length=500)
