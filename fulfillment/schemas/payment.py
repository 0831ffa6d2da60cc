from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime


class CheckoutSessionResponse(BaseModel):
    order_id: UUID
    session_id: str = Field(..., description="Provider checkout session id")
    redirect_url: str = Field(..., description="Where to send the customer to pay")
    expires_at: datetime


class WebhookAck(BaseModel):
    received: bool = True
