"""
Abstract base class for payment providers
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional


@dataclass
class CheckoutSession:
    session_id: str
    redirect_url: str
    expires_at: datetime
    payment_intent_id: Optional[str] = None


@dataclass
class ProviderEvent:
    """A verified provider event, reduced to the fields reconciliation needs"""
    id: Optional[str]
    type: str
    order_id: Optional[str] = None
    reference: Optional[str] = None
    payment_intent_id: Optional[str] = None
    payment_status: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    raw: dict = field(default_factory=dict)


class PaymentProvider(ABC):
    """Abstract interface for hosted-checkout payment providers"""

    name = "provider"

    @abstractmethod
    def create_checkout_session(self, order) -> CheckoutSession:
        """
        Create a hosted checkout session for an order.

        Called outside any database transaction. Implementations must use a
        bounded timeout and must not retry on their own.

        Raises:
            PaymentProviderError: the provider refused, or the outcome is unknown (timeout)
        """
        pass

    @abstractmethod
    def verify_and_parse_event(self, raw_body: bytes, signature: str) -> ProviderEvent:
        """
        Verify an event's signature and parse it.

        Raises:
            SignatureVerificationError: signature missing, invalid or outside the tolerance window
        """
        pass
