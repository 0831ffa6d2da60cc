from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
from decimal import Decimal

from fulfillment.models.payment import Payment, PaymentStatus
from fulfillment.models.inventory import utcnow


class PaymentStore:
    """Data access for payment attempts, keyed by the provider's session reference"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        order_id: UUID,
        provider: str,
        provider_reference: str,
        amount: Decimal,
        currency: str,
        status: PaymentStatus = PaymentStatus.PENDING,
        payment_intent_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> Payment:
        payment = Payment(
            order_id=order_id,
            provider=provider,
            provider_reference=provider_reference,
            payment_intent_id=payment_intent_id,
            status=status.value,
            amount=amount,
            currency=currency,
            details=details,
        )
        self.db.add(payment)
        self.db.flush()
        return payment

    def get_by_reference(self, provider_reference: str) -> Optional[Payment]:
        return self.db.query(Payment).filter(
            Payment.provider_reference == provider_reference
        ).populate_existing().first()

    def list_for_order(self, order_id: UUID) -> List[Payment]:
        return self.db.query(Payment).filter(
            Payment.order_id == order_id
        ).order_by(Payment.created_at.asc()).all()

    def mark_by_reference(
        self,
        provider_reference: str,
        status: PaymentStatus,
        payment_intent_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> bool:
        """Apply the terminal status of a PENDING payment. False if none was pending."""
        values = {Payment.status: status.value, Payment.updated_at: utcnow()}
        if payment_intent_id:
            values[Payment.payment_intent_id] = payment_intent_id
        if details is not None:
            values[Payment.details] = details
        updated = self.db.query(Payment).filter(
            Payment.provider_reference == provider_reference,
            Payment.status == PaymentStatus.PENDING.value
        ).update(values, synchronize_session=False)
        return updated == 1

    def mark_failed_by_intent(self, payment_intent_id: str) -> int:
        return self.db.query(Payment).filter(
            Payment.payment_intent_id == payment_intent_id,
            Payment.status == PaymentStatus.PENDING.value
        ).update(
            {Payment.status: PaymentStatus.FAILED.value, Payment.updated_at: utcnow()},
            synchronize_session=False
        )
