"""Data access layer for payment records"""

import uuid
from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from cryptopay_gateway.infrastructure.database.models import PaymentRecord, PaymentStatusEvent
from cryptopay_gateway.domain.models import Payment, PaymentStatus, utcnow


class PaymentRepository:
    """Repository for payments and their status history"""

    def __init__(self, db: Session):
        self.db = db

    def create_payment(self, payment: Payment) -> PaymentRecord:
        """Persist a new payment with its initial status"""
        request = payment.request
        db_payment = PaymentRecord(
            id=payment.id,
            recipient_address=request.recipient,
            amount=str(request.amount),
            currency_kind=request.currency.kind.value,
            contract_address=request.currency.contract_filter,
            decimals=request.currency.decimals,
            required_confirmations=request.required_confirmations,
            timeout_seconds=request.timeout_seconds,
            status=payment.status.state.value,
            tx_hash=payment.status.tx_hash,
            confirmations=payment.status.confirmations,
            reason=payment.status.reason,
            payment_metadata=dict(payment.metadata),
            created_at=payment.created_at,
            updated_at=payment.updated_at,
        )
        self.db.add(db_payment)
        self.db.flush()  # Get ID without committing
        return db_payment

    def get_payment(self, payment_id: uuid.UUID) -> Optional[PaymentRecord]:
        """Fetch payment with its events"""
        return (
            self.db.query(PaymentRecord)
            .filter(PaymentRecord.id == payment_id)
            .first()
        )

    def record_status(self, payment_id: uuid.UUID, status: PaymentStatus) -> PaymentStatusEvent:
        """Append a status event and make it the payment's current status"""
        db_payment = self.get_payment(payment_id)
        if db_payment is None:
            raise LookupError(f"Payment {payment_id} not found")

        sequence = (
            self.db.query(func.count(PaymentStatusEvent.id))
            .filter(PaymentStatusEvent.payment_id == payment_id)
            .scalar()
        )
        event = PaymentStatusEvent(
            payment_id=payment_id,
            sequence=sequence,
            status=status.state.value,
            tx_hash=status.tx_hash,
            confirmations=status.confirmations,
            reason=status.reason,
            created_at=utcnow(),
        )
        self.db.add(event)

        db_payment.status = status.state.value
        db_payment.tx_hash = status.tx_hash
        db_payment.confirmations = status.confirmations
        db_payment.reason = status.reason
        db_payment.updated_at = utcnow()
        self.db.flush()
        return event

    def list_events(self, payment_id: uuid.UUID) -> List[PaymentStatusEvent]:
        """Status history in delivery order"""
        return (
            self.db.query(PaymentStatusEvent)
            .filter(PaymentStatusEvent.payment_id == payment_id)
            .order_by(PaymentStatusEvent.sequence)
            .all()
        )
