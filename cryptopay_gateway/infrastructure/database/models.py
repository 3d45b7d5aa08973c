"""SQLAlchemy ORM models for tracked payments"""

import uuid
from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, Text, Uuid
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class PaymentRecord(Base):
    """Payment request plus its latest known status"""

    __tablename__ = "payment"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    recipient_address = Column(Text, nullable=False, index=True)
    amount = Column(Text, nullable=False)  # exact decimal as string
    currency_kind = Column(Text, nullable=False)
    contract_address = Column(Text, nullable=True)
    decimals = Column(Integer, nullable=False)
    required_confirmations = Column(Integer, nullable=False)
    timeout_seconds = Column(Integer, nullable=True)
    status = Column(Text, nullable=False, default="pending")
    tx_hash = Column(Text, nullable=True)
    confirmations = Column(Integer, nullable=True)
    reason = Column(Text, nullable=True)
    payment_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    events = relationship(
        "PaymentStatusEvent",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentStatusEvent.sequence",
    )


class PaymentStatusEvent(Base):
    """One status delivered by the monitor, in delivery order"""

    __tablename__ = "payment_status_event"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_id = Column(Uuid(as_uuid=True), ForeignKey("payment.id", ondelete="CASCADE"), nullable=False)
    sequence = Column(Integer, nullable=False)
    status = Column(Text, nullable=False)
    tx_hash = Column(Text, nullable=True)
    confirmations = Column(Integer, nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    payment = relationship("PaymentRecord", back_populates="events")
