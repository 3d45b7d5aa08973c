"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from cryptopay_gateway.domain.models import Currency, CurrencyKind, PaymentRequest


class CurrencySchema(BaseModel):
    """Native coin, or an ERC-20 token identified by contract and decimals"""

    kind: CurrencyKind = CurrencyKind.NATIVE
    contract_address: Optional[str] = None
    decimals: Optional[int] = Field(None, ge=0, le=77)

    def to_domain(self) -> Currency:
        if self.kind is CurrencyKind.TOKEN:
            return Currency.token(self.contract_address, 18 if self.decimals is None else self.decimals)
        return Currency.native()


class PaymentRequestSchema(BaseModel):
    """Expected payment; send amount as a string to keep it exact"""

    amount: Decimal = Field(..., ge=0, description="Amount in whole units (ether or tokens)")
    recipient_address: str = Field(..., min_length=42, max_length=42)
    required_confirmations: int = Field(..., ge=0)
    timeout_seconds: Optional[int] = Field(None, ge=0)
    currency: CurrencySchema = Field(default_factory=CurrencySchema)

    def to_domain(self) -> PaymentRequest:
        return PaymentRequest(
            amount=self.amount,
            currency=self.currency.to_domain(),
            recipient_address=self.recipient_address,
            required_confirmations=self.required_confirmations,
            timeout_seconds=self.timeout_seconds,
        )


class CreatePaymentRequest(PaymentRequestSchema):
    """Request body for POST /v1/payments"""

    metadata: Dict[str, Any] = Field(default_factory=dict)


class VerificationResponse(BaseModel):
    """Response for POST /v1/payments/verify"""

    outcome: str
    tx_hash: Optional[str] = None
    confirmations: Optional[int] = None
    reason: Optional[str] = None


class StatusSchema(BaseModel):
    state: str
    tx_hash: Optional[str] = None
    confirmations: Optional[int] = None
    reason: Optional[str] = None


class StatusEventSchema(StatusSchema):
    sequence: int
    created_at: datetime


class PaymentResponse(BaseModel):
    """Response for POST /v1/payments and GET /v1/payments/{payment_id}"""

    payment_id: str
    recipient_address: str
    amount: str
    currency_kind: str
    contract_address: Optional[str] = None
    decimals: int
    required_confirmations: int
    timeout_seconds: Optional[int] = None
    status: StatusSchema
    events: List[StatusEventSchema] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class ConfirmationsResponse(BaseModel):
    """Response for GET /v1/transactions/{tx_hash}/confirmations"""

    tx_hash: str
    confirmations: int


class CacheStatsResponse(BaseModel):
    entries: int
    total_weight: int
