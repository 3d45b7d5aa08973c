"""Domain models - pure Python dataclasses representing payment entities"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from cryptopay_gateway.domain.amounts import NATIVE_DECIMALS, to_decimal
from cryptopay_gateway.domain.exceptions import InvalidAmountError, InvalidInputError
from cryptopay_gateway.utils.hex_utils import is_valid_address, normalize_address


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CurrencyKind(str, Enum):
    NATIVE = "native"
    TOKEN = "token"


@dataclass(frozen=True)
class Currency:
    """
    Native coin or ERC-20 token.

    Both variants expose the same two facts the matching engine needs:
    the decimal count and an optional contract filter.
    """

    kind: CurrencyKind
    decimals: int = NATIVE_DECIMALS
    contract_address: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind is CurrencyKind.TOKEN:
            if self.contract_address is None or not is_valid_address(self.contract_address):
                raise InvalidInputError(f"Invalid token contract address: {self.contract_address!r}")
            if not 0 <= self.decimals <= 77:
                raise InvalidInputError(f"Token decimals out of range: {self.decimals}")
        elif self.contract_address is not None or self.decimals != NATIVE_DECIMALS:
            raise InvalidInputError("Native currency takes no contract and always has 18 decimals")

    @classmethod
    def native(cls) -> "Currency":
        return cls(kind=CurrencyKind.NATIVE)

    @classmethod
    def token(cls, contract_address: str, decimals: int) -> "Currency":
        return cls(kind=CurrencyKind.TOKEN, decimals=decimals, contract_address=contract_address)

    # Common Ethereum mainnet stablecoins
    @classmethod
    def usdt(cls) -> "Currency":
        return cls.token("0xdAC17F958D2ee523a2206206994597C13D831ec7", 6)

    @classmethod
    def usdc(cls) -> "Currency":
        return cls.token("0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6)

    @classmethod
    def dai(cls) -> "Currency":
        return cls.token("0x6B175474E89094C44Da98b954EedeAC495271d0F", 18)

    @property
    def is_token(self) -> bool:
        return self.kind is CurrencyKind.TOKEN

    @property
    def contract_filter(self) -> Optional[str]:
        """Lower-cased contract address for tokens, None for the native coin"""
        return self.contract_address.lower() if self.contract_address else None


@dataclass(frozen=True)
class PaymentRequest:
    """Expected payment: what, to whom, and how many confirmations make it final"""

    amount: Decimal
    currency: Currency
    recipient_address: str
    required_confirmations: int
    timeout_seconds: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        amount = to_decimal(self.amount)
        if amount < 0:
            raise InvalidAmountError(f"Amount cannot be negative: {amount}")
        object.__setattr__(self, "amount", amount)
        normalize_address(self.recipient_address)
        if self.required_confirmations < 0:
            raise InvalidInputError("required_confirmations cannot be negative")
        if self.timeout_seconds is not None and self.timeout_seconds < 0:
            raise InvalidInputError("timeout_seconds cannot be negative")
        if self.created_at.tzinfo is None:
            raise InvalidInputError("created_at must be timezone-aware")

    @classmethod
    def native(
        cls,
        amount: Decimal | int | str,
        recipient_address: str,
        required_confirmations: int,
    ) -> "PaymentRequest":
        return cls(
            amount=amount,
            currency=Currency.native(),
            recipient_address=recipient_address,
            required_confirmations=required_confirmations,
        )

    @classmethod
    def token(
        cls,
        amount: Decimal | int | str,
        contract_address: str,
        decimals: int,
        recipient_address: str,
        required_confirmations: int,
    ) -> "PaymentRequest":
        return cls(
            amount=amount,
            currency=Currency.token(contract_address, decimals),
            recipient_address=recipient_address,
            required_confirmations=required_confirmations,
        )

    def with_timeout(self, timeout_seconds: int) -> "PaymentRequest":
        """Return a copy that expires timeout_seconds after created_at"""
        return replace(self, timeout_seconds=timeout_seconds)

    @property
    def recipient(self) -> str:
        return self.recipient_address.lower()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.timeout_seconds is None:
            return False
        elapsed = ((now or utcnow()) - self.created_at).total_seconds()
        return elapsed >= self.timeout_seconds


@dataclass(frozen=True)
class TransactionCandidate:
    """Transfer to an address, as reported by the explorer"""

    tx_hash: str
    sender: str
    recipient: str
    value: int  # raw units (wei or token base units)
    block_number: int
    success: bool
    confirmations: int
    contract_address: Optional[str] = None


class VerificationOutcome(str, Enum):
    NOT_FOUND = "not_found"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a single verification check"""

    outcome: VerificationOutcome
    tx_hash: Optional[str] = None
    confirmations: Optional[int] = None
    reason: Optional[str] = None

    @classmethod
    def not_found(cls) -> "VerificationResult":
        return cls(VerificationOutcome.NOT_FOUND)

    @classmethod
    def pending(cls, tx_hash: str, confirmations: int) -> "VerificationResult":
        return cls(VerificationOutcome.PENDING, tx_hash=tx_hash, confirmations=confirmations)

    @classmethod
    def confirmed(cls, tx_hash: str, confirmations: int) -> "VerificationResult":
        return cls(VerificationOutcome.CONFIRMED, tx_hash=tx_hash, confirmations=confirmations)

    @classmethod
    def failed(cls, reason: str) -> "VerificationResult":
        return cls(VerificationOutcome.FAILED, reason=reason)


class PaymentState(str, Enum):
    PENDING = "pending"
    DETECTED = "detected"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"


TERMINAL_STATES = frozenset({PaymentState.CONFIRMED, PaymentState.FAILED, PaymentState.EXPIRED})


@dataclass(frozen=True)
class PaymentStatus:
    """Monitor's view of a payment across polls"""

    state: PaymentState
    tx_hash: Optional[str] = None
    confirmations: Optional[int] = None
    reason: Optional[str] = None

    @classmethod
    def pending(cls) -> "PaymentStatus":
        return cls(PaymentState.PENDING)

    @classmethod
    def detected(cls, tx_hash: str, confirmations: int) -> "PaymentStatus":
        return cls(PaymentState.DETECTED, tx_hash=tx_hash, confirmations=confirmations)

    @classmethod
    def confirmed(cls, tx_hash: str, confirmations: int) -> "PaymentStatus":
        return cls(PaymentState.CONFIRMED, tx_hash=tx_hash, confirmations=confirmations)

    @classmethod
    def failed(cls, reason: str) -> "PaymentStatus":
        return cls(PaymentState.FAILED, reason=reason)

    @classmethod
    def expired(cls) -> "PaymentStatus":
        return cls(PaymentState.EXPIRED)

    def is_finalized(self) -> bool:
        return self.state in TERMINAL_STATES

    def is_successful(self) -> bool:
        return self.state is PaymentState.CONFIRMED


@dataclass
class Payment:
    """Payment record tracked by the service (storage is optional)"""

    request: PaymentRequest
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    status: PaymentStatus = field(default_factory=PaymentStatus.pending)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Expiry is measured from the request, so the record shares its clock
        if self.created_at is None:
            self.created_at = self.request.created_at
        if self.updated_at is None:
            self.updated_at = self.created_at

    def update_status(self, status: PaymentStatus) -> None:
        self.status = status
        self.updated_at = utcnow()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.request.is_expired(now)

    def with_metadata(self, metadata: Dict[str, Any]) -> "Payment":
        """Copy of this payment carrying metadata; the original is left untouched"""
        return replace(self, metadata=dict(metadata))
