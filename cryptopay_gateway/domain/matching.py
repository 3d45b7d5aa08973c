"""Transaction matching engine - decides which candidate is the payment"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional

from cryptopay_gateway.domain.amounts import amount_sufficient, amounts_match, raw_to_token, to_decimal
from cryptopay_gateway.domain.exceptions import ConfigurationError
from cryptopay_gateway.domain.models import PaymentRequest, TransactionCandidate


class AmountPolicy(str, Enum):
    EXACT = "exact"
    WITHIN_TOLERANCE = "within_tolerance"  # |actual - expected| <= expected * tol%
    AT_LEAST = "at_least"  # actual >= expected * (1 - tol%)


@dataclass(frozen=True)
class Match:
    """Winning candidate plus its normalized amount"""

    candidate: TransactionCandidate
    amount: Decimal

    @property
    def tx_hash(self) -> str:
        return self.candidate.tx_hash

    @property
    def confirmations(self) -> int:
        return self.candidate.confirmations


def _rank_key(candidate: TransactionCandidate) -> tuple:
    # Most confirmations, then latest block, then smallest hash
    return (-candidate.confirmations, -candidate.block_number, candidate.tx_hash.lower())


class MatchingEngine:
    """
    Select the transaction that pays a request.

    Amounts are compared as exact decimals. The default EXACT policy means a
    candidate one base unit away from the expected amount never matches;
    tolerance is opt-in through WITHIN_TOLERANCE or AT_LEAST.
    """

    def __init__(
        self,
        policy: AmountPolicy = AmountPolicy.EXACT,
        tolerance_percent: Decimal | int | str = 0,
    ):
        tolerance = to_decimal(tolerance_percent)
        if tolerance < 0 or tolerance > 100:
            raise ConfigurationError(f"tolerance_percent must be within [0, 100], got {tolerance}")
        if policy is AmountPolicy.EXACT and tolerance != 0:
            raise ConfigurationError("EXACT policy does not take a tolerance")
        self.policy = policy
        self.tolerance_percent = tolerance

    def amount_accepted(self, expected: Decimal, actual: Decimal) -> bool:
        if self.policy is AmountPolicy.EXACT:
            return actual == expected
        if self.policy is AmountPolicy.WITHIN_TOLERANCE:
            return amounts_match(expected, actual, self.tolerance_percent)
        return amount_sufficient(expected, actual, self.tolerance_percent)

    def _eligible(
        self,
        request: PaymentRequest,
        candidates: Iterable[TransactionCandidate],
        success: bool,
    ) -> List[Match]:
        recipient = request.recipient
        contract = request.currency.contract_filter
        decimals = request.currency.decimals

        matches = []
        for candidate in candidates:
            if candidate.success is not success:
                continue
            if candidate.recipient.lower() != recipient:
                continue
            if contract is not None and (candidate.contract_address or "").lower() != contract:
                continue
            amount = raw_to_token(candidate.value, decimals)
            if self.amount_accepted(request.amount, amount):
                matches.append(Match(candidate=candidate, amount=amount))
        return matches

    def find_match(
        self, request: PaymentRequest, candidates: Iterable[TransactionCandidate]
    ) -> Optional[Match]:
        """Best successful candidate paying the request, or None"""
        matches = self._eligible(request, candidates, success=True)
        if not matches:
            return None
        return min(matches, key=lambda m: _rank_key(m.candidate))

    def find_reverted(
        self, request: PaymentRequest, candidates: Iterable[TransactionCandidate]
    ) -> Optional[Match]:
        """Best failed candidate that would have paid the request had it succeeded"""
        matches = self._eligible(request, candidates, success=False)
        if not matches:
            return None
        return min(matches, key=lambda m: _rank_key(m.candidate))
