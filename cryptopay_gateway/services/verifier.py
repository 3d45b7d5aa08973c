"""Payment verifier - one-shot check of whether a request has been paid"""

import logging
import time
from typing import Optional

from cryptopay_gateway.domain.matching import MatchingEngine
from cryptopay_gateway.domain.models import PaymentRequest, VerificationOutcome, VerificationResult
from cryptopay_gateway.infrastructure.clients.explorer import ExplorerClient
from cryptopay_gateway.infrastructure.observability.logging import log_verification
from cryptopay_gateway.infrastructure.observability.metrics import verification_counter

logger = logging.getLogger(__name__)


def _currency_label(request: PaymentRequest) -> str:
    if request.currency.is_token:
        return f"token:{request.currency.contract_filter}"
    return "native"


class PaymentVerifier:
    """
    Turns explorer data into a VerificationResult.

    Explorer errors propagate to the caller untouched; FAILED only ever means
    a matching transaction was found on chain and it reverted.

    Args:
        explorer: Facade used for all chain reads
        engine: Matching rules (exact amounts by default)
        page_size: How many recent transfers to inspect per check
        max_age: Oldest cached listing a check may use, in seconds;
            the explorer cache TTL when None
    """

    def __init__(
        self,
        explorer: ExplorerClient,
        engine: Optional[MatchingEngine] = None,
        page_size: int = 100,
        max_age: Optional[float] = None,
    ):
        self.explorer = explorer
        self.engine = engine or MatchingEngine()
        self.page_size = page_size
        self.max_age = max_age

    async def verify_payment(self, request: PaymentRequest) -> VerificationResult:
        """
        Check whether request has been paid.

        Returns:
            NOT_FOUND when nothing pays the request, PENDING / CONFIRMED
            depending on required_confirmations, FAILED when only a reverted
            transaction would have paid it.
        """
        started = time.perf_counter()
        candidates = await self.explorer.get_candidates(
            request.recipient, request.currency, self.page_size, max_age=self.max_age
        )

        match = self.engine.find_match(request, candidates)
        if match is not None:
            if match.confirmations >= request.required_confirmations:
                result = VerificationResult.confirmed(match.tx_hash, match.confirmations)
            else:
                result = VerificationResult.pending(match.tx_hash, match.confirmations)
        else:
            reverted = self.engine.find_reverted(request, candidates)
            if reverted is not None:
                result = VerificationResult.failed(f"transaction {reverted.tx_hash} reverted")
            else:
                result = VerificationResult.not_found()

        verification_counter.labels(outcome=result.outcome.value).inc()
        log_verification(
            recipient=request.recipient,
            currency=_currency_label(request),
            amount=str(request.amount),
            outcome=result.outcome.value,
            tx_hash=result.tx_hash,
            confirmations=result.confirmations,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        return result

    async def check_confirmations(self, tx_hash: str) -> int:
        return await self.explorer.get_confirmations(tx_hash)

    async def find_matching_transaction(self, request: PaymentRequest) -> Optional[str]:
        """Hash of the transaction paying request, regardless of confirmations"""
        result = await self.verify_payment(request)
        if result.outcome in (VerificationOutcome.PENDING, VerificationOutcome.CONFIRMED):
            return result.tx_hash
        return None
