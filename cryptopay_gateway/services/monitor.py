"""Payment monitor - polls the verifier and streams status changes to a sink"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, FrozenSet, Optional

from cryptopay_gateway.domain.exceptions import ConfigurationError, InvalidTransitionError
from cryptopay_gateway.domain.models import (
    PaymentRequest,
    PaymentState,
    PaymentStatus,
    VerificationOutcome,
    VerificationResult,
    utcnow,
)
from cryptopay_gateway.infrastructure.observability.logging import log_status_transition
from cryptopay_gateway.infrastructure.observability.metrics import status_transition_counter
from cryptopay_gateway.services.verifier import PaymentVerifier

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10.0

StatusSink = Callable[[PaymentStatus], Any]

_ALLOWED_TRANSITIONS: Dict[PaymentState, FrozenSet[PaymentState]] = {
    PaymentState.PENDING: frozenset(PaymentState),
    PaymentState.DETECTED: frozenset(
        {PaymentState.DETECTED, PaymentState.CONFIRMED, PaymentState.FAILED, PaymentState.EXPIRED}
    ),
    PaymentState.CONFIRMED: frozenset(),
    PaymentState.FAILED: frozenset(),
    PaymentState.EXPIRED: frozenset(),
}


def can_transition(current: PaymentStatus, new: PaymentStatus) -> bool:
    """Terminal states accept nothing; DETECTED never goes back to PENDING"""
    return new.state in _ALLOWED_TRANSITIONS[current.state]


def next_status(current: PaymentStatus, result: VerificationResult, expired: bool) -> PaymentStatus:
    """Fold one verification result into the monitor's current status"""
    if result.outcome is VerificationOutcome.PENDING:
        return PaymentStatus.detected(result.tx_hash, result.confirmations)
    if result.outcome is VerificationOutcome.CONFIRMED:
        return PaymentStatus.confirmed(result.tx_hash, result.confirmations)
    if result.outcome is VerificationOutcome.FAILED:
        return PaymentStatus.failed(result.reason)
    return PaymentStatus.expired() if expired else current


async def _deliver(sink: StatusSink, status: PaymentStatus) -> None:
    outcome = sink(status)
    if inspect.isawaitable(outcome):
        await outcome


class PaymentMonitor:
    """
    Watches one payment request until it reaches a terminal state.

    Each poll runs the verifier once; statuses are pushed to the sink only when
    they change, and exactly one terminal status is ever delivered. Polls of a
    single monitor are sequential; separate monitors share the verifier (and
    its rate-limited explorer) and run concurrently.

    Args:
        verifier: Verification service
        poll_interval: Seconds between polls
        now: UTC clock used for expiry checks
    """

    def __init__(
        self,
        verifier: PaymentVerifier,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        now: Callable[[], Any] = utcnow,
    ):
        if poll_interval <= 0:
            raise ConfigurationError("poll_interval must be greater than 0")
        self.verifier = verifier
        self.poll_interval = poll_interval
        self._now = now

    @classmethod
    def builder(cls) -> "PaymentMonitorBuilder":
        return PaymentMonitorBuilder()

    async def check_payment_status(
        self,
        request: PaymentRequest,
        current: Optional[PaymentStatus] = None,
    ) -> PaymentStatus:
        """Single poll: expiry check, verification, status derivation"""
        current = current or PaymentStatus.pending()
        if current.is_finalized():
            return current
        if request.is_expired(self._now()):
            return PaymentStatus.expired()

        result = await self.verifier.verify_payment(request)
        return next_status(current, result, request.is_expired(self._now()))

    async def start_monitoring(
        self,
        request: PaymentRequest,
        sink: StatusSink,
        cancel: Optional[asyncio.Event] = None,
    ) -> PaymentStatus:
        """
        Poll until the payment is finalized or cancel is set.

        The sink may be a plain function or a coroutine function; each
        delivery finishes before the next poll is scheduled. Errors raised by
        the verifier or the sink end monitoring and propagate.

        Returns:
            The last delivered status (terminal unless cancelled)
        """
        cancel = cancel or asyncio.Event()
        status = PaymentStatus.pending()
        await self._publish(request, None, status, sink)

        while not cancel.is_set():
            new_status = await self.check_payment_status(request, status)
            if cancel.is_set():
                # Cancelled mid-poll; the result is stale for the caller
                break

            if new_status != status:
                if not can_transition(status, new_status):
                    raise InvalidTransitionError(
                        f"Illegal transition {status.state.value} -> {new_status.state.value}"
                    )
                await self._publish(request, status, new_status, sink)
                status = new_status

            if status.is_finalized():
                return status

            try:
                await asyncio.wait_for(cancel.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Payment monitoring cancelled", extra={"recipient": request.recipient})
        return status

    async def _publish(
        self,
        request: PaymentRequest,
        previous: Optional[PaymentStatus],
        status: PaymentStatus,
        sink: StatusSink,
    ) -> None:
        await _deliver(sink, status)
        status_transition_counter.labels(state=status.state.value).inc()
        log_status_transition(
            recipient=request.recipient,
            previous_state=previous.state.value if previous else None,
            new_state=status.state.value,
            tx_hash=status.tx_hash,
            confirmations=status.confirmations,
            reason=status.reason,
        )


class PaymentMonitorBuilder:
    """Fluent construction: PaymentMonitor.builder().verifier(v).poll_interval(5).build()"""

    def __init__(self) -> None:
        self._verifier: Optional[PaymentVerifier] = None
        self._poll_interval = DEFAULT_POLL_INTERVAL
        self._now: Callable[[], Any] = utcnow

    def verifier(self, verifier: PaymentVerifier) -> "PaymentMonitorBuilder":
        self._verifier = verifier
        return self

    def poll_interval(self, seconds: float) -> "PaymentMonitorBuilder":
        self._poll_interval = seconds
        return self

    def clock(self, now: Callable[[], Any]) -> "PaymentMonitorBuilder":
        self._now = now
        return self

    def build(self) -> PaymentMonitor:
        if self._verifier is None:
            raise ConfigurationError("Verifier is required")
        return PaymentMonitor(self._verifier, self._poll_interval, self._now)
