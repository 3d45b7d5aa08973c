"""Payment endpoints - one-shot verification, monitored payments, confirmations"""

import logging
import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from cryptopay_gateway.api.dependencies import (
    get_monitor,
    get_request_id,
    get_session_factory,
    get_verifier,
)
from cryptopay_gateway.api.v1.schemas import (
    ConfirmationsResponse,
    CreatePaymentRequest,
    PaymentRequestSchema,
    PaymentResponse,
    StatusEventSchema,
    StatusSchema,
    VerificationResponse,
)
from cryptopay_gateway.domain.exceptions import (
    ExplorerAPIError,
    InvalidInputError,
    ResponseDecodeError,
    TransactionNotFoundError,
    TransportError,
)
from cryptopay_gateway.domain.models import Payment, PaymentRequest, PaymentStatus
from cryptopay_gateway.infrastructure.database.models import PaymentRecord
from cryptopay_gateway.infrastructure.database.repositories import PaymentRepository
from cryptopay_gateway.infrastructure.database.session import get_db
from cryptopay_gateway.services.monitor import PaymentMonitor
from cryptopay_gateway.services.verifier import PaymentVerifier

logger = logging.getLogger(__name__)

router = APIRouter()

UPSTREAM_ERRORS = (ExplorerAPIError, TransportError, ResponseDecodeError)


def _to_response(record: PaymentRecord) -> PaymentResponse:
    return PaymentResponse(
        payment_id=str(record.id),
        recipient_address=record.recipient_address,
        amount=record.amount,
        currency_kind=record.currency_kind,
        contract_address=record.contract_address,
        decimals=record.decimals,
        required_confirmations=record.required_confirmations,
        timeout_seconds=record.timeout_seconds,
        status=StatusSchema(
            state=record.status,
            tx_hash=record.tx_hash,
            confirmations=record.confirmations,
            reason=record.reason,
        ),
        events=[
            StatusEventSchema(
                sequence=event.sequence,
                state=event.status,
                tx_hash=event.tx_hash,
                confirmations=event.confirmations,
                reason=event.reason,
                created_at=event.created_at,
            )
            for event in record.events
        ],
        metadata=record.payment_metadata or {},
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


async def monitor_payment(
    monitor: PaymentMonitor,
    session_factory: sessionmaker,
    payment_id: uuid.UUID,
    payment_request: PaymentRequest,
) -> None:
    """Background task: run the monitor, persisting every delivered status"""
    db = session_factory()
    try:
        repo = PaymentRepository(db)

        def write(status: PaymentStatus) -> None:
            repo.record_status(payment_id, status)
            db.commit()

        async def persist(status: PaymentStatus) -> None:
            # Blocking ORM work stays off the event loop shared with other monitors
            await run_in_threadpool(write, status)

        final = await monitor.start_monitoring(payment_request, persist)
        logger.info(
            "Payment monitoring finished",
            extra={"payment_id": str(payment_id), "state": final.state.value},
        )
    except Exception:
        await run_in_threadpool(db.rollback)
        logger.exception("Payment monitoring aborted", extra={"payment_id": str(payment_id)})
        raise
    finally:
        db.close()


@router.post("/payments/verify", response_model=VerificationResponse)
async def verify_payment(
    body: PaymentRequestSchema,
    request: Request,
    verifier: PaymentVerifier = Depends(get_verifier),
):
    """
    Check once whether a payment has arrived.

    Returns:
        not_found, pending (with confirmations so far), confirmed or failed
    """
    request_id = get_request_id(request)
    try:
        payment_request = body.to_domain()
        result = await verifier.verify_payment(payment_request)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UPSTREAM_ERRORS as e:
        logger.error(f"Explorer error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Block explorer unavailable")

    return VerificationResponse(
        outcome=result.outcome.value,
        tx_hash=result.tx_hash,
        confirmations=result.confirmations,
        reason=result.reason,
    )


@router.post("/payments", response_model=PaymentResponse, status_code=201)
def create_payment(
    body: CreatePaymentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    monitor: PaymentMonitor = Depends(get_monitor),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """
    Register a payment to watch.

    Flow:
    1. Validate and persist the payment as pending
    2. Schedule the monitor; every status it delivers is stored as an event
    3. Return the stored record
    """
    try:
        payment_request = body.to_domain()
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    payment = Payment(request=payment_request, metadata=body.metadata)
    repo = PaymentRepository(db)
    record = repo.create_payment(payment)
    db.commit()
    db.refresh(record)

    background_tasks.add_task(monitor_payment, monitor, session_factory, payment.id, payment_request)
    return _to_response(record)


@router.get("/payments/{payment_id}", response_model=PaymentResponse)
def get_payment(payment_id: str, db: Session = Depends(get_db)):
    """Payment record with its status history"""
    try:
        payment_uuid = uuid.UUID(payment_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payment ID format")

    record = PaymentRepository(db).get_payment(payment_uuid)
    if not record:
        raise HTTPException(status_code=404, detail="Payment not found")
    return _to_response(record)


@router.get("/transactions/{tx_hash}/confirmations", response_model=ConfirmationsResponse)
async def get_confirmations(
    tx_hash: str,
    request: Request,
    verifier: PaymentVerifier = Depends(get_verifier),
):
    request_id = get_request_id(request)
    try:
        confirmations = await verifier.check_confirmations(tx_hash)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TransactionNotFoundError:
        raise HTTPException(status_code=404, detail="Transaction not found")
    except UPSTREAM_ERRORS as e:
        logger.error(f"Explorer error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Block explorer unavailable")

    return ConfirmationsResponse(tx_hash=tx_hash.lower(), confirmations=confirmations)
