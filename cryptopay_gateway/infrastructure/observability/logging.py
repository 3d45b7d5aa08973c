"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "cryptopay-gateway"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = SERVICE_NAME


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_verification(
    recipient: str,
    currency: str,
    amount: str,
    outcome: str,
    tx_hash: Optional[str],
    confirmations: Optional[int],
    duration_ms: float,
) -> None:
    """Log structured verification outcome for analysis"""
    logging.getLogger("cryptopay_gateway.verification").info(
        "Verification completed",
        extra={
            "step": "verification_complete",
            "recipient": recipient,
            "currency": currency,
            "amount": amount,
            "outcome": outcome,
            "tx_hash": tx_hash,
            "confirmations": confirmations,
            "duration_ms": duration_ms,
        },
    )


def log_status_transition(
    recipient: str,
    previous_state: Optional[str],
    new_state: str,
    tx_hash: Optional[str] = None,
    confirmations: Optional[int] = None,
    reason: Optional[str] = None,
) -> None:
    """Log a payment status change delivered by the monitor"""
    logging.getLogger("cryptopay_gateway.monitor").info(
        "Payment status changed",
        extra={
            "step": "status_transition",
            "recipient": recipient,
            "previous_state": previous_state,
            "new_state": new_state,
            "tx_hash": tx_hash,
            "confirmations": confirmations,
            "reason": reason,
        },
    )
