"""Exponential backoff for callers that choose to retry transport failures"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from cryptopay_gateway.domain.exceptions import TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 5,
    backoff_base: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run operation, retrying on TransportError.

    Retry strategy:
    - Exponential backoff: base, 2*base, 4*base, ... (base * 2^(attempt-1))
    - Only TransportError is retried; API, decode and input errors are final
    - The last TransportError is re-raised once attempts run out

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        max_attempts: Total attempts including the first
        backoff_base: Delay in seconds before the first retry
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 0
    while True:
        try:
            return await operation()
        except TransportError as e:
            attempt += 1
            if attempt >= max_attempts:
                raise

            backoff = backoff_base * (2 ** (attempt - 1))
            logger.warning(
                "Transport error, retrying",
                extra={"attempt": attempt, "backoff_seconds": backoff, "error": str(e)},
            )
            await sleep(backoff)
