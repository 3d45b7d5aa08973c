"""Rate-limited, key-rotating gateway in front of every explorer call"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Sequence

from cryptopay_gateway.domain.exceptions import ConfigurationError
from cryptopay_gateway.infrastructure.observability.metrics import rate_limit_wait_histogram

logger = logging.getLogger(__name__)

_EPSILON = 1e-9


class RateLimitedGateway:
    """
    Token bucket shared by all callers, plus round-robin API key rotation.

    The bucket holds `rate` tokens and refills continuously at `rate` tokens
    per second. acquire() waits (asyncio sleep, no spinning) until a token is
    available, takes it and hands out the next key in rotation. One lock
    guards both, and asyncio locks wake waiters in arrival order, so
    concurrent callers receive keys in strict round-robin order.

    Args:
        api_keys: Credential pool, must be non-empty
        rate_per_second: Request ceiling shared across all keys
        clock: Monotonic time source (seconds)
        sleep: Coroutine used to wait for refill
    """

    def __init__(
        self,
        api_keys: Sequence[str],
        rate_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not api_keys:
            raise ConfigurationError("Credential pool cannot be empty")
        if any(not key for key in api_keys):
            raise ConfigurationError("API key cannot be empty")
        if rate_per_second <= 0:
            raise ConfigurationError("Rate limit must be greater than 0")

        self._keys = tuple(api_keys)
        self._cursor = 0
        self._rate = float(rate_per_second)
        self._capacity = float(rate_per_second)
        self._tokens = self._capacity
        self._clock = clock
        self._sleep = sleep
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    @property
    def pool_size(self) -> int:
        return len(self._keys)

    @property
    def available_tokens(self) -> float:
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._last_refill = max(self._last_refill, now)

    async def acquire(self) -> str:
        """Wait for a rate-limit token and return the next API key"""
        started = self._clock()
        async with self._lock:
            self._refill()
            # Epsilon absorbs float drift so a rounding shortfall never loops
            while self._tokens < 1.0 - _EPSILON:
                deficit = 1.0 - self._tokens
                await self._sleep(deficit / self._rate)
                self._refill()
            self._tokens = max(0.0, self._tokens - 1.0)

            key = self._keys[self._cursor]
            self._cursor = (self._cursor + 1) % len(self._keys)

        waited = self._clock() - started
        rate_limit_wait_histogram.observe(waited)
        if waited > 0:
            logger.debug("Rate limit wait", extra={"waited_seconds": round(waited, 4)})
        return key
