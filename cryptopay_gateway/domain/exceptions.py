"""Domain-specific exceptions"""


class CryptoPayError(Exception):
    """Base exception for payment gateway errors"""

    pass


class ConfigurationError(CryptoPayError):
    """Configuration is missing or invalid (detected at construction)"""

    pass


class InvalidInputError(CryptoPayError):
    """Caller supplied malformed input; raised before any remote call"""

    pass


class InvalidAddressError(InvalidInputError):
    """Address is not 0x followed by 40 hex characters"""

    def __init__(self, address: str):
        super().__init__(f"Invalid address format: {address!r}")
        self.address = address


class InvalidTxHashError(InvalidInputError):
    """Transaction hash is not 0x followed by 64 hex characters"""

    def __init__(self, tx_hash: str):
        super().__init__(f"Invalid transaction hash: {tx_hash!r}")
        self.tx_hash = tx_hash


class InvalidAmountError(InvalidInputError):
    """Amount is negative or not a finite decimal"""

    pass


class ExplorerAPIError(CryptoPayError):
    """Explorer answered but reported a logical failure"""

    def __init__(self, message: str, detail: str | None = None):
        text = f"Explorer API error: {message}"
        if detail:
            text = f"{text} ({detail})"
        super().__init__(text)
        self.message = message
        self.detail = detail


class RemoteRateLimitError(ExplorerAPIError):
    """Explorer rejected the call because its own rate limit was reached"""

    pass


class TransportError(CryptoPayError):
    """Network failure, timeout or non-2xx HTTP status; safe to retry"""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ResponseDecodeError(CryptoPayError):
    """Explorer response could not be decoded into the expected shape"""

    pass


class TransactionNotFoundError(CryptoPayError):
    """Explorer has no record of the requested transaction hash"""

    def __init__(self, tx_hash: str):
        super().__init__(f"Transaction not found: {tx_hash}")
        self.tx_hash = tx_hash


class InvalidTransitionError(CryptoPayError):
    """Payment status change not allowed by the monitor state machine"""

    pass
