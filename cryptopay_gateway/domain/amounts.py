"""Unit conversion and amount comparison with exact decimal arithmetic"""

from decimal import Context, Decimal, InvalidOperation, ROUND_DOWN

from cryptopay_gateway.domain.exceptions import InvalidAmountError

NATIVE_DECIMALS = 18
GWEI_DECIMALS = 9

# uint256 has 78 digits; keep headroom so no conversion ever rounds
EXACT = Context(prec=100)


def to_decimal(value: Decimal | int | str) -> Decimal:
    """
    Coerce caller input to Decimal without passing through binary floats.

    Raises:
        InvalidAmountError: If the value is a float, not numeric, or not finite
    """
    if isinstance(value, float):
        raise InvalidAmountError(f"Amounts must be Decimal, int or str, not float: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmountError(f"Invalid amount: {value!r}") from e
    if not amount.is_finite():
        raise InvalidAmountError(f"Amount must be finite: {value!r}")
    return amount


def raw_to_token(raw_amount: int, decimals: int) -> Decimal:
    """Convert raw integer units (wei, token base units) to a human-readable amount"""
    return Decimal(raw_amount).scaleb(-decimals, context=EXACT)


def token_to_raw(amount: Decimal, decimals: int) -> int:
    """
    Convert a human-readable amount to raw integer units.

    Digits below the smallest unit are truncated, matching what a wallet can send.
    """
    scaled = amount.scaleb(decimals, context=EXACT)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN, context=EXACT))


def wei_to_ether(wei: int) -> Decimal:
    return raw_to_token(wei, NATIVE_DECIMALS)


def ether_to_wei(ether: Decimal) -> int:
    return token_to_raw(ether, NATIVE_DECIMALS)


def wei_to_gwei(wei: int) -> Decimal:
    return raw_to_token(wei, GWEI_DECIMALS)


def gwei_to_wei(gwei: Decimal) -> int:
    return token_to_raw(gwei, GWEI_DECIMALS)


def parse_token_amount(amount: str) -> int:
    """
    Parse a raw token amount as returned by the explorer ("1000000000000000000").

    Raises:
        InvalidAmountError: If the string is not a non-negative integer
    """
    try:
        raw = int(amount.strip())
    except (AttributeError, ValueError) as e:
        raise InvalidAmountError(f"Invalid token amount: {amount!r}") from e
    if raw < 0:
        raise InvalidAmountError(f"Token amount cannot be negative: {amount!r}")
    return raw


def format_token_amount(amount: int, decimals: int) -> str:
    """
    Format raw units as a decimal string without trailing fractional zeros.

    Example:
        format_token_amount(1_500_000, 6) -> "1.5"
    """
    whole, fractional = divmod(amount, 10**decimals)
    if fractional == 0:
        return str(whole)
    digits = str(fractional).rjust(decimals, "0").rstrip("0")
    return f"{whole}.{digits}"


def amounts_match(expected: Decimal, actual: Decimal, tolerance_percent: Decimal) -> bool:
    """
    True when |actual - expected| <= expected * tolerance_percent / 100.

    A zero expected amount only matches a zero actual amount.
    """
    if expected == 0:
        return actual == 0
    diff = EXACT.abs(EXACT.subtract(actual, expected))
    allowed = EXACT.divide(EXACT.multiply(expected, tolerance_percent), Decimal(100))
    return diff <= allowed


def amount_sufficient(expected: Decimal, actual: Decimal, tolerance_percent: Decimal) -> bool:
    """True when actual >= expected * (1 - tolerance_percent / 100); overpayment always passes"""
    shortfall = EXACT.divide(tolerance_percent, Decimal(100))
    minimum = EXACT.multiply(expected, EXACT.subtract(Decimal(1), shortfall))
    return actual >= minimum
