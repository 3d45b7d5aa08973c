"""Hex string helpers for addresses, hashes and JSON-RPC quantities"""

import re

from cryptopay_gateway.domain.exceptions import InvalidAddressError, InvalidTxHashError

_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")
_TX_HASH_RE = re.compile(r"0x[0-9a-fA-F]{64}")


def is_valid_address(address: str) -> bool:
    """Check for 0x followed by 40 hex characters (any letter case)"""
    return isinstance(address, str) and bool(_ADDRESS_RE.fullmatch(address))


def is_valid_tx_hash(tx_hash: str) -> bool:
    """Check for 0x followed by 64 hex characters"""
    return isinstance(tx_hash, str) and bool(_TX_HASH_RE.fullmatch(tx_hash))


def normalize_address(address: str) -> str:
    """Validate and lower-case an address so comparisons ignore checksum casing"""
    if not is_valid_address(address):
        raise InvalidAddressError(address)
    return address.lower()


def normalize_tx_hash(tx_hash: str) -> str:
    if not is_valid_tx_hash(tx_hash):
        raise InvalidTxHashError(tx_hash)
    return tx_hash.lower()


def parse_quantity(value: str | int | None) -> int | None:
    """
    Parse a JSON-RPC quantity ("0x1b4") or a decimal string ("436").

    Returns None for null/empty values (e.g. blockNumber of a pending tx).

    Raises:
        ValueError: If the value is neither hex nor decimal
    """
    if value is None:
        return None
    if isinstance(value, int):
        return value
    text = value.strip()
    if not text:
        return None
    if text.lower().startswith("0x"):
        return int(text, 16)
    return int(text)
