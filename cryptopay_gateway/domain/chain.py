"""Explorer records - typed views of block-explorer API results"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from cryptopay_gateway.domain.amounts import NATIVE_DECIMALS, raw_to_token


def _gwei(value: str) -> Decimal:
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError):
        return Decimal(0)


@dataclass
class Transaction:
    """Normal (external) transaction, from txlist or eth_getTransactionByHash"""

    tx_hash: str
    block_number: Optional[int]  # None while the transaction is pending
    from_address: str
    to_address: str
    value: int
    is_error: bool = False
    receipt_status: Optional[bool] = None
    confirmations: Optional[int] = None
    timestamp: Optional[int] = None
    gas: Optional[int] = None
    gas_price: Optional[int] = None
    gas_used: Optional[int] = None
    nonce: Optional[int] = None
    input: str = "0x"
    method_id: str = ""
    function_name: str = ""

    @property
    def value_ether(self) -> Decimal:
        return raw_to_token(self.value, NATIVE_DECIMALS)

    def is_successful(self) -> bool:
        return not self.is_error and self.receipt_status is not False

    @property
    def is_pending(self) -> bool:
        return self.block_number is None


@dataclass
class InternalTransaction:
    """Value transfer made by a contract call"""

    tx_hash: str
    block_number: int
    from_address: str
    to_address: str
    value: int
    contract_address: str = ""
    tx_type: str = "call"
    trace_id: str = ""
    is_error: bool = False
    err_code: str = ""
    timestamp: Optional[int] = None

    @property
    def value_ether(self) -> Decimal:
        return raw_to_token(self.value, NATIVE_DECIMALS)


@dataclass
class TokenTransfer:
    """ERC-20 Transfer event"""

    tx_hash: str
    block_number: int
    from_address: str
    to_address: str
    contract_address: str
    value: int
    token_decimal: int = NATIVE_DECIMALS
    token_name: str = ""
    token_symbol: str = ""
    confirmations: Optional[int] = None
    timestamp: Optional[int] = None

    @property
    def value_tokens(self) -> Decimal:
        return raw_to_token(self.value, self.token_decimal)


@dataclass
class Balance:
    address: str
    wei: int

    @property
    def ether(self) -> Decimal:
        return raw_to_token(self.wei, NATIVE_DECIMALS)


@dataclass
class TokenBalance:
    address: str
    contract_address: str
    balance: int
    # tokenbalance does not report decimals; callers pass the known value
    token_decimal: int = NATIVE_DECIMALS

    @property
    def value_tokens(self) -> Decimal:
        return raw_to_token(self.balance, self.token_decimal)


@dataclass
class Log:
    address: str
    topics: List[str]
    data: str
    log_index: Optional[int] = None
    removed: bool = False


@dataclass
class TransactionReceipt:
    tx_hash: str
    block_number: Optional[int]
    status: Optional[bool]  # None before Byzantium or while pending
    gas_used: Optional[int] = None
    cumulative_gas_used: Optional[int] = None
    contract_address: Optional[str] = None
    logs: List[Log] = field(default_factory=list)


@dataclass
class GasOracle:
    """Gas prices in gwei as strings, as the gas tracker reports them"""

    safe_gas_price: str
    propose_gas_price: str
    fast_gas_price: str
    suggest_base_fee: str = "0"
    gas_used_ratio: str = ""
    last_block: Optional[int] = None

    def safe_gwei(self) -> Decimal:
        return _gwei(self.safe_gas_price)

    def propose_gwei(self) -> Decimal:
        return _gwei(self.propose_gas_price)

    def fast_gwei(self) -> Decimal:
        return _gwei(self.fast_gas_price)
