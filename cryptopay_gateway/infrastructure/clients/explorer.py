"""Explorer access facade - typed, validated, cached and rate-limited explorer operations"""

import logging
import threading
import time
from collections import OrderedDict
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from cryptopay_gateway.config import ClientConfig
from cryptopay_gateway.domain.chain import (
    Balance,
    GasOracle,
    InternalTransaction,
    Log,
    TokenBalance,
    TokenTransfer,
    Transaction,
    TransactionReceipt,
)
from cryptopay_gateway.domain.exceptions import (
    ExplorerAPIError,
    InvalidInputError,
    RemoteRateLimitError,
    ResponseDecodeError,
    TransactionNotFoundError,
    TransportError,
)
from cryptopay_gateway.domain.models import Currency, TransactionCandidate
from cryptopay_gateway.infrastructure.cache import TTLCache
from cryptopay_gateway.infrastructure.clients.transport import Endpoint, ExplorerTransport
from cryptopay_gateway.infrastructure.gateway import RateLimitedGateway
from cryptopay_gateway.infrastructure.observability.metrics import record_explorer_call
from cryptopay_gateway.utils.hex_utils import normalize_address, normalize_tx_hash, parse_quantity

logger = logging.getLogger(__name__)

LATEST_BLOCK = 99999999
MAX_PAGE_SIZE = 10000
EMPTY_RESULT_MESSAGES = ("No transactions found", "No records found")


class GasSpeed(str, Enum):
    SAFE = "safe"
    PROPOSE = "propose"
    FAST = "fast"


def derive_confirmations(
    tx_block: Optional[int],
    current_block: Optional[int],
    reported: Optional[int] = None,
) -> int:
    """
    Confirmations = current_block - tx_block + 1, never below the upstream count.

    An unmined transaction (tx_block None) or one ahead of the reported head
    has zero derived confirmations.
    """
    derived = 0
    if tx_block is not None and current_block is not None and current_block >= tx_block:
        derived = current_block - tx_block + 1
    return max(derived, reported or 0)


def _flag(value: Any) -> Optional[bool]:
    """Explorer booleans arrive as "1"/"0", "0x1"/"0x0" or empty"""
    number = parse_quantity(value)
    return None if number is None else number == 1


def _parse_transaction(raw: Dict[str, Any]) -> Transaction:
    # Shared by txlist rows and eth_getTransactionByHash; only txlist has isError/confirmations
    return Transaction(
        tx_hash=raw["hash"].lower(),
        block_number=parse_quantity(raw.get("blockNumber")),
        from_address=(raw.get("from") or "").lower(),
        to_address=(raw.get("to") or "").lower(),
        value=parse_quantity(raw.get("value")) or 0,
        is_error=raw.get("isError", "0") == "1",
        receipt_status=_flag(raw.get("txreceipt_status")),
        confirmations=parse_quantity(raw.get("confirmations")),
        timestamp=parse_quantity(raw.get("timeStamp")),
        gas=parse_quantity(raw.get("gas")),
        gas_price=parse_quantity(raw.get("gasPrice")),
        gas_used=parse_quantity(raw.get("gasUsed")),
        nonce=parse_quantity(raw.get("nonce")),
        input=raw.get("input") or "0x",
        method_id=raw.get("methodId", ""),
        function_name=raw.get("functionName", ""),
    )


def _parse_internal(raw: Dict[str, Any]) -> InternalTransaction:
    return InternalTransaction(
        tx_hash=raw["hash"].lower(),
        block_number=int(raw["blockNumber"]),
        from_address=(raw.get("from") or "").lower(),
        to_address=(raw.get("to") or "").lower(),
        value=int(raw["value"]),
        contract_address=(raw.get("contractAddress") or "").lower(),
        tx_type=raw.get("type", "call"),
        trace_id=raw.get("traceId", ""),
        is_error=raw.get("isError", "0") == "1",
        err_code=raw.get("errCode", ""),
        timestamp=parse_quantity(raw.get("timeStamp")),
    )


def _parse_token_transfer(raw: Dict[str, Any]) -> TokenTransfer:
    return TokenTransfer(
        tx_hash=raw["hash"].lower(),
        block_number=int(raw["blockNumber"]),
        from_address=(raw.get("from") or "").lower(),
        to_address=(raw.get("to") or "").lower(),
        contract_address=raw["contractAddress"].lower(),
        value=int(raw["value"]),
        token_decimal=int(raw.get("tokenDecimal") or 18),
        token_name=raw.get("tokenName", ""),
        token_symbol=raw.get("tokenSymbol", ""),
        confirmations=parse_quantity(raw.get("confirmations")),
        timestamp=parse_quantity(raw.get("timeStamp")),
    )


def _parse_receipt(raw: Dict[str, Any]) -> TransactionReceipt:
    return TransactionReceipt(
        tx_hash=raw["transactionHash"].lower(),
        block_number=parse_quantity(raw.get("blockNumber")),
        status=_flag(raw.get("status")),
        gas_used=parse_quantity(raw.get("gasUsed")),
        cumulative_gas_used=parse_quantity(raw.get("cumulativeGasUsed")),
        contract_address=raw.get("contractAddress"),
        logs=[
            Log(
                address=log["address"].lower(),
                topics=list(log.get("topics", [])),
                data=log.get("data", "0x"),
                log_index=parse_quantity(log.get("logIndex")),
                removed=bool(log.get("removed", False)),
            )
            for log in raw.get("logs", [])
        ],
    )


def _parse_gas_oracle(raw: Dict[str, Any]) -> GasOracle:
    return GasOracle(
        safe_gas_price=raw["SafeGasPrice"],
        propose_gas_price=raw["ProposeGasPrice"],
        fast_gas_price=raw["FastGasPrice"],
        suggest_base_fee=raw.get("suggestBaseFee", "0"),
        gas_used_ratio=raw.get("gasUsedRatio", ""),
        last_block=parse_quantity(raw.get("LastBlock")),
    )


class ExplorerClient:
    """
    The only way the payment engine talks to the explorer.

    Every operation validates its inputs locally, routes memoizable reads
    through the TTL cache, and takes a gateway token (and API key) before each
    remote call. Errors propagate to the caller unchanged; nothing is retried.

    Args:
        config: Validated client configuration
        transport: HTTP collaborator (built from config when omitted)
        gateway: Shared rate limiter / key rotator (built from config when omitted)
        cache: Shared TTL cache (built from config when omitted)
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: Optional[ExplorerTransport] = None,
        gateway: Optional[RateLimitedGateway] = None,
        cache: Optional[TTLCache] = None,
    ):
        self.config = config
        self.transport = transport or ExplorerTransport(config.base_url, config.timeout_seconds)
        self.gateway = gateway or RateLimitedGateway(config.api_keys, config.rate_limit_per_second)
        self.cache = cache or TTLCache(config.cache_ttl_seconds, config.cache_max_size)
        # Highest confirmation count reported per tx hash, bounded like the cache
        self._confirmations_seen: "OrderedDict[str, int]" = OrderedDict()
        self._seen_lock = threading.Lock()

    @classmethod
    def mainnet(cls, api_key: str) -> "ExplorerClient":
        return cls(ClientConfig.mainnet(api_key))

    @classmethod
    def testnet(cls, api_key: str) -> "ExplorerClient":
        return cls(ClientConfig.testnet(api_key))

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    @staticmethod
    def _cache_key(endpoint: Endpoint, params: Dict[str, str]) -> str:
        query = "&".join(f"{k}={v}" for k, v in sorted(params.items()))
        return f"{endpoint.module}:{endpoint.action}:{query}"

    @staticmethod
    def _raise_api_error(message: str, result: Any) -> None:
        detail = result if isinstance(result, str) and result else None
        text = f"{message} {detail or ''}".lower()
        if "rate limit" in text:
            raise RemoteRateLimitError(message, detail)
        raise ExplorerAPIError(message, detail)

    def _unwrap(self, endpoint: Endpoint, body: Any) -> Any:
        """Strip the explorer envelope, raising on logical errors"""
        if not isinstance(body, dict):
            raise ResponseDecodeError(f"Unexpected response shape from {endpoint.label}")

        if endpoint.module == "proxy" and "error" in body:
            error = body["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise ExplorerAPIError(message)

        status = body.get("status")
        message = str(body.get("message", ""))
        if "result" not in body:
            raise ResponseDecodeError(f"Missing 'result' field in {endpoint.label} response")
        result = body["result"]

        if status == "0":
            if message.startswith(EMPTY_RESULT_MESSAGES):
                return []
            self._raise_api_error(message or "Unknown error", result)
        return result

    async def _request(self, endpoint: Endpoint, params: Dict[str, str]) -> Any:
        credential = await self.gateway.acquire()
        started = time.perf_counter()
        outcome = "cancelled"
        try:
            body = await self.transport.call(endpoint, params, credential)
            result = self._unwrap(endpoint, body)
            outcome = "ok"
            return result
        except ExplorerAPIError:
            outcome = "api_error"
            raise
        except TransportError:
            outcome = "transport_error"
            raise
        except ResponseDecodeError:
            outcome = "decode_error"
            raise
        finally:
            duration = time.perf_counter() - started
            record_explorer_call(endpoint.label, outcome, duration)
            if outcome not in ("ok", "cancelled"):
                logger.warning(
                    "Explorer call failed",
                    extra={"endpoint": endpoint.label, "outcome": outcome, "duration_ms": duration * 1000},
                )

    async def _cached_request(
        self, endpoint: Endpoint, params: Dict[str, str], ttl: Optional[float] = None
    ) -> Any:
        key = self._cache_key(endpoint, params)
        return await self.cache.get_or_compute(key, lambda: self._request(endpoint, params), ttl)

    def _observe_confirmations(self, tx_hash: str, confirmations: int) -> int:
        """Clamp to the highest count seen so far so re-queries never go backwards"""
        with self._seen_lock:
            best = max(confirmations, self._confirmations_seen.get(tx_hash, 0))
            self._confirmations_seen[tx_hash] = best
            self._confirmations_seen.move_to_end(tx_hash)
            while len(self._confirmations_seen) > self.config.cache_max_size:
                self._confirmations_seen.popitem(last=False)
            return best

    async def _settle_confirmations(self, records: list) -> None:
        """Derive counts the explorer left out from one head lookup, then clamp every count"""
        if any(record.confirmations is None for record in records):
            current_block = await self.get_block_number()
            for record in records:
                if record.confirmations is None:
                    record.confirmations = derive_confirmations(record.block_number, current_block)
        for record in records:
            record.confirmations = self._observe_confirmations(record.tx_hash, record.confirmations)

    @staticmethod
    def _list_params(start_block: int, end_block: int, page: int, offset: int, sort: str) -> Dict[str, str]:
        if start_block < 0 or end_block < start_block:
            raise InvalidInputError(f"Invalid block range: {start_block}..{end_block}")
        if page < 1:
            raise InvalidInputError("page must be >= 1")
        if not 1 <= offset <= MAX_PAGE_SIZE:
            raise InvalidInputError(f"offset must be within [1, {MAX_PAGE_SIZE}]")
        if sort not in ("asc", "desc"):
            raise InvalidInputError("sort must be 'asc' or 'desc'")
        return {
            "startblock": str(start_block),
            "endblock": str(end_block),
            "page": str(page),
            "offset": str(offset),
            "sort": sort,
        }

    @staticmethod
    def _parse_list(result: Any, parser, endpoint: Endpoint) -> list:
        if not isinstance(result, list):
            raise ResponseDecodeError(f"Expected a list from {endpoint.label}")
        try:
            return [parser(item) for item in result]
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise ResponseDecodeError(f"Invalid {endpoint.label} data: {e}") from e

    # ------------------------------------------------------------------
    # Account endpoints
    # ------------------------------------------------------------------

    async def get_balance(self, address: str) -> Balance:
        """Native coin balance in wei at the latest block"""
        address = normalize_address(address)
        result = await self._cached_request(Endpoint.BALANCE, {"address": address, "tag": "latest"})
        try:
            return Balance(address=address, wei=int(result))
        except (ValueError, TypeError) as e:
            raise ResponseDecodeError(f"Invalid balance value: {result!r}") from e

    async def get_transactions(
        self,
        address: str,
        start_block: int = 0,
        end_block: int = LATEST_BLOCK,
        page: int = 1,
        offset: int = 100,
        sort: str = "desc",
        ttl: Optional[float] = None,
    ) -> List[Transaction]:
        """Normal transactions sent from or to an address"""
        params = {"address": normalize_address(address)}
        params.update(self._list_params(start_block, end_block, page, offset, sort))
        result = await self._cached_request(Endpoint.TX_LIST, params, ttl)
        transactions = self._parse_list(result, _parse_transaction, Endpoint.TX_LIST)
        await self._settle_confirmations(transactions)
        return transactions

    async def get_internal_transactions(
        self,
        address: str,
        start_block: int = 0,
        end_block: int = LATEST_BLOCK,
        page: int = 1,
        offset: int = 100,
        sort: str = "desc",
    ) -> List[InternalTransaction]:
        params = {"address": normalize_address(address)}
        params.update(self._list_params(start_block, end_block, page, offset, sort))
        result = await self._cached_request(Endpoint.INTERNAL_TX_LIST, params)
        return self._parse_list(result, _parse_internal, Endpoint.INTERNAL_TX_LIST)

    # ------------------------------------------------------------------
    # Token endpoints
    # ------------------------------------------------------------------

    async def get_token_transfers(
        self,
        address: str,
        contract_address: Optional[str] = None,
        start_block: int = 0,
        end_block: int = LATEST_BLOCK,
        page: int = 1,
        offset: int = 100,
        sort: str = "desc",
        ttl: Optional[float] = None,
    ) -> List[TokenTransfer]:
        """ERC-20 transfers from or to an address, optionally for one token contract"""
        params = {"address": normalize_address(address)}
        if contract_address is not None:
            params["contractaddress"] = normalize_address(contract_address)
        params.update(self._list_params(start_block, end_block, page, offset, sort))
        result = await self._cached_request(Endpoint.TOKEN_TRANSFERS, params, ttl)
        transfers = self._parse_list(result, _parse_token_transfer, Endpoint.TOKEN_TRANSFERS)
        await self._settle_confirmations(transfers)
        return transfers

    async def get_token_balance(self, address: str, contract_address: str, decimals: int = 18) -> TokenBalance:
        address = normalize_address(address)
        contract_address = normalize_address(contract_address)
        result = await self._cached_request(
            Endpoint.TOKEN_BALANCE,
            {"contractaddress": contract_address, "address": address, "tag": "latest"},
        )
        try:
            balance = int(result)
        except (ValueError, TypeError) as e:
            raise ResponseDecodeError(f"Invalid token balance value: {result!r}") from e
        return TokenBalance(
            address=address,
            contract_address=contract_address,
            balance=balance,
            token_decimal=decimals,
        )

    # ------------------------------------------------------------------
    # Transaction endpoints (JSON-RPC proxy)
    # ------------------------------------------------------------------

    async def get_transaction(self, tx_hash: str) -> Transaction:
        """
        Transaction by hash.

        Raises:
            TransactionNotFoundError: If the explorer does not know the hash
        """
        tx_hash = normalize_tx_hash(tx_hash)
        params = {"txhash": tx_hash}
        result = await self._cached_request(Endpoint.TRANSACTION, params)
        if result is None:
            self.cache.invalidate(self._cache_key(Endpoint.TRANSACTION, params))
            raise TransactionNotFoundError(tx_hash)
        try:
            tx = _parse_transaction(result)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise ResponseDecodeError(f"Invalid transaction data: {e}") from e
        if tx.is_pending:
            # Only mined transactions are stable enough to memoize
            self.cache.invalidate(self._cache_key(Endpoint.TRANSACTION, params))
        return tx

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt:
        """
        Receipt by hash; only exists once the transaction is mined.

        Raises:
            TransactionNotFoundError: If no receipt is available yet
        """
        tx_hash = normalize_tx_hash(tx_hash)
        params = {"txhash": tx_hash}
        result = await self._cached_request(Endpoint.RECEIPT, params)
        if result is None:
            self.cache.invalidate(self._cache_key(Endpoint.RECEIPT, params))
            raise TransactionNotFoundError(tx_hash)
        try:
            return _parse_receipt(result)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise ResponseDecodeError(f"Invalid receipt data: {e}") from e

    async def get_block_number(self) -> int:
        """Latest block number; never cached"""
        result = await self._request(Endpoint.BLOCK_NUMBER, {})
        try:
            block = parse_quantity(result)
        except (ValueError, TypeError, AttributeError) as e:
            raise ResponseDecodeError(f"Invalid block number format: {result!r}") from e
        if block is None:
            raise ResponseDecodeError("Empty block number")
        return block

    async def get_confirmations(self, tx_hash: str) -> int:
        """Confirmations of a transaction, derived from the current head"""
        tx = await self.get_transaction(tx_hash)
        if tx.is_pending:
            return self._observe_confirmations(tx.tx_hash, 0)
        current_block = await self.get_block_number()
        confirmations = derive_confirmations(tx.block_number, current_block, tx.confirmations)
        return self._observe_confirmations(tx.tx_hash, confirmations)

    # ------------------------------------------------------------------
    # Gas endpoints
    # ------------------------------------------------------------------

    async def get_gas_oracle(self) -> GasOracle:
        result = await self._cached_request(Endpoint.GAS_ORACLE, {})
        try:
            return _parse_gas_oracle(result)
        except (KeyError, TypeError, AttributeError) as e:
            raise ResponseDecodeError(f"Invalid gas oracle data: {e}") from e

    async def estimate_gas_price(self, speed: GasSpeed = GasSpeed.PROPOSE) -> Decimal:
        """Suggested gas price in gwei for the requested speed"""
        oracle = await self.get_gas_oracle()
        if speed is GasSpeed.SAFE:
            return oracle.safe_gwei()
        if speed is GasSpeed.FAST:
            return oracle.fast_gwei()
        return oracle.propose_gwei()

    # ------------------------------------------------------------------
    # Payment candidates
    # ------------------------------------------------------------------

    async def get_candidates(
        self,
        address: str,
        currency: Currency,
        page_size: int = 100,
        max_age: Optional[float] = None,
    ) -> List[TransactionCandidate]:
        """
        Recent incoming-or-outgoing transfers of the currency for an address, newest first.

        max_age bounds how stale a cached listing may be, for pollers that
        must see each new block.
        """
        if currency.is_token:
            transfers = await self.get_token_transfers(
                address, currency.contract_address, offset=page_size, sort="desc", ttl=max_age
            )
            return [
                TransactionCandidate(
                    tx_hash=t.tx_hash,
                    sender=t.from_address,
                    recipient=t.to_address,
                    value=t.value,
                    block_number=t.block_number,
                    success=True,  # tokentx only lists emitted Transfer events
                    confirmations=t.confirmations,
                    contract_address=t.contract_address,
                )
                for t in transfers
            ]

        transactions = await self.get_transactions(address, offset=page_size, sort="desc", ttl=max_age)
        return [
            TransactionCandidate(
                tx_hash=tx.tx_hash,
                sender=tx.from_address,
                recipient=tx.to_address,
                value=tx.value,
                block_number=tx.block_number or 0,
                success=tx.is_successful(),
                confirmations=tx.confirmations,
            )
            for tx in transactions
        ]

    # ------------------------------------------------------------------
    # Cache introspection
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self.cache.clear()

    def cache_stats(self) -> tuple:
        """(entry count, total weight)"""
        return self.cache.stats()

    async def aclose(self) -> None:
        await self.transport.aclose()
