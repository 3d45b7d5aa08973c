"""Unit tests for the explorer access facade"""

import httpx
import pytest
from decimal import Decimal
from conftest import MOCK_EXPLORER_URL, RECIPIENT
from cryptopay_gateway.config import ClientConfig
from cryptopay_gateway.domain.exceptions import (
    ExplorerAPIError,
    InvalidAddressError,
    InvalidInputError,
    InvalidTxHashError,
    RemoteRateLimitError,
    ResponseDecodeError,
    TransactionNotFoundError,
)
from cryptopay_gateway.domain.models import Currency
from cryptopay_gateway.infrastructure.clients.explorer import ExplorerClient, GasSpeed, derive_confirmations
from cryptopay_gateway.infrastructure.clients.transport import ExplorerTransport
from mock_explorer.main import USDC_CONTRACT, MockTx, create_app as create_mock_explorer

CONFIRMED_HASH = "0x" + "a" * 64
REVERTED_HASH = "0x" + "b" * 64
UNKNOWN_HASH = "0x" + "9" * 64


def stub_explorer(body) -> ExplorerClient:
    """Explorer whose every call returns the given JSON body"""
    config = ClientConfig.builder().api_key("k").rate_limit(1000).build()
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)))
    return ExplorerClient(config, transport=ExplorerTransport(config.base_url, client=http))


def routed_explorer(routes: dict, calls: list) -> ExplorerClient:
    """Explorer whose calls are answered by action name"""
    config = ClientConfig.builder().api_key("k").rate_limit(1000).build()

    def handler(request: httpx.Request) -> httpx.Response:
        action = request.url.params["action"]
        calls.append(action)
        return httpx.Response(200, json=routes[action])

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ExplorerClient(config, transport=ExplorerTransport(config.base_url, client=http))


def test_derive_confirmations():
    assert derive_confirmations(990, 1000) == 11
    assert derive_confirmations(1000, 1000) == 1
    assert derive_confirmations(1001, 1000) == 0  # ahead of the reported head
    assert derive_confirmations(None, 1000) == 0  # unmined
    assert derive_confirmations(990, 1000, reported=20) == 20


async def test_get_balance(explorer):
    balance = await explorer.get_balance(RECIPIENT)
    assert balance.wei == 10**18
    assert balance.ether == Decimal("1")


async def test_invalid_address_makes_no_remote_call(explorer, chain):
    with pytest.raises(InvalidAddressError):
        await explorer.get_transactions("0x123")
    assert chain.calls == 0


async def test_invalid_tx_hash_makes_no_remote_call(explorer, chain):
    with pytest.raises(InvalidTxHashError):
        await explorer.get_transaction("0xdeadbeef")
    assert chain.calls == 0


async def test_invalid_paging_rejected(explorer, chain):
    with pytest.raises(InvalidInputError):
        await explorer.get_transactions(RECIPIENT, sort="sideways")
    with pytest.raises(InvalidInputError):
        await explorer.get_transactions(RECIPIENT, page=0)
    assert chain.calls == 0


async def test_get_transactions_parses_rows(explorer):
    transactions = await explorer.get_transactions(RECIPIENT)

    assert [tx.tx_hash for tx in transactions] == [REVERTED_HASH, CONFIRMED_HASH]
    confirmed = transactions[1]
    assert confirmed.value_ether == Decimal("1")
    assert confirmed.confirmations == 11
    assert confirmed.is_successful()
    assert not transactions[0].is_successful()


async def test_no_transactions_is_empty_list(explorer):
    assert await explorer.get_transactions("0x" + "3" * 40) == []


async def test_list_results_are_cached(explorer, chain):
    await explorer.get_transactions(RECIPIENT)
    await explorer.get_transactions(RECIPIENT.upper().replace("0X", "0x"))
    assert chain.calls == 1

    explorer.clear_cache()
    await explorer.get_transactions(RECIPIENT)
    assert chain.calls == 2


async def test_block_number_is_never_cached(explorer, chain):
    assert await explorer.get_block_number() == 1000
    chain.mine(3)
    assert await explorer.get_block_number() == 1003
    assert chain.calls == 2


async def test_get_transaction_and_confirmations(explorer, chain):
    tx = await explorer.get_transaction(CONFIRMED_HASH)
    assert tx.block_number == 990
    assert tx.value == 10**18

    assert await explorer.get_confirmations(CONFIRMED_HASH) == 11
    chain.mine(5)
    assert await explorer.get_confirmations(CONFIRMED_HASH) == 16


async def test_confirmations_never_decrease(explorer, chain):
    assert await explorer.get_confirmations(CONFIRMED_HASH) == 11
    chain.head -= 5  # explorer node lagging behind
    assert await explorer.get_confirmations(CONFIRMED_HASH) == 11


async def test_unknown_transaction_not_found_and_not_cached(explorer, chain):
    with pytest.raises(TransactionNotFoundError):
        await explorer.get_transaction(UNKNOWN_HASH)
    with pytest.raises(TransactionNotFoundError):
        await explorer.get_transaction(UNKNOWN_HASH)
    assert chain.calls == 2


async def test_pending_transaction_is_not_cached(explorer, chain):
    pending_hash = "0x" + "d" * 64
    chain.add(MockTx(pending_hash, None, "0x" + "1" * 40, RECIPIENT, 10**18))

    tx = await explorer.get_transaction(pending_hash)
    assert tx.is_pending
    assert await explorer.get_confirmations(pending_hash) == 0

    chain.include(pending_hash)
    tx = await explorer.get_transaction(pending_hash)
    assert tx.block_number == 1000


async def test_receipt(explorer):
    receipt = await explorer.get_transaction_receipt(REVERTED_HASH)
    assert receipt.block_number == 995
    assert receipt.status is False


async def test_token_transfers_filtered_by_contract(explorer):
    transfers = await explorer.get_token_transfers(RECIPIENT, USDC_CONTRACT)
    assert len(transfers) == 1
    assert transfers[0].value_tokens == Decimal("250")

    assert await explorer.get_token_transfers(RECIPIENT, "0x" + "4" * 40) == []


async def test_token_candidates(explorer):
    candidates = await explorer.get_candidates(RECIPIENT, Currency.usdc())
    assert len(candidates) == 1
    assert candidates[0].contract_address == USDC_CONTRACT
    assert candidates[0].value == 250_000_000


async def test_native_candidates_carry_success_flag(explorer):
    candidates = await explorer.get_candidates(RECIPIENT, Currency.native())
    assert {c.tx_hash: c.success for c in candidates} == {CONFIRMED_HASH: True, REVERTED_HASH: False}


async def test_gas_oracle(explorer):
    oracle = await explorer.get_gas_oracle()
    assert oracle.safe_gwei() == Decimal("20")
    assert await explorer.estimate_gas_price(GasSpeed.FAST) == Decimal("30")
    assert await explorer.estimate_gas_price() == Decimal("25")


async def test_invalid_api_key_is_api_error(chain):
    config = ClientConfig.builder().api_key("invalid").base_url(MOCK_EXPLORER_URL).rate_limit(1000).build()
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=create_mock_explorer(chain)))
    explorer = ExplorerClient(config, transport=ExplorerTransport(config.base_url, client=http))

    with pytest.raises(ExplorerAPIError) as exc_info:
        await explorer.get_balance(RECIPIENT)
    assert exc_info.value.detail == "Invalid API Key"


async def test_remote_rate_limit_is_typed():
    explorer = stub_explorer({"status": "0", "message": "NOTOK", "result": "Max rate limit reached"})
    with pytest.raises(RemoteRateLimitError):
        await explorer.get_balance(RECIPIENT)


async def test_json_rpc_error_is_api_error():
    explorer = stub_explorer({"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "invalid argument"}})
    with pytest.raises(ExplorerAPIError):
        await explorer.get_block_number()


async def test_missing_result_is_decode_error():
    explorer = stub_explorer({"status": "1", "message": "OK"})
    with pytest.raises(ResponseDecodeError):
        await explorer.get_balance(RECIPIENT)


async def test_malformed_rows_are_decode_error():
    explorer = stub_explorer({"status": "1", "message": "OK", "result": [{"unexpected": True}]})
    with pytest.raises(ResponseDecodeError):
        await explorer.get_transactions(RECIPIENT)


async def test_errors_are_not_cached(explorer, chain):
    """A failed call leaves nothing behind for the next caller"""
    chain.balances[RECIPIENT] = 5
    explorer.gateway._keys = ("invalid",)
    with pytest.raises(ExplorerAPIError):
        await explorer.get_balance(RECIPIENT)
    assert explorer.cache_stats() == (0, 0)


async def test_candidates_without_upstream_confirmations_are_derived_from_head():
    """Explorers that omit the confirmations field still report real counts"""
    row = {
        "hash": CONFIRMED_HASH,
        "blockNumber": "100",
        "from": "0x" + "2" * 40,
        "to": RECIPIENT,
        "value": "1000",
        "isError": "0",
        "txreceipt_status": "1",
    }
    calls = []
    explorer = routed_explorer(
        {
            "txlist": {"status": "1", "message": "OK", "result": [row, {**row, "hash": REVERTED_HASH, "blockNumber": "110"}]},
            "eth_blockNumber": {"jsonrpc": "2.0", "id": 1, "result": "0x72"},
        },
        calls,
    )

    candidates = await explorer.get_candidates(RECIPIENT, Currency.native())

    assert [c.confirmations for c in candidates] == [15, 5]
    assert calls == ["txlist", "eth_blockNumber"]


async def test_token_candidates_without_upstream_confirmations_are_derived_from_head():
    row = {
        "hash": CONFIRMED_HASH,
        "blockNumber": "100",
        "from": "0x" + "2" * 40,
        "to": RECIPIENT,
        "contractAddress": USDC_CONTRACT,
        "value": "250000000",
        "tokenDecimal": "6",
    }
    explorer = routed_explorer(
        {
            "tokentx": {"status": "1", "message": "OK", "result": [row]},
            "eth_blockNumber": {"jsonrpc": "2.0", "id": 1, "result": "0x72"},
        },
        [],
    )

    candidates = await explorer.get_candidates(RECIPIENT, Currency.usdc())
    assert candidates[0].confirmations == 15


async def test_reported_confirmations_skip_the_head_lookup(explorer, chain):
    await explorer.get_candidates(RECIPIENT, Currency.native())
    assert chain.calls == 1
