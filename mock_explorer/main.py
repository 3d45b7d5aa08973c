from dataclasses import dataclass, field
from typing import Dict, List, Optional

from fastapi import FastAPI, Query

SEED_RECIPIENT = "0x742d35cc6634c0532925a3b844bc9e7595f0beb1"
SEED_SENDER = "0x1111111111111111111111111111111111111111"
USDC_CONTRACT = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
INVALID_KEY = "invalid"


@dataclass
class MockTx:
    hash: str
    block_number: Optional[int]  # None = still in the mempool
    sender: str
    to: str
    value: int
    success: bool = True
    contract: Optional[str] = None  # set for ERC-20 transfers
    token_decimal: int = 18


@dataclass
class MockChain:
    """In-memory chain state served with Etherscan-shaped responses"""

    head: int = 1000
    txs: List[MockTx] = field(default_factory=list)
    balances: Dict[str, int] = field(default_factory=dict)
    calls: int = 0

    def add(self, tx: MockTx) -> MockTx:
        self.txs.append(tx)
        return tx

    def mine(self, blocks: int = 1) -> None:
        self.head += blocks

    def include(self, tx_hash: str, block_number: Optional[int] = None) -> None:
        for tx in self.txs:
            if tx.hash == tx_hash:
                tx.block_number = self.head if block_number is None else block_number

    def confirmations(self, tx: MockTx) -> int:
        if tx.block_number is None or tx.block_number > self.head:
            return 0
        return self.head - tx.block_number + 1

    def find(self, tx_hash: str) -> Optional[MockTx]:
        return next((tx for tx in self.txs if tx.hash == tx_hash.lower()), None)


def _ok(result):
    return {"status": "1", "message": "OK", "result": result}


def _empty():
    return {"status": "0", "message": "No transactions found", "result": []}


def _rpc(result):
    return {"jsonrpc": "2.0", "id": 1, "result": result}


def _account_row(chain: MockChain, tx: MockTx) -> dict:
    row = {
        "blockNumber": str(tx.block_number),
        "timeStamp": "1700000000",
        "hash": tx.hash,
        "nonce": "1",
        "from": tx.sender,
        "to": tx.to,
        "value": str(tx.value),
        "gas": "21000",
        "gasPrice": "20000000000",
        "gasUsed": "21000",
        "confirmations": str(chain.confirmations(tx)),
    }
    if tx.contract:
        row.update(
            contractAddress=tx.contract,
            tokenName="USD Coin",
            tokenSymbol="USDC",
            tokenDecimal=str(tx.token_decimal),
        )
    else:
        row.update(
            isError="0" if tx.success else "1",
            txreceipt_status="1" if tx.success else "0",
            input="0x",
            contractAddress="",
            methodId="0x",
            functionName="",
        )
    return row


def _listing(chain: MockChain, rows: List[MockTx], page: int, offset: int, sort: str):
    mined = [tx for tx in rows if tx.block_number is not None]
    mined.sort(key=lambda tx: tx.block_number, reverse=(sort == "desc"))
    window = mined[(page - 1) * offset: page * offset]
    if not window:
        return _empty()
    return _ok([_account_row(chain, tx) for tx in window])


def create_app(chain: Optional[MockChain] = None) -> FastAPI:
    chain = chain or MockChain()
    app = FastAPI(title="Mock Explorer Server", version="1.0.0")
    app.state.chain = chain

    @app.get("/health")
    def health(): return {"status": "ok", "head": chain.head}

    @app.get("/api")
    def api(
        module: str,
        action: str,
        apikey: str = "",
        address: str = "",
        contractaddress: Optional[str] = None,
        txhash: str = "",
        page: int = 1,
        offset: int = 100,
        sort: str = "desc",
        startblock: int = 0,
        endblock: int = 99999999,
        tag: str = Query("latest"),
    ):
        chain.calls += 1
        if not apikey or apikey == INVALID_KEY:
            return {"status": "0", "message": "NOTOK", "result": "Invalid API Key"}

        address = address.lower()
        in_range = [
            tx for tx in chain.txs
            if tx.block_number is None or startblock <= tx.block_number <= endblock
        ]

        if (module, action) == ("account", "balance"):
            return _ok(str(chain.balances.get(address, 0)))
        if (module, action) == ("account", "tokenbalance"):
            return _ok(str(chain.balances.get(f"{contractaddress}:{address}", 0)))
        if (module, action) == ("account", "txlist"):
            rows = [tx for tx in in_range if not tx.contract and address in (tx.sender, tx.to)]
            return _listing(chain, rows, page, offset, sort)
        if (module, action) == ("account", "tokentx"):
            rows = [
                tx for tx in in_range
                if tx.contract and tx.success and address in (tx.sender, tx.to)
                and (contractaddress is None or tx.contract == contractaddress.lower())
            ]
            return _listing(chain, rows, page, offset, sort)
        if (module, action) == ("account", "txlistinternal"):
            return _empty()

        if (module, action) == ("proxy", "eth_blockNumber"):
            return _rpc(hex(chain.head))
        if (module, action) == ("proxy", "eth_getTransactionByHash"):
            tx = chain.find(txhash)
            if tx is None:
                return _rpc(None)
            return _rpc({
                "hash": tx.hash,
                "blockNumber": None if tx.block_number is None else hex(tx.block_number),
                "from": tx.sender,
                "to": tx.contract or tx.to,
                "value": hex(0 if tx.contract else tx.value),
                "gas": hex(21000),
                "gasPrice": hex(20000000000),
                "nonce": hex(1),
                "input": "0x",
            })
        if (module, action) == ("proxy", "eth_getTransactionReceipt"):
            tx = chain.find(txhash)
            if tx is None or tx.block_number is None:
                return _rpc(None)
            return _rpc({
                "transactionHash": tx.hash,
                "blockNumber": hex(tx.block_number),
                "status": "0x1" if tx.success else "0x0",
                "gasUsed": hex(21000),
                "cumulativeGasUsed": hex(21000),
                "contractAddress": None,
                "logs": [],
            })

        if (module, action) == ("gastracker", "gasoracle"):
            return _ok({
                "LastBlock": str(chain.head),
                "SafeGasPrice": "20",
                "ProposeGasPrice": "25",
                "FastGasPrice": "30",
                "suggestBaseFee": "19.5",
                "gasUsedRatio": "0.5,0.6",
            })

        return {"status": "0", "message": "NOTOK", "result": f"Unknown action {module}.{action}"}

    return app


def seeded_chain() -> MockChain:
    """A recipient with one confirmed 1 ETH payment, one reverted 2 ETH attempt and 250 USDC"""
    chain = MockChain(head=1000)
    chain.add(MockTx("0x" + "a" * 64, 990, SEED_SENDER, SEED_RECIPIENT, 10**18))
    chain.add(MockTx("0x" + "b" * 64, 995, SEED_SENDER, SEED_RECIPIENT, 2 * 10**18, success=False))
    chain.add(MockTx("0x" + "c" * 64, 998, SEED_SENDER, SEED_RECIPIENT, 250_000_000,
                     contract=USDC_CONTRACT, token_decimal=6))
    chain.balances[SEED_RECIPIENT] = 10**18
    return chain


app = create_app(seeded_chain())
