"""Pytest configuration and shared fixtures for all tests."""

from types import SimpleNamespace
from typing import Any, Optional

import pytest
import pytest_asyncio

from tempo_collector.detector import StablecoinDetector
from tempo_collector.rpc import RPCError
from tempo_collector.stats import TRANSFER_EVENT_SIGNATURE, StablecoinStatsAggregator
from tempo_collector.storage import (
    StablecoinStore,
    TransactionStore,
    create_engine,
    create_session_factory,
    init_db,
)

TOKEN = "0x20c0000000000000000000000000000000000001"
OTHER_TOKEN = "0x20c0000000000000000000000000000000000002"
SENDER = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x2222222222222222222222222222222222222222"

TOKEN_CODE = "0x6080604052"  # 5 bytes


class FakeResponse:
    """aiohttp response stand-in. A `body` that is an exception is raised from json()."""

    def __init__(self, status=200, body=None, text="", headers=None):
        self.status = status
        self.body = body
        self._text = text
        self.headers = headers or {}
        self.request_info = SimpleNamespace(real_url="http://node")
        self.history = ()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def text(self):
        return self._text

    async def json(self, content_type=None):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def post(self, endpoint, json=None):
        self.requests.append((endpoint, json))
        return self.responses.pop(0)

    async def close(self):
        pass


class FakeChain:
    """In-memory chain data source with the RPCClient call surface."""

    def __init__(self):
        self.blocks: dict[int, dict] = {}
        self.transactions: dict[str, dict] = {}
        self.receipts: dict[str, dict] = {}
        self.code: dict[str, str] = {}
        self.token_reads: dict[str, dict[str, Any]] = {}
        self.failing_receipts: set[str] = set()
        self.failing_addresses: set[str] = set()
        self.head = 0
        self.calls: list[tuple] = []

    def add_token(self, address: str, decimals=6, symbol="PUSD", total_supply=1_000_000, code=TOKEN_CODE):
        self.code[address] = code
        reads = {}
        if decimals is not None:
            reads["decimals()"] = decimals
        if symbol is not None:
            reads["symbol()"] = symbol
        if total_supply is not None:
            reads["totalSupply()"] = total_supply
        self.token_reads[address] = reads

    def add_block(self, number: int, transactions: list[dict], receipts: list[Optional[dict]], timestamp: int = 1_700_000_000):
        block_hash = "0x" + f"{number:064x}"
        for tx, receipt in zip(transactions, receipts):
            self.transactions[tx["hash"]] = tx
            if receipt is not None:
                receipt.setdefault("blockNumber", hex(number))
                receipt.setdefault("blockHash", block_hash)
                self.receipts[tx["hash"]] = receipt
        self.blocks[number] = {
            "number": hex(number),
            "hash": block_hash,
            "timestamp": hex(timestamp),
            "transactions": transactions,
        }
        self.head = max(self.head, number)
        return self.blocks[number]

    async def get_block_number(self) -> int:
        self.calls.append(("get_block_number",))
        return self.head

    async def get_block(self, number=None, block_hash=None, full_transactions=True):
        self.calls.append(("get_block", number, block_hash))
        if number is not None:
            return self.blocks.get(number)
        for block in self.blocks.values():
            if block["hash"] == block_hash:
                return block
        return None

    async def get_transaction(self, tx_hash: str):
        self.calls.append(("get_transaction", tx_hash))
        return self.transactions.get(tx_hash)

    async def get_transaction_receipt(self, tx_hash: str):
        self.calls.append(("get_transaction_receipt", tx_hash))
        if tx_hash in self.failing_receipts:
            raise RPCError("receipt unavailable")
        return self.receipts.get(tx_hash)

    async def get_code(self, address: str) -> str:
        self.calls.append(("get_code", address))
        if address in self.failing_addresses:
            raise RPCError("HTTP 500")
        return self.code.get(address, "0x")

    async def read_contract(self, address: str, signature: str, output_type: str):
        self.calls.append(("read_contract", address, signature))
        reads = self.token_reads.get(address, {})
        if signature not in reads:
            raise RPCError("execution reverted")
        return reads[signature]


def make_tx(tx_hash: str, to: Optional[str] = TOKEN, **overrides) -> dict:
    tx = {
        "hash": tx_hash,
        "from": SENDER,
        "to": to,
        "value": "0x0",
        "input": "0xa9059cbb",
        "nonce": "0x1",
        "gas": "0x5208",
        "gasPrice": "0x3b9aca00",
    }
    tx.update(overrides)
    return tx


def transfer_log(token: str, amount: int) -> dict:
    return {
        "address": token,
        "topics": [
            TRANSFER_EVENT_SIGNATURE,
            "0x" + SENDER[2:].rjust(64, "0"),
            "0x" + RECIPIENT[2:].rjust(64, "0"),
        ],
        "data": "0x" + f"{amount:064x}",
    }


def make_receipt(tx_hash: str, logs=None, fee_token=None, gas_used=21000, gas_price=2, status="0x1", **overrides) -> dict:
    receipt = {
        "transactionHash": tx_hash,
        "transactionIndex": "0x0",
        "from": SENDER,
        "status": status,
        "gasUsed": hex(gas_used),
        "effectiveGasPrice": hex(gas_price),
        "logs": logs or [],
    }
    if fee_token:
        receipt["feeToken"] = fee_token
    receipt.update(overrides)
    return receipt


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def transaction_store(session_factory):
    return TransactionStore(session_factory)


@pytest.fixture
def stablecoin_store(session_factory):
    return StablecoinStore(session_factory)


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def detector(chain, stablecoin_store):
    return StablecoinDetector(chain, stablecoin_store, concurrency=10, call_timeout=1.0)


@pytest.fixture
def aggregator(stablecoin_store):
    return StablecoinStatsAggregator(stablecoin_store)
