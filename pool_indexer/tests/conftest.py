import pytest
from eth_abi import abi
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pool_indexer.sources.chain.events import POOL_CREATED_TOPIC, SWAP_TOPIC
from pool_indexer.storage.sink import PersistenceSink
from pool_indexer.utils.errors import RpcTimeout, RpcUnavailable
from pool_indexer.utils.types import Pool

FACTORY = "0x" + "fa" * 20
BASE_TS = 1_700_000_000


def addr(n: int) -> str:
    return "0x" + f"{n:040x}"


def _topic(address: str) -> str:
    return "0x" + "00" * 12 + address[2:].lower()


def _tx(n: int) -> str:
    return "0x" + f"{n:064x}"


class FakeChainClient:
    """In-memory stand-in for ChainClient, with switchable failures."""

    def __init__(self, head: int = 0):
        self.head = head
        self.logs = []
        self.senders = {}
        self.balances = {}
        self.fail_ranges = set()       # (from, to) pairs whose get_logs raises
        self.fail_addresses = set()    # contracts whose get_logs raises
        self.fail_calls = set()        # token contracts whose eth_call raises
        self.empty_calls = set()       # token contracts that return no data
        self.get_logs_calls = []

    def get_latest_block(self) -> int:
        return self.head

    def get_logs(self, contract_address, topic, from_block, to_block):
        address = contract_address.lower()
        self.get_logs_calls.append((address, from_block, to_block))
        if (from_block, to_block) in self.fail_ranges or address in self.fail_addresses:
            raise RpcUnavailable(f"eth_getLogs {from_block}-{to_block}: all endpoints unreachable")
        return [
            log for log in self.logs
            if log["address"].lower() == address
            and log["topics"][0] == topic
            and from_block <= log["blockNumber"] <= to_block
        ]

    def get_block_timestamps(self, block_numbers):
        return {b: BASE_TS + 2 * b for b in block_numbers}

    def get_transaction_senders(self, tx_hashes):
        return {h: self.senders.get(h) for h in tx_hashes}

    def call(self, contract_address, signature, args=(), block_identifier="latest"):
        if contract_address in self.fail_calls:
            raise RpcTimeout(f"eth_call {signature} timed out")
        if contract_address in self.empty_calls:
            return b""
        return abi.encode(["uint256"], [self.balances.get((contract_address, args[0]), 0)])

    # ── log builders ──────────────────────────────────────────────────
    def add_pool_created(self, pool: str, token0: str, token1: str, block: int, index: int = 0) -> dict:
        log = {
            "address": FACTORY,
            "topics": [POOL_CREATED_TOPIC, _topic(token0), _topic(token1)],
            "data": "0x" + abi.encode(["address", "uint256"], [pool, index + 1]).hex(),
            "blockNumber": block,
            "transactionHash": _tx(10_000 + block * 10 + index),
            "logIndex": index,
        }
        self.logs.append(log)
        return log

    def add_swap(self, pool: str, block: int, tx: int, log_index: int = 0,
                 amounts=(1, 0, 0, 1), sender: str = None) -> dict:
        tx_hash = _tx(tx)
        log = {
            "address": pool,
            "topics": [SWAP_TOPIC, _topic(addr(0xA0)), _topic(addr(0xB0))],
            "data": "0x" + abi.encode(["uint256"] * 4, list(amounts)).hex(),
            "blockNumber": block,
            "transactionHash": tx_hash,
            "logIndex": log_index,
        }
        if sender is not None:
            self.senders[tx_hash] = sender
        self.logs.append(log)
        return log


@pytest.fixture
def chain():
    return FakeChainClient(head=100)


@pytest.fixture
def sink():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    sink = PersistenceSink(factory)
    sink.create_schema()
    yield sink
    engine.dispose()


@pytest.fixture
def make_pool(sink):
    """Create and persist a pool the way discovery would."""
    def _make(n: int, created_at_block: int = 50) -> Pool:
        pool = Pool(
            address=addr(0x1000 + n),
            token_a=addr(0x2000 + 2 * n),
            token_b=addr(0x2000 + 2 * n + 1),
            created_at_block=created_at_block,
            last_ingested_block=created_at_block - 1,
        )
        sink.upsert_pool(pool)
        return pool
    return _make
