# pool_indexer/sources/chain/events.py
# --------------------------------------------------------------
# Tagged decoding of factory PairCreated and pool Swap logs
# (Uniswap V2 ABI). A log is checked for topic0, topic count and
# data length before any field is read; a mismatch raises instead
# of being coerced.
# --------------------------------------------------------------
from dataclasses import dataclass
from typing import Tuple

from eth_abi import abi
from eth_abi.exceptions import DecodingError
from web3 import Web3

from pool_indexer.config.settings import FACTORY_EVENT_SIGNATURE, SWAP_EVENT_SIGNATURE
from pool_indexer.utils.errors import DiscoveryError, LogDecodeError
from pool_indexer.utils.log_utils import to_hex

POOL_CREATED_TOPIC = Web3.to_hex(Web3.keccak(text=FACTORY_EVENT_SIGNATURE))
SWAP_TOPIC = Web3.to_hex(Web3.keccak(text=SWAP_EVENT_SIGNATURE))

_POOL_CREATED_DATA = ["address", "uint256"]
_SWAP_DATA = ["uint256", "uint256", "uint256", "uint256"]


@dataclass(frozen=True)
class PoolCreated:
    pool_address: str
    token_a: str
    token_b: str
    block_number: int


@dataclass(frozen=True)
class SwapLog:
    pool_address: str
    tx_hash: str
    log_index: int
    block_number: int
    sender: str        # indexed `sender`, usually a router
    recipient: str
    amount0_in: int
    amount1_in: int
    amount0_out: int
    amount1_out: int

    def direction(self) -> Tuple[bool, int, int]:
        """(token0_is_input, amount_in, amount_out) from net pool flows."""
        net0 = self.amount0_in - self.amount0_out
        net1 = self.amount1_in - self.amount1_out
        if net0 > 0 and net1 < 0:
            return True, net0, -net1
        if net1 > 0 and net0 < 0:
            return False, net1, -net0
        raise LogDecodeError(
            f"Swap {self.tx_hash}#{self.log_index} has no directional flow "
            f"(net0={net0}, net1={net1})"
        )


def _topic_address(topic: str) -> str:
    return "0x" + topic[-40:].lower()


def _check_shape(log: dict, topic0: str, n_topics: int, n_words: int, error=LogDecodeError) -> Tuple[list, bytes]:
    ident = f"{log.get('transactionHash')}#{log.get('logIndex')}"
    topics = [to_hex(t) if not isinstance(t, str) else t.lower() for t in (log.get("topics") or [])]
    if not topics or topics[0] != topic0:
        raise error(f"Log {ident}: unexpected topic0 {topics[0] if topics else None}")
    if len(topics) != n_topics:
        raise error(f"Log {ident}: expected {n_topics} topics, got {len(topics)}")
    data = log.get("data") or "0x"
    data = bytes.fromhex(data[2:] if data.startswith("0x") else data) if isinstance(data, str) else bytes(data)
    if len(data) != 32 * n_words:
        raise error(f"Log {ident}: expected {32 * n_words} data bytes, got {len(data)}")
    return topics, data


def decode_pool_created(log: dict) -> PoolCreated:
    try:
        topics, data = _check_shape(log, POOL_CREATED_TOPIC, 3, 2, DiscoveryError)
        pool_address, _pool_count = abi.decode(_POOL_CREATED_DATA, data)
        return PoolCreated(
            pool_address=pool_address.lower(),
            token_a=_topic_address(topics[1]),
            token_b=_topic_address(topics[2]),
            block_number=int(log["blockNumber"]),
        )
    except (DecodingError, KeyError, TypeError, ValueError) as exc:
        raise DiscoveryError(f"Undecodable factory log {log.get('transactionHash')}: {exc}") from exc


def decode_swap(log: dict) -> SwapLog:
    try:
        topics, data = _check_shape(log, SWAP_TOPIC, 3, 4)
        a0_in, a1_in, a0_out, a1_out = abi.decode(_SWAP_DATA, data)
        return SwapLog(
            pool_address=log["address"].lower(),
            tx_hash=log["transactionHash"].lower(),
            log_index=int(log["logIndex"]),
            block_number=int(log["blockNumber"]),
            sender=_topic_address(topics[1]),
            recipient=_topic_address(topics[2]),
            amount0_in=a0_in,
            amount1_in=a1_in,
            amount0_out=a0_out,
            amount1_out=a1_out,
        )
    except (DecodingError, KeyError, TypeError, ValueError) as exc:
        raise LogDecodeError(f"Undecodable swap log {log.get('transactionHash')}: {exc}") from exc

