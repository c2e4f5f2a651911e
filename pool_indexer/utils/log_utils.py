# pool_indexer/utils/log_utils.py
from typing import Iterator
from hexbytes import HexBytes
from web3 import Web3
from web3.datastructures import AttributeDict

from pool_indexer.utils.types import BlockRange


def to_hex(value) -> str:
    """Bytes-like → lowercase 0x-prefixed hex, whatever the hexbytes version."""
    return Web3.to_hex(HexBytes(value)).lower()


def normalize_address(address: str) -> str:
    """Store addresses as lowercase 0x + 40 hex chars."""
    address = address.lower()
    if not address.startswith("0x"):
        address = "0x" + address
    if len(address) != 42:
        raise ValueError(f"Not an address: {address}")
    return address


def sanitize_log(log) -> dict:
    """Convert a Web3 log receipt to a JSON-safe dict of hex strings and ints."""
    out = {}
    for k, v in dict(log).items():
        if isinstance(v, (bytes, bytearray, HexBytes)):
            out[k] = to_hex(v)
        elif isinstance(v, (list, tuple)):
            out[k] = [to_hex(t) if isinstance(t, (bytes, bytearray, HexBytes)) else t for t in v]
        elif isinstance(v, AttributeDict):
            out[k] = dict(v)
        else:
            out[k] = v
    return out


def split_block_range(start: int, end: int, max_width: int) -> Iterator[BlockRange]:
    """Yield inclusive sub-ranges of at most `max_width` blocks covering [start, end].

    Consecutive ranges touch without overlapping; an empty range (start > end)
    yields nothing.
    """
    if max_width < 1:
        raise ValueError(f"max_width must be positive, got {max_width}")
    for lo in range(start, end + 1, max_width):
        yield BlockRange(lo, min(lo + max_width - 1, end))
