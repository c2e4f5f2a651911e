from dataclasses import dataclass
from datetime import datetime
from typing import NamedTuple, Optional


class BlockRange(NamedTuple):
    start: int
    end: int  # inclusive


class ReserveSnapshot(NamedTuple):
    pool_address: str
    reserve_a: int
    reserve_b: int
    observed_at_block: int


@dataclass
class Pool:
    address: str
    token_a: str
    token_b: str
    created_at_block: int
    last_ingested_block: int
    # owned by the reserve reconciler
    reserve_a: Optional[int] = None
    reserve_b: Optional[int] = None
    reserves_block: Optional[int] = None

    def __repr__(self) -> str:
        return f"<Pool {self.address} watermark={self.last_ingested_block}>"


@dataclass(frozen=True)
class SwapEvent:
    tx_hash: str
    log_index: int
    pool_address: str
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    sender_address: Optional[str]
    timestamp: datetime
    block_number: int

    def as_row(self) -> dict:
        """Row dict for the swap_events table; amounts as integer strings."""
        return {
            "tx_hash": self.tx_hash,
            "log_index": self.log_index,
            "pool_address": self.pool_address,
            "token_in": self.token_in,
            "token_out": self.token_out,
            "amount_in": str(self.amount_in),
            "amount_out": str(self.amount_out),
            "sender_address": self.sender_address,
            "timestamp": self.timestamp,
            "block_number": self.block_number,
        }


@dataclass
class CycleReport:
    started_at: datetime
    head_block: Optional[int] = None
    pool_count: int = 0
    new_pools: int = 0
    events_written: int = 0
    reserves_refreshed: int = 0
    failures: int = 0
    duration_seconds: float = 0.0
