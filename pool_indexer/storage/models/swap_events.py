from sqlalchemy import (
    BigInteger, Column, ForeignKey, Index, Integer, String, Text,
    TIMESTAMP as TIMESTAMPTZ,
)

from pool_indexer.storage.base import Base


class SwapEventRow(Base):
    """One decoded swap. Columns match what the activity UI reads:

      • (tx_hash, log_index) natural key, re-ingestion is a no-op
      • token_in / token_out in the direction of the trade
      • raw integer amounts as strings (uint256 fits no float)
      • sender_address = the tx's `from`; NULL means unknown, not 0x0
    """
    __tablename__ = "swap_events"

    tx_hash        = Column(String(66), primary_key=True)
    log_index      = Column(Integer, primary_key=True)
    pool_address   = Column(String(42), ForeignKey("pools.address"), nullable=False)
    token_in       = Column(String(42), nullable=False)
    token_out      = Column(String(42), nullable=False)
    amount_in      = Column(Text, nullable=False)
    amount_out     = Column(Text, nullable=False)
    sender_address = Column(String(42), nullable=True)
    timestamp      = Column(TIMESTAMPTZ(timezone=True), nullable=False)
    block_number   = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index("idx_swap_events_sender_timestamp", "sender_address", timestamp.desc()),
        Index("idx_swap_events_pool_timestamp", "pool_address", timestamp.desc()),
    )
