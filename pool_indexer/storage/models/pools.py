# models/pools.py
from sqlalchemy import BigInteger, Column, String, Text

from pool_indexer.storage.base import Base


class PoolRow(Base):
    __tablename__ = "pools"

    address             = Column(String(42), primary_key=True)   # lowercase 0x…
    token_a             = Column(String(42), nullable=False)     # token0 of the pair
    token_b             = Column(String(42), nullable=False)     # token1 of the pair
    created_at_block    = Column(BigInteger, nullable=False)
    last_ingested_block = Column(BigInteger, nullable=False)     # watermark, never decreases

    # reserve fields, overwritten by the reconciler (integer strings)
    reserve_a           = Column(Text, nullable=True)
    reserve_b           = Column(Text, nullable=True)
    reserves_block      = Column(BigInteger, nullable=True)

    def __repr__(self) -> str:         # for nicer logs
        return f"<PoolRow {self.address} watermark={self.last_ingested_block}>"
