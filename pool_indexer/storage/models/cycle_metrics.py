from sqlalchemy import Column, Integer, BigInteger, Numeric, TIMESTAMP

from pool_indexer.storage.base import Base


class CycleMetrics(Base):
    __tablename__ = "cycle_metrics"

    id               = Column(Integer, primary_key=True, autoincrement=True)
    started_at       = Column(TIMESTAMP(timezone=True), nullable=False)
    head_block       = Column(BigInteger, nullable=True)   # NULL if discovery never saw the head
    pool_count       = Column(Integer, nullable=False)
    new_pools        = Column(Integer, nullable=False)
    events_written   = Column(Integer, nullable=False)
    failures         = Column(Integer, nullable=False)
    duration_seconds = Column(Numeric(10, 2))
