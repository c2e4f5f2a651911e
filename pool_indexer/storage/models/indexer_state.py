from sqlalchemy import BigInteger, Column, String, TIMESTAMP, func

from pool_indexer.storage.base import Base


class IndexerState(Base):
    """Factory discovery cursor: highest factory block fully scanned."""
    __tablename__ = "indexer_state"

    factory_address    = Column(String(42), primary_key=True)
    last_factory_block = Column(BigInteger, nullable=False)
    updated_at         = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())
