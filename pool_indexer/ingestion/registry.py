from typing import Dict, List, Optional
import logging

from pool_indexer.sources.chain.events import POOL_CREATED_TOPIC, decode_pool_created
from pool_indexer.utils.errors import DiscoveryError
from pool_indexer.utils.log_utils import split_block_range
from pool_indexer.utils.types import Pool

log = logging.getLogger(__name__)


class PoolRegistry:
    """The set of known pools, grown only by discover_new_pools().

    `last_factory_block` is the discovery cursor. It moves forward after a
    sub-range of factory logs has been fully processed, so a crash mid-range
    re-scans that range on restart; duplicates are dropped by address.
    """

    def __init__(self, client, sink, factory_address: str, last_factory_block: int,
                 max_block_range: int, pools: List[Pool] = (), start_block: int = 0):
        self.client = client
        self.sink = sink
        self.factory_address = factory_address.lower()
        self.last_factory_block = last_factory_block
        self.max_block_range = max_block_range
        self.start_block = start_block
        self.last_head: Optional[int] = None
        self.restored = True
        self._pools: Dict[str, Pool] = {p.address: p for p in pools}

    @classmethod
    def deferred(cls, client, sink, factory_address: str, start_block: int, max_block_range: int) -> "PoolRegistry":
        """A registry that restores itself from the store on first use."""
        registry = cls(client, sink, factory_address, start_block - 1, max_block_range, start_block=start_block)
        registry.restored = False
        return registry

    @classmethod
    def load(cls, client, sink, factory_address: str, start_block: int, max_block_range: int) -> "PoolRegistry":
        """Restore pools and cursor from the store; a fresh store starts at `start_block`."""
        registry = cls.deferred(client, sink, factory_address, start_block, max_block_range)
        registry.ensure_restored()
        return registry

    def ensure_restored(self) -> None:
        """Create the schema if needed and load pools and cursor, once.
        Raises PersistenceError while the store is unreachable."""
        if self.restored:
            return
        self.sink.create_schema()
        cursor = self.sink.get_factory_cursor(self.factory_address)
        pools = self.sink.load_pools()
        self.last_factory_block = self.start_block - 1 if cursor is None else cursor
        self._pools = {p.address: p for p in pools}
        self.restored = True
        log.info(f"📚 Loaded {len(pools)} pools, factory cursor at block {self.last_factory_block}")

    def pools(self) -> List[Pool]:
        return list(self._pools.values())

    def __len__(self) -> int:
        return len(self._pools)

    def __contains__(self, address: str) -> bool:
        return address.lower() in self._pools

    def discover_new_pools(self) -> List[Pool]:
        self.last_head = None
        head = self.client.get_latest_block()
        self.last_head = head
        if head <= self.last_factory_block:
            return []

        found: List[Pool] = []
        for rng in split_block_range(self.last_factory_block + 1, head, self.max_block_range):
            logs = self.client.get_logs(self.factory_address, POOL_CREATED_TOPIC, rng.start, rng.end)
            for raw in logs:
                try:
                    created = decode_pool_created(raw)
                except DiscoveryError as exc:
                    log.warning(f"Skipping factory log: {exc}")
                    continue
                if created.pool_address in self._pools:
                    continue
                pool = Pool(
                    address=created.pool_address,
                    token_a=created.token_a,
                    token_b=created.token_b,
                    created_at_block=created.block_number,
                    last_ingested_block=created.block_number - 1,
                )
                self.sink.upsert_pool(pool)
                self._pools[pool.address] = pool
                found.append(pool)
                log.info(f"🆕 Pool {pool.address} ({pool.token_a}/{pool.token_b}) at block {pool.created_at_block}")

            self.sink.set_factory_cursor(self.factory_address, rng.end)
            self.last_factory_block = rng.end

        return found
