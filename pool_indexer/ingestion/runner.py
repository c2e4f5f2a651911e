import threading

from pool_indexer.config.settings import Settings
from pool_indexer.ingestion.ingestor import EventIngestor
from pool_indexer.ingestion.reconciler import ReserveReconciler
from pool_indexer.ingestion.registry import PoolRegistry
from pool_indexer.scheduler.dispatcher import PollScheduler, make_cycle_locker
from pool_indexer.sources.chain.client import ChainClient
from pool_indexer.storage import db
from pool_indexer.storage.sink import PersistenceSink


def build_sink(settings: Settings) -> PersistenceSink:
    db.configure(settings.database_url)
    return PersistenceSink(db.SessionLocal)


def build_scheduler(settings: Settings, sink: PersistenceSink = None, client: ChainClient = None) -> PollScheduler:
    """Wire the indexer from settings. The registry is restored from the store."""
    sink = sink or build_sink(settings)
    client = client or ChainClient(settings.rpc_urls, timeout=settings.rpc_timeout)
    stop_event = threading.Event()

    # restored on the first cycle, so a store outage at boot is retried like any other
    registry = PoolRegistry.deferred(
        client,
        sink,
        settings.factory_address,
        start_block=settings.factory_start_block,
        max_block_range=settings.max_block_range,
    )
    ingestor = EventIngestor(
        client,
        sink,
        max_block_range=settings.max_block_range,
        confirmation_depth=settings.confirmation_depth,
        stop_event=stop_event,
    )
    return PollScheduler(
        registry,
        ingestor,
        ReserveReconciler(client, sink),
        sink,
        interval=settings.poll_interval,
        max_workers=settings.max_workers,
        locker=make_cycle_locker(settings.redis_url),
        lock_ttl_ms=int(settings.cycle_lock_ttl * 1000),
        stop_event=stop_event,
    )
