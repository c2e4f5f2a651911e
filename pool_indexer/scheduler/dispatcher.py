from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional
import logging
import signal
import threading
import time

from redis import Redis
from redlock import Redlock

from pool_indexer.config.settings import CYCLE_LOCK_NAME, DEFAULT_CYCLE_LOCK_TTL
from pool_indexer.utils.errors import CycleLockLost, IndexerError
from pool_indexer.utils.types import CycleReport, Pool

log = logging.getLogger(__name__)


class CycleState(str, Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    INGESTING = "ingesting"
    RECONCILING = "reconciling"


def make_cycle_locker(redis_url: Optional[str]) -> Optional[Redlock]:
    """Redis lock so only ONE process runs a cycle against a store at a time."""
    if not redis_url:
        return None
    return Redlock([Redis.from_url(redis_url)])


class PollScheduler:
    """Drives discovery → ingestion → reconciliation on a fixed delay.

    Every state runs every cycle. A failing step is logged and the cycle
    moves on: discovery failure still ingests the known pools, and one pool
    failing never blocks the others. Within a phase pools are processed on a
    bounded thread pool; phases never overlap, and neither do cycles.
    """

    def __init__(self, registry, ingestor, reconciler, sink,
                 interval: float = 10.0, max_workers: int = 4,
                 locker: Optional[Redlock] = None, lock_ttl_ms: Optional[int] = None,
                 stop_event: Optional[threading.Event] = None):
        self.registry = registry
        self.ingestor = ingestor
        self.reconciler = reconciler
        self.sink = sink
        self.interval = interval
        self.max_workers = max_workers
        self.locker = locker
        self.lock_ttl_ms = lock_ttl_ms or int(DEFAULT_CYCLE_LOCK_TTL * 1000)
        self.stop_event = stop_event or threading.Event()
        self.state = CycleState.IDLE
        self._lease_deadline: Optional[float] = None

    # ── cycle lease ───────────────────────────────────────────────────
    def lease_expired(self) -> bool:
        """True once the cycle lock may have been handed to another process."""
        return self._lease_deadline is not None and time.monotonic() >= self._lease_deadline

    # ── per-pool fan-out ──────────────────────────────────────────────
    def _for_each_pool(self, step: str, fn: Callable[[Pool], object], pools: List[Pool], report: CycleReport) -> list:
        """Run fn(pool) for every pool; returns the successful results.
        Pools not yet started when the lease runs out are skipped."""
        results = []
        if not pools:
            return results

        def guarded(pool: Pool):
            if self.lease_expired():
                raise CycleLockLost(f"{step} skipped for {pool.address}")
            return fn(pool)

        skipped = 0
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=step) as pool_exec:
            futures = {pool.address: pool_exec.submit(guarded, pool) for pool in pools}
            for address, future in futures.items():
                try:
                    results.append(future.result())
                except CycleLockLost:
                    skipped += 1
                except IndexerError as exc:
                    report.failures += 1
                    log.error(f"❌ {step} failed for {address}: {exc}")
                except Exception:
                    report.failures += 1
                    log.exception(f"❌ {step} crashed for {address}")
        if skipped:
            report.failures += 1
            log.error(f"❌ cycle lock expired during {step}; {skipped} pools left for the next cycle")
        return results

    # ── one cycle ─────────────────────────────────────────────────────
    def run_cycle(self) -> CycleReport:
        report = CycleReport(started_at=datetime.now(tz=timezone.utc))
        t0 = time.monotonic()

        try:
            self.registry.ensure_restored()
        except IndexerError as exc:
            report.failures += 1
            log.error(f"❌ could not restore pools from the store, retrying next cycle: {exc}")
            return self._finish(report, t0)

        self.state = CycleState.DISCOVERING
        try:
            report.new_pools = len(self.registry.discover_new_pools())
        except IndexerError as exc:
            report.failures += 1
            log.error(f"❌ discovery failed: {exc}")
        except Exception:
            report.failures += 1
            log.exception("❌ discovery crashed")
        report.head_block = self.registry.last_head

        # discovery is complete before any ingestion starts
        pools = self.registry.pools()
        report.pool_count = len(pools)

        self.state = CycleState.INGESTING
        written = self._for_each_pool(
            "ingest", lambda pool: self.ingestor.ingest(pool, halt=self.lease_expired), pools, report
        )
        report.events_written = sum(written)

        self.state = CycleState.RECONCILING
        report.reserves_refreshed = len(self._for_each_pool("reconcile", self.reconciler.refresh, pools, report))

        return self._finish(report, t0)

    def _finish(self, report: CycleReport, t0: float) -> CycleReport:
        self.state = CycleState.IDLE
        report.duration_seconds = time.monotonic() - t0
        try:
            self.sink.record_cycle(report)
        except IndexerError as exc:
            log.warning(f"Could not record cycle metrics: {exc}")

        log.info(
            f"🔄 Cycle done in {report.duration_seconds:.2f}s: {report.pool_count} pools, "
            f"{report.new_pools} new, {report.events_written} swaps, "
            f"{report.reserves_refreshed} reserves, {report.failures} failures"
        )
        return report

    def run_locked_cycle(self) -> Optional[CycleReport]:
        if self.locker is None:
            return self.run_cycle()
        lock = self.locker.lock(CYCLE_LOCK_NAME, self.lock_ttl_ms)
        if not lock:
            log.info("🔒 Another indexer holds the cycle lock; skipping.")
            return None
        # redlock reports how long the lock is still safely ours, in ms
        self._lease_deadline = time.monotonic() + lock.validity / 1000.0
        try:
            return self.run_cycle()
        finally:
            self._lease_deadline = None
            self.locker.unlock(lock)

    # ── loop ──────────────────────────────────────────────────────────
    def request_stop(self, signum=None, frame=None) -> None:
        log.info(f"🛑 Stop requested (signal {signum}); finishing current step")
        self.stop_event.set()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self.request_stop)
        signal.signal(signal.SIGTERM, self.request_stop)

    def run_forever(self) -> None:
        log.info(f"🚀 Poll loop started, {self.interval}s between cycles")
        while not self.stop_event.is_set():
            try:
                self.run_locked_cycle()
            except Exception:
                # lock backend trouble and the like; the loop itself must survive
                log.exception("❌ cycle aborted")
            # fixed delay after completion, so a slow cycle throttles the next
            self.stop_event.wait(self.interval)
        log.info("Poll loop stopped")
