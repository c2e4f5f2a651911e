from datetime import datetime, timezone
from typing import Callable, List, Optional
import logging
import threading

from pool_indexer.sources.chain.events import SWAP_TOPIC, decode_swap
from pool_indexer.utils.errors import LogDecodeError, RpcError
from pool_indexer.utils.log_utils import split_block_range
from pool_indexer.utils.types import Pool, SwapEvent

log = logging.getLogger(__name__)


class EventIngestor:
    """Pulls Swap logs for one pool at a time and writes them as SwapEvents.

    The pool's watermark moves to a sub-range's end only after that
    sub-range's rows are committed. A failure part-way through leaves the
    watermark at the last committed sub-range; the rest is retried on the
    next cycle and duplicates are absorbed by the (tx_hash, log_index) key.
    """

    def __init__(self, client, sink, max_block_range: int, confirmation_depth: int = 0,
                 stop_event: Optional[threading.Event] = None):
        self.client = client
        self.sink = sink
        self.max_block_range = max_block_range
        self.confirmation_depth = confirmation_depth
        self.stop_event = stop_event

    def ingest(self, pool: Pool, halt: Optional[Callable[[], bool]] = None) -> int:
        """Ingest everything up to the confirmed head. `halt` is checked, like
        the stop event, before each sub-range."""
        # head is re-read per pool: earlier pools may have taken a while
        chain_head = self.client.get_latest_block()
        head = chain_head - self.confirmation_depth
        if head < pool.last_ingested_block:
            if chain_head >= pool.last_ingested_block:
                # pool newer than the confirmation window
                log.debug(f"{pool.address}: waiting for {self.confirmation_depth} confirmations")
            else:
                log.warning(
                    f"Head {chain_head} is behind watermark {pool.last_ingested_block} for {pool.address}; "
                    f"skipping this cycle"
                )
            return 0

        written = 0
        for rng in split_block_range(pool.last_ingested_block + 1, head, self.max_block_range):
            if (self.stop_event is not None and self.stop_event.is_set()) or (halt is not None and halt()):
                log.info(f"Stopping; {pool.address} parked at block {pool.last_ingested_block}")
                break
            raw_logs = self.client.get_logs(pool.address, SWAP_TOPIC, rng.start, rng.end)
            events = self._build_events(pool, raw_logs)
            written += self.sink.upsert_events(events)
            self.sink.advance_watermark(pool.address, rng.end)
            pool.last_ingested_block = max(pool.last_ingested_block, rng.end)
            log.debug(f"{pool.address}: blocks {rng.start}-{rng.end}, {len(events)} swaps")

        if written:
            log.info(f"✅ {pool.address}: {written} new swaps, watermark {pool.last_ingested_block}")
        return written

    def _build_events(self, pool: Pool, raw_logs: List[dict]) -> List[SwapEvent]:
        decoded = []
        for raw in raw_logs:
            try:
                swap = decode_swap(raw)
                token0_in, amount_in, amount_out = swap.direction()
            except LogDecodeError as exc:
                log.warning(f"Skipping swap log in {pool.address}: {exc}")
                continue
            decoded.append((swap, token0_in, amount_in, amount_out))
        if not decoded:
            return []

        timestamps = self.client.get_block_timestamps({s.block_number for s, *_ in decoded})
        missing = {s.block_number for s, *_ in decoded} - timestamps.keys()
        if missing:
            raise RpcError(f"No timestamp for block(s) {sorted(missing)}")
        senders = self.client.get_transaction_senders({s.tx_hash for s, *_ in decoded})

        return [
            SwapEvent(
                tx_hash=swap.tx_hash,
                log_index=swap.log_index,
                pool_address=pool.address,
                token_in=pool.token_a if token0_in else pool.token_b,
                token_out=pool.token_b if token0_in else pool.token_a,
                amount_in=amount_in,
                amount_out=amount_out,
                sender_address=senders.get(swap.tx_hash),
                timestamp=datetime.fromtimestamp(timestamps[swap.block_number], tz=timezone.utc),
                block_number=swap.block_number,
            )
            for swap, token0_in, amount_in, amount_out in decoded
        ]
