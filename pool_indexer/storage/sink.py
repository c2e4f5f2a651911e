from contextlib import contextmanager
from typing import Iterable, List, Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pool_indexer.config.settings import UPSERT_BATCH_SIZE
from pool_indexer.storage.base import Base
from pool_indexer.storage.models.cycle_metrics import CycleMetrics
from pool_indexer.storage.models.indexer_state import IndexerState
from pool_indexer.storage.models.pools import PoolRow
from pool_indexer.storage.models.swap_events import SwapEventRow
from pool_indexer.utils.errors import PersistenceError
from pool_indexer.utils.types import CycleReport, Pool, SwapEvent

log = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _insert(session: Session, table):
    dialect = session.get_bind().dialect.name
    try:
        return _DIALECT_INSERTS[dialect](table)
    except KeyError:
        raise PersistenceError(f"No upsert support for dialect {dialect!r}") from None


def _int_or_none(value) -> Optional[int]:
    return int(value) if value is not None else None


class PersistenceSink:
    """Idempotent writes keyed by natural identifiers, plus consumer reads.

    Every method opens its own short session, so the sink is safe to share
    across worker threads. Store failures surface as PersistenceError; retry
    is left to the next scheduler tick.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    @contextmanager
    def _session(self, label: str):
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError(f"{label} failed: {exc}") from exc
        finally:
            session.close()

    def create_schema(self) -> None:
        with self._session("create_schema") as session:
            Base.metadata.create_all(session.get_bind())

    # ── pools ─────────────────────────────────────────────────────────
    def load_pools(self) -> List[Pool]:
        with self._session("load_pools") as session:
            rows = session.execute(
                select(PoolRow).order_by(PoolRow.created_at_block, PoolRow.address)
            ).scalars().all()
            return [
                Pool(
                    address=row.address,
                    token_a=row.token_a,
                    token_b=row.token_b,
                    created_at_block=row.created_at_block,
                    last_ingested_block=row.last_ingested_block,
                    reserve_a=_int_or_none(row.reserve_a),
                    reserve_b=_int_or_none(row.reserve_b),
                    reserves_block=row.reserves_block,
                )
                for row in rows
            ]

    def upsert_pool(self, pool: Pool) -> bool:
        """Insert `pool` unless its address is known. Returns True if inserted."""
        with self._session(f"upsert_pool {pool.address}") as session:
            stmt = (
                _insert(session, PoolRow.__table__)
                .values(
                    address=pool.address,
                    token_a=pool.token_a,
                    token_b=pool.token_b,
                    created_at_block=pool.created_at_block,
                    last_ingested_block=pool.last_ingested_block,
                )
                .on_conflict_do_nothing(index_elements=["address"])
            )
            return session.execute(stmt).rowcount == 1

    def advance_watermark(self, pool_address: str, block_number: int) -> bool:
        """Raise the pool's watermark to `block_number`; lower values are ignored."""
        with self._session(f"advance_watermark {pool_address}") as session:
            result = session.execute(
                update(PoolRow.__table__)
                .where(PoolRow.address == pool_address)
                .where(PoolRow.last_ingested_block < block_number)
                .values(last_ingested_block=block_number)
            )
            return result.rowcount == 1

    def upsert_reserves(self, pool_address: str, reserve_a: int, reserve_b: int, block_number: int) -> None:
        with self._session(f"upsert_reserves {pool_address}") as session:
            result = session.execute(
                update(PoolRow.__table__)
                .where(PoolRow.address == pool_address)
                .values(
                    reserve_a=str(reserve_a),
                    reserve_b=str(reserve_b),
                    reserves_block=block_number,
                )
            )
            if result.rowcount != 1:
                raise PersistenceError(f"upsert_reserves: unknown pool {pool_address}")

    # ── swap events ───────────────────────────────────────────────────
    def upsert_events(self, events: Iterable[SwapEvent]) -> int:
        """Insert events; rows whose (tx_hash, log_index) exists are skipped.
        Returns the number of new rows."""
        rows = [e.as_row() for e in events]
        if not rows:
            return 0
        written = 0
        with self._session(f"upsert_events [{len(rows)}]") as session:
            for i in range(0, len(rows), UPSERT_BATCH_SIZE):
                stmt = (
                    _insert(session, SwapEventRow.__table__)
                    .values(rows[i : i + UPSERT_BATCH_SIZE])
                    .on_conflict_do_nothing(index_elements=["tx_hash", "log_index"])
                )
                written += session.execute(stmt).rowcount
        return written

    def query_swap_events(
        self,
        sender_address: Optional[str] = None,
        pool_address: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[dict]:
        """Swap history, newest first. Amounts come back as integer strings."""
        stmt = select(SwapEventRow)
        if sender_address is not None:
            stmt = stmt.where(SwapEventRow.sender_address == sender_address.lower())
        if pool_address is not None:
            stmt = stmt.where(SwapEventRow.pool_address == pool_address.lower())
        stmt = (
            stmt.order_by(
                SwapEventRow.timestamp.desc(),
                SwapEventRow.block_number.desc(),
                SwapEventRow.log_index.desc(),
            )
            .limit(limit)
            .offset(offset)
        )
        with self._session("query_swap_events") as session:
            return [
                {
                    "tx_hash": row.tx_hash,
                    "log_index": row.log_index,
                    "pool_address": row.pool_address,
                    "token_in": row.token_in,
                    "token_out": row.token_out,
                    "amount_in": row.amount_in,
                    "amount_out": row.amount_out,
                    "sender_address": row.sender_address,
                    "timestamp": row.timestamp,
                    "block_number": row.block_number,
                }
                for row in session.execute(stmt).scalars()
            ]

    def list_pools(self, limit: int = 100, offset: int = 0) -> List[dict]:
        with self._session("list_pools") as session:
            rows = session.execute(
                select(PoolRow).order_by(PoolRow.created_at_block, PoolRow.address).limit(limit).offset(offset)
            ).scalars()
            return [
                {
                    "address": row.address,
                    "token_a": row.token_a,
                    "token_b": row.token_b,
                    "created_at_block": row.created_at_block,
                    "last_ingested_block": row.last_ingested_block,
                    "reserve_a": row.reserve_a,
                    "reserve_b": row.reserve_b,
                    "reserves_block": row.reserves_block,
                }
                for row in rows
            ]

    # ── factory cursor ────────────────────────────────────────────────
    def get_factory_cursor(self, factory_address: str) -> Optional[int]:
        with self._session("get_factory_cursor") as session:
            state = session.get(IndexerState, factory_address)
            return state.last_factory_block if state else None

    def set_factory_cursor(self, factory_address: str, block_number: int) -> None:
        """Move the discovery cursor forward; never backwards."""
        with self._session("set_factory_cursor") as session:
            session.execute(
                _insert(session, IndexerState.__table__)
                .values(factory_address=factory_address, last_factory_block=block_number)
                .on_conflict_do_nothing(index_elements=["factory_address"])
            )
            session.execute(
                update(IndexerState.__table__)
                .where(IndexerState.factory_address == factory_address)
                .where(IndexerState.last_factory_block < block_number)
                .values(last_factory_block=block_number)
            )

    # ── metrics ───────────────────────────────────────────────────────
    def record_cycle(self, report: CycleReport) -> None:
        with self._session("record_cycle") as session:
            session.execute(
                CycleMetrics.__table__.insert().values(
                    started_at=report.started_at,
                    head_block=report.head_block,
                    pool_count=report.pool_count,
                    new_pools=report.new_pools,
                    events_written=report.events_written,
                    failures=report.failures,
                    duration_seconds=round(report.duration_seconds, 2),
                )
            )
