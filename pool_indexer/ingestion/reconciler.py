import logging

from eth_abi import abi
from eth_abi.exceptions import DecodingError

from pool_indexer.config.settings import BALANCE_OF_SIGNATURE
from pool_indexer.utils.errors import ReconcileError, RpcError
from pool_indexer.utils.types import Pool, ReserveSnapshot

log = logging.getLogger(__name__)


class ReserveReconciler:
    """Reads a pool's reserves straight from the token contracts.

    Both balances are read at the same block, and the result replaces
    whatever the store held; nothing is derived from swap events.
    """

    def __init__(self, client, sink):
        self.client = client
        self.sink = sink

    def _balance_of(self, token: str, holder: str, block: int) -> int:
        raw = self.client.call(token, BALANCE_OF_SIGNATURE, [holder], block_identifier=block)
        (balance,) = abi.decode(["uint256"], raw)
        return balance

    def refresh(self, pool: Pool) -> ReserveSnapshot:
        try:
            head = self.client.get_latest_block()
            reserve_a = self._balance_of(pool.token_a, pool.address, head)
            reserve_b = self._balance_of(pool.token_b, pool.address, head)
        except (RpcError, DecodingError) as exc:
            raise ReconcileError(f"Reserve read failed for {pool.address}: {exc}") from exc

        snapshot = ReserveSnapshot(pool.address, reserve_a, reserve_b, head)
        self.sink.upsert_reserves(pool.address, reserve_a, reserve_b, head)
        pool.reserve_a, pool.reserve_b, pool.reserves_block = reserve_a, reserve_b, head
        log.debug(f"{pool.address}: reserves {reserve_a}/{reserve_b} @ {head}")
        return snapshot
