from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from pool_indexer.storage.sink import PersistenceSink
from pool_indexer.utils.errors import PersistenceError
from pool_indexer.utils.log_utils import normalize_address

MAX_LIMIT = 1000

router = APIRouter()


def get_sink() -> PersistenceSink:
    """Overridden at startup (see main.py) and in tests."""
    raise RuntimeError("sink dependency not configured")


def _eq_filter(name: str, value: Optional[str]) -> Optional[str]:
    """Accept PostgREST-style ``eq.0xabc…`` as well as a bare address."""
    if value is None:
        return None
    if value.startswith("eq."):
        value = value[3:]
    try:
        return normalize_address(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name}: not an address")


@router.get("/")
def read_root():
    return {"message": "pool indexer read API"}


@router.get("/swap_events")
def swap_events(
    sender_address: Optional[str] = None,
    pool_address: Optional[str] = None,
    order: str = "timestamp.desc",
    limit: int = Query(100, ge=1, le=MAX_LIMIT),
    offset: int = Query(0, ge=0),
    sink: PersistenceSink = Depends(get_sink),
):
    """Swap history by sender and/or pool, newest first."""
    if order != "timestamp.desc":
        raise HTTPException(status_code=400, detail="only order=timestamp.desc is supported")
    try:
        return sink.query_swap_events(
            sender_address=_eq_filter("sender_address", sender_address),
            pool_address=_eq_filter("pool_address", pool_address),
            limit=limit,
            offset=offset,
        )
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


@router.get("/pools")
def pools(
    limit: int = Query(100, ge=1, le=MAX_LIMIT),
    offset: int = Query(0, ge=0),
    sink: PersistenceSink = Depends(get_sink),
):
    try:
        return sink.list_pools(limit=limit, offset=offset)
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
