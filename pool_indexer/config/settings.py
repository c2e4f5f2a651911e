import os
import pathlib
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from pool_indexer.utils.errors import ConfigError

# Automatically load .env from project root
load_dotenv(dotenv_path=pathlib.Path(__file__).parent.parent.parent / ".env")

# ── chain constants (canonical signatures, not configurable) ───────────
FACTORY_EVENT_SIGNATURE = "PairCreated(address,address,address,uint256)"
SWAP_EVENT_SIGNATURE = "Swap(address,uint256,uint256,uint256,uint256,address)"
BALANCE_OF_SIGNATURE = "balanceOf(address)"

RPC_BATCH_SIZE = 100        # requests per JSON-RPC batch POST
UPSERT_BATCH_SIZE = 500     # rows per INSERT statement
CYCLE_LOCK_NAME = "pool_indexer_cycle_lock"

DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_MAX_BLOCK_RANGE = 2000
DEFAULT_RPC_TIMEOUT = 10.0
DEFAULT_MAX_WORKERS = 4
DEFAULT_CYCLE_LOCK_TTL = 1800.0


@dataclass(frozen=True)
class Settings:
    rpc_urls: Tuple[str, ...]
    database_url: str
    factory_address: str
    poll_interval: float = DEFAULT_POLL_INTERVAL
    factory_start_block: int = 0
    max_block_range: int = DEFAULT_MAX_BLOCK_RANGE
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT
    max_workers: int = DEFAULT_MAX_WORKERS
    confirmation_depth: int = 0
    redis_url: Optional[str] = None
    cycle_lock_ttl: float = DEFAULT_CYCLE_LOCK_TTL
    log_level: str = "INFO"


def _required(env: Mapping[str, str], name: str) -> str:
    value = (env.get(name) or "").strip()
    if not value:
        raise ConfigError(f"{name} is required")
    return value


def _number(env: Mapping[str, str], name: str, cast, default, minimum):
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from the environment. Raises ConfigError on bad input."""
    env = os.environ if env is None else env

    rpc_urls = tuple(u.strip() for u in _required(env, "RPC_URLS").split(",") if u.strip())
    if not rpc_urls:
        raise ConfigError("RPC_URLS must list at least one endpoint")
    for url in rpc_urls:
        if not url.startswith(("http://", "https://")):
            raise ConfigError(f"Unsupported RPC endpoint (HTTP only): {url}")

    factory = _required(env, "FACTORY_ADDRESS").lower()
    if not (factory.startswith("0x") and len(factory) == 42):
        raise ConfigError(f"FACTORY_ADDRESS is not an address: {factory}")

    return Settings(
        rpc_urls=rpc_urls,
        database_url=_required(env, "DATABASE_URL"),
        factory_address=factory,
        poll_interval=_number(env, "POLL_INTERVAL_SECONDS", float, DEFAULT_POLL_INTERVAL, 0),
        factory_start_block=_number(env, "FACTORY_START_BLOCK", int, 0, 0),
        max_block_range=_number(env, "MAX_BLOCK_RANGE", int, DEFAULT_MAX_BLOCK_RANGE, 1),
        rpc_timeout=_number(env, "RPC_TIMEOUT_SECONDS", float, DEFAULT_RPC_TIMEOUT, 0.1),
        max_workers=_number(env, "MAX_WORKERS", int, DEFAULT_MAX_WORKERS, 1),
        confirmation_depth=_number(env, "CONFIRMATION_DEPTH", int, 0, 0),
        redis_url=(env.get("REDIS_URL") or "").strip() or None,
        cycle_lock_ttl=_number(env, "CYCLE_LOCK_TTL_SECONDS", float, DEFAULT_CYCLE_LOCK_TTL, 1),
        log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
    )
