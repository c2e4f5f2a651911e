class IndexerError(Exception):
    """Base class for every error the indexer raises on purpose."""


class ConfigError(IndexerError):
    """Required configuration is missing or malformed. Fatal at startup."""


# ── transport ──────────────────────────────────────────────────────────
class RpcError(IndexerError):
    """The node answered, but with a JSON-RPC error."""


class RpcUnavailable(RpcError):
    """No configured endpoint could be reached."""


class RpcTimeout(RpcError):
    """A call did not complete within its bounded wait."""


# ── decoding ───────────────────────────────────────────────────────────
class LogDecodeError(IndexerError):
    """A raw log does not match the event it claims to be."""


class DiscoveryError(LogDecodeError):
    """A factory pool-creation log could not be decoded."""


# ── per-pool steps ─────────────────────────────────────────────────────
class ReconcileError(IndexerError):
    """A pool's token balances could not be read."""


class PersistenceError(IndexerError):
    """The store rejected a read or write, or is unreachable."""


class CycleLockLost(IndexerError):
    """The cycle lock's validity ran out before the cycle finished."""
