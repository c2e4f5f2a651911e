from typing import Callable, Dict, Iterable, List, Optional, Sequence
import logging

import backoff
import requests
from eth_abi import abi
from web3 import Web3, HTTPProvider
from web3.exceptions import Web3Exception

from pool_indexer.config.settings import RPC_BATCH_SIZE, DEFAULT_RPC_TIMEOUT
from pool_indexer.utils.errors import RpcError, RpcTimeout, RpcUnavailable
from pool_indexer.utils.log_utils import sanitize_log

logger = logging.getLogger(__name__)

# Cache of Web3 clients per (RPC URL, timeout)
_web3_clients: Dict[tuple, Web3] = {}

_UNREACHABLE = (
    requests.exceptions.ConnectionError,   # includes ConnectTimeout: the endpoint never answered
    requests.exceptions.HTTPError,      # 429 / 5xx: endpoint is not serving us
    ConnectionError,
)


def get_web3_client(rpc_url: str, timeout: float = DEFAULT_RPC_TIMEOUT) -> Web3:
    """Returns a cached or newly created Web3 client for a given RPC URL."""
    key = (rpc_url, timeout)
    if key not in _web3_clients:
        logger.info(f"Connecting to RPC: {rpc_url}")
        # retries and failover are handled by ChainClient; the provider makes one attempt
        _web3_clients[key] = Web3(HTTPProvider(
            rpc_url,
            request_kwargs={"timeout": timeout},
            exception_retry_configuration=None,
        ))
    return _web3_clients[key]


def function_selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature)[:4])


def signature_arg_types(signature: str) -> List[str]:
    """``"balanceOf(address)"`` → ``["address"]``."""
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    return [t.strip() for t in inner.split(",") if t.strip()]


class ChainClient:
    """Read-only JSON-RPC access with ordered endpoint failover.

    Every public call is tried against the endpoints in order. A connection
    failure is retried with backoff on the same endpoint, then the call moves
    to the next endpoint; a connect timeout counts as a connection failure.
    Read timeouts surface immediately as RpcTimeout; error
    replies from a reachable node surface as RpcError.
    """

    def __init__(
        self,
        rpc_urls: Sequence[str],
        timeout: float = DEFAULT_RPC_TIMEOUT,
        connect_tries: int = 2,
        web3_factory: Callable[[str, float], Web3] = get_web3_client,
    ):
        if not rpc_urls:
            raise ValueError("ChainClient needs at least one RPC URL")
        self.rpc_urls = list(rpc_urls)
        self.timeout = timeout
        self._web3_factory = web3_factory
        self._attempt = backoff.on_exception(
            backoff.expo,
            _UNREACHABLE,
            max_tries=connect_tries,
            jitter=None,
            logger=logger,
        )(self._invoke)

    # ── plumbing ──────────────────────────────────────────────────────
    def _w3(self, url: str) -> Web3:
        return self._web3_factory(url, self.timeout)

    @staticmethod
    def _invoke(fn, url):
        return fn(url)

    def _with_failover(self, label: str, fn):
        last_exc: Optional[Exception] = None
        for url in self.rpc_urls:
            try:
                return self._attempt(fn, url)
            except _UNREACHABLE as exc:
                logger.warning(f"⚠️  {label}: endpoint {url} unreachable ({exc})")
                last_exc = exc
            except requests.exceptions.Timeout as exc:
                raise RpcTimeout(f"{label} timed out after {self.timeout}s on {url}") from exc
            except (ValueError, Web3Exception) as exc:
                raise RpcError(f"{label} failed on {url}: {exc}") from exc
        raise RpcUnavailable(
            f"{label}: all {len(self.rpc_urls)} endpoint(s) unreachable"
        ) from last_exc

    def _post_batch(self, url: str, payload: List[dict]) -> List[dict]:
        resp = requests.post(url, json=payload, timeout=self.timeout)
        resp.raise_for_status()
        body = resp.json()
        if not isinstance(body, list):
            raise ValueError(f"Unexpected batch reply: {body}")
        return body

    def _batch(self, method: str, params_list: List[list]) -> List[Optional[dict]]:
        """JSON-RPC batch in groups of RPC_BATCH_SIZE. Results keep input order;
        entries the node could not answer are None."""
        results: List[Optional[dict]] = []
        for i in range(0, len(params_list), RPC_BATCH_SIZE):
            chunk = params_list[i : i + RPC_BATCH_SIZE]
            payload = [
                {"jsonrpc": "2.0", "id": j, "method": method, "params": p}
                for j, p in enumerate(chunk)
            ]
            reply = self._with_failover(
                f"{method} batch[{len(chunk)}]",
                lambda url: self._post_batch(url, payload),
            )
            by_id = {item.get("id"): item for item in reply}
            results.extend((by_id.get(j) or {}).get("result") for j in range(len(chunk)))
        return results

    # ── public contract ───────────────────────────────────────────────
    def get_latest_block(self) -> int:
        return int(self._with_failover("eth_blockNumber", lambda url: self._w3(url).eth.block_number))

    def get_logs(self, contract_address: str, topic: str, from_block: int, to_block: int) -> List[dict]:
        """Logs emitted by `contract_address` with topic0 == `topic` in [from_block, to_block]."""
        params = {
            "address": Web3.to_checksum_address(contract_address),
            "topics": [topic],
            "fromBlock": from_block,
            "toBlock": to_block,
        }
        logs = self._with_failover(
            f"eth_getLogs {from_block}-{to_block}",
            lambda url: self._w3(url).eth.get_logs(params),
        )
        return [sanitize_log(log) for log in logs]

    def call(self, contract_address: str, signature: str, args: Sequence = (), block_identifier="latest") -> bytes:
        """eth_call of `signature` (e.g. ``"balanceOf(address)"``) with ABI-encoded `args`."""
        data = function_selector(signature) + abi.encode(signature_arg_types(signature), list(args))
        tx = {"to": Web3.to_checksum_address(contract_address), "data": Web3.to_hex(data)}
        result = self._with_failover(
            f"eth_call {signature} on {contract_address}",
            lambda url: self._w3(url).eth.call(tx, block_identifier),
        )
        return bytes(result)

    def get_block_timestamps(self, block_numbers: Iterable[int]) -> Dict[int, int]:
        blocks = sorted(set(block_numbers))
        replies = self._batch("eth_getBlockByNumber", [[hex(b), False] for b in blocks])
        return {
            b: int(res["timestamp"], 16)
            for b, res in zip(blocks, replies)
            if res and res.get("timestamp")
        }

    def get_transaction_senders(self, tx_hashes: Iterable[str]) -> Dict[str, Optional[str]]:
        """tx hash → lowercase `from` address (None if the node has no answer)."""
        hashes = sorted({h.lower() for h in tx_hashes})
        replies = self._batch("eth_getTransactionByHash", [[h] for h in hashes])
        return {
            h: (res["from"].lower() if res and res.get("from") else None)
            for h, res in zip(hashes, replies)
        }
