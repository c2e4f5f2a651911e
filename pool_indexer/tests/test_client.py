import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest.mock import MagicMock

import pytest
import requests
from hexbytes import HexBytes

from pool_indexer.sources.chain import client as client_module
from pool_indexer.sources.chain.client import ChainClient, signature_arg_types
from pool_indexer.utils.errors import RpcError, RpcTimeout, RpcUnavailable

PRIMARY = "https://primary.example"
SECONDARY = "https://secondary.example"
TOKEN = "0x" + "11" * 20
HOLDER = "0x" + "22" * 20


class FakeEth:
    def __init__(self, block_number=0, exc=None, logs=(), call_result=b""):
        self._block_number = block_number
        self.exc = exc
        self.logs = list(logs)
        self.call_result = call_result
        self.calls = []

    @property
    def block_number(self):
        self.calls.append("block_number")
        if self.exc:
            raise self.exc
        return self._block_number

    def get_logs(self, params):
        self.calls.append(("get_logs", params))
        if self.exc:
            raise self.exc
        return self.logs

    def call(self, tx, block_identifier):
        self.calls.append(("call", tx, block_identifier))
        if self.exc:
            raise self.exc
        return HexBytes(self.call_result)


class FakeWeb3:
    def __init__(self, eth):
        self.eth = eth


def make_client(**eths):
    """ChainClient over FakeWeb3 endpoints keyed by URL."""
    web3s = {url: FakeWeb3(eth) for url, eth in eths.items()}
    return ChainClient(list(eths), timeout=1, connect_tries=1,
                       web3_factory=lambda url, timeout: web3s[url])


def test_primary_answers():
    primary, secondary = FakeEth(block_number=77), FakeEth(block_number=1)
    client = make_client(**{PRIMARY: primary, SECONDARY: secondary})
    assert client.get_latest_block() == 77
    assert secondary.calls == []


def test_unreachable_primary_fails_over_to_secondary():
    primary = FakeEth(exc=requests.exceptions.ConnectionError("refused"))
    secondary = FakeEth(block_number=88)
    client = make_client(**{PRIMARY: primary, SECONDARY: secondary})
    assert client.get_latest_block() == 88
    assert primary.calls == ["block_number"]
    assert secondary.calls == ["block_number"]


def test_all_endpoints_unreachable_raises_rpc_unavailable():
    down = requests.exceptions.ConnectionError("refused")
    client = make_client(**{PRIMARY: FakeEth(exc=down), SECONDARY: FakeEth(exc=down)})
    with pytest.raises(RpcUnavailable):
        client.get_latest_block()


def test_rate_limited_endpoint_counts_as_unavailable():
    limited = requests.exceptions.HTTPError("429 Too Many Requests")
    client = make_client(**{PRIMARY: FakeEth(exc=limited), SECONDARY: FakeEth(block_number=5)})
    assert client.get_latest_block() == 5


def test_timeout_raises_rpc_timeout_without_failover():
    secondary = FakeEth(block_number=1)
    client = make_client(**{
        PRIMARY: FakeEth(exc=requests.exceptions.ReadTimeout("slow")),
        SECONDARY: secondary,
    })
    with pytest.raises(RpcTimeout):
        client.get_latest_block()
    assert secondary.calls == []


def test_error_reply_raises_rpc_error():
    client = make_client(**{PRIMARY: FakeEth(exc=ValueError({"code": -32005, "message": "range too wide"}))})
    with pytest.raises(RpcError) as info:
        client.get_latest_block()
    assert not isinstance(info.value, RpcUnavailable)


def test_get_logs_sends_checksummed_filter_and_sanitizes():
    eth = FakeEth(logs=[{
        "address": TOKEN,
        "topics": [HexBytes(b"\x01" * 32)],
        "data": HexBytes(b"\x00" * 32),
        "blockNumber": 10,
        "transactionHash": HexBytes(b"\x02" * 32),
        "logIndex": 1,
    }])
    client = make_client(**{PRIMARY: eth})
    logs = client.get_logs(TOKEN, "0x" + "01" * 32, 10, 20)

    _, params = eth.calls[0]
    assert params["fromBlock"] == 10 and params["toBlock"] == 20
    assert params["topics"] == ["0x" + "01" * 32]
    assert params["address"].lower() == TOKEN
    assert logs[0]["transactionHash"] == "0x" + "02" * 32
    assert logs[0]["topics"] == ["0x" + "01" * 32]


def test_call_encodes_selector_and_arguments():
    eth = FakeEth(call_result=(1234).to_bytes(32, "big"))
    client = make_client(**{PRIMARY: eth})
    raw = client.call(TOKEN, "balanceOf(address)", [HOLDER], block_identifier=99)

    _, tx, block = eth.calls[0]
    assert block == 99
    assert tx["data"] == "0x70a08231" + "00" * 12 + "22" * 20
    assert int.from_bytes(raw, "big") == 1234


def test_signature_arg_types():
    assert signature_arg_types("balanceOf(address)") == ["address"]
    assert signature_arg_types("token0()") == []
    assert signature_arg_types("allowance(address, address)") == ["address", "address"]


def _response(body):
    resp = MagicMock()
    resp.json.return_value = body
    resp.raise_for_status.return_value = None
    return resp


def test_block_timestamps_batch(monkeypatch):
    post = MagicMock(return_value=_response([
        {"jsonrpc": "2.0", "id": 0, "result": {"number": "0xa", "timestamp": "0x64"}},
        {"jsonrpc": "2.0", "id": 1, "result": None},
    ]))
    monkeypatch.setattr(client_module.requests, "post", post)
    client = make_client(**{PRIMARY: FakeEth()})

    assert client.get_block_timestamps([11, 10, 10]) == {10: 100}
    payload = post.call_args.kwargs["json"]
    assert [p["params"] for p in payload] == [["0xa", False], ["0xb", False]]
    assert post.call_args.args[0] == PRIMARY


def test_transaction_senders_batch_fails_over(monkeypatch):
    tx_a, tx_b = "0x" + "aa" * 32, "0x" + "bb" * 32

    def post(url, json, timeout):
        if url == PRIMARY:
            raise requests.exceptions.ConnectionError("refused")
        return _response([
            {"jsonrpc": "2.0", "id": 0, "result": {"hash": tx_a, "from": "0xABCDEF0000000000000000000000000000000001"}},
            {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "not found"}},
        ])

    monkeypatch.setattr(client_module.requests, "post", post)
    client = make_client(**{PRIMARY: FakeEth(), SECONDARY: FakeEth()})
    assert client.get_transaction_senders([tx_b, tx_a]) == {
        tx_a: "0xabcdef0000000000000000000000000000000001",
        tx_b: None,
    }


def test_connect_timeout_fails_over_to_secondary():
    primary = FakeEth(exc=requests.exceptions.ConnectTimeout("no route to host"))
    secondary = FakeEth(block_number=42)
    client = make_client(**{PRIMARY: primary, SECONDARY: secondary})
    assert client.get_latest_block() == 42
    assert secondary.calls == ["block_number"]


def test_connect_timeout_everywhere_is_unavailable_not_timeout():
    down = requests.exceptions.ConnectTimeout("no route to host")
    client = make_client(**{PRIMARY: FakeEth(exc=down), SECONDARY: FakeEth(exc=down)})
    with pytest.raises(RpcUnavailable):
        client.get_latest_block()


def test_web3_provider_makes_a_single_attempt():
    w3 = client_module.get_web3_client("http://127.0.0.1:1/single-attempt", 0.25)
    assert w3.provider.exception_retry_configuration is None
    assert dict(w3.provider.get_request_kwargs())["timeout"] == 0.25


class _SlowRpcHandler(BaseHTTPRequestHandler):
    hits = 0

    def do_POST(self):
        type(self).hits += 1
        self.rfile.read(int(self.headers.get("Content-Length", 0)))
        time.sleep(1.5)
        body = b'{"jsonrpc": "2.0", "id": 0, "result": "0x2a"}'
        try:
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
        except OSError:
            pass

    def log_message(self, *args):
        pass


@pytest.fixture
def slow_endpoint():
    _SlowRpcHandler.hits = 0
    server = ThreadingHTTPServer(("127.0.0.1", 0), _SlowRpcHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


def test_hanging_endpoint_times_out_within_configured_bound(slow_endpoint):
    client = ChainClient([slow_endpoint], timeout=0.3)
    t0 = time.monotonic()
    with pytest.raises(RpcTimeout):
        client.get_latest_block()
    assert time.monotonic() - t0 < 1.0
    assert _SlowRpcHandler.hits == 1
