import json
import threading

import httpx
import pytest
import respx
from sqlalchemy import select

from eri_backend.abi import (
    AUTHENTICITY_CREATED,
    EIP712_DOMAIN_CHANGED,
    MANUFACTURER_REGISTERED,
    encode_abi,
    event_topic,
    to_checksum_address,
)
from eri_backend.events import (
    AuthenticityCreated,
    RpcClient,
    backfill,
    decode_event,
    listen_for_authenticity_events,
    process_authenticity_created,
    process_manufacturer_registered,
)
from eri_backend.models import ManufacturerRegistered
from eri_backend.store import Store, contracts, manufacturers

RPC_URL = "http://rpc.example.com/"
CONTRACT = "0x" + "cc" * 20
MAKER = "0x" + "1a" * 20
OWNER = "0x" + "2b" * 20
CREATED = "0x" + "3c" * 20
TX = "0x" + "ab" * 32


def _word(address):
    return "0x" + "00" * 12 + address[2:]


def _mr_log(address, name, tx=TX, block=1, index=0):
    return {
        "topics": ["0x" + event_topic(MANUFACTURER_REGISTERED).hex(), _word(address)],
        "data": "0x" + encode_abi(["string"], [name]).hex(),
        "transactionHash": tx,
        "blockNumber": hex(block),
        "logIndex": hex(index),
    }


def _ac_log(contract, owner, tx=TX, block=1, index=0):
    return {
        "topics": [
            "0x" + event_topic(AUTHENTICITY_CREATED).hex(),
            _word(contract),
            _word(owner),
        ],
        "data": "0x",
        "transactionHash": tx,
        "blockNumber": hex(block),
        "logIndex": hex(index),
    }


@pytest.fixture
def store():
    s = Store("sqlite://")
    s.create_schema()
    yield s
    s.close()


@pytest.fixture
def rpc():
    with respx.mock(assert_all_called=False) as router:
        yield router


def _rows(store, table):
    with store.connect() as conn:
        return [dict(r._mapping) for r in conn.execute(select(table))]


def test_decode_manufacturer_registered():
    event = decode_event(_mr_log(MAKER, "SAMSUNG"))
    assert event == ManufacturerRegistered(to_checksum_address(MAKER), "SAMSUNG")


def test_decode_authenticity_created():
    event = decode_event(_ac_log(CREATED, OWNER))
    assert event == AuthenticityCreated(to_checksum_address(CREATED), to_checksum_address(OWNER))


def test_decode_domain_changed_is_none():
    log = {"topics": ["0x" + event_topic(EIP712_DOMAIN_CHANGED).hex()], "data": "0x"}
    assert decode_event(log) is None


def test_decode_unknown_topic_raises():
    with pytest.raises(ValueError):
        decode_event({"topics": ["0x" + "00" * 32], "data": "0x"})


def test_decode_without_topics_raises():
    with pytest.raises(ValueError):
        decode_event({"topics": [], "data": "0x"})


def test_process_manufacturer_inserts_once(store):
    event = ManufacturerRegistered(MAKER, "SAMSUNG")
    assert process_manufacturer_registered(store, event, TX) is True
    assert process_manufacturer_registered(store, event, TX) is False
    rows = _rows(store, manufacturers)
    assert len(rows) == 1
    assert rows[0]["manufacturer_address"] == to_checksum_address(MAKER)
    assert rows[0]["manufacturer_name"] == "SAMSUNG"
    assert rows[0]["is_registered"] is True
    assert rows[0]["tnx_hash"] == TX


def test_process_manufacturer_requires_tx_hash(store):
    with pytest.raises(ValueError, match="Transaction hash is required"):
        process_manufacturer_registered(store, ManufacturerRegistered(MAKER, "X"), None)
    assert _rows(store, manufacturers) == []


def test_process_authenticity_created_inserts_once(store):
    event = AuthenticityCreated(CREATED, OWNER)
    assert process_authenticity_created(store, event, TX) is True
    assert process_authenticity_created(store, event, TX) is False
    rows = _rows(store, contracts)
    assert [(r["contract_address"], r["owner"]) for r in rows] == [
        (to_checksum_address(CREATED), to_checksum_address(OWNER))
    ]


def test_process_authenticity_created_requires_tx_hash(store):
    with pytest.raises(ValueError):
        process_authenticity_created(store, AuthenticityCreated(CREATED, OWNER), None)


def _rpc_reply(request, result):
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def test_rpc_block_number_and_chain_id(rpc):
    def handler(request):
        method = json.loads(request.content)["method"]
        return _rpc_reply(request, {"eth_blockNumber": "0x10", "eth_chainId": "0x2a"}[method])

    rpc.post(RPC_URL).mock(side_effect=handler)
    with RpcClient(RPC_URL) as client:
        assert client.block_number() == 0x10
        assert client.chain_id() == 0x2a


def test_rpc_error_raises(rpc):
    rpc.post(RPC_URL).mock(
        return_value=httpx.Response(
            200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "boom"}}
        )
    )
    with RpcClient(RPC_URL) as client:
        with pytest.raises(RuntimeError, match="boom"):
            client.block_number()


def test_get_logs_sends_filter(rpc):
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return _rpc_reply(request, [])

    rpc.post(RPC_URL).mock(side_effect=handler)
    with RpcClient(RPC_URL) as client:
        assert client.get_logs(CONTRACT, ["0x01"], 3, None) == []
    assert seen[0]["method"] == "eth_getLogs"
    assert seen[0]["params"] == [
        {"address": CONTRACT, "topics": ["0x01"], "fromBlock": "0x3", "toBlock": "latest"}
    ]


def test_backfill_processes_chunks(store, rpc):
    ranges = []
    mr_topic = "0x" + event_topic(MANUFACTURER_REGISTERED).hex()

    def handler(request):
        params = json.loads(request.content)["params"][0]
        ranges.append((params["fromBlock"], params["toBlock"]))
        if params["topics"] == [mr_topic] and params["fromBlock"] == "0x0":
            return _rpc_reply(request, [_mr_log(MAKER, "SAMSUNG")])
        if params["topics"] != [mr_topic] and params["fromBlock"] == "0x5":
            return _rpc_reply(request, [_ac_log(CREATED, OWNER)])
        return _rpc_reply(request, [])

    rpc.post(RPC_URL).mock(side_effect=handler)
    with RpcClient(RPC_URL) as client:
        inserted = backfill(store, client, CONTRACT, 10, lookback=20, chunk_size=4)
    assert inserted == 2
    starts = [int(a, 16) for a, _ in ranges]
    ends = [int(b, 16) for _, b in ranges]
    assert all(e - s <= 4 for s, e in zip(starts, ends))
    assert max(ends) <= 10
    assert len(_rows(store, manufacturers)) == 1
    assert len(_rows(store, contracts)) == 1


def test_listener_indexes_new_events(store, rpc):
    stop = threading.Event()
    heads = iter(["0x2", "0x3", "0x3", "0x3"])

    def handler(request):
        body = json.loads(request.content)
        if body["method"] == "eth_blockNumber":
            return _rpc_reply(request, next(heads))
        params = body["params"][0]
        if isinstance(params["topics"][0], list):
            stop.set()
            return _rpc_reply(request, [_ac_log(CREATED, OWNER, block=3)])
        return _rpc_reply(request, [])

    rpc.post(RPC_URL).mock(side_effect=handler)
    with RpcClient(RPC_URL) as client:
        listen_for_authenticity_events(store, client, CONTRACT, poll_interval=0, stop=stop)
    rows = _rows(store, contracts)
    assert [r["contract_address"] for r in rows] == [to_checksum_address(CREATED)]


def test_listener_fails_without_latest_block(store, rpc):
    rpc.post(RPC_URL).mock(return_value=httpx.Response(500))
    with RpcClient(RPC_URL) as client:
        with pytest.raises(RuntimeError, match="Failed to get latest block"):
            listen_for_authenticity_events(store, client, CONTRACT, poll_interval=0)