import pytest
from fastapi.testclient import TestClient

from conftest import random_bytes, run
from content_store.chunker import hash_bytes
from content_store.cid import Cid
from content_store.dag_node import DagNode
from content_store.stats import StatsCollector
from content_store.store import ContentStore
from networking.api_server import create_app

PNG_HEADER = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR"
UNKNOWN_CID = "f01551220" + "cd" * 32


@pytest.fixture
def client(store, stats):
    return TestClient(create_app(store, stats))


def add_text(client, text):
    response = client.post("/add/text", content=text.encode(), headers={"content-type": "text/plain"})
    assert response.status_code == 200, response.text
    return response.json()["cid"]


def test_text_roundtrip(client):
    cid = add_text(client, "hello")
    response = client.get(f"/cat/{cid}")
    assert response.status_code == 200
    assert response.content == b"hello"
    assert response.headers["content-type"] == "application/octet-stream"
    assert response.headers["x-content-type-options"] == "nosniff"


def test_cat_is_case_insensitive(client):
    cid = add_text(client, "shout")
    assert client.get(f"/cat/{cid.upper()}").content == b"shout"


def test_text_requires_text_content_type(client):
    response = client.post("/add/text", content=b"hi", headers={"content-type": "application/octet-stream"})
    assert response.status_code == 400
    assert "error" in response.json()


def test_empty_text(client):
    response = client.post("/add/text", content=b"", headers={"content-type": "text/plain"})
    assert response.status_code == 400
    assert response.json() == {"error": "Empty body"}


def test_text_charset(client):
    body = "café".encode("latin-1")
    response = client.post("/add/text", content=body, headers={"content-type": "text/plain; charset=latin-1"})
    cid = response.json()["cid"]
    assert client.get(f"/cat/{cid}").content == "café".encode("utf-8")


def test_json_is_stored_compact(client):
    response = client.post("/add/json", json={"a": 1, "b": [1, 2], "c": "é"})
    assert response.status_code == 200
    cid = response.json()["cid"]
    assert client.get(f"/cat/{cid}").content == '{"a":1,"b":[1,2],"c":"é"}'.encode("utf-8")


def test_invalid_json(client):
    response = client.post("/add/json", content=b"{nope", headers={"content-type": "application/json"})
    assert response.status_code == 400


def test_raw_with_sniffed_type(client):
    data = PNG_HEADER + bytes(100)
    response = client.post("/add/raw", content=data, headers={"content-type": "application/octet-stream"})
    cid = response.json()["cid"]
    fetched = client.get(f"/cat/{cid}")
    assert fetched.content == data
    assert fetched.headers["content-type"] == "image/png"


def test_empty_raw(client):
    response = client.post("/add/raw", content=b"")
    assert response.status_code == 400
    assert response.json() == {"error": "Empty body"}


def test_raw_size_limit(store, stats):
    client = TestClient(create_app(store, stats, max_raw_body=10))
    response = client.post("/add/raw", content=b"x" * 11)
    assert response.status_code == 413


def test_file_upload(client):
    response = client.post("/add/file", files={"file": ("notes.txt", b"file contents")})
    assert response.status_code == 200
    cid = response.json()["cid"]
    assert client.get(f"/cat/{cid}").content == b"file contents"


def test_missing_file(client):
    response = client.post("/add/file", data={"other": "field"})
    assert response.status_code == 400
    assert response.json() == {"error": "No file uploaded"}


@pytest.mark.parametrize("cid", ["not-a-cid", UNKNOWN_CID])
def test_cat_invalid_or_unknown(client, cid):
    response = client.get(f"/cat/{cid}")
    assert response.status_code == 404
    assert response.json() == {"error": "Invalid or not found CID"}


def test_large_object_streams(tmp_path):
    stats = StatsCollector()
    store = ContentStore(tmp_path, max_chunk_size=1024, max_links=8)
    client = TestClient(create_app(store, stats))
    data = random_bytes(40_000, seed=12)
    cid = client.post("/add/raw", content=data).json()["cid"]
    assert client.get(f"/cat/{cid}").content == data
    ranged = client.get(f"/cat/{cid}", params={"offset": 5000, "length": 3000})
    assert ranged.content == data[5000:8000]


def test_corrupt_object_is_a_server_error(small_store, stats):
    client = TestClient(create_app(small_store, stats))
    data = random_bytes(64, seed=13)
    cid = client.post("/add/raw", content=data).json()["cid"]
    root = DagNode.decode(run(small_store.block_store.get(Cid.parse(cid).multihash)))
    path = small_store.block_store.path_for(root.child_cids()[0].multihash)
    path.write_bytes(bytes(16))
    response = client.get(f"/cat/{cid}")
    assert response.status_code == 500
    assert "error" in response.json()


def test_stat(client):
    cid = add_text(client, "stat me")
    info = client.get(f"/stat/{cid}").json()
    assert info == {"cid": cid, "codec": "raw", "size": 7, "blocks": 1, "links": 0}
    assert client.get("/stat/not-a-cid").status_code == 404


def test_status(client):
    first = add_text(client, "one")
    second = add_text(client, "two")
    info = client.get("/status").json()
    assert info["status"] == "ok"
    assert info["totalCIDsStored"] == 2
    assert info["recentCIDs"] == [second, first]
    assert info["totalRequests"] == 3
    assert info["blockStore"] == {"blocks": 2, "bytes": 6}
    assert info["memoryUsage"]["rss"].endswith("MB")


def test_cors_preflight(client):
    response = client.options("/add/json", headers={
        "origin": "http://localhost:3000",
        "access-control-request-method": "POST",
    })
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


def test_cors_rejects_other_origins(client):
    response = client.get("/status", headers={"origin": "http://evil.example"})
    assert "access-control-allow-origin" not in response.headers


def test_failure_after_headers_aborts_the_body(tmp_path):
    stats = StatsCollector()
    store = ContentStore(tmp_path, max_chunk_size=1024, max_links=8)
    client = TestClient(create_app(store, stats), raise_server_exceptions=False)
    data = random_bytes(40_000, seed=14)
    cid = client.post("/add/raw", content=data).json()["cid"]
    # the last leaf is only read once the first 8 KiB have gone out
    tail = data[39 * 1024:]
    store.block_store.path_for(hash_bytes(tail)).write_bytes(bytes(len(tail)))
    response = client.get(f"/cat/{cid}")
    assert response.status_code == 200
    assert len(response.content) < len(data)
    assert data.startswith(response.content)


def test_status_scans_blocks_once(client, store):
    add_text(client, "scan")
    scan = store.block_store._scan
    calls = []

    def counted():
        calls.append(1)
        return scan()

    store.block_store._scan = counted
    assert client.get("/status").json()["blockStore"] == {"blocks": 1, "bytes": 4}
    assert len(calls) == 1


def test_shutdown_closes_store(store, stats):
    with TestClient(create_app(store, stats)) as client:
        assert client.get("/status").status_code == 200
        assert not store.closed
    assert store.closed
