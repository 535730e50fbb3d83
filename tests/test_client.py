import httpx
import pytest

from conftest import run
from networking.api_server import create_app
from networking.client import ClientError, StoreClient


@pytest.fixture
def client(store, stats):
    transport = httpx.ASGITransport(app=create_app(store, stats))
    return StoreClient("testserver", 80, transport=transport)


def test_add_and_cat(client):
    async def scenario():
        text_cid = await client.add_text("hello")
        json_cid = await client.add_json({"k": [1, 2]})
        raw_cid = await client.add_raw(b"\x00\x01\x02")
        file_cid = await client.add_file("a.bin", b"file body")
        return (
            await client.cat(text_cid),
            await client.cat(json_cid),
            await client.cat(raw_cid),
            await client.cat(file_cid),
            await client.cat(file_cid, offset=5, length=2),
        )

    assert run(scenario()) == (b"hello", b'{"k":[1,2]}', b"\x00\x01\x02", b"file body", b"bo")


def test_same_bytes_same_cid_from_every_route(client):
    async def scenario():
        return {
            await client.add_text("same"),
            await client.add_raw(b"same"),
            await client.add_file("same.txt", b"same"),
        }

    assert len(run(scenario())) == 1


def test_stat_and_status(client):
    async def scenario():
        cid = await client.add_raw(b"abc")
        return cid, await client.stat(cid), await client.status(), await client.healthcheck()

    cid, info, status, healthy = run(scenario())
    assert info["size"] == 3
    assert status["recentCIDs"] == [cid]
    assert healthy is True


def test_errors_raise(client):
    with pytest.raises(ClientError) as err:
        run(client.cat("not-a-cid"))
    assert err.value.status == 404
    assert err.value.message == "Invalid or not found CID"

    with pytest.raises(ClientError) as err:
        run(client.add_raw(b""))
    assert err.value.status == 400
