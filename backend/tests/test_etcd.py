import httpx
import pytest

from karmada_dashboard.services.etcd import EtcdClient, EtcdError, endpoint_candidates, prefix_range_end


def test_prefix_range_end_increments_last_byte():
    assert prefix_range_end("/karmada/dashboard/users/") == b"/karmada/dashboard/users0"
    assert prefix_range_end("abc") == b"abd"


def test_endpoint_candidates_start_with_explicit_endpoint(settings):
    endpoints = endpoint_candidates(settings)
    assert endpoints[0] == "http://etcd.test:2379"
    assert "http://etcd.karmada-system:2379" in endpoints
    assert endpoints[-1] == "http://localhost:2379"
    assert len(endpoints) == len(set(endpoints))


async def test_put_get_delete(etcd):
    await etcd.put("/a/one", "1")
    await etcd.put("/a/two", b"2")
    await etcd.put("/b/three", "3")

    assert await etcd.get("/a/one") == b"1"
    assert await etcd.get("/missing") is None
    assert sorted(await etcd.get_prefix("/a/")) == [("/a/one", b"1"), ("/a/two", b"2")]
    assert await etcd.delete("/a/one") == 1
    assert await etcd.delete("/a/one") == 0


async def test_connect_uses_first_answering_endpoint(etcd):
    assert await etcd.connect()
    assert etcd.endpoint == "http://etcd.test:2379"
    assert etcd.available


async def test_unreachable_etcd(settings):
    transport = httpx.MockTransport(lambda request: httpx.Response(503, text="down"))
    client = EtcdClient(settings, transport=transport)
    assert not await client.connect()
    assert not client.available
    with pytest.raises(EtcdError):
        await client.get("/anything")


async def test_gateway_error_payload_is_raised(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v3/kv/put":
            return httpx.Response(200, json={"error": "etcdserver: request is too large", "code": 3})
        return httpx.Response(200, json={})

    client = EtcdClient(settings, transport=httpx.MockTransport(handler))
    with pytest.raises(EtcdError, match="too large"):
        await client.put("/big", "x")


async def test_non_json_body_is_an_etcd_error(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v3/kv/put":
            return httpx.Response(200, text="<html>proxy</html>")
        return httpx.Response(200, json={})

    client = EtcdClient(settings, transport=httpx.MockTransport(handler))
    with pytest.raises(EtcdError, match="non-JSON"):
        await client.put("/anything", "x")


async def test_transport_error_reconnects_and_retries_once(settings, fake_etcd):
    failures = {"put": 1}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v3/kv/put" and failures["put"]:
            failures["put"] -= 1
            raise httpx.ConnectError("connection reset", request=request)
        return fake_etcd.handler(request)

    client = EtcdClient(settings, transport=httpx.MockTransport(handler))
    await client.put("/a", "1")
    assert await client.get("/a") == b"1"
    assert client.available
    assert fake_etcd.calls.count("/v3/kv/put") == 1
