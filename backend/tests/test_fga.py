import json

import httpx
import pytest

from karmada_dashboard.services.fga import FGAClient, FGAError, RelationTuple


class FakeOpenFGA:
    def __init__(self, allowed: set[tuple[str, str, str]] | None = None, stores: list[dict] | None = None) -> None:
        self.allowed = allowed or set()
        self.stores = stores if stores is not None else []
        self.requests: list[tuple[str, str, dict]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        path = request.url.path
        self.requests.append((request.method, path, body))
        if path == "/stores" and request.method == "GET":
            return httpx.Response(200, json={"stores": self.stores})
        if path == "/stores":
            return httpx.Response(201, json={"id": "store-new", "name": body["name"]})
        if path.endswith("/authorization-models"):
            return httpx.Response(201, json={"authorization_model_id": "model-1"})
        if path.endswith("/check"):
            key = body["tuple_key"]
            return httpx.Response(200, json={"allowed": (key["user"], key["relation"], key["object"]) in self.allowed})
        if path.endswith("/read"):
            tuples = [
                {"key": {"user": u, "relation": r, "object": o}}
                for u, r, o in sorted(self.allowed)
                if o == body["tuple_key"]["object"]
            ]
            return httpx.Response(200, json={"tuples": tuples, "continuation_token": ""})
        if path.endswith("/write"):
            return httpx.Response(200, json={})
        return httpx.Response(404)


def _client(settings, fake: FakeOpenFGA) -> FGAClient:
    settings = settings.model_copy(update={"openfga_api_url": "openfga.test:8080"})
    return FGAClient(settings, transport=httpx.MockTransport(fake.handler))


def test_api_url_gets_a_scheme(settings):
    client = FGAClient(settings.model_copy(update={"openfga_api_url": "openfga:8080/"}))
    assert client.enabled
    assert client.api_url == "http://openfga:8080"
    assert not FGAClient(settings).enabled


def test_relation_tuple_from_key():
    t = RelationTuple.from_key({"user": "user:alice", "relation": "owner", "object": "cluster:member1"})
    assert t == RelationTuple("alice", "owner", "cluster", "member1")


async def test_initialize_reuses_existing_store(settings):
    fake = FakeOpenFGA(stores=[{"id": "store-1", "name": settings.openfga_store_name}])
    client = _client(settings, fake)
    await client.initialize()
    assert client.store_id == "store-1"
    assert client.model_id == "model-1"
    assert not any(m == "POST" and p == "/stores" for m, p, _ in fake.requests)


async def test_initialize_creates_store(settings):
    fake = FakeOpenFGA()
    client = _client(settings, fake)
    await client.initialize()
    assert client.store_id == "store-new"


async def test_cluster_access(settings):
    fake = FakeOpenFGA(
        allowed={
            ("user:admin", "admin", "dashboard:dashboard"),
            ("user:bob", "member", "cluster:member1"),
        }
    )
    client = _client(settings, fake)
    assert await client.has_cluster_access("admin", "anything")
    assert await client.has_cluster_access("bob", "member1")
    assert not await client.has_cluster_access("bob", "member2")
    assert not await client.is_dashboard_admin("bob")


async def test_read_tuples(settings):
    fake = FakeOpenFGA(allowed={("user:bob", "member", "cluster:member1"), ("user:amy", "owner", "cluster:member1")})
    client = _client(settings, fake)
    tuples = await client.read_tuples("cluster", "member1")
    assert {(t.user, t.relation) for t in tuples} == {("bob", "member"), ("amy", "owner")}


async def test_write_tuple_payload(settings):
    fake = FakeOpenFGA()
    client = _client(settings, fake)
    await client.write_tuple("carol", "owner", "cluster", "member3")
    _, path, body = fake.requests[-1]
    assert path.endswith("/write")
    assert body["writes"]["tuple_keys"] == [{"object": "cluster:member3", "user": "user:carol", "relation": "owner"}]
    assert body["authorization_model_id"] == "model-1"


async def test_server_errors_become_fga_errors(settings):
    client = FGAClient(
        settings.model_copy(update={"openfga_api_url": "http://openfga.test"}),
        transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
    )
    with pytest.raises(FGAError):
        await client.check("bob", "member", "cluster", "member1")
