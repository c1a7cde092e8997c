import base64
import json

import httpx
import pytest

from karmada_dashboard.config import Settings
from karmada_dashboard.services.etcd import EtcdClient


class FakeEtcd:
    """In-memory stand-in for the etcd v3 JSON gateway."""

    def __init__(self) -> None:
        self.data: dict[bytes, bytes] = {}
        self.calls: list[str] = []

    @staticmethod
    def _enc(raw: bytes) -> str:
        return base64.b64encode(raw).decode()

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(path)
        body = json.loads(request.content or b"{}")
        key = base64.b64decode(body.get("key", ""))
        if path == "/v3/kv/range":
            if "range_end" in body:
                end = base64.b64decode(body["range_end"])
                keys = sorted(k for k in self.data if key <= k < end)
            else:
                keys = [key] if key in self.data else []
            kvs = [{"key": self._enc(k), "value": self._enc(self.data[k])} for k in keys]
            return httpx.Response(200, json={"kvs": kvs, "count": str(len(kvs))} if kvs else {})
        if path == "/v3/kv/put":
            self.data[key] = base64.b64decode(body.get("value", ""))
            return httpx.Response(200, json={})
        if path == "/v3/kv/deleterange":
            deleted = 1 if self.data.pop(key, None) is not None else 0
            return httpx.Response(200, json={"deleted": str(deleted)} if deleted else {})
        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_env="test",
        jwt_secret="test-secret",
        etcd_endpoint="http://etcd.test:2379",
        etcd_retries=1,
        openfga_api_url=None,
        keycloak_enabled=False,
        fernet_key=None,
    )


@pytest.fixture
def fake_etcd() -> FakeEtcd:
    return FakeEtcd()


@pytest.fixture
def etcd(settings: Settings, fake_etcd: FakeEtcd) -> EtcdClient:
    return EtcdClient(settings, transport=httpx.MockTransport(fake_etcd.handler))
