"""etcd v3 KV access through the gRPC JSON gateway (``/v3/kv/*``).

Keys and values travel base64 encoded. The client picks the first endpoint that
answers a test read and keeps using it until a request hits a transport error;
the endpoint is then dropped, the candidates are tried again and the request is
retried once.
"""
from __future__ import annotations

import asyncio
import base64
from typing import Any

import httpx
import structlog

from karmada_dashboard.config import Settings, get_settings

logger = structlog.get_logger(__name__)

CONNECTION_TEST_KEY = "connection_test"
RETRY_BACKOFF_SECONDS = 0.5


class EtcdError(Exception):
    pass


def _b64(value: str | bytes) -> str:
    raw = value.encode() if isinstance(value, str) else value
    return base64.b64encode(raw).decode()


def _unb64(value: str | None) -> bytes:
    return base64.b64decode(value or "")


def prefix_range_end(prefix: str) -> bytes:
    """range_end covering every key that starts with ``prefix``."""
    raw = bytearray(prefix.encode())
    for i in range(len(raw) - 1, -1, -1):
        if raw[i] < 0xFF:
            raw[i] += 1
            return bytes(raw[: i + 1])
    return b"\0"


def endpoint_candidates(settings: Settings) -> list[str]:
    """``ETCD_ENDPOINT`` first, then host:port with ``.svc``, plain and localhost fallbacks."""
    endpoints: list[str] = []
    if settings.etcd_endpoint:
        endpoints.append(settings.etcd_endpoint.rstrip("/"))
    host, port = settings.etcd_host, settings.etcd_port
    endpoints += [
        f"http://{host}:{port}",
        f"http://{host}.svc:{port}",
        f"http://localhost:{port}",
    ]
    unique: list[str] = []
    for ep in endpoints:
        if ep not in unique:
            unique.append(ep)
    return unique


class EtcdClient:
    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings or get_settings()
        self._transport = transport
        self._endpoint: str | None = None
        self._lock = asyncio.Lock()

    @property
    def endpoint(self) -> str | None:
        return self._endpoint

    @property
    def available(self) -> bool:
        return self._endpoint is not None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.etcd_timeout_seconds,
            verify=self.settings.etcd_verify_tls,
            transport=self._transport,
        )

    async def _post(self, endpoint: str, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        async with self._client() as http:
            resp = await http.post(f"{endpoint}{path}", json=payload)
        if resp.status_code >= 400:
            raise EtcdError(f"etcd {path} failed with HTTP {resp.status_code}: {resp.text}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise EtcdError(f"etcd {path} returned a non-JSON body: {exc}") from exc
        if isinstance(data, dict) and data.get("error"):
            raise EtcdError(f"etcd {path} failed: {data.get('message') or data.get('error')}")
        return data

    async def connect(self) -> bool:
        """Try the endpoint candidates; three attempts each, ``attempt * 500ms`` apart."""
        async with self._lock:
            last_error: Exception | None = None
            for endpoint in endpoint_candidates(self.settings):
                for attempt in range(1, self.settings.etcd_retries + 1):
                    try:
                        await self._post(endpoint, "/v3/kv/range", {"key": _b64(CONNECTION_TEST_KEY)})
                    except (httpx.HTTPError, EtcdError, ValueError) as exc:
                        last_error = exc
                        logger.warning("etcd.connect_failed", endpoint=endpoint, attempt=attempt, error=str(exc))
                        if attempt < self.settings.etcd_retries:
                            await asyncio.sleep(attempt * RETRY_BACKOFF_SECONDS)
                        continue
                    self._endpoint = endpoint
                    logger.info("etcd.connected", endpoint=endpoint)
                    return True
            self._endpoint = None
            logger.error("etcd.unavailable", error=str(last_error) if last_error else None)
            return False

    async def _request(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self._endpoint and not await self.connect():
            raise EtcdError("etcd is not available")
        try:
            return await self._post(self._endpoint, path, payload)  # type: ignore[arg-type]
        except httpx.HTTPError as exc:
            logger.warning("etcd.request_failed", endpoint=self._endpoint, path=path, error=str(exc))
            self._endpoint = None
        if not await self.connect():
            raise EtcdError(f"etcd request {path} failed: etcd is not available")
        try:
            return await self._post(self._endpoint, path, payload)  # type: ignore[arg-type]
        except httpx.HTTPError as exc:
            raise EtcdError(f"etcd request {path} failed: {exc}") from exc

    async def get(self, key: str) -> bytes | None:
        data = await self._request("/v3/kv/range", {"key": _b64(key)})
        kvs = data.get("kvs") or []
        return _unb64(kvs[0].get("value")) if kvs else None

    async def get_prefix(self, prefix: str) -> list[tuple[str, bytes]]:
        data = await self._request(
            "/v3/kv/range",
            {"key": _b64(prefix), "range_end": _b64(prefix_range_end(prefix))},
        )
        return [(_unb64(kv.get("key")).decode(), _unb64(kv.get("value"))) for kv in data.get("kvs") or []]

    async def put(self, key: str, value: str | bytes) -> None:
        await self._request("/v3/kv/put", {"key": _b64(key), "value": _b64(value)})

    async def delete(self, key: str) -> int:
        data = await self._request("/v3/kv/deleterange", {"key": _b64(key)})
        return int(data.get("deleted") or 0)
