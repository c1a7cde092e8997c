"""Porch access: a reverse proxy authenticated with a short-lived service-account token,
and Repository/PackageRev objects handled through the custom objects API."""
from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from karmada_dashboard.config import Settings, get_settings
from karmada_dashboard.exceptions import AppException, BadRequestError
from karmada_dashboard.services.kube_client import ClientManager

logger = structlog.get_logger(__name__)

PORCH_API_PREFIX = "/apis/porch.kpt.dev/v1alpha1/namespaces/{namespace}"
TOKEN_LIFETIME_SECONDS = 3600
TOKEN_REFRESH_MARGIN_SECONDS = 300
TOKEN_AUDIENCE = "https://kubernetes.default.svc.cluster.local"

PACKAGE_GROUP = "config.porch.kpt.dev"
PACKAGE_VERSION = "v1alpha1"
PACKAGE_KINDS = {"repository": ("repositories", "Repository"), "packagerev": ("packagerevs", "PackageRev")}

# hop-by-hop and framework headers that must not be copied between the two connections
_SKIP_REQUEST_HEADERS = {"authorization", "host", "content-length", "connection", "accept-encoding"}
_SKIP_RESPONSE_HEADERS = {"content-length", "transfer-encoding", "connection", "content-encoding"}


@dataclass
class CachedToken:
    token: str
    expires_at: float


class TokenCache:
    """Tokens per ``namespace/name``; an entry is reused until five minutes before it expires."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._tokens: dict[str, CachedToken] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, key: str, mint: Callable[[], Awaitable[str]], lifetime: int = TOKEN_LIFETIME_SECONDS) -> str:
        async with self._lock:
            cached = self._tokens.get(key)
            if cached and self._clock() + TOKEN_REFRESH_MARGIN_SECONDS < cached.expires_at:
                return cached.token
        token = await mint()
        async with self._lock:
            self._tokens[key] = CachedToken(token=token, expires_at=self._clock() + lifetime)
        logger.info("porch.token_minted", key=key)
        return token


@dataclass
class ProxyResponse:
    status_code: int
    headers: dict[str, str]
    content: bytes


class PorchService:
    def __init__(
        self,
        clients: ClientManager,
        settings: Settings | None = None,
        tokens: TokenCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.clients = clients
        self.settings = settings or get_settings()
        self.tokens = tokens or TokenCache()
        self._transport = transport

    async def _mint(self) -> str:
        core = client.CoreV1Api(await self.clients.management())
        body = client.AuthenticationV1TokenRequest(
            spec=client.V1TokenRequestSpec(audiences=[TOKEN_AUDIENCE], expiration_seconds=TOKEN_LIFETIME_SECONDS)
        )
        name = self.settings.porch_service_account
        namespace = self.settings.porch_service_account_namespace
        try:
            result = await self.clients.run(core.create_namespaced_service_account_token, name, namespace, body)
        except ApiException as exc:
            raise AppException(f"failed to create token for service account {namespace}/{name}: {exc.reason}") from exc
        return result.status.token

    async def token(self) -> str:
        key = f"{self.settings.porch_service_account_namespace}/{self.settings.porch_service_account}"
        return await self.tokens.get(key, self._mint)

    def path(self, resource: str, name: str | None = None) -> str:
        base = PORCH_API_PREFIX.format(namespace=self.settings.porch_namespace) + f"/{resource}"
        return f"{base}/{name}" if name else base

    async def proxy(
        self,
        method: str,
        path: str,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
    ) -> ProxyResponse:
        if not self.settings.porch_api_url:
            raise AppException("Porch API is not configured")
        token = await self.token()
        forwarded = {k: v for k, v in (headers or {}).items() if k.lower() not in _SKIP_REQUEST_HEADERS}
        forwarded["Authorization"] = f"Bearer {token}"
        url = self.settings.porch_api_url.rstrip("/") + path
        async with httpx.AsyncClient(timeout=30, verify=not self.settings.porch_skip_tls_verify, transport=self._transport) as http:
            try:
                resp = await http.request(method, url, params=params, headers=forwarded, content=body or None)
            except httpx.HTTPError as exc:
                raise AppException(f"Failed to call Porch API: {exc}") from exc
        out_headers = {k: v for k, v in resp.headers.items() if k.lower() not in _SKIP_RESPONSE_HEADERS}
        logger.debug("porch.proxied", method=method, path=path, status=resp.status_code)
        return ProxyResponse(status_code=resp.status_code, headers=out_headers, content=resp.content)


class PackageService:
    """Repository and PackageRev custom objects on the management cluster."""

    def __init__(self, clients: ClientManager, settings: Settings | None = None) -> None:
        self.clients = clients
        self.settings = settings or get_settings()

    @staticmethod
    def _kind(kind_name: str) -> tuple[str, str]:
        try:
            return PACKAGE_KINDS[kind_name]
        except KeyError as exc:
            raise BadRequestError(f"unsupported package resource: {kind_name}") from exc

    async def _api(self) -> client.CustomObjectsApi:
        return client.CustomObjectsApi(await self.clients.management())

    @property
    def namespace(self) -> str:
        return self.settings.porch_namespace

    async def list_resources(self, kind_name: str) -> dict[str, Any]:
        plural, _ = self._kind(kind_name)
        co = await self._api()
        data = await self.clients.run(co.list_namespaced_custom_object, PACKAGE_GROUP, PACKAGE_VERSION, self.namespace, plural)
        items = data.get("items") or []
        for item in items:
            (item.get("metadata") or {}).pop("managedFields", None)
        return {"resources": items, "totalResources": len(items)}

    async def get(self, kind_name: str, name: str) -> dict[str, Any]:
        plural, _ = self._kind(kind_name)
        co = await self._api()
        obj = await self.clients.run(co.get_namespaced_custom_object, PACKAGE_GROUP, PACKAGE_VERSION, self.namespace, plural, name)
        (obj.get("metadata") or {}).pop("managedFields", None)
        return obj

    async def create(self, kind_name: str, body: dict[str, Any]) -> dict[str, Any]:
        plural, kind = self._kind(kind_name)
        body.setdefault("apiVersion", f"{PACKAGE_GROUP}/{PACKAGE_VERSION}")
        body.setdefault("kind", kind)
        body.setdefault("metadata", {}).setdefault("namespace", self.namespace)
        if not body["metadata"].get("name"):
            raise BadRequestError("metadata.name is required")
        co = await self._api()
        created = await self.clients.run(co.create_namespaced_custom_object, PACKAGE_GROUP, PACKAGE_VERSION, self.namespace, plural, body)
        logger.info("package.created", kind=kind, name=body["metadata"]["name"])
        return created

    async def update(self, kind_name: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        plural, kind = self._kind(kind_name)
        body.setdefault("apiVersion", f"{PACKAGE_GROUP}/{PACKAGE_VERSION}")
        body.setdefault("kind", kind)
        metadata = body.setdefault("metadata", {})
        metadata["name"] = name
        metadata.setdefault("namespace", self.namespace)
        if not metadata.get("resourceVersion"):
            current = await self.get(kind_name, name)
            metadata["resourceVersion"] = current["metadata"].get("resourceVersion")
        co = await self._api()
        return await self.clients.run(co.replace_namespaced_custom_object, PACKAGE_GROUP, PACKAGE_VERSION, self.namespace, plural, name, body)

    async def delete(self, kind_name: str, name: str) -> None:
        plural, kind = self._kind(kind_name)
        co = await self._api()
        await self.clients.run(co.delete_namespaced_custom_object, PACKAGE_GROUP, PACKAGE_VERSION, self.namespace, plural, name)
        logger.info("package.deleted", kind=kind, name=name)
