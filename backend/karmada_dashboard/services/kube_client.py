from __future__ import annotations

import asyncio
import copy
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from cachetools import TTLCache
from kubernetes import client, config
from kubernetes.client import ApiClient, Configuration
from kubernetes.config.config_exception import ConfigException

from karmada_dashboard.config import Settings, get_settings
from karmada_dashboard.core.rate_limiter import RateLimiter
from karmada_dashboard.exceptions import AppException

logger = structlog.get_logger(__name__)

T = TypeVar("T")

CLUSTER_PROXY_PATH = "/apis/cluster.karmada.io/v1alpha1/clusters/{name}/proxy"

TokenProvider = Callable[[], Awaitable[str | None]]


def proxy_host(karmada_host: str, cluster: str) -> str:
    """Host URL that reaches a member cluster through the Karmada aggregated proxy."""
    return karmada_host.rstrip("/") + CLUSTER_PROXY_PATH.format(name=cluster)


def sanitize(obj: Any) -> Any:
    """Convert a client model (or dict) into plain camelCase JSON data without managedFields."""
    data = ApiClient().sanitize_for_serialization(obj)
    if isinstance(data, dict):
        md = data.get("metadata")
        if isinstance(md, dict):
            md.pop("managedFields", None)
    return data


class ClientManager:
    """Builds and caches API clients for the management cluster, Karmada and member clusters.

    Every blocking call goes through ``run`` so it is rate limited and executed in a worker thread.
    """

    def __init__(self, settings: Settings | None = None, token_provider: TokenProvider | None = None) -> None:
        self.settings = settings or get_settings()
        self._token_provider = token_provider
        self._rate_limiter = RateLimiter(self.settings.rate_limit_requests_per_minute)
        self._client_lock = asyncio.Lock()
        self._cache_lock = asyncio.Lock()
        self._cache: TTLCache = TTLCache(maxsize=128, ttl=self.settings.cache_ttl_seconds)
        self._members: TTLCache = TTLCache(maxsize=256, ttl=self.settings.member_client_ttl_seconds)
        self._management: ApiClient | None = None
        self._karmada: ApiClient | None = None

    def set_token_provider(self, provider: TokenProvider) -> None:
        self._token_provider = provider

    async def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        await self._rate_limiter.acquire()
        return await asyncio.to_thread(fn, *args, **kwargs)

    async def cached(self, key: str, fetcher: Callable[[], Awaitable[Any]]) -> Any:
        async with self._cache_lock:
            if key in self._cache:
                return self._cache[key]

        result = await fetcher()

        async with self._cache_lock:
            self._cache[key] = result
        return result

    async def invalidate(self, key: str | None = None) -> None:
        async with self._cache_lock:
            if key is None:
                self._cache.clear()
            else:
                self._cache.pop(key, None)

    async def management(self) -> ApiClient:
        if self._management:
            return self._management
        async with self._client_lock:
            if self._management:
                return self._management

            def _build() -> ApiClient:
                cfg = Configuration()
                try:
                    if self.settings.in_cluster:
                        config.load_incluster_config(client_configuration=cfg)
                    else:
                        config.load_kube_config(
                            config_file=self.settings.kube_config_path,
                            context=self.settings.kube_context,
                            client_configuration=cfg,
                        )
                except ConfigException as exc:
                    logger.warning("kubernetes.management_config_missing", error=str(exc))
                    raise AppException(f"management cluster is not configured: {exc}") from exc
                return ApiClient(configuration=cfg)

            self._management = await asyncio.to_thread(_build)
            return self._management

    async def karmada_configuration(self) -> Configuration:
        if self.settings.karmada_kubeconfig:
            def _load() -> Configuration:
                cfg = Configuration()
                config.load_kube_config(
                    config_file=self.settings.karmada_kubeconfig,
                    context=self.settings.karmada_context,
                    client_configuration=cfg,
                )
                return cfg

            try:
                return await asyncio.to_thread(_load)
            except ConfigException as exc:
                logger.warning("karmada.config_invalid", error=str(exc))
                raise AppException(f"karmada kubeconfig is invalid: {exc}") from exc

        if not self.settings.karmada_apiserver:
            raise AppException("Karmada API server is not configured")
        cfg = Configuration(host=self.settings.karmada_apiserver.rstrip("/"))
        cfg.verify_ssl = not self.settings.karmada_skip_tls_verify
        token = await self._token_provider() if self._token_provider else None
        if token:
            cfg.api_key = {"authorization": token}
            cfg.api_key_prefix = {"authorization": "Bearer"}
        return cfg

    async def karmada(self) -> ApiClient:
        if self._karmada:
            return self._karmada
        async with self._client_lock:
            if self._karmada:
                return self._karmada
            self._karmada = ApiClient(configuration=await self.karmada_configuration())
            return self._karmada

    async def member(self, cluster: str) -> ApiClient:
        async with self._client_lock:
            cached = self._members.get(cluster)
        if cached:
            return cached
        karmada = await self.karmada()
        cfg = copy.deepcopy(karmada.configuration)
        cfg.host = proxy_host(karmada.configuration.host, cluster)
        api_client = ApiClient(configuration=cfg)
        async with self._client_lock:
            self._members[cluster] = api_client
        return api_client

    async def reset_karmada(self) -> None:
        """Drop Karmada and member clients, e.g. after a new service-account token was stored."""
        async with self._client_lock:
            self._karmada = None
            self._members.clear()
        await self.invalidate()

    async def karmada_version(self, token: str | None = None) -> dict[str, Any]:
        """Return Karmada's /version; with ``token`` the call is made with that bearer token only."""
        if token is None:
            api_client = await self.karmada()
        else:
            cfg = copy.deepcopy(await self.karmada_configuration())
            cfg.api_key = {"authorization": token}
            cfg.api_key_prefix = {"authorization": "Bearer"}
            cfg.cert_file = None
            cfg.key_file = None
            api_client = ApiClient(configuration=cfg)
        info = await self.run(client.VersionApi(api_client).get_code)
        return sanitize(info)
