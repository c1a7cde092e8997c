from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from karmada_dashboard.exceptions import AppException, BadRequestError
from karmada_dashboard.services.porch import PackageService, PorchService, TokenCache


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


async def test_token_cache_reuses_until_refresh_margin():
    clock = Clock()
    cache = TokenCache(clock=clock)
    minted = []

    async def mint() -> str:
        minted.append(clock.now)
        return f"token-{len(minted)}"

    assert await cache.get("ns/sa", mint) == "token-1"
    clock.now += 3000
    assert await cache.get("ns/sa", mint) == "token-1"
    # inside the last five minutes of the hour
    clock.now += 400
    assert await cache.get("ns/sa", mint) == "token-2"
    assert await cache.get("other/sa", mint) == "token-3"


def _porch(settings, handler) -> PorchService:
    settings = settings.model_copy(update={"porch_api_url": "https://porch.test/"})
    service = PorchService(Mock(), settings, transport=httpx.MockTransport(handler))
    service.token = AsyncMock(return_value="sa-token")
    return service


def test_path(settings):
    service = PorchService(Mock(), settings)
    assert service.path("repositories") == "/apis/porch.kpt.dev/v1alpha1/namespaces/default/repositories"
    assert service.path("packagerevisions", "blueprint").endswith("/packagerevisions/blueprint")


async def test_proxy_forwards_with_service_account_token(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("authorization")
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(201, json={"kind": "Repository"}, headers={"X-Porch": "1"})

    service = _porch(settings, handler)
    result = await service.proxy(
        "POST",
        service.path("repositories"),
        params={"limit": "5"},
        headers={"Authorization": "Bearer user-token", "Content-Type": "application/json"},
        body=b'{"kind": "Repository"}',
    )
    assert seen["auth"] == "Bearer sa-token"
    assert seen["url"] == "https://porch.test/apis/porch.kpt.dev/v1alpha1/namespaces/default/repositories?limit=5"
    assert seen["body"] == b'{"kind": "Repository"}'
    assert result.status_code == 201
    assert {k.lower(): v for k, v in result.headers.items()}["x-porch"] == "1"
    assert "content-length" not in {k.lower() for k in result.headers}


async def test_proxy_requires_configuration(settings):
    service = PorchService(Mock(), settings.model_copy(update={"porch_api_url": None}))
    with pytest.raises(AppException, match="not configured"):
        await service.proxy("GET", "/apis")


async def test_proxy_transport_failure(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    service = _porch(settings, handler)
    with pytest.raises(AppException, match="Failed to call Porch API"):
        await service.proxy("GET", "/apis")


async def test_package_service_rejects_unknown_kind(settings):
    with pytest.raises(BadRequestError):
        await PackageService(Mock(), settings).list_resources("helmchart")


async def test_package_create_fills_type_meta(settings):
    clients = Mock()
    clients.management = AsyncMock(return_value=Mock())
    clients.run = AsyncMock(side_effect=lambda fn, *args: args[-1])
    service = PackageService(clients, settings)

    created = await service.create("repository", {"metadata": {"name": "blueprints"}, "spec": {"type": "git"}})
    assert created["apiVersion"] == "config.porch.kpt.dev/v1alpha1"
    assert created["kind"] == "Repository"
    assert created["metadata"]["namespace"] == "default"

    with pytest.raises(BadRequestError):
        await service.create("repository", {"spec": {}})
