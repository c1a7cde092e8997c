"""Management cluster routes: resources, Porch passthrough and package objects."""
from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import Response
from kubernetes.client import ApiClient

from karmada_dashboard.api.routes.scoped import build_router
from karmada_dashboard.core.auth import mgmt_client, require_admin
from karmada_dashboard.dependencies import get_overview_service, get_package_service, get_porch_service
from karmada_dashboard.services.overview import OverviewService
from karmada_dashboard.services.porch import PackageService, PorchService


def no_cluster() -> None:
    return None


router = APIRouter(prefix="/mgmt", tags=["mgmt"])


@router.get("/overview")
async def mgmt_overview(
    _client: Annotated[ApiClient, Depends(mgmt_client)],
    service: Annotated[OverviewService, Depends(get_overview_service)],
) -> dict[str, Any]:
    return await service.mgmt_overview()


# ---------------------------
# Porch API passthrough
# ---------------------------
porch = APIRouter(prefix="/porch", dependencies=[Depends(require_admin)])


async def _forward(request: Request, porch_service: PorchService, resource: str, name: str | None = None) -> Response:
    """Relay the request to Porch and hand its answer back untouched."""
    body = await request.body()
    result = await porch_service.proxy(
        request.method,
        porch_service.path(resource, name),
        params=dict(request.query_params),
        headers=dict(request.headers),
        body=body,
    )
    request.state.skip_envelope = True
    return Response(content=result.content, status_code=result.status_code, headers=result.headers)


@porch.api_route("/repository", methods=["GET", "POST"])
async def porch_repositories(request: Request, porch_service: Annotated[PorchService, Depends(get_porch_service)]) -> Response:
    return await _forward(request, porch_service, "repositories")


@porch.api_route("/repository/{name}", methods=["GET", "PUT", "DELETE"])
async def porch_repository(name: str, request: Request, porch_service: Annotated[PorchService, Depends(get_porch_service)]) -> Response:
    return await _forward(request, porch_service, "repositories", name)


@porch.api_route("/packagerevision", methods=["GET", "POST"])
async def porch_package_revisions(request: Request, porch_service: Annotated[PorchService, Depends(get_porch_service)]) -> Response:
    return await _forward(request, porch_service, "packagerevisions")


@porch.api_route("/packagerevision/{name}", methods=["GET", "PUT", "DELETE"])
async def porch_package_revision(name: str, request: Request, porch_service: Annotated[PorchService, Depends(get_porch_service)]) -> Response:
    return await _forward(request, porch_service, "packagerevisions", name)


@porch.api_route("/packagerevisionresources/{name}", methods=["GET", "PUT"])
async def porch_package_revision_resources(name: str, request: Request, porch_service: Annotated[PorchService, Depends(get_porch_service)]) -> Response:
    return await _forward(request, porch_service, "packagerevisionresources", name)


# ---------------------------
# Repository / PackageRev objects
# ---------------------------
package = APIRouter(prefix="/package", dependencies=[Depends(require_admin)])


@package.get("/{kind}")
async def list_packages(kind: str, service: Annotated[PackageService, Depends(get_package_service)]) -> dict[str, Any]:
    return await service.list_resources(kind)


@package.get("/{kind}/{name}")
async def get_package(kind: str, name: str, service: Annotated[PackageService, Depends(get_package_service)]) -> dict[str, Any]:
    return await service.get(kind, name)


@package.post("/{kind}")
async def create_package(kind: str, service: Annotated[PackageService, Depends(get_package_service)], body: dict[str, Any] = Body(...)) -> dict[str, Any]:
    return await service.create(kind, body)


@package.put("/{kind}/{name}")
async def update_package(
    kind: str,
    name: str,
    service: Annotated[PackageService, Depends(get_package_service)],
    body: dict[str, Any] = Body(...),
) -> dict[str, Any]:
    return await service.update(kind, name, body)


@package.delete("/{kind}/{name}")
async def delete_package(kind: str, name: str, service: Annotated[PackageService, Depends(get_package_service)]) -> str:
    await service.delete(kind, name)
    return "ok"


router.include_router(porch)
router.include_router(package)
router.include_router(build_router(mgmt_client, no_cluster))
