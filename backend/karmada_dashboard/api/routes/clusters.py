from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from karmada_dashboard.core.auth import CurrentUser, get_current_user
from karmada_dashboard.dependencies import get_cluster_service
from karmada_dashboard.schemas.cluster import ClusterCreate, ClusterUpdate, ClusterUsersUpdate
from karmada_dashboard.services.clusters import ClusterService
from karmada_dashboard.services.dataselect import DataSelectQuery, get_data_select

router = APIRouter(prefix="/cluster", tags=["clusters"])


@router.get("")
async def list_clusters(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    service: Annotated[ClusterService, Depends(get_cluster_service)],
    query: Annotated[DataSelectQuery, Depends(get_data_select)],
) -> dict[str, Any]:
    return await service.list_clusters(user.username, query)


@router.post("")
async def create_cluster(body: ClusterCreate, service: Annotated[ClusterService, Depends(get_cluster_service)]) -> str:
    await service.create(body.member_cluster_name, body.member_cluster_kube_config, body.sync_mode)
    return "ok"


@router.get("/{name}")
async def get_cluster(name: str, service: Annotated[ClusterService, Depends(get_cluster_service)]) -> dict[str, Any]:
    return await service.detail(name)


@router.put("/{name}")
async def update_cluster(name: str, body: ClusterUpdate, service: Annotated[ClusterService, Depends(get_cluster_service)]) -> str:
    labels = [item.model_dump() for item in body.labels] if body.labels is not None else None
    taints = [item.model_dump() for item in body.taints] if body.taints is not None else None
    await service.update(name, labels, taints)
    return "ok"


@router.delete("/{name}")
async def delete_cluster(name: str, service: Annotated[ClusterService, Depends(get_cluster_service)]) -> str:
    await service.delete(name)
    return "ok"


@router.get("/{name}/users")
async def cluster_users(
    name: str,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    service: Annotated[ClusterService, Depends(get_cluster_service)],
) -> dict[str, Any]:
    await service.check_view_users(user.username, name)
    return await service.users_of(name)


@router.put("/{name}/users")
async def replace_cluster_users(
    name: str,
    body: ClusterUsersUpdate,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    service: Annotated[ClusterService, Depends(get_cluster_service)],
) -> dict[str, Any]:
    await service.check_manage_users(user.username, name)
    return await service.replace_users(name, [u.model_dump() for u in body.users])
