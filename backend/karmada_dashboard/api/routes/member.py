from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from kubernetes.client import ApiClient

from karmada_dashboard.api.routes.scoped import build_router
from karmada_dashboard.core.auth import member_client
from karmada_dashboard.dependencies import get_overview_service
from karmada_dashboard.services.overview import OverviewService


def cluster_name(clustername: str) -> str:
    return clustername


router = APIRouter(prefix="/member/{clustername}", tags=["member"])


@router.get("/overview")
async def member_overview(
    clustername: str,
    _client: Annotated[ApiClient, Depends(member_client)],
    service: Annotated[OverviewService, Depends(get_overview_service)],
) -> dict[str, Any]:
    return await service.member_overview(clustername)


router.include_router(build_router(member_client, cluster_name))
