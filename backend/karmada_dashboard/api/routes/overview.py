from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from karmada_dashboard.dependencies import get_dashboard_store, get_overview_service
from karmada_dashboard.schemas.overview import DashboardCreate
from karmada_dashboard.services.overview import DashboardConfigStore, OverviewService

router = APIRouter(prefix="/overview", tags=["overview"])


@router.get("")
async def overview(service: Annotated[OverviewService, Depends(get_overview_service)]) -> dict[str, Any]:
    return await service.overview()


@router.post("/monitoring/dashboard")
async def add_dashboard(body: DashboardCreate, store: Annotated[DashboardConfigStore, Depends(get_dashboard_store)]) -> str:
    await store.add(body.name, body.url)
    return "Dashboard added successfully"


@router.delete("/monitoring/dashboard/{name}")
async def delete_dashboard(
    name: str,
    store: Annotated[DashboardConfigStore, Depends(get_dashboard_store)],
    url: str = Query(default=""),
) -> str:
    await store.remove(name, url)
    return "Dashboard deleted successfully"
