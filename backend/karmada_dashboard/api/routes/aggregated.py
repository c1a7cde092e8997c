"""Resources merged across every ready member cluster, each item labelled with its cluster."""
from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from karmada_dashboard.dependencies import get_aggregation_service
from karmada_dashboard.services.aggregation import AggregationService
from karmada_dashboard.services.dataselect import DataSelectQuery, get_data_select

router = APIRouter(prefix="/aggregated", tags=["aggregated"])


@router.get("/customresource/definition")
async def aggregated_crds(
    service: Annotated[AggregationService, Depends(get_aggregation_service)],
    query: Annotated[DataSelectQuery, Depends(get_data_select)],
    group_by: str | None = Query(default=None, alias="groupBy"),
) -> dict[str, Any]:
    return await service.crds(query, group_by)


@router.get("/customresource/apiversion")
async def aggregated_api_versions(service: Annotated[AggregationService, Depends(get_aggregation_service)]) -> dict[str, Any]:
    return await service.api_versions()


@router.get("/customresource/resource")
async def aggregated_custom_resources(
    service: Annotated[AggregationService, Depends(get_aggregation_service)],
    query: Annotated[DataSelectQuery, Depends(get_data_select)],
    group: str | None = Query(default=None),
    crd: str | None = Query(default=None),
    namespace: str | None = Query(default=None),
) -> dict[str, Any]:
    return await service.custom_resources(group or None, crd or None, namespace, query)


@router.get("/argocd/{kind}")
async def aggregated_argocd(kind: str, service: Annotated[AggregationService, Depends(get_aggregation_service)]) -> dict[str, Any]:
    return await service.argocd_resources(kind)


@router.get("/{kind}")
async def aggregated_list(
    kind: str,
    service: Annotated[AggregationService, Depends(get_aggregation_service)],
    query: Annotated[DataSelectQuery, Depends(get_data_select)],
) -> dict[str, Any]:
    return await service.list_kind(kind, None, query)


@router.get("/{kind}/{namespace}")
async def aggregated_list_namespaced(
    kind: str,
    namespace: str,
    service: Annotated[AggregationService, Depends(get_aggregation_service)],
    query: Annotated[DataSelectQuery, Depends(get_data_select)],
) -> dict[str, Any]:
    return await service.list_kind(kind, namespace, query)
