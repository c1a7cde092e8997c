"""Per-cluster resource routes shared by the ``/member/{clustername}`` and ``/mgmt`` scopes.

Only the way the cluster client is obtained differs between the scopes, so the
routes are built by ``build_router`` from two dependencies: one yielding the
``ApiClient`` and one yielding the cluster name used to label ArgoCD objects.
Specific paths are registered before the generic ``/{kind}/...`` ones.
"""
from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from kubernetes.client import ApiClient

from karmada_dashboard.dependencies import get_argocd_service, get_resource_service
from karmada_dashboard.schemas.resources import NamespaceCreate
from karmada_dashboard.services.argocd import ArgoCDService
from karmada_dashboard.services.dataselect import DataSelectQuery, get_data_select
from karmada_dashboard.services.resources import ResourceService, get_kind


def build_router(client_dep: Callable[..., Any], cluster_dep: Callable[..., Any], prefix: str = "", tags: list[str] | None = None) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=tags)

    # ---------------------------
    # namespaces, workloads, pods and nodes
    # ---------------------------
    @router.post("/namespace")
    async def create_namespace(
        body: NamespaceCreate,
        api_client: ApiClient = Depends(client_dep),
        service: ResourceService = Depends(get_resource_service),
    ) -> dict[str, Any]:
        return await service.create_namespace(api_client, body.name, body.labels)

    @router.put("/{kind}/{namespace}/{name}/restart")
    async def restart(
        kind: str,
        namespace: str,
        name: str,
        api_client: ApiClient = Depends(client_dep),
        service: ResourceService = Depends(get_resource_service),
    ) -> dict[str, Any]:
        return await service.restart(api_client, kind, namespace, name)

    @router.get("/pod/{namespace}/{name}/logs")
    async def pod_logs(
        namespace: str,
        name: str,
        container: str | None = Query(default=None),
        page: int = Query(default=1),
        api_client: ApiClient = Depends(client_dep),
        service: ResourceService = Depends(get_resource_service),
    ) -> dict[str, Any]:
        return await service.pod_logs(api_client, namespace, name, container, page)

    @router.get("/node/{name}/pod")
    async def node_pods(
        name: str,
        api_client: ApiClient = Depends(client_dep),
        service: ResourceService = Depends(get_resource_service),
        query: DataSelectQuery = Depends(get_data_select),
    ) -> dict[str, Any]:
        return await service.node_pods(api_client, name, query)

    # ---------------------------
    # unstructured access
    # ---------------------------
    @router.get("/_raw/{kind}/namespace/{namespace}/name/{name}")
    async def raw_get(kind: str, namespace: str, name: str, api_client: ApiClient = Depends(client_dep), service: ResourceService = Depends(get_resource_service)) -> Any:
        return await service.raw(api_client, "get", kind, namespace, name)

    @router.put("/_raw/{kind}/namespace/{namespace}/name/{name}")
    async def raw_put(
        kind: str,
        namespace: str,
        name: str,
        body: dict[str, Any] = Body(...),
        api_client: ApiClient = Depends(client_dep),
        service: ResourceService = Depends(get_resource_service),
    ) -> Any:
        return await service.raw(api_client, "put", kind, namespace, name, body)

    @router.delete("/_raw/{kind}/namespace/{namespace}/name/{name}")
    async def raw_delete(kind: str, namespace: str, name: str, api_client: ApiClient = Depends(client_dep), service: ResourceService = Depends(get_resource_service)) -> Any:
        return await service.raw(api_client, "delete", kind, namespace, name)

    @router.post("/_raw/{kind}/namespace/{namespace}")
    async def raw_create(
        kind: str,
        namespace: str,
        body: dict[str, Any] = Body(...),
        api_client: ApiClient = Depends(client_dep),
        service: ResourceService = Depends(get_resource_service),
    ) -> Any:
        return await service.raw(api_client, "create", kind, namespace, None, body)

    @router.get("/_raw/{kind}/name/{name}")
    async def raw_get_cluster_scoped(kind: str, name: str, api_client: ApiClient = Depends(client_dep), service: ResourceService = Depends(get_resource_service)) -> Any:
        return await service.raw(api_client, "get", kind, None, name)

    @router.put("/_raw/{kind}/name/{name}")
    async def raw_put_cluster_scoped(
        kind: str,
        name: str,
        body: dict[str, Any] = Body(...),
        api_client: ApiClient = Depends(client_dep),
        service: ResourceService = Depends(get_resource_service),
    ) -> Any:
        return await service.raw(api_client, "put", kind, None, name, body)

    @router.delete("/_raw/{kind}/name/{name}")
    async def raw_delete_cluster_scoped(kind: str, name: str, api_client: ApiClient = Depends(client_dep), service: ResourceService = Depends(get_resource_service)) -> Any:
        return await service.raw(api_client, "delete", kind, None, name)

    @router.post("/_raw/{kind}")
    async def raw_create_cluster_scoped(
        kind: str,
        body: dict[str, Any] = Body(...),
        api_client: ApiClient = Depends(client_dep),
        service: ResourceService = Depends(get_resource_service),
    ) -> Any:
        return await service.raw(api_client, "create", kind, None, None, body)

    # ---------------------------
    # custom resources
    # ---------------------------
    @router.get("/customresource/definition")
    async def list_crds(
        api_client: ApiClient = Depends(client_dep),
        service: ResourceService = Depends(get_resource_service),
        query: DataSelectQuery = Depends(get_data_select),
    ) -> dict[str, Any]:
        return await service.list_crds(api_client, query)

    @router.get("/customresource/definition/{name}")
    async def get_crd(name: str, api_client: ApiClient = Depends(client_dep), service: ResourceService = Depends(get_resource_service)) -> dict[str, Any]:
        return await service.get_crd(api_client, name)

    @router.put("/customresource/definition/{name}")
    async def update_crd(
        name: str,
        body: dict[str, Any] = Body(...),
        api_client: ApiClient = Depends(client_dep),
        service: ResourceService = Depends(get_resource_service),
    ) -> dict[str, Any]:
        return await service.update_crd(api_client, name, body)

    @router.get("/customresource/resource")
    async def list_custom_resources(
        group: str = Query(default=""),
        crd: str = Query(default=""),
        namespace: str | None = Query(default=None),
        api_client: ApiClient = Depends(client_dep),
        service: ResourceService = Depends(get_resource_service),
        query: DataSelectQuery = Depends(get_data_select),
    ) -> dict[str, Any]:
        return await service.list_custom_resources(api_client, group, crd, namespace, query)

    # ---------------------------
    # ArgoCD
    # ---------------------------
    @router.post("/argocd/application/{name}/sync")
    async def sync_application(name: str, api_client: ApiClient = Depends(client_dep), argocd: ArgoCDService = Depends(get_argocd_service)) -> dict[str, Any]:
        return await argocd.sync(api_client, name)

    @router.get("/argocd/project/{name}/detail")
    async def project_detail(
        name: str,
        api_client: ApiClient = Depends(client_dep),
        cluster: str | None = Depends(cluster_dep),
        argocd: ArgoCDService = Depends(get_argocd_service),
    ) -> dict[str, Any]:
        return await argocd.project_detail(api_client, name, cluster)

    @router.get("/argocd/{kind}")
    async def list_argocd(
        kind: str,
        api_client: ApiClient = Depends(client_dep),
        cluster: str | None = Depends(cluster_dep),
        argocd: ArgoCDService = Depends(get_argocd_service),
    ) -> dict[str, Any]:
        return await argocd.list_resources(api_client, kind, cluster)

    @router.get("/argocd/{kind}/{name}")
    async def get_argocd(
        kind: str,
        name: str,
        api_client: ApiClient = Depends(client_dep),
        cluster: str | None = Depends(cluster_dep),
        argocd: ArgoCDService = Depends(get_argocd_service),
    ) -> dict[str, Any]:
        return await argocd.get(api_client, kind, name, cluster)

    @router.post("/argocd/{kind}")
    async def create_argocd(
        kind: str,
        body: dict[str, Any] = Body(...),
        api_client: ApiClient = Depends(client_dep),
        cluster: str | None = Depends(cluster_dep),
        argocd: ArgoCDService = Depends(get_argocd_service),
    ) -> dict[str, Any]:
        return await argocd.create(api_client, kind, body, cluster)

    @router.put("/argocd/{kind}/{name}")
    async def update_argocd(
        kind: str,
        name: str,
        body: dict[str, Any] = Body(...),
        api_client: ApiClient = Depends(client_dep),
        cluster: str | None = Depends(cluster_dep),
        argocd: ArgoCDService = Depends(get_argocd_service),
    ) -> dict[str, Any]:
        return await argocd.update(api_client, kind, name, body, cluster)

    @router.delete("/argocd/{kind}/{name}")
    async def delete_argocd(kind: str, name: str, api_client: ApiClient = Depends(client_dep), argocd: ArgoCDService = Depends(get_argocd_service)) -> str:
        await argocd.delete(api_client, kind, name)
        return "ok"

    # ---------------------------
    # generic kinds
    # ---------------------------
    @router.get("/{kind}/{namespace}/{name}/event")
    async def object_events(
        kind: str,
        namespace: str,
        name: str,
        api_client: ApiClient = Depends(client_dep),
        service: ResourceService = Depends(get_resource_service),
        query: DataSelectQuery = Depends(get_data_select),
    ) -> dict[str, Any]:
        return await service.kind_events(api_client, kind, namespace, name, query)

    @router.get("/{kind}")
    async def list_all(
        kind: str,
        api_client: ApiClient = Depends(client_dep),
        service: ResourceService = Depends(get_resource_service),
        query: DataSelectQuery = Depends(get_data_select),
    ) -> dict[str, Any]:
        return await service.list_kind(api_client, kind, None, query)

    @router.get("/{kind}/{namespace_or_name}")
    async def list_namespaced_or_detail(
        kind: str,
        namespace_or_name: str,
        api_client: ApiClient = Depends(client_dep),
        service: ResourceService = Depends(get_resource_service),
        query: DataSelectQuery = Depends(get_data_select),
    ) -> dict[str, Any]:
        """A namespace for namespaced kinds, an object name for cluster-scoped ones."""
        if get_kind(kind).namespaced:
            return await service.list_kind(api_client, kind, namespace_or_name, query)
        return await service.detail(api_client, kind, None, namespace_or_name)

    @router.get("/{kind}/{namespace}/{name}")
    async def detail(
        kind: str,
        namespace: str,
        name: str,
        api_client: ApiClient = Depends(client_dep),
        service: ResourceService = Depends(get_resource_service),
        query: DataSelectQuery = Depends(get_data_select),
    ) -> dict[str, Any]:
        if not get_kind(kind).namespaced and name == "event":
            # cluster-scoped form: /{kind}/{name}/event
            return await service.kind_events(api_client, kind, None, namespace, query)
        return await service.detail(api_client, kind, namespace, name)

    @router.delete("/{kind}/{name}")
    async def delete_cluster_scoped(kind: str, name: str, api_client: ApiClient = Depends(client_dep), service: ResourceService = Depends(get_resource_service)) -> str:
        await service.delete(api_client, kind, None, name)
        return "ok"

    @router.delete("/{kind}/{namespace}/{name}")
    async def delete(kind: str, namespace: str, name: str, api_client: ApiClient = Depends(client_dep), service: ResourceService = Depends(get_resource_service)) -> str:
        await service.delete(api_client, kind, namespace, name)
        return "ok"

    return router
