"""Fan-out list calls over every ready member cluster.

Clusters are visited one after another; a cluster that fails is logged and
skipped so the caller still gets the items of the others. Each item is tagged
with ``objectMeta.labels.cluster`` (or ``metadata.labels.cluster`` for raw
objects) before the merged list is sorted and paged.
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
import urllib3
from kubernetes.client import ApiClient
from kubernetes.client.exceptions import ApiException

from karmada_dashboard.exceptions import AppException
from karmada_dashboard.services import dataselect
from karmada_dashboard.services.argocd import ArgoCDService, get_argo_kind
from karmada_dashboard.services.clusters import ClusterService
from karmada_dashboard.services.dataselect import DataSelectQuery
from karmada_dashboard.services.kube_client import ClientManager
from karmada_dashboard.services.resources import ResourceService, dto, get_kind
from karmada_dashboard.services.resources.service import served_version

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# errors that make a single member cluster unusable for this request
MEMBER_ERRORS = (ApiException, AppException, urllib3.exceptions.HTTPError)


def label_cluster(meta: dict[str, Any], cluster: str) -> None:
    labels = meta.get("labels") or {}
    labels["cluster"] = cluster
    meta["labels"] = labels


def _sort_key(item: dict[str, Any]) -> tuple[str, str]:
    meta = item.get("objectMeta") or item.get("metadata") or {}
    return meta.get("name") or "", (meta.get("labels") or {}).get("cluster", "")


class AggregationService:
    def __init__(self, clients: ClientManager, clusters: ClusterService, resources: ResourceService, argocd: ArgoCDService) -> None:
        self.clients = clients
        self.clusters = clusters
        self.resources = resources
        self.argocd = argocd

    async def fan_out(self, label: str, fetch: Callable[[str, ApiClient], Awaitable[list[T]]]) -> list[T]:
        """Call ``fetch(cluster, api_client)`` for every ready member and concatenate the results."""
        merged: list[T] = []
        for cluster in await self.clusters.ready_names():
            try:
                api_client = await self.clients.member(cluster)
                merged.extend(await fetch(cluster, api_client))
            except MEMBER_ERRORS as exc:
                logger.error("aggregation.member_failed", what=label, cluster=cluster, error=str(exc))
                continue
        return merged

    async def list_kind(self, kind_name: str, namespace: str | None = None, query: DataSelectQuery | None = None) -> dict[str, Any]:
        kind = get_kind(kind_name)
        ns = namespace if kind.namespaced else None

        async def _fetch(cluster: str, api_client: ApiClient) -> list[dict[str, Any]]:
            items = await self.resources.list_summaries(api_client, kind.name, ns)
            for item in items:
                label_cluster(item["objectMeta"], cluster)
            return items

        items = sorted(await self.fan_out(kind.name, _fetch), key=_sort_key)
        page, total = dataselect.apply(items, query)
        return dto.to_list(kind, page, total)

    # ---------------------------
    # custom resources
    # ---------------------------
    async def crds(self, query: DataSelectQuery | None = None, group_by: str | None = None) -> dict[str, Any]:
        async def _fetch(cluster: str, api_client: ApiClient) -> list[dict[str, Any]]:
            summaries = [self.resources.crd_summary(c) for c in await self.resources.list_crd_objects(api_client)]
            for s in summaries:
                label_cluster(s["objectMeta"], cluster)
            return summaries

        items = sorted(await self.fan_out("customresourcedefinition", _fetch), key=_sort_key)
        if group_by == "group":
            groups: dict[str, list[dict[str, Any]]] = {}
            for item in items:
                groups.setdefault(item["group"], []).append(item)
            return {"groups": groups, "totalItems": len(items)}
        page, total = dataselect.apply(items, query)
        return {"listMeta": {"totalItems": total}, "items": page, "errors": []}

    async def api_versions(self) -> dict[str, Any]:
        """One entry per (cluster, group) with that group's CRD versions."""

        async def _fetch(cluster: str, api_client: ApiClient) -> list[dict[str, Any]]:
            by_group: dict[str, set[str]] = {}
            for crd in await self.resources.list_crd_objects(api_client):
                spec = crd.get("spec") or {}
                versions = by_group.setdefault(spec.get("group", ""), set())
                versions.update(v.get("name") for v in spec.get("versions") or [] if v.get("name"))
            return [{"group": g, "versions": sorted(v), "cluster": cluster} for g, v in by_group.items()]

        items = sorted(await self.fan_out("apiversion", _fetch), key=lambda i: (i["group"], i["cluster"]))
        return {"items": items, "totalItems": len(items)}

    async def custom_resources(self, group: str | None = None, crd: str | None = None, namespace: str | None = None, query: DataSelectQuery | None = None) -> dict[str, Any]:
        """Instances of one CRD (``group`` and ``crd`` given) or of every CRD, across members."""

        async def _fetch(cluster: str, api_client: ApiClient) -> list[dict[str, Any]]:
            if group and crd:
                definitions = [await self.resources.find_crd(api_client, group, crd)]
            else:
                definitions = await self.resources.list_crd_objects(api_client)
            out: list[dict[str, Any]] = []
            for definition in definitions:
                if not served_version(definition):
                    continue
                try:
                    objects = await self.resources.list_custom_objects(api_client, definition, namespace)
                except ApiException as exc:
                    logger.debug("aggregation.custom_objects_failed", crd=definition["metadata"]["name"], cluster=cluster, error=str(exc))
                    continue
                for obj in objects:
                    label_cluster(obj.setdefault("metadata", {}), cluster)
                    out.append({"objectMeta": dto.object_meta(obj), "typeMeta": dto.type_meta(obj.get("kind", "")), "object": obj})
            return out

        items = sorted(await self.fan_out("customresource", _fetch), key=_sort_key)
        page, total = dataselect.apply(items, query)
        return {"listMeta": {"totalItems": total}, "items": page, "errors": []}

    # ---------------------------
    # ArgoCD
    # ---------------------------
    async def argocd_resources(self, kind_name: str) -> dict[str, Any]:
        kind = get_argo_kind(kind_name)

        async def _fetch(cluster: str, api_client: ApiClient) -> list[dict[str, Any]]:
            return await self.argocd.list_items(api_client, kind.name, cluster)

        items = sorted(await self.fan_out(kind.plural, _fetch), key=_sort_key)
        return {"items": items, "totalItems": len(items)}
