from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from kubernetes import client
from kubernetes.client import ApiClient
from kubernetes.client.exceptions import ApiException

from karmada_dashboard.exceptions import BadRequestError
from karmada_dashboard.services.kube_client import ClientManager

logger = structlog.get_logger(__name__)

ARGOCD_GROUP = "argoproj.io"
ARGOCD_VERSION = "v1alpha1"
ARGOCD_NAMESPACE = "argocd"


@dataclass(frozen=True)
class ArgoKind:
    name: str
    kind: str
    plural: str


ARGO_KINDS: dict[str, ArgoKind] = {
    k.name: k
    for k in (
        ArgoKind("project", "AppProject", "appprojects"),
        ArgoKind("application", "Application", "applications"),
        ArgoKind("applicationset", "ApplicationSet", "applicationsets"),
    )
}


def get_argo_kind(name: str) -> ArgoKind:
    kind = ARGO_KINDS.get(name.lower())
    if kind is None:
        raise BadRequestError(f"unsupported ArgoCD resource: {name}")
    return kind


def _tidy(obj: dict[str, Any], cluster: str | None) -> dict[str, Any]:
    metadata = obj.setdefault("metadata", {})
    metadata.pop("managedFields", None)
    if cluster:
        labels = metadata.get("labels") or {}
        labels["cluster"] = cluster
        metadata["labels"] = labels
    return obj


class ArgoCDService:
    """ArgoCD projects, applications and application sets read and written as custom objects."""

    def __init__(self, clients: ClientManager) -> None:
        self.clients = clients

    async def list_items(self, api_client: ApiClient, kind_name: str, cluster: str | None = None) -> list[dict[str, Any]]:
        kind = get_argo_kind(kind_name)
        co = client.CustomObjectsApi(api_client)

        def _list() -> list[dict[str, Any]]:
            data = co.list_cluster_custom_object(ARGOCD_GROUP, ARGOCD_VERSION, kind.plural)
            return [_tidy(i, cluster) for i in data.get("items") or []]

        return await self.clients.run(_list)

    async def list_resources(self, api_client: ApiClient, kind_name: str, cluster: str | None = None) -> dict[str, Any]:
        items = await self.list_items(api_client, kind_name, cluster)
        return {"items": items, "totalItems": len(items)}

    async def get(self, api_client: ApiClient, kind_name: str, name: str, cluster: str | None = None, namespace: str = ARGOCD_NAMESPACE) -> dict[str, Any]:
        kind = get_argo_kind(kind_name)
        co = client.CustomObjectsApi(api_client)
        obj = await self.clients.run(co.get_namespaced_custom_object, ARGOCD_GROUP, ARGOCD_VERSION, namespace, kind.plural, name)
        return _tidy(obj, cluster)

    async def project_detail(self, api_client: ApiClient, name: str, cluster: str | None = None) -> dict[str, Any]:
        project = await self.get(api_client, "project", name, cluster)
        applications = [
            a for a in await self.list_items(api_client, "application", cluster) if (a.get("spec") or {}).get("project") == name
        ]
        return {"project": project, "applications": applications}

    async def create(self, api_client: ApiClient, kind_name: str, body: dict[str, Any], cluster: str | None = None) -> dict[str, Any]:
        kind = get_argo_kind(kind_name)
        metadata = body.setdefault("metadata", {})
        if not metadata.get("name"):
            raise BadRequestError("metadata.name is required")
        namespace = metadata.get("namespace") or ARGOCD_NAMESPACE
        metadata["namespace"] = namespace
        body["apiVersion"] = f"{ARGOCD_GROUP}/{ARGOCD_VERSION}"
        body["kind"] = kind.kind
        _tidy(body, cluster)
        co = client.CustomObjectsApi(api_client)
        created = await self.clients.run(co.create_namespaced_custom_object, ARGOCD_GROUP, ARGOCD_VERSION, namespace, kind.plural, body)
        logger.info("argocd.created", kind=kind.kind, name=metadata["name"], cluster=cluster)
        return _tidy(created, None)

    async def update(self, api_client: ApiClient, kind_name: str, name: str, body: dict[str, Any], cluster: str | None = None) -> dict[str, Any]:
        """Replace spec (and labels/annotations when given) on the current object."""
        kind = get_argo_kind(kind_name)
        current = await self.get(api_client, kind_name, name)
        if "spec" in body:
            current["spec"] = body["spec"]
        for field in ("labels", "annotations"):
            value = (body.get("metadata") or {}).get(field)
            if value is not None:
                current["metadata"][field] = value
        namespace = current["metadata"].get("namespace") or ARGOCD_NAMESPACE
        co = client.CustomObjectsApi(api_client)
        updated = await self.clients.run(co.replace_namespaced_custom_object, ARGOCD_GROUP, ARGOCD_VERSION, namespace, kind.plural, name, current)
        logger.info("argocd.updated", kind=kind.kind, name=name, cluster=cluster)
        return _tidy(updated, cluster)

    async def delete(self, api_client: ApiClient, kind_name: str, name: str, namespace: str = ARGOCD_NAMESPACE) -> None:
        kind = get_argo_kind(kind_name)
        co = client.CustomObjectsApi(api_client)
        await self.clients.run(co.delete_namespaced_custom_object, ARGOCD_GROUP, ARGOCD_VERSION, namespace, kind.plural, name)
        logger.info("argocd.deleted", kind=kind.kind, name=name)

    async def sync(self, api_client: ApiClient, name: str) -> dict[str, Any]:
        """Ask the application controller to sync by setting ``operation.sync``."""
        app = await self.get(api_client, "application", name)
        app["operation"] = {"sync": {}, "initiatedBy": {"username": "karmada-dashboard"}}
        co = client.CustomObjectsApi(api_client)
        try:
            await self.clients.run(
                co.replace_namespaced_custom_object, ARGOCD_GROUP, ARGOCD_VERSION, app["metadata"].get("namespace") or ARGOCD_NAMESPACE, "applications", name, app
            )
        except ApiException as exc:
            raise BadRequestError(f"failed to sync application: {exc.reason}") from exc
        return {"message": f"Application {name} sync triggered", "timestamp": datetime.now(tz=timezone.utc).isoformat()}

    async def counts(self, api_client: ApiClient) -> dict[str, int]:
        """Number of projects, applications and application sets; zero where ArgoCD is absent."""
        out: dict[str, int] = {}
        for kind_name in ARGO_KINDS:
            try:
                out[kind_name] = len(await self.list_items(api_client, kind_name))
            except ApiException as exc:
                logger.debug("argocd.count_failed", kind=kind_name, error=str(exc))
                out[kind_name] = 0
        return out
