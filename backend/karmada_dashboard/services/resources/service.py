from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any

import structlog
from kubernetes import client
from kubernetes.client import ApiClient
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError

from karmada_dashboard.exceptions import BadRequestError, NotFoundError
from karmada_dashboard.services import dataselect
from karmada_dashboard.services.dataselect import DataSelectQuery
from karmada_dashboard.services.kube_client import ClientManager, sanitize
from karmada_dashboard.services.resources import dto
from karmada_dashboard.services.resources.kinds import KINDS, ResourceKind, get_kind

logger = structlog.get_logger(__name__)

LOG_LINES_PER_PAGE = 200
RESTARTED_AT_ANNOTATION = "kubectl.kubernetes.io/restartedAt"


def _all_namespaces(namespace: str | None) -> bool:
    return not namespace or namespace == "all"


def served_version(crd: dict[str, Any]) -> str | None:
    """Served+storage version of a sanitized CRD, else the first served one."""
    versions = (crd.get("spec") or {}).get("versions") or []
    for v in versions:
        if v.get("served") and v.get("storage"):
            return v.get("name")
    for v in versions:
        if v.get("served"):
            return v.get("name")
    return versions[0].get("name") if versions else None


class ResourceService:
    """Kubernetes resource operations against one cluster's ``ApiClient``.

    The caller picks the cluster (management, or a member through the Karmada proxy);
    every method takes that client as its first argument.
    """

    def __init__(self, clients: ClientManager) -> None:
        self.clients = clients

    # ---------------------------
    # typed kinds
    # ---------------------------
    async def list_objects(self, api_client: ApiClient, kind: ResourceKind, namespace: str | None = None, **kwargs: Any) -> list[dict[str, Any]]:
        """Raw sanitized objects of ``kind``."""
        api = kind.api(api_client)

        def _collect() -> list[dict[str, Any]]:
            if not kind.namespaced:
                resp = getattr(api, kind.method("list"))(**kwargs)
            elif _all_namespaces(namespace):
                resp = getattr(api, kind.method("list", all_namespaces=True))(**kwargs)
            else:
                resp = getattr(api, kind.method("list"))(namespace=namespace, **kwargs)
            return [sanitize(i) for i in resp.items or []]

        return await self.clients.run(_collect)

    async def list_summaries(self, api_client: ApiClient, kind_name: str, namespace: str | None = None) -> list[dict[str, Any]]:
        kind = get_kind(kind_name)
        return [dto.to_summary(kind, obj) for obj in await self.list_objects(api_client, kind, namespace)]

    async def list_kind(self, api_client: ApiClient, kind_name: str, namespace: str | None = None, query: DataSelectQuery | None = None) -> dict[str, Any]:
        kind = get_kind(kind_name)
        items = await self.list_summaries(api_client, kind.name, namespace)
        page, total = dataselect.apply(items, query)
        return dto.to_list(kind, page, total)

    async def read_object(self, api_client: ApiClient, kind: ResourceKind, namespace: str | None, name: str) -> dict[str, Any]:
        api = kind.api(api_client)

        def _read() -> dict[str, Any]:
            if kind.namespaced:
                obj = getattr(api, kind.method("read"))(name=name, namespace=namespace)
            else:
                obj = getattr(api, kind.method("read"))(name=name)
            return sanitize(obj)

        return await self.clients.run(_read)

    async def detail(self, api_client: ApiClient, kind_name: str, namespace: str | None, name: str) -> dict[str, Any]:
        kind = get_kind(kind_name)
        obj = await self.read_object(api_client, kind, namespace, name)
        out = dto.to_detail(kind, obj)
        if kind.name == "deployment":
            selector = ((obj.get("spec") or {}).get("selector") or {}).get("matchLabels") or {}
            label_selector = ",".join(f"{k}={v}" for k, v in sorted(selector.items()))
            pods = await self.list_objects(api_client, KINDS["pod"], namespace, label_selector=label_selector) if label_selector else []
            out["podList"] = dto.to_list(KINDS["pod"], [dto.to_summary(KINDS["pod"], p) for p in pods], len(pods))
            out["pods"] = dto.pod_info(out["pods"]["current"], out["pods"]["desired"], pods)
        return out

    async def events(self, api_client: ApiClient, namespace: str | None, name: str, involved_kind: str | None = None, query: DataSelectQuery | None = None) -> dict[str, Any]:
        """Events whose involvedObject is ``name`` (optionally of ``involved_kind``)."""
        selectors = [f"involvedObject.name={name}"]
        if involved_kind:
            selectors.append(f"involvedObject.kind={involved_kind}")
        if namespace:
            selectors.append(f"involvedObject.namespace={namespace}")
        field_selector = ",".join(selectors)
        core_v1 = client.CoreV1Api(api_client)

        def _collect() -> list[dict[str, Any]]:
            if namespace:
                resp = core_v1.list_namespaced_event(namespace=namespace, field_selector=field_selector)
            else:
                resp = core_v1.list_event_for_all_namespaces(field_selector=field_selector)
            return [dto.to_event(sanitize(e)) for e in resp.items or []]

        items = await self.clients.run(_collect)
        items.sort(key=lambda e: str(e.get("lastSeen") or ""), reverse=True)
        page, total = dataselect.apply(items, query)
        return {"listMeta": {"totalItems": total}, "events": page, "errors": []}

    async def kind_events(self, api_client: ApiClient, kind_name: str, namespace: str | None, name: str, query: DataSelectQuery | None = None) -> dict[str, Any]:
        kind = get_kind(kind_name)
        return await self.events(api_client, namespace if kind.namespaced else None, name, kind.kind, query)

    async def delete(self, api_client: ApiClient, kind_name: str, namespace: str | None, name: str) -> None:
        kind = get_kind(kind_name)
        if kind.namespaced and not namespace:
            raise BadRequestError(f"namespace is required to delete a {kind.name}")
        api = kind.api(api_client)

        def _do() -> None:
            if kind.namespaced:
                getattr(api, kind.method("delete"))(name=name, namespace=namespace)
            else:
                getattr(api, kind.method("delete"))(name=name)

        await self.clients.run(_do)
        logger.info("kubernetes.resource_deleted", kind=kind.name, namespace=namespace, name=name)

    async def create_namespace(self, api_client: ApiClient, name: str, labels: dict[str, str] | None = None) -> dict[str, Any]:
        if not name:
            raise BadRequestError("namespace name is required")
        core_v1 = client.CoreV1Api(api_client)

        def _do() -> dict[str, Any]:
            body = client.V1Namespace(metadata=client.V1ObjectMeta(name=name, labels=labels or None))
            return sanitize(core_v1.create_namespace(body=body))

        return dto.to_detail(KINDS["namespace"], await self.clients.run(_do))

    async def restart(self, api_client: ApiClient, kind_name: str, namespace: str, name: str) -> dict[str, Any]:
        """Rollout restart by stamping the pod template, like ``kubectl rollout restart``."""
        kind = get_kind(kind_name)
        if not kind.restartable:
            raise BadRequestError(f"{kind.name} cannot be restarted")
        api = kind.api(api_client)
        ts = datetime.now(tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        body = {"spec": {"template": {"metadata": {"annotations": {RESTARTED_AT_ANNOTATION: ts}}}}}

        def _do() -> None:
            getattr(api, kind.method("patch"))(name=name, namespace=namespace, body=body)

        await self.clients.run(_do)
        logger.info("kubernetes.restarted", kind=kind.name, namespace=namespace, name=name)
        return {"message": f"{kind.kind} {name} restarted", "timestamp": ts}

    # ---------------------------
    # nodes and pods
    # ---------------------------
    async def node_pods(self, api_client: ApiClient, node: str, query: DataSelectQuery | None = None) -> dict[str, Any]:
        pod_kind = KINDS["pod"]
        pods = await self.list_objects(api_client, pod_kind, None, field_selector=f"spec.nodeName={node}")
        page, total = dataselect.apply([dto.to_summary(pod_kind, p) for p in pods], query)
        return dto.to_list(pod_kind, page, total)

    async def pod_logs(self, api_client: ApiClient, namespace: str, name: str, container: str | None = None, page: int = 1) -> dict[str, Any]:
        """Pod logs paged from the tail: page N holds the last N*200 lines."""
        core_v1 = client.CoreV1Api(api_client)

        def _read() -> str:
            return core_v1.read_namespaced_pod_log(name=name, namespace=namespace, container=container or None)

        text = await self.clients.run(_read) or ""
        lines = text.splitlines()
        total_lines = len(lines)
        total_pages = math.ceil(total_lines / LOG_LINES_PER_PAGE)
        page = max(page, 1)
        if total_pages and page > total_pages:
            page = total_pages
        tail = lines[-page * LOG_LINES_PER_PAGE:] if lines else []
        return {
            "logs": "\n".join(tail),
            "page": page,
            "totalPages": total_pages,
            "totalLines": total_lines,
            "container": container or "",
        }

    # ---------------------------
    # unstructured
    # ---------------------------
    @staticmethod
    def _dynamic_resource(dyn: DynamicClient, kind_name: str):
        kind = KINDS.get(kind_name.lower())
        if kind:
            return dyn.resources.get(api_version=kind.api_version, kind=kind.kind)
        for attr in ("singular_name", "name", "kind"):
            found = dyn.resources.search(**{attr: kind_name})
            # skip subresources such as pods/log
            found = [r for r in found if not getattr(r, "subresource", None) and "/" not in getattr(r, "name", "")]
            if found:
                return found[0]
        raise ResourceNotFoundError(f"No matches found for {kind_name}")

    async def raw(self, api_client: ApiClient, verb: str, kind_name: str, namespace: str | None, name: str | None, body: dict[str, Any] | None = None) -> dict[str, Any] | None:
        """get/put/delete/create any discoverable object as unstructured JSON."""

        def _do() -> dict[str, Any] | None:
            dyn = DynamicClient(api_client)
            try:
                res = self._dynamic_resource(dyn, kind_name)
            except ResourceNotFoundError as exc:
                raise NotFoundError(f"resource kind {kind_name} not found") from exc
            ns = namespace if res.namespaced else None
            if verb == "get":
                return res.get(name=name, namespace=ns).to_dict()
            if verb == "delete":
                res.delete(name=name, namespace=ns)
                return None
            if body is None:
                raise BadRequestError("request body is required")
            if verb == "put":
                return res.replace(body=body, name=name, namespace=ns).to_dict()
            if verb == "create":
                return res.create(body=body, namespace=ns).to_dict()
            raise BadRequestError(f"unsupported verb {verb}")

        result = await self.clients.run(_do)
        if isinstance(result, dict):
            (result.get("metadata") or {}).pop("managedFields", None)
        return result

    # ---------------------------
    # custom resources
    # ---------------------------
    async def list_crds(self, api_client: ApiClient, query: DataSelectQuery | None = None) -> dict[str, Any]:
        items = await self.list_crd_objects(api_client)
        summaries = [self.crd_summary(c) for c in items]
        page, total = dataselect.apply(summaries, query)
        return {"listMeta": {"totalItems": total}, "items": page, "errors": []}

    async def list_crd_objects(self, api_client: ApiClient) -> list[dict[str, Any]]:
        api_ext = client.ApiextensionsV1Api(api_client)

        def _list() -> list[dict[str, Any]]:
            return [sanitize(c) for c in api_ext.list_custom_resource_definition().items or []]

        return await self.clients.run(_list)

    @staticmethod
    def crd_summary(crd: dict[str, Any]) -> dict[str, Any]:
        spec = crd.get("spec") or {}
        names = spec.get("names") or {}
        return {
            "objectMeta": dto.object_meta(crd),
            "typeMeta": dto.type_meta("customresourcedefinition"),
            "group": spec.get("group", ""),
            "scope": spec.get("scope", "Namespaced"),
            "names": {"kind": names.get("kind", ""), "plural": names.get("plural", ""), "singular": names.get("singular", ""), "shortNames": names.get("shortNames") or []},
            "versions": [v.get("name") for v in spec.get("versions") or []],
            "version": served_version(crd),
            "established": any(
                c.get("type") == "Established" and c.get("status") == "True"
                for c in (crd.get("status") or {}).get("conditions") or []
            ),
        }

    async def get_crd(self, api_client: ApiClient, name: str) -> dict[str, Any]:
        api_ext = client.ApiextensionsV1Api(api_client)
        return await self.clients.run(lambda: sanitize(api_ext.read_custom_resource_definition(name)))

    async def update_crd(self, api_client: ApiClient, name: str, body: dict[str, Any]) -> dict[str, Any]:
        api_ext = client.ApiextensionsV1Api(api_client)
        return await self.clients.run(lambda: sanitize(api_ext.replace_custom_resource_definition(name, body)))

    async def find_crd(self, api_client: ApiClient, group: str, crd: str) -> dict[str, Any]:
        """CRD in ``group`` whose name, plural, singular or kind equals ``crd``."""
        if not group or not crd:
            raise BadRequestError("group and crd parameters are required")
        wanted = crd.lower()
        for item in await self.list_crd_objects(api_client):
            spec = item.get("spec") or {}
            if spec.get("group") != group:
                continue
            names = spec.get("names") or {}
            candidates = {(item.get("metadata") or {}).get("name", ""), names.get("plural", ""), names.get("singular", ""), names.get("kind", "")}
            if wanted in {c.lower() for c in candidates if c}:
                return item
        raise NotFoundError(f"custom resource definition {crd} not found in group {group}")

    async def list_custom_objects(self, api_client: ApiClient, crd: dict[str, Any], namespace: str | None = None) -> list[dict[str, Any]]:
        spec = crd.get("spec") or {}
        group = spec.get("group", "")
        plural = (spec.get("names") or {}).get("plural", "")
        version = served_version(crd)
        co = client.CustomObjectsApi(api_client)

        def _list() -> list[dict[str, Any]]:
            if spec.get("scope") == "Namespaced" and not _all_namespaces(namespace):
                data = co.list_namespaced_custom_object(group, version, namespace, plural)
            else:
                data = co.list_cluster_custom_object(group, version, plural)
            items = data.get("items", []) if isinstance(data, dict) else []
            for it in items:
                (it.get("metadata") or {}).pop("managedFields", None)
            return items

        return await self.clients.run(_list)

    async def list_custom_resources(self, api_client: ApiClient, group: str, crd: str, namespace: str | None = None, query: DataSelectQuery | None = None) -> dict[str, Any]:
        definition = await self.find_crd(api_client, group, crd)
        items = await self.list_custom_objects(api_client, definition, namespace)
        wrapped = [{"objectMeta": dto.object_meta(i), "typeMeta": dto.type_meta(i.get("kind", "")), "object": i} for i in items]
        page, total = dataselect.apply(wrapped, query)
        return {"listMeta": {"totalItems": total}, "items": page, "errors": []}
