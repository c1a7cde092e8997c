from __future__ import annotations

import asyncio
import base64
import time
from typing import Any

import structlog
import yaml
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.utils import parse_quantity

from karmada_dashboard.exceptions import AppException, BadRequestError, ForbiddenError, NotFoundError
from karmada_dashboard.services import dataselect
from karmada_dashboard.services.dataselect import DataSelectQuery
from karmada_dashboard.services.etcd import EtcdError
from karmada_dashboard.services.fga import CLUSTER_RELATIONS, DASHBOARD_OBJECT, FGAClient, FGAError
from karmada_dashboard.services.kube_client import ClientManager
from karmada_dashboard.services.resources import dto
from karmada_dashboard.services.users import UserStore

logger = structlog.get_logger(__name__)

CLUSTER_GROUP = "cluster.karmada.io"
CLUSTER_VERSION = "v1alpha1"
CLUSTER_PLURAL = "clusters"
CLUSTER_NAMESPACE = "karmada-cluster"
DELETE_TIMEOUT_SECONDS = 60
TOKEN_WAIT_SECONDS = 30

# UI role names accepted by PUT /cluster/{name}/users
ROLE_TO_RELATION = {"owner": "owner", "admin": "owner", "member": "member", "read": "member", "write": "member"}


def cluster_ready(obj: dict[str, Any]) -> str:
    for cond in (obj.get("status") or {}).get("conditions") or []:
        if cond.get("type") == "Ready":
            return cond.get("status", "Unknown")
    return "Unknown"


def allocated_resources(obj: dict[str, Any]) -> dict[str, Any]:
    """Capacity and usage fractions (percent) from ``status.resourceSummary``."""
    summary = (obj.get("status") or {}).get("resourceSummary") or {}
    allocatable = summary.get("allocatable") or {}
    allocated = summary.get("allocated") or {}

    def _q(values: dict[str, Any], key: str) -> float:
        try:
            return float(parse_quantity(values.get(key, 0)))
        except ValueError:
            return 0.0

    def _fraction(used: float, total: float) -> float:
        return round(used / total * 100, 2) if total else 0.0

    cpu, cpu_used = _q(allocatable, "cpu"), _q(allocated, "cpu")
    mem, mem_used = _q(allocatable, "memory"), _q(allocated, "memory")
    pods, pods_used = _q(allocatable, "pods"), _q(allocated, "pods")
    return {
        "cpuCapacity": int(cpu),
        "cpuFraction": _fraction(cpu_used, cpu),
        "memoryCapacity": int(mem),
        "memoryFraction": _fraction(mem_used, mem),
        "allocatedPods": int(pods_used),
        "podCapacity": int(pods),
        "podFraction": _fraction(pods_used, pods),
    }


def to_cluster(obj: dict[str, Any]) -> dict[str, Any]:
    status = obj.get("status") or {}
    return {
        "objectMeta": dto.object_meta(obj),
        "typeMeta": dto.type_meta("cluster"),
        "ready": cluster_ready(obj),
        "kubernetesVersion": status.get("kubernetesVersion", ""),
        "syncMode": (obj.get("spec") or {}).get("syncMode", ""),
        "nodeSummary": status.get("nodeSummary"),
        "allocatedResources": allocated_resources(obj),
    }


def parse_kubeconfig(text: str) -> dict[str, Any]:
    """Server, CA data and credentials of the current context of a kubeconfig document."""
    try:
        doc = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise BadRequestError(f"invalid kubeconfig: {exc}") from exc
    if not isinstance(doc, dict):
        raise BadRequestError("invalid kubeconfig")
    contexts = {c.get("name"): c.get("context") or {} for c in doc.get("contexts") or []}
    ctx = contexts.get(doc.get("current-context")) or next(iter(contexts.values()), {})
    clusters = {c.get("name"): c.get("cluster") or {} for c in doc.get("clusters") or []}
    cluster = clusters.get(ctx.get("cluster")) or next(iter(clusters.values()), {})
    if not cluster.get("server"):
        raise BadRequestError("kubeconfig has no cluster server")
    return {
        "document": doc,
        "server": cluster["server"],
        "caData": cluster.get("certificate-authority-data", ""),
        "insecure": bool(cluster.get("insecure-skip-tls-verify", False)),
    }


class ClusterService:
    def __init__(self, clients: ClientManager, fga: FGAClient | None = None, users: UserStore | None = None) -> None:
        self.clients = clients
        self.fga = fga
        self.users = users

    async def _custom(self) -> client.CustomObjectsApi:
        return client.CustomObjectsApi(await self.clients.karmada())

    async def list_objects(self) -> list[dict[str, Any]]:
        co = await self._custom()
        data = await self.clients.run(co.list_cluster_custom_object, CLUSTER_GROUP, CLUSTER_VERSION, CLUSTER_PLURAL)
        return list(data.get("items") or [])

    async def get_object(self, name: str) -> dict[str, Any]:
        co = await self._custom()
        return await self.clients.run(co.get_cluster_custom_object, CLUSTER_GROUP, CLUSTER_VERSION, CLUSTER_PLURAL, name)

    async def ready_names(self) -> list[str]:
        return [o["metadata"]["name"] for o in await self.list_objects() if cluster_ready(o) == "True"]

    async def list_clusters(self, username: str | None = None, query: DataSelectQuery | None = None) -> dict[str, Any]:
        objects = await self.list_objects()
        if username and self.fga and self.fga.enabled:
            objects = await self._authorized(username, objects)
        items, total = dataselect.apply([to_cluster(o) for o in objects], query)
        return {"listMeta": {"totalItems": total}, "clusters": items, "errors": []}

    async def _authorized(self, username: str, objects: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if self.fga is None:
            raise AppException("Authorization service unavailable")
        try:
            if await self.fga.is_dashboard_admin(username):
                return objects
        except FGAError as exc:
            logger.error("clusters.admin_check_failed", username=username, error=str(exc))
        allowed = []
        for obj in objects:
            name = obj["metadata"]["name"]
            for relation in CLUSTER_RELATIONS:
                try:
                    if await self.fga.check(username, relation, "cluster", name):
                        allowed.append(obj)
                        break
                except FGAError as exc:
                    logger.error("clusters.permission_check_failed", username=username, cluster=name, error=str(exc))
                    break
        logger.debug("clusters.filtered", username=username, total=len(objects), authorized=len(allowed))
        return allowed

    async def detail(self, name: str) -> dict[str, Any]:
        obj = await self.get_object(name)
        out = to_cluster(obj)
        out["spec"] = obj.get("spec") or {}
        out["status"] = obj.get("status") or {}
        out["taints"] = (obj.get("spec") or {}).get("taints") or []
        return out

    async def update(self, name: str, labels: list[dict[str, str]] | None, taints: list[dict[str, str]] | None) -> None:
        obj = await self.get_object(name)
        if labels is not None:
            obj.setdefault("metadata", {})["labels"] = {item["key"]: item.get("value", "") for item in labels}
        if taints is not None:
            obj.setdefault("spec", {})["taints"] = [
                {"key": t["key"], "value": t.get("value", ""), "effect": t["effect"]} for t in taints
            ]
        co = await self._custom()
        await self.clients.run(co.replace_cluster_custom_object, CLUSTER_GROUP, CLUSTER_VERSION, CLUSTER_PLURAL, name, obj)
        logger.info("clusters.updated", cluster=name)

    async def delete(self, name: str, timeout: float = DELETE_TIMEOUT_SECONDS) -> None:
        """Delete the Cluster object and wait until Karmada has finished removing it."""
        co = await self._custom()
        try:
            await self.clients.run(co.delete_cluster_custom_object, CLUSTER_GROUP, CLUSTER_VERSION, CLUSTER_PLURAL, name)
        except ApiException as exc:
            if exc.status == 404:
                raise NotFoundError(f"no cluster object {name} found in karmada control Plane") from exc
            raise
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            try:
                await self.get_object(name)
            except ApiException as exc:
                if exc.status == 404:
                    logger.info("clusters.deleted", cluster=name)
                    return
                raise
            logger.info("clusters.waiting_for_delete", cluster=name)
            await asyncio.sleep(1)
        raise AppException(f"timed out waiting for cluster {name} to be deleted")

    # ---------------------------
    # push-mode registration
    # ---------------------------
    async def create(self, name: str, kubeconfig: str, sync_mode: str = "Push") -> None:
        if not name:
            raise BadRequestError("memberClusterName is required")
        if sync_mode != "Push":
            raise BadRequestError(f"unknown sync mode {sync_mode}")
        parsed = parse_kubeconfig(kubeconfig)
        token = await self._member_token(name, parsed["document"])
        karmada = await self.clients.karmada()
        core = client.CoreV1Api(karmada)
        co = client.CustomObjectsApi(karmada)

        def _register() -> None:
            try:
                core.create_namespace(client.V1Namespace(metadata=client.V1ObjectMeta(name=CLUSTER_NAMESPACE)))
            except ApiException as exc:
                if exc.status != 409:
                    raise
            secret = client.V1Secret(
                metadata=client.V1ObjectMeta(name=name, namespace=CLUSTER_NAMESPACE),
                data={"token": base64.b64encode(token.encode()).decode(), "caBundle": parsed["caData"]},
            )
            try:
                core.create_namespaced_secret(CLUSTER_NAMESPACE, secret)
            except ApiException as exc:
                if exc.status != 409:
                    raise
                core.replace_namespaced_secret(name, CLUSTER_NAMESPACE, secret)
            body = {
                "apiVersion": f"{CLUSTER_GROUP}/{CLUSTER_VERSION}",
                "kind": "Cluster",
                "metadata": {"name": name},
                "spec": {
                    "syncMode": "Push",
                    "apiEndpoint": parsed["server"],
                    "secretRef": {"namespace": CLUSTER_NAMESPACE, "name": name},
                    "insecureSkipTLSVerification": parsed["insecure"] or not parsed["caData"],
                },
            }
            co.create_cluster_custom_object(CLUSTER_GROUP, CLUSTER_VERSION, CLUSTER_PLURAL, body)

        await self.clients.run(_register)
        logger.info("clusters.registered", cluster=name, endpoint=parsed["server"])

    async def _member_token(self, name: str, kubeconfig: dict[str, Any]) -> str:
        """Create a cluster-admin service account in the member cluster and return its token."""
        sa_name = f"karmada-{name}"

        def _do() -> str:
            api_client = config.new_client_from_config_dict(kubeconfig)
            core = client.CoreV1Api(api_client)
            rbac = client.RbacAuthorizationV1Api(api_client)
            meta = client.V1ObjectMeta(name=sa_name, namespace=CLUSTER_NAMESPACE)
            steps = [
                lambda: core.create_namespace(client.V1Namespace(metadata=client.V1ObjectMeta(name=CLUSTER_NAMESPACE))),
                lambda: core.create_namespaced_service_account(CLUSTER_NAMESPACE, client.V1ServiceAccount(metadata=meta)),
                lambda: rbac.create_cluster_role_binding(
                    client.V1ClusterRoleBinding(
                        metadata=client.V1ObjectMeta(name=sa_name),
                        role_ref=client.V1RoleRef(api_group="rbac.authorization.k8s.io", kind="ClusterRole", name="cluster-admin"),
                        subjects=[client.RbacV1Subject(kind="ServiceAccount", name=sa_name, namespace=CLUSTER_NAMESPACE)],
                    )
                ),
                lambda: core.create_namespaced_secret(
                    CLUSTER_NAMESPACE,
                    client.V1Secret(
                        metadata=client.V1ObjectMeta(
                            name=sa_name,
                            namespace=CLUSTER_NAMESPACE,
                            annotations={"kubernetes.io/service-account.name": sa_name},
                        ),
                        type="kubernetes.io/service-account-token",
                    ),
                ),
            ]
            for step in steps:
                try:
                    step()
                except ApiException as exc:
                    if exc.status != 409:
                        raise
            deadline = time.monotonic() + TOKEN_WAIT_SECONDS
            while time.monotonic() < deadline:
                secret = core.read_namespaced_secret(sa_name, CLUSTER_NAMESPACE)
                token = (secret.data or {}).get("token")
                if token:
                    return base64.b64decode(token).decode()
                time.sleep(1)
            raise AppException(f"timed out waiting for the service account token of {sa_name}")

        return await self.clients.run(_do)

    # ---------------------------
    # cluster users (OpenFGA)
    # ---------------------------
    async def users_of(self, name: str) -> dict[str, Any]:
        await self.get_object(name)
        result: dict[str, Any] = {"users": [], "errors": []}
        if not self.fga or not self.fga.enabled:
            return result
        by_name: dict[str, dict[str, Any]] = {}
        sources = [("admin", DASHBOARD_OBJECT)] + [(r, ("cluster", name)) for r in CLUSTER_RELATIONS]
        for role, (object_type, object_id) in sources:
            try:
                tuples = await self.fga.read_tuples(object_type, object_id, relation=role)
            except FGAError as exc:
                result["errors"].append(str(exc))
                continue
            for t in tuples:
                entry = by_name.get(t.user)
                if entry is None:
                    entry = by_name[t.user] = await self._user_entry(t.user)
                if role not in entry["roles"]:
                    entry["roles"].append(role)
        result["users"] = sorted(by_name.values(), key=lambda u: u["username"])
        return result

    async def _user_entry(self, username: str) -> dict[str, Any]:
        entry: dict[str, Any] = {"username": username, "displayName": "", "email": "", "roles": []}
        if self.users is None:
            return entry
        try:
            user = await self.users.get(username)
        except (AppException, EtcdError) as exc:
            logger.error("clusters.user_lookup_failed", username=username, error=str(exc))
            return entry
        entry["displayName"] = user.email
        entry["email"] = user.email
        return entry

    async def check_view_users(self, username: str, name: str) -> None:
        if not self.fga or not self.fga.enabled:
            return
        try:
            allowed = await self.fga.has_cluster_access(username, name)
        except FGAError as exc:
            logger.error("clusters.permission_check_failed", username=username, cluster=name, error=str(exc))
            raise AppException("failed to check permissions") from exc
        if not allowed:
            raise ForbiddenError("forbidden: insufficient permissions to view cluster users")

    async def check_manage_users(self, username: str, name: str) -> None:
        """Dashboard admins and cluster owners may change cluster users."""
        if not self.fga or not self.fga.enabled:
            return
        try:
            if await self.fga.has_cluster_access(username, name) and (
                await self.fga.is_dashboard_admin(username) or await self.fga.check(username, "owner", "cluster", name)
            ):
                return
        except FGAError as exc:
            logger.error("clusters.permission_check_failed", username=username, cluster=name, error=str(exc))
            raise AppException("failed to check permissions") from exc
        raise ForbiddenError("forbidden: insufficient permissions to manage cluster users")

    async def replace_users(self, name: str, updates: list[dict[str, Any]]) -> dict[str, Any]:
        if not updates:
            raise BadRequestError("users list cannot be empty")
        try:
            await self.get_object(name)
        except ApiException as exc:
            raise NotFoundError(f"failed to get cluster {name}: {exc.reason}") from exc
        current = await self.users_of(name)
        admins = {u["username"] for u in current["users"] if "admin" in u["roles"]}
        if self.fga and self.fga.enabled:
            for update in updates:
                username = update.get("username", "")
                if not username or username in admins:
                    continue
                failures = 0
                for relation in CLUSTER_RELATIONS:
                    try:
                        await self.fga.delete_tuple(username, relation, "cluster", name)
                    except FGAError:
                        failures += 1
                if failures == len(CLUSTER_RELATIONS) and update.get("roles"):
                    logger.debug("clusters.no_previous_roles", username=username, cluster=name)
                for role in update.get("roles") or []:
                    relation = ROLE_TO_RELATION.get(role)
                    if not relation:
                        continue
                    try:
                        await self.fga.write_tuple(username, relation, "cluster", name)
                    except FGAError as exc:
                        logger.error("clusters.grant_failed", username=username, role=role, cluster=name, error=str(exc))
        return await self.users_of(name)
