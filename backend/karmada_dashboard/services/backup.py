"""Backup registries, scheduled backups and recoveries on the Karmada control plane.

Registries are Secrets propagated to every member cluster. Backups and
recoveries are StatefulMigration custom objects that the migration controller
running in the member clusters acts on; CheckpointRestore objects in the
members report how a recovery went.
"""
from __future__ import annotations

import base64
import time
from datetime import datetime, timezone
from typing import Any

import structlog
from kubernetes import client
from kubernetes.client import ApiClient
from kubernetes.client.exceptions import ApiException

from karmada_dashboard.config import Settings
from karmada_dashboard.exceptions import BadRequestError, NotFoundError
from karmada_dashboard.services.aggregation import AggregationService
from karmada_dashboard.services.kube_client import ClientManager

logger = structlog.get_logger(__name__)

MIGRATION_GROUP = "migration.dcnlab.com"
BACKUP_VERSION = "v1"
RECOVERY_VERSION = "v1alpha1"
STATEFUL_MIGRATIONS = "statefulmigrations"
CHECKPOINT_RESTORES = "checkpointrestores"

POLICY_GROUP = "policy.karmada.io"
POLICY_VERSION = "v1alpha1"
# clusters that never receive registry credentials
EXCLUDED_CLUSTERS = ["mgmt-cluster", "management"]

REGISTRY_PREFIX = "backup-registry-"
CREATED_AT = "backup.dcnlab.com/created-at"
UPDATED_AT = "backup.dcnlab.com/updated-at"

SELECTION_CRON = {
    "5m": "*/5 * * * *",
    "15m": "*/15 * * * *",
    "30m": "*/30 * * * *",
    "1h": "0 * * * *",
}
DEFAULT_CRON = "0 0 * * *"

RESOURCE_KINDS = {"pod": ("v1", "Pod"), "statefulset": ("apps/v1", "StatefulSet")}


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _slug(name: str) -> str:
    return name.replace(" ", "-").lower()


def selection_to_cron(value: str) -> str:
    return SELECTION_CRON.get(value, DEFAULT_CRON)


def schedule_cron(schedule_type: str, value: str) -> str:
    if schedule_type == "selection":
        return selection_to_cron(value)
    if len(value.split()) != 5:
        raise BadRequestError(f"invalid cron expression: {value!r}")
    return value


def resource_kind(resource_type: str) -> tuple[str, str]:
    kind = RESOURCE_KINDS.get(resource_type.lower())
    if kind is None:
        raise BadRequestError(f"unsupported resource type: {resource_type}")
    return kind


def _decode(data: dict[str, str] | None, key: str) -> str:
    value = (data or {}).get(key)
    return base64.b64decode(value).decode() if value else ""


def _encode_all(values: dict[str, str]) -> dict[str, str]:
    return {k: base64.b64encode(v.encode()).decode() for k, v in values.items()}


def to_registry(secret: client.V1Secret, with_password: bool = False) -> dict[str, Any]:
    md = secret.metadata
    annotations = md.annotations or {}
    registry = {
        "id": (md.labels or {}).get("registry-id", md.name.removeprefix(REGISTRY_PREFIX)),
        "name": _decode(secret.data, "name"),
        "registry": _decode(secret.data, "registry"),
        "username": _decode(secret.data, "username"),
        "description": _decode(secret.data, "description"),
        "createdAt": annotations.get(CREATED_AT, ""),
        "updatedAt": annotations.get(UPDATED_AT, ""),
    }
    if with_password:
        registry["password"] = _decode(secret.data, "password")
    return registry


class RegistryService:
    """Registry credentials kept as Secrets in Karmada and propagated to member clusters."""

    def __init__(self, clients: ClientManager, settings: Settings) -> None:
        self.clients = clients
        self.namespace = settings.backup_namespace

    async def _karmada(self) -> ApiClient:
        return await self.clients.karmada()

    async def _read(self, core: client.CoreV1Api, registry_id: str) -> client.V1Secret:
        try:
            return await self.clients.run(core.read_namespaced_secret, REGISTRY_PREFIX + registry_id, self.namespace)
        except ApiException as exc:
            if exc.status == 404:
                raise NotFoundError(f"registry {registry_id} not found") from exc
            raise

    async def list(self) -> dict[str, Any]:
        core = client.CoreV1Api(await self._karmada())
        secrets = await self.clients.run(core.list_namespaced_secret, self.namespace, label_selector="app=backup-registry")
        items = [to_registry(s) for s in secrets.items]
        return {"registries": items, "total": len(items)}

    async def get(self, registry_id: str, with_password: bool = False) -> dict[str, Any]:
        core = client.CoreV1Api(await self._karmada())
        return to_registry(await self._read(core, registry_id), with_password)

    async def create(self, name: str, registry: str, username: str = "", password: str = "", description: str = "") -> dict[str, Any]:
        api_client = await self._karmada()
        core = client.CoreV1Api(api_client)
        registry_id = f"{name}-{int(time.time())}"
        secret_name = REGISTRY_PREFIX + registry_id
        now = _now()
        body = client.V1Secret(
            metadata=client.V1ObjectMeta(
                name=secret_name,
                namespace=self.namespace,
                labels={"app": "backup-registry", "registry-id": registry_id, "registry-name": name},
                annotations={CREATED_AT: now, UPDATED_AT: now},
            ),
            type="Opaque",
            data=_encode_all(
                {"name": name, "registry": registry, "username": username, "password": password, "description": description}
            ),
        )
        created = await self.clients.run(core.create_namespaced_secret, self.namespace, body)
        logger.info("backup.registry_created", registry_id=registry_id)

        co = client.CustomObjectsApi(api_client)
        try:
            await self.clients.run(
                co.create_namespaced_custom_object, POLICY_GROUP, POLICY_VERSION, self.namespace, "propagationpolicies", self._policy(secret_name)
            )
        except ApiException as exc:
            logger.error("backup.registry_policy_failed", registry_id=registry_id, error=str(exc))
        return to_registry(created)

    def _policy(self, secret_name: str) -> dict[str, Any]:
        return {
            "apiVersion": f"{POLICY_GROUP}/{POLICY_VERSION}",
            "kind": "PropagationPolicy",
            "metadata": {"name": secret_name, "namespace": self.namespace},
            "spec": {
                "resourceSelectors": [{"apiVersion": "v1", "kind": "Secret", "name": secret_name}],
                "placement": {"clusterAffinity": {"exclude": EXCLUDED_CLUSTERS}},
            },
        }

    async def update(self, registry_id: str, **fields: str) -> dict[str, Any]:
        core = client.CoreV1Api(await self._karmada())
        secret = await self._read(core, registry_id)
        changed = {k: v for k, v in fields.items() if v}
        secret.data = {**(secret.data or {}), **_encode_all(changed)}
        secret.metadata.annotations = {**(secret.metadata.annotations or {}), UPDATED_AT: _now()}
        if "name" in changed:
            secret.metadata.labels = {**(secret.metadata.labels or {}), "registry-name": changed["name"]}
        updated = await self.clients.run(core.replace_namespaced_secret, secret.metadata.name, self.namespace, secret)
        logger.info("backup.registry_updated", registry_id=registry_id)
        return to_registry(updated)

    async def delete(self, registry_id: str) -> None:
        api_client = await self._karmada()
        core = client.CoreV1Api(api_client)
        await self._read(core, registry_id)
        secret_name = REGISTRY_PREFIX + registry_id
        await self.clients.run(core.delete_namespaced_secret, secret_name, self.namespace)
        co = client.CustomObjectsApi(api_client)
        try:
            await self.clients.run(
                co.delete_namespaced_custom_object, POLICY_GROUP, POLICY_VERSION, self.namespace, "propagationpolicies", secret_name
            )
        except ApiException as exc:
            if exc.status != 404:
                logger.error("backup.registry_policy_delete_failed", registry_id=registry_id, error=str(exc))
        logger.info("backup.registry_deleted", registry_id=registry_id)


class BackupService:
    """Scheduled backups, one StatefulMigration per backed-up pod or statefulset."""

    def __init__(self, clients: ClientManager, registries: RegistryService, settings: Settings) -> None:
        self.clients = clients
        self.registries = registries
        self.namespace = settings.backup_namespace

    async def _co(self) -> client.CustomObjectsApi:
        return client.CustomObjectsApi(await self.clients.karmada())

    async def _read(self, co: client.CustomObjectsApi, backup_id: str) -> dict[str, Any]:
        try:
            return await self.clients.run(
                co.get_namespaced_custom_object, MIGRATION_GROUP, BACKUP_VERSION, self.namespace, STATEFUL_MIGRATIONS, f"backup-{backup_id}"
            )
        except ApiException as exc:
            if exc.status == 404:
                raise NotFoundError(f"backup {backup_id} not found") from exc
            raise

    async def _registry_info(self, secret_name: str) -> dict[str, str]:
        registry_id = secret_name.removeprefix(REGISTRY_PREFIX)
        try:
            registry = await self.registries.get(registry_id)
        except (ApiException, NotFoundError) as exc:
            logger.warning("backup.registry_lookup_failed", registry_id=registry_id, error=str(exc))
            return {"id": registry_id, "name": "", "registry": ""}
        return {"id": registry["id"], "name": registry["name"], "registry": registry["registry"]}

    async def to_backup(self, obj: dict[str, Any]) -> dict[str, Any]:
        md = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        ref = spec.get("resourceRef") or {}
        reg = spec.get("registry") or {}
        secret_name = (reg.get("secretRef") or {}).get("name", "")
        created = md.get("creationTimestamp") or ""
        return {
            "id": (md.get("labels") or {}).get("backup-id", ""),
            "name": md.get("name", ""),
            "cluster": ",".join(spec.get("sourceClusters") or []),
            "resourceType": ref.get("kind", ""),
            "resourceName": ref.get("name", ""),
            "namespace": ref.get("namespace", ""),
            "registry": await self._registry_info(secret_name) if secret_name else {"id": "", "name": "", "registry": ""},
            "repository": reg.get("repository", ""),
            "schedule": {"type": "cron", "value": spec.get("schedule", ""), "enabled": True},
            "status": "Active",
            "createdAt": created,
            "updatedAt": created,
        }

    async def list(self) -> dict[str, Any]:
        co = await self._co()
        data = await self.clients.run(
            co.list_namespaced_custom_object,
            MIGRATION_GROUP,
            BACKUP_VERSION,
            self.namespace,
            STATEFUL_MIGRATIONS,
            label_selector="app=backup-migration",
        )
        items = [await self.to_backup(o) for o in data.get("items") or []]
        return {"backups": items, "total": len(items)}

    async def get(self, backup_id: str) -> dict[str, Any]:
        return await self.to_backup(await self._read(await self._co(), backup_id))

    async def create(
        self,
        name: str,
        cluster: str,
        resource_type: str,
        resource_name: str,
        namespace: str,
        registry_id: str,
        repository: str,
        schedule_type: str,
        schedule_value: str,
    ) -> dict[str, Any]:
        api_version, kind = resource_kind(resource_type)
        cron = schedule_cron(schedule_type, schedule_value)
        registry = await self.registries.get(registry_id)
        backup_id = f"{_slug(name)}-{int(time.time())}"
        body = {
            "apiVersion": f"{MIGRATION_GROUP}/{BACKUP_VERSION}",
            "kind": "StatefulMigration",
            "metadata": {
                "name": f"backup-{backup_id}",
                "namespace": self.namespace,
                "labels": {"app": "backup-migration", "backup-id": backup_id, "type": "backup"},
                "annotations": {CREATED_AT: _now()},
            },
            "spec": {
                "sourceClusters": [cluster],
                "resourceRef": {"apiVersion": api_version, "kind": kind, "name": resource_name, "namespace": namespace},
                "registry": {
                    "url": registry["registry"],
                    "repository": repository,
                    "secretRef": {"name": REGISTRY_PREFIX + registry_id},
                },
                "schedule": cron,
            },
        }
        co = await self._co()
        created = await self.clients.run(
            co.create_namespaced_custom_object, MIGRATION_GROUP, BACKUP_VERSION, self.namespace, STATEFUL_MIGRATIONS, body
        )
        logger.info("backup.created", backup_id=backup_id, cluster=cluster, resource=f"{kind}/{namespace}/{resource_name}")
        return await self.to_backup(created)

    async def update(
        self,
        backup_id: str,
        resource_type: str = "",
        resource_name: str = "",
        namespace: str = "",
        registry_id: str = "",
        repository: str = "",
        schedule_type: str = "",
        schedule_value: str = "",
    ) -> dict[str, Any]:
        co = await self._co()
        obj = await self._read(co, backup_id)
        spec = obj.setdefault("spec", {})
        ref = spec.setdefault("resourceRef", {})
        reg = spec.setdefault("registry", {})
        if resource_type:
            ref["apiVersion"], ref["kind"] = resource_kind(resource_type)
        if resource_name:
            ref["name"] = resource_name
        if namespace:
            ref["namespace"] = namespace
        if registry_id:
            registry = await self.registries.get(registry_id)
            reg["url"] = registry["registry"]
            reg["secretRef"] = {"name": REGISTRY_PREFIX + registry_id}
        if repository:
            reg["repository"] = repository
        if schedule_value:
            spec["schedule"] = schedule_cron(schedule_type or "cron", schedule_value)
        annotations = obj["metadata"].get("annotations") or {}
        annotations[UPDATED_AT] = _now()
        obj["metadata"]["annotations"] = annotations
        updated = await self.clients.run(
            co.replace_namespaced_custom_object, MIGRATION_GROUP, BACKUP_VERSION, self.namespace, STATEFUL_MIGRATIONS, f"backup-{backup_id}", obj
        )
        logger.info("backup.updated", backup_id=backup_id)
        return await self.to_backup(updated)

    async def delete(self, backup_id: str) -> None:
        co = await self._co()
        await self._read(co, backup_id)
        await self.clients.run(
            co.delete_namespaced_custom_object, MIGRATION_GROUP, BACKUP_VERSION, self.namespace, STATEFUL_MIGRATIONS, f"backup-{backup_id}"
        )
        logger.info("backup.deleted", backup_id=backup_id)

    async def execute(self, backup_id: str) -> None:
        co = await self._co()
        obj = await self._read(co, backup_id)
        obj.setdefault("spec", {})["executeNow"] = int(time.time())
        await self.clients.run(
            co.replace_namespaced_custom_object, MIGRATION_GROUP, BACKUP_VERSION, self.namespace, STATEFUL_MIGRATIONS, f"backup-{backup_id}", obj
        )
        logger.info("backup.execution_triggered", backup_id=backup_id)

    async def history(self, backup_id: str) -> dict[str, Any]:
        core = client.CoreV1Api(await self.clients.karmada())
        cms = await self.clients.run(
            core.list_namespaced_config_map, self.namespace, label_selector=f"app=backup-history,backup-id={backup_id}"
        )
        keys = ("timestamp", "status", "duration", "size", "error", "checkpointPath")
        items = [{"id": cm.metadata.name, **{k: (cm.data or {}).get(k, "") for k in keys}} for cm in cms.items]
        return {"history": items, "total": len(items)}

    async def cluster_resources(self, cluster: str, resource_type: str, namespace: str | None = None) -> dict[str, Any]:
        if not resource_type:
            raise BadRequestError("resource type is required")
        api_version, kind = resource_kind(resource_type)
        api_client = await self.clients.member(cluster)
        if kind == "Pod":
            core = client.CoreV1Api(api_client)
            if namespace:
                result = await self.clients.run(core.list_namespaced_pod, namespace)
            else:
                result = await self.clients.run(core.list_pod_for_all_namespaces)
            items = [
                {"name": p.metadata.name, "namespace": p.metadata.namespace, "kind": kind, "apiVersion": api_version, "status": p.status.phase if p.status else ""}
                for p in result.items
            ]
        else:
            apps = client.AppsV1Api(api_client)
            if namespace:
                result = await self.clients.run(apps.list_namespaced_stateful_set, namespace)
            else:
                result = await self.clients.run(apps.list_stateful_set_for_all_namespaces)
            items = [
                {
                    "name": s.metadata.name,
                    "namespace": s.metadata.namespace,
                    "kind": kind,
                    "apiVersion": api_version,
                    "replicas": s.spec.replicas if s.spec else 0,
                    "readyReplicas": (s.status.ready_replicas or 0) if s.status else 0,
                }
                for s in result.items
            ]
        return {"resources": items, "total": len(items)}


def to_recovery(obj: dict[str, Any]) -> dict[str, Any]:
    md = obj.get("metadata") or {}
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    created = md.get("creationTimestamp") or ""
    recovery = {
        "id": (md.get("labels") or {}).get("recovery-id", ""),
        "name": md.get("name", ""),
        "backupId": spec.get("backupID", ""),
        "backupName": spec.get("backupName", ""),
        "sourceCluster": spec.get("sourceCluster", ""),
        "targetCluster": spec.get("targetCluster", ""),
        "resourceType": spec.get("resourceType", ""),
        "resourceName": spec.get("resourceName", ""),
        "namespace": spec.get("namespace", ""),
        "recoveryType": spec.get("recoveryType", ""),
        "status": status.get("phase", "pending"),
        "progress": int(status.get("progress") or 0),
        "startedAt": status.get("startedAt", ""),
        "createdAt": created,
        "updatedAt": created,
    }
    for key in ("error", "completedAt"):
        if status.get(key):
            recovery[key] = status[key]
    return recovery


def to_checkpoint_event(obj: dict[str, Any], cluster: str) -> dict[str, Any]:
    md = obj.get("metadata") or {}
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    backup_ref = spec.get("backupRef") or spec.get("backup") or spec.get("source") or {}
    ref = spec.get("resourceRef") or backup_ref.get("resourceRef") or {}
    phase = status.get("phase", "")
    return {
        "id": f"{cluster}-{md.get('namespace', '')}-{md.get('name', '')}",
        "name": md.get("name", ""),
        "namespace": md.get("namespace", ""),
        "cluster": cluster,
        "sourceCluster": backup_ref.get("cluster") or backup_ref.get("sourceCluster") or "",
        "targetCluster": spec.get("targetCluster") or spec.get("destCluster") or cluster,
        "resourceType": ref.get("kind") or ("Pod" if spec.get("podName") else ""),
        "resourceName": ref.get("name") or spec.get("podName", ""),
        "sourceNamespace": ref.get("namespace") or spec.get("podNamespace") or spec.get("namespace", ""),
        "status": phase,
        "phase": phase,
        "progress": 100 if phase == "Completed" else int(status.get("progress") or 0),
        "message": status.get("message", ""),
        "startTime": status.get("startTime", ""),
        "completionTime": status.get("completionTime", ""),
        "createdAt": md.get("creationTimestamp") or "",
        "containerImages": spec.get("containerImages") or [],
        "backupRef": backup_ref,
        "spec": spec,
    }


class RecoveryService:
    """Recoveries restore or migrate a backed-up workload into a target cluster."""

    def __init__(self, clients: ClientManager, backups: BackupService, aggregation: AggregationService, settings: Settings) -> None:
        self.clients = clients
        self.backups = backups
        self.aggregation = aggregation
        self.namespace = settings.backup_namespace

    async def _co(self) -> client.CustomObjectsApi:
        return client.CustomObjectsApi(await self.clients.karmada())

    async def _read(self, co: client.CustomObjectsApi, recovery_id: str) -> dict[str, Any]:
        try:
            return await self.clients.run(
                co.get_namespaced_custom_object, MIGRATION_GROUP, RECOVERY_VERSION, self.namespace, STATEFUL_MIGRATIONS, f"recovery-{recovery_id}"
            )
        except ApiException as exc:
            if exc.status == 404:
                raise NotFoundError(f"recovery {recovery_id} not found") from exc
            raise

    async def _replace(self, co: client.CustomObjectsApi, recovery_id: str, obj: dict[str, Any]) -> dict[str, Any]:
        return await self.clients.run(
            co.replace_namespaced_custom_object, MIGRATION_GROUP, RECOVERY_VERSION, self.namespace, STATEFUL_MIGRATIONS, f"recovery-{recovery_id}", obj
        )

    async def list(self) -> dict[str, Any]:
        co = await self._co()
        data = await self.clients.run(
            co.list_namespaced_custom_object,
            MIGRATION_GROUP,
            RECOVERY_VERSION,
            self.namespace,
            STATEFUL_MIGRATIONS,
            label_selector="app=recovery-migration",
        )
        items = [to_recovery(o) for o in data.get("items") or []]
        return {"recoveries": items, "total": len(items)}

    async def get(self, recovery_id: str) -> dict[str, Any]:
        return to_recovery(await self._read(await self._co(), recovery_id))

    async def create(
        self, name: str, backup_id: str, target_cluster: str, recovery_type: str, target_name: str = "", target_namespace: str = ""
    ) -> dict[str, Any]:
        backup = await self.backups.get(backup_id)
        recovery_id = f"recovery-{_slug(name)}-{int(time.time())}"
        body = {
            "apiVersion": f"{MIGRATION_GROUP}/{RECOVERY_VERSION}",
            "kind": "StatefulMigration",
            "metadata": {
                "name": f"recovery-{recovery_id}",
                "namespace": self.namespace,
                "labels": {"app": "recovery-migration", "recovery-id": recovery_id, "backup-id": backup_id, "type": "recovery"},
                "annotations": {"recovery.dcnlab.com/created-at": _now()},
            },
            "spec": {
                "backupID": backup_id,
                "backupName": backup["name"],
                "sourceCluster": backup["cluster"],
                "targetCluster": target_cluster,
                "resourceType": backup["resourceType"],
                "resourceName": backup["resourceName"],
                "namespace": backup["namespace"],
                "targetName": target_name or backup["resourceName"],
                "targetNamespace": target_namespace or backup["namespace"],
                "recoveryType": recovery_type,
                "imageRepository": f"{backup['registry']['registry']}/{backup['repository']}",
                "registryID": backup["registry"]["id"],
                "phase": "pending",
            },
            "status": {"phase": "pending", "progress": 0},
        }
        co = await self._co()
        created = await self.clients.run(
            co.create_namespaced_custom_object, MIGRATION_GROUP, RECOVERY_VERSION, self.namespace, STATEFUL_MIGRATIONS, body
        )
        logger.info("backup.recovery_created", recovery_id=recovery_id, backup_id=backup_id, target=target_cluster)
        return to_recovery(created)

    async def execute(self, recovery_id: str) -> dict[str, Any]:
        co = await self._co()
        obj = await self._read(co, recovery_id)
        spec = obj.setdefault("spec", {})
        spec["executeNow"] = int(time.time())
        spec["phase"] = "running"
        obj["status"] = {"phase": "running", "startedAt": _now(), "progress": 0}
        logger.info("backup.recovery_started", recovery_id=recovery_id)
        return to_recovery(await self._replace(co, recovery_id, obj))

    async def cancel(self, recovery_id: str) -> dict[str, Any]:
        co = await self._co()
        obj = await self._read(co, recovery_id)
        obj.setdefault("spec", {})["phase"] = "cancelled"
        status = obj.get("status") or {}
        status.update({"phase": "cancelled", "completedAt": _now()})
        obj["status"] = status
        logger.info("backup.recovery_cancelled", recovery_id=recovery_id)
        return to_recovery(await self._replace(co, recovery_id, obj))

    async def delete(self, recovery_id: str) -> None:
        co = await self._co()
        await self._read(co, recovery_id)
        await self.clients.run(
            co.delete_namespaced_custom_object, MIGRATION_GROUP, RECOVERY_VERSION, self.namespace, STATEFUL_MIGRATIONS, f"recovery-{recovery_id}"
        )
        logger.info("backup.recovery_deleted", recovery_id=recovery_id)

    async def checkpoint_events(self) -> dict[str, Any]:
        async def _fetch(cluster: str, api_client: ApiClient) -> list[dict[str, Any]]:
            co = client.CustomObjectsApi(api_client)
            data = await self.clients.run(co.list_cluster_custom_object, MIGRATION_GROUP, BACKUP_VERSION, CHECKPOINT_RESTORES)
            return [to_checkpoint_event(o, cluster) for o in data.get("items") or []]

        events = await self.aggregation.fan_out(CHECKPOINT_RESTORES, _fetch)
        return {"events": events, "total": len(events)}
