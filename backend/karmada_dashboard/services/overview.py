from __future__ import annotations

from typing import Any

import structlog
import urllib3
import yaml
from kubernetes import client
from kubernetes.client import ApiClient
from kubernetes.client.exceptions import ApiException
from kubernetes.utils import parse_quantity

from karmada_dashboard.config import Settings, get_settings
from karmada_dashboard.exceptions import AppException, BadRequestError, NotFoundError
from karmada_dashboard.services.argocd import ArgoCDService
from karmada_dashboard.services.clusters import ClusterService, cluster_ready
from karmada_dashboard.services.kube_client import ClientManager, sanitize
from karmada_dashboard.services.resources.dto import node_ready

logger = structlog.get_logger(__name__)

GPU_RESOURCE = "nvidia.com/gpu"
GPU_PRODUCT_LABEL = "nvidia.com/gpu.product"
TERMINAL_POD_PHASES = ("Succeeded", "Failed")
CONTROLLER_MANAGER_SELECTOR = "app=karmada-controller-manager"
POLICY_GROUP = "policy.karmada.io"
POLICY_VERSION = "v1alpha1"

KUBE_ERRORS = (ApiException, AppException, urllib3.exceptions.HTTPError)


def _quantity(value: Any) -> float:
    if value in (None, ""):
        return 0.0
    try:
        return float(parse_quantity(value))
    except ValueError:
        return 0.0


def node_resource_summary(nodes: list[dict[str, Any]], pods: list[dict[str, Any]]) -> dict[str, Any]:
    """Node/pod/cpu/memory summary from node capacity and the requests of running pods.

    CPU is reported in cores and memory in bytes.
    """
    total_cpu = total_mem = total_pods = 0.0
    ready = 0
    for node in nodes:
        capacity = (node.get("status") or {}).get("capacity") or {}
        total_cpu += _quantity(capacity.get("cpu"))
        total_mem += _quantity(capacity.get("memory"))
        total_pods += _quantity(capacity.get("pods"))
        if node_ready(node) == "True":
            ready += 1
    used_cpu = used_mem = 0.0
    active_pods = 0
    for pod in pods:
        phase = (pod.get("status") or {}).get("phase")
        if phase not in TERMINAL_POD_PHASES:
            active_pods += 1
        if phase != "Running":
            continue
        for container in (pod.get("spec") or {}).get("containers") or []:
            requests = (container.get("resources") or {}).get("requests") or {}
            used_cpu += _quantity(requests.get("cpu"))
            used_mem += _quantity(requests.get("memory"))
    return {
        "nodeSummary": {"totalNum": len(nodes), "readyNum": ready},
        "cpuSummary": {"totalCPU": round(total_cpu, 3), "allocatedCPU": round(used_cpu, 3)},
        "memorySummary": {"totalMemory": int(total_mem), "allocatedMemory": int(used_mem)},
        "podSummary": {"totalPod": int(total_pods), "allocatedPod": active_pods},
    }


def gpu_summary(nodes_by_cluster: dict[str, list[dict[str, Any]]]) -> dict[str, Any]:
    """GPU count per product label (``Unknown`` when unlabelled)."""
    pools: dict[str, int] = {}
    total = 0
    for nodes in nodes_by_cluster.values():
        for node in nodes:
            count = int(_quantity(((node.get("status") or {}).get("capacity") or {}).get(GPU_RESOURCE)))
            if count <= 0:
                continue
            model = ((node.get("metadata") or {}).get("labels") or {}).get(GPU_PRODUCT_LABEL) or "Unknown"
            pools[model] = pools.get(model, 0) + count
            total += count
    return {"totalGPU": total, "gpuPools": [{"model": m, "count": c} for m, c in sorted(pools.items())]}


def karmada_cluster_summary(clusters: list[dict[str, Any]]) -> dict[str, Any]:
    """Sum of the node and resource summaries Karmada reports on each Cluster."""
    nodes_total = nodes_ready = 0
    cpu = cpu_used = mem = mem_used = pods = pods_used = 0.0
    for cluster in clusters:
        status = cluster.get("status") or {}
        node_summary = status.get("nodeSummary") or {}
        nodes_total += int(node_summary.get("totalNum") or 0)
        nodes_ready += int(node_summary.get("readyNum") or 0)
        summary = status.get("resourceSummary") or {}
        allocatable = summary.get("allocatable") or {}
        allocated = summary.get("allocated") or {}
        cpu += _quantity(allocatable.get("cpu"))
        cpu_used += _quantity(allocated.get("cpu"))
        mem += _quantity(allocatable.get("memory"))
        mem_used += _quantity(allocated.get("memory"))
        pods += _quantity(allocatable.get("pods"))
        pods_used += _quantity(allocated.get("pods"))
    return {
        "nodeSummary": {"totalNum": nodes_total, "readyNum": nodes_ready},
        "cpuSummary": {"totalCPU": round(cpu, 3), "allocatedCPU": round(cpu_used, 3)},
        "memorySummary": {"totalMemory": int(mem), "allocatedMemory": int(mem_used)},
        "podSummary": {"totalPod": int(pods), "allocatedPod": int(pods_used)},
    }


class DashboardConfigStore:
    """Metrics dashboards kept in the dashboard ConfigMap under ``{ENV_NAME}.yaml``."""

    def __init__(self, clients: ClientManager, settings: Settings | None = None) -> None:
        self.clients = clients
        self.settings = settings or get_settings()

    @property
    def key(self) -> str:
        return f"{self.settings.env_name}.yaml"

    async def _read(self) -> tuple[client.V1ConfigMap | None, dict[str, Any]]:
        core = client.CoreV1Api(await self.clients.management())
        try:
            cm = await self.clients.run(core.read_namespaced_config_map, self.settings.dashboard_configmap, self.settings.settings_namespace)
        except ApiException as exc:
            if exc.status == 404:
                return None, {}
            raise
        doc = yaml.safe_load((cm.data or {}).get(self.key) or "") or {}
        return cm, doc if isinstance(doc, dict) else {}

    async def _write(self, cm: client.V1ConfigMap | None, doc: dict[str, Any]) -> None:
        core = client.CoreV1Api(await self.clients.management())
        text = yaml.safe_dump(doc, sort_keys=False)
        if cm is None:
            body = client.V1ConfigMap(
                metadata=client.V1ObjectMeta(name=self.settings.dashboard_configmap, namespace=self.settings.settings_namespace),
                data={self.key: text},
            )
            await self.clients.run(core.create_namespaced_config_map, self.settings.settings_namespace, body)
            return
        cm.data = dict(cm.data or {})
        cm.data[self.key] = text
        await self.clients.run(core.replace_namespaced_config_map, self.settings.dashboard_configmap, self.settings.settings_namespace, cm)

    async def dashboards(self) -> list[dict[str, str]]:
        try:
            _, doc = await self._read()
        except KUBE_ERRORS as exc:
            logger.warning("overview.dashboard_config_unreadable", error=str(exc))
            return []
        return [{"name": d.get("name", ""), "url": d.get("url", "")} for d in doc.get("metrics_dashboards") or []]

    async def add(self, name: str, url: str) -> None:
        cm, doc = await self._read()
        current = doc.get("metrics_dashboards") or []
        if any(d.get("name") == name for d in current):
            raise BadRequestError(f"dashboard with name '{name}' already exists")
        doc["metrics_dashboards"] = current + [{"name": name, "url": url}]
        await self._write(cm, doc)
        logger.info("overview.dashboard_saved", name=name)

    async def remove(self, name: str, url: str) -> None:
        if not name or not url:
            raise BadRequestError("name and url parameters are required")
        cm, doc = await self._read()
        current = doc.get("metrics_dashboards") or []
        kept = [d for d in current if not (d.get("name") == name and d.get("url") == url)]
        if len(kept) == len(current):
            raise NotFoundError(f"dashboard with name '{name}' and url '{url}' not found")
        doc["metrics_dashboards"] = kept
        await self._write(cm, doc)
        logger.info("overview.dashboard_deleted", name=name)


class OverviewService:
    def __init__(self, clients: ClientManager, clusters: ClusterService, argocd: ArgoCDService, dashboards: DashboardConfigStore, settings: Settings | None = None) -> None:
        self.clients = clients
        self.clusters = clusters
        self.argocd = argocd
        self.dashboards = dashboards
        self.settings = settings or get_settings()

    async def karmada_info(self) -> dict[str, Any]:
        info: dict[str, Any] = {"version": {}, "status": "unknown", "createTime": None}
        try:
            info["version"] = await self.clients.karmada_version()
            info["status"] = "running"
        except KUBE_ERRORS as exc:
            logger.error("overview.karmada_version_failed", error=str(exc))
        try:
            core = client.CoreV1Api(await self.clients.management())
            pods = await self.clients.run(
                core.list_namespaced_pod, self.settings.karmada_namespace, label_selector=CONTROLLER_MANAGER_SELECTOR
            )
        except KUBE_ERRORS as exc:
            logger.warning("overview.controller_manager_lookup_failed", error=str(exc))
            return info
        if pods.items:
            pod = sanitize(pods.items[0])
            info["createTime"] = pod["metadata"].get("creationTimestamp")
            if (pod.get("status") or {}).get("phase") != "Running":
                info["status"] = "unhealthy"
        return info

    async def cluster_resource_status(self) -> dict[str, int]:
        api_client = await self.clients.karmada()
        co = client.CustomObjectsApi(api_client)
        core = client.CoreV1Api(api_client)
        apps = client.AppsV1Api(api_client)
        batch = client.BatchV1Api(api_client)
        networking = client.NetworkingV1Api(api_client)

        def _count() -> dict[str, int]:
            def n(items: Any) -> int:
                return len(items.items or [])

            policies = co.list_cluster_custom_object(POLICY_GROUP, POLICY_VERSION, "propagationpolicies")
            overrides = co.list_cluster_custom_object(POLICY_GROUP, POLICY_VERSION, "overridepolicies")
            return {
                "propagationPolicyNum": len(policies.get("items") or []),
                "overridePolicyNum": len(overrides.get("items") or []),
                "namespaceNum": n(core.list_namespace()),
                "workloadNum": n(apps.list_deployment_for_all_namespaces())
                + n(apps.list_stateful_set_for_all_namespaces())
                + n(apps.list_daemon_set_for_all_namespaces())
                + n(batch.list_job_for_all_namespaces())
                + n(batch.list_cron_job_for_all_namespaces()),
                "serviceNum": n(core.list_service_for_all_namespaces()) + n(networking.list_ingress_for_all_namespaces()),
                "configNum": n(core.list_config_map_for_all_namespaces()) + n(core.list_secret_for_all_namespaces()),
            }

        return await self.clients.run(_count)

    async def _nodes(self, api_client: ApiClient) -> list[dict[str, Any]]:
        core = client.CoreV1Api(api_client)
        return await self.clients.run(lambda: [sanitize(n) for n in core.list_node().items or []])

    async def _pods(self, api_client: ApiClient) -> list[dict[str, Any]]:
        core = client.CoreV1Api(api_client)
        return await self.clients.run(lambda: [sanitize(p) for p in core.list_pod_for_all_namespaces().items or []])

    async def gpu(self, cluster_names: list[str]) -> dict[str, Any]:
        nodes: dict[str, list[dict[str, Any]]] = {}
        for name in cluster_names:
            try:
                nodes[name] = await self._nodes(await self.clients.member(name))
            except KUBE_ERRORS as exc:
                logger.debug("overview.gpu_nodes_failed", cluster=name, error=str(exc))
        return gpu_summary(nodes)

    async def overview(self) -> dict[str, Any]:
        clusters = await self.clusters.list_objects()
        ready = [c["metadata"]["name"] for c in clusters if cluster_ready(c) == "True"]
        return {
            "karmadaInfo": await self.karmada_info(),
            "memberClusterStatus": karmada_cluster_summary(clusters),
            "clusterResourceStatus": await self.cluster_resource_status(),
            "metricsDashboards": await self.dashboards.dashboards(),
            "gpuSummary": await self.gpu(ready),
        }

    async def _cluster_overview(self, api_client: ApiClient, cluster_name: str, with_argo: bool) -> dict[str, Any]:
        status = node_resource_summary(await self._nodes(api_client), await self._pods(api_client))
        core = client.CoreV1Api(api_client)
        apps = client.AppsV1Api(api_client)
        namespace_count = deployment_count = 0
        try:
            namespace_count = len((await self.clients.run(core.list_namespace)).items or [])
            deployment_count = len((await self.clients.run(apps.list_deployment_for_all_namespaces)).items or [])
        except KUBE_ERRORS as exc:
            logger.warning("overview.counts_failed", cluster=cluster_name, error=str(exc))
        argo = {"applicationCount": 0, "projectCount": 0, "applicationSetCount": 0}
        if with_argo:
            counts = await self.argocd.counts(api_client)
            argo = {
                "applicationCount": counts.get("application", 0),
                "projectCount": counts.get("project", 0),
                "applicationSetCount": counts.get("applicationset", 0),
            }
        return {
            "karmadaInfo": await self.karmada_info(),
            "clusterName": cluster_name,
            "argoMetrics": argo,
            "deploymentCount": deployment_count,
            "namespaceCount": namespace_count,
            "memberClusterStatus": status,
            "metricsDashboards": await self.dashboards.dashboards(),
        }

    async def member_overview(self, cluster: str) -> dict[str, Any]:
        return await self._cluster_overview(await self.clients.member(cluster), cluster, with_argo=True)

    async def mgmt_overview(self) -> dict[str, Any]:
        return await self._cluster_overview(await self.clients.management(), "mgmt-cluster", with_argo=False)
