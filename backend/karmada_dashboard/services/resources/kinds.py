from __future__ import annotations

from dataclasses import dataclass

from kubernetes import client

from karmada_dashboard.exceptions import BadRequestError


@dataclass(frozen=True)
class ResourceKind:
    """How one dashboard resource kind maps onto the Kubernetes Python client.

    Client method names follow the generated client's convention, e.g. for
    ``resource="deployment"``: ``list_namespaced_deployment``,
    ``list_deployment_for_all_namespaces``, ``read_namespaced_deployment``.
    """

    name: str
    kind: str
    api: type
    resource: str
    list_key: str
    api_version: str
    namespaced: bool = True
    scalable: bool = False
    restartable: bool = False

    def method(self, verb: str, all_namespaces: bool = False) -> str:
        if not self.namespaced:
            return f"{verb}_{self.resource}"
        if verb == "list" and all_namespaces:
            return f"list_{self.resource}_for_all_namespaces"
        return f"{verb}_namespaced_{self.resource}"


KINDS: dict[str, ResourceKind] = {
    k.name: k
    for k in (
        ResourceKind("configmap", "ConfigMap", client.CoreV1Api, "config_map", "items", "v1"),
        ResourceKind("cronjob", "CronJob", client.BatchV1Api, "cron_job", "items", "batch/v1"),
        ResourceKind("daemonset", "DaemonSet", client.AppsV1Api, "daemon_set", "daemonSets", "apps/v1", restartable=True),
        ResourceKind("deployment", "Deployment", client.AppsV1Api, "deployment", "deployments", "apps/v1", scalable=True, restartable=True),
        ResourceKind("ingress", "Ingress", client.NetworkingV1Api, "ingress", "items", "networking.k8s.io/v1"),
        ResourceKind("job", "Job", client.BatchV1Api, "job", "jobs", "batch/v1"),
        ResourceKind("namespace", "Namespace", client.CoreV1Api, "namespace", "namespaces", "v1", namespaced=False),
        ResourceKind("node", "Node", client.CoreV1Api, "node", "nodes", "v1", namespaced=False),
        ResourceKind("persistentvolume", "PersistentVolume", client.CoreV1Api, "persistent_volume", "items", "v1", namespaced=False),
        ResourceKind("persistentvolumeclaim", "PersistentVolumeClaim", client.CoreV1Api, "persistent_volume_claim", "items", "v1"),
        ResourceKind("pod", "Pod", client.CoreV1Api, "pod", "pods", "v1"),
        ResourceKind("replicaset", "ReplicaSet", client.AppsV1Api, "replica_set", "replicaSets", "apps/v1", scalable=True),
        ResourceKind("secret", "Secret", client.CoreV1Api, "secret", "secrets", "v1"),
        ResourceKind("service", "Service", client.CoreV1Api, "service", "services", "v1"),
        ResourceKind("statefulset", "StatefulSet", client.AppsV1Api, "stateful_set", "statefulSets", "apps/v1", scalable=True, restartable=True),
    )
}


def get_kind(name: str) -> ResourceKind:
    kind = KINDS.get(name.lower())
    if not kind:
        raise BadRequestError(f"unsupported resource kind: {name}")
    return kind
