"""Dashboard DTOs built from sanitized (camelCase dict) Kubernetes objects."""
from __future__ import annotations

from typing import Any, Callable

from karmada_dashboard.services.resources.kinds import ResourceKind

Obj = dict[str, Any]


def object_meta(obj: Obj) -> Obj:
    md = obj.get("metadata") or {}
    return {
        "name": md.get("name", ""),
        "namespace": md.get("namespace", ""),
        "uid": md.get("uid", ""),
        "labels": dict(md.get("labels") or {}),
        "annotations": dict(md.get("annotations") or {}),
        "creationTimestamp": md.get("creationTimestamp"),
    }


def type_meta(kind: ResourceKind | str) -> Obj:
    if isinstance(kind, str):
        return {"kind": kind, "scalable": False, "restartable": False}
    return {"kind": kind.name, "scalable": kind.scalable, "restartable": kind.restartable}


def container_images(pod_spec: Obj | None) -> tuple[list[str], list[str]]:
    spec = pod_spec or {}
    images = [c.get("image", "") for c in spec.get("containers") or []]
    init_images = [c.get("image", "") for c in spec.get("initContainers") or []]
    return images, init_images


def _pod_template_spec(obj: Obj) -> Obj:
    spec = obj.get("spec") or {}
    if "jobTemplate" in spec:
        spec = (spec.get("jobTemplate") or {}).get("spec") or {}
    return ((spec.get("template") or {}).get("spec")) or {}


def pod_info(current: int, desired: int | None, pods: list[Obj] | None = None) -> Obj:
    info: Obj = {"current": current, "desired": desired, "running": 0, "pending": 0, "failed": 0, "succeeded": 0, "warnings": []}
    for pod in pods or []:
        phase = ((pod.get("status") or {}).get("phase") or "").lower()
        if phase in ("running", "pending", "failed", "succeeded"):
            info[phase] += 1
    return info


def _workload(obj: Obj) -> Obj:
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    images, init_images = container_images(_pod_template_spec(obj))
    desired = spec.get("replicas")
    if desired is None:
        desired = status.get("desiredNumberScheduled")
    current = status.get("readyReplicas")
    if current is None:
        current = status.get("numberReady", 0)
    info = pod_info(current or 0, desired)
    info["running"] = current or 0
    return {"pods": info, "containerImages": images, "initContainerImages": init_images}


def _job(obj: Obj) -> Obj:
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    images, init_images = container_images(_pod_template_spec(obj))
    info = pod_info(status.get("active", 0) or 0, spec.get("completions"))
    info["running"] = status.get("active", 0) or 0
    info["succeeded"] = status.get("succeeded", 0) or 0
    info["failed"] = status.get("failed", 0) or 0
    job_status = "Running"
    for cond in status.get("conditions") or []:
        if cond.get("status") == "True" and cond.get("type") in ("Complete", "Failed"):
            job_status = cond["type"]
    return {
        "pods": info,
        "containerImages": images,
        "initContainerImages": init_images,
        "parallelism": spec.get("parallelism"),
        "jobStatus": {"status": job_status},
    }


def _cronjob(obj: Obj) -> Obj:
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    images, _ = container_images(_pod_template_spec(obj))
    return {
        "schedule": spec.get("schedule", ""),
        "suspend": bool(spec.get("suspend", False)),
        "active": len(status.get("active") or []),
        "lastSchedule": status.get("lastScheduleTime"),
        "containerImages": images,
    }


def pod_status(obj: Obj) -> str:
    """Pod status the way kubectl prints it: waiting/terminated reasons win over the phase."""
    status = obj.get("status") or {}
    reason = status.get("reason") or status.get("phase") or "Unknown"
    for cs in status.get("containerStatuses") or []:
        state = cs.get("state") or {}
        if state.get("waiting", {}).get("reason"):
            return state["waiting"]["reason"]
        if state.get("terminated", {}).get("reason"):
            reason = state["terminated"]["reason"]
    if (obj.get("metadata") or {}).get("deletionTimestamp"):
        return "Terminating"
    return reason


def _pod(obj: Obj) -> Obj:
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    images, init_images = container_images(spec)
    restarts = sum(int(cs.get("restartCount", 0) or 0) for cs in status.get("containerStatuses") or [])
    return {
        "status": pod_status(obj),
        "phase": status.get("phase", "Unknown"),
        "nodeName": spec.get("nodeName", ""),
        "podIP": status.get("podIP", ""),
        "restartCount": restarts,
        "containerImages": images,
        "initContainerImages": init_images,
        "containers": [c.get("name", "") for c in spec.get("containers") or []],
    }


def _service(obj: Obj) -> Obj:
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    name = (obj.get("metadata") or {}).get("name", "")
    namespace = (obj.get("metadata") or {}).get("namespace", "")
    ports = [
        {"port": p.get("port"), "protocol": p.get("protocol", "TCP"), "nodePort": p.get("nodePort", 0)}
        for p in spec.get("ports") or []
    ]
    external = [
        {"host": ing.get("ip") or ing.get("hostname", ""), "ports": ports}
        for ing in (status.get("loadBalancer") or {}).get("ingress") or []
    ]
    external += [{"host": ip, "ports": ports} for ip in spec.get("externalIPs") or []]
    return {
        "type": spec.get("type", "ClusterIP"),
        "clusterIP": spec.get("clusterIP", ""),
        "selector": dict(spec.get("selector") or {}),
        "internalEndpoint": {"host": f"{name}.{namespace}", "ports": ports},
        "externalEndpoints": external,
    }


def _ingress(obj: Obj) -> Obj:
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    hosts = sorted({r.get("host") for r in spec.get("rules") or [] if r.get("host")})
    endpoints = [
        {"host": ing.get("ip") or ing.get("hostname", "")}
        for ing in (status.get("loadBalancer") or {}).get("ingress") or []
    ]
    return {"hosts": hosts, "endpoints": endpoints, "ingressClassName": spec.get("ingressClassName")}


def _secret(obj: Obj) -> Obj:
    return {"type": obj.get("type", "Opaque"), "keys": sorted((obj.get("data") or {}).keys())}


def _configmap(obj: Obj) -> Obj:
    return {"keys": sorted((obj.get("data") or {}).keys())}


def node_ready(obj: Obj) -> str:
    for cond in (obj.get("status") or {}).get("conditions") or []:
        if cond.get("type") == "Ready":
            return cond.get("status", "Unknown")
    return "Unknown"


def _node(obj: Obj) -> Obj:
    status = obj.get("status") or {}
    spec = obj.get("spec") or {}
    return {
        "ready": node_ready(obj),
        "unschedulable": bool(spec.get("unschedulable", False)),
        "nodeInfo": status.get("nodeInfo") or {},
        "addresses": status.get("addresses") or [],
        "allocatable": status.get("allocatable") or {},
        "capacity": status.get("capacity") or {},
    }


def _namespace(obj: Obj) -> Obj:
    return {"phase": (obj.get("status") or {}).get("phase", "")}


def _persistent_volume(obj: Obj) -> Obj:
    spec = obj.get("spec") or {}
    claim = spec.get("claimRef") or {}
    return {
        "capacity": spec.get("capacity") or {},
        "accessModes": spec.get("accessModes") or [],
        "reclaimPolicy": spec.get("persistentVolumeReclaimPolicy", ""),
        "storageClass": spec.get("storageClassName", ""),
        "status": (obj.get("status") or {}).get("phase", ""),
        "claim": f"{claim['namespace']}/{claim['name']}" if claim.get("name") else "",
    }


def _persistent_volume_claim(obj: Obj) -> Obj:
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    return {
        "capacity": status.get("capacity") or {},
        "accessModes": spec.get("accessModes") or [],
        "storageClass": spec.get("storageClassName", ""),
        "status": status.get("phase", ""),
        "volume": spec.get("volumeName", ""),
    }


_EXTRA: dict[str, Callable[[Obj], Obj]] = {
    "configmap": _configmap,
    "cronjob": _cronjob,
    "daemonset": _workload,
    "deployment": _workload,
    "ingress": _ingress,
    "job": _job,
    "namespace": _namespace,
    "node": _node,
    "persistentvolume": _persistent_volume,
    "persistentvolumeclaim": _persistent_volume_claim,
    "pod": _pod,
    "replicaset": _workload,
    "secret": _secret,
    "service": _service,
    "statefulset": _workload,
}


def to_summary(kind: ResourceKind, obj: Obj) -> Obj:
    out: Obj = {"objectMeta": object_meta(obj), "typeMeta": type_meta(kind)}
    extra = _EXTRA.get(kind.name)
    if extra:
        out.update(extra(obj))
    return out


def to_detail(kind: ResourceKind, obj: Obj) -> Obj:
    out = to_summary(kind, obj)
    out["spec"] = obj.get("spec") or {}
    out["status"] = obj.get("status") or {}
    if kind.name == "configmap":
        out["data"] = obj.get("data") or {}
    elif kind.name == "secret":
        out["data"] = obj.get("data") or {}
    return out


def to_list(kind: ResourceKind, items: list[Obj], total: int, errors: list[str] | None = None) -> Obj:
    return {"listMeta": {"totalItems": total}, kind.list_key: items, "errors": errors or []}


def to_event(obj: Obj) -> Obj:
    involved = obj.get("involvedObject") or {}
    return {
        "objectMeta": object_meta(obj),
        "typeMeta": type_meta("event"),
        "message": obj.get("message", ""),
        "sourceComponent": (obj.get("source") or {}).get("component", ""),
        "sourceHost": (obj.get("source") or {}).get("host", ""),
        "object": f"{involved.get('kind', '')}/{involved.get('name', '')}",
        "objectKind": involved.get("kind", ""),
        "objectName": involved.get("name", ""),
        "objectNamespace": involved.get("namespace", ""),
        "count": obj.get("count") or 1,
        "firstSeen": obj.get("firstTimestamp") or obj.get("eventTime"),
        "lastSeen": obj.get("lastTimestamp") or obj.get("eventTime"),
        "reason": obj.get("reason", ""),
        "type": obj.get("type", ""),
    }
