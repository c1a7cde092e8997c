from unittest.mock import AsyncMock, Mock, patch

import pytest
from kubernetes import client

from karmada_dashboard.exceptions import BadRequestError
from karmada_dashboard.services.dataselect import DataSelectQuery
from karmada_dashboard.services.resources import KINDS, ResourceService, get_kind
from karmada_dashboard.services.resources import dto
from karmada_dashboard.services.resources.service import served_version


@pytest.fixture
def service() -> ResourceService:
    clients = Mock()
    clients.run = AsyncMock(side_effect=lambda fn, *args, **kwargs: fn(*args, **kwargs))
    return ResourceService(clients)


def test_kind_lookup():
    assert get_kind("Deployment") is KINDS["deployment"]
    assert KINDS["deployment"].method("list", all_namespaces=True) == "list_deployment_for_all_namespaces"
    assert KINDS["statefulset"].method("read") == "read_namespaced_stateful_set"
    assert KINDS["node"].method("list") == "list_node"
    with pytest.raises(BadRequestError):
        get_kind("widget")


def test_pod_status_prefers_container_reasons():
    pod = {"status": {"phase": "Running", "containerStatuses": [{"state": {"waiting": {"reason": "CrashLoopBackOff"}}}]}}
    assert dto.pod_status(pod) == "CrashLoopBackOff"
    assert dto.pod_status({"status": {"phase": "Pending"}}) == "Pending"
    assert dto.pod_status({"metadata": {"deletionTimestamp": "2024-01-01T00:00:00Z"}, "status": {"phase": "Running"}}) == "Terminating"


def test_to_list_uses_kind_list_key():
    assert dto.to_list(KINDS["deployment"], [], 0) == {"listMeta": {"totalItems": 0}, "deployments": [], "errors": []}
    assert "items" in dto.to_list(KINDS["configmap"], [], 0)


def test_served_version():
    crd = {"spec": {"versions": [{"name": "v1alpha1", "served": False}, {"name": "v1", "served": True, "storage": True}]}}
    assert served_version(crd) == "v1"
    assert served_version({"spec": {"versions": []}}) is None


async def test_list_kind_pages_summaries(service):
    deployments = client.V1DeploymentList(
        items=[
            client.V1Deployment(metadata=client.V1ObjectMeta(name=name, namespace="default"), spec=client.V1DeploymentSpec(
                replicas=2,
                selector=client.V1LabelSelector(match_labels={"app": name}),
                template=client.V1PodTemplateSpec(spec=client.V1PodSpec(containers=[client.V1Container(name="c", image=f"{name}:1")])),
            ))
            for name in ("web", "api", "worker")
        ]
    )
    with patch.object(client.AppsV1Api, "list_namespaced_deployment", return_value=deployments) as list_call:
        result = await service.list_kind(Mock(), "deployment", "default", DataSelectQuery.parse("2", "1", "a,name"))

    list_call.assert_called_once_with(namespace="default")
    assert result["listMeta"]["totalItems"] == 3
    assert [d["objectMeta"]["name"] for d in result["deployments"]] == ["api", "web"]
    assert result["deployments"][0]["typeMeta"] == {"kind": "deployment", "scalable": True, "restartable": True}


async def test_list_all_namespaces(service):
    with patch.object(client.CoreV1Api, "list_pod_for_all_namespaces", return_value=client.V1PodList(items=[])) as list_call:
        result = await service.list_kind(Mock(), "pod", "all")
    list_call.assert_called_once_with()
    assert result["pods"] == []


async def test_pod_logs_pages_from_the_tail(service):
    text = "\n".join(f"line {i}" for i in range(1, 451))
    with patch.object(client.CoreV1Api, "read_namespaced_pod_log", return_value=text):
        first = await service.pod_logs(Mock(), "default", "web", "app", 1)
        clamped = await service.pod_logs(Mock(), "default", "web", None, 9)
        below = await service.pod_logs(Mock(), "default", "web", None, 0)

    assert first["totalPages"] == 3
    assert first["totalLines"] == 450
    assert first["logs"].splitlines()[0] == "line 251"
    assert first["logs"].splitlines()[-1] == "line 450"
    assert first["container"] == "app"
    assert clamped["page"] == 3
    assert clamped["logs"].splitlines()[0] == "line 1"
    assert below["page"] == 1


async def test_restart_stamps_pod_template(service):
    with patch.object(client.AppsV1Api, "patch_namespaced_deployment") as patch_call:
        result = await service.restart(Mock(), "deployment", "default", "web")
    body = patch_call.call_args.kwargs["body"]
    annotations = body["spec"]["template"]["metadata"]["annotations"]
    assert annotations["kubectl.kubernetes.io/restartedAt"] == result["timestamp"]


async def test_restart_rejects_non_workloads(service):
    with pytest.raises(BadRequestError):
        await service.restart(Mock(), "configmap", "default", "settings")


async def test_create_namespace_requires_name(service):
    with pytest.raises(BadRequestError):
        await service.create_namespace(Mock(), "")


async def test_delete_namespaced_kind_requires_namespace(service):
    with patch.object(client.AppsV1Api, "delete_namespaced_deployment") as delete_call:
        with pytest.raises(BadRequestError):
            await service.delete(Mock(), "deployment", None, "web")
    delete_call.assert_not_called()


async def test_delete_cluster_scoped_kind(service):
    with patch.object(client.CoreV1Api, "delete_node") as delete_call:
        await service.delete(Mock(), "node", None, "worker-1")
    delete_call.assert_called_once_with(name="worker-1")
