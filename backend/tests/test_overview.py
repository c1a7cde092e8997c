from unittest.mock import AsyncMock, Mock

import pytest
from kubernetes.client.exceptions import ApiException

from karmada_dashboard.exceptions import AppException
from karmada_dashboard.services.monitoring import MonitoringService, label_value, random_suffix
from karmada_dashboard.services.overview import gpu_summary, karmada_cluster_summary, node_resource_summary


def _node(name, cpu="4", memory="8Gi", pods="110", ready="True", gpus=None, product=None):
    capacity = {"cpu": cpu, "memory": memory, "pods": pods}
    if gpus is not None:
        capacity["nvidia.com/gpu"] = str(gpus)
    labels = {"nvidia.com/gpu.product": product} if product else {}
    return {
        "metadata": {"name": name, "labels": labels},
        "status": {"capacity": capacity, "conditions": [{"type": "Ready", "status": ready}]},
    }


def _pod(phase, cpu="500m", memory="1Gi"):
    return {
        "status": {"phase": phase},
        "spec": {"containers": [{"resources": {"requests": {"cpu": cpu, "memory": memory}}}]},
    }


def test_node_resource_summary_counts_running_requests():
    summary = node_resource_summary(
        [_node("a"), _node("b", ready="False")],
        [_pod("Running"), _pod("Running", cpu="1"), _pod("Pending", cpu="4")],
    )
    assert summary["nodeSummary"] == {"totalNum": 2, "readyNum": 1}
    assert summary["cpuSummary"] == {"totalCPU": 8.0, "allocatedCPU": 1.5}
    assert summary["memorySummary"]["totalMemory"] == 16 * 1024**3
    assert summary["memorySummary"]["allocatedMemory"] == 2 * 1024**3
    assert summary["podSummary"] == {"totalPod": 220, "allocatedPod": 3}


def test_gpu_summary_groups_by_product():
    summary = gpu_summary(
        {
            "member1": [_node("a", gpus=4, product="A100"), _node("b")],
            "member2": [_node("c", gpus=2, product="A100"), _node("d", gpus=1)],
        }
    )
    assert summary["totalGPU"] == 7
    assert summary["gpuPools"] == [{"model": "A100", "count": 6}, {"model": "Unknown", "count": 1}]


def test_karmada_cluster_summary_sums_cluster_status():
    cluster = {
        "status": {
            "nodeSummary": {"totalNum": 2, "readyNum": 2},
            "resourceSummary": {"allocatable": {"cpu": "4", "pods": "10"}, "allocated": {"cpu": "1500m", "pods": "3"}},
        }
    }
    summary = karmada_cluster_summary([cluster, cluster, {}])
    assert summary["nodeSummary"] == {"totalNum": 4, "readyNum": 4}
    assert summary["cpuSummary"] == {"totalCPU": 8.0, "allocatedCPU": 3.0}
    assert summary["podSummary"] == {"totalPod": 20, "allocatedPod": 6}


def test_label_value():
    assert label_value("My Grafana/prod") == "My-Grafana-prod"
    assert label_value("-edge-") == "x-edge-x"
    assert label_value("") == ""


def test_random_suffix_starts_with_letter():
    value = random_suffix()
    assert len(value) == 16
    assert value[0].isalpha()
    assert value == value.lower()


def test_finished_pods_do_not_count_as_allocated():
    summary = node_resource_summary([_node("a")], [_pod("Running"), _pod("Pending"), _pod("Succeeded"), _pod("Failed")])
    assert summary["podSummary"] == {"totalPod": 110, "allocatedPod": 2}


async def test_grafana_source_needs_the_config_map(settings):
    calls = iter([ApiException(status=404, reason="Not Found"), None])

    def run(fn, *args, **kwargs):
        result = next(calls)
        if isinstance(result, Exception):
            raise result
        return result

    clients = Mock(management=AsyncMock(return_value=Mock()), run=AsyncMock(side_effect=run))
    with pytest.raises(AppException, match="could not be created"):
        await MonitoringService(clients, settings).add_grafana("prod", "http://grafana", "secret-token")
