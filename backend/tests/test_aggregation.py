from unittest.mock import AsyncMock, Mock

from kubernetes.client.exceptions import ApiException

from karmada_dashboard.services.aggregation import AggregationService
from karmada_dashboard.services.dataselect import DataSelectQuery


def _summary(name):
    return {"objectMeta": {"name": name, "namespace": "default", "labels": {}}, "typeMeta": {"kind": "deployment"}}


def _service(ready, members, summaries):
    clients = Mock()
    clients.member = AsyncMock(side_effect=members)
    clusters = Mock(ready_names=AsyncMock(return_value=ready))
    resources = Mock(list_summaries=AsyncMock(side_effect=summaries))
    return AggregationService(clients, clusters, resources, Mock())


async def test_list_kind_merges_and_labels_by_cluster():
    by_cluster = {"member1": [_summary("web"), _summary("api")], "member2": [_summary("web")]}
    api_clients = {"member1": Mock(name="c1"), "member2": Mock(name="c2")}
    names = {id(v): k for k, v in api_clients.items()}

    async def summaries(api_client, kind, namespace):
        return by_cluster[names[id(api_client)]]

    service = _service(["member1", "member2"], lambda cluster: api_clients[cluster], summaries)
    result = await service.list_kind("deployment", "default", DataSelectQuery.parse())

    assert result["listMeta"]["totalItems"] == 3
    assert [(d["objectMeta"]["name"], d["objectMeta"]["labels"]["cluster"]) for d in result["deployments"]] == [
        ("api", "member1"),
        ("web", "member1"),
        ("web", "member2"),
    ]


async def test_failing_member_is_skipped():
    async def members(cluster):
        if cluster == "broken":
            raise ApiException(status=503, reason="Service Unavailable")
        return Mock()

    service = _service(["broken", "member1"], members, lambda *args: [_summary("web")])
    result = await service.list_kind("deployment", None, None)
    assert result["listMeta"]["totalItems"] == 1
    assert result["deployments"][0]["objectMeta"]["labels"]["cluster"] == "member1"


async def test_cluster_scoped_kind_ignores_namespace():
    service = _service(["member1"], lambda cluster: Mock(), None)
    service.resources.list_summaries = AsyncMock(return_value=[])
    await service.list_kind("node", "default", None)
    service.resources.list_summaries.assert_awaited_once()
    assert service.resources.list_summaries.await_args.args[2] is None
