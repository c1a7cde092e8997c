import base64
from unittest.mock import AsyncMock, Mock, patch

import pytest
from fastapi.testclient import TestClient
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from karmada_dashboard.config import get_settings
from karmada_dashboard.core.auth import CurrentUser, require_admin
from karmada_dashboard.core.security import create_access_token
from karmada_dashboard.dependencies import get_keycloak_client, get_registry_service
from karmada_dashboard.exceptions import BadRequestError, NotFoundError
from karmada_dashboard.main import app
from karmada_dashboard.services.aggregation import AggregationService
from karmada_dashboard.services.backup import (
    BackupService,
    RecoveryService,
    RegistryService,
    schedule_cron,
    selection_to_cron,
    to_checkpoint_event,
)
from karmada_dashboard.services.keycloak import KeycloakClient

REGISTRY = {"id": "harbor-1700000000", "name": "harbor", "registry": "harbor.example.com"}


def _clients():
    clients = Mock()
    clients.karmada = AsyncMock(return_value=Mock())
    clients.run = AsyncMock(side_effect=lambda fn, *args, **kwargs: fn(*args, **kwargs))
    return clients


def _encoded(**values):
    return {k: base64.b64encode(v.encode()).decode() for k, v in values.items()}


def _backup_obj(backup_id="db-1700000000"):
    return {
        "metadata": {"name": f"backup-{backup_id}", "labels": {"backup-id": backup_id}, "creationTimestamp": "2024-05-01T00:00:00Z"},
        "spec": {
            "sourceClusters": ["member1"],
            "resourceRef": {"apiVersion": "apps/v1", "kind": "StatefulSet", "name": "db", "namespace": "data"},
            "registry": {"url": "harbor.example.com", "repository": "backups/db", "secretRef": {"name": "backup-registry-harbor-1700000000"}},
            "schedule": "0 * * * *",
        },
    }


def test_selection_to_cron():
    assert selection_to_cron("5m") == "*/5 * * * *"
    assert selection_to_cron("1h") == "0 * * * *"
    assert selection_to_cron("weekly") == "0 0 * * *"


def test_custom_cron_needs_five_fields():
    assert schedule_cron("cron", "0 3 * * 1") == "0 3 * * 1"
    with pytest.raises(BadRequestError):
        schedule_cron("cron", "0 3 * *")


async def test_registry_create_propagates_secret(settings):
    secrets = Mock(side_effect=lambda namespace, body: body)
    policies = Mock()
    with (
        patch.object(client.CoreV1Api, "create_namespaced_secret", secrets),
        patch.object(client.CustomObjectsApi, "create_namespaced_custom_object", policies),
        patch("karmada_dashboard.services.backup.time.time", return_value=1700000000),
    ):
        registry = await RegistryService(_clients(), settings).create("harbor", "harbor.example.com", "robot", "s3cret")

    secret = secrets.call_args.args[1]
    assert secret.metadata.name == "backup-registry-harbor-1700000000"
    assert secret.metadata.labels == {"app": "backup-registry", "registry-id": "harbor-1700000000", "registry-name": "harbor"}
    assert registry["id"] == "harbor-1700000000"
    assert registry["username"] == "robot"
    assert "password" not in registry

    group, version, namespace, plural, policy = policies.call_args.args
    assert (group, version, namespace, plural) == ("policy.karmada.io", "v1alpha1", "stateful-migration", "propagationpolicies")
    assert policy["spec"]["resourceSelectors"] == [{"apiVersion": "v1", "kind": "Secret", "name": "backup-registry-harbor-1700000000"}]
    assert policy["spec"]["placement"]["clusterAffinity"]["exclude"] == ["mgmt-cluster", "management"]


async def test_registry_survives_policy_failure(settings):
    with (
        patch.object(client.CoreV1Api, "create_namespaced_secret", Mock(side_effect=lambda namespace, body: body)),
        patch.object(client.CustomObjectsApi, "create_namespaced_custom_object", Mock(side_effect=ApiException(status=500))),
    ):
        registry = await RegistryService(_clients(), settings).create("harbor", "harbor.example.com")
    assert registry["name"] == "harbor"


async def test_registry_list_hides_passwords(settings):
    secret = client.V1Secret(
        metadata=client.V1ObjectMeta(name="backup-registry-harbor-1", labels={"registry-id": "harbor-1"}),
        data=_encoded(name="harbor", registry="harbor.example.com", username="robot", password="s3cret"),
    )
    listed = Mock(return_value=client.V1SecretList(items=[secret]))
    with patch.object(client.CoreV1Api, "list_namespaced_secret", listed):
        result = await RegistryService(_clients(), settings).list()

    listed.assert_called_once_with("stateful-migration", label_selector="app=backup-registry")
    assert result["total"] == 1
    assert result["registries"][0]["registry"] == "harbor.example.com"
    assert "password" not in result["registries"][0]


async def test_backup_create_builds_stateful_migration(settings):
    registries = Mock(get=AsyncMock(return_value=REGISTRY))
    created = Mock(side_effect=lambda group, version, namespace, plural, body: body)
    with (
        patch.object(client.CustomObjectsApi, "create_namespaced_custom_object", created),
        patch("karmada_dashboard.services.backup.time.time", return_value=1700000000),
    ):
        backup = await BackupService(_clients(), registries, settings).create(
            "Nightly DB", "member1", "statefulset", "db", "data", "harbor-1700000000", "backups/db", "selection", "30m"
        )

    group, version, namespace, plural, body = created.call_args.args
    assert (group, version, namespace, plural) == ("migration.dcnlab.com", "v1", "stateful-migration", "statefulmigrations")
    assert body["metadata"]["name"] == "backup-nightly-db-1700000000"
    assert body["metadata"]["labels"] == {"app": "backup-migration", "backup-id": "nightly-db-1700000000", "type": "backup"}
    assert body["spec"]["resourceRef"] == {"apiVersion": "apps/v1", "kind": "StatefulSet", "name": "db", "namespace": "data"}
    assert body["spec"]["registry"] == {
        "url": "harbor.example.com",
        "repository": "backups/db",
        "secretRef": {"name": "backup-registry-harbor-1700000000"},
    }
    assert body["spec"]["schedule"] == "*/30 * * * *"
    assert backup["id"] == "nightly-db-1700000000"
    assert backup["schedule"] == {"type": "cron", "value": "*/30 * * * *", "enabled": True}


async def test_backup_create_needs_a_known_registry(settings):
    registries = Mock(get=AsyncMock(side_effect=NotFoundError("registry nope not found")))
    with pytest.raises(NotFoundError):
        await BackupService(_clients(), registries, settings).create("db", "member1", "pod", "db-0", "data", "nope", "r", "selection", "1h")


async def test_backup_list_resolves_registries(settings):
    registries = Mock(get=AsyncMock(return_value=REGISTRY))
    listed = Mock(return_value={"items": [_backup_obj()]})
    with patch.object(client.CustomObjectsApi, "list_namespaced_custom_object", listed):
        result = await BackupService(_clients(), registries, settings).list()

    assert listed.call_args.kwargs == {"label_selector": "app=backup-migration"}
    registries.get.assert_awaited_once_with("harbor-1700000000")
    assert result["total"] == 1
    backup = result["backups"][0]
    assert backup["cluster"] == "member1"
    assert backup["resourceType"] == "StatefulSet"
    assert backup["registry"] == REGISTRY
    assert backup["status"] == "Active"


async def test_backup_execute_sets_trigger(settings):
    replaced = Mock(side_effect=lambda *args: args[-1])
    with (
        patch.object(client.CustomObjectsApi, "get_namespaced_custom_object", Mock(return_value=_backup_obj())),
        patch.object(client.CustomObjectsApi, "replace_namespaced_custom_object", replaced),
        patch("karmada_dashboard.services.backup.time.time", return_value=1700000500),
    ):
        await BackupService(_clients(), Mock(), settings).execute("db-1700000000")
    assert replaced.call_args.args[-1]["spec"]["executeNow"] == 1700000500


async def test_missing_backup_is_not_found(settings):
    with patch.object(client.CustomObjectsApi, "get_namespaced_custom_object", Mock(side_effect=ApiException(status=404))):
        with pytest.raises(NotFoundError):
            await BackupService(_clients(), Mock(), settings).delete("gone")


async def test_recovery_create_defaults_target_to_backup(settings):
    backup = {
        "name": "backup-db-1",
        "cluster": "member1",
        "resourceType": "StatefulSet",
        "resourceName": "db",
        "namespace": "data",
        "registry": REGISTRY,
        "repository": "backups/db",
    }
    backups = Mock(get=AsyncMock(return_value=backup))
    created = Mock(side_effect=lambda group, version, namespace, plural, body: body)
    with (
        patch.object(client.CustomObjectsApi, "create_namespaced_custom_object", created),
        patch("karmada_dashboard.services.backup.time.time", return_value=1700000000),
    ):
        recovery = await RecoveryService(_clients(), backups, Mock(), settings).create("Move DB", "db-1", "member2", "migrate")

    _, version, _, _, body = created.call_args.args
    assert version == "v1alpha1"
    assert body["metadata"]["name"] == "recovery-recovery-move-db-1700000000"
    assert body["spec"]["targetName"] == "db"
    assert body["spec"]["targetNamespace"] == "data"
    assert body["spec"]["imageRepository"] == "harbor.example.com/backups/db"
    assert recovery["status"] == "pending"
    assert recovery["progress"] == 0


async def test_recovery_cancel_marks_completion(settings):
    obj = {"metadata": {"labels": {"recovery-id": "r1"}}, "spec": {"phase": "running"}, "status": {"phase": "running", "progress": 40}}
    replaced = Mock(side_effect=lambda *args: args[-1])
    with (
        patch.object(client.CustomObjectsApi, "get_namespaced_custom_object", Mock(return_value=obj)),
        patch.object(client.CustomObjectsApi, "replace_namespaced_custom_object", replaced),
    ):
        recovery = await RecoveryService(_clients(), Mock(), Mock(), settings).cancel("r1")

    assert recovery["status"] == "cancelled"
    assert recovery["progress"] == 40
    assert recovery["completedAt"]
    assert replaced.call_args.args[-1]["spec"]["phase"] == "cancelled"


async def test_checkpoint_events_skip_failing_members(settings):
    clients = _clients()
    clients.member = AsyncMock(side_effect=lambda cluster: Mock(name=cluster))
    cr = {
        "metadata": {"name": "restore-db", "namespace": "data", "creationTimestamp": "2024-05-01T00:00:00Z"},
        "spec": {"podName": "db-0", "podNamespace": "data"},
        "status": {"phase": "Completed"},
    }
    listed = Mock(side_effect=[ApiException(status=404), {"items": [cr]}])
    aggregation = AggregationService(clients, Mock(ready_names=AsyncMock(return_value=["member1", "member2"])), Mock(), Mock())
    with patch.object(client.CustomObjectsApi, "list_cluster_custom_object", listed):
        result = await RecoveryService(clients, Mock(), aggregation, settings).checkpoint_events()

    assert result["total"] == 1
    event = result["events"][0]
    assert event["id"] == "member2-data-restore-db"
    assert event["resourceType"] == "Pod"
    assert event["resourceName"] == "db-0"
    assert event["targetCluster"] == "member2"
    assert event["progress"] == 100


def test_checkpoint_event_reads_backup_reference():
    cr = {
        "metadata": {"name": "r", "namespace": "ns"},
        "spec": {"targetCluster": "member3", "backupRef": {"cluster": "member1", "resourceRef": {"kind": "StatefulSet", "name": "db"}}},
    }
    event = to_checkpoint_event(cr, "member3")
    assert event["sourceCluster"] == "member1"
    assert event["resourceType"] == "StatefulSet"
    assert event["resourceName"] == "db"


@pytest.fixture
def admin_api(settings):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_keycloak_client] = lambda: KeycloakClient(settings)
    app.dependency_overrides[require_admin] = lambda: CurrentUser("root", role="admin")
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_registry_routes_are_not_taken_for_backup_ids(admin_api, settings):
    registries = Mock(list=AsyncMock(return_value={"registries": [], "total": 0}))
    app.dependency_overrides[get_registry_service] = lambda: registries
    token = create_access_token("root", "admin", settings)

    resp = admin_api.get("/api/v1/backup/registry", headers={"Authorization": f"Bearer {token}"})
    assert resp.json() == {"code": 200, "message": "success", "data": {"registries": [], "total": 0}}
    registries.list.assert_awaited_once()


def test_backup_routes_need_a_token(admin_api):
    resp = admin_api.get("/api/v1/backup")
    assert resp.status_code == 401
    assert resp.json()["message"] == "Missing Authorization header"
