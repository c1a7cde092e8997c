import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from karmada_dashboard.config import get_settings
from karmada_dashboard.core.auth import CurrentUser, require_admin
from karmada_dashboard.core.security import create_access_token
from karmada_dashboard.dependencies import (
    get_client_manager,
    get_cluster_service,
    get_fga_client,
    get_keycloak_client,
    get_porch_service,
    get_token_store,
    get_user_store,
)
from karmada_dashboard.exceptions import AppException, ForbiddenError
from karmada_dashboard.main import app
from karmada_dashboard.services.fga import FGAClient
from karmada_dashboard.services.keycloak import KeycloakClient
from karmada_dashboard.services.porch import ProxyResponse
from karmada_dashboard.services.users import UserStore


@pytest.fixture
def api(settings, etcd):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_keycloak_client] = lambda: KeycloakClient(settings)
    app.dependency_overrides[get_fga_client] = lambda: FGAClient(settings)
    app.dependency_overrides[get_user_store] = lambda: UserStore(etcd)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_header(settings):
    return {"Authorization": f"Bearer {create_access_token('alice', 'basic_user', settings)}"}


def test_health_is_enveloped(api):
    resp = api.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"code": 200, "message": "success", "data": {"status": "healthy"}}
    assert resp.headers["X-Request-ID"]


def test_login_requires_credentials(api):
    resp = api.post("/api/v1/login", json={"username": "alice"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "No valid authentication method provided"


def test_login(api, etcd):
    asyncio.run(UserStore(etcd).create("alice", "pw", role="admin"))

    resp = api.post("/api/v1/login", json={"username": "alice", "password": "pw"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["code"] == 200
    assert body["data"]["token"]

    resp = api.post("/api/v1/login", json={"username": "alice", "password": "wrong"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid username or password"


def test_me_for_anonymous_caller(api):
    app.dependency_overrides[get_token_store] = lambda: Mock(get=AsyncMock(return_value=None))
    app.dependency_overrides[get_client_manager] = lambda: Mock()
    resp = api.get("/api/v1/me")
    assert resp.json()["data"] == {"name": "", "authenticated": False, "role": "", "initToken": False}


def test_protected_routes_need_a_token(api):
    resp = api.get("/api/v1/cluster")
    assert resp.status_code == 401
    assert resp.json() == {"code": 401, "message": "Missing Authorization header", "data": None}


def test_invalid_token_is_rejected(api):
    resp = api.get("/api/v1/cluster", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid or expired token"


def test_cluster_list(api, auth_header):
    service = Mock(list_clusters=AsyncMock(return_value={"listMeta": {"totalItems": 0}, "clusters": [], "errors": []}))
    app.dependency_overrides[get_cluster_service] = lambda: service
    resp = api.get("/api/v1/cluster?itemsPerPage=10&page=1", headers=auth_header)
    assert resp.status_code == 200
    assert resp.json()["data"]["clusters"] == []
    username, query = service.list_clusters.await_args.args
    assert username == "alice"
    assert query.items_per_page == 10


def test_mgmt_requires_authorization_service(api, auth_header):
    resp = api.get("/api/v1/mgmt/pod", headers=auth_header)
    assert resp.status_code == 200
    assert resp.json()["code"] == 500
    assert resp.json()["message"] == "Authorization service unavailable"


def test_member_access_is_checked(api, auth_header):
    app.dependency_overrides[get_cluster_service] = lambda: Mock(get_object=AsyncMock(return_value={}))
    app.dependency_overrides[get_fga_client] = lambda: Mock(enabled=True, has_cluster_access=AsyncMock(return_value=False))
    resp = api.get("/api/v1/member/member1/pod", headers=auth_header)
    assert resp.json()["code"] == 403
    assert resp.json()["message"] == "forbidden: no access to cluster member1"


def test_porch_responses_pass_through(api, auth_header):
    porch = Mock()
    porch.path = Mock(return_value="/apis/porch.kpt.dev/v1alpha1/namespaces/default/repositories")
    porch.proxy = AsyncMock(return_value=ProxyResponse(200, {"content-type": "application/json"}, b'{"items": []}'))
    app.dependency_overrides[get_porch_service] = lambda: porch
    app.dependency_overrides[require_admin] = lambda: CurrentUser("admin", role="admin")

    resp = api.get("/api/v1/mgmt/porch/repository?limit=1", headers=auth_header)
    assert resp.status_code == 200
    assert resp.json() == {"items": []}
    method, path = porch.proxy.await_args.args
    assert method == "GET"
    assert porch.proxy.await_args.kwargs["params"] == {"limit": "1"}


def test_bad_query_parameter(api, auth_header):
    app.dependency_overrides[get_cluster_service] = lambda: Mock(list_clusters=AsyncMock())
    resp = api.get("/api/v1/cluster?itemsPerPage=ten", headers=auth_header)
    assert resp.json()["code"] == 400


def test_listing_all_settings_needs_admin(api, auth_header):
    resp = api.get("/api/v1/setting/users", headers=auth_header)
    assert resp.json()["code"] == 403
    assert resp.json()["message"] == "insufficient privileges: admin role required"


def test_mgmt_uses_keycloak_roles_when_keycloak_is_on(api, settings, auth_header):
    keycloak_settings = settings.model_copy(update={"keycloak_enabled": True, "keycloak_url": "http://keycloak.test"})
    app.dependency_overrides[get_keycloak_client] = lambda: KeycloakClient(keycloak_settings)
    resp = api.get("/api/v1/mgmt/pod", headers=auth_header)
    assert resp.json()["code"] == 403
    assert resp.json()["message"] == "Administrator permissions required for management cluster access"


async def test_require_admin_branches_on_keycloak_being_enabled():
    fga_off = Mock(enabled=False)
    keycloak_on = Mock(enabled=True)

    with pytest.raises(ForbiddenError):
        await require_admin(CurrentUser("alice", role="basic_user"), fga_off, keycloak_on)
    admin = CurrentUser("root", roles=["Dashboard-Admin"], source="keycloak")
    assert await require_admin(admin, fga_off, keycloak_on) is admin

    with pytest.raises(AppException) as excinfo:
        await require_admin(CurrentUser("alice", role="basic_user"), fga_off, Mock(enabled=False))
    assert excinfo.value.message == "Authorization service unavailable"


async def test_require_admin_asks_openfga_without_keycloak():
    fga = Mock(enabled=True, is_dashboard_admin=AsyncMock(return_value=True))
    user = CurrentUser("alice", role="basic_user")
    assert await require_admin(user, fga, Mock(enabled=False)) is user
    fga.is_dashboard_admin.assert_awaited_once_with("alice")


def test_login_with_undecodable_user_record(api, fake_etcd):
    fake_etcd.data[b"/karmada/dashboard/users/carol"] = b'{"username": "carol", "createdAt": "not-a-date"}'
    resp = api.post("/api/v1/login", json={"username": "carol", "password": "pw"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid username or password"
