import pytest
from unittest.mock import AsyncMock, Mock

from karmada_dashboard.exceptions import AppException, BadRequestError, NotFoundError
from karmada_dashboard.schemas.settings import ClusterPermission, UserSettingRequest
from karmada_dashboard.services.users import SA_TOKEN_KEY, TokenStore, UserSettingStore, UserStore, bootstrap_admin


@pytest.fixture
def users(etcd):
    return UserStore(etcd)


async def test_create_and_verify_user(users, fake_etcd):
    await users.create("alice", "pw", "alice@example.com", "basic_user")
    assert b"/karmada/dashboard/users/alice" in fake_etcd.data

    user = await users.get("alice")
    assert user.email == "alice@example.com"
    assert user.role == "basic_user"
    assert await users.verify_password("alice", "pw")
    assert not await users.verify_password("alice", "nope")


async def test_user_record_uses_camel_case(users, fake_etcd):
    await users.create("bob", "pw")
    raw = fake_etcd.data[b"/karmada/dashboard/users/bob"].decode()
    assert '"passwordHash"' in raw
    assert '"createdAt"' in raw


async def test_duplicate_user_is_rejected(users):
    await users.create("alice", "pw")
    with pytest.raises(BadRequestError):
        await users.create("alice", "pw")


async def test_missing_user(users):
    with pytest.raises(NotFoundError):
        await users.get("ghost")


async def test_undecodable_user_record(users, fake_etcd):
    fake_etcd.data[b"/karmada/dashboard/users/carol"] = b'{"username": "carol", "createdAt": "not-a-date"}'
    with pytest.raises(AppException) as excinfo:
        await users.get("carol")
    assert excinfo.value.message == "failed to decode user carol"


async def test_go_timestamps_decode(users, fake_etcd):
    fake_etcd.data[b"/karmada/dashboard/users/dave"] = (
        b'{"username": "dave", "passwordHash": "", "role": "admin", '
        b'"createdAt": "2024-05-01T10:00:00.123456789Z", "updatedAt": "2024-05-01T10:00:00Z"}'
    )
    assert (await users.get("dave")).role == "admin"


async def test_ensure_admin_is_idempotent(users):
    assert await users.ensure_admin("admin123", "admin@example.com")
    assert not await users.ensure_admin("other", "admin@example.com")
    assert (await users.get("admin")).role == "admin"
    assert await users.verify_password("admin", "admin123")


async def test_bootstrap_without_openfga(users, settings):
    result = await bootstrap_admin(users, None, settings)
    assert result == {"etcd": True, "fga": False, "created": True}


async def test_settings_defaults_for_unknown_user(etcd, users):
    store = UserSettingStore(etcd, users)
    setting = await store.get("nobody")
    assert setting.theme == "light"
    assert setting.dashboard.refresh_interval == 30


async def test_settings_create_creates_user_without_storing_password(etcd, users, fake_etcd):
    store = UserSettingStore(etcd, users)
    req = UserSettingRequest(username="carol", theme="dark", preferences={"password": "pw", "role": "admin"})
    await store.create(req)

    assert (await users.get("carol")).role == "admin"
    raw = fake_etcd.data[b"/karmada/dashboard/settings/carol"].decode()
    assert "pw" not in raw
    assert (await store.get("carol")).theme == "dark"


async def test_settings_create_rejects_unknown_role(etcd, users):
    store = UserSettingStore(etcd, users)
    with pytest.raises(BadRequestError):
        await store.create(UserSettingRequest(username="dave", password="pw", preferences={"role": "root"}))


async def test_settings_grants_cluster_relations(etcd, users):
    fga = Mock(enabled=True, write_tuple=AsyncMock())
    store = UserSettingStore(etcd, users, fga)
    req = UserSettingRequest(
        username="erin",
        password="pw",
        cluster_permissions=[ClusterPermission(cluster="member1", roles=["owner", "viewer"])],
    )
    await store.create(req)
    fga.write_tuple.assert_awaited_once_with("erin", "owner", "cluster", "member1")


async def test_token_store(etcd, settings, fake_etcd):
    tokens = TokenStore(etcd, settings)
    assert await tokens.get() is None
    await tokens.save("sa-token")
    assert fake_etcd.data[SA_TOKEN_KEY.encode()] == b"sa-token"
    assert await tokens.get() == "sa-token"
